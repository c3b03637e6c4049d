"""
Cooperative cancellation signal shared by scans and installs.
"""

import threading
from typing import Optional

from ..exceptions import OperationCancelledError


class CancellationToken:
    """A one-shot flag that workers poll between suspension points."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or timeout elapses; returns the flag."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, message: str = "Operation cancelled by user.") -> None:
        if self._event.is_set():
            raise OperationCancelledError(message)

