"""
Install outcome and progress models for Jellyfin2Samsung.

InstallResult is the terminal value returned by the orchestrator. It is
never mutated after construction, and elevation being declined is a
distinct outcome rather than an error.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class InstallStage(Enum):
    """Orchestrator state machine."""
    IDLE = "idle"
    DOWNLOADING = "downloading"
    TOOL_ENSURED = "tool_ensured"
    INSTALLING = "installing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (InstallStage.SUCCEEDED, InstallStage.FAILED, InstallStage.CANCELLED)


class InstallOutcome(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


CANCELLED_MESSAGE = "Operation cancelled by user."


@dataclass(frozen=True)
class InstallResult:
    """Result of an install attempt."""
    outcome: InstallOutcome
    error_message: Optional[str] = None
    output: str = ""

    @property
    def success(self) -> bool:
        return self.outcome is InstallOutcome.SUCCEEDED

    @property
    def cancelled(self) -> bool:
        return self.outcome is InstallOutcome.CANCELLED

    @classmethod
    def succeeded(cls, output: str = "") -> 'InstallResult':
        return cls(InstallOutcome.SUCCEEDED, None, output)

    @classmethod
    def failed(cls, error_message: str, output: str = "") -> 'InstallResult':
        return cls(InstallOutcome.FAILED, error_message, output)

    @classmethod
    def cancelled_by_user(cls, output: str = "") -> 'InstallResult':
        return cls(InstallOutcome.CANCELLED, CANCELLED_MESSAGE, output)


@dataclass
class InstallProgress:
    """Progress information handed to install callbacks."""
    stage: InstallStage
    message: str
    downloaded_bytes: int = 0
    total_bytes: Optional[int] = None

    @property
    def progress_percentage(self) -> float:
        if self.total_bytes and self.total_bytes > 0:
            return (self.downloaded_bytes / self.total_bytes) * 100.0
        return 0.0
