"""
TV log listener for Jellyfin2Samsung.

The diagnostic patch makes the TV app forward its console output to a
WebSocket on the development machine. This service is that listener: it
runs a WebSocket server in a background thread and hands every message to a
callback.
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, Optional

from websockets.exceptions import ConnectionClosed
from websockets.sync.server import ServerConnection, serve


class TvLogStatus(Enum):
    """Listener states reported to the status callback."""
    LISTENING = "listening"
    CONNECTED = "connected"
    NO_CONNECTIONS = "no_connections"
    STOPPED = "stopped"


class TvLogService:
    """Background WebSocket server receiving TV console messages."""

    def __init__(self, port: int = 54321, host: str = "0.0.0.0",
                 message_callback: Optional[Callable[[str], None]] = None,
                 status_callback: Optional[Callable[[TvLogStatus], None]] = None):
        """
        Initialize the listener.

        Args:
            port: Port the TV connects to
            host: Interface to bind
            message_callback: Called with every received message
            status_callback: Called when the listener status changes
        """
        self.port = port
        self.host = host
        self.message_callback = message_callback
        self.status_callback = status_callback
        self.status = TvLogStatus.STOPPED

        self._server = None
        self._thread: Optional[threading.Thread] = None
        self._connections = 0
        self._lock = threading.Lock()
        self._logger = logging.getLogger(__name__)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def bound_port(self) -> Optional[int]:
        """Port actually bound, useful when constructed with port 0."""
        if self._server is None:
            return None
        return self._server.socket.getsockname()[1]

    def _set_status(self, status: TvLogStatus) -> None:
        self.status = status
        if self.status_callback:
            try:
                self.status_callback(status)
            except Exception as e:
                self._logger.warning(f"Status callback error: {e}")

    def _emit(self, message: str) -> None:
        if self.message_callback:
            try:
                self.message_callback(message)
            except Exception as e:
                self._logger.warning(f"Message callback error: {e}")

    def _handle(self, connection: ServerConnection) -> None:
        with self._lock:
            self._connections += 1
        self._logger.info(f"TV connected from {connection.remote_address}")
        self._set_status(TvLogStatus.CONNECTED)

        try:
            for message in connection:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                self._emit(message)
        except ConnectionClosed:
            pass
        finally:
            with self._lock:
                self._connections -= 1
                remaining = self._connections
            self._logger.info("TV disconnected")
            if remaining == 0 and self._server is not None:
                self._set_status(TvLogStatus.NO_CONNECTIONS)

    def start(self) -> None:
        """
        Bind the port and serve in a daemon thread.

        Raises:
            OSError: If the port cannot be bound
        """
        if self.is_running:
            return

        self._server = serve(self._handle, self.host, self.port)
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="tv-log-listener", daemon=True
        )
        self._thread.start()
        self._logger.info(f"Listening for TV logs on ws://{self.host}:{self.port}")
        self._set_status(TvLogStatus.LISTENING)

    def stop(self) -> None:
        """Close the server and wait for the thread to finish."""
        server, self._server = self._server, None
        if server is not None:
            server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        self._set_status(TvLogStatus.STOPPED)

    def __enter__(self) -> 'TvLogService':
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()


def configure_from_config(config: Any, **callbacks) -> TvLogService:
    """
    Configure the TV log listener from application config.

    Args:
        config: Application configuration object
        **callbacks: message_callback and/or status_callback

    Returns:
        Listener bound to the diagnostic port (not started)
    """
    return TvLogService(port=config.jellyfin.diagnostic_port, **callbacks)
