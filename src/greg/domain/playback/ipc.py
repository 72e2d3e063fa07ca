"""mpv JSON IPC client over a connected transport channel."""

import itertools
import json
import threading
from typing import Any, Optional

from loguru import logger

from .exceptions import IPCCommandError, TransportError
from .transport import Channel, Transport

DEFAULT_REQUEST_TIMEOUT = 2.0


class MpvIPCClient:
    """Request/response client for mpv's JSON IPC protocol.

    Each request carries a request_id; replies are matched on it, and
    unsolicited event lines or stale replies are skipped. Requests are
    serialized, so the client is safe to share between threads.

    A lost connection (EOF or socket error) closes the client for good:
    every later request fails with TransportError, nothing is retried.
    """

    def __init__(self, channel: Channel, request_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self._channel = channel
        self._request_timeout = request_timeout
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._closed = False

    @classmethod
    def connect(cls, transport: Transport, request_timeout: float = DEFAULT_REQUEST_TIMEOUT) -> "MpvIPCClient":
        """Connect to a ready transport.

        Raises:
            ConnectError: If the endpoint refuses the connection
        """
        return cls(transport.connect(), request_timeout=request_timeout)

    @property
    def closed(self) -> bool:
        return self._closed

    def request(self, *command: Any, timeout: Optional[float] = None) -> Any:
        """Send a command and return the reply's `data` field.

        Raises:
            IPCCommandError: mpv answered with an error status
            TransportError: The connection failed or timed out
        """
        timeout = self._request_timeout if timeout is None else timeout
        with self._lock:
            if self._closed:
                raise TransportError("mpv IPC connection is closed")

            request_id = next(self._ids)
            payload = json.dumps({"command": list(command), "request_id": request_id}) + "\n"
            try:
                self._channel.send(payload.encode("utf-8"))
                response = self._read_response(request_id, timeout)
            except TimeoutError as e:
                # Connection stays usable; a late reply is skipped by request_id
                raise TransportError(f"mpv did not answer {list(command)!r}: {e}") from e
            except (EOFError, OSError) as e:
                self._close_locked()
                raise TransportError(f"mpv IPC connection lost: {e}") from e

        error = response.get("error", "success")
        if error != "success":
            raise IPCCommandError(list(command), error)
        return response.get("data")

    def _read_response(self, request_id: int, timeout: Optional[float]) -> dict:
        while True:
            line = self._channel.readline(timeout=timeout)
            if not line.strip():
                continue
            try:
                message = json.loads(line.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError):
                logger.debug(f"Ignoring malformed mpv IPC line: {line[:200]!r}")
                continue

            if not isinstance(message, dict):
                continue
            if "event" in message:
                logger.trace(f"mpv event: {message.get('event')}")
                continue
            if message.get("request_id") == request_id:
                return message

    def get_property(self, name: str, timeout: Optional[float] = None) -> Any:
        """Get a property value from mpv."""
        return self.request("get_property", name, timeout=timeout)

    def set_property(self, name: str, value: Any, timeout: Optional[float] = None) -> None:
        """Set a property value in mpv."""
        self.request("set_property", name, value, timeout=timeout)

    def quit(self, timeout: Optional[float] = None) -> None:
        """Ask mpv to exit."""
        self.request("quit", timeout=timeout)

    def close(self) -> None:
        """Close the connection (safe to call more than once)."""
        with self._lock:
            self._close_locked()

    def _close_locked(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._channel.close()
        except OSError as e:
            logger.debug(f"Error closing mpv IPC channel: {e}")
