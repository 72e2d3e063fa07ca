"""
Local IPC transports for talking to mpv.

One `Transport` subclass per `TransportKind`, picked once when the session's
TransportConfig is opened. Each knows how to tell when mpv's endpoint is
up, how to connect a `Channel` to it, and how to clean up after itself.
"""

import os
import socket
import threading
import time
from typing import Optional

from loguru import logger

from .exceptions import ConnectError, ProbeCancelledError, ReadinessTimeoutError
from .platform import TransportConfig, TransportKind

# Give mpv a moment to start before the first check
INITIAL_DELAY = 0.3
POLL_INTERVAL = 0.1
TRIAL_CONNECT_TIMEOUT = 0.2


class Channel:
    """A connected byte stream carrying newline-delimited JSON."""

    def send(self, data: bytes) -> None:
        raise NotImplementedError

    def readline(self, timeout: Optional[float] = None) -> bytes:
        """Read one line without its terminator.

        Raises:
            EOFError: The peer closed the connection
            TimeoutError: No full line arrived within `timeout`
            OSError: Any other transport failure
        """
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class SocketChannel(Channel):
    """Channel over a connected stream socket (Unix or TCP)."""

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self._buffer = b""

    def send(self, data: bytes) -> None:
        self._sock.settimeout(None)
        self._sock.sendall(data)

    def readline(self, timeout: Optional[float] = None) -> bytes:
        deadline = None if timeout is None else time.monotonic() + timeout
        while b"\n" not in self._buffer:
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError("timed out waiting for mpv response")
                self._sock.settimeout(remaining)
            else:
                self._sock.settimeout(None)
            try:
                chunk = self._sock.recv(4096)
            except socket.timeout as e:
                raise TimeoutError("timed out waiting for mpv response") from e
            if not chunk:
                raise EOFError("mpv closed the IPC connection")
            self._buffer += chunk

        line, self._buffer = self._buffer.split(b"\n", 1)
        return line

    def close(self) -> None:
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Peer already gone
        self._sock.close()


class PipeChannel(Channel):
    """Channel over a Windows named pipe opened as a file.

    Reads block until mpv answers or the pipe breaks; `timeout` is not
    supported by synchronous pipe handles.
    """

    def __init__(self, handle):
        self._handle = handle

    def send(self, data: bytes) -> None:
        self._handle.write(data)
        self._handle.flush()

    def readline(self, timeout: Optional[float] = None) -> bytes:
        line = self._handle.readline()
        if not line:
            raise EOFError("mpv closed the named pipe")
        return line.rstrip(b"\r\n")

    def close(self) -> None:
        self._handle.close()


class Transport:
    """Readiness probing, connection and cleanup for one IPC endpoint."""

    kind: TransportKind
    timeout: float = 5.0  # Max seconds to wait for the endpoint
    grace: float = 0.2  # Extra wait once the endpoint looks ready

    def __init__(self, config: TransportConfig):
        self.config = config

    @property
    def address(self) -> str:
        return self.config.address

    def is_ready(self) -> bool:
        raise NotImplementedError

    def connect(self) -> Channel:
        raise NotImplementedError

    def release(self) -> None:
        """Remove any artifact left by the endpoint."""

    def wait_ready(
        self,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> None:
        """Poll until the endpoint is connectable.

        Args:
            cancel: Set by the owner to abandon the wait
            deadline: Absolute time.monotonic() cutoff, on top of self.timeout

        Raises:
            ReadinessTimeoutError: Endpoint not ready in time
            ProbeCancelledError: `cancel` was set
        """
        cancel = cancel or threading.Event()
        started = time.monotonic()
        limit = started + self.timeout
        if deadline is not None:
            limit = min(limit, deadline)

        if cancel.wait(INITIAL_DELAY):
            raise ProbeCancelledError(f"probe for {self.address} cancelled")

        while True:
            if self.is_ready():
                logger.debug(f"IPC endpoint ready: {self.address}")
                # Let the listener finish binding
                if cancel.wait(self.grace):
                    raise ProbeCancelledError(f"probe for {self.address} cancelled")
                return

            if time.monotonic() >= limit:
                raise ReadinessTimeoutError(self.address, limit - started)

            if cancel.wait(POLL_INTERVAL):
                raise ProbeCancelledError(f"probe for {self.address} cancelled")


class UnixSocketTransport(Transport):
    kind = TransportKind.UNIX_SOCKET

    def is_ready(self) -> bool:
        return os.path.exists(self.address)

    def connect(self) -> Channel:
        if not hasattr(socket, "AF_UNIX"):
            raise ConnectError("Unix sockets are not supported on this platform")

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(self.address)
        except OSError as e:
            sock.close()
            raise ConnectError(f"{self.address}: {e}") from e
        return SocketChannel(sock)

    def release(self) -> None:
        try:
            os.unlink(self.address)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove mpv socket {self.address}: {e}")


class NamedPipeTransport(Transport):
    kind = TransportKind.NAMED_PIPE
    # mpv.exe takes longer to create its pipe
    timeout = 10.0

    def _open(self):
        return open(self.address, "r+b", buffering=0)

    def is_ready(self) -> bool:
        try:
            handle = self._open()
        except OSError:
            return False
        handle.close()
        return True

    def connect(self) -> Channel:
        try:
            return PipeChannel(self._open())
        except OSError as e:
            raise ConnectError(f"{self.address}: {e}") from e


class TcpTransport(Transport):
    kind = TransportKind.TCP
    timeout = 10.0
    grace = 0.3

    @property
    def endpoint(self) -> tuple[str, int]:
        host, _, port = self.address.rpartition(":")
        return host or "127.0.0.1", int(port)

    def is_ready(self) -> bool:
        try:
            with socket.create_connection(self.endpoint, timeout=TRIAL_CONNECT_TIMEOUT):
                return True
        except OSError:
            return False

    def connect(self) -> Channel:
        try:
            sock = socket.create_connection(self.endpoint, timeout=TRIAL_CONNECT_TIMEOUT * 10)
        except OSError as e:
            raise ConnectError(f"tcp://{self.address}: {e}") from e
        return SocketChannel(sock)


_TRANSPORTS: dict[TransportKind, type[Transport]] = {
    TransportKind.UNIX_SOCKET: UnixSocketTransport,
    TransportKind.NAMED_PIPE: NamedPipeTransport,
    TransportKind.TCP: TcpTransport,
}


def open_transport(config: TransportConfig) -> Transport:
    """Create the Transport implementation for a config's kind."""
    return _TRANSPORTS[config.kind](config)
