"""Player-specific exceptions for error handling."""


class PlayerError(Exception):
    """Base exception for player operations."""

    pass


class ExecutableNotFoundError(PlayerError):
    """Raised when the mpv binary cannot be located."""

    def __init__(self, executable: str, message: str = None):
        self.executable = executable
        super().__init__(
            message or f"{executable} not found in PATH. Please install mpv"
        )


class AddressGenerationError(PlayerError):
    """Raised when a unique IPC address cannot be generated."""

    pass


class SpawnError(PlayerError):
    """Raised when the mpv process fails to start."""

    pass


class ReadinessTimeoutError(PlayerError):
    """Raised when the IPC endpoint does not become connectable in time."""

    def __init__(self, address: str, timeout: float, message: str = None):
        self.address = address
        self.timeout = timeout
        super().__init__(
            message or f"timeout waiting for IPC at {address} after {timeout:.1f}s"
        )


class ProbeCancelledError(PlayerError):
    """Raised when readiness probing is cancelled by its owner."""

    pass


class ConnectError(PlayerError):
    """Raised when connecting to a ready IPC endpoint fails."""

    pass


class TransportError(PlayerError):
    """Raised when a request over a live IPC connection fails."""

    pass


class IPCCommandError(TransportError):
    """Raised when mpv answers a request with an error status."""

    def __init__(self, command: list, error: str):
        self.command = command
        self.error = error
        super().__init__(f"mpv rejected {command!r}: {error}")


class DeadTransportError(TransportError):
    """Raised when repeated property reads indicate a dead connection."""

    def __init__(self, failures: int, message: str = None):
        self.failures = failures
        super().__init__(
            message
            or f"IPC connection failed (failed to get {failures} properties)"
        )


class NoFileLoadedError(TransportError):
    """Raised when mpv answers but has no file loaded (idle after end of file)."""

    def __init__(self, message: str = "mpv has no file loaded"):
        super().__init__(message)


class NotInitializedError(PlayerError):
    """Raised when the API is used before an IPC connection exists."""

    def __init__(self, message: str = "player not initialized"):
        super().__init__(message)


class PlayerStoppedError(PlayerError):
    """Raised when progress is requested from a stopped player."""

    def __init__(self, message: str = "player is stopped"):
        super().__init__(message)


class UnexpectedExitError(PlayerError):
    """Reported when mpv exits while the session was still active."""

    def __init__(self, returncode: int | None):
        self.returncode = returncode
        super().__init__(f"mpv process exited unexpectedly (exit status {returncode})")
