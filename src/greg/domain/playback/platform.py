"""
Platform detection, mpv executable lookup and IPC address generation.

Everything that touches the host (OS name, temp directory, PATH lookup,
/proc/version) goes through `HostEnvironment` so tests can substitute a
fake host.
"""

import platform as _platform
import re
import secrets
import shutil
import socket
import subprocess
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from .exceptions import AddressGenerationError, ExecutableNotFoundError
from .models import PlayerInfo

APP_NAME = "greg"
KERNEL_VERSION_FILE = "/proc/version"
WSL_MARKERS = ("microsoft", "wsl")


class Platform(Enum):
    LINUX = "linux"
    WINDOWS = "windows"
    WSL = "wsl"
    MAC = "mac"


class TransportKind(Enum):
    UNIX_SOCKET = "unix"
    NAMED_PIPE = "pipe"
    TCP = "tcp"


@dataclass(frozen=True)
class TransportConfig:
    """IPC endpoint for one playback session."""

    kind: TransportKind
    address: str
    is_file_backed: bool  # True for Unix sockets (a file to clean up)


def _read_kernel_version() -> str:
    return Path(KERNEL_VERSION_FILE).read_text(encoding="utf-8", errors="replace")


@dataclass
class HostEnvironment:
    """Host collaborators consulted by the player."""

    system: Callable[[], str] = _platform.system
    temp_dir: Callable[[], str] = tempfile.gettempdir
    which: Callable[[str], Optional[str]] = shutil.which
    read_kernel_version: Callable[[], str] = _read_kernel_version
    token_bytes: Callable[[int], bytes] = secrets.token_bytes


DEFAULT_ENV = HostEnvironment()


def is_wsl(env: Optional[HostEnvironment] = None) -> bool:
    """Check /proc/version for Microsoft/WSL markers.

    An unreadable file means "not WSL".
    """
    env = env or DEFAULT_ENV
    try:
        version = env.read_kernel_version().lower()
    except OSError:
        return False
    return any(marker in version for marker in WSL_MARKERS)


def resolve_platform(env: Optional[HostEnvironment] = None) -> Platform:
    """Detect the current platform."""
    env = env or DEFAULT_ENV
    system = env.system().lower()

    if system == "windows":
        return Platform.WINDOWS
    if system == "darwin":
        return Platform.MAC
    if system == "linux" and is_wsl(env):
        return Platform.WSL
    return Platform.LINUX


def uses_windows_player(platform: Platform, wsl_use_windows_player: bool = False) -> bool:
    """Whether the session drives mpv.exe over a named pipe."""
    if platform == Platform.WINDOWS:
        return True
    return platform == Platform.WSL and wsl_use_windows_player


def get_mpv_executable(platform: Platform, wsl_use_windows_player: bool = False) -> str:
    """Return the mpv executable name for the platform.

    WSL defaults to the Linux mpv: its Unix socket is directly reachable,
    while a Windows named pipe is not without extra translation.
    """
    if uses_windows_player(platform, wsl_use_windows_player):
        return "mpv.exe"
    return "mpv"


def find_mpv_executable(
    platform: Platform,
    wsl_use_windows_player: bool = False,
    override: Optional[str] = None,
    env: Optional[HostEnvironment] = None,
) -> str:
    """Find the full path of the mpv executable.

    Raises:
        ExecutableNotFoundError: If mpv is not installed / not in PATH
    """
    env = env or DEFAULT_ENV
    executable = override or get_mpv_executable(platform, wsl_use_windows_player)

    path = env.which(executable)
    if path:
        return path

    if platform == Platform.WSL and wsl_use_windows_player:
        raise ExecutableNotFoundError(
            executable,
            "mpv.exe not found in PATH. Please install mpv on Windows "
            "and ensure it's in your Windows PATH",
        )
    raise ExecutableNotFoundError(executable)


def get_player_info(path: str, runner: Callable = subprocess.run) -> PlayerInfo:
    """Query `mpv --version`; an unknown version never fails the lookup."""
    version = "unknown"
    try:
        result = runner([path, "--version"], capture_output=True, text=True, timeout=5)
        match = re.search(r"mpv\s+v?(\S+)", result.stdout or "")
        if result.returncode == 0 and match:
            version = match.group(1)
    except (subprocess.SubprocessError, OSError) as e:
        logger.debug(f"Could not read mpv version from {path}: {e}")

    return PlayerInfo(name="mpv", version=version, path=path)


def _random_suffix(env: HostEnvironment) -> str:
    try:
        return env.token_bytes(8).hex()
    except Exception as e:
        raise AddressGenerationError(f"failed to generate IPC address: {e}") from e


def _free_loopback_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def generate_transport_config(
    platform: Platform,
    kind: Optional[TransportKind] = None,
    wsl_use_windows_player: bool = False,
    app_name: str = APP_NAME,
    env: Optional[HostEnvironment] = None,
) -> TransportConfig:
    """Generate a fresh IPC endpoint for the platform.

    Raises:
        AddressGenerationError: If no unique address could be produced
    """
    env = env or DEFAULT_ENV

    if kind == TransportKind.TCP:
        try:
            port = _free_loopback_port()
        except OSError as e:
            raise AddressGenerationError(f"no free loopback port: {e}") from e
        return TransportConfig(TransportKind.TCP, f"127.0.0.1:{port}", False)

    suffix = _random_suffix(env)

    if uses_windows_player(platform, wsl_use_windows_player):
        # Windows named pipe format: \\.\pipe\name
        return TransportConfig(
            TransportKind.NAMED_PIPE, rf"\\.\pipe\{app_name}-mpv-{suffix}", False
        )

    socket_path = Path(env.temp_dir()) / f"{app_name}-mpv-{suffix}.sock"
    return TransportConfig(TransportKind.UNIX_SOCKET, str(socket_path), True)


def get_ipc_argument(config: TransportConfig) -> str:
    """Return the mpv command-line argument for IPC."""
    return f"--input-ipc-server={config.address}"


def get_connection_string(config: TransportConfig) -> str:
    """Return the endpoint as a connection string (tcp:// for TCP)."""
    if config.kind == TransportKind.TCP:
        return f"tcp://{config.address}"
    return config.address
