"""Playback domain - external mpv supervision.

This domain handles:
- Platform detection and per-session IPC endpoints
- Launching mpv detached from the terminal
- MPV integration via JSON IPC (Unix socket, named pipe or TCP)
- Player state management (loading, playing, paused, stopped, error)
- Progress, end-of-playback and error events
"""

# Player contract
from .models import (
    Player,
    PlaybackProgress,
    PlaybackState,
    PlayerInfo,
    PlayOptions,
    format_time,
)

# Player integration
from .player import MPVPlayer, PlaybackSession, collect_progress, create_player

# Events
from .events import (
    CallbackHandle,
    ErrorEvent,
    PlaybackEndedEvent,
    ProgressEvent,
    Subscription,
)

# Platform and transports
from .platform import (
    HostEnvironment,
    Platform,
    TransportConfig,
    TransportKind,
    find_mpv_executable,
    generate_transport_config,
    get_mpv_executable,
    resolve_platform,
)
from .launcher import build_mpv_args
from .ipc import MpvIPCClient

# Errors
from .exceptions import (
    AddressGenerationError,
    ConnectError,
    DeadTransportError,
    ExecutableNotFoundError,
    IPCCommandError,
    NoFileLoadedError,
    NotInitializedError,
    PlayerError,
    PlayerStoppedError,
    ProbeCancelledError,
    ReadinessTimeoutError,
    SpawnError,
    TransportError,
    UnexpectedExitError,
)

__all__ = [
    # Contract
    "Player",
    "PlaybackProgress",
    "PlaybackState",
    "PlayerInfo",
    "PlayOptions",
    "format_time",
    # Player
    "MPVPlayer",
    "PlaybackSession",
    "collect_progress",
    "create_player",
    # Events
    "CallbackHandle",
    "ErrorEvent",
    "PlaybackEndedEvent",
    "ProgressEvent",
    "Subscription",
    # Platform / transports
    "HostEnvironment",
    "Platform",
    "TransportConfig",
    "TransportKind",
    "find_mpv_executable",
    "generate_transport_config",
    "get_mpv_executable",
    "resolve_platform",
    "build_mpv_args",
    "MpvIPCClient",
    # Errors
    "AddressGenerationError",
    "ConnectError",
    "DeadTransportError",
    "ExecutableNotFoundError",
    "IPCCommandError",
    "NoFileLoadedError",
    "NotInitializedError",
    "PlayerError",
    "PlayerStoppedError",
    "ProbeCancelledError",
    "ReadinessTimeoutError",
    "SpawnError",
    "TransportError",
    "UnexpectedExitError",
]
