"""
Playback contract shared between the mpv supervisor and its consumers.

The surrounding application (TUI, watch tracking) only ever talks to a
`Player`; the value types here are what flows across that boundary.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Callable, Optional, Protocol, Union

Seconds = Union[float, int, timedelta]


def to_seconds(value: Seconds) -> float:
    """Normalize a float/int/timedelta duration to float seconds."""
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class PlaybackState(str, Enum):
    """State of the player."""

    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    LOADING = "loading"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PlayOptions:
    """Options for starting playback.

    Durations are in seconds. `None` leaves the mpv default in place, so
    `volume=0` really mutes.
    """

    # Playback
    start_time: float = 0.0
    volume: Optional[int] = None  # 0-100
    speed: Optional[float] = None  # 1.0 = normal
    fullscreen: bool = False

    # Subtitles
    subtitle_url: str = ""
    subtitle_lang: str = ""
    subtitle_delay: float = 0.0

    # Audio
    audio_track: int = 0

    # Raw mpv arguments, inserted before the URL
    mpv_args: tuple[str, ...] = ()

    # HTTP
    headers: dict[str, str] = field(default_factory=dict, hash=False)
    referer: str = ""
    user_agent: str = ""

    # Display / tracking metadata
    title: str = ""
    episode: int = 0
    season: int = 0


@dataclass(frozen=True)
class PlaybackProgress:
    """Snapshot of the current playback position."""

    current_time: float = 0.0
    duration: float = 0.0
    percentage: float = 0.0  # 0.0 - 100.0
    paused: bool = False
    volume: int = 100
    speed: float = 1.0
    eof: bool = False  # End of file reached

    @property
    def remaining(self) -> float:
        return max(0.0, self.duration - self.current_time)


@dataclass(frozen=True)
class PlayerInfo:
    """Information about the player binary."""

    name: str  # mpv
    version: str
    path: str  # Full path to binary


def format_time(seconds: float) -> str:
    """Format time in seconds to MM:SS (or H:MM:SS past an hour)."""
    if seconds < 0:
        return "00:00"

    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class Player(Protocol):
    """Interface the application uses to drive a video player."""

    # Playback control
    def play(self, url: str, options: Optional[PlayOptions] = None) -> None: ...

    def stop(self) -> None: ...

    # Progress monitoring
    def get_progress(self) -> PlaybackProgress: ...

    def seek(self, position: Seconds) -> None: ...

    # Callbacks
    def on_progress_update(self, callback: Callable[[PlaybackProgress], None]): ...

    def on_playback_end(self, callback: Callable[[], None]): ...

    def on_error(self, callback: Callable[[Exception], None]): ...

    # Status
    def is_playing(self) -> bool: ...

    def is_paused(self) -> bool: ...
