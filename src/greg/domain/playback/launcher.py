"""
mpv command line construction and detached process launch.
"""

import os
import subprocess
import time
from typing import Any, Callable, Optional

from loguru import logger

from .exceptions import SpawnError
from .models import PlayOptions
from .platform import TransportConfig, get_ipc_argument

# Use a default user agent to avoid 403s from stream hosts
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Headers already passed through dedicated mpv options
_DEDICATED_HEADERS = {"user-agent", "referer"}

# On Windows the process may die right away if it can't create its pipe
SPAWN_GRACE_PERIOD = 0.1

Spawner = Callable[[list[str]], Any]


def _num(value: float) -> str:
    """Format a number for mpv without a trailing ".0" (30, 1.25, 7265.375)."""
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def build_mpv_args(
    ipc_config: TransportConfig,
    url: str,
    opts: Optional[PlayOptions] = None,
    load_user_config: bool = False,
    debug: bool = False,
) -> list[str]:
    """Build the command-line arguments for mpv (executable excluded).

    The URL is always the last argument.
    """
    opts = opts or PlayOptions()
    args = [
        get_ipc_argument(ipc_config),
        "--idle=yes",  # Keep mpv running even after playback ends
        "--no-ytdl",  # Streams are already resolved, skip the yt-dlp hook
    ]

    if not load_user_config:
        args.append("--no-config")

    if not debug:
        # Hide verbose track info but keep important messages
        args.append("--msg-level=all=warn")

    if opts.start_time and opts.start_time > 0:
        args.append(f"--start={_num(opts.start_time)}")

    if opts.volume is not None:
        args.append(f"--volume={max(0, min(100, int(opts.volume)))}")

    if opts.speed is not None and opts.speed > 0:
        args.append(f"--speed={_num(opts.speed)}")

    if opts.fullscreen:
        args.append("--fullscreen")

    if opts.subtitle_url:
        args.append(f"--sub-file={opts.subtitle_url}")

    if opts.subtitle_lang:
        args.append(f"--slang={opts.subtitle_lang}")

    if opts.subtitle_delay:
        args.append(f"--sub-delay={_num(opts.subtitle_delay)}")

    if opts.audio_track > 0:
        args.append(f"--aid={opts.audio_track}")

    args.append(f"--user-agent={opts.user_agent or DEFAULT_USER_AGENT}")

    # Dedicated --referrer is more reliable than http-header-fields
    if opts.referer:
        args.append(f"--referrer={opts.referer}")

    headers = [
        f"{key}: {value}"
        for key, value in sorted(opts.headers.items())
        if key.lower() not in _DEDICATED_HEADERS
    ]
    if headers:
        args.append(f"--http-header-fields={','.join(headers)}")

    if opts.title:
        args.append(f"--force-media-title={opts.title}")

    args.extend(opts.mpv_args)

    # URL must be last
    args.append(url)
    return args


def spawn_detached(cmd: list[str]) -> subprocess.Popen:
    """Start a process with no terminal streams, outside our signal group.

    Stdin/stdout/stderr go to DEVNULL so mpv neither steals keyboard input
    nor draws over the TUI. A new session (POSIX) or process group
    (Windows) keeps Ctrl+C aimed at us from reaching mpv.
    """
    kwargs: dict[str, Any] = {
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
    }
    if os.name == "nt":
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs["start_new_session"] = True

    return subprocess.Popen(cmd, **kwargs)


def launch(
    executable: str,
    args: list[str],
    spawner: Optional[Spawner] = None,
    grace_period: float = SPAWN_GRACE_PERIOD,
):
    """Spawn mpv and verify it got a process id.

    Returns:
        The process handle (subprocess.Popen or a spawner-provided equivalent)

    Raises:
        SpawnError: If the process could not be started
    """
    spawner = spawner or spawn_detached
    cmd = [executable, *args]
    logger.debug(f"Launching mpv: {cmd}")

    try:
        process = spawner(cmd)
    except (OSError, ValueError, subprocess.SubprocessError) as e:
        raise SpawnError(f"failed to start {executable}: {e}") from e

    time.sleep(grace_period)
    if process is None or not getattr(process, "pid", None):
        raise SpawnError("mpv process failed to start")

    logger.info(f"mpv started (pid={process.pid})")
    return process
