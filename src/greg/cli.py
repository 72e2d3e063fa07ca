"""
greg CLI - play a stream through the supervised mpv player

Loads configuration, sets up logging, then plays a single URL while
printing progress until playback ends, fails, or is interrupted.
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from greg.core.config import ensure_directories, get_log_file_path, load_config
from greg.core.console import print_status, safe_print
from greg.core.output import setup_loguru
from greg.domain.playback import (
    ErrorEvent,
    MPVPlayer,
    PlaybackEndedEvent,
    PlayerError,
    PlayOptions,
    ProgressEvent,
    format_time,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="greg-play",
        description="Play a stream in mpv and report progress",
    )
    parser.add_argument("url", help="URL or file to play")
    parser.add_argument("--volume", type=int, help="Volume (0-100)")
    parser.add_argument("--start", type=float, default=0.0, help="Start position in seconds")
    parser.add_argument("--speed", type=float, help="Playback speed (1.0 = normal)")
    parser.add_argument("--fullscreen", action="store_true", help="Start fullscreen")
    parser.add_argument("--title", default="", help="Title shown by mpv")
    parser.add_argument("--referer", default="", help="HTTP referer for the stream")
    parser.add_argument("--debug", action="store_true", help="Keep mpv's own log output")
    parser.add_argument("--config", type=Path, help="Path to config.toml")
    return parser


def options_from_args(args: argparse.Namespace) -> PlayOptions:
    """Translate parsed arguments into PlayOptions."""
    return PlayOptions(
        start_time=args.start,
        volume=args.volume,
        speed=args.speed,
        fullscreen=args.fullscreen,
        title=args.title,
        referer=args.referer,
    )


def run_playback(player: MPVPlayer, url: str, options: PlayOptions) -> int:
    """Play `url` and block until it ends.

    Returns:
        Exit code (0 when playback reached the end, 1 on error)
    """
    events = player.subscribe()
    try:
        player.play(url, options)
    except PlayerError as e:
        safe_print(f"Cannot start playback: {e}", style="red")
        return 1

    safe_print(f"Playing {url}", style="cyan")
    try:
        for event in events:
            if isinstance(event, ProgressEvent):
                progress = event.progress
                state = "paused" if progress.paused else "playing"
                print_status(
                    f"{format_time(progress.current_time)} / "
                    f"{format_time(progress.duration)} "
                    f"({progress.percentage:5.1f}%) {state}"
                )
            elif isinstance(event, PlaybackEndedEvent):
                safe_print("\nPlayback finished", style="green")
                return 0
            elif isinstance(event, ErrorEvent):
                safe_print(f"\nPlayback error: {event.error}", style="red")
                return 1
    except KeyboardInterrupt:
        safe_print("\nInterrupted", style="yellow")
        return 0
    finally:
        events.close()
        player.stop()

    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for `greg-play`."""
    args = build_parser().parse_args(argv)

    ensure_directories()
    config = load_config(args.config)
    setup_loguru(
        get_log_file_path(config),
        level=config.logging.level,
        max_file_size_mb=config.logging.max_file_size_mb,
        backup_count=config.logging.backup_count,
        console_output=config.logging.console_output,
    )

    player = MPVPlayer(config=config.player, debug=args.debug or None)
    logger.info(f"greg-play starting on {player.platform.value}")
    return run_playback(player, args.url, options_from_args(args))


if __name__ == "__main__":
    sys.exit(main())
