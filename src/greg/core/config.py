"""
Configuration management for greg
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

VALID_TRANSPORTS = {"auto", "tcp"}


@dataclass
class PlayerConfig:
    """Configuration for the external mpv player."""

    mpv_path: Optional[str] = None  # Explicit binary (default: search PATH)
    load_user_config: bool = False  # Let mpv read ~/.config/mpv
    debug: bool = False  # Keep mpv's own log output
    wsl_use_windows_player: bool = False  # WSL: mpv.exe + named pipe
    transport: str = "auto"  # 'auto' (per platform) or 'tcp'
    init_timeout: float = 15.0  # Seconds for IPC setup after spawn
    progress_interval: float = 1.0  # Seconds between progress polls
    quit_timeout: float = 0.5  # Max wait for the quit command on stop

    def validate(self) -> None:
        """Validate player configuration values.

        Raises:
            ValueError: If configuration values are invalid
        """
        if self.transport not in VALID_TRANSPORTS:
            raise ValueError(
                f"Invalid transport: {self.transport!r}. "
                f"Valid transports are: {VALID_TRANSPORTS}"
            )
        for name in ("init_timeout", "progress_interval", "quit_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = (
        None  # Custom log file path (default: ~/.local/share/greg/greg.log)
    )
    max_file_size_mb: int = 10  # Maximum log file size before rotation
    backup_count: int = 5  # Number of backup files to keep
    console_output: bool = False  # Also output to console (for debugging)


@dataclass
class Config:
    """Main configuration object."""

    player: PlayerConfig = field(default_factory=PlayerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "greg"
    return Path.home() / ".config" / "greg"


def get_config_path() -> Path:
    """Get the main configuration file path.

    Checks for config.toml in the following order:
    1. Current working directory
    2. XDG_CONFIG_HOME/greg (or ~/.config/greg)
    """
    local_config = Path.cwd() / "config.toml"
    if local_config.exists():
        return local_config

    return get_config_dir() / "config.toml"


def get_data_dir() -> Path:
    """Get the data directory path."""
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "greg"
    return Path.home() / ".local" / "share" / "greg"


def get_log_file_path(config: Config) -> Path:
    """Resolve the log file from config, defaulting into the data directory."""
    if config.logging.log_file:
        return Path(config.logging.log_file)
    return get_data_dir() / "greg.log"


def create_default_config() -> str:
    """Create a default configuration TOML content."""
    return """
# greg configuration

[player]
# Path to the mpv binary (searched in PATH if not specified)
# mpv_path = "/usr/bin/mpv"

# Load the user's own mpv config (~/.config/mpv/mpv.conf)
load_user_config = false

# Keep mpv's own log output (otherwise only warnings)
debug = false

# Under WSL, launch the Windows mpv.exe over a named pipe
# instead of the Linux mpv over a Unix socket
wsl_use_windows_player = false

# IPC transport: "auto" picks per platform, "tcp" forces loopback TCP
transport = "auto"

# Seconds to wait for mpv's IPC endpoint after launch
init_timeout = 15.0

# Seconds between progress polls
progress_interval = 1.0

# Max seconds to wait for mpv to acknowledge quit
quit_timeout = 0.5

[logging]
# Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
level = "INFO"

# Custom log file path (default: ~/.local/share/greg/greg.log)
# log_file = "/path/to/custom/greg.log"

# Maximum log file size in MB before rotation
max_file_size_mb = 10

# Number of backup log files to keep
backup_count = 5

# Also output logs to console (useful for debugging)
console_output = false
""".strip()


def _env_flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def apply_env_overrides(config: Config) -> Config:
    """Apply GREG_* environment variables on top of file values."""
    mpv_path = os.environ.get("GREG_MPV_PATH")
    debug = os.environ.get("GREG_DEBUG")
    log_level = os.environ.get("GREG_LOG_LEVEL")

    if mpv_path:
        config.player.mpv_path = mpv_path
    if debug:
        config.player.debug = _env_flag(debug)
    if log_level:
        config.logging.level = log_level.upper()

    return config


def parse_config(toml_data: dict) -> Config:
    """Build a Config from parsed TOML data, keeping defaults for missing keys."""
    config = Config()

    if "player" in toml_data:
        player_data = toml_data["player"]
        mpv_path = player_data.get("mpv_path")
        if mpv_path:
            mpv_path = str(Path(mpv_path).expanduser())
        config.player = PlayerConfig(
            mpv_path=mpv_path,
            load_user_config=player_data.get(
                "load_user_config", config.player.load_user_config
            ),
            debug=player_data.get("debug", config.player.debug),
            wsl_use_windows_player=player_data.get(
                "wsl_use_windows_player", config.player.wsl_use_windows_player
            ),
            transport=player_data.get("transport", config.player.transport),
            init_timeout=float(
                player_data.get("init_timeout", config.player.init_timeout)
            ),
            progress_interval=float(
                player_data.get("progress_interval", config.player.progress_interval)
            ),
            quit_timeout=float(
                player_data.get("quit_timeout", config.player.quit_timeout)
            ),
        )
        config.player.validate()

    if "logging" in toml_data:
        logging_data = toml_data["logging"]
        log_file = logging_data.get("log_file")
        if log_file:
            log_file = str(Path(log_file).expanduser())
        config.logging = LoggingConfig(
            level=logging_data.get("level", config.logging.level).upper(),
            log_file=log_file,
            max_file_size_mb=logging_data.get(
                "max_file_size_mb", config.logging.max_file_size_mb
            ),
            backup_count=logging_data.get("backup_count", config.logging.backup_count),
            console_output=logging_data.get(
                "console_output", config.logging.console_output
            ),
        )

    return config


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file or create default.

    Environment variables override TOML values:
    - GREG_MPV_PATH
    - GREG_DEBUG
    - GREG_LOG_LEVEL
    """
    # Load .env file from config directory if it exists
    from dotenv import load_dotenv

    env_path = get_config_dir() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config_path = config_path or get_config_path()

    if not config_path.exists():
        # Create config directory and default file
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_default_config())
        print(f"Created default configuration at: {config_path}")
        return apply_env_overrides(Config())

    try:
        with open(config_path, "rb") as f:
            toml_data = tomllib.load(f)
        config = parse_config(toml_data)
    except (OSError, tomllib.TOMLDecodeError, ValueError, TypeError) as e:
        print(f"Error loading configuration from {config_path}: {e}")
        print("Using default configuration.")
        config = Config()

    return apply_env_overrides(config)


def ensure_directories() -> None:
    """Ensure all necessary directories exist."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    get_data_dir().mkdir(parents=True, exist_ok=True)
