"""Core infrastructure layer - no playback logic dependencies.

This module provides foundation-level services:
- Configuration management (TOML)
- Logging setup (Loguru)
- Console management (Rich)
"""

# Configuration
from .config import (
    Config,
    LoggingConfig,
    PlayerConfig,
    load_config,
    parse_config,
    get_config_dir,
    get_config_path,
    get_data_dir,
    get_log_file_path,
    create_default_config,
    ensure_directories,
)

# Logging
from .output import setup_loguru

# Console
from .console import get_console, safe_print, print_status

__all__ = [
    # Config
    "Config",
    "LoggingConfig",
    "PlayerConfig",
    "load_config",
    "parse_config",
    "get_config_dir",
    "get_config_path",
    "get_data_dir",
    "get_log_file_path",
    "create_default_config",
    "ensure_directories",
    # Logging
    "setup_loguru",
    # Console
    "get_console",
    "safe_print",
    "print_status",
]
