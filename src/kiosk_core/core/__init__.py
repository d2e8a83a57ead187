"""Core infrastructure layer - no business logic dependencies.

This module provides foundation-level services:
- Configuration management (TOML + .env)
- Logging setup (Loguru)
- Console management (Rich)
- Host health sampling (psutil)

Clean architecture principle: The core layer has no dependencies on
domain or application layers.
"""

# Configuration
from .config import (
    CacheConfig,
    ChannelConfig,
    Config,
    DisplayConfig,
    LoggingConfig,
    SchedulerConfig,
    ServerConfig,
    SessionConfig,
    create_default_config,
    ensure_directories,
    get_config_dir,
    get_config_path,
    get_data_dir,
    load_config,
)

# Logging
from .output import setup_loguru

# Console
from .console import format_size, get_console, print_table, safe_print

# Health
from .health import collect_health_report

__all__ = [
    # Config
    "CacheConfig",
    "ChannelConfig",
    "Config",
    "DisplayConfig",
    "LoggingConfig",
    "SchedulerConfig",
    "ServerConfig",
    "SessionConfig",
    "create_default_config",
    "ensure_directories",
    "get_config_dir",
    "get_config_path",
    "get_data_dir",
    "load_config",
    # Logging
    "setup_loguru",
    # Console
    "format_size",
    "get_console",
    "print_table",
    "safe_print",
    # Health
    "collect_health_report",
]
