"""
Configuration management for the kiosk core
"""

import os
import socket
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from loguru import logger


@dataclass
class ServerConfig:
    """Configuration for the management server connection."""

    url: str = "http://localhost:5001"
    device_token: str = ""
    device_id: str = field(default_factory=socket.gethostname)

    def validate(self) -> None:
        """Validate server configuration values.

        Raises:
            ValueError: If the server URL is not an http(s) URL
        """
        if not self.url.startswith(("http://", "https://")):
            raise ValueError(f"Server URL must start with http:// or https://: {self.url}")

    @property
    def websocket_url(self) -> str:
        """Event channel endpoint derived from the HTTP base URL."""
        base = self.url.rstrip("/")
        if base.startswith("https://"):
            return "wss://" + base[len("https://") :]
        return "ws://" + base[len("http://") :]


@dataclass
class DisplayConfig:
    """Configuration for the rendering surface."""

    width: int = 1920
    height: int = 1080
    kiosk_mode: bool = False
    headless: bool = False
    profile_dir: Optional[str] = None  # Default: <data_dir>/browser-profile

    def validate(self) -> None:
        """Validate display configuration values.

        Raises:
            ValueError: If the display size is not positive
        """
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Display size must be positive, got {self.width}x{self.height}"
            )


@dataclass
class SchedulerConfig:
    """Timings for content rotation. All values are seconds."""

    heartbeat_interval: float = 5.0
    stall_retry: float = 60.0  # No item qualifies right now
    fallback_duration: float = 15.0  # Zero-duration item in a multi-item playlist
    cache_wait: float = 300.0  # Max wait for a cacheable item to become Ready
    cache_poll: float = 1.0
    closed_retry: float = 10.0  # Session closed or degraded
    crash_retry: float = 7.0  # Surface crash or fatal session fault
    error_retry: float = 3.0  # Any other render failure
    screenshot_delay: float = 3.0  # Post-rotation screenshot

    def validate(self) -> None:
        """Validate scheduler timings.

        Raises:
            ValueError: If any timing is negative or the heartbeat is zero
        """
        for name, value in vars(self).items():
            if value < 0:
                raise ValueError(f"Scheduler timing '{name}' must not be negative: {value}")
        if self.heartbeat_interval == 0:
            raise ValueError("Scheduler heartbeat_interval must be greater than zero")


@dataclass
class SessionConfig:
    """Configuration for the browser session lifecycle."""

    navigation_timeout_ms: int = 30000
    max_navigations: int = 50  # Recreate the surface after this many navigations
    restart_interval_hours: float = 6.0  # Full session restart after this uptime
    max_session_recoveries: int = 5  # Consecutive failures before going degraded
    max_surface_faults: int = 2
    fault_window_seconds: float = 5.0
    recovery_cooldown: float = 3.0
    process_names: List[str] = field(
        default_factory=lambda: ["chrome", "chromium", "chrome.exe"]
    )


@dataclass
class CacheConfig:
    """Configuration for the local content cache."""

    directory: Optional[str] = None  # Default: <data_dir>/cache
    extensions: List[str] = field(
        default_factory=lambda: [
            ".mp4",
            ".webm",
            ".avi",
            ".mov",
            ".mkv",
            ".m4v",
            ".flv",
            ".wmv",
            ".mpg",
            ".mpeg",
            ".3gp",
        ]
    )
    default_extension: str = ".mp4"
    download_timeout: float = 600.0
    chunk_size: int = 8192

    def validate(self) -> None:
        """Validate cache configuration values.

        Raises:
            ValueError: If an extension does not start with a dot
        """
        invalid = [ext for ext in self.extensions if not ext.startswith(".")]
        if invalid:
            raise ValueError(f"Cache extensions must start with '.': {invalid}")
        if self.chunk_size <= 0:
            raise ValueError(f"Cache chunk_size must be positive: {self.chunk_size}")


@dataclass
class ChannelConfig:
    """Configuration for the event channel to the management server."""

    reconnect_interval: float = 5.0
    config_grace_period: float = 15.0  # Ignore config:update this long after start
    screenshot_interval: float = 30.0
    health_report_interval: float = 60.0
    screencast_fps: int = 10


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = None  # Default: <data_dir>/kiosk-core.log
    console_output: bool = True  # Also log to stderr


@dataclass
class Config:
    """Main configuration object."""

    server: ServerConfig = field(default_factory=ServerConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    channel: ChannelConfig = field(default_factory=ChannelConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Validate every section.

        Raises:
            ValueError: If any section is invalid
        """
        self.server.validate()
        self.display.validate()
        self.scheduler.validate()
        self.cache.validate()

    @property
    def cache_dir(self) -> Path:
        if self.cache.directory:
            return Path(self.cache.directory).expanduser().resolve()
        return get_data_dir() / "cache"

    @property
    def profile_dir(self) -> Path:
        if self.display.profile_dir:
            return Path(self.display.profile_dir).expanduser().resolve()
        return get_data_dir() / "browser-profile"

    @property
    def log_file(self) -> Path:
        if self.logging.log_file:
            return Path(self.logging.log_file).expanduser()
        return get_data_dir() / "kiosk-core.log"


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "kiosk-core"
    return Path.home() / ".config" / "kiosk-core"


def get_data_dir() -> Path:
    """Get the data directory path."""
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "kiosk-core"
    return Path.home() / ".local" / "share" / "kiosk-core"


def get_config_path() -> Path:
    """Get the main configuration file path.

    Checks for config.toml in the following order:
    1. Current working directory
    2. XDG_CONFIG_HOME/kiosk-core (or ~/.config/kiosk-core)
    """
    local_config = Path.cwd() / "config.toml"
    if local_config.exists():
        return local_config
    return get_config_dir() / "config.toml"


def create_default_config() -> str:
    """Create a default configuration TOML content."""
    return """
# Kiosk Core Configuration

[server]
# Management server base URL (relative content URLs resolve against it)
url = "http://localhost:5001"

# Device token used for registration (or set KIOSK_DEVICE_TOKEN)
# device_token = "your-device-token"

[display]
width = 1920
height = 1080

# Fullscreen kiosk mode (hides the OS shell while running)
kiosk_mode = false

# Run the browser without a window (useful on servers)
headless = false

# Browser profile directory (default: ~/.local/share/kiosk-core/browser-profile)
# profile_dir = "/var/lib/kiosk/profile"

[scheduler]
# Seconds between playback state heartbeats
heartbeat_interval = 5

# Seconds to wait when no playlist item is displayable right now
stall_retry = 60

# Display time for zero-duration items in multi-item playlists
fallback_duration = 15

# Maximum seconds to wait for a video to finish caching
cache_wait = 300

[session]
navigation_timeout_ms = 30000

# Recreate the page after this many navigations
max_navigations = 50

# Restart the whole browser after this many hours of uptime
restart_interval_hours = 6

# Consecutive failed recoveries before giving up
max_session_recoveries = 5

# Browser process names killed during recovery (empty list disables)
process_names = ["chrome", "chromium", "chrome.exe"]

[cache]
# Video cache directory (default: ~/.local/share/kiosk-core/cache)
# directory = "/var/cache/kiosk"

# Seconds before a download is abandoned
download_timeout = 600

[channel]
# Seconds between reconnect attempts
reconnect_interval = 5

# Seconds between periodic screenshots (0 disables)
screenshot_interval = 30

[logging]
# Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
level = "INFO"

# Custom log file path (default: ~/.local/share/kiosk-core/kiosk-core.log)
# log_file = "/var/log/kiosk-core.log"

# Also output logs to the console
console_output = true
""".strip()


def _build_section(cls, data: dict, current):
    """Overlay known keys from a TOML table onto a section's current values."""
    values = {
        name: data.get(name, getattr(current, name))
        for name in current.__dataclass_fields__
    }
    return cls(**values)


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file or create default.

    Environment variables override TOML values:
    - KIOSK_SERVER_URL
    - KIOSK_DEVICE_TOKEN
    """
    from dotenv import load_dotenv

    env_path = get_config_dir() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config_path = config_path or get_config_path()
    config = Config()

    if not config_path.exists():
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_default_config())
        logger.info(f"Created default configuration at: {config_path}")
    else:
        try:
            with open(config_path, "rb") as f:
                toml_data = tomllib.load(f)

            sections = {
                "server": ServerConfig,
                "display": DisplayConfig,
                "scheduler": SchedulerConfig,
                "session": SessionConfig,
                "cache": CacheConfig,
                "channel": ChannelConfig,
                "logging": LoggingConfig,
            }
            for name, cls in sections.items():
                if name in toml_data:
                    section = _build_section(cls, toml_data[name], getattr(config, name))
                    setattr(config, name, section)

        except (OSError, tomllib.TOMLDecodeError, TypeError) as e:
            logger.error(f"Error loading configuration from {config_path}: {e}")
            logger.warning("Using default configuration.")
            config = Config()

    server_url = os.environ.get("KIOSK_SERVER_URL")
    if server_url:
        config.server.url = server_url
    device_token = os.environ.get("KIOSK_DEVICE_TOKEN")
    if device_token:
        config.server.device_token = device_token

    config.validate()
    return config


def ensure_directories(config: Config) -> None:
    """Ensure all necessary directories exist."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    get_data_dir().mkdir(parents=True, exist_ok=True)
    config.cache_dir.mkdir(parents=True, exist_ok=True)
    config.profile_dir.mkdir(parents=True, exist_ok=True)
    config.log_file.parent.mkdir(parents=True, exist_ok=True)
