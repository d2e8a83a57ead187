"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from kiosk_core.core.config import (
    Config,
    SchedulerConfig,
    ServerConfig,
    create_default_config,
    ensure_directories,
    load_config,
)


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG directories at a temp dir and clear env overrides."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("KIOSK_SERVER_URL", raising=False)
    monkeypatch.delenv("KIOSK_DEVICE_TOKEN", raising=False)
    return tmp_path


def write_config(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(content, encoding="utf-8")
    return path


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_writes_default(self, tmp_path: Path) -> None:
        path = tmp_path / "new" / "config.toml"
        config = load_config(path)

        assert path.exists()
        assert "[server]" in path.read_text(encoding="utf-8")
        assert config == Config()

    def test_default_file_parses_to_defaults(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, create_default_config())
        config = load_config(path)
        assert config.server.url == "http://localhost:5001"
        assert config.scheduler.heartbeat_interval == 5
        assert config.session.max_navigations == 50

    def test_sections_override_defaults(self, tmp_path: Path) -> None:
        path = write_config(
            tmp_path,
            """
[server]
url = "https://signage.example.com"
device_token = "abc"

[display]
width = 1280
height = 720
kiosk_mode = true

[scheduler]
stall_retry = 30

[cache]
extensions = [".mp4"]
""",
        )
        config = load_config(path)

        assert config.server.url == "https://signage.example.com"
        assert config.server.device_token == "abc"
        assert (config.display.width, config.display.height) == (1280, 720)
        assert config.display.kiosk_mode is True
        assert config.scheduler.stall_retry == 30
        assert config.scheduler.fallback_duration == 15.0
        assert config.cache.extensions == [".mp4"]

    def test_environment_overrides_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = write_config(tmp_path, '[server]\nurl = "http://file:5001"\n')
        monkeypatch.setenv("KIOSK_SERVER_URL", "http://env:5001")
        monkeypatch.setenv("KIOSK_DEVICE_TOKEN", "from-env")

        config = load_config(path)
        assert config.server.url == "http://env:5001"
        assert config.server.device_token == "from-env"

    def test_dotenv_file_is_loaded(self, isolated_dirs: Path, tmp_path: Path) -> None:
        env_dir = isolated_dirs / "config" / "kiosk-core"
        env_dir.mkdir(parents=True)
        (env_dir / ".env").write_text("KIOSK_DEVICE_TOKEN=dotenv-token\n", encoding="utf-8")
        path = write_config(tmp_path, "")

        # load_dotenv writes straight into os.environ
        with patch.dict(os.environ):
            config = load_config(path)
        assert config.server.device_token == "dotenv-token"

    def test_malformed_toml_falls_back_to_defaults(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, "[server\nurl = ")
        assert load_config(path) == Config()

    def test_unknown_keys_are_ignored(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, "[display]\nwidth = 800\ncolour = 'blue'\n")
        assert load_config(path).display.width == 800

    def test_invalid_values_raise(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, "[display]\nwidth = 0\n")
        with pytest.raises(ValueError, match="Display size"):
            load_config(path)


class TestValidation:
    """Tests for section validation."""

    def test_server_url_scheme(self) -> None:
        with pytest.raises(ValueError):
            ServerConfig(url="ftp://server").validate()

    def test_negative_scheduler_timing(self) -> None:
        with pytest.raises(ValueError, match="stall_retry"):
            SchedulerConfig(stall_retry=-1).validate()

    def test_zero_heartbeat(self) -> None:
        with pytest.raises(ValueError):
            SchedulerConfig(heartbeat_interval=0).validate()

    def test_websocket_url(self) -> None:
        assert ServerConfig(url="http://server:5001/").websocket_url == "ws://server:5001"
        assert ServerConfig(url="https://signage.example.com").websocket_url == "wss://signage.example.com"


class TestDirectories:
    """Tests for derived paths."""

    def test_default_paths_live_under_data_dir(self, isolated_dirs: Path) -> None:
        config = Config()
        data_dir = isolated_dirs / "data" / "kiosk-core"
        assert config.cache_dir == data_dir / "cache"
        assert config.profile_dir == data_dir / "browser-profile"
        assert config.log_file == data_dir / "kiosk-core.log"

    def test_ensure_directories(self, isolated_dirs: Path) -> None:
        config = Config()
        config.cache.directory = str(isolated_dirs / "media")
        ensure_directories(config)
        assert (isolated_dirs / "media").is_dir()
        assert config.profile_dir.is_dir()
