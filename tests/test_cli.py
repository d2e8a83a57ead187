"""Tests for the maintenance subcommands."""

from pathlib import Path

from kiosk_core.cli import run_cache_status, run_init_config


class TestInitConfig:
    def test_writes_default_file(self, tmp_path: Path) -> None:
        path = tmp_path / "kiosk" / "config.toml"
        assert run_init_config(str(path)) == 0
        assert "[scheduler]" in path.read_text(encoding="utf-8")

    def test_refuses_to_overwrite_without_force(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text("# mine\n", encoding="utf-8")

        assert run_init_config(str(path)) == 1
        assert path.read_text(encoding="utf-8") == "# mine\n"

        assert run_init_config(str(path), force=True) == 0
        assert "[server]" in path.read_text(encoding="utf-8")


class TestCacheStatus:
    def test_lists_ready_and_partial_files(self, tmp_path: Path, capsys) -> None:
        cache_dir = tmp_path / "cache"
        cache_dir.mkdir()
        (cache_dir / "abc.mp4").write_bytes(b"x" * 1024)
        (cache_dir / "def.mp4.tmp").write_bytes(b"y")
        config = tmp_path / "config.toml"
        config.write_text(f'[cache]\ndirectory = "{cache_dir.as_posix()}"\n', encoding="utf-8")

        assert run_cache_status(str(config)) == 0
        out = capsys.readouterr().out
        assert "2 files" in out

    def test_missing_directory(self, tmp_path: Path) -> None:
        config = tmp_path / "config.toml"
        config.write_text(
            f'[cache]\ndirectory = "{(tmp_path / "nowhere").as_posix()}"\n', encoding="utf-8"
        )
        assert run_cache_status(str(config)) == 0
