"""
Kiosk Core CLI - Entry point

Runs the kiosk service by default, with a few maintenance subcommands for
setting up configuration and inspecting the content cache.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from loguru import logger


def run_init_config(path: Optional[str], force: bool = False) -> int:
    """Write the default configuration file.

    Returns:
        Exit code (0 for success, 1 if the file exists and force is not set)
    """
    from kiosk_core.core import create_default_config, get_config_path, safe_print

    config_path = Path(path) if path else get_config_path()
    if config_path.exists() and not force:
        safe_print(f"Config already exists: {config_path} (use --force to overwrite)", "yellow")
        return 1

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(create_default_config() + "\n", encoding="utf-8")
    safe_print(f"✓ Wrote default config to {config_path}", "green")
    return 0


def run_cache_status(path: Optional[str]) -> int:
    """Print the files currently held in the content cache."""
    from kiosk_core.core import format_size, load_config, print_table, safe_print
    from kiosk_core.domain.cache.manager import TEMP_SUFFIX

    config = load_config(Path(path) if path else None)
    cache_dir = config.cache_dir
    if not cache_dir.exists():
        safe_print(f"Cache directory does not exist: {cache_dir}", "yellow")
        return 0

    files = sorted(p for p in cache_dir.iterdir() if p.is_file())
    if not files:
        safe_print(f"Cache is empty: {cache_dir}", "dim")
        return 0

    rows = []
    total = 0
    for file in files:
        size = file.stat().st_size
        total += size
        state = "downloading" if file.name.endswith(TEMP_SUFFIX) else "ready"
        rows.append((file.name, format_size(size), state))

    print_table(f"Content cache ({cache_dir})", ["File", "Size", "State"], rows)
    safe_print(f"{len(files)} files, {format_size(total)} total")
    return 0


async def _serve(config) -> None:
    from kiosk_core.main import KioskService

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises
            pass

    service = KioskService(config)
    await service.run(stop_event)


def run_service(path: Optional[str], log_level: Optional[str] = None) -> int:
    """Load configuration, set up logging and run until interrupted."""
    from kiosk_core.core import ensure_directories, load_config, setup_loguru

    try:
        config = load_config(Path(path) if path else None)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    ensure_directories(config)
    setup_loguru(
        config.log_file,
        level=log_level or config.logging.level,
        console_output=config.logging.console_output,
    )

    if not config.server.device_token:
        logger.warning("No device token configured; the server will reject registration")

    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        pass
    logger.info("Kiosk core stopped")
    return 0


def main() -> None:
    """Main entry point for the kiosk-core command."""
    parser = argparse.ArgumentParser(
        description="Kiosk Core - Digital signage playback device",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--config",
        help="Path to config.toml (default: ./config.toml or ~/.config/kiosk-core/config.toml)",
    )

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the kiosk service (default)")
    run_parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the configured log level",
    )

    init_parser = subparsers.add_parser("init-config", help="Write the default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    subparsers.add_parser("cache-status", help="List cached content files")

    args = parser.parse_args()

    if args.subcommand == "init-config":
        sys.exit(run_init_config(args.config, force=args.force))

    elif args.subcommand == "cache-status":
        sys.exit(run_cache_status(args.config))

    # No subcommand - run the service
    sys.exit(run_service(args.config, getattr(args, "log_level", None)))


if __name__ == "__main__":
    main()
