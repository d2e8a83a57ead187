"""
Logging setup using Loguru.
All components log through the shared loguru logger; this module wires its sinks.
"""

import sys
from pathlib import Path

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}"


def setup_loguru(log_file: Path, level: str = "INFO", console_output: bool = True) -> None:
    """
    Configure loguru for file logging with optional console output.

    Args:
        log_file: Path to log file
        level: Minimum level for logging (DEBUG, INFO, WARNING, ERROR)
        console_output: Also write records to stderr
    """
    # Remove default handler
    logger.remove()

    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_file,
        rotation="10 MB",
        retention=5,  # Keep 5 backup files
        level=level,
        format=LOG_FORMAT,
        enqueue=True,  # Download threads and the event loop both log
    )

    if console_output:
        logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    logger.info(f"Loguru initialized: {log_file} (level={level})")
