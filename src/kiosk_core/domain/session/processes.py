"""
Orphaned browser process cleanup.

Killing leftovers before a relaunch frees the profile lock a crashed
browser may still be holding.
"""

from typing import Iterable

import psutil
from loguru import logger


def kill_orphaned_processes(names: Iterable[str], timeout: float = 2.0) -> int:
    """Stop every process whose name matches one of the given names.

    Matches are asked to terminate first; any still running after
    `timeout` seconds are killed. Matching is case-insensitive. Processes
    that vanish or deny access are skipped. Returns the number of
    processes signalled.
    """
    targets = {name.lower() for name in names}
    if not targets:
        return 0

    victims = []
    for proc in psutil.process_iter(["name"]):
        name = (proc.info.get("name") or "").lower()
        if name in targets:
            try:
                proc.terminate()
                victims.append(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                logger.debug(f"Could not terminate {name} ({proc.pid}): {e}")

    if not victims:
        return 0

    _, alive = psutil.wait_procs(victims, timeout=timeout)
    for proc in alive:
        logger.warning(f"Process {proc.pid} ignored terminate after {timeout}s, killing")
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug(f"Could not kill {proc.pid}: {e}")
    logger.info(f"Stopped {len(victims)} orphaned browser process(es)")
    return len(victims)
