"""Host health snapshot (CPU, memory, disk) for periodic reporting."""

from datetime import datetime, timezone
from pathlib import Path

import psutil


def collect_health_report(disk_path: Path | str = "/") -> dict:
    """Sample host utilisation as percentages.

    CPU is averaged across cores since the previous call.
    """
    per_core = psutil.cpu_percent(percpu=True)
    cpu = sum(per_core) / len(per_core) if per_core else 0.0
    return {
        "cpu": round(cpu, 2),
        "memory": round(psutil.virtual_memory().percent, 2),
        "disk": round(psutil.disk_usage(str(disk_path)).percent, 2),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
