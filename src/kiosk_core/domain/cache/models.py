"""
Content cache models.

Contains the status vocabulary and the per-URL metadata record.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


class CacheStatus(str, Enum):
    """Lifecycle of a cached URL."""

    NOT_CACHED = "NotCached"
    DOWNLOADING = "Downloading"
    READY = "Ready"
    ERROR = "Error"


@dataclass
class CacheEntry:
    """Metadata for one cached URL.

    Entries are created when a download is requested and mutated only by the
    thread performing that download (under the cache lock).
    """

    url: str
    local_path: Path
    status: CacheStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    size_bytes: int = 0
