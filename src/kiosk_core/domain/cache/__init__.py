"""Content cache domain - local copies of large media referenced by playlists."""

from .manager import ContentCache
from .models import CacheEntry, CacheStatus

__all__ = [
    "CacheEntry",
    "CacheStatus",
    "ContentCache",
]
