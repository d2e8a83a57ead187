"""
Scheduler domain models.

Contains playlist items, snapshots, broadcast overrides and the emitted
playback state.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class ScheduledItem:
    """One entry of a playlist.

    A single-item playlist whose item has duration 0 is permanent: it is
    shown once and never rotated.
    """

    id: int
    source_ref: str  # Absolute URL, or path relative to the server
    duration_seconds: float = 0
    order_index: int = 0
    time_window_start: Optional[str] = None  # "HH:MM"
    time_window_end: Optional[str] = None  # "HH:MM"
    days_of_week: Optional[frozenset[int]] = None  # 0 = Sunday ... 6 = Saturday
    content_id: Optional[int] = None
    playlist_id: int = 0

    @property
    def has_time_window(self) -> bool:
        return bool(self.time_window_start and self.time_window_end)


@dataclass(frozen=True)
class PlaylistSnapshot:
    """Playlist plus rotation position, restorable verbatim."""

    playlist_id: int
    items: tuple[ScheduledItem, ...]
    cursor: int


@dataclass(frozen=True)
class BroadcastContent:
    """What a broadcast shows. kind is 'url', 'message', 'image' or 'video'."""

    kind: str = "url"
    url: Optional[str] = None
    message: Optional[str] = None
    background: Optional[str] = None
    logo: Optional[str] = None
    logo_position: Optional[str] = None
    media_data: Optional[str] = None


@dataclass
class BroadcastOverride:
    """An active broadcast and the rotation it displaced."""

    content: BroadcastContent
    duration_ms: int
    target_url: Optional[str]
    saved: PlaylistSnapshot
    saved_current_index: Optional[int]
    saved_remaining_ms: Optional[int]  # None for a permanent item
    was_running: bool
    was_paused: bool
    started_at: datetime


@dataclass(frozen=True)
class PlaybackState:
    """Point-in-time view of the scheduler, emitted to observers."""

    is_running: bool = False
    is_paused: bool = False
    is_broadcasting: bool = False
    is_stalled: bool = False
    current_item_id: Optional[int] = None
    current_item_index: Optional[int] = None
    playlist_id: Optional[int] = None
    total_items: int = 0
    current_url: Optional[str] = None
    time_remaining_ms: int = 0

    def to_payload(self) -> dict:
        return {
            "isRunning": self.is_running,
            "isPaused": self.is_paused,
            "isBroadcasting": self.is_broadcasting,
            "isStalled": self.is_stalled,
            "currentItemId": self.current_item_id,
            "currentItemIndex": self.current_item_index,
            "playlistId": self.playlist_id,
            "totalItems": self.total_items,
            "currentUrl": self.current_url,
            "timeRemainingMs": self.time_remaining_ms,
        }
