"""Scheduler domain - playlist rotation, time constraints and broadcast overrides."""

from .broadcast import build_broadcast_target, render_media_page, render_message_page
from .models import (
    BroadcastContent,
    BroadcastOverride,
    PlaybackState,
    PlaylistSnapshot,
    ScheduledItem,
)
from .rules import (
    compute_rotation_delay,
    is_item_eligible,
    ms_until_window_end,
    playlist_changed,
    resolve_source,
    select_next,
    time_in_range,
    weekday_index,
)
from .scheduler import ContentScheduler, Renderer

__all__ = [
    # Models
    "BroadcastContent",
    "BroadcastOverride",
    "PlaybackState",
    "PlaylistSnapshot",
    "ScheduledItem",
    # Rules
    "compute_rotation_delay",
    "is_item_eligible",
    "ms_until_window_end",
    "playlist_changed",
    "resolve_source",
    "select_next",
    "time_in_range",
    "weekday_index",
    # Broadcast pages
    "build_broadcast_target",
    "render_media_page",
    "render_message_page",
    # Scheduler
    "ContentScheduler",
    "Renderer",
]
