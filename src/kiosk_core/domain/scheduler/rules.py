"""
Pure scheduling rules: eligibility, rotation delays and playlist comparison.

Nothing here touches timers or I/O, so every rule can be checked with a
fixed datetime.
"""

from datetime import datetime, time, timedelta
from typing import Optional, Sequence

from loguru import logger

from .models import ScheduledItem


def time_in_range(start: str, end: str, check_time: time) -> bool:
    """Check if a time falls within a range, handling midnight wrap.

    Args:
        start: Start time in "HH:MM" format
        end: End time in "HH:MM" format
        check_time: Time to check

    Returns:
        True if check_time is within [start, end)

    Examples:
        time_in_range("09:00", "17:00", time(12, 0))  # True
        time_in_range("22:00", "06:00", time(23, 30))  # True (overnight)
        time_in_range("09:00", "17:00", time(17, 0))  # False (end is exclusive)
    """
    start_time = parse_time(start)
    end_time = parse_time(end)

    if start_time <= end_time:
        return start_time <= check_time < end_time
    # Overnight range (e.g., 22:00 to 06:00)
    return check_time >= start_time or check_time < end_time


def parse_time(time_str: str) -> time:
    """Parse "HH:MM" (or "HH:MM:SS") into a time object.

    Raises:
        ValueError: If the string is not a valid time of day
    """
    try:
        parts = [int(part) for part in time_str.split(":")]
        if len(parts) not in (2, 3):
            raise ValueError()
        return time(*parts)
    except (ValueError, TypeError, AttributeError):
        raise ValueError(
            f"Invalid time format: '{time_str}'. Expected 'HH:MM' (e.g., '09:00')"
        )


def weekday_index(moment: datetime) -> int:
    """Day of week with 0 = Sunday, matching the server's numbering."""
    return (moment.weekday() + 1) % 7


def is_item_eligible(item: ScheduledItem, now: datetime) -> bool:
    """An item is eligible when both its day and time constraints hold."""
    if item.days_of_week and weekday_index(now) not in item.days_of_week:
        return False
    if item.has_time_window:
        return time_in_range(item.time_window_start, item.time_window_end, now.time())
    return True


def ms_until_window_end(item: ScheduledItem, now: datetime) -> Optional[int]:
    """Milliseconds until the item's time window closes, or None without one.

    May be zero or negative when the window has already closed.
    """
    if not item.has_time_window:
        return None
    start = parse_time(item.time_window_start)
    end = parse_time(item.time_window_end)
    window_end = datetime.combine(now.date(), end, tzinfo=now.tzinfo)
    if start > end and now.time() >= start:
        window_end += timedelta(days=1)
    return int((window_end - now).total_seconds() * 1000)


def compute_rotation_delay(
    item: ScheduledItem,
    playlist_size: int,
    now: datetime,
    fallback_seconds: float,
) -> Optional[int]:
    """How long the item stays on screen, in milliseconds.

    Returns None for a permanent item (no rotation). A zero duration in a
    multi-item playlist falls back to fallback_seconds. A time window that
    closes sooner shortens the delay; one that already closed yields 0.
    """
    if playlist_size == 1 and item.duration_seconds <= 0:
        return None

    if item.duration_seconds > 0:
        delay_ms = int(item.duration_seconds * 1000)
    else:
        logger.warning(
            f"Item {item.id} has no duration in a multi-item playlist, "
            f"using {fallback_seconds}s"
        )
        delay_ms = int(fallback_seconds * 1000)

    window_ms = ms_until_window_end(item, now)
    if window_ms is not None:
        if window_ms <= 0:
            return 0
        delay_ms = min(delay_ms, window_ms)
    return delay_ms


def select_next(
    items: Sequence[ScheduledItem], cursor: int, now: datetime
) -> tuple[Optional[int], int]:
    """Find the next eligible item starting at cursor.

    Returns:
        (index of the chosen item or None, new cursor). The new cursor points
        just past the chosen item; with nothing eligible it is unchanged.
    """
    count = len(items)
    if count == 0:
        return None, 0
    cursor %= count
    for step in range(count):
        index = (cursor + step) % count
        if is_item_eligible(items[index], now):
            return index, (index + 1) % count
    return None, cursor


def playlist_changed(
    old: Sequence[ScheduledItem], new: Sequence[ScheduledItem]
) -> bool:
    """True when the item set, any scheduling constraint, or any duration changed."""
    if len(old) != len(new):
        return True
    old_by_id = {item.id: item for item in old}
    for item in new:
        previous = old_by_id.get(item.id)
        if previous is None:
            return True
        if (
            previous.time_window_start != item.time_window_start
            or previous.time_window_end != item.time_window_end
            or previous.days_of_week != item.days_of_week
            or previous.duration_seconds != item.duration_seconds
        ):
            return True
    return False


def resolve_source(source_ref: str, server_url: str) -> str:
    """Resolve a server-relative source against the server base URL."""
    if source_ref.startswith("/"):
        return server_url.rstrip("/") + source_ref
    return source_ref
