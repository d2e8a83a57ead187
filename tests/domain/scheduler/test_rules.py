"""Tests for the pure scheduling rules."""

from datetime import datetime, time

import pytest

from kiosk_core.domain.scheduler.models import ScheduledItem
from kiosk_core.domain.scheduler.rules import (
    compute_rotation_delay,
    is_item_eligible,
    ms_until_window_end,
    parse_time,
    playlist_changed,
    resolve_source,
    select_next,
    time_in_range,
    weekday_index,
)

# 2024-01-01 was a Monday
MONDAY_NOON = datetime(2024, 1, 1, 12, 0)


def make_item(item_id: int, **kwargs) -> ScheduledItem:
    kwargs.setdefault("source_ref", f"https://example.com/{item_id}")
    return ScheduledItem(id=item_id, **kwargs)


class TestTimeInRange:
    """Tests for time_in_range."""

    def test_same_day_range(self) -> None:
        assert time_in_range("09:00", "17:00", time(12, 0))
        assert not time_in_range("09:00", "17:00", time(8, 59))

    def test_end_is_exclusive(self) -> None:
        assert time_in_range("09:00", "17:00", time(9, 0))
        assert not time_in_range("09:00", "17:00", time(17, 0))

    def test_overnight_range(self) -> None:
        assert time_in_range("22:00", "06:00", time(23, 30))
        assert time_in_range("22:00", "06:00", time(5, 59))
        assert not time_in_range("22:00", "06:00", time(12, 0))

    def test_invalid_time_raises(self) -> None:
        with pytest.raises(ValueError, match="Invalid time format"):
            parse_time("25:99")
        with pytest.raises(ValueError):
            parse_time("noon")

    def test_seconds_are_accepted(self) -> None:
        assert parse_time("08:30:15") == time(8, 30, 15)


class TestEligibility:
    """Tests for day and time constraints."""

    def test_weekday_index_starts_on_sunday(self) -> None:
        assert weekday_index(MONDAY_NOON) == 1
        assert weekday_index(datetime(2024, 1, 7, 12, 0)) == 0

    def test_unconstrained_item_is_eligible(self) -> None:
        assert is_item_eligible(make_item(1), MONDAY_NOON)

    def test_day_constraint(self) -> None:
        weekend = make_item(1, days_of_week=frozenset({0, 6}))
        assert not is_item_eligible(weekend, MONDAY_NOON)
        assert is_item_eligible(weekend, datetime(2024, 1, 6, 12, 0))

    def test_empty_day_set_means_every_day(self) -> None:
        assert is_item_eligible(make_item(1, days_of_week=frozenset()), MONDAY_NOON)

    def test_time_window(self) -> None:
        morning = make_item(1, time_window_start="08:00", time_window_end="10:00")
        assert not is_item_eligible(morning, MONDAY_NOON)
        assert is_item_eligible(morning, datetime(2024, 1, 1, 9, 0))

    def test_half_window_is_ignored(self) -> None:
        assert is_item_eligible(make_item(1, time_window_start="08:00"), MONDAY_NOON)


class TestRotationDelay:
    """Tests for compute_rotation_delay."""

    def test_uses_item_duration(self) -> None:
        item = make_item(1, duration_seconds=10)
        assert compute_rotation_delay(item, 3, MONDAY_NOON, 15) == 10_000

    def test_single_zero_duration_item_is_permanent(self) -> None:
        assert compute_rotation_delay(make_item(1), 1, MONDAY_NOON, 15) is None

    def test_single_item_with_duration_rotates(self) -> None:
        item = make_item(1, duration_seconds=5)
        assert compute_rotation_delay(item, 1, MONDAY_NOON, 15) == 5_000

    def test_zero_duration_in_multi_item_playlist_uses_fallback(self) -> None:
        assert compute_rotation_delay(make_item(1), 2, MONDAY_NOON, 15) == 15_000

    def test_window_end_shortens_delay(self) -> None:
        item = make_item(
            1, duration_seconds=600, time_window_start="11:00", time_window_end="12:02"
        )
        assert compute_rotation_delay(item, 2, MONDAY_NOON, 15) == 120_000

    def test_closed_window_rotates_immediately(self) -> None:
        item = make_item(
            1, duration_seconds=60, time_window_start="09:00", time_window_end="12:00"
        )
        assert compute_rotation_delay(item, 2, MONDAY_NOON, 15) == 0

    def test_overnight_window_end_is_tomorrow(self) -> None:
        item = make_item(1, time_window_start="22:00", time_window_end="06:00")
        late = datetime(2024, 1, 1, 23, 0)
        assert ms_until_window_end(item, late) == 7 * 3600 * 1000

    def test_no_window_has_no_end(self) -> None:
        assert ms_until_window_end(make_item(1), MONDAY_NOON) is None


class TestSelectNext:
    """Tests for select_next."""

    def test_picks_item_at_cursor(self) -> None:
        items = [make_item(1), make_item(2), make_item(3)]
        assert select_next(items, 1, MONDAY_NOON) == (1, 2)

    def test_wraps_around(self) -> None:
        items = [make_item(1), make_item(2)]
        assert select_next(items, 1, MONDAY_NOON) == (1, 0)

    def test_skips_ineligible_items(self) -> None:
        items = [
            make_item(1),
            make_item(2, days_of_week=frozenset({0})),
            make_item(3),
        ]
        assert select_next(items, 1, MONDAY_NOON) == (2, 0)

    def test_nothing_eligible_keeps_cursor(self) -> None:
        items = [
            make_item(1, time_window_start="08:00", time_window_end="09:00"),
            make_item(2, time_window_start="08:00", time_window_end="09:00"),
        ]
        assert select_next(items, 1, MONDAY_NOON) == (None, 1)

    def test_empty_playlist(self) -> None:
        assert select_next([], 3, MONDAY_NOON) == (None, 0)


class TestPlaylistChanged:
    """Tests for playlist_changed."""

    def test_identical_playlists(self) -> None:
        items = [make_item(1, duration_seconds=5), make_item(2, duration_seconds=5)]
        assert not playlist_changed(items, list(items))

    def test_reordering_alone_is_not_a_change(self) -> None:
        items = [make_item(1), make_item(2)]
        assert not playlist_changed(items, list(reversed(items)))

    def test_added_item(self) -> None:
        assert playlist_changed([make_item(1)], [make_item(1), make_item(2)])

    def test_replaced_item(self) -> None:
        assert playlist_changed([make_item(1)], [make_item(2)])

    def test_changed_duration(self) -> None:
        assert playlist_changed(
            [make_item(1, duration_seconds=5)], [make_item(1, duration_seconds=6)]
        )

    def test_changed_days(self) -> None:
        assert playlist_changed(
            [make_item(1)], [make_item(1, days_of_week=frozenset({1}))]
        )


class TestResolveSource:
    """Tests for resolve_source."""

    def test_relative_path_joins_server(self) -> None:
        assert (
            resolve_source("/uploads/a.mp4", "http://server:5001/")
            == "http://server:5001/uploads/a.mp4"
        )

    def test_absolute_url_is_untouched(self) -> None:
        assert resolve_source("https://cdn/a.mp4", "http://server") == "https://cdn/a.mp4"
