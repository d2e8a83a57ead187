"""Tests for inbound event routing."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from kiosk_core.ipc.dispatcher import EventDispatcher
from kiosk_core.ipc.protocol import (
    BroadcastStartPayload,
    ClickPayload,
    ContentUpdatePayload,
    DisplayConfigPayload,
    NavigatePayload,
)


@pytest.fixture
def service() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def dispatcher(service: AsyncMock) -> EventDispatcher:
    return EventDispatcher(service)


class TestRouting:
    """Tests for mapping events to handlers."""

    @pytest.mark.anyio
    async def test_content_update_is_validated(self, dispatcher, service) -> None:
        ok = await dispatcher.dispatch(
            "content:update",
            {"playlistId": 1, "items": [{"id": 1, "content": {"url": "https://a"}}]},
        )
        assert ok
        payload = service.handle_content_update.await_args.args[0]
        assert isinstance(payload, ContentUpdatePayload)
        assert payload.items[0].content.url == "https://a"

    @pytest.mark.anyio
    @pytest.mark.parametrize("event", ["playlist:pause", "playlist:resume", "playlist:next", "playlist:previous"])
    async def test_playlist_controls(self, dispatcher, service, event) -> None:
        assert await dispatcher.dispatch(event, {})
        getattr(service.scheduler, event.split(":")[1]).assert_awaited_once_with()

    @pytest.mark.anyio
    async def test_broadcast_events(self, dispatcher, service) -> None:
        await dispatcher.dispatch("playlist:broadcast:start", {"url": "https://alert"})
        payload = service.handle_broadcast_start.await_args.args[0]
        assert isinstance(payload, BroadcastStartPayload)

        await dispatcher.dispatch("playlist:broadcast:end", {})
        service.scheduler.end_broadcast.assert_awaited_once_with()

    @pytest.mark.anyio
    async def test_display_events(self, dispatcher, service) -> None:
        await dispatcher.dispatch("display:navigate", {"url": "https://example.com"})
        await dispatcher.drain()
        assert isinstance(service.handle_navigate.await_args.args[0], NavigatePayload)

        await dispatcher.dispatch("display:refresh", {})
        await dispatcher.drain()
        service.session.refresh.assert_awaited_once_with()

    @pytest.mark.anyio
    async def test_remote_input(self, dispatcher, service) -> None:
        await dispatcher.dispatch("remote:click", {"x": 1, "y": 2})
        assert isinstance(service.handle_remote.await_args.args[0], ClickPayload)

    @pytest.mark.anyio
    async def test_screencast_and_screenshot(self, dispatcher, service) -> None:
        await dispatcher.dispatch("screencast:start", {})
        await dispatcher.dispatch("screencast:stop", {})
        await dispatcher.dispatch("screenshot:request", {})
        await dispatcher.drain()
        service.start_screencast.assert_awaited_once_with()
        service.stop_screencast.assert_awaited_once_with()
        service.send_screenshot.assert_awaited_once_with()


class TestRejection:
    """Tests for invalid events and failing handlers."""

    @pytest.mark.anyio
    async def test_unknown_event(self, dispatcher) -> None:
        assert await dispatcher.dispatch("device:selfdestruct", {}) is False

    @pytest.mark.anyio
    async def test_invalid_payload_skips_handler(self, dispatcher, service) -> None:
        assert await dispatcher.dispatch("display:navigate", {"href": "x"}) is False
        service.handle_navigate.assert_not_awaited()

    @pytest.mark.anyio
    async def test_handler_error_is_contained(self, dispatcher, service) -> None:
        service.handle_content_update.side_effect = RuntimeError("boom")
        assert await dispatcher.dispatch("content:update", {"items": []}) is False

    @pytest.mark.anyio
    async def test_background_handler_error_is_contained(self, dispatcher, service) -> None:
        service.handle_navigate.side_effect = RuntimeError("boom")
        assert await dispatcher.dispatch("display:navigate", {"url": "https://a"})
        await dispatcher.drain()
        service.handle_navigate.assert_awaited_once()


class TestBackgroundHandlers:
    """Tests for handlers that run detached from the receive loop."""

    @pytest.mark.anyio
    async def test_config_update_runs_in_background(self, dispatcher, service) -> None:
        release = asyncio.Event()
        finished = []

        async def slow_update(payload: DisplayConfigPayload) -> None:
            await release.wait()
            finished.append(payload.display_width)

        service.handle_config_update.side_effect = slow_update
        assert await dispatcher.dispatch("config:update", {"displayWidth": 800})
        await asyncio.sleep(0.01)
        assert finished == []

        release.set()
        await dispatcher.drain()
        assert finished == [800]

    @pytest.mark.anyio
    async def test_device_restart_runs_in_background(self, dispatcher, service) -> None:
        assert await dispatcher.dispatch("device:restart", {})
        await dispatcher.drain()
        service.restart_device.assert_awaited_once_with()

    @pytest.mark.anyio
    async def test_slow_navigation_does_not_hold_up_controls(
        self, dispatcher, service
    ) -> None:
        release = asyncio.Event()

        async def slow_navigate(payload: NavigatePayload) -> None:
            await release.wait()

        service.handle_navigate.side_effect = slow_navigate
        assert await asyncio.wait_for(
            dispatcher.dispatch("display:navigate", {"url": "https://slow"}), timeout=1
        )
        assert await asyncio.wait_for(dispatcher.dispatch("playlist:pause", {}), timeout=1)
        service.scheduler.pause.assert_awaited_once_with()

        release.set()
        await dispatcher.drain()
