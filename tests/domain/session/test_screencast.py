"""Tests for the screencast frame loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from kiosk_core.domain.session.driver import DisplaySettings
from kiosk_core.domain.session.faults import SessionClosedError
from kiosk_core.domain.session.screencast import Screencast


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock()
    session.is_ready = True
    session.display = DisplaySettings(width=1280, height=720)
    session.capture_frame = AsyncMock(return_value="ZnJhbWU=")
    return session


@pytest.mark.anyio
async def test_streams_frames_with_metadata(session, wait_for) -> None:
    sink = AsyncMock()
    screencast = Screencast(session, sink, fps=50)
    screencast.start()
    try:
        await wait_for(lambda: screencast.frames_sent >= 2)
    finally:
        await screencast.stop()

    assert not screencast.is_running
    event, payload = sink.await_args_list[0].args
    assert event == "screencast:frame"
    assert payload["data"] == "ZnJhbWU="
    assert payload["metadata"]["sessionId"] == screencast.session_id
    assert payload["metadata"]["width"] == 1280
    assert payload["metadata"]["height"] == 720
    session.capture_frame.assert_awaited_with(60)


@pytest.mark.anyio
async def test_dropped_frames_do_not_stop_the_loop(session, wait_for) -> None:
    capture_failures = [SessionClosedError("gone")]
    send_failures = [ConnectionError("offline")]

    async def capture(quality: int) -> str:
        if capture_failures:
            raise capture_failures.pop(0)
        return "ZnJhbWU="

    async def send(event: str, payload: dict) -> None:
        if send_failures:
            raise send_failures.pop(0)

    session.capture_frame = AsyncMock(side_effect=capture)
    screencast = Screencast(session, AsyncMock(side_effect=send), fps=50)
    screencast.start()
    try:
        await wait_for(lambda: screencast.frames_sent >= 1)
    finally:
        await screencast.stop()
    assert session.capture_frame.await_count >= 3


@pytest.mark.anyio
async def test_gives_up_when_session_never_ready(session) -> None:
    session.is_ready = False
    sink = AsyncMock()
    screencast = Screencast(session, sink, ready_attempts=2, ready_delay=0.01)
    screencast.start()
    await asyncio.sleep(0.1)

    assert not screencast.is_running
    sink.assert_not_awaited()
    await screencast.stop()


@pytest.mark.anyio
async def test_start_twice_keeps_one_loop(session) -> None:
    screencast = Screencast(session, AsyncMock(), fps=5)
    screencast.start()
    first_id = screencast.session_id
    screencast.start()
    assert screencast.session_id == first_id
    await screencast.stop()
