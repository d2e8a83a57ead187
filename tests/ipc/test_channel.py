"""Tests for the WebSocket event channel."""

import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest
import websockets

from kiosk_core.ipc.channel import ChannelClosedError, EventChannel


class FakeWebSocket:
    def __init__(self, *messages: str) -> None:
        self.messages = list(messages)
        self.sent: list[dict] = []
        self.send_error = None
        self.closed = False

    async def send(self, raw: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(json.loads(raw))

    async def _iterate(self):
        for message in self.messages:
            yield message

    def __aiter__(self):
        return self._iterate()

    async def close(self) -> None:
        self.closed = True


class FakeConnect:
    """Replays sockets (or connection errors) for successive connects."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.urls: list[str] = []

    def __call__(self, url: str, **kwargs):
        self.urls.append(url)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome

        @asynccontextmanager
        async def connection():
            yield outcome

        return connection()


def envelope(event: str, payload=None) -> str:
    return json.dumps({"event": event, "payload": payload})


class TestEventChannel:
    """Tests for EventChannel."""

    def test_url_carries_role_and_token(self) -> None:
        channel = EventChannel("ws://server:5001/", "tok en", AsyncMock())
        assert channel.url == "ws://server:5001/ws?role=device&token=tok%20en"

    @pytest.mark.anyio
    async def test_registers_and_dispatches(self) -> None:
        events = []
        ws = FakeWebSocket(
            envelope("playlist:pause"),
            "not json at all",
            envelope("display:navigate", {"url": "https://a"}),
        )
        on_connect = AsyncMock()

        async def handler(event: str, payload: dict) -> None:
            events.append((event, payload))
            if event == "display:navigate":
                await channel.close()

        channel = EventChannel(
            "ws://server", "tok", handler, on_connect=on_connect, connect=FakeConnect(ws)
        )
        await channel.run()

        assert ws.sent[0] == {"event": "device:register", "payload": {"token": "tok"}}
        on_connect.assert_awaited_once()
        assert events == [
            ("playlist:pause", {}),
            ("display:navigate", {"url": "https://a"}),
        ]
        assert ws.closed
        assert not channel.is_connected

    @pytest.mark.anyio
    async def test_reconnects_after_failure(self) -> None:
        ws = FakeWebSocket(envelope("display:refresh"))
        connect = FakeConnect(OSError("Connection refused"), ws)

        async def handler(event: str, payload: dict) -> None:
            await channel.close()

        channel = EventChannel(
            "ws://server", "tok", handler, reconnect_interval=0.01, connect=connect
        )
        await channel.run()

        assert len(connect.urls) == 2
        assert ws.sent[0]["event"] == "device:register"

    @pytest.mark.anyio
    async def test_send_while_disconnected_raises(self) -> None:
        channel = EventChannel("ws://server", "tok", AsyncMock())
        assert not channel.is_connected
        with pytest.raises(ChannelClosedError):
            await channel.send_event("health:report", {})

    @pytest.mark.anyio
    async def test_send_on_closed_connection_raises(self) -> None:
        sent = []

        async def handler(event: str, payload: dict) -> None:
            ws.send_error = websockets.ConnectionClosed(None, None)
            try:
                await channel.send_event("screenshot:upload", {})
            except ChannelClosedError as e:
                sent.append(e)
            await channel.close()

        ws = FakeWebSocket(envelope("screenshot:request"))
        channel = EventChannel("ws://server", "tok", handler, connect=FakeConnect(ws))
        await channel.run()

        assert len(sent) == 1
        assert isinstance(sent[0], ConnectionError)
