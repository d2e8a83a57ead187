"""
WebSocket event channel to the management server.

Connects as a device, registers with its token, hands every inbound envelope
to a handler, and reconnects on a fixed interval while the server is away.
"""

import asyncio
from typing import Awaitable, Callable, Optional
from urllib.parse import quote

import websockets
from loguru import logger
from pydantic import ValidationError

from .protocol import Envelope

EventHandler = Callable[[str, dict], Awaitable[None]]


class ChannelClosedError(ConnectionError):
    """Raised when sending while the channel is disconnected."""


class EventChannel:
    def __init__(
        self,
        websocket_base: str,
        device_token: str,
        handler: EventHandler,
        reconnect_interval: float = 5.0,
        on_connect: Optional[Callable[[], Awaitable[None]]] = None,
        connect=websockets.connect,
    ):
        self.websocket_base = websocket_base.rstrip("/")
        self.device_token = device_token
        self.handler = handler
        self.reconnect_interval = reconnect_interval
        self.on_connect = on_connect
        self._connect = connect
        self._ws = None
        self._closed = False

    @property
    def url(self) -> str:
        return f"{self.websocket_base}/ws?role=device&token={quote(self.device_token)}"

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    async def send_event(self, event: str, payload: dict) -> None:
        """Send one envelope.

        Raises:
            ChannelClosedError: If the channel is not connected
        """
        ws = self._ws
        if ws is None:
            raise ChannelClosedError(f"Cannot send {event}: not connected")
        try:
            await ws.send(Envelope(event=event, payload=payload).to_json())
        except websockets.ConnectionClosed as e:
            raise ChannelClosedError(f"Connection closed while sending {event}") from e
        logger.debug(f"Sent event: {event}")

    async def run(self) -> None:
        """Connect, receive until disconnected, and reconnect until closed."""
        while not self._closed:
            try:
                logger.info(f"Connecting to {self.websocket_base}")
                async with self._connect(self.url, max_size=None) as ws:
                    self._ws = ws
                    logger.info("Event channel connected")
                    await self.send_event("device:register", {"token": self.device_token})
                    if self.on_connect is not None:
                        await self.on_connect()
                    await self._receive(ws)
                    logger.warning("Event channel closed by server")
            except (OSError, websockets.WebSocketException) as e:
                logger.warning(f"Event channel error: {e}")
            finally:
                self._ws = None

            if not self._closed:
                await asyncio.sleep(self.reconnect_interval)

    async def _receive(self, ws) -> None:
        async for raw in ws:
            try:
                envelope = Envelope.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(f"Dropping malformed message: {e}")
                continue
            await self.handler(envelope.event, envelope.payload)

    async def close(self) -> None:
        self._closed = True
        ws = self._ws
        if ws is not None:
            await ws.close()
