"""
Inbound event routing.

Maps each server event to a service handler, validating its payload first.
A failing handler is logged and never propagates into the channel's receive
loop. Handlers that touch the browser directly (navigation, refresh, capture
and restarts) can block for a whole recovery, so they run as background tasks
and the channel keeps receiving meanwhile.
"""

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable, NamedTuple, Optional

from loguru import logger
from pydantic import BaseModel, ValidationError

from .protocol import (
    BroadcastStartPayload,
    ClickPayload,
    ContentUpdatePayload,
    DisplayConfigPayload,
    KeyPayload,
    NavigatePayload,
    ScrollPayload,
    TypePayload,
)

if TYPE_CHECKING:
    from kiosk_core.main import KioskService


class Route(NamedTuple):
    handler: Callable[..., Awaitable]
    model: Optional[type[BaseModel]] = None
    background: bool = False


class EventDispatcher:
    def __init__(self, service: "KioskService"):
        self._tasks: set[asyncio.Task] = set()
        scheduler = service.scheduler
        self.routes: dict[str, Route] = {
            "content:update": Route(service.handle_content_update, ContentUpdatePayload),
            "display:navigate": Route(
                service.handle_navigate, NavigatePayload, background=True
            ),
            "display:refresh": Route(service.session.refresh, background=True),
            "screenshot:request": Route(service.send_screenshot, background=True),
            "remote:click": Route(service.handle_remote, ClickPayload),
            "remote:type": Route(service.handle_remote, TypePayload),
            "remote:key": Route(service.handle_remote, KeyPayload),
            "remote:scroll": Route(service.handle_remote, ScrollPayload),
            "playlist:pause": Route(scheduler.pause),
            "playlist:resume": Route(scheduler.resume),
            "playlist:next": Route(scheduler.next),
            "playlist:previous": Route(scheduler.previous),
            "playlist:broadcast:start": Route(
                service.handle_broadcast_start, BroadcastStartPayload
            ),
            "playlist:broadcast:end": Route(scheduler.end_broadcast),
            "screencast:start": Route(service.start_screencast),
            "screencast:stop": Route(service.stop_screencast),
            "config:update": Route(
                service.handle_config_update, DisplayConfigPayload, background=True
            ),
            "device:restart": Route(service.restart_device, background=True),
        }

    async def dispatch(self, event: str, payload: dict) -> bool:
        """Route one inbound event. Returns False if it was rejected or failed."""
        route = self.routes.get(event)
        if route is None:
            logger.warning(f"Unhandled event: {event}")
            return False

        args = ()
        if route.model is not None:
            try:
                args = (route.model.model_validate(payload),)
            except ValidationError as e:
                logger.warning(f"Invalid payload for {event}: {e}")
                return False

        logger.info(f"Handling event: {event}")
        if route.background:
            task = asyncio.create_task(self._guarded(event, route.handler(*args)))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return True
        return await self._guarded(event, route.handler(*args))

    async def _guarded(self, event: str, awaitable: Awaitable) -> bool:
        try:
            await awaitable
        except Exception:
            logger.exception(f"Error handling event: {event}")
            return False
        return True

    async def drain(self) -> None:
        """Wait for background handlers to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
