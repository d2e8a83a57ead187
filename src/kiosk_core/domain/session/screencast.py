"""
Live screencast of the content surface.

Frames are polled from the session at a fixed rate and handed to a sink.
A frame that fails to capture or send is dropped; the next tick tries again.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from loguru import logger

from .faults import RenderError
from .manager import SessionManager

FrameSink = Callable[[str, dict], Awaitable[None]]


class Screencast:
    def __init__(
        self,
        session: SessionManager,
        sink: FrameSink,
        fps: int = 10,
        quality: int = 60,
        ready_attempts: int = 5,
        ready_delay: float = 2.0,
    ):
        self.session = session
        self.sink = sink
        self.interval = 1.0 / max(fps, 1)
        self.quality = quality
        self.ready_attempts = ready_attempts
        self.ready_delay = ready_delay
        self.session_id: Optional[str] = None
        self.frames_sent = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            logger.debug("Screencast already running")
            return
        self.session_id = uuid.uuid4().hex
        self.frames_sent = 0
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"Screencast stopped after {self.frames_sent} frames")

    async def _wait_until_ready(self) -> bool:
        for attempt in range(1, self.ready_attempts + 1):
            if self.session.is_ready:
                return True
            logger.info(
                f"Screencast waiting for session ({attempt}/{self.ready_attempts})"
            )
            await asyncio.sleep(self.ready_delay)
        return self.session.is_ready

    async def _run(self) -> None:
        if not await self._wait_until_ready():
            logger.error("Screencast not started: session is not ready")
            return

        logger.info(f"Screencast started ({1 / self.interval:.0f} fps)")
        loop = asyncio.get_running_loop()
        while True:
            tick = loop.time()
            try:
                frame = await self.session.capture_frame(self.quality)
                await self.sink(
                    "screencast:frame",
                    {
                        "data": frame,
                        "metadata": {
                            "sessionId": self.session_id,
                            "timestamp": datetime.now(timezone.utc).isoformat(),
                            "width": self.session.display.width,
                            "height": self.session.display.height,
                        },
                    },
                )
                self.frames_sent += 1
            except (RenderError, ConnectionError) as e:
                logger.debug(f"Screencast frame dropped: {e}")

            elapsed = loop.time() - tick
            await asyncio.sleep(max(0.0, self.interval - elapsed))
