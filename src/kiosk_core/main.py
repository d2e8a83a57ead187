"""
Kiosk service - wires the session, cache, scheduler and event channel.

Inbound events arrive through the channel and are routed by the dispatcher
to the handlers below. Outbound events (playback state, screenshots, frames,
health) all leave through publish().
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import requests
from loguru import logger
from pydantic import ValidationError

from kiosk_core.core.config import Config
from kiosk_core.core.health import collect_health_report
from kiosk_core.domain.cache import ContentCache
from kiosk_core.domain.scheduler import ContentScheduler
from kiosk_core.domain.session import (
    DisplayChrome,
    DisplaySettings,
    PlaywrightDriver,
    RenderDriver,
    RenderError,
    Screencast,
    SessionManager,
)
from kiosk_core.ipc.channel import EventChannel
from kiosk_core.ipc.dispatcher import EventDispatcher
from kiosk_core.ipc.protocol import (
    BroadcastStartPayload,
    ContentUpdatePayload,
    DisplayConfigPayload,
    NavigatePayload,
)

DEVICE_CONFIG_TIMEOUT = 10


def fetch_device_config(
    http: requests.Session, server_url: str, token: str
) -> Optional[DisplayConfigPayload]:
    """Fetch this device's display settings from the server.

    Returns None on any failure so startup continues with local settings.
    """
    url = f"{server_url.rstrip('/')}/devices/config"
    try:
        response = http.get(url, params={"token": token}, timeout=DEVICE_CONFIG_TIMEOUT)
        response.raise_for_status()
        return DisplayConfigPayload.model_validate(response.json())
    except (requests.RequestException, ValueError, ValidationError) as e:
        logger.warning(f"Could not fetch device config, using local settings: {e}")
        return None


def merge_display(settings: DisplaySettings, update: DisplayConfigPayload) -> DisplaySettings:
    return DisplaySettings(
        width=update.display_width or settings.width,
        height=update.display_height or settings.height,
        kiosk_mode=(
            settings.kiosk_mode if update.kiosk_mode is None else update.kiosk_mode
        ),
        headless=settings.headless,
    )


class KioskService:
    def __init__(
        self,
        config: Config,
        driver_factory: Optional[Callable[[], RenderDriver]] = None,
        chrome: Optional[DisplayChrome] = None,
        http: Optional[requests.Session] = None,
        channel_factory=EventChannel,
    ):
        self.config = config
        self.http = http or requests.Session()

        self.session = SessionManager(
            driver_factory or (lambda: PlaywrightDriver(config.profile_dir)),
            display=self.display_settings,
            config=config.session,
            chrome=chrome,
        )
        self.cache = ContentCache(
            config.cache_dir,
            extensions=config.cache.extensions,
            default_extension=config.cache.default_extension,
            download_timeout=config.cache.download_timeout,
            chunk_size=config.cache.chunk_size,
            http=self.http,
        )
        self.scheduler = ContentScheduler(
            self.session,
            config.server.url,
            cache=self.cache,
            config=config.scheduler,
            publish=self.publish,
        )
        self.screencast = Screencast(
            self.session, self.publish, fps=config.channel.screencast_fps
        )
        self.dispatcher = EventDispatcher(self)
        self.channel = channel_factory(
            config.server.websocket_url,
            config.server.device_token,
            self.dispatcher.dispatch,
            reconnect_interval=config.channel.reconnect_interval,
            on_connect=self._on_connect,
        )

        self._started_at: Optional[float] = None
        self._reconfiguring = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []

    @property
    def display_settings(self) -> DisplaySettings:
        display = self.config.display
        return DisplaySettings(
            width=display.width,
            height=display.height,
            kiosk_mode=display.kiosk_mode,
            headless=display.headless,
        )

    def _store_display(self, settings: DisplaySettings) -> None:
        self.config.display.width = settings.width
        self.config.display.height = settings.height
        self.config.display.kiosk_mode = settings.kiosk_mode

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self) -> None:
        """Apply server display settings, launch the session and connect."""
        if self.config.server.device_token:
            remote = await asyncio.to_thread(
                fetch_device_config,
                self.http,
                self.config.server.url,
                self.config.server.device_token,
            )
            if remote is not None:
                settings = merge_display(self.display_settings, remote)
                self._store_display(settings)
                self.session.apply_display(settings)
                logger.info(
                    f"Applied device config: {settings.width}x{settings.height}, "
                    f"kiosk={settings.kiosk_mode}"
                )

        try:
            await self.session.initialize()
        except Exception as e:
            # The first navigation retries through recovery
            logger.error(f"Browser session failed to start: {e}")
        self._started_at = time.monotonic()

        channel = self.config.channel
        self._tasks = [
            asyncio.create_task(self.channel.run(), name="event-channel"),
            asyncio.create_task(
                self._every(channel.screenshot_interval, self.send_screenshot),
                name="periodic-screenshot",
            ),
            asyncio.create_task(
                self._every(channel.health_report_interval, self.send_health_report),
                name="health-report",
            ),
        ]
        logger.info("Kiosk service started")

    async def run(self, stop_event: asyncio.Event) -> None:
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        logger.info("Shutting down kiosk service")
        await self.screencast.stop()
        await self.channel.close()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.dispatcher.drain()
        await self.scheduler.shutdown()
        await self.session.dispose()

    async def _every(self, interval: float, action: Callable[[], Awaitable]) -> None:
        if interval <= 0:
            return
        while True:
            await asyncio.sleep(interval)
            try:
                await action()
            except Exception:
                logger.exception(f"Periodic {action.__name__} failed")

    async def _on_connect(self) -> None:
        state = await self.scheduler.get_state()
        await self.publish("playback:state:update", state.to_payload())

    # ------------------------------------------------------------------
    # Outbound

    async def publish(self, event: str, payload: dict) -> None:
        if not self.channel.is_connected:
            logger.debug(f"Channel offline, dropping {event}")
            return
        await self.channel.send_event(event, payload)

    async def send_screenshot(self) -> None:
        if not self.channel.is_connected:
            return
        try:
            frame = await self.session.capture_frame()
        except RenderError as e:
            logger.warning(f"Screenshot skipped: {e}")
            return
        await self.publish(
            "screenshot:upload", {"image": frame, "currentUrl": self.session.current_url}
        )
        logger.info(f"Screenshot sent ({len(frame)} bytes)")

    async def send_health_report(self) -> None:
        report = await asyncio.to_thread(collect_health_report, self.config.cache_dir)
        await self.publish("health:report", report)

    # ------------------------------------------------------------------
    # Inbound handlers

    async def handle_content_update(self, payload: ContentUpdatePayload) -> None:
        await self.scheduler.load_playlist(payload.playlist_id, payload.scheduled_items())
        await self.scheduler.start()
        logger.info(
            f"Playlist {payload.playlist_id} loaded and started with {len(payload.items)} items"
        )

    async def handle_navigate(self, payload: NavigatePayload) -> None:
        await self.session.navigate(payload.url)

    async def handle_remote(self, payload) -> None:
        await self.session.interact(payload.to_interaction())

    async def handle_broadcast_start(self, payload: BroadcastStartPayload) -> None:
        await self.scheduler.start_broadcast(payload.to_content(), payload.duration)

    async def start_screencast(self) -> None:
        self.screencast.start()

    async def stop_screencast(self) -> None:
        await self.screencast.stop()

    async def handle_config_update(self, payload: DisplayConfigPayload) -> None:
        grace = self.config.channel.config_grace_period
        if self._started_at is None or time.monotonic() - self._started_at < grace:
            logger.info(f"Ignoring config update during the first {grace}s after startup")
            return
        if self._reconfiguring.locked():
            logger.warning("Config update already in progress, ignoring")
            return

        async with self._reconfiguring:
            current = self.display_settings
            settings = merge_display(current, payload)
            if settings == current:
                logger.info("Display settings unchanged")
                return

            logger.info(
                f"Display settings changed to {settings.width}x{settings.height}, "
                f"kiosk={settings.kiosk_mode}; restarting browser"
            )
            self._store_display(settings)
            await self._restart_rendering(lambda: self.session.restart(settings))

    async def restart_device(self) -> None:
        if self._reconfiguring.locked():
            logger.warning("Browser restart already in progress, ignoring")
            return
        async with self._reconfiguring:
            logger.warning("Restart requested by server, restarting browser")
            await self._restart_rendering(lambda: self.session.recover(reset_attempts=True))

    async def _restart_rendering(self, restart: Callable[[], Awaitable[bool]]) -> None:
        """Restart the browser without losing the rotation position."""
        screencasting = self.screencast.is_running
        await self.screencast.stop()

        state = await self.scheduler.get_state()
        snapshot = await self.scheduler.snapshot()
        await self.scheduler.stop()

        if await restart():
            logger.info("Browser restarted")
        else:
            logger.error("Browser restart failed; rotation will retry through recovery")

        if snapshot.items:
            await self.scheduler.restore(snapshot, resume=state.is_running)
        if await self.scheduler.redisplay_broadcast():
            logger.info("Broadcast put back on screen after restart")
        if screencasting:
            self.screencast.start()
