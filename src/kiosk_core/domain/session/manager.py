"""
Self-healing browser session.

Owns one rendering session (browser process + one content surface) and keeps
it alive: surface crashes are absorbed by recreating the surface, repeated or
rapid crashes escalate to a full session restart, and preventive maintenance
recycles the surface and the session before leaks accumulate. After too many
consecutive failed recoveries the session goes DEGRADED and stops trying.
"""

import asyncio
import base64
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from loguru import logger

from kiosk_core.core.config import SessionConfig

from .display import DisplayChrome, NullDisplayChrome
from .driver import DisplaySettings, RenderDriver, RenderSurface
from .faults import (
    FatalSessionError,
    FaultKind,
    RenderError,
    SessionClosedError,
    SessionDegradedError,
    SurfaceCrashedError,
    classify_failure,
)
from .processes import kill_orphaned_processes

HIDE_CURSOR_CSS = "*, *::before, *::after { cursor: none !important; }"

# Unattended displays must never pop passkey or password dialogs
CREDENTIALS_LOCKDOWN_SCRIPT = """
(() => {
  const reject = () => Promise.reject(new DOMException('Disabled on kiosk', 'NotAllowedError'));
  if (navigator.credentials) {
    navigator.credentials.get = reject;
    navigator.credentials.create = reject;
    navigator.credentials.store = reject;
  }
  try { delete window.PublicKeyCredential; } catch (e) {}
})();
"""


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    RECOVERING = "recovering"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class Interaction:
    """A remote-control input forwarded to the content surface."""

    kind: str  # 'click' | 'type' | 'key' | 'scroll'
    x: int = 0
    y: int = 0
    button: str = "left"
    text: str = ""
    selector: Optional[str] = None
    key: str = ""


_ERRORS_BY_KIND = {
    FaultKind.SESSION_CLOSED: SessionClosedError,
    FaultKind.SURFACE_CRASHED: SurfaceCrashedError,
    FaultKind.FATAL: FatalSessionError,
}


def _as_render_error(exc: BaseException) -> RenderError:
    if isinstance(exc, RenderError):
        return exc
    return _ERRORS_BY_KIND.get(classify_failure(exc), RenderError)(str(exc))


async def _close_quietly(resource, label: str) -> None:
    try:
        await resource.close()
    except Exception as e:
        logger.debug(f"Ignoring error while closing {label}: {e}")


class SessionManager:
    """Keeps a single browser session rendering, recovering it when it breaks.

    Only one recovery (surface or session level) runs at a time; a request
    arriving while one is in flight is dropped with a warning. Navigation and
    capture wait for an in-flight recovery to finish before proceeding.
    """

    def __init__(
        self,
        driver_factory: Callable[[], RenderDriver],
        display: DisplaySettings,
        config: Optional[SessionConfig] = None,
        chrome: Optional[DisplayChrome] = None,
        reaper: Callable[[list[str]], int] = kill_orphaned_processes,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._driver_factory = driver_factory
        self.display = display
        self.config = config or SessionConfig()
        self.chrome = chrome or NullDisplayChrome()
        self._reaper = reaper
        self._clock = clock

        self._driver: Optional[RenderDriver] = None
        self._surface: Optional[RenderSurface] = None
        self._state = SessionState.UNINITIALIZED
        self._recovering = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._recovery_attempts = 0
        self._surface_faults = 0
        self._last_fault_at: Optional[float] = None
        self._navigation_count = 0
        self._started_at: Optional[float] = None
        self._current_url = ""
        self._chrome_hidden = False
        self._background: set[asyncio.Task] = set()
        self._recovery_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == SessionState.READY and self._surface is not None

    @property
    def current_url(self) -> str:
        return self._current_url

    @property
    def recovery_attempts(self) -> int:
        return self._recovery_attempts

    @property
    def navigation_count(self) -> int:
        return self._navigation_count

    async def initialize(self) -> None:
        """Launch the session and open its first surface.

        Raises:
            Exception: Whatever the driver raised; the session stays UNINITIALIZED
        """
        if self.display.kiosk_mode and not self._chrome_hidden:
            self._chrome_hidden = self.chrome.hide()

        await self._reap_processes()
        await self._start_session()
        self._state = SessionState.READY
        logger.info("Browser session initialized")

    async def _reap_processes(self) -> None:
        if self.config.process_names:
            await asyncio.to_thread(self._reaper, list(self.config.process_names))

    async def _start_session(self) -> None:
        driver = self._driver_factory()
        try:
            await driver.launch(self.display)
            surface = await self._open_surface(driver)
        except BaseException:
            # Includes cancellation, so a launched browser is never leaked
            await _close_quietly(driver, "driver")
            raise
        self._driver = driver
        self._surface = surface
        self._started_at = self._clock()
        self._navigation_count = 0
        self._surface_faults = 0
        self._last_fault_at = None

    async def _open_surface(self, driver: RenderDriver) -> RenderSurface:
        surface = await driver.new_surface()
        if not self.display.kiosk_mode:
            await surface.set_viewport(self.display.width, self.display.height)
        surface.on_crash(self._on_crash_event)
        try:
            await surface.add_init_script(CREDENTIALS_LOCKDOWN_SCRIPT)
            await surface.disable_webauthn()
        except Exception as e:
            logger.debug(f"Credential lockdown unavailable: {e}")
        return surface

    async def _teardown(self) -> None:
        surface, driver = self._surface, self._driver
        self._surface = None
        self._driver = None
        if surface is not None:
            await _close_quietly(surface, "surface")
        if driver is not None:
            await _close_quietly(driver, "driver")

    def _begin_recovery(self) -> None:
        self._recovering = True
        self._idle.clear()
        self._state = SessionState.RECOVERING

    def _end_recovery(self) -> None:
        self._recovering = False
        self._idle.set()

    def _unavailable(self) -> SessionClosedError:
        if self._state == SessionState.DEGRADED:
            return SessionDegradedError(
                "Session recovery exhausted - manual intervention required"
            )
        return SessionClosedError("Session is not available")

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def recover(self, reset_attempts: bool = False) -> bool:
        """Tear down and relaunch the whole session.

        Args:
            reset_attempts: Start the failure count afresh (manual restarts)

        Returns:
            True if the session is READY afterwards
        """
        if self._recovering:
            logger.warning("Recovery already in progress, dropping request")
            return False

        self._begin_recovery()
        return await self._detach_recovery(self._relaunch(reset_attempts))

    async def _detach_recovery(self, work: Awaitable[bool]) -> bool:
        # A cancelled caller must not abandon a half-finished recovery
        task = asyncio.ensure_future(work)
        self._recovery_task = task
        return await asyncio.shield(task)

    async def _relaunch(self, reset_attempts: bool) -> bool:
        if reset_attempts:
            self._recovery_attempts = 0
        self._recovery_attempts += 1
        attempt = self._recovery_attempts
        limit = self.config.max_session_recoveries
        logger.warning(f"Recovering browser session (attempt {attempt}/{limit})")

        try:
            await self._teardown()
            await asyncio.sleep(self.config.recovery_cooldown)
            await self._reap_processes()
            await self._start_session()
        except Exception as e:
            logger.error(f"Session recovery attempt {attempt} failed: {e}")
            if attempt >= limit:
                self._state = SessionState.DEGRADED
                logger.critical(
                    f"Browser session failed to recover after {attempt} attempts - "
                    "manual intervention required"
                )
            else:
                self._state = SessionState.UNINITIALIZED
            return False
        else:
            self._recovery_attempts = 0
            self._current_url = ""
            self._state = SessionState.READY
            logger.info("Browser session recovered")
            return True
        finally:
            self._end_recovery()

    async def _auto_recover(self) -> bool:
        if self._state == SessionState.DEGRADED:
            logger.error("Session is degraded; automatic recovery disabled")
            return False
        return await self.recover()

    async def recreate_surface(self) -> bool:
        """Replace the content surface, keeping the session.

        Falls back to a full session recovery when the surface cannot be
        reopened.
        """
        if self._recovering:
            logger.warning("Recovery already in progress, dropping surface recreation")
            return False
        if self._driver is None:
            return await self._auto_recover()

        self._begin_recovery()
        if not await self._detach_recovery(self._reopen_surface(self._driver)):
            return await self._auto_recover()
        return True

    async def _reopen_surface(self, driver: RenderDriver) -> bool:
        try:
            old = self._surface
            self._surface = None
            if old is not None:
                await _close_quietly(old, "surface")
            self._surface = await self._open_surface(driver)
            self._navigation_count = 0
            self._state = SessionState.READY
            logger.info("Content surface recreated")
            return True
        except Exception as e:
            logger.error(f"Failed to recreate surface: {e}")
            return False
        finally:
            self._end_recovery()

    def _on_crash_event(self) -> None:
        self._spawn(self.handle_surface_crash())

    async def handle_surface_crash(self) -> None:
        """React to a surface crash reported by the driver.

        More than max_surface_faults crashes, or two crashes inside the fault
        window, escalate to a full session recovery.
        """
        now = self._clock()
        self._surface_faults += 1
        rapid = (
            self._last_fault_at is not None
            and now - self._last_fault_at < self.config.fault_window_seconds
        )
        self._last_fault_at = now
        logger.error(f"Content surface crashed (fault #{self._surface_faults})")

        if self._surface_faults > self.config.max_surface_faults or rapid:
            logger.warning("Repeated surface crashes, escalating to session recovery")
            self._surface_faults = 0
            await self._auto_recover()
        else:
            await self.recreate_surface()

    def _uptime_exceeded(self) -> bool:
        if self._started_at is None:
            return False
        limit = self.config.restart_interval_hours * 3600
        return self._clock() - self._started_at >= limit

    async def navigate(self, url: str) -> None:
        """Render a URL on the content surface.

        Raises:
            SessionDegradedError: Recovery is exhausted
            SessionClosedError: The session is gone and could not be recovered
            SurfaceCrashedError: The surface crashed during navigation
            FatalSessionError: The session hit a fatal fault (recovery attempted)
            RenderError: Any other navigation failure
        """
        await self._idle.wait()
        if self._state == SessionState.DEGRADED:
            raise self._unavailable()

        if not self.is_ready:
            logger.warning("Session not ready, recovering before navigation")
            if not await self._auto_recover():
                raise self._unavailable()

        if self._uptime_exceeded():
            logger.info(
                f"Session uptime exceeded {self.config.restart_interval_hours}h, "
                "performing preventive restart"
            )
            if not await self.recover():
                raise self._unavailable()

        self._navigation_count += 1
        if self._navigation_count >= self.config.max_navigations:
            logger.info(
                f"Reached {self._navigation_count} navigations, recycling surface"
            )
            if not await self.recreate_surface():
                raise self._unavailable()

        try:
            await self._goto(url)
        except Exception as exc:
            await self._handle_navigation_failure(url, exc)

    async def _goto(self, url: str) -> None:
        surface = self._surface
        if surface is None:
            raise SessionClosedError("Surface has been closed")
        try:
            await surface.goto(url, self.config.navigation_timeout_ms)
        except Exception as exc:
            if classify_failure(exc) != FaultKind.NAVIGATION_TIMEOUT:
                raise
            logger.warning(f"Navigation to {url} did not settle in time, continuing")

        self._current_url = url
        self._surface_faults = 0
        logger.info(f"Navigated to {url}")
        await self._hide_cursor(surface)

    async def _hide_cursor(self, surface: RenderSurface) -> None:
        try:
            await surface.add_style(HIDE_CURSOR_CSS)
        except Exception as e:
            logger.debug(f"Could not hide cursor: {e}")

    async def _handle_navigation_failure(self, url: str, exc: Exception) -> None:
        kind = classify_failure(exc)

        if kind == FaultKind.SESSION_CLOSED:
            logger.error(f"Session closed while navigating to {url}: {exc}")
            if not await self._auto_recover():
                raise self._unavailable() from exc
            try:
                await self._goto(url)
            except Exception as retry_exc:
                logger.error(f"Retry navigation to {url} failed: {retry_exc}")
                raise _as_render_error(retry_exc) from retry_exc
            return

        if kind == FaultKind.SURFACE_CRASHED:
            logger.error(f"Surface crashed while navigating to {url}: {exc}")
            raise SurfaceCrashedError(str(exc)) from exc

        if kind == FaultKind.FATAL:
            logger.error(f"Fatal session fault while navigating to {url}: {exc}")
            await self._auto_recover()
            raise FatalSessionError(str(exc)) from exc

        logger.error(f"Navigation to {url} failed: {exc}")
        raise _as_render_error(exc) from exc

    def _require_surface(self) -> RenderSurface:
        if not self.is_ready:
            raise self._unavailable()
        return self._surface

    async def capture_frame(self, quality: int = 80) -> str:
        """Capture the surface as a base64-encoded JPEG."""
        await self._idle.wait()
        surface = self._require_surface()
        try:
            data = await surface.screenshot(quality)
        except Exception as exc:
            if classify_failure(exc) == FaultKind.FATAL:
                logger.error(f"Fatal session fault during capture: {exc}")
                self._spawn(self._auto_recover())
            raise _as_render_error(exc) from exc
        return base64.b64encode(data).decode("ascii")

    async def refresh(self) -> None:
        """Reload the current surface."""
        await self._idle.wait()
        surface = self._require_surface()
        try:
            await surface.reload(self.config.navigation_timeout_ms)
        except Exception as exc:
            if classify_failure(exc) != FaultKind.NAVIGATION_TIMEOUT:
                logger.error(f"Refresh failed: {exc}")
                raise _as_render_error(exc) from exc
        logger.info("Surface refreshed")
        await self._hide_cursor(surface)

    async def interact(self, action: Interaction) -> bool:
        """Forward a remote-control input. Input failures are logged, not raised."""
        surface = self._require_surface()
        try:
            if action.kind == "click":
                await surface.click(action.x, action.y, action.button)
            elif action.kind == "type":
                await surface.type_text(action.text, action.selector)
            elif action.kind == "key":
                await surface.press(action.key)
            elif action.kind == "scroll":
                await surface.scroll(action.x, action.y)
            else:
                logger.warning(f"Unknown interaction kind: {action.kind}")
                return False
        except Exception as e:
            logger.error(f"Remote {action.kind} failed: {e}")
            return False
        logger.debug(f"Remote {action.kind} applied")
        return True

    def apply_display(self, display: DisplaySettings) -> None:
        """Adopt new display settings for the next (re)launch."""
        if self.display.kiosk_mode and not display.kiosk_mode and self._chrome_hidden:
            self.chrome.show()
            self._chrome_hidden = False
        self.display = display

    async def restart(
        self,
        display: Optional[DisplaySettings] = None,
        attempts: int = 3,
        retry_delay: float = 3.0,
    ) -> bool:
        """Dispose and reinitialize, optionally with new display settings."""
        if self._recovering:
            logger.warning("Recovery in progress, cannot restart session now")
            return False
        if display is not None:
            self.apply_display(display)

        await self.dispose(restore_chrome=False)
        for attempt in range(1, attempts + 1):
            try:
                await self.initialize()
                return True
            except Exception as e:
                logger.error(f"Session restart attempt {attempt}/{attempts} failed: {e}")
                if attempt < attempts:
                    await asyncio.sleep(retry_delay)
        return False

    async def dispose(self, restore_chrome: bool = True) -> None:
        """Close the session and optionally restore the host display chrome."""
        for task in list(self._background):
            task.cancel()
        recovery, self._recovery_task = self._recovery_task, None
        if recovery is not None and not recovery.done():
            recovery.cancel()
            await asyncio.gather(recovery, return_exceptions=True)
        await self._teardown()
        self._state = SessionState.UNINITIALIZED
        self._current_url = ""
        if restore_chrome and self._chrome_hidden:
            self.chrome.show()
            self._chrome_hidden = False
        logger.info("Browser session disposed")
