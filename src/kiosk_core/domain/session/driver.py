"""
Browser driver seam.

The session manager only talks to the RenderDriver and RenderSurface
protocols. PlaywrightDriver is the production implementation on top of
Playwright's async API with a persistent Chromium profile.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol

from loguru import logger


@dataclass(frozen=True)
class DisplaySettings:
    """Window geometry and mode for a session."""

    width: int = 1920
    height: int = 1080
    kiosk_mode: bool = False
    headless: bool = False


class RenderSurface(Protocol):
    """A single content surface (one browser page)."""

    @property
    def url(self) -> str: ...

    def on_crash(self, callback: Callable[[], None]) -> None: ...

    async def goto(self, url: str, timeout_ms: int) -> None: ...

    async def reload(self, timeout_ms: int) -> None: ...

    async def screenshot(self, quality: int) -> bytes: ...

    async def click(self, x: int, y: int, button: str) -> None: ...

    async def type_text(self, text: str, selector: Optional[str]) -> None: ...

    async def press(self, key: str) -> None: ...

    async def scroll(self, x: int, y: int) -> None: ...

    async def add_style(self, css: str) -> None: ...

    async def add_init_script(self, script: str) -> None: ...

    async def disable_webauthn(self) -> None: ...

    async def set_viewport(self, width: int, height: int) -> None: ...

    async def close(self) -> None: ...


class RenderDriver(Protocol):
    """Owns the browser process and hands out surfaces."""

    async def launch(self, display: DisplaySettings) -> None: ...

    async def new_surface(self) -> RenderSurface: ...

    async def close(self) -> None: ...


def build_browser_args(display: DisplaySettings) -> list[str]:
    """Chromium command-line flags for a kiosk display."""
    args = [
        "--no-first-run",
        "--no-default-browser-check",
        "--disable-infobars",
        "--disable-session-crashed-bubble",
        "--disable-translate",
        "--autoplay-policy=no-user-gesture-required",
        "--disable-features=WebAuthentication,PasswordManagerOnboarding",
        "--password-store=basic",
        f"--window-size={display.width},{display.height}",
    ]
    if display.kiosk_mode:
        args.extend(["--kiosk", "--start-fullscreen", "--window-position=0,0"])
    return args


class PlaywrightSurface:
    """RenderSurface backed by a Playwright Page."""

    def __init__(self, page):
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    def on_crash(self, callback: Callable[[], None]) -> None:
        self._page.on("crash", lambda _page: callback())

    async def goto(self, url: str, timeout_ms: int) -> None:
        await self._page.goto(url, wait_until="networkidle", timeout=timeout_ms)

    async def reload(self, timeout_ms: int) -> None:
        await self._page.reload(wait_until="networkidle", timeout=timeout_ms)

    async def screenshot(self, quality: int) -> bytes:
        return await self._page.screenshot(type="jpeg", quality=quality, full_page=False)

    async def click(self, x: int, y: int, button: str) -> None:
        await self._page.mouse.click(x, y, button=button)

    async def type_text(self, text: str, selector: Optional[str]) -> None:
        if selector:
            await self._page.focus(selector)
        await self._page.keyboard.type(text)

    async def press(self, key: str) -> None:
        await self._page.keyboard.press(key)

    async def scroll(self, x: int, y: int) -> None:
        await self._page.evaluate("([x, y]) => window.scrollTo(x, y)", [x, y])

    async def add_style(self, css: str) -> None:
        await self._page.add_style_tag(content=css)

    async def add_init_script(self, script: str) -> None:
        await self._page.add_init_script(script)

    async def disable_webauthn(self) -> None:
        cdp = await self._page.context.new_cdp_session(self._page)
        await cdp.send("WebAuthn.disable")

    async def set_viewport(self, width: int, height: int) -> None:
        await self._page.set_viewport_size({"width": width, "height": height})

    async def close(self) -> None:
        if not self._page.is_closed():
            await self._page.close()


class PlaywrightDriver:
    """RenderDriver using a persistent Chromium context.

    The persistent profile keeps cookies and local storage across restarts
    so authenticated dashboards stay logged in.
    """

    def __init__(self, profile_dir: Path, channel: Optional[str] = None):
        self.profile_dir = Path(profile_dir)
        self.channel = channel
        self._playwright = None
        self._context = None

    async def launch(self, display: DisplaySettings) -> None:
        from playwright.async_api import async_playwright

        self.profile_dir.mkdir(parents=True, exist_ok=True)
        self._playwright = await async_playwright().start()

        options = {
            "headless": display.headless,
            "args": build_browser_args(display),
            "ignore_default_args": ["--enable-automation"],
        }
        if self.channel:
            options["channel"] = self.channel
        if display.kiosk_mode:
            # The window is fullscreen; let the page fill it
            options["no_viewport"] = True
        else:
            options["viewport"] = {"width": display.width, "height": display.height}

        logger.info(
            f"Launching Chromium ({display.width}x{display.height}, "
            f"kiosk={display.kiosk_mode}, headless={display.headless})"
        )
        self._context = await self._playwright.chromium.launch_persistent_context(
            str(self.profile_dir), **options
        )

    async def new_surface(self) -> PlaywrightSurface:
        if self._context is None:
            raise RuntimeError("Browser context is not launched")
        # Reuse the blank page a persistent context opens with
        blank = [page for page in self._context.pages if page.url == "about:blank"]
        page = blank[0] if blank else await self._context.new_page()
        return PlaywrightSurface(page)

    async def close(self) -> None:
        context, playwright = self._context, self._playwright
        self._context = None
        self._playwright = None
        try:
            if context is not None:
                await context.close()
        finally:
            if playwright is not None:
                await playwright.stop()
