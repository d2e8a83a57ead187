"""
Host display chrome control.

In kiosk mode the host shell (taskbar, panels) is hidden while the session
runs and must be restored when the session is disposed or kiosk mode is
turned off. Platforms plug in their own DisplayChrome; the default only logs.
"""

from typing import Protocol

from loguru import logger


class DisplayChrome(Protocol):
    def hide(self) -> bool: ...

    def show(self) -> bool: ...


class NullDisplayChrome:
    """DisplayChrome for hosts with nothing to hide."""

    def hide(self) -> bool:
        logger.debug("Display chrome hide requested (no-op on this platform)")
        return True

    def show(self) -> bool:
        logger.debug("Display chrome show requested (no-op on this platform)")
        return True
