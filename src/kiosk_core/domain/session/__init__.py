"""Session domain - the self-healing browser session that renders content."""

from .display import DisplayChrome, NullDisplayChrome
from .driver import (
    DisplaySettings,
    PlaywrightDriver,
    RenderDriver,
    RenderSurface,
    build_browser_args,
)
from .faults import (
    FatalSessionError,
    FaultKind,
    RenderError,
    SessionClosedError,
    SessionDegradedError,
    SurfaceCrashedError,
    classify_failure,
)
from .manager import Interaction, SessionManager, SessionState
from .processes import kill_orphaned_processes
from .screencast import Screencast

__all__ = [
    # Display
    "DisplayChrome",
    "NullDisplayChrome",
    # Driver
    "DisplaySettings",
    "PlaywrightDriver",
    "RenderDriver",
    "RenderSurface",
    "build_browser_args",
    # Faults
    "FatalSessionError",
    "FaultKind",
    "RenderError",
    "SessionClosedError",
    "SessionDegradedError",
    "SurfaceCrashedError",
    "classify_failure",
    # Manager
    "Interaction",
    "SessionManager",
    "SessionState",
    "kill_orphaned_processes",
    "Screencast",
]
