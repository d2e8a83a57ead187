"""
Render failure taxonomy.

Driver exceptions are classified by their message, because browser automation
libraries report closed targets, renderer crashes and dead browser processes
through one generic error type.
"""

from enum import Enum


class FaultKind(str, Enum):
    NAVIGATION_TIMEOUT = "navigation_timeout"
    SESSION_CLOSED = "session_closed"
    SURFACE_CRASHED = "surface_crashed"
    FATAL = "fatal"
    OTHER = "other"


class RenderError(Exception):
    """A navigation or capture could not be completed."""

    kind = FaultKind.OTHER


class SessionClosedError(RenderError):
    """The surface or the whole session went away."""

    kind = FaultKind.SESSION_CLOSED


class SessionDegradedError(SessionClosedError):
    """Automatic recovery has been exhausted; manual intervention required."""


class SurfaceCrashedError(RenderError):
    """The content surface crashed; the session itself may still be alive."""

    kind = FaultKind.SURFACE_CRASHED


class FatalSessionError(RenderError):
    """The session's process died or hit a memory fault."""

    kind = FaultKind.FATAL


_CLOSED_MARKERS = ("target closed", "has been closed", "target page, context or browser")
_CRASH_MARKERS = ("crash",)
_FATAL_MARKERS = (
    "access_violation",
    "access violation",
    "status_breakpoint",
    "browser has disconnected",
)


def classify_failure(exc: BaseException) -> FaultKind:
    """Map a driver exception to a FaultKind.

    Already-classified RenderErrors keep their kind. Timeouts are matched by
    type name so both asyncio and driver-specific timeout errors qualify.
    """
    if isinstance(exc, RenderError):
        return exc.kind
    if isinstance(exc, TimeoutError) or type(exc).__name__ == "TimeoutError":
        return FaultKind.NAVIGATION_TIMEOUT

    message = str(exc).lower()
    if any(marker in message for marker in _CLOSED_MARKERS):
        return FaultKind.SESSION_CLOSED
    if any(marker in message for marker in _CRASH_MARKERS):
        return FaultKind.SURFACE_CRASHED
    if any(marker in message for marker in _FATAL_MARKERS):
        return FaultKind.FATAL
    return FaultKind.OTHER
