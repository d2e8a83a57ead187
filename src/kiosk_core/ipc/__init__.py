"""IPC layer - event channel to the management server and inbound routing."""

from .channel import ChannelClosedError, EventChannel
from .dispatcher import EventDispatcher, Route
from .protocol import (
    BroadcastStartPayload,
    ClickPayload,
    ContentUpdatePayload,
    DisplayConfigPayload,
    Envelope,
    KeyPayload,
    NavigatePayload,
    PlaylistItemPayload,
    ScrollPayload,
    TypePayload,
)

__all__ = [
    # Channel
    "ChannelClosedError",
    "EventChannel",
    # Dispatch
    "EventDispatcher",
    "Route",
    # Protocol
    "BroadcastStartPayload",
    "ClickPayload",
    "ContentUpdatePayload",
    "DisplayConfigPayload",
    "Envelope",
    "KeyPayload",
    "NavigatePayload",
    "PlaylistItemPayload",
    "ScrollPayload",
    "TypePayload",
]
