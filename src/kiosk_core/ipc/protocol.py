"""
Wire protocol with the management server.

Every message in both directions is a JSON envelope {"event": ..., "payload": ...}.
Inbound payloads are validated into the models below; field names on the wire
are camelCase.
"""

import json
from typing import Any, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from kiosk_core.domain.scheduler.models import BroadcastContent, ScheduledItem
from kiosk_core.domain.scheduler.rules import parse_time
from kiosk_core.domain.session.manager import Interaction


class Envelope(BaseModel):
    event: str
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("payload", mode="before")
    @classmethod
    def _null_payload(cls, value: Any) -> Any:
        return {} if value is None else value

    def to_json(self) -> str:
        return self.model_dump_json()


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class ContentRef(WireModel):
    url: Optional[str] = None


class PlaylistItemPayload(WireModel):
    id: int
    playlist_id: int = 0
    content_id: Optional[int] = None
    content: Optional[ContentRef] = None
    display_duration: int = 0  # milliseconds
    order_index: int = 0
    time_window_start: Optional[str] = None
    time_window_end: Optional[str] = None
    days_of_week: Optional[list[int]] = None

    @field_validator("time_window_start", "time_window_end", mode="before")
    @classmethod
    def _valid_time(cls, value: Any) -> Optional[str]:
        if not value:
            return None
        try:
            parse_time(value)
        except ValueError as e:
            logger.warning(f"Ignoring time window bound: {e}")
            return None
        return value

    @field_validator("days_of_week", mode="before")
    @classmethod
    def _parse_days(cls, value: Any) -> Optional[list[int]]:
        # The server sends either a JSON array or its string encoding
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                logger.warning(f"Ignoring unparseable daysOfWeek: {value!r}")
                return None
        if not isinstance(value, list):
            return None
        return [day for day in value if isinstance(day, int) and 0 <= day <= 6]

    def to_scheduled_item(self) -> ScheduledItem:
        source = self.content.url if self.content and self.content.url else ""
        return ScheduledItem(
            id=self.id,
            source_ref=source,
            duration_seconds=self.display_duration / 1000,
            order_index=self.order_index,
            time_window_start=self.time_window_start,
            time_window_end=self.time_window_end,
            days_of_week=frozenset(self.days_of_week) if self.days_of_week else None,
            content_id=self.content_id,
            playlist_id=self.playlist_id,
        )


class ContentUpdatePayload(WireModel):
    playlist_id: int = 0
    items: list[PlaylistItemPayload] = Field(default_factory=list)

    def scheduled_items(self) -> list[ScheduledItem]:
        return [item.to_scheduled_item() for item in self.items]


class NavigatePayload(WireModel):
    url: str


class BroadcastStartPayload(WireModel):
    type: str = "url"
    url: Optional[str] = None
    message: Optional[str] = None
    duration: int = 0  # milliseconds, 0 = until ended
    background: Optional[str] = None
    logo: Optional[str] = None
    logo_position: Optional[str] = None
    media_data: Optional[str] = None

    def to_content(self) -> BroadcastContent:
        return BroadcastContent(
            kind=self.type,
            url=self.url,
            message=self.message,
            background=self.background,
            logo=self.logo,
            logo_position=self.logo_position,
            media_data=self.media_data,
        )


class DisplayConfigPayload(WireModel):
    """Display settings pushed by the server (config:update or device config)."""

    display_width: Optional[int] = None
    display_height: Optional[int] = None
    kiosk_mode: Optional[bool] = None


class ClickPayload(WireModel):
    x: int
    y: int
    button: str = "left"

    def to_interaction(self) -> Interaction:
        return Interaction(kind="click", x=self.x, y=self.y, button=self.button)


class TypePayload(WireModel):
    text: str
    selector: Optional[str] = None

    def to_interaction(self) -> Interaction:
        return Interaction(kind="type", text=self.text, selector=self.selector)


class KeyPayload(WireModel):
    key: str

    def to_interaction(self) -> Interaction:
        return Interaction(kind="key", key=self.key)


class ScrollPayload(WireModel):
    x: int = 0
    y: int = 0

    def to_interaction(self) -> Interaction:
        return Interaction(kind="scroll", x=self.x, y=self.y)
