"""Pydantic models representing core domain entities."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PREVIEW_LENGTH = 200


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes coming back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def text_preview(text: str, length: int = PREVIEW_LENGTH) -> str:
    """Cut ``text`` to at most ``length`` characters, ending with ``...`` if cut."""
    text = (text or "").strip()
    if len(text) <= length:
        return text
    return text[: max(length - 3, 0)].rstrip() + "..."


class LinkType(str, Enum):
    GITHUB = "github"
    STACKOVERFLOW = "stackoverflow"
    UNKNOWN = "unknown"


class NotificationMode(str, Enum):
    INSTANT = "instant"
    DIGEST = "digest"


class Link(BaseModel):
    """A tracked upstream resource shared by every chat that follows it."""

    id: Optional[int] = None
    url: str
    type: LinkType = LinkType.UNKNOWN
    tags: List[str] = Field(default_factory=list)
    filters: List[str] = Field(default_factory=list)
    last_checked: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class Chat(BaseModel):
    """Chat subscribed to links, identified by the external chat id."""

    id: int
    links: List[int] = Field(default_factory=list)
    notification_mode: NotificationMode = NotificationMode.INSTANT
    digest_hour: Optional[int] = None
    digest_minute: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ContentDetails(BaseModel):
    """Last known details of the upstream resource behind a link."""

    link_id: int
    link_type: LinkType
    title: str = ""
    author: str = ""
    updated_at: Optional[datetime] = None
    content_text: str = ""


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UpdateInfo(_CamelModel):
    """Snapshot of upstream details attached to an update event."""

    title: str = ""
    author: str = ""
    updated_at: Optional[datetime] = None
    content_type: str = ""
    text_preview: str = ""
    full_text: str = ""


class LinkUpdate(_CamelModel):
    """Update event sent to the bot service, over HTTP or the bus."""

    id: int = 0
    url: str = ""
    description: str = ""
    tg_chat_ids: List[int] = Field(default_factory=list)
    update_info: Optional[UpdateInfo] = None

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


__all__ = [
    "PREVIEW_LENGTH",
    "utcnow",
    "as_utc",
    "text_preview",
    "LinkType",
    "NotificationMode",
    "Link",
    "Chat",
    "ContentDetails",
    "UpdateInfo",
    "LinkUpdate",
]
