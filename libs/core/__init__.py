"""Core library exposing domain models, settings and exceptions."""

from .settings import Settings, get_settings
from .exceptions import DomainError, NotFoundError, ValidationError, Error
from .models import (
    Chat,
    ContentDetails,
    Link,
    LinkType,
    LinkUpdate,
    NotificationMode,
    UpdateInfo,
)

__all__ = [
    "Settings",
    "get_settings",
    "DomainError",
    "NotFoundError",
    "ValidationError",
    "Error",
    "Chat",
    "ContentDetails",
    "Link",
    "LinkType",
    "LinkUpdate",
    "NotificationMode",
    "UpdateInfo",
]
