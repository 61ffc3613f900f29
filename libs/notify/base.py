"""Notifier interface for delivering update events to the bot service."""

from __future__ import annotations

from abc import ABC, abstractmethod

from libs.core.models import LinkUpdate


class BotNotifier(ABC):
    """Delivers :class:`LinkUpdate` events; failures raise ``NotificationError``."""

    name = "notifier"

    async def start(self) -> None:
        """Acquire transport resources."""

    async def close(self) -> None:
        """Release transport resources."""

    @abstractmethod
    async def send_update(self, update: LinkUpdate) -> None:
        ...


__all__ = ["BotNotifier"]
