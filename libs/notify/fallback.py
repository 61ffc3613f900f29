"""Primary/secondary notifier composition."""

from __future__ import annotations

import logging

from libs.core.exceptions import NotificationError
from libs.core.models import LinkUpdate

from .base import BotNotifier

logger = logging.getLogger(__name__)


class FallbackBotNotifier(BotNotifier):
    """Tries ``primary`` then ``secondary``; if both fail the primary error is raised."""

    name = "fallback"

    def __init__(self, primary: BotNotifier, secondary: BotNotifier) -> None:
        self.primary = primary
        self.secondary = secondary

    async def start(self) -> None:
        for notifier in (self.primary, self.secondary):
            try:
                await notifier.start()
            except Exception as exc:
                # The other transport may still work; it retries on first send.
                logger.warning("Failed to start %s notifier: %s", notifier.name, exc)

    async def close(self) -> None:
        await self.primary.close()
        await self.secondary.close()

    async def send_update(self, update: LinkUpdate) -> None:
        try:
            await self.primary.send_update(update)
            return
        except NotificationError as primary_error:
            logger.warning(
                "Primary %s notifier failed for update %d, trying %s: %s",
                self.primary.name,
                update.id,
                self.secondary.name,
                primary_error,
            )
            try:
                await self.secondary.send_update(update)
            except NotificationError as secondary_error:
                logger.error(
                    "Fallback %s notifier failed for update %d: %s",
                    self.secondary.name,
                    update.id,
                    secondary_error,
                )
                raise primary_error
            logger.info("Update %d delivered by fallback %s", update.id, self.secondary.name)


__all__ = ["FallbackBotNotifier"]
