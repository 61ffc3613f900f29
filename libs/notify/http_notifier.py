"""Synchronous delivery to the bot service over HTTP."""

from __future__ import annotations

import logging

from libs.core.exceptions import NotificationError, UpstreamError
from libs.core.models import LinkUpdate
from libs.http import ResilientHttpClient

from .base import BotNotifier
from .formatting import with_formatted_description

logger = logging.getLogger(__name__)


class HttpBotNotifier(BotNotifier):
    name = "http"

    def __init__(self, http: ResilientHttpClient, base_url: str) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")

    async def send_update(self, update: LinkUpdate) -> None:
        payload = with_formatted_description(update).to_payload()
        try:
            response = await self.http.post(f"{self.base_url}/updates", json=payload)
        except UpstreamError as exc:
            raise NotificationError(f"bot service unreachable: {exc}") from exc
        if response.status_code != 200:
            raise NotificationError(
                f"bot service rejected update {update.id}: HTTP {response.status_code}"
            )
        logger.info(
            "Update %d sent over HTTP to %d chats", update.id, len(update.tg_chat_ids)
        )


__all__ = ["HttpBotNotifier"]
