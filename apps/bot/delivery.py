"""Delivery of update events to Telegram chats."""

from __future__ import annotations

import logging
from typing import List

from telegram import Bot
from telegram.error import TelegramError

from libs.core.models import LinkUpdate
from libs.metrics import BOT_MESSAGES

logger = logging.getLogger(__name__)

MAX_MESSAGE_LEN = 4096


def render_message(update: LinkUpdate) -> str:
    if update.url and update.url not in update.description:
        return f"{update.description}\n\n{update.url}"
    return update.description


def split_message(text: str, limit: int = MAX_MESSAGE_LEN) -> List[str]:
    if len(text) <= limit:
        return [text]
    return [text[i : i + limit] for i in range(0, len(text), limit)]


class TelegramUpdateSender:
    """Sends one message per chat; a failing chat does not stop the others."""

    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def __call__(self, update: LinkUpdate) -> int:
        parts = split_message(render_message(update))
        delivered = 0
        for chat_id in update.tg_chat_ids:
            try:
                for part in parts:
                    await self.bot.send_message(chat_id=chat_id, text=part)
            except TelegramError as exc:
                logger.warning("Failed to send update %d to chat %d: %s", update.id, chat_id, exc)
                BOT_MESSAGES.labels(status="failed").inc()
                continue
            BOT_MESSAGES.labels(status="sent").inc()
            delivered += 1
        logger.info(
            "Update %d delivered to %d of %d chats",
            update.id,
            delivered,
            len(update.tg_chat_ids),
        )
        return delivered


__all__ = ["TelegramUpdateSender", "render_message", "split_message"]
