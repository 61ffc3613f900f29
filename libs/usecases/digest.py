"""Digest aggregation: buffer updates per chat and flush them once a day."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from libs.cache import DigestBuffer
from libs.core.exceptions import NotificationError
from libs.core.models import LinkUpdate, text_preview, utcnow
from libs.notify import BotNotifier

logger = logging.getLogger(__name__)

DIGEST_PREVIEW_LENGTH = 100


def render_digest(updates: List[LinkUpdate], now: datetime, max_entries: int = 10) -> str:
    lines = [f"Digest of updates for {now:%d.%m.%Y}", ""]
    for number, update in enumerate(updates[:max_entries], start=1):
        lines.append(f"{number}. {update.url}")
        info = update.update_info
        if info is not None:
            lines.append(f"   {info.title} by {info.author}")
            if info.updated_at is not None:
                lines.append(f"   Time: {info.updated_at:%Y-%m-%d %H:%M}")
            if info.text_preview:
                lines.append(f"   {text_preview(info.text_preview, DIGEST_PREVIEW_LENGTH)}")
        else:
            lines.append(f"   {update.description}")
        lines.append("")
    if len(updates) > max_entries:
        lines.append(f"...and {len(updates) - max_entries} more updates")
    return "\n".join(lines).rstrip()


def next_digest_run(now: datetime, hour: int, minute: int) -> datetime:
    """First instant at ``hour:minute`` strictly after ``now``."""
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class DigestService:
    def __init__(
        self,
        buffer: DigestBuffer,
        notifier: BotNotifier,
        max_entries: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.buffer = buffer
        self.notifier = notifier
        self.max_entries = max_entries
        self._clock = clock

    async def add_update(self, update: LinkUpdate) -> None:
        """Buffer a single-chat copy of ``update`` for each of its chats."""
        for chat_id in update.tg_chat_ids:
            try:
                await self.buffer.add(
                    chat_id, update.model_copy(update={"tg_chat_ids": [chat_id]})
                )
            except (RedisError, PydanticValidationError) as exc:
                raise NotificationError(
                    f"could not buffer update {update.id} for chat {chat_id}: {exc}"
                ) from exc

    async def flush(self) -> int:
        """Send one digest per chat with buffered updates; returns digests sent."""
        try:
            chat_ids = await self.buffer.chat_ids()
        except RedisError as exc:
            logger.error("Digest buffer unavailable, nothing flushed: %s", exc)
            return 0
        sent = 0
        for chat_id in chat_ids:
            try:
                if await self._flush_chat(chat_id):
                    sent += 1
            except (RedisError, PydanticValidationError) as exc:
                logger.error("Digest for chat %d skipped, buffer unreadable: %s", chat_id, exc)
        logger.info("Digest flush sent %d digests", sent)
        return sent

    async def _flush_chat(self, chat_id: int) -> bool:
        updates = await self.buffer.get(chat_id)
        if not updates:
            return False
        digest = LinkUpdate(
            id=0,
            url=updates[0].url,
            description=render_digest(updates, self._clock(), self.max_entries),
            tg_chat_ids=[chat_id],
        )
        try:
            await self.notifier.send_update(digest)
        except NotificationError as exc:
            logger.error(
                "Digest for chat %d not sent, keeping %d updates: %s",
                chat_id,
                len(updates),
                exc,
            )
            return False
        # Only what was sent; updates buffered meanwhile wait for the next digest
        await self.buffer.clear(chat_id, len(updates))
        return True


class DigestScheduler:
    """Runs :meth:`DigestService.flush` every day at ``hour:minute`` UTC."""

    def __init__(
        self,
        service: DigestService,
        hour: int,
        minute: int,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.service = service
        self.hour = hour
        self.minute = minute
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="digest-scheduler")
            logger.info("Digest scheduler started for %02d:%02d UTC", self.hour, self.minute)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Digest scheduler stopped")

    async def run(self) -> None:
        while True:
            now = self._clock()
            run_at = next_digest_run(now, self.hour, self.minute)
            await self._sleep((run_at - now).total_seconds())
            try:
                await self.service.flush()
            except Exception:
                logger.exception("Digest flush failed")


__all__ = [
    "DigestService",
    "DigestScheduler",
    "render_digest",
    "next_digest_run",
]
