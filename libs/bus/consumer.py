"""Consumer of update records with dead-letter routing.

Offsets are committed manually. A record is only committed past once it
was either handed to the handler or written to the DLQ, so an invalid
record can never be dropped silently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from aiokafka import AIOKafkaConsumer, ConsumerRecord, TopicPartition
from aiokafka.errors import KafkaError

from libs.core.exceptions import InvalidUpdateMessageError
from libs.core.models import LinkUpdate
from libs.core.settings import Settings

from .dlq import DeadLetterPublisher
from .messages import parse_link_update

logger = logging.getLogger(__name__)

UpdateHandler = Callable[[LinkUpdate], Awaitable[None]]


def create_consumer(settings: Settings) -> AIOKafkaConsumer:
    return AIOKafkaConsumer(
        settings.topic_link_updates,
        bootstrap_servers=settings.brokers,
        group_id=settings.consumer_group_id,
        enable_auto_commit=False,
        auto_offset_reset="earliest",
    )


class LinkUpdateConsumer:
    def __init__(
        self,
        consumer: AIOKafkaConsumer,
        dlq: DeadLetterPublisher,
        handler: UpdateHandler,
        commit_interval: float = 1.0,
        retry_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.consumer = consumer
        self.dlq = dlq
        self.handler = handler
        self.commit_interval = commit_interval
        self.retry_delay = retry_delay
        self._clock = clock
        self._last_commit = clock()

    async def run(self) -> None:
        """Consume until cancelled; pending offsets are committed on exit."""
        logger.info("Update consumer started")
        try:
            while True:
                try:
                    record = await self.consumer.getone()
                except KafkaError as exc:
                    logger.error(
                        "Fetching updates failed, retrying in %.1fs: %s", self.retry_delay, exc
                    )
                    await asyncio.sleep(self.retry_delay)
                    continue
                await self.process(record)
                await self._maybe_commit()
        finally:
            await self.commit()
            logger.info("Update consumer stopped")

    async def process(self, record: ConsumerRecord) -> bool:
        """Handle one record; returns False if it has to be read again."""
        try:
            update = parse_link_update(record.value)
        except InvalidUpdateMessageError as exc:
            logger.warning(
                "Invalid update at %s[%d]@%d: %s",
                record.topic,
                record.partition,
                record.offset,
                exc,
            )
            try:
                await self.dlq.publish(record.value, str(exc))
            except KafkaError as dlq_exc:
                logger.error(
                    "DLQ write failed, will re-read offset %d: %s", record.offset, dlq_exc
                )
                self.consumer.seek(
                    TopicPartition(record.topic, record.partition), record.offset
                )
                await asyncio.sleep(self.retry_delay)
                return False
            return True

        try:
            await self.handler(update)
        except Exception:
            logger.exception("Failed to handle update %d", update.id)
        return True

    async def commit(self) -> None:
        try:
            await self.consumer.commit()
        except KafkaError as exc:
            logger.warning("Offset commit failed: %s", exc)
        self._last_commit = self._clock()

    async def _maybe_commit(self) -> None:
        if self._clock() - self._last_commit >= self.commit_interval:
            await self.commit()


__all__ = ["LinkUpdateConsumer", "UpdateHandler", "create_consumer"]
