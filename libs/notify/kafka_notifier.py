"""Asynchronous delivery through the Kafka update topic."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from libs.bus.messages import encode_link_update
from libs.core.exceptions import NotificationError
from libs.core.models import LinkUpdate

from .base import BotNotifier
from .formatting import with_formatted_description

logger = logging.getLogger(__name__)


class KafkaBotNotifier(BotNotifier):
    """Publishes updates keyed by link id so one link stays on one partition."""

    name = "kafka"

    def __init__(
        self,
        bootstrap_servers: List[str],
        topic: str,
        client_id: str = "scrapper",
        producer: Optional[AIOKafkaProducer] = None,
    ) -> None:
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.client_id = client_id
        self._producer = producer
        self._owns_producer = producer is None
        self._started = False
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        async with self._lock:
            if self._started:
                return
            if self._producer is None:
                self._producer = AIOKafkaProducer(
                    bootstrap_servers=self.bootstrap_servers,
                    client_id=self.client_id,
                    linger_ms=10,
                    acks="all",
                )
            try:
                await self._producer.start()
            except KafkaError:
                if self._owns_producer:
                    # A producer that failed to start cannot be started again
                    self._producer = None
                raise
            self._started = True
            logger.info("Kafka producer connected to %s", ",".join(self.bootstrap_servers))

    async def close(self) -> None:
        async with self._lock:
            if self._producer is not None and self._started:
                await self._producer.stop()
                self._started = False
                logger.info("Kafka producer stopped")

    async def send_update(self, update: LinkUpdate) -> None:
        value = encode_link_update(with_formatted_description(update))
        try:
            if not self._started:
                await self.start()
            await self._producer.send_and_wait(
                self.topic,
                key=str(update.id).encode("utf-8"),
                value=value,
                timestamp_ms=int(time.time() * 1000),
            )
        except KafkaError as exc:
            raise NotificationError(f"failed to publish update {update.id}: {exc}") from exc
        logger.debug("Published update %d to %s", update.id, self.topic)


__all__ = ["KafkaBotNotifier"]
