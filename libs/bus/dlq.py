"""Dead-letter publishing for records the consumer cannot process."""

from __future__ import annotations

import logging

from aiokafka import AIOKafkaProducer

from libs.core.models import utcnow

logger = logging.getLogger(__name__)

DLQ_KEY = b"error"


class DeadLetterPublisher:
    """Copies the original record bytes to the DLQ with the failure reason."""

    def __init__(self, producer: AIOKafkaProducer, topic: str) -> None:
        self.producer = producer
        self.topic = topic

    async def publish(self, raw: bytes, error: str) -> None:
        timestamp = utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")
        await self.producer.send_and_wait(
            self.topic,
            key=DLQ_KEY,
            value=raw or b"",
            headers=[
                ("error", error.encode("utf-8")),
                ("timestamp", timestamp.encode("utf-8")),
            ],
        )
        logger.info("Record sent to %s: %s", self.topic, error)


__all__ = ["DeadLetterPublisher", "DLQ_KEY"]
