"""Message bus records, consumer and dead-letter queue."""

from .consumer import LinkUpdateConsumer, create_consumer
from .dlq import DeadLetterPublisher
from .messages import encode_link_update, parse_link_update

__all__ = [
    "LinkUpdateConsumer",
    "create_consumer",
    "DeadLetterPublisher",
    "encode_link_update",
    "parse_link_update",
]
