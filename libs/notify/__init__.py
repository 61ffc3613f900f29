"""Delivery of update events to the bot service."""

from .base import BotNotifier
from .factory import TRANSPORT_HTTP, TRANSPORT_KAFKA, create_notifier
from .fallback import FallbackBotNotifier
from .formatting import format_description
from .http_notifier import HttpBotNotifier
from .kafka_notifier import KafkaBotNotifier

__all__ = [
    "BotNotifier",
    "FallbackBotNotifier",
    "HttpBotNotifier",
    "KafkaBotNotifier",
    "create_notifier",
    "format_description",
    "TRANSPORT_HTTP",
    "TRANSPORT_KAFKA",
]
