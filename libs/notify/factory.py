"""Builds the notifier chain selected by configuration."""

from __future__ import annotations

import logging

from libs.core.exceptions import ValidationError
from libs.core.settings import Settings
from libs.http import ResilientHttpClient

from .base import BotNotifier
from .fallback import FallbackBotNotifier
from .http_notifier import HttpBotNotifier
from .kafka_notifier import KafkaBotNotifier

logger = logging.getLogger(__name__)

TRANSPORT_HTTP = "HTTP"
TRANSPORT_KAFKA = "KAFKA"


def _create_transport(
    transport: str, settings: Settings, http: ResilientHttpClient
) -> BotNotifier:
    transport = transport.upper()
    if transport == TRANSPORT_HTTP:
        return HttpBotNotifier(http, settings.bot_base_url)
    if transport == TRANSPORT_KAFKA:
        return KafkaBotNotifier(settings.brokers, settings.topic_link_updates)
    raise ValidationError(f"unknown message transport: {transport}")


def create_notifier(settings: Settings, http: ResilientHttpClient) -> BotNotifier:
    primary = _create_transport(settings.message_transport, settings, http)
    if not settings.fallback_enabled:
        return primary
    if settings.fallback_transport.upper() == settings.message_transport.upper():
        logger.warning(
            "Fallback transport equals primary (%s), fallback disabled",
            settings.message_transport,
        )
        return primary
    secondary = _create_transport(settings.fallback_transport, settings, http)
    logger.info(
        "Using %s notifier with %s fallback", primary.name, secondary.name
    )
    return FallbackBotNotifier(primary, secondary)


__all__ = ["create_notifier", "TRANSPORT_HTTP", "TRANSPORT_KAFKA"]
