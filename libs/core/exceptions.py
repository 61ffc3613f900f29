"""Base exceptions for the domain layer."""

from __future__ import annotations

from typing import Optional


class DomainError(Exception):
    """Base class for all domain level exceptions."""

    code = "domain_error"


class NotFoundError(DomainError):
    """Raised when an entity cannot be located."""

    code = "not_found"


class ValidationError(DomainError):
    """Raised when data fails domain validation rules."""

    code = "validation_error"


class ConflictError(DomainError):
    """Raised when an entity already exists."""

    code = "conflict"


class LinkNotFoundError(NotFoundError):
    code = "link_not_found"


class ChatNotFoundError(NotFoundError):
    code = "chat_not_found"


class TagNotFoundError(NotFoundError):
    code = "tag_not_found"


class DetailsNotFoundError(NotFoundError):
    code = "details_not_found"


class InvalidURLError(ValidationError):
    code = "invalid_url"


class UnsupportedLinkTypeError(ValidationError):
    code = "unsupported_link_type"


class InvalidUpdateMessageError(ValidationError):
    """Raised for bus records that must be routed to the dead-letter topic."""

    code = "invalid_update_message"


class LinkAlreadyExistsError(ConflictError):
    code = "link_already_exists"


class TagAlreadyExistsError(ConflictError):
    code = "tag_already_exists"


class UpstreamError(DomainError):
    """Failure talking to an external HTTP service."""

    code = "upstream_error"

    def __init__(self, message: str, service: str = "") -> None:
        super().__init__(message)
        self.service = service


class NetworkError(UpstreamError):
    code = "network_error"


class RequestTimeoutError(UpstreamError):
    code = "timeout"


class UpstreamServerError(UpstreamError):
    """Upstream kept answering with a 5xx status after all retries."""

    code = "upstream_server_error"

    def __init__(self, message: str, service: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message, service)
        self.status_code = status_code


class UpstreamStatusError(UpstreamError):
    """Upstream answered with a non-success status the caller cannot use."""

    code = "upstream_status_error"

    def __init__(self, message: str, service: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message, service)
        self.status_code = status_code


class MalformedResponseError(UpstreamError):
    """Upstream answered 200 with a body that does not have the expected shape."""

    code = "malformed_response"


class BreakerOpenError(UpstreamError):
    """The circuit breaker for the service rejected the call."""

    code = "breaker_open"


class NotificationError(DomainError):
    """An update could not be handed to the delivery transport."""

    code = "notification_failed"


# Alias to keep a generic name for error type hints
Error = DomainError

__all__ = [
    "DomainError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "LinkNotFoundError",
    "ChatNotFoundError",
    "TagNotFoundError",
    "DetailsNotFoundError",
    "InvalidURLError",
    "UnsupportedLinkTypeError",
    "InvalidUpdateMessageError",
    "LinkAlreadyExistsError",
    "TagAlreadyExistsError",
    "UpstreamError",
    "NetworkError",
    "RequestTimeoutError",
    "UpstreamServerError",
    "UpstreamStatusError",
    "MalformedResponseError",
    "BreakerOpenError",
    "NotificationError",
    "Error",
]
