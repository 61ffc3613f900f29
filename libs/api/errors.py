"""Mapping of domain errors to HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from libs.core.exceptions import ConflictError, DomainError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def status_for(exc: DomainError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (ValidationError, ConflictError)):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(description: str, code: str, exc: Exception) -> dict:
    return {
        "description": description,
        "code": code,
        "exceptionName": type(exc).__name__,
        "exceptionMessage": str(exc),
    }


async def _domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("Unhandled domain error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=code, content=error_body(str(exc), exc.code, exc))


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()))
    description = f"invalid request: {field}: {first.get('msg', 'invalid value')}"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(description, "invalid_request", exc),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, _domain_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)


__all__ = ["install_error_handlers", "status_for", "error_body"]
