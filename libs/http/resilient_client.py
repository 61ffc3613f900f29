"""Outbound HTTP client with retries and a per-service circuit breaker."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from libs.core.exceptions import (
    NetworkError,
    RequestTimeoutError,
    UpstreamServerError,
)
from libs.core.settings import Settings

from .circuit_breaker import CircuitBreaker, get_circuit_breaker

logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


class _RetryableStatus(Exception):
    """Internal marker carrying a response that should be retried."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"retryable status {response.status_code}")
        self.response = response


class ResilientHttpClient:
    """httpx wrapper adding bounded retries and circuit breaking.

    Every attempt passes through the breaker first, an open breaker fails
    fast and is never retried. Network errors, timeouts and retryable
    statuses are retried with exponential backoff.
    """

    def __init__(
        self,
        service_name: str,
        *,
        timeout: float = 10.0,
        retry_count: int = 3,
        retry_backoff: float = 0.5,
        retryable_statuses: Iterable[int] = DEFAULT_RETRYABLE_STATUSES,
        breaker: Optional[CircuitBreaker] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.service_name = service_name
        self.retry_count = retry_count
        self.retry_backoff = retry_backoff
        self.retryable_statuses = frozenset(retryable_statuses)
        self.breaker = breaker or get_circuit_breaker(service_name)
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @classmethod
    def from_settings(
        cls,
        service_name: str,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "ResilientHttpClient":
        breaker = get_circuit_breaker(
            service_name,
            window=settings.cb_sliding_window,
            min_calls=settings.cb_min_calls,
            fail_rate_percent=settings.cb_fail_rate_percent,
            half_open_calls=settings.cb_half_open_calls,
            open_duration=settings.cb_open_state_duration,
        )
        return cls(
            service_name,
            timeout=settings.external_request_timeout,
            retry_count=settings.retry_count,
            retry_backoff=settings.retry_backoff,
            retryable_statuses=settings.retryable_statuses,
            breaker=breaker,
            client=client,
        )

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_count + 1),
            wait=wait_exponential(
                multiplier=self.retry_backoff, max=self.retry_backoff * 5
            ),
            retry=retry_if_exception_type(
                (NetworkError, RequestTimeoutError, _RetryableStatus)
            ),
            before_sleep=lambda state: self._log_retry(method, url, state),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._attempt(method, url, **kwargs)
        except _RetryableStatus as err:
            response = err.response
            if response.status_code >= 500:
                raise UpstreamServerError(
                    f"{self.service_name} answered {response.status_code} for {method} {url}",
                    self.service_name,
                    status_code=response.status_code,
                ) from err
            # Retries exhausted on a non-5xx status (e.g. 429): caller decides
            return response
        raise AssertionError("unreachable")  # pragma: no cover

    async def close(self) -> None:
        await self.client.aclose()

    async def _attempt(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        generation = self.breaker.before_call()
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as err:
            self.breaker.after_call(generation, success=False)
            raise RequestTimeoutError(
                f"timeout calling {self.service_name}: {method} {url}", self.service_name
            ) from err
        except httpx.TransportError as err:
            self.breaker.after_call(generation, success=False)
            raise NetworkError(
                f"network error calling {self.service_name}: {err}", self.service_name
            ) from err
        self.breaker.after_call(generation, success=response.status_code < 500)
        if response.status_code >= 500 or response.status_code in self.retryable_statuses:
            raise _RetryableStatus(response)
        return response

    def _log_retry(self, method: str, url: str, state: RetryCallState) -> None:
        outcome = state.outcome
        error = outcome.exception() if outcome is not None else None
        status = error.response.status_code if isinstance(error, _RetryableStatus) else None
        logger.warning(
            "Retrying %s %s (attempt %d): %s",
            method,
            url,
            state.attempt_number,
            error,
            extra={"upstream": self.service_name, "status": status},
        )


__all__ = ["ResilientHttpClient", "DEFAULT_RETRYABLE_STATUSES"]
