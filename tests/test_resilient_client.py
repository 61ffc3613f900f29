import asyncio

import httpx
import pytest
import respx

from libs.core.exceptions import (
    BreakerOpenError,
    NetworkError,
    RequestTimeoutError,
    UpstreamServerError,
)
from libs.http import CircuitBreaker, CircuitState, ResilientHttpClient, get_circuit_breaker

URL = "https://upstream.test/resource"


def make_client(breaker=None, retry_count=3):
    return ResilientHttpClient(
        "upstream",
        retry_count=retry_count,
        retry_backoff=0,
        breaker=breaker or CircuitBreaker("upstream", min_calls=100),
    )


@respx.mock
def test_retries_server_errors_until_success():
    route = respx.get(URL).mock(
        side_effect=[httpx.Response(503), httpx.Response(500), httpx.Response(200, json={"ok": True})]
    )

    response = asyncio.run(make_client().get(URL))

    assert response.status_code == 200
    assert route.call_count == 3


@respx.mock
def test_server_error_after_retries_raises():
    route = respx.get(URL).mock(return_value=httpx.Response(502))

    with pytest.raises(UpstreamServerError) as exc_info:
        asyncio.run(make_client(retry_count=2).get(URL))

    assert exc_info.value.status_code == 502
    assert route.call_count == 3


@respx.mock
def test_client_errors_are_not_retried():
    route = respx.get(URL).mock(return_value=httpx.Response(404))

    response = asyncio.run(make_client().get(URL))

    assert response.status_code == 404
    assert route.call_count == 1


@respx.mock
def test_too_many_requests_is_retried_then_returned():
    route = respx.get(URL).mock(return_value=httpx.Response(429))

    response = asyncio.run(make_client(retry_count=3).get(URL))

    assert response.status_code == 429
    assert route.call_count == 4


@respx.mock
def test_network_errors_are_retried_and_typed():
    route = respx.get(URL).mock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(NetworkError):
        asyncio.run(make_client(retry_count=1).get(URL))
    assert route.call_count == 2


@respx.mock
def test_timeouts_are_typed():
    respx.get(URL).mock(side_effect=httpx.ReadTimeout("slow"))

    with pytest.raises(RequestTimeoutError):
        asyncio.run(make_client(retry_count=0).get(URL))


@respx.mock
def test_breaker_opens_and_short_circuits(clock):
    breaker = CircuitBreaker(
        "upstream", window=60, min_calls=5, fail_rate_percent=50, open_duration=30, clock=clock
    )
    client = make_client(breaker=breaker, retry_count=0)
    route = respx.get(URL).mock(return_value=httpx.Response(500))

    async def scenario():
        for _ in range(5):
            with pytest.raises(UpstreamServerError):
                await client.get(URL)
        with pytest.raises(BreakerOpenError):
            await client.get(URL)

    asyncio.run(scenario())

    assert breaker.state == CircuitState.OPEN
    assert route.call_count == 5


@respx.mock
def test_breaker_open_error_is_not_retried(clock):
    breaker = CircuitBreaker("upstream", min_calls=1, fail_rate_percent=1, clock=clock)
    generation = breaker.before_call()
    breaker.after_call(generation, success=False)
    route = respx.get(URL).mock(return_value=httpx.Response(200))

    with pytest.raises(BreakerOpenError):
        asyncio.run(make_client(breaker=breaker, retry_count=5).get(URL))
    assert route.call_count == 0


@respx.mock
def test_half_open_probe_closes_breaker(clock):
    breaker = CircuitBreaker(
        "upstream", min_calls=1, fail_rate_percent=50, open_duration=30, clock=clock
    )
    generation = breaker.before_call()
    breaker.after_call(generation, success=False)
    assert breaker.state == CircuitState.OPEN

    clock.advance(31)
    assert breaker.state == CircuitState.HALF_OPEN
    respx.get(URL).mock(return_value=httpx.Response(200))

    response = asyncio.run(make_client(breaker=breaker, retry_count=0).get(URL))

    assert response.status_code == 200
    assert breaker.state == CircuitState.CLOSED


def test_breaker_needs_minimum_calls(clock):
    breaker = CircuitBreaker("b", min_calls=5, fail_rate_percent=50, clock=clock)
    for _ in range(4):
        breaker.after_call(breaker.before_call(), success=False)
    assert breaker.state == CircuitState.CLOSED


def test_breaker_window_resets_counts(clock):
    breaker = CircuitBreaker("b", window=10, min_calls=4, fail_rate_percent=50, clock=clock)
    for _ in range(3):
        breaker.after_call(breaker.before_call(), success=False)
    clock.advance(11)
    breaker.after_call(breaker.before_call(), success=False)
    assert breaker.state == CircuitState.CLOSED
    assert breaker.get_state()["failures"] == 1


def test_breaker_counts_client_errors_as_success(clock):
    breaker = CircuitBreaker("b", min_calls=4, fail_rate_percent=50, clock=clock)
    breaker.after_call(breaker.before_call(), success=False)
    for _ in range(3):
        breaker.after_call(breaker.before_call(), success=True)
    assert breaker.state == CircuitState.CLOSED


def test_half_open_limits_probes_and_reopens_on_failure(clock):
    breaker = CircuitBreaker(
        "b", min_calls=1, fail_rate_percent=50, half_open_calls=1, open_duration=5, clock=clock
    )
    breaker.after_call(breaker.before_call(), success=False)
    clock.advance(5)

    probe = breaker.before_call()
    with pytest.raises(BreakerOpenError):
        breaker.before_call()
    breaker.after_call(probe, success=False)

    assert breaker.state == CircuitState.OPEN


def test_stale_outcomes_are_ignored(clock):
    breaker = CircuitBreaker("b", window=10, min_calls=1, fail_rate_percent=50, clock=clock)
    generation = breaker.before_call()
    clock.advance(11)
    breaker.after_call(generation, success=False)
    assert breaker.state == CircuitState.CLOSED


def test_registry_shares_breaker_per_service():
    first = get_circuit_breaker("github", min_calls=3)
    second = get_circuit_breaker("github", min_calls=10)
    other = get_circuit_breaker("stackoverflow")

    assert first is second
    assert first.min_calls == 3
    assert other is not first
    assert first.name == "github_circuit_breaker"
