import asyncio
import time

import httpx
import pytest

from pricefeed.errors import FetchError, ServerError, TransportError
from pricefeed.utils.retry import RetryingFetcher

URL = "https://api.example.test/simple/price"


def make_fetcher(handler, **kwargs) -> RetryingFetcher:
    """Helper to build a fetcher over an httpx.MockTransport."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RetryingFetcher(client, **kwargs)


def test_rejects_invalid_configuration() -> None:
    """Tests the constructor's argument validation."""
    client = httpx.AsyncClient()
    with pytest.raises(ValueError, match="max_attempts must be a positive integer."):
        RetryingFetcher(client, max_attempts=0)
    with pytest.raises(ValueError, match="delay_s must not be negative."):
        RetryingFetcher(client, delay_s=-1)
    with pytest.raises(ValueError, match="timeout_s must be a positive number."):
        RetryingFetcher(client, timeout_s=0)


@pytest.mark.asyncio
async def test_returns_body_on_first_success() -> None:
    """A 2xx response is returned immediately with no retry."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, content=b'{"ok": true}')

    fetcher = make_fetcher(handler, max_attempts=3, delay_s=0.01)
    body = await fetcher.fetch(URL, params={"ids": "bitcoin"})

    assert body == b'{"ok": true}'
    assert len(calls) == 1
    assert calls[0].url.params["ids"] == "bitcoin"


@pytest.mark.asyncio
async def test_failing_transport_is_attempted_exactly_max_attempts_times() -> None:
    """Three attempts, each separated by the fixed delay, then a FetchError."""
    attempt_times: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempt_times.append(time.monotonic())
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = make_fetcher(handler, max_attempts=3, delay_s=0.05)

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(URL)

    assert len(attempt_times) == 3
    gaps = [b - a for a, b in zip(attempt_times, attempt_times[1:], strict=False)]
    assert all(gap >= 0.045 for gap in gaps)
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, TransportError)
    assert isinstance(exc_info.value.last_error.cause, httpx.ConnectError)
    assert exc_info.value.__cause__ is exc_info.value.last_error


@pytest.mark.asyncio
async def test_non_2xx_status_is_retried_like_a_transport_error() -> None:
    """A server error is retried and a later success is returned."""
    statuses = iter([503, 429, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(next(statuses), content=b"payload")

    fetcher = make_fetcher(handler, max_attempts=3, delay_s=0)

    assert await fetcher.fetch(URL) == b"payload"


@pytest.mark.asyncio
async def test_exhausted_server_errors_carry_the_last_status() -> None:
    """The terminal FetchError exposes the final ServerError."""
    statuses = iter([500, 502])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(next(statuses))

    fetcher = make_fetcher(handler, max_attempts=2, delay_s=0)

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(URL)

    last_error = exc_info.value.last_error
    assert isinstance(last_error, ServerError)
    assert last_error.status_code == 502


@pytest.mark.asyncio
async def test_single_attempt_does_not_sleep(mocker) -> None:
    """With max_attempts=1 a failure is terminal and no delay is taken."""
    sleep = mocker.patch("pricefeed.utils.retry.asyncio.sleep")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    fetcher = make_fetcher(handler, max_attempts=1, delay_s=10)

    with pytest.raises(FetchError):
        await fetcher.fetch(URL)
    sleep.assert_not_called()


@pytest.mark.asyncio
async def test_cancellation_is_not_retried() -> None:
    """Cancelling the caller propagates at once, regardless of remaining attempts."""
    calls = 0
    request_started = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        request_started.set()
        await asyncio.sleep(10)
        return httpx.Response(200)

    fetcher = make_fetcher(handler, max_attempts=5, delay_s=0)
    task = asyncio.create_task(fetcher.fetch(URL))
    await asyncio.wait_for(request_started.wait(), timeout=1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert calls == 1


@pytest.mark.asyncio
async def test_cancellation_during_retry_delay_propagates() -> None:
    """A cancel that lands in the retry sleep stops further attempts."""
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(500)

    fetcher = make_fetcher(handler, max_attempts=3, delay_s=10)
    task = asyncio.create_task(fetcher.fetch(URL))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert calls == 1


@pytest.mark.asyncio
async def test_each_attempt_carries_the_fixed_timeout() -> None:
    """Every attempt uses timeout_s; a read timeout is retried as a TransportError."""
    timeouts: list[dict[str, float | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        timeouts.append(request.extensions["timeout"])
        raise httpx.ReadTimeout("read timed out", request=request)

    fetcher = make_fetcher(handler, max_attempts=2, delay_s=0, timeout_s=2.5)

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(URL)

    assert len(timeouts) == 2
    for timeout in timeouts:
        assert timeout == {"connect": 2.5, "read": 2.5, "write": 2.5, "pool": 2.5}
    last_error = exc_info.value.last_error
    assert isinstance(last_error, TransportError)
    assert isinstance(last_error.cause, httpx.ReadTimeout)


@pytest.mark.parametrize("error_type", [httpx.DecodingError, httpx.TooManyRedirects])
@pytest.mark.asyncio
async def test_other_request_errors_are_wrapped_and_retried(error_type) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise error_type("request failed", request=request)

    fetcher = make_fetcher(handler, max_attempts=3, delay_s=0)

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(URL)

    assert calls == 3
    assert isinstance(exc_info.value.last_error, TransportError)
    assert isinstance(exc_info.value.last_error.cause, error_type)


@pytest.mark.asyncio
async def test_mislabelled_gzip_body_is_retried() -> None:
    """A body that fails content decoding counts as a failed attempt."""
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(
                200, headers={"Content-Encoding": "gzip"}, content=b"not gzip"
            )
        return httpx.Response(200, content=b"{}")

    fetcher = make_fetcher(handler, max_attempts=2, delay_s=0)

    assert await fetcher.fetch(URL) == b"{}"
    assert calls == 2
