import asyncio

import httpx
import pytest

from pricefeed.config import PriceSettings
from pricefeed.publisher import PriceHub
from pricefeed.services import (
    CoinGeckoPriceService,
    StreamingPriceService,
    create_price_service,
)
from pricefeed.utils.retry import RetryingFetcher

BASE_URL = "https://api.example.test/api/v3"


def make_fetcher(handler) -> RetryingFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RetryingFetcher(client, max_attempts=1, delay_s=0)


@pytest.mark.asyncio
async def test_polling_backend_decodes_raw_symbol_keys() -> None:
    """Provider ids equal the requested symbols: no id translation."""
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200, json={"bitcoin": {"usd": 65000.0}, "ethereum": {"usd": 3000.0}}
        )

    service = CoinGeckoPriceService(make_fetcher(handler), base_url=BASE_URL)
    publisher = service.price_publisher(["bitcoin", "ethereum"], interval_s=0.02)

    first = await asyncio.wait_for(publisher.__anext__(), timeout=1)
    second = await asyncio.wait_for(publisher.__anext__(), timeout=1)
    await publisher.aclose()

    assert first == {"bitcoin": 65000.0, "ethereum": 3000.0}
    assert second == first
    assert requests[0].url.params["ids"] == "bitcoin,ethereum"

    count = len(requests)
    await asyncio.sleep(0.06)
    assert len(requests) == count  # Closing the iterator stopped the poller.


@pytest.mark.asyncio
async def test_polling_backend_stays_silent_through_failures() -> None:
    """Transient failures produce no emission and no exception."""
    statuses = iter([500, 500, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses, 200)
        if status != 200:
            return httpx.Response(status)
        return httpx.Response(200, json={"bitcoin": {"usd": 1.0}})

    service = CoinGeckoPriceService(make_fetcher(handler), base_url=BASE_URL)
    publisher = service.price_publisher(["bitcoin"], interval_s=0.02)

    mapping = await asyncio.wait_for(publisher.__anext__(), timeout=1)
    await publisher.aclose()

    assert mapping == {"bitcoin": 1.0}


@pytest.mark.asyncio
async def test_streaming_backend_merges_per_symbol_streams() -> None:
    hub = PriceHub()
    service = StreamingPriceService(hub)
    publisher = service.price_publisher(["BTC", "eth"], interval_s=5)

    first = asyncio.ensure_future(publisher.__anext__())
    for _ in range(5):
        await asyncio.sleep(0)

    hub.publish({"btc": 100.0})
    assert await asyncio.wait_for(first, timeout=1) == {"btc": 100.0}

    hub.publish({"eth": 10.0})
    assert await asyncio.wait_for(publisher.__anext__(), timeout=1) == {
        "btc": 100.0,
        "eth": 10.0,
    }

    hub.publish({"btc": 101.0, "sol": 1.0})
    assert await asyncio.wait_for(publisher.__anext__(), timeout=1) == {
        "btc": 101.0,
        "eth": 10.0,
    }

    await publisher.aclose()
    assert hub.subscriber_count == 0


@pytest.mark.asyncio
async def test_streaming_backend_requires_symbols() -> None:
    publisher = StreamingPriceService(PriceHub()).price_publisher([], interval_s=1)
    with pytest.raises(ValueError, match="At least one symbol"):
        await publisher.__anext__()


def test_factory_selects_backend_from_settings() -> None:
    fetcher = RetryingFetcher(httpx.AsyncClient())
    hub = PriceHub()

    polling = create_price_service(PriceSettings(backend="polling"), fetcher, hub)
    streaming = create_price_service(PriceSettings(backend="Streaming"), fetcher, hub)

    assert isinstance(polling, CoinGeckoPriceService)
    assert isinstance(streaming, StreamingPriceService)
    assert streaming.hub is hub


def test_factory_rejects_unknown_or_incomplete_configuration() -> None:
    fetcher = RetryingFetcher(httpx.AsyncClient())
    with pytest.raises(ValueError, match="Unknown price backend"):
        create_price_service(PriceSettings(backend="carrier-pigeon"), fetcher)
    with pytest.raises(ValueError, match="needs a PriceHub"):
        create_price_service(PriceSettings(backend="streaming"), fetcher)
