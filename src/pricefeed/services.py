"""Interchangeable price backends behind one publisher contract.

Both backends yield successive latest-known mappings, never raise for
transient network failures and simply stay silent for a failed period, so
call sites can swap providers without change.
"""

import abc
import asyncio
from collections.abc import AsyncGenerator, Iterable

from loguru import logger

from pricefeed.config import PriceSettings
from pricefeed.poller import COINGECKO_API_URL, BatchPricePoller
from pricefeed.publisher import PriceHub, PriceMapping
from pricefeed.stream import SingleSymbolStream
from pricefeed.symbols import SymbolIdMapper, canonical_symbol
from pricefeed.utils.retry import RetryingFetcher


class PriceService(abc.ABC):
    """Contract for services that publish live prices for a set of symbols."""

    @abc.abstractmethod
    def price_publisher(
        self, symbols: Iterable[str], interval_s: float
    ) -> AsyncGenerator[PriceMapping, None]:
        """Yields the latest-known mapping of `symbols` as it changes.

        Closing the iterator releases everything the backend started.
        """
        raise NotImplementedError


class CoinGeckoPriceService(PriceService):
    """Polling backend: one batched `/simple/price` request per interval.

    The requested symbols are sent as provider ids unchanged, so the decoded
    keys are the symbols themselves.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        base_url: str = COINGECKO_API_URL,
        name: str = "coingecko-service",
    ) -> None:
        self.fetcher = fetcher
        self.base_url = base_url
        self.name = name

    async def price_publisher(
        self, symbols: Iterable[str], interval_s: float
    ) -> AsyncGenerator[PriceMapping, None]:
        hub = PriceHub(self.name)
        poller = BatchPricePoller(
            self.fetcher,
            sink=hub.publish,
            mapper=SymbolIdMapper.identity(),
            base_url=self.base_url,
            name=self.name,
        )
        queue: asyncio.Queue[PriceMapping] = asyncio.Queue()
        sub_id = hub.subscribe(queue)
        try:
            await poller.start_polling(symbols, interval_s)
            while True:
                yield await queue.get()
        finally:
            await poller.stop_polling()
            hub.unsubscribe(sub_id)


class StreamingPriceService(PriceService):
    """Streaming backend: one single-symbol stream per requested symbol.

    The streams read a shared hub that a socket feed (or a poller) keeps
    current. Their scalar outputs are merged back into a latest-known
    mapping, which is yielded on every push. `interval_s` is accepted for
    contract parity only.
    """

    def __init__(self, hub: PriceHub) -> None:
        self.hub = hub

    async def price_publisher(
        self, symbols: Iterable[str], interval_s: float = 0.0
    ) -> AsyncGenerator[PriceMapping, None]:
        wanted = sorted({canonical_symbol(s) for s in symbols if s.strip()})
        if not wanted:
            err_msg = "At least one symbol is required."
            raise ValueError(err_msg)

        merged: asyncio.Queue[tuple[str, float]] = asyncio.Queue()
        streams: list[SingleSymbolStream] = []
        forwarders: list[asyncio.Task[None]] = []
        try:
            for symbol in wanted:
                stream = SingleSymbolStream(self.hub)
                prices: asyncio.Queue[float] = asyncio.Queue()
                stream.prices.subscribe(prices)
                await stream.connect(symbol)
                streams.append(stream)
                forwarders.append(
                    asyncio.create_task(self._forward(symbol, prices, merged))
                )
            logger.info(f"[streaming-service] Streaming {wanted}.")

            latest: PriceMapping = {}
            while True:
                symbol, price = await merged.get()
                latest[symbol] = price
                yield dict(latest)
        finally:
            for task in forwarders:
                task.cancel()
            await asyncio.gather(*forwarders, return_exceptions=True)
            for stream in streams:
                await stream.disconnect()

    @staticmethod
    async def _forward(
        symbol: str,
        source: "asyncio.Queue[float]",
        target: "asyncio.Queue[tuple[str, float]]",
    ) -> None:
        while True:
            price = await source.get()
            target.put_nowait((symbol, price))


def create_price_service(
    settings: PriceSettings,
    fetcher: RetryingFetcher,
    hub: PriceHub | None = None,
) -> PriceService:
    """Creates the backend named by `settings.backend`.

    - "polling"   -> CoinGeckoPriceService
    - "streaming" -> StreamingPriceService over `hub`
    """
    backend = settings.backend.strip().lower()
    if backend == "polling":
        logger.info("Price service: CoinGecko polling")
        return CoinGeckoPriceService(fetcher, base_url=settings.base_url)
    if backend == "streaming":
        if hub is None:
            err_msg = "The streaming backend needs a PriceHub to read from."
            raise ValueError(err_msg)
        logger.info("Price service: socket streaming")
        return StreamingPriceService(hub)
    err_msg = f"Unknown price backend: {settings.backend!r}"
    raise ValueError(err_msg)
