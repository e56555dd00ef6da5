from collections.abc import Iterable

from pricefeed.poller import COINGECKO_API_URL, BatchPricePoller, PollSession
from pricefeed.publisher import Broadcaster, PriceHub
from pricefeed.stream import SingleSymbolStream
from pricefeed.symbols import SymbolIdMapper
from pricefeed.utils.retry import RetryingFetcher


class LivePriceManager:
    """Owns the batch poller, the price hub and the single-symbol stream.

    The poller feeds the hub, and the single-symbol stream reads from it.
    Create one per application and pass it to whatever consumes prices.

    Usage:
        manager = LivePriceManager(RetryingFetcher(client))
        await manager.start_polling(["btc", "eth"], interval_s=5)
        await manager.connect("btc")
        async for price in manager.price_publisher.listen():
            ...
        await manager.aclose()
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        mapper: SymbolIdMapper | None = None,
        base_url: str = COINGECKO_API_URL,
        hub: PriceHub | None = None,
    ) -> None:
        self.hub = hub or PriceHub()
        self.poller = BatchPricePoller(
            fetcher, sink=self.hub.publish, mapper=mapper, base_url=base_url
        )
        self.single = SingleSymbolStream(self.hub)

    @property
    def publisher(self) -> PriceHub:
        """Latest-known mapping of every polled symbol."""
        return self.hub

    @property
    def price_publisher(self) -> Broadcaster[float]:
        """Deduplicated price of the connected symbol."""
        return self.single.prices

    async def start_polling(
        self, symbols: Iterable[str], interval_s: float = 5.0
    ) -> PollSession:
        return await self.poller.start_polling(symbols, interval_s)

    async def stop_polling(self) -> None:
        await self.poller.stop_polling()

    async def connect(self, symbol: str) -> None:
        await self.single.connect(symbol)

    async def disconnect(self) -> None:
        await self.single.disconnect()

    async def aclose(self) -> None:
        """Stops polling and streaming."""
        await self.single.disconnect()
        await self.poller.stop_polling()
