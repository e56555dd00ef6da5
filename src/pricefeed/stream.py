import asyncio
import contextlib

from loguru import logger

from pricefeed.publisher import Broadcaster, PriceHub, PriceMapping
from pricefeed.symbols import canonical_symbol


class SingleSymbolStream:
    """A deduplicated scalar price stream for one symbol of a `PriceHub`.

    Every hub snapshot is projected onto the connected symbol. Snapshots that
    lack the symbol are skipped, and a price equal to the last one emitted on
    the current connection is suppressed. Results are broadcast on `prices`.

    Only one connection exists at a time: `connect` tears down the previous
    one (task cancelled and awaited, hub subscription removed) before the new
    one subscribes, so prices of two symbols never interleave.
    """

    def __init__(self, hub: PriceHub) -> None:
        self.hub = hub
        self.prices: Broadcaster[float] = Broadcaster("single-symbol")
        self._symbol: str | None = None
        self._sub_id: int | None = None
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()

    @property
    def symbol(self) -> str | None:
        return self._symbol

    @property
    def is_connected(self) -> bool:
        return self._task is not None and not self._task.done()

    async def connect(self, symbol: str) -> None:
        """Starts streaming `symbol`, replacing any current connection."""
        wanted = canonical_symbol(symbol)
        if not wanted:
            err_msg = "Symbol must be a non-empty string."
            raise ValueError(err_msg)

        async with self._lock:
            await self._teardown()
            queue: asyncio.Queue[PriceMapping] = asyncio.Queue()
            self._sub_id = self.hub.subscribe(queue)
            self._symbol = wanted
            self._task = asyncio.create_task(
                self._run(wanted, queue), name=f"single-symbol-{wanted}"
            )
            logger.info(f"[single-symbol] Connected to '{wanted}'.")

    async def disconnect(self) -> None:
        """Stops the stream. Safe to call when not connected."""
        async with self._lock:
            await self._teardown()

    async def _teardown(self) -> None:
        if self._sub_id is not None:
            self.hub.unsubscribe(self._sub_id)
            self._sub_id = None
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info(f"[single-symbol] Disconnected from '{self._symbol}'.")
        self._symbol = None

    async def _run(self, symbol: str, queue: "asyncio.Queue[PriceMapping]") -> None:
        """Projection loop: map, filter absent, drop adjacent duplicates."""
        last_price: float | None = None
        while True:
            mapping = await queue.get()
            price = mapping.get(symbol)
            if price is None or price == last_price:
                continue
            last_price = price
            self.prices.publish(price)
