import asyncio
import itertools
import math
from collections.abc import AsyncIterator, Mapping
from typing import Generic, TypeVar

from loguru import logger

from pricefeed.symbols import canonical_symbol

T = TypeVar("T")

PriceMapping = dict[str, float]


class Broadcaster(Generic[T]):
    """A multicast fan-out of items to any number of subscriber queues.

    Every subscriber receives every published item, in publication order.
    Delivery is synchronous: `publish` puts the item into each subscriber
    queue before returning, so it must be called from the event loop thread.
    Subscribers that join late do not see earlier items.
    """

    def __init__(self, name: str = "broadcaster") -> None:
        self.name = name
        # Insertion ordered, so fan-out follows subscription order.
        self._subscriptions: dict[int, asyncio.Queue[T]] = {}
        self._id_generator = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, queue: "asyncio.Queue[T]") -> int:
        """Subscribes a queue to receive every future item.

        Args:
            queue: The asyncio.Queue to which items will be put.

        Returns:
            A unique subscription ID that can be used to unsubscribe.
        """
        sub_id = next(self._id_generator)
        self._subscriptions[sub_id] = queue
        logger.debug(f"[{self.name}] New subscription (ID: {sub_id}).")
        return sub_id

    def unsubscribe(self, sub_id: int) -> None:
        """Removes a subscription. Unknown IDs are logged and ignored."""
        if self._subscriptions.pop(sub_id, None) is None:
            logger.warning(
                f"[{self.name}] Attempted to unsubscribe with invalid ID: {sub_id}"
            )
            return
        logger.debug(f"[{self.name}] Unsubscribed ID {sub_id}.")

    def publish(self, item: T) -> None:
        """Delivers an item to every current subscriber."""
        # Copy so a subscriber callback cannot change the set mid-iteration.
        for sub_id, queue in list(self._subscriptions.items()):
            try:
                queue.put_nowait(item)
            except asyncio.QueueFull:  # noqa: PERF203
                logger.warning(
                    f"[{self.name}] Subscriber queue {sub_id} is full. "
                    "Update was dropped. This may indicate a slow consumer."
                )

    async def listen(self, maxsize: int = 0) -> AsyncIterator[T]:
        """Yields items as they are published until the iterator is closed.

        The subscription is created when iteration starts and removed when
        the generator is closed or garbage collected.
        """
        queue: asyncio.Queue[T] = asyncio.Queue(maxsize=maxsize)
        sub_id = self.subscribe(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(sub_id)


def _is_valid_price(price: object) -> bool:
    if isinstance(price, bool) or not isinstance(price, int | float):
        return False
    return math.isfinite(price) and price >= 0


class PriceHub(Broadcaster[PriceMapping]):
    """Merges partial price mappings into one rolling latest-known mapping.

    Any number of producers (batch pollers, socket feeds) publish partial
    mappings. Each one is merged key by key into the running total, so the
    most recently published value for a symbol wins and symbols missing from
    a partial keep their last known price. After every merge a fresh copy of
    the whole mapping is fanned out to all subscribers.

    The merge contains no await, so on a single event loop it is never
    interleaved with another merge and readers always observe a complete
    snapshot.
    """

    def __init__(self, name: str = "price-hub") -> None:
        super().__init__(name)
        self._latest: PriceMapping = {}

    def publish(self, item: Mapping[str, float]) -> None:
        """Merges a partial mapping and broadcasts the resulting snapshot."""
        for symbol, price in item.items():
            if not _is_valid_price(price):
                logger.warning(
                    f"[{self.name}] Ignoring invalid price for '{symbol}': {price!r}"
                )
                continue
            self._latest[canonical_symbol(symbol)] = float(price)

        super().publish(dict(self._latest))

    def snapshot(self) -> PriceMapping:
        """Returns a copy of the latest-known mapping."""
        return dict(self._latest)

    def get(self, symbol: str) -> float | None:
        """Returns the latest known price of one symbol, or None."""
        return self._latest.get(canonical_symbol(symbol))
