import asyncio
import json
import math
from collections.abc import AsyncGenerator, Callable, Iterable
from typing import Any

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed

from pricefeed.publisher import PriceMapping
from pricefeed.symbols import canonical_symbol


class WebSocketPriceFeed:
    """Pushes per-symbol prices from a WebSocket into a sink.

    The upstream sends one JSON object per update, `{"symbol": ..., "price": ...}`.
    Each valid message becomes a one-entry mapping handed to `sink`, normally
    `PriceHub.publish`. The feed consumes an already-reachable endpoint: when
    the connection ends the run loop stops, and reconnecting is left to the
    owner.
    """

    def __init__(
        self,
        url: str,
        sink: Callable[[PriceMapping], None],
        symbols: Iterable[str] | None = None,
        name: str = "ws-feed",
    ) -> None:
        """Initializes the feed.

        Args:
            url: The WebSocket endpoint.
            sink: Receives one `{symbol: price}` mapping per valid message.
            symbols: Optional filter. When given, other symbols are ignored.
            name: Label used in log messages.
        """
        self.url = url
        self.sink = sink
        self.symbols = (
            frozenset(canonical_symbol(s) for s in symbols) if symbols else None
        )
        self.name = name
        self._running = asyncio.Event()
        self._main_task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._main_task is not None and not self._main_task.done()

    def start(self) -> None:
        """Starts the feed's run loop in a background task."""
        if self.is_running:
            logger.warning(f"[{self.name}] Feed is already running.")
            return
        self._running.set()
        self._main_task = asyncio.create_task(self._run())
        logger.info(f"[{self.name}] Feed started for {self.url}")

    async def stop(self) -> None:
        """Stops the run loop. A no-op when the feed is not running."""
        self._running.clear()
        task, self._main_task = self._main_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"[{self.name}] Feed stopped.")

    async def _run(self) -> None:
        try:
            async for message in self._stream_messages():
                if not self._running.is_set():
                    break
                update = self._normalize_message(message)
                if update:
                    self.sink(update)
        except (ConnectionClosed, OSError) as e:
            logger.warning(f"[{self.name}] Connection lost: {type(e).__name__}.")
        except Exception:
            logger.exception(f"[{self.name}] Unexpected error in run loop.")
        logger.info(f"[{self.name}] Run loop has terminated.")

    async def _stream_messages(self) -> AsyncGenerator[dict[str, Any], None]:
        """Connects to the WebSocket and yields decoded JSON objects."""
        async with websockets.connect(self.url) as websocket:
            logger.info(f"[{self.name}] Connected.")
            async for message_raw in websocket:
                try:
                    message = json.loads(message_raw)
                except ValueError:
                    logger.debug(f"[{self.name}] Ignoring non-JSON frame: {message_raw!r}")
                    continue
                if isinstance(message, dict):
                    yield message

    def _normalize_message(self, message: dict[str, Any]) -> PriceMapping | None:
        """Converts a raw message into a one-entry mapping, or None."""
        symbol = message.get("symbol")
        raw_price = message.get("price")
        if not isinstance(symbol, str) or not symbol.strip():
            logger.debug(f"[{self.name}] Received non-price message: {message}")
            return None
        if isinstance(raw_price, bool) or not isinstance(raw_price, int | float | str):
            logger.debug(f"[{self.name}] Received non-price message: {message}")
            return None
        try:
            price = float(raw_price)
        except ValueError:
            logger.warning(f"[{self.name}] Could not parse price message: {message}")
            return None
        if not math.isfinite(price) or price < 0:
            logger.warning(f"[{self.name}] Ignoring invalid price: {message}")
            return None

        key = canonical_symbol(symbol)
        if self.symbols is not None and key not in self.symbols:
            return None
        return {key: price}
