import asyncio
import itertools
import json
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Final

from loguru import logger

from pricefeed.errors import DecodeError, FetchError
from pricefeed.publisher import PriceMapping
from pricefeed.symbols import SymbolIdMapper, canonical_symbol
from pricefeed.utils.retry import RetryingFetcher

COINGECKO_API_URL: Final[str] = "https://api.coingecko.com/api/v3"
VS_CURRENCY: Final[str] = "usd"

_session_ids = itertools.count(1)


@dataclass(eq=False)
class PollSession:
    """One active polling configuration, from start to stop or supersession."""

    symbols: frozenset[str]
    interval_s: float
    session_id: int = field(default_factory=lambda: next(_session_ids))
    active: bool = True
    _timer_task: asyncio.Task[None] | None = field(default=None, repr=False)
    _tick_tasks: set[asyncio.Task[None]] = field(default_factory=set, repr=False)


def decode_simple_price(
    payload: bytes | str, symbols: Iterable[str], mapper: SymbolIdMapper
) -> PriceMapping:
    """Decodes a `/simple/price` response into a symbol -> USD price mapping.

    The payload is a JSON object of provider id -> {"usd": price}. Entries
    without a usable "usd" value are dropped; the rest are keyed by the
    requested symbol whose provider id matches.

    Raises:
        DecodeError: The payload is not JSON or not a JSON object.
    """
    try:
        data = json.loads(payload)
    except ValueError as e:
        err_msg = f"Price payload is not valid JSON: {e}"
        raise DecodeError(err_msg) from e
    if not isinstance(data, dict):
        err_msg = f"Expected a JSON object of prices, got {type(data).__name__}."
        raise DecodeError(err_msg)

    candidates = list(symbols)
    prices: PriceMapping = {}
    for provider_id, quote in data.items():
        usd = quote.get(VS_CURRENCY) if isinstance(quote, dict) else None
        if (
            isinstance(usd, bool)
            or not isinstance(usd, int | float)
            or not math.isfinite(usd)
            or usd < 0
        ):
            logger.debug(f"Dropping price entry without a usable USD value: {provider_id}")
            continue
        prices[mapper.to_symbol(provider_id, candidates)] = float(usd)
    return prices


class BatchPricePoller:
    """Periodically fetches a batch of symbol prices and emits the mapping.

    One immediate tick is fired when polling starts, then one per interval.
    Each tick runs as its own task, so a slow request never delays the timer.
    Results are handed to `sink` only while the session that produced them is
    still the active one; failed ticks are logged and emit nothing.

    At most one session is active per poller: `start_polling` stops the
    previous session before starting the new one.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        sink: Callable[[PriceMapping], None],
        mapper: SymbolIdMapper | None = None,
        base_url: str = COINGECKO_API_URL,
        name: str = "coingecko",
    ) -> None:
        """Initializes the poller.

        Args:
            fetcher: Executes each request with the retry policy.
            sink: Receives the decoded mapping of every successful tick.
            mapper: Symbol <-> provider id translation. Defaults to CoinGecko ids.
            base_url: The provider's API root.
            name: Label used in log messages.
        """
        self.fetcher = fetcher
        self.sink = sink
        self.mapper = mapper or SymbolIdMapper()
        self.base_url = base_url.rstrip("/")
        self.name = name
        self._session: PollSession | None = None
        self._lock = asyncio.Lock()

    @property
    def session(self) -> PollSession | None:
        return self._session

    @property
    def is_polling(self) -> bool:
        return self._session is not None and self._session.active

    async def start_polling(
        self, symbols: Iterable[str], interval_s: float = 5.0
    ) -> PollSession:
        """Starts polling `symbols` every `interval_s` seconds.

        Any session already running is stopped first. Concurrent calls are
        serialized, so exactly one session survives.

        Returns:
            The handle of the new session.
        """
        wanted = frozenset(canonical_symbol(s) for s in symbols if s.strip())
        if not wanted:
            err_msg = "At least one symbol is required to start polling."
            raise ValueError(err_msg)
        if interval_s <= 0:
            err_msg = "Polling interval must be a positive number."
            raise ValueError(err_msg)

        async with self._lock:
            await self._stop_session()

            session = PollSession(symbols=wanted, interval_s=interval_s)
            self._session = session
            session._timer_task = asyncio.create_task(
                self._run_timer(session), name=f"{self.name}-poll-{session.session_id}"
            )
        logger.info(
            f"[{self.name}] Poll session {session.session_id} started: "
            f"{sorted(wanted)} every {interval_s}s"
        )
        return session

    async def stop_polling(self) -> None:
        """Stops the active session. A no-op when nothing is polling."""
        async with self._lock:
            await self._stop_session()

    async def _stop_session(self) -> None:
        session = self._session
        if session is None:
            return
        self._session = None
        session.active = False

        tasks = [t for t in (session._timer_task, *session._tick_tasks) if t]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        session._timer_task = None
        session._tick_tasks.clear()
        logger.info(f"[{self.name}] Poll session {session.session_id} stopped.")

    def build_params(self, symbols: Iterable[str]) -> dict[str, str]:
        """Query parameters for one batched request."""
        ids = sorted({self.mapper.to_provider_id(s) for s in symbols})
        return {"ids": ",".join(ids), "vs_currencies": VS_CURRENCY}

    async def _run_timer(self, session: PollSession) -> None:
        """Fires a tick now and then once per interval until cancelled."""
        while session.active:
            task = asyncio.create_task(self._tick(session))
            session._tick_tasks.add(task)
            task.add_done_callback(session._tick_tasks.discard)
            await asyncio.sleep(session.interval_s)

    async def _tick(self, session: PollSession) -> None:
        """Executes one fetch-decode-emit cycle."""
        try:
            body = await self.fetcher.fetch(
                f"{self.base_url}/simple/price",
                params=self.build_params(session.symbols),
            )
            prices = decode_simple_price(body, session.symbols, self.mapper)
        except FetchError as e:
            logger.warning(f"[{self.name}] Tick dropped, fetch failed: {e}")
            return
        except DecodeError as e:
            logger.error(f"[{self.name}] Tick dropped, undecodable response: {e}")
            return
        except Exception:
            logger.exception(f"[{self.name}] Tick dropped, unexpected error.")
            return

        if not session.active or session is not self._session:
            logger.debug(
                f"[{self.name}] Discarding result of stale session {session.session_id}."
            )
            return

        logger.debug(
            f"[{self.name}] Tick: {len(prices)}/{len(session.symbols)} prices."
        )
        try:
            self.sink(prices)
        except Exception:
            logger.exception(f"[{self.name}] Price sink raised.")
