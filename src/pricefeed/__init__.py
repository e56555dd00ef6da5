# src/pricefeed/__init__.py
"""pricefeed: live crypto price aggregation and news retrieval.

This package polls and streams upstream price sources, merges their updates
per symbol, and republishes a consistent latest-known price mapping to any
number of asyncio subscribers.

The package is built around Python's asyncio: every producer runs as a task on
a single event loop, which is also the delivery context for subscribers.

Key modules:
- `poller`: Timer-driven batch polling of the CoinGecko simple price endpoint.
- `publisher`: Multicast fan-out and the merge-by-key `PriceHub`.
- `stream`: The deduplicated single-symbol view over a hub.
- `services`: Interchangeable polling and streaming price backends.
- `news`: NewsAPI headlines, fetched with the same retry policy.
"""

import importlib.metadata

try:
    __version__: str = importlib.metadata.version("pricefeed")
except importlib.metadata.PackageNotFoundError:
    # Source checkout without an install.
    __version__ = "0.0.0-dev"
