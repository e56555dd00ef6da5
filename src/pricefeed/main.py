"""Command-line entry point.

Usage:
    pricefeed watch [SYMBOL ...] [--interval SECONDS] [--backend polling|streaming]
    pricefeed news [--latest] [--pages N] [--bookmark N]

Examples:
    pricefeed watch btc eth sol --interval 10
    pricefeed news --latest
    pricefeed news --pages 3 --bookmark 2
"""

import argparse
import asyncio
import sys
from collections.abc import AsyncGenerator, Sequence
from pathlib import Path

import httpx
from loguru import logger

from pricefeed.bookmarks import BookmarkStore
from pricefeed.config import CONFIG_FILE, Settings, get_api_key, load_config
from pricefeed.errors import PriceFeedError
from pricefeed.feeds import WebSocketPriceFeed
from pricefeed.logging_config import setup_logging
from pricefeed.manager import LivePriceManager
from pricefeed.news import NewsFeed, NewsService
from pricefeed.publisher import PriceHub, PriceMapping
from pricefeed.services import create_price_service
from pricefeed.utils.retry import RetryingFetcher


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pricefeed", description="Live crypto prices and headlines."
    )
    parser.add_argument(
        "--config", type=Path, default=CONFIG_FILE, help="Path to config.toml."
    )
    commands = parser.add_subparsers(dest="command", required=True)

    watch = commands.add_parser("watch", help="Print live prices as they change.")
    watch.add_argument("symbols", nargs="*", help="Tickers, e.g. btc eth.")
    watch.add_argument("--interval", type=float, help="Polling interval in seconds.")
    watch.add_argument("--backend", choices=("polling", "streaming"))

    news = commands.add_parser("news", help="Print the latest crypto headlines.")
    news.add_argument("--latest", action="store_true", help="Fetch the full list.")
    news.add_argument(
        "--pages", type=int, default=1, help="How many pages to load (default 1)."
    )
    news.add_argument(
        "--bookmark", type=int, metavar="N", help="Toggle the bookmark of headline N."
    )
    return parser


async def _polled_prices(
    manager: LivePriceManager, symbols: list[str], interval_s: float
) -> AsyncGenerator[PriceMapping, None]:
    """Ticker-keyed mappings from the manager's hub, polling until closed."""
    queue: asyncio.Queue[PriceMapping] = asyncio.Queue()
    sub_id = manager.publisher.subscribe(queue)
    try:
        await manager.start_polling(symbols, interval_s)
        while True:
            yield await queue.get()
    finally:
        manager.publisher.unsubscribe(sub_id)
        await manager.aclose()


async def watch_prices(settings: Settings, client: httpx.AsyncClient) -> None:
    """Prints every mapping emitted by the configured price backend.

    Configured symbols are tickers, so the polling path goes through
    `LivePriceManager` and its ticker to CoinGecko id table.
    """
    prices = settings.prices
    fetcher = RetryingFetcher(
        client,
        max_attempts=prices.max_attempts,
        delay_s=prices.retry_delay_s,
        timeout_s=prices.request_timeout_s,
        name="prices",
    )
    hub = PriceHub()
    feed: WebSocketPriceFeed | None = None
    backend = prices.backend.strip().lower()
    if backend == "polling":
        manager = LivePriceManager(fetcher, base_url=prices.base_url, hub=hub)
        publisher = _polled_prices(manager, prices.symbols, prices.poll_interval_s)
    else:
        service = create_price_service(prices, fetcher, hub)
        if not prices.stream_url:
            err_msg = "The streaming backend requires 'prices.stream_url'."
            raise ValueError(err_msg)
        feed = WebSocketPriceFeed(
            prices.stream_url, sink=hub.publish, symbols=prices.symbols
        )
        feed.start()
        publisher = service.price_publisher(prices.symbols, prices.poll_interval_s)

    try:
        async for mapping in publisher:
            line = "  ".join(f"{s.upper()}: {p:,.2f}" for s, p in sorted(mapping.items()))
            print(line, flush=True)
    finally:
        await publisher.aclose()
        if feed is not None:
            await feed.stop()



async def print_news(
    settings: Settings,
    client: httpx.AsyncClient,
    latest: bool,
    pages: int = 1,
    bookmark: int | None = None,
) -> bool:
    """Prints headlines with their age and source.

    Bookmarked headlines are marked with `*`. `bookmark` toggles the bookmark
    of the headline at that 1-based position before printing.

    Returns:
        False if no headline could be loaded.
    """
    if pages < 1:
        err_msg = "--pages must be a positive integer."
        raise ValueError(err_msg)
    api_key = get_api_key("newsapi")
    if not api_key:
        err_msg = "No NewsAPI key found. Set PRICEFEED_NEWSAPI_API_KEY or use the keyring."
        raise ValueError(err_msg)

    news = settings.news
    fetcher = RetryingFetcher(
        client,
        max_attempts=news.max_attempts,
        delay_s=news.retry_delay_s,
        timeout_s=news.request_timeout_s,
        name="news",
    )
    service = NewsService(fetcher, api_key, base_url=news.base_url, query=news.query)
    bookmarks = BookmarkStore(Path(settings.bookmarks.path).expanduser())
    await bookmarks.load()

    page_size = news.latest_page_size if latest else news.preview_page_size
    feed = NewsFeed(service, bookmarks, page_size=page_size)
    await feed.load_preview()
    for _ in range(pages - 1):
        if not await feed.load_more():
            break
    if not feed.articles:
        logger.error(feed.error_message or "No news available")
        return False

    if bookmark is not None:
        if not 1 <= bookmark <= len(feed.articles):
            err_msg = f"--bookmark must be between 1 and {len(feed.articles)}."
            raise ValueError(err_msg)
        await feed.toggle_bookmark(feed.articles[bookmark - 1])

    for index, article in enumerate(feed.articles, start=1):
        marker = "*" if feed.is_bookmarked(article) else " "
        print(
            f"{index:>3}{marker} [{article.relative_time():>7}] "
            f"{article.title} ({article.source_name})"
        )
    return True



async def main_async(argv: Sequence[str] | None = None) -> int:
    """The main async entry point for the application."""
    args = _build_parser().parse_args(argv)
    settings = load_config(args.config)

    log_dir = (
        Path(settings.general.log_directory)
        if settings.general.log_directory
        else None
    )
    setup_logging(
        console_level=settings.general.log_level_console,
        file_level=settings.general.log_level_file,
        log_dir=log_dir,
    )

    if args.command == "watch":
        if args.symbols:
            settings.prices.symbols = list(args.symbols)
        if args.interval is not None:
            settings.prices.poll_interval_s = args.interval
        if args.backend:
            settings.prices.backend = args.backend

    async with httpx.AsyncClient(http2=True, follow_redirects=True) as client:
        try:
            if args.command == "watch":
                await watch_prices(settings, client)
            else:
                ok = await print_news(
                    settings, client, args.latest, args.pages, args.bookmark
                )
                if not ok:
                    return 1
        except (PriceFeedError, ValueError) as e:
            logger.error(str(e))
            return 1
    return 0


def main() -> None:
    """The synchronous entry point for the application."""
    try:
        sys.exit(asyncio.run(main_async()))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down.")
        sys.exit(130)
    except Exception:
        logger.exception("An unhandled exception reached the top-level entry point.")
        sys.exit(1)


if __name__ == "__main__":
    main()
