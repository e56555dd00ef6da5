import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Final

from loguru import logger

from pricefeed.bookmarks import BookmarkStore
from pricefeed.errors import DecodeError, PriceFeedError
from pricefeed.utils.retry import RetryingFetcher
from pricefeed.utils.time import format_relative_time, parse_published_at

NEWSAPI_URL: Final[str] = "https://newsapi.org/v2"
UNKNOWN_SOURCE: Final[str] = "Unknown Source"
PREVIEW_PAGE_SIZE: Final[int] = 5
LATEST_PAGE_SIZE: Final[int] = 20


@dataclass(frozen=True)
class NewsArticle:
    """A single news headline.

    Articles decoded from the API get an id derived from their url, so the
    same story keeps its id (and its bookmark) across fetches.
    """

    title: str
    url: str
    published_at: datetime
    description: str | None = None
    url_to_image: str | None = None
    source_name: str = UNKNOWN_SOURCE
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "NewsArticle":
        """Builds an article from one NewsAPI `articles` entry.

        Raises:
            DecodeError: `title` or `url` is missing or not a string.
        """
        title = data.get("title")
        url = data.get("url")
        if not isinstance(title, str) or not isinstance(url, str):
            err_msg = "Article is missing a title or url."
            raise DecodeError(err_msg)

        source = data.get("source")
        source_name = source.get("name") if isinstance(source, dict) else None
        published_raw = data.get("publishedAt")

        return cls(
            title=title,
            url=url,
            published_at=parse_published_at(
                published_raw if isinstance(published_raw, str) else ""
            ),
            description=_optional_str(data.get("description")),
            url_to_image=_optional_str(data.get("urlToImage")),
            source_name=source_name or UNKNOWN_SOURCE,
            id=uuid.uuid5(uuid.NAMESPACE_URL, url),
        )

    def relative_time(self, now: datetime | None = None) -> str:
        """Age of the article, e.g. "45m", "7h, 26m" or "1d, 7h"."""
        return format_relative_time(self.published_at, now)


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def decode_articles(payload: bytes | str) -> list[NewsArticle]:
    """Decodes a NewsAPI `/everything` response.

    Articles without a title or url are skipped with a warning.

    Raises:
        DecodeError: The payload is not JSON or has no `articles` list.
    """
    try:
        data = json.loads(payload)
    except ValueError as e:
        err_msg = f"News payload is not valid JSON: {e}"
        raise DecodeError(err_msg) from e
    articles = data.get("articles") if isinstance(data, dict) else None
    if not isinstance(articles, list):
        err_msg = "News payload has no 'articles' list."
        raise DecodeError(err_msg)

    decoded: list[NewsArticle] = []
    for entry in articles:
        if not isinstance(entry, dict):
            logger.warning(f"Skipping malformed article entry: {entry!r}")
            continue
        try:
            decoded.append(NewsArticle.from_api(entry))
        except DecodeError as e:
            logger.warning(f"Skipping article: {e}")
    return decoded


class NewsService:
    """Fetches the latest crypto headlines from NewsAPI.

    Each call is a single retrying request; failures propagate to the caller
    as `FetchError` or `DecodeError`.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        api_key: str,
        base_url: str = NEWSAPI_URL,
        query: str = "crypto",
    ) -> None:
        self.fetcher = fetcher
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.query = query

    async def fetch_preview_news(self) -> list[NewsArticle]:
        """A small preview of the news, for a home screen."""
        return await self.fetch_news(PREVIEW_PAGE_SIZE)

    async def fetch_latest_news(self) -> list[NewsArticle]:
        """The latest full list of news."""
        return await self.fetch_news(LATEST_PAGE_SIZE)

    async def fetch_news(self, page_size: int, page: int = 1) -> list[NewsArticle]:
        """Fetches one page of articles, newest first.

        Args:
            page_size: Articles per page.
            page: 1-based page number.
        """
        if page_size < 1 or page < 1:
            err_msg = "page_size and page must be positive integers."
            raise ValueError(err_msg)

        params = {
            "q": self.query,
            "pageSize": str(page_size),
            "sortBy": "publishedAt",
            "page": str(page),
        }
        body = await self.fetcher.fetch(
            f"{self.base_url}/everything",
            params=params,
            headers={"X-Api-Key": self._api_key},
        )
        articles = decode_articles(body)
        logger.info(f"Fetched {len(articles)} news articles (page {page}).")
        return articles


class NewsFeed:
    """A paged list of headlines with per-article read and bookmark state.

    `load_preview` (re)starts from page 1 and `load_more` appends the next
    page. Fetch and decode failures are not raised: they end up in
    `error_message`, and the articles already loaded are kept. Read state
    lives in memory only; bookmarks are persisted through `BookmarkStore`.

    Usage:
        feed = NewsFeed(service, BookmarkStore(path))
        await feed.load_preview()
        await feed.load_more()
        for article in feed.articles:
            ...
    """

    def __init__(
        self,
        service: NewsService,
        bookmarks: BookmarkStore,
        page_size: int = PREVIEW_PAGE_SIZE,
    ) -> None:
        if page_size < 1:
            err_msg = "page_size must be a positive integer."
            raise ValueError(err_msg)
        self.service = service
        self.bookmarks = bookmarks
        self.page_size = page_size
        self.articles: list[NewsArticle] = []
        self.error_message: str | None = None
        self.is_loading = False
        self.is_loading_page = False
        self._page = 1
        self._read_ids: set[uuid.UUID] = set()

    @property
    def page(self) -> int:
        """The last page that loaded successfully."""
        return self._page

    async def load_preview(self) -> None:
        """Replaces the list with the first page."""
        self.is_loading = True
        self._page = 1
        try:
            fetched = await self.service.fetch_news(self.page_size, page=1)
        except PriceFeedError as e:
            logger.warning(f"Could not load news: {e}")
            self.articles = []
            self.error_message = str(e)
            return
        finally:
            self.is_loading = False

        self.articles = fetched
        self.error_message = None if fetched else "No news available"

    async def load_more(self) -> list[NewsArticle]:
        """Appends the next page and returns its articles.

        A call made while another page is in flight returns `[]` without
        fetching. A failed page is not counted, so the next call retries it.
        """
        if self.is_loading_page:
            return []
        self.is_loading_page = True
        try:
            fetched = await self.service.fetch_news(self.page_size, page=self._page + 1)
        except PriceFeedError as e:
            logger.warning(f"Could not load news page {self._page + 1}: {e}")
            self.error_message = str(e)
            return []
        finally:
            self.is_loading_page = False

        self._page += 1
        self.articles.extend(fetched)
        return fetched

    def toggle_read(self, article: NewsArticle) -> bool:
        """Flips the read state of an article. Returns the new state."""
        if article.id in self._read_ids:
            self._read_ids.discard(article.id)
            return False
        self._read_ids.add(article.id)
        return True

    def is_read(self, article: NewsArticle) -> bool:
        return article.id in self._read_ids

    async def toggle_bookmark(self, article: NewsArticle) -> bool:
        return await self.bookmarks.toggle(article.id)

    def is_bookmarked(self, article: NewsArticle) -> bool:
        return self.bookmarks.is_bookmarked(article.id)
