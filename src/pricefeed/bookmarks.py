import asyncio
import json
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os
from loguru import logger


class BookmarkStore:
    """The persisted set of bookmarked article ids.

    Ids are kept in memory and written to a JSON file (a list of UUID
    strings) on every change. File IO goes through `aiofiles`, so the event
    loop is never blocked by disk operations.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._ids: set[uuid.UUID] = set()
        self._lock = asyncio.Lock()

    @property
    def ids(self) -> frozenset[uuid.UUID]:
        return frozenset(self._ids)

    def is_bookmarked(self, article_id: uuid.UUID) -> bool:
        return article_id in self._ids

    async def load(self) -> None:
        """Reads the saved ids. A missing or unreadable file means no bookmarks."""
        async with self._lock:
            self._ids.clear()
            if not await aiofiles.os.path.exists(self.path):
                return
            try:
                async with aiofiles.open(self.path, encoding="utf-8") as f:
                    saved = json.loads(await f.read())
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read bookmarks from '{self.path}': {e}")
                return
            if not isinstance(saved, list):
                logger.warning(f"Ignoring malformed bookmark file '{self.path}'.")
                return
            for raw in saved:
                try:
                    self._ids.add(uuid.UUID(str(raw)))
                except ValueError:  # noqa: PERF203
                    logger.warning(f"Ignoring invalid bookmark id: {raw!r}")
            logger.debug(f"Loaded {len(self._ids)} bookmarks.")

    async def toggle(self, article_id: uuid.UUID) -> bool:
        """Flips the bookmark state of an article and saves the set.

        Returns:
            True if the article is bookmarked afterwards.
        """
        async with self._lock:
            if article_id in self._ids:
                self._ids.discard(article_id)
                bookmarked = False
            else:
                self._ids.add(article_id)
                bookmarked = True
            await self._save()
        return bookmarked

    async def _save(self) -> None:
        payload = json.dumps(sorted(str(i) for i in self._ids))
        try:
            await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
            async with aiofiles.open(self.path, mode="w", encoding="utf-8") as f:
                await f.write(payload)
        except OSError:
            logger.exception(f"Failed to save bookmarks to '{self.path}'.")
