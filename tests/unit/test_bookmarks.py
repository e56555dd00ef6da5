import json
import uuid
from pathlib import Path

import pytest

from pricefeed.bookmarks import BookmarkStore


@pytest.mark.asyncio
async def test_missing_file_means_no_bookmarks(tmp_path: Path) -> None:
    store = BookmarkStore(tmp_path / "bookmarks.json")
    await store.load()
    assert store.ids == frozenset()


@pytest.mark.asyncio
async def test_toggle_persists_and_reloads(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "bookmarks.json"
    article_id = uuid.uuid4()
    store = BookmarkStore(path)

    assert await store.toggle(article_id) is True
    assert store.is_bookmarked(article_id)
    assert json.loads(path.read_text(encoding="utf-8")) == [str(article_id)]

    reloaded = BookmarkStore(path)
    await reloaded.load()
    assert reloaded.is_bookmarked(article_id)

    assert await reloaded.toggle(article_id) is False
    assert not reloaded.is_bookmarked(article_id)
    assert json.loads(path.read_text(encoding="utf-8")) == []


@pytest.mark.asyncio
async def test_invalid_entries_are_ignored(tmp_path: Path) -> None:
    good = uuid.uuid4()
    path = tmp_path / "bookmarks.json"
    path.write_text(json.dumps([str(good), "not-a-uuid"]), encoding="utf-8")

    store = BookmarkStore(path)
    await store.load()
    assert store.ids == frozenset({good})


@pytest.mark.asyncio
async def test_corrupt_file_is_treated_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "bookmarks.json"
    path.write_text("{not json", encoding="utf-8")

    store = BookmarkStore(path)
    await store.load()
    assert store.ids == frozenset()
