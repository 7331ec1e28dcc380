"""
Unit tests for the cache-aside repository, exercised through BookRepository.

Tests cover:
- Read-your-writes across entity and list keys
- Miss populates the cache in the background
- Degraded cache falls back to the store
- Invalidation cancels in-flight population
"""

import pytest
import pytest_asyncio

from bookswap.book.repository import ALL_KEY, BookRepository, genre_key
from bookswap.core.cache import MemoryCache
from bookswap.core.errors import InvalidTransition, NotFound
from bookswap.core.store import MemoryDatabase
from bookswap.core.tasks import DetachedTasks


class TestCachedRepository:
    """Tests for CachedRepository behaviour."""

    @pytest.fixture
    def cache(self):
        return MemoryCache()

    @pytest_asyncio.fixture
    async def tasks(self):
        tasks = DetachedTasks(timeout=1.0)
        yield tasks
        await tasks.drain()

    @pytest.fixture
    def repo(self, cache, tasks):
        return BookRepository(MemoryDatabase(), cache, tasks)

    @pytest.mark.asyncio
    async def test_miss_populates_cache(self, repo, cache, tasks):
        book = await repo.create({"title": "Dune", "genre": "sci-fi"})

        assert repo.key(book.id) not in cache
        await repo.get(book.id)
        await tasks.drain()

        cached = await cache.get(repo.key(book.id))
        assert cached["id"] == book.id
        assert cached["title"] == "Dune"

    @pytest.mark.asyncio
    async def test_hit_is_served_from_cache(self, repo, cache, tasks):
        book = await repo.create({"title": "Dune"})
        await repo.get(book.id)
        await tasks.drain()

        # ストアから消しても TTL 内はキャッシュから返る
        await repo.collection.delete_one(book.id)

        assert (await repo.get(book.id)).title == "Dune"

    @pytest.mark.asyncio
    async def test_read_your_writes_after_update(self, repo, tasks):
        book = await repo.create({"title": "Dune", "rating": 4.0})
        await repo.get(book.id)
        await tasks.drain()

        await repo.update(book.id, set_fields={"rating": 4.8})

        assert (await repo.get(book.id)).rating == 4.8

    @pytest.mark.asyncio
    async def test_cached_list_loads_once(self, repo, cache, tasks):
        loads = []

        async def loader():
            loads.append(1)
            return [{"id": "a" * 24, "title": "Emma"}]

        first = await repo.cached_list("books:custom", loader, ttl=60)
        await tasks.drain()
        second = await repo.cached_list("books:custom", loader, ttl=60)

        assert [b.title for b in first] == [b.title for b in second] == ["Emma"]
        assert loads == [1]
        assert await cache.get_list("books:custom") == [{"id": "a" * 24, "title": "Emma"}]

    @pytest.mark.asyncio
    async def test_list_is_invalidated_by_create(self, repo, tasks):
        await repo.create({"title": "Dune", "genre": "sci-fi"})
        assert len(await repo.list_by_genre("sci-fi")) == 1
        await tasks.drain()

        await repo.create({"title": "Hyperion", "genre": "sci-fi"})

        titles = [b.title for b in await repo.list_by_genre("sci-fi")]
        assert titles == ["Dune", "Hyperion"]

    @pytest.mark.asyncio
    async def test_update_invalidates_old_and_new_lists(self, repo, cache, tasks):
        book = await repo.create({"title": "Dune", "genre": "drama"})
        await repo.list_by_genre("drama")
        await repo.list_by_genre("sci-fi")
        await tasks.drain()

        await repo.update(book.id, set_fields={"genre": "sci-fi"})

        assert genre_key("drama") not in cache
        assert genre_key("sci-fi") not in cache
        assert await repo.list_by_genre("drama") == []
        assert [b.id for b in await repo.list_by_genre("sci-fi")] == [book.id]

    @pytest.mark.asyncio
    async def test_empty_list_is_cached(self, repo, cache, tasks):
        assert await repo.list_by_genre("poetry") == []
        await tasks.drain()

        assert await cache.get_list(genre_key("poetry")) == []

    @pytest.mark.asyncio
    async def test_delete_returns_pre_image(self, repo, cache, tasks):
        book = await repo.create({"title": "Dune"})
        await repo.list_all()
        await tasks.drain()

        removed = await repo.delete(book.id)

        assert removed == book
        assert ALL_KEY not in cache
        with pytest.raises(NotFound):
            await repo.get(book.id)

    @pytest.mark.asyncio
    async def test_missing_entity_raises_not_found(self, repo):
        with pytest.raises(NotFound):
            await repo.get("0" * 24)
        with pytest.raises(NotFound):
            await repo.update("0" * 24, set_fields={"title": "x"})
        with pytest.raises(NotFound):
            await repo.delete("0" * 24)

    @pytest.mark.asyncio
    async def test_failed_expectation_is_invalid_transition(self, repo):
        book = await repo.create({"title": "Dune", "genre": "sci-fi"})

        with pytest.raises(InvalidTransition):
            await repo.update(book.id, set_fields={"title": "x"}, expect={"genre": "drama"})

        assert (await repo.fetch(book.id)).title == "Dune"

    @pytest.mark.asyncio
    async def test_degraded_cache_falls_back_to_store(self, repo, cache, tasks, caplog):
        book = await repo.create({"title": "Dune"})
        cache.available = False

        assert (await repo.get(book.id)).title == "Dune"
        assert [b.id for b in await repo.list_all()] == [book.id]
        await repo.update(book.id, set_fields={"title": "Dune Messiah"})
        await tasks.drain()

        assert "Cache read degraded" in caplog.text
        assert "Cache invalidation degraded" in caplog.text

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_treated_as_miss(self, repo, cache):
        book = await repo.create({"title": "Dune"})
        await cache.set(repo.key(book.id), {"unexpected": True}, ttl=60)

        assert (await repo.get(book.id)).title == "Dune"

    @pytest.mark.asyncio
    async def test_invalidation_cancels_pending_population(self, repo, cache, tasks):
        """A stale populate scheduled before a write never lands."""
        book = await repo.create({"title": "Dune", "rating": 1.0})

        await repo.get(book.id)
        await repo.update(book.id, set_fields={"rating": 5.0})
        await tasks.drain()

        cached = await cache.get(repo.key(book.id))
        assert cached is None or cached["rating"] == 5.0
        assert (await repo.get(book.id)).rating == 5.0

    @pytest.mark.asyncio
    async def test_write_invalidates_recommendations(self, repo, cache, tasks):
        seed = await repo.create({"title": "Dune", "genre": "sci-fi"})
        await repo.recommend(seed)
        await tasks.drain()
        assert "books:recommend:" + seed.id in cache

        await repo.create({"title": "Hyperion", "genre": "sci-fi"})

        assert "books:recommend:" + seed.id not in cache
        assert [b.title for b in await repo.recommend(seed)] == ["Hyperion"]
