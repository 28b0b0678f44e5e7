"""
Unit tests for the artifact cache service.
"""
import asyncio
from unittest.mock import Mock

import pytest

from slide_sync.data_access.exceptions import StoreError
from slide_sync.data_access.sqlite_artifact_store import SqliteArtifactStore
from slide_sync.models import CacheConfig, SlideDescriptor
from slide_sync.models.configuration import SECONDS_PER_DAY
from slide_sync.services.artifact_cache import ArtifactCache
from slide_sync.utils.graceful_degradation import (
    GracefulDegradationManager,
    SERVICE_ARTIFACT_CACHE,
)


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start_ms=1_700_000_000_000):
        self.now = start_ms

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    store = SqliteArtifactStore()
    yield store
    store.dispose()


@pytest.fixture
def cache(store, fetcher, clock):
    return ArtifactCache(store, fetcher=fetcher, clock=clock)


def slide(n, thumbnail=True):
    return SlideDescriptor(
        slide_number=n,
        image_url=f'https://cdn.test/{n}.png',
        thumbnail_url=f'https://cdn.test/{n}_thumb.png' if thumbnail else None
    )


class TestPutAndGet:
    """Test basic cache reads and writes."""

    @pytest.mark.asyncio
    async def test_put_then_get(self, cache):
        assert await cache.put('p1', 3, b'full', b'thumb')

        assert await cache.get('p1', 3) == b'full'
        assert await cache.get('p1', 3, prefer_thumbnail=True) == b'thumb'
        assert await cache.has('p1', 3)

    @pytest.mark.asyncio
    async def test_thumbnail_preference_falls_back_to_image(self, cache):
        await cache.put('p1', 3, b'full')

        assert await cache.get('p1', 3, prefer_thumbnail=True) == b'full'

    @pytest.mark.asyncio
    async def test_miss_returns_none_and_counts(self, cache):
        assert await cache.get('p1', 9) is None
        await cache.put('p1', 1, b'full')
        await cache.get('p1', 1)

        stats = cache.get_cache_stats()
        assert stats['hits'] == 1
        assert stats['misses'] == 1
        assert stats['hit_rate'] == 0.5

    @pytest.mark.asyncio
    async def test_entry_timestamp_comes_from_clock(self, cache, clock):
        await cache.put('p1', 1, b'full')

        entry = await cache.get_entry('p1', 1)
        assert entry.cached_at == clock.now

    @pytest.mark.asyncio
    async def test_empty_image_is_rejected(self, cache):
        assert not await cache.put('p1', 1, b'')
        assert cache.write_failures == 1
        assert not await cache.has('p1', 1)

    @pytest.mark.asyncio
    async def test_concurrent_writes_to_same_key_leave_one_entry(self, cache, clock, store):
        async def write(payload):
            clock.advance(1)
            return await cache.put('p1', 1, payload)

        results = await asyncio.gather(write(b'a'), write(b'b'), write(b'c'))

        assert all(results)
        assert (await cache.get_entry('p1', 1)).image in {b'a', b'b', b'c'}
        assert store.size_bytes() == 1


class TestCacheSlide:
    """Test fetching and caching a slide."""

    @pytest.mark.asyncio
    async def test_caches_image_and_thumbnail(self, cache, fetcher):
        assert await cache.cache_slide('p1', slide(2))

        entry = await cache.get_entry('p1', 2)
        assert entry.image == b'bytes:https://cdn.test/2.png'
        assert entry.thumbnail == b'bytes:https://cdn.test/2_thumb.png'
        assert entry.thumbnail_url == 'https://cdn.test/2_thumb.png'
        assert sorted(fetcher.calls) == ['https://cdn.test/2.png', 'https://cdn.test/2_thumb.png']

    @pytest.mark.asyncio
    async def test_failed_thumbnail_caches_image_only(self, store, clock, make_fetcher):
        cache = ArtifactCache(store, fetcher=make_fetcher({'https://cdn.test/2_thumb.png'}), clock=clock)

        assert await cache.cache_slide('p1', slide(2))

        entry = await cache.get_entry('p1', 2)
        assert entry.thumbnail is None
        assert entry.thumbnail_url is None

    @pytest.mark.asyncio
    async def test_failed_image_writes_nothing(self, store, clock, make_fetcher):
        cache = ArtifactCache(store, fetcher=make_fetcher({'https://cdn.test/2.png'}), clock=clock)

        assert not await cache.cache_slide('p1', slide(2))
        assert not await cache.has('p1', 2)

    @pytest.mark.asyncio
    async def test_without_fetcher(self, store):
        cache = ArtifactCache(store)

        assert not await cache.cache_slide('p1', slide(1, thumbnail=False))


class TestEviction:
    """Test age-based eviction."""

    @pytest.mark.asyncio
    async def test_sweep_removes_entries_past_retention(self, cache, clock):
        await cache.put('p1', 1, b'old')
        clock.advance(2 * SECONDS_PER_DAY)
        await cache.put('p1', 2, b'recent')
        clock.advance(6 * SECONDS_PER_DAY)

        # entry 1 is 8 days old, entry 2 is 6 days old
        assert await cache.sweep_expired() == 1
        assert not await cache.has('p1', 1)
        assert await cache.has('p1', 2)

    @pytest.mark.asyncio
    async def test_entry_exactly_at_cutoff_is_kept(self, cache, clock):
        await cache.put('p1', 1, b'img')
        clock.advance(60)

        assert await cache.evict_older_than(60) == 0
        assert await cache.has('p1', 1)

    @pytest.mark.asyncio
    async def test_custom_retention(self, store, fetcher, clock):
        cache = ArtifactCache(store, fetcher, config=CacheConfig(retention_seconds=10), clock=clock)
        await cache.put('p1', 1, b'img')
        clock.advance(11)

        assert await cache.sweep_expired() == 1

    @pytest.mark.asyncio
    async def test_clear_presentation_and_size(self, cache):
        await cache.put('p1', 1, b'1234')
        await cache.put('p1', 2, b'12', b'1')
        await cache.put('p2', 1, b'123')

        assert await cache.size_estimate() == 10
        assert await cache.clear_presentation('p1') == 2
        assert await cache.size_estimate() == 3


class TestLastViewed:
    """Test the offline fallback record."""

    @pytest.mark.asyncio
    async def test_remember_then_read(self, cache, clock):
        assert await cache.last_viewed('p1') is None

        assert await cache.remember_last_viewed('p1', slide(4))
        clock.advance(5)
        assert await cache.remember_last_viewed('p1', slide(6))

        record = await cache.last_viewed('p1')
        assert record.slide_number == 6
        assert record.image_url == 'https://cdn.test/6.png'
        assert record.viewed_at == clock.now


class TestStoreFailures:
    """Test that store failures never escape the cache."""

    @pytest.fixture
    def broken_store(self):
        store = Mock()
        for method in ('put', 'get', 'exists', 'delete_presentation', 'delete_older_than', 'size_bytes',
                       'put_last_viewed', 'get_last_viewed'):
            getattr(store, method).side_effect = StoreError('disk I/O error')
        return store

    @pytest.mark.asyncio
    async def test_reads_degrade_to_miss(self, broken_store):
        cache = ArtifactCache(broken_store)

        assert await cache.get('p1', 1) is None
        assert await cache.has('p1', 1) is False
        assert await cache.size_estimate() == 0
        assert await cache.clear_presentation('p1') == 0
        assert await cache.sweep_expired() == 0
        assert await cache.last_viewed('p1') is None
        assert await cache.remember_last_viewed('p1', slide(1)) is False

    @pytest.mark.asyncio
    async def test_write_failure_is_counted_and_marks_degraded(self, broken_store):
        degradation = GracefulDegradationManager()
        cache = ArtifactCache(broken_store, degradation=degradation)

        assert await cache.put('p1', 1, b'img') is False

        assert cache.write_failures == 1
        assert degradation.is_degraded(SERVICE_ARTIFACT_CACHE)

    @pytest.mark.asyncio
    async def test_successful_write_clears_degradation(self, store):
        degradation = GracefulDegradationManager()
        degradation.mark_degraded(SERVICE_ARTIFACT_CACHE, 'store write failed')
        cache = ArtifactCache(store, degradation=degradation)

        assert await cache.put('p1', 1, b'img') is True

        assert not degradation.is_degraded(SERVICE_ARTIFACT_CACHE)

    @pytest.mark.asyncio
    async def test_cancellation_propagates_from_fetch(self, store, make_fetcher):
        cache = ArtifactCache(store, fetcher=make_fetcher(delay=1.0))

        task = asyncio.create_task(cache.cache_slide('p1', slide(1)))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
