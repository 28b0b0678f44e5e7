"""
Artifact cache service.

Persists slide images and thumbnails keyed by (presentation_id,
slide_number) on top of an ArtifactStore. The cache is best-effort: every
store failure is logged and converted into a soft result so slide display
never depends on it.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from slide_sync.interfaces import ArtifactFetcher, ArtifactStore
from slide_sync.models import CacheConfig, CacheEntry, LastViewedSlide, SlideDescriptor, now_ms
from slide_sync.utils.graceful_degradation import (
    GracefulDegradationManager,
    SERVICE_ARTIFACT_CACHE,
    with_fallback,
)
from slide_sync.utils.structured_logger import get_structured_logger

logger = logging.getLogger(__name__)


class ArtifactCache:
    """
    Local cache of slide artifacts.

    Blocking store calls run in a worker thread. Writes to the same key are
    serialized by a per-key lock; writes to different keys never wait on
    each other. Entries are evicted by age only.
    """

    def __init__(
        self,
        store: ArtifactStore,
        fetcher: Optional[ArtifactFetcher] = None,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], int] = now_ms,
        degradation: Optional[GracefulDegradationManager] = None
    ):
        """
        Initialize artifact cache.

        Args:
            store: Persistent artifact store
            fetcher: Artifact fetcher used by cache_slide
            config: Retention configuration
            clock: Millisecond clock (injected in tests)
            degradation: Optional degradation tracker of the owning session
        """
        self.store = store
        self.fetcher = fetcher
        self.config = config or CacheConfig()
        self.degradation = degradation
        self._clock = clock
        self._locks: Dict[Tuple[str, int], asyncio.Lock] = {}
        self.logger = get_structured_logger('ArtifactCache')

        self.hits = 0
        self.misses = 0
        self.write_failures = 0

    def _lock_for(self, key: Tuple[str, int]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def put(
        self,
        presentation_id: str,
        slide_number: int,
        image: bytes,
        thumbnail: Optional[bytes] = None,
        image_url: Optional[str] = None,
        thumbnail_url: Optional[str] = None
    ) -> bool:
        """
        Insert or replace the artifacts of one slide.

        Args:
            presentation_id: Presentation identifier
            slide_number: Slide number
            image: Full-size image bytes
            thumbnail: Optional thumbnail bytes
            image_url: Remote URL of the image
            thumbnail_url: Remote URL of the thumbnail

        Returns:
            True if the entry was written
        """
        key = (presentation_id, slide_number)
        async with self._lock_for(key):
            # Timestamp taken under the lock: the last completed write wins
            try:
                entry = CacheEntry(
                    presentation_id=presentation_id,
                    slide_number=slide_number,
                    image=image,
                    thumbnail=thumbnail or None,
                    cached_at=self._clock(),
                    image_url=image_url,
                    thumbnail_url=thumbnail_url
                )
            except ValueError as e:
                self.logger.warning(
                    'Rejected invalid cache entry',
                    operation='put',
                    slide_number=slide_number,
                    reason=str(e)
                )
                self.write_failures += 1
                return False

            written = await self._write(entry)

        if self.degradation:
            if written:
                self.degradation.mark_recovered(SERVICE_ARTIFACT_CACHE)
            else:
                self.degradation.mark_degraded(SERVICE_ARTIFACT_CACHE, 'store write failed')
        if not written:
            self.write_failures += 1
        return written

    async def cache_slide(self, presentation_id: str, slide: SlideDescriptor) -> bool:
        """
        Download a slide's artifacts and cache them.

        Image and thumbnail are fetched concurrently before any store
        transaction opens. A failed thumbnail is cached as "no thumbnail";
        a failed image writes nothing.

        Args:
            presentation_id: Presentation identifier
            slide: Slide descriptor with remote URLs

        Returns:
            True if the slide was cached
        """
        if self.fetcher is None:
            self.logger.error('No artifact fetcher configured', operation='cache_slide')
            return False

        fetches = [self.fetcher.fetch(slide.image_url)]
        if slide.thumbnail_url:
            fetches.append(self.fetcher.fetch(slide.thumbnail_url))

        results = await asyncio.gather(*fetches, return_exceptions=True)
        for result in results:
            # Cancellation is never converted into a soft failure
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        image = results[0]
        if isinstance(image, Exception):
            self.logger.warning(
                'Image fetch failed, slide not cached',
                operation='cache_slide',
                slide_number=slide.slide_number,
                error_message=str(image)
            )
            return False

        thumbnail = results[1] if len(results) > 1 else None
        if isinstance(thumbnail, Exception):
            self.logger.info(
                'Thumbnail fetch failed, caching image only',
                operation='cache_slide',
                slide_number=slide.slide_number,
                error_message=str(thumbnail)
            )
            thumbnail = None

        return await self.put(
            presentation_id,
            slide.slide_number,
            image,
            thumbnail,
            image_url=slide.image_url,
            thumbnail_url=slide.thumbnail_url if thumbnail else None
        )

    async def get(
        self,
        presentation_id: str,
        slide_number: int,
        prefer_thumbnail: bool = False
    ) -> Optional[bytes]:
        """
        Read a cached artifact.

        Args:
            presentation_id: Presentation identifier
            slide_number: Slide number
            prefer_thumbnail: Serve the thumbnail if one was cached

        Returns:
            Artifact bytes, or None if the slide is not cached
        """
        entry = await self.get_entry(presentation_id, slide_number)
        if entry is None:
            self.misses += 1
            return None

        self.hits += 1
        return entry.artifact(prefer_thumbnail)

    @with_fallback(fallback_value=None)
    async def get_entry(self, presentation_id: str, slide_number: int) -> Optional[CacheEntry]:
        """Read the full cache entry of a slide, or None."""
        return await asyncio.to_thread(self.store.get, presentation_id, slide_number)

    @with_fallback(fallback_value=False)
    async def has(self, presentation_id: str, slide_number: int) -> bool:
        return await asyncio.to_thread(self.store.exists, presentation_id, slide_number)

    async def evict_older_than(self, max_age_seconds: float) -> int:
        """
        Remove entries cached more than max_age_seconds ago.

        An entry exactly at the cutoff is kept.

        Args:
            max_age_seconds: Maximum entry age in seconds

        Returns:
            Number of entries removed
        """
        cutoff_ms = self._clock() - int(max_age_seconds * 1000)
        removed = await self._delete_older_than(cutoff_ms)
        if removed:
            self.logger.info(
                'Evicted expired cache entries',
                operation='evict',
                removed=removed,
                max_age_seconds=max_age_seconds
            )
        return removed

    async def sweep_expired(self) -> int:
        """Evict entries older than the configured retention period."""
        return await self.evict_older_than(self.config.retention_seconds)

    @with_fallback(fallback_value=0)
    async def clear_presentation(self, presentation_id: str) -> int:
        return await asyncio.to_thread(self.store.delete_presentation, presentation_id)

    @with_fallback(fallback_value=0)
    async def size_estimate(self) -> int:
        return await asyncio.to_thread(self.store.size_bytes)

    @with_fallback(fallback_value=False)
    async def remember_last_viewed(self, presentation_id: str, slide: SlideDescriptor) -> bool:
        """Record the slide just displayed as the offline fallback of a presentation."""
        record = LastViewedSlide(
            presentation_id=presentation_id,
            slide_number=slide.slide_number,
            image_url=slide.image_url,
            viewed_at=self._clock()
        )
        await asyncio.to_thread(self.store.put_last_viewed, record)
        return True

    @with_fallback(fallback_value=None)
    async def last_viewed(self, presentation_id: str) -> Optional[LastViewedSlide]:
        return await asyncio.to_thread(self.store.get_last_viewed, presentation_id)

    def get_cache_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dict with hits, misses, write_failures and hit_rate
        """
        lookups = self.hits + self.misses
        return {
            'hits': self.hits,
            'misses': self.misses,
            'write_failures': self.write_failures,
            'hit_rate': self.hits / lookups if lookups else 0.0
        }

    @with_fallback(fallback_value=False)
    async def _write(self, entry: CacheEntry) -> bool:
        await asyncio.to_thread(self.store.put, entry)
        return True

    @with_fallback(fallback_value=0)
    async def _delete_older_than(self, cutoff_ms: int) -> int:
        return await asyncio.to_thread(self.store.delete_older_than, cutoff_ms)
