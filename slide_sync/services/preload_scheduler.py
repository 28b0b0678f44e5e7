"""
Preload scheduler: keeps the slides around the live position cached.

The priority window is the range of slides within N of the current position,
clamped to the deck. N depends on the estimated connection quality.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from slide_sync.models import (
    ConnectionQuality,
    PreloadConfig,
    PreloadReport,
    SlideManifest,
)
from slide_sync.services.artifact_cache import ArtifactCache
from slide_sync.utils.event_source import EventSource
from slide_sync.utils.structured_logger import LoggingContext, get_structured_logger

logger = logging.getLogger(__name__)

NativePreloader = Callable[[str], None]


def window_size(quality: ConnectionQuality, config: Optional[PreloadConfig] = None) -> int:
    """Slides cached on each side of the position for a connection quality."""
    config = config or PreloadConfig()
    if quality is ConnectionQuality.FAST:
        return config.fast_window
    if quality is ConnectionQuality.SLOW:
        return config.slow_window
    return config.unknown_window


def priority_window(
    position: int,
    manifest: SlideManifest,
    quality: ConnectionQuality,
    config: Optional[PreloadConfig] = None
) -> range:
    """
    Compute the slides to keep cached around a position.

    Args:
        position: Current slide number
        manifest: Slide manifest of the deck
        quality: Estimated connection quality
        config: Window sizes per quality

    Returns:
        Range [max(first, position - N), min(last, position + N)], empty for
        an empty manifest

    Example:
        >>> list(priority_window(1, manifest_of_20, ConnectionQuality.FAST))
        [1, 2, 3, 4, 5, 6]
    """
    if not manifest:
        return range(0)

    n = window_size(quality, config)
    start = max(manifest.first, position - n)
    end = min(manifest.last, position + n)
    if start > end:
        return range(0)
    return range(start, end + 1)


class PreloadScheduler:
    """
    Decides which slides to cache and when.

    The window around the position is cached as a batch on manifest load.
    Slides outside it are fetched lazily, once a position or quality change
    brings them into the window; `preload_whole_deck` opts into caching the
    rest of the deck in the background. Nothing is evicted during the
    session.
    """

    def __init__(
        self,
        cache: ArtifactCache,
        presentation_id: str,
        config: Optional[PreloadConfig] = None,
        quality: ConnectionQuality = ConnectionQuality.UNKNOWN,
        native_preloader: Optional[NativePreloader] = None,
        quality_source: Optional[EventSource] = None
    ):
        """
        Initialize preload scheduler.

        Args:
            cache: Artifact cache to fill
            presentation_id: Presentation identifier
            config: Window sizes per quality
            quality: Initial connection quality
            native_preloader: Optional callable handed the image URL of
                every uncached slide entering the window
            quality_source: Optional source of connection quality changes
        """
        self.cache = cache
        self.presentation_id = presentation_id
        self.config = config or PreloadConfig()
        self.native_preloader = native_preloader
        self.logger = get_structured_logger('PreloadScheduler', presentation_id=presentation_id)

        self._quality = quality
        self.manifest: Optional[SlideManifest] = None
        self.position: Optional[int] = None
        self._window: range = range(0)

        self._inflight: Dict[int, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._background: Optional[asyncio.Task] = None
        self._stopped = False

        self._unsubscribe_quality: Optional[Callable[[], None]] = None
        if quality_source is not None:
            if quality_source.current is not None:
                self._quality = quality_source.current
            self._unsubscribe_quality = quality_source.subscribe(self.on_quality_change)

    @property
    def window(self) -> range:
        return self._window

    @property
    def quality(self) -> ConnectionQuality:
        return self._quality

    async def load_manifest(self, manifest: SlideManifest, position: int) -> PreloadReport:
        """
        Cache the priority window as a batch.

        Args:
            manifest: Slide manifest of the deck
            position: Current slide number

        Returns:
            PreloadReport of the window batch; returns once the batch settled
        """
        self.manifest = manifest
        self.position = position
        self._window = priority_window(position, manifest, self._quality, self.config)

        numbers = [n for n in self._window if n in manifest]
        with LoggingContext(self.logger, 'preload_window', slides=len(numbers)):
            results = await asyncio.gather(*(self._ensure_cached(n) for n in numbers))

        succeeded = sum(1 for ok in results if ok)
        report = PreloadReport(
            succeeded=succeeded,
            failed=len(numbers) - succeeded,
            slide_numbers=numbers
        )
        if not report.is_complete:
            self.logger.warning(
                'Preload window partially cached',
                operation='load_manifest',
                succeeded=report.succeeded,
                failed=report.failed
            )

        remaining = [n for n in manifest.slide_numbers if n not in self._window]
        if self.config.preload_whole_deck and remaining and not self._stopped:
            self._background = asyncio.create_task(self._cache_remaining(remaining))

        return report

    def on_position_change(self, position: int) -> List[int]:
        """
        Recompute the window for a new position.

        Args:
            position: New slide number

        Returns:
            Slide numbers newly covered by the window
        """
        self.position = position
        return self._rewindow()

    def on_quality_change(self, quality: ConnectionQuality) -> List[int]:
        """
        Recompute the window for a new connection quality.

        Returns:
            Slide numbers newly covered by the window
        """
        if quality is self._quality:
            return []
        self.logger.log_state_change('connectionQuality', self._quality, quality)
        self._quality = quality
        return self._rewindow()

    async def wait_idle(self) -> None:
        """Wait for all pending window fetches (not the background pass)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel background and in-flight work."""
        self._stopped = True
        if self._unsubscribe_quality:
            self._unsubscribe_quality()
            self._unsubscribe_quality = None

        pending = list(self._tasks) + list(self._inflight.values())
        if self._background is not None:
            pending.append(self._background)
            self._background = None

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        self._inflight.clear()

    def _rewindow(self) -> List[int]:
        if self.manifest is None or self.position is None or self._stopped:
            return []

        previous = set(self._window)
        self._window = priority_window(self.position, self.manifest, self._quality, self.config)
        newly_covered = [
            n for n in self._window if n not in previous and n in self.manifest
        ]

        for slide_number in newly_covered:
            task = asyncio.create_task(self._ensure_cached(slide_number, native=True))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return newly_covered

    async def _ensure_cached(self, slide_number: int, native: bool = False) -> bool:
        if slide_number in self._inflight:
            return await asyncio.shield(self._inflight[slide_number])

        if await self.cache.has(self.presentation_id, slide_number):
            return True

        # Another caller may have started the fetch while we checked
        if slide_number in self._inflight:
            return await asyncio.shield(self._inflight[slide_number])

        slide = self.manifest.get(slide_number)
        if slide is None:
            return False

        if native and self.native_preloader is not None:
            try:
                self.native_preloader(slide.image_url)
            except Exception as e:
                self.logger.warning(
                    'Native preloader failed',
                    operation='preload',
                    slide_number=slide_number,
                    error_message=str(e)
                )

        task = asyncio.create_task(self.cache.cache_slide(self.presentation_id, slide))
        self._inflight[slide_number] = task
        task.add_done_callback(lambda _: self._inflight.pop(slide_number, None))
        return await asyncio.shield(task)

    async def _cache_remaining(self, slide_numbers: List[int]) -> None:
        cached = 0
        for slide_number in slide_numbers:
            if await self._ensure_cached(slide_number):
                cached += 1

        self.logger.info(
            'Background preload finished',
            operation='background_preload',
            cached=cached,
            total=len(slide_numbers)
        )
