"""
Session controller: one viewing session of a presentation.

Wires the artifact cache, connection manager, preload scheduler and presence
tracker together and exposes the current displayable slide. All mutable
session state lives on the controller; teardown is close().
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from slide_sync.config.settings import Settings, get_settings
from slide_sync.data_access.artifact_fetcher import HttpArtifactFetcher
from slide_sync.data_access.dynamodb_artifact_store import DynamoDBArtifactStore
from slide_sync.data_access.exceptions import ArtifactFetchError, RowStoreError
from slide_sync.data_access.row_store import PostgrestRowStore
from slide_sync.data_access.sqlite_artifact_store import SqliteArtifactStore
from slide_sync.exceptions import (
    ArtifactLoadError,
    PresentationEndedError,
    PresentationNotFoundError,
)
from slide_sync.interfaces import ChannelFactory, RowStore
from slide_sync.models import (
    ConnectionConfig,
    ConnectionState,
    PreloadConfig,
    PresentationSnapshot,
    SlideDescriptor,
    SlideManifest,
)
from slide_sync.realtime.client import RealtimeClient
from slide_sync.services.artifact_cache import ArtifactCache
from slide_sync.services.blob_registry import BlobRegistry, is_blob_url
from slide_sync.services.connection_manager import ConnectionManager
from slide_sync.services.preload_scheduler import NativePreloader, PreloadScheduler
from slide_sync.services.presence_tracker import ROLE_PRESENTER, ROLE_VIEWER, PresenceTracker
from slide_sync.utils.event_source import EventSource
from slide_sync.utils.graceful_degradation import GracefulDegradationManager
from slide_sync.utils.metrics import MetricsPublisher
from slide_sync.utils.retry import retry_operation
from slide_sync.utils.structured_logger import LoggingContext, get_structured_logger

logger = logging.getLogger(__name__)


class SessionStatus(Enum):
    """Lifecycle status of a viewing session."""
    LOADING = "loading"        # Initial fetch, manifest and preload window in progress
    READY = "ready"            # Current slide displayable
    ENDED = "ended"            # Presenter ended the presentation (terminal)
    NOT_FOUND = "not_found"    # No such presentation (terminal)
    CLOSED = "closed"          # Session torn down by the caller

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.ENDED, SessionStatus.NOT_FOUND, SessionStatus.CLOSED)


class SessionController:
    """
    Orchestrates one viewing lifetime.

    Example:
        controller = SessionController.from_settings('p1')
        await controller.start()
        url = await controller.current_artifact_url()
        ...
        await controller.close()
    """

    def __init__(
        self,
        presentation_id: str,
        channel_factory: ChannelFactory,
        row_store: RowStore,
        cache: ArtifactCache,
        role: str = ROLE_VIEWER,
        connection_config: Optional[ConnectionConfig] = None,
        preload_config: Optional[PreloadConfig] = None,
        quality_source: Optional[EventSource] = None,
        visibility_source: Optional[EventSource] = None,
        native_preloader: Optional[NativePreloader] = None,
        metrics: Optional[MetricsPublisher] = None
    ):
        """
        Initialize session controller.

        Args:
            presentation_id: Presentation identifier
            channel_factory: Realtime channel factory shared by push and presence
            row_store: Row store client
            cache: Artifact cache
            role: 'viewer' or 'presenter'; only a presenter may move the
                live position
            connection_config: Connection manager timings
            preload_config: Priority window sizes
            quality_source: Optional source of ConnectionQuality changes
            visibility_source: Optional source of visibility changes
            native_preloader: Optional callable handed image URLs to preload
            metrics: Optional metrics publisher flushed on close()
        """
        self.presentation_id = presentation_id
        self.channel_factory = channel_factory
        self.row_store = row_store
        self.cache = cache
        self.role = role
        self.connection_config = connection_config or ConnectionConfig()
        self.preload_config = preload_config or PreloadConfig()
        self.quality_source = quality_source
        self.visibility_source = visibility_source
        self.native_preloader = native_preloader
        self.metrics = metrics

        self.degradation = GracefulDegradationManager()
        self.blobs = BlobRegistry()
        self.logger = get_structured_logger('SessionController', presentation_id=presentation_id)

        self.connection: Optional[ConnectionManager] = None
        self.preloader: Optional[PreloadScheduler] = None
        self.presence: Optional[PresenceTracker] = None
        self._manifest: SlideManifest = SlideManifest()
        self._status = SessionStatus.LOADING
        self._started = False
        self._blob_urls: Dict[Tuple[int, bool], str] = {}
        self._failed_artifacts: set = set()
        self._listeners: List[Callable[['SessionController'], None]] = []
        self._last_recorded: Optional[int] = None
        self._record_tasks: Set[asyncio.Task] = set()
        self._record_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        presentation_id: str,
        settings: Optional[Settings] = None,
        **kwargs: Any
    ) -> 'SessionController':
        """
        Build a controller with the concrete adapters named by the settings.

        Args:
            presentation_id: Presentation identifier
            settings: Settings (defaults to get_settings())
            **kwargs: Extra constructor arguments (role, event sources, ...)

        Returns:
            SessionController instance
        """
        settings = settings or get_settings()

        if settings.cache_backend == 'dynamodb':
            store = DynamoDBArtifactStore(
                region=settings.aws_region,
                endpoint_url=settings.dynamodb_endpoint_url,
                create_table=True
            )
        else:
            store = SqliteArtifactStore(settings.cache_db_url)

        fetcher = HttpArtifactFetcher(timeout=settings.http_timeout_seconds)
        cache = ArtifactCache(store, fetcher, config=settings.cache_config())
        row_store = PostgrestRowStore(
            settings.rest_url,
            settings.supabase_anon_key,
            timeout=settings.http_timeout_seconds
        )
        channel_factory = RealtimeClient(settings.realtime_url, settings.supabase_anon_key)

        if settings.metrics_enabled and 'metrics' not in kwargs:
            kwargs['metrics'] = MetricsPublisher(
                namespace=settings.metrics_namespace,
                region=settings.aws_region
            )

        kwargs.setdefault('connection_config', settings.connection_config())
        kwargs.setdefault('preload_config', settings.preload_config())
        return cls(presentation_id, channel_factory, row_store, cache, **kwargs)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def manifest(self) -> SlideManifest:
        return self._manifest

    @property
    def connection_state(self) -> Optional[ConnectionState]:
        return self.connection.state if self.connection else None

    @property
    def current_slide_index(self) -> Optional[int]:
        if self.connection is None or self.connection.snapshot is None:
            return None
        return self.connection.snapshot.current_slide_index

    @property
    def current_slide(self) -> Optional[SlideDescriptor]:
        index = self.current_slide_index
        if index is None:
            return None
        return self._manifest.get(index)

    @property
    def viewer_count(self) -> int:
        return self.presence.viewer_count if self.presence else 0

    def add_listener(self, callback: Callable[['SessionController'], None]) -> Callable[[], None]:
        """
        Register a callback fired on any session change.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> SessionStatus:
        """
        Start the session.

        Order: TTL sweep, connection start, manifest fetch, preload window,
        presence. Calling start() again is a no-op.

        Returns:
            Session status after start

        Raises:
            PresentationNotFoundError: If the presentation does not exist
            RowStoreError: If the row store stays unavailable after retries
        """
        if self._started:
            return self._status
        self._started = True

        with LoggingContext(self.logger, 'session_start'):
            await self.cache.sweep_expired()

            connection = ConnectionManager(
                self.presentation_id,
                self.channel_factory,
                self.row_store,
                config=self.connection_config,
                visibility_source=self.visibility_source,
                degradation=self.degradation
            )
            connection.add_snapshot_listener(self._on_snapshot)
            connection.add_state_listener(self._on_connection_state)
            connection.add_ended_listener(self._on_ended)
            self.connection = connection

            try:
                snapshot = await connection.start()
            except PresentationNotFoundError:
                await connection.stop()
                self._set_status(SessionStatus.NOT_FOUND)
                raise
            except RowStoreError:
                await connection.stop()
                self.connection = None
                self._started = False
                raise

            if self._status.is_terminal:
                return self._status

            self._manifest = await self._load_manifest()
            if self._status.is_terminal:
                return self._status
            self._remember_current()

            self.preloader = PreloadScheduler(
                self.cache,
                self.presentation_id,
                config=self.preload_config,
                native_preloader=self.native_preloader,
                quality_source=self.quality_source
            )
            position = connection.snapshot.current_slide_index if connection.snapshot else snapshot.current_slide_index
            report = await self.preloader.load_manifest(self._manifest, position)
            self.logger.info(
                'Preload window ready',
                operation='start',
                succeeded=report.succeeded,
                failed=report.failed
            )

            if self._status.is_terminal:
                return self._status

            self.presence = PresenceTracker(
                self.presentation_id,
                self.channel_factory,
                role=self.role,
                config=self.connection_config,
                degradation=self.degradation
            )
            self.presence.add_count_listener(lambda _: self._notify())
            await self.presence.start()

            if self._status is SessionStatus.LOADING:
                self._set_status(SessionStatus.READY)

        return self._status

    async def close(self) -> None:
        """Tear down all components and release artifact references."""
        if self._status is SessionStatus.CLOSED:
            return

        await self._publish_metrics()
        await self._teardown()
        self._set_status(SessionStatus.CLOSED)

    async def change_presentation(self, presentation_id: str) -> SessionStatus:
        """
        Switch the session to another presentation.

        The current presentation is fully torn down before the new one
        starts.
        """
        await self._teardown()

        self.presentation_id = presentation_id
        self.logger = self.logger.bind(presentation_id=presentation_id)
        self.degradation = GracefulDegradationManager()
        self._manifest = SlideManifest()
        self._last_recorded = None
        self._started = False
        self._set_status(SessionStatus.LOADING)
        return await self.start()

    # ------------------------------------------------------------------
    # Presenter navigation
    # ------------------------------------------------------------------

    async def go_to_slide(self, slide_number: int) -> Optional[int]:
        """
        Move the live position of the presentation.

        The request is clamped to the deck and shown locally at once; the
        row store write follows and reaches viewers over their channels.
        When the write fails the position is re-read from the row store
        and the error is raised.

        Args:
            slide_number: Requested slide number

        Returns:
            Slide number moved to, or None if the deck has no slides

        Raises:
            ValueError: If the session is not a presenter session
            PresentationEndedError: If the presentation has ended
            RuntimeError: If the session is not ready
            RowStoreError: If the row store rejected the write
        """
        if self.role != ROLE_PRESENTER:
            raise ValueError("Only a presenter session can change slides")
        if self._status is SessionStatus.ENDED:
            raise PresentationEndedError(self.presentation_id)
        if self._status is not SessionStatus.READY or self.connection is None:
            raise RuntimeError(f"Session is not ready: {self._status.value}")

        target = self._manifest.nearest(slide_number)
        if target is None:
            self.logger.warning('No slides to move to', operation='go_to_slide', requested=slide_number)
            return None

        previous = self.current_slide_index
        self.connection.apply_local(PresentationSnapshot(current_slide_index=target, is_live=True))

        try:
            await retry_operation(
                lambda: self.row_store.update_current_slide(self.presentation_id, target),
                max_retries=self.connection_config.initial_fetch_retries,
                base_delay=self.connection_config.backoff_base_delay,
                max_delay=self.connection_config.backoff_max_delay
            )
        except RowStoreError as e:
            self.logger.error(
                'Slide change not saved, restoring live position',
                operation='go_to_slide',
                slide_number=target,
                error=e
            )
            await self.connection.refetch()
            raise

        self.logger.info(
            'Live position moved',
            operation='go_to_slide',
            from_slide=previous,
            to_slide=target,
            requested=slide_number
        )
        return target

    async def next_slide(self) -> Optional[int]:
        """Advance one slide; None at the end of the deck."""
        current = self.current_slide_index
        target = self._manifest.next_after(current) if current is not None else self._manifest.first
        if target is None:
            return None
        return await self.go_to_slide(target)

    async def prev_slide(self) -> Optional[int]:
        """Go back one slide; None at the start of the deck."""
        current = self.current_slide_index
        target = self._manifest.previous_before(current) if current is not None else None
        if target is None:
            return None
        return await self.go_to_slide(target)

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    async def current_artifact_url(self, prefer_thumbnail: bool = False) -> Optional[str]:
        """
        Get the URL to display for the current slide.

        A cached artifact is served as a blob reference; otherwise the
        remote URL is returned. When the current slide cannot be resolved
        (offline start, missing manifest) the slide last displayed on this
        device is served instead.

        Args:
            prefer_thumbnail: Prefer the thumbnail artifact

        Returns:
            Blob reference, remote URL, or None if no slide is known
        """
        slide = self.current_slide
        if slide is None:
            return await self.last_viewed_artifact_url(prefer_thumbnail)

        url = await self._cached_blob(slide.slide_number, prefer_thumbnail)
        # The slide may have changed while the cache was read
        if url is not None and self.current_slide is slide:
            return url
        return self._remote_url(slide, prefer_thumbnail)

    async def last_viewed_artifact_url(self, prefer_thumbnail: bool = False) -> Optional[str]:
        """
        Get the URL of the slide last displayed for this presentation.

        Works without a connection or a manifest, so it also serves a
        session whose start() failed.

        Returns:
            Blob reference, remote URL, or None if nothing was recorded
        """
        record = await self.cache.last_viewed(self.presentation_id)
        if record is None:
            return None

        url = await self._cached_blob(record.slide_number, prefer_thumbnail)
        return url or record.image_url

    def artifact_load_failed(self, url: str) -> Optional[str]:
        """
        Report that the display layer could not load an artifact URL.

        The stale reference is dropped so later calls serve the remote URL.

        Args:
            url: URL that failed to load

        Returns:
            Remote URL to retry with, or None if there is no alternative
        """
        for key, blob_url in list(self._blob_urls.items()):
            if blob_url != url:
                continue

            slide_number, prefer_thumbnail = key
            self.blobs.revoke(url)
            del self._blob_urls[key]
            self._failed_artifacts.add(key)
            self.logger.warning(
                'Cached artifact failed to load, falling back to remote URL',
                operation='artifact_load_failed',
                slide_number=slide_number
            )

            slide = self._manifest.get(slide_number)
            return self._remote_url(slide, prefer_thumbnail) if slide else None

        return None

    async def open_artifact(self, url: str) -> bytes:
        """
        Load the bytes behind a URL returned by current_artifact_url().

        Raises:
            ArtifactLoadError: If a blob reference was revoked or a remote
                download failed
        """
        if is_blob_url(url):
            return self.blobs.resolve(url)

        if self.cache.fetcher is None:
            raise ArtifactLoadError(url, 'no artifact fetcher configured')
        try:
            return await self.cache.fetcher.fetch(url)
        except ArtifactFetchError as e:
            raise ArtifactLoadError(url, str(e)) from e

    def health(self) -> Dict[str, Any]:
        """
        Get session health.

        Returns:
            Dict with status, connection state, viewer count, cache stats
            and degraded services
        """
        health = self.degradation.get_health()
        health.update({
            'session_status': self._status.value,
            'connection_state': self.connection_state.value if self.connection_state else None,
            'current_slide_index': self.current_slide_index,
            'viewer_count': self.viewer_count,
            'cache': self.cache.get_cache_stats(),
        })
        return health

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load_manifest(self) -> SlideManifest:
        try:
            manifest = await retry_operation(
                lambda: self.row_store.fetch_slides(self.presentation_id),
                max_retries=self.connection_config.initial_fetch_retries,
                base_delay=self.connection_config.backoff_base_delay,
                max_delay=self.connection_config.backoff_max_delay
            )
        except RowStoreError as e:
            self.logger.error('Slide manifest fetch failed', operation='load_manifest', error=e)
            return SlideManifest()
        except ValueError as e:
            self.logger.error('Slide manifest is malformed', operation='load_manifest', error=e)
            return SlideManifest()

        if not manifest:
            self.logger.warning('Presentation has no slides', operation='load_manifest')
        return manifest

    async def _cached_blob(self, slide_number: int, prefer_thumbnail: bool) -> Optional[str]:
        key = (slide_number, prefer_thumbnail)
        if key in self._failed_artifacts:
            return None

        url = self._blob_urls.get(key)
        if url is not None and url in self.blobs:
            return url

        data = await self.cache.get(self.presentation_id, slide_number, prefer_thumbnail)
        if not data:
            return None
        url = self.blobs.create(data)
        self._blob_urls[key] = url
        return url

    def _remember_current(self) -> None:
        slide = self.current_slide
        if slide is None or slide.slide_number == self._last_recorded:
            return

        self._last_recorded = slide.slide_number
        task = asyncio.create_task(self._record_last_viewed(self.presentation_id, slide))
        self._record_tasks.add(task)
        task.add_done_callback(self._record_tasks.discard)

    async def _record_last_viewed(self, presentation_id: str, slide: SlideDescriptor) -> None:
        # records land in display order
        async with self._record_lock:
            await self.cache.remember_last_viewed(presentation_id, slide)

    def _remote_url(self, slide: SlideDescriptor, prefer_thumbnail: bool) -> str:
        if prefer_thumbnail and slide.thumbnail_url:
            return slide.thumbnail_url
        return slide.image_url

    def _on_snapshot(self, snapshot) -> None:
        if self.preloader is not None and snapshot.is_live:
            self.preloader.on_position_change(snapshot.current_slide_index)
        self._remember_current()
        self._notify()

    def _on_connection_state(self, state: ConnectionState) -> None:
        self._notify()

    def _on_ended(self) -> None:
        self._set_status(SessionStatus.ENDED)

    def _set_status(self, status: SessionStatus) -> None:
        old = self._status
        if old is status:
            return
        self._status = status
        self.logger.log_state_change('sessionStatus', old, status)
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception as e:
                self.logger.error('Session listener failed', operation='notify', error=e)

    async def _teardown(self) -> None:
        if self.preloader is not None:
            await self.preloader.stop()
            self.preloader = None
        if self.presence is not None:
            await self.presence.stop()
            self.presence = None
        if self.connection is not None:
            await self.connection.stop()
        if self._record_tasks:
            await asyncio.gather(*self._record_tasks, return_exceptions=True)

        revoked = self.blobs.revoke_all()
        self._blob_urls.clear()
        self._failed_artifacts.clear()
        self.logger.info('Session torn down', operation='teardown', revoked_artifacts=revoked)

    async def _publish_metrics(self) -> None:
        if self.metrics is None:
            return

        size = await self.cache.size_estimate()
        self.metrics.emit_cache_stats(self.cache.get_cache_stats(), size)
        if self.connection is not None:
            self.metrics.emit_connection_stats(
                self.connection.state_transitions,
                self.connection.is_polling_fallback
            )
        if self._status is SessionStatus.ENDED:
            self.metrics.put_count_metric('SessionsEnded')
        await asyncio.to_thread(self.metrics.flush)
