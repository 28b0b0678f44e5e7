"""
Protocols of the external collaborators.

The synchronization core depends only on these interfaces. Concrete
adapters live in slide_sync.data_access and slide_sync.realtime; tests
substitute in-memory fakes.
"""

from typing import Any, Callable, Dict, List, Optional, Protocol

from slide_sync.models import (
    CacheEntry,
    ChannelStatus,
    LastViewedSlide,
    PresentationSnapshot,
    SlideManifest,
)


StatusCallback = Callable[[ChannelStatus], None]
ChangeCallback = Callable[[Dict[str, Any]], None]
PresenceCallback = Callable[[], None]


class PushChannel(Protocol):
    """
    One logical realtime channel scoped to a topic.

    Status callbacks report SUBSCRIBED once the backend confirms the join,
    and CHANNEL_ERROR, CLOSED or TIMED_OUT when the subscription fails.
    """

    topic: str

    def on_postgres_changes(
        self,
        event: str,
        schema: str,
        table: str,
        filter: Optional[str],
        callback: ChangeCallback
    ) -> 'PushChannel':
        """
        Register a row change binding.

        The callback receives {'eventType', 'new', 'old'} with the full new
        row under 'new'.
        """
        ...

    def on_presence_sync(self, callback: PresenceCallback) -> 'PushChannel':
        """Register a callback fired after every presence state change."""
        ...

    async def subscribe(self, status_callback: Optional[StatusCallback] = None) -> None:
        """Send the join request; the outcome arrives via status_callback."""
        ...

    async def track(self, payload: Dict[str, Any]) -> None:
        """Announce this member's presence payload."""
        ...

    def presence_state(self) -> Dict[str, List[Dict[str, Any]]]:
        """Current presence membership: member key to list of metas."""
        ...

    async def unsubscribe(self) -> None:
        """Leave the channel; no further callbacks fire."""
        ...


class ChannelFactory(Protocol):
    """Creates and removes push channels on a shared transport."""

    def channel(self, topic: str, config: Optional[Dict[str, Any]] = None) -> PushChannel:
        """Create a channel for a topic (not yet subscribed)."""
        ...

    async def remove_channel(self, channel: PushChannel) -> None:
        """Unsubscribe and forget a channel."""
        ...


class RowStore(Protocol):
    """Hosted row store: reads for every session, one write for presenters."""

    async def fetch_presentation(self, presentation_id: str) -> Optional[Dict[str, Any]]:
        """Full presentation row, or None if no such presentation."""
        ...

    async def fetch_snapshot(self, presentation_id: str) -> Optional[PresentationSnapshot]:
        """Narrow {current_slide_index, is_live} projection, or None."""
        ...

    async def fetch_slides(self, presentation_id: str) -> SlideManifest:
        """Slide manifest of a presentation, ordered by slide number."""
        ...

    async def update_current_slide(self, presentation_id: str, slide_number: int) -> None:
        """Set current_slide_index of a presentation."""
        ...


class ArtifactFetcher(Protocol):
    """Downloads artifact bytes from their remote URL."""

    async def fetch(self, url: str) -> bytes:
        """Fetch bytes; raises ArtifactFetchError on failure."""
        ...


class ArtifactStore(Protocol):
    """
    Persistent local key-value substrate of the artifact cache.

    Methods are blocking and transactional; the cache calls them through
    asyncio.to_thread. Failures raise StoreError.
    """

    def put(self, entry: CacheEntry) -> None:
        """Insert or replace an entry; an older write never replaces a newer one."""
        ...

    def get(self, presentation_id: str, slide_number: int) -> Optional[CacheEntry]:
        """Entry for a key, or None."""
        ...

    def exists(self, presentation_id: str, slide_number: int) -> bool:
        """Check whether a key is cached."""
        ...

    def delete_presentation(self, presentation_id: str) -> int:
        """Delete all entries of a presentation; returns the count."""
        ...

    def delete_older_than(self, cutoff_ms: int) -> int:
        """Delete entries with cached_at < cutoff_ms; returns the count."""
        ...

    def size_bytes(self) -> int:
        """Combined artifact size of all entries."""
        ...

    def put_last_viewed(self, slide: LastViewedSlide) -> None:
        """Remember the slide last shown for a presentation."""
        ...

    def get_last_viewed(self, presentation_id: str) -> Optional[LastViewedSlide]:
        """Slide last shown for a presentation, or None."""
        ...
