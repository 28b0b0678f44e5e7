"""
Cache entry data model for slide artifacts.

This module defines the dataclass stored by the artifact cache for one
(presentation, slide) key.
"""

import time
from dataclasses import dataclass
from typing import Optional, Tuple


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


@dataclass
class CacheEntry:
    """
    Cached artifacts of one slide.

    Attributes:
        presentation_id: Presentation identifier (first half of the key)
        slide_number: Slide number (second half of the key)
        image: Full-size image bytes
        thumbnail: Thumbnail bytes, if a thumbnail was cached
        cached_at: Unix timestamp in milliseconds of the last successful cache
        image_url: Remote URL the image was fetched from
        thumbnail_url: Remote URL the thumbnail was fetched from
    """

    presentation_id: str
    slide_number: int
    image: bytes
    thumbnail: Optional[bytes] = None
    cached_at: int = 0
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None

    def __post_init__(self):
        """Validate field constraints."""
        if not self.presentation_id:
            raise ValueError("presentation_id cannot be empty")

        if self.slide_number < 1:
            raise ValueError(f"slide_number must be >= 1, got {self.slide_number}")

        if not self.image:
            raise ValueError("image cannot be empty")

        if self.cached_at == 0:
            self.cached_at = now_ms()

    @property
    def key(self) -> Tuple[str, int]:
        """Compound cache key."""
        return (self.presentation_id, self.slide_number)

    @property
    def size_bytes(self) -> int:
        """Combined size of the cached artifacts."""
        return len(self.image) + (len(self.thumbnail) if self.thumbnail else 0)

    def artifact(self, prefer_thumbnail: bool = False) -> bytes:
        """
        Select the artifact to serve.

        Args:
            prefer_thumbnail: Serve the thumbnail if one was cached

        Returns:
            Thumbnail bytes when preferred and available, image bytes otherwise
        """
        if prefer_thumbnail and self.thumbnail:
            return self.thumbnail
        return self.image

    def is_older_than(self, cutoff_ms: int) -> bool:
        """
        Check if entry was cached strictly before the cutoff.

        Args:
            cutoff_ms: Unix timestamp in milliseconds

        Returns:
            True if cached_at < cutoff_ms
        """
        return self.cached_at < cutoff_ms


@dataclass
class LastViewedSlide:
    """
    The slide a presentation was last displayed at on this device.

    Served as an offline fallback when the current slide cannot be
    resolved.

    Attributes:
        presentation_id: Presentation identifier
        slide_number: Slide number that was displayed
        image_url: Remote URL of the slide image
        viewed_at: Unix timestamp in milliseconds
    """

    presentation_id: str
    slide_number: int
    image_url: str
    viewed_at: int = 0

    def __post_init__(self):
        if not self.presentation_id:
            raise ValueError("presentation_id cannot be empty")
        if not self.image_url:
            raise ValueError("image_url cannot be empty")
        if self.viewed_at == 0:
            self.viewed_at = now_ms()
