"""
Slide manifest data models.

The manifest is fetched once per session and is immutable for the
session's lifetime.
"""
from dataclasses import dataclass
from typing import Dict, Any, Iterable, Iterator, List, Optional, Tuple


@dataclass(frozen=True)
class SlideDescriptor:
    """
    Location of one slide's artifacts.

    Attributes:
        slide_number: 1-based slide number
        image_url: Remote URL of the full-size slide image
        thumbnail_url: Remote URL of the thumbnail, if one exists
    """
    slide_number: int
    image_url: str
    thumbnail_url: Optional[str] = None

    def __post_init__(self):
        """Validate descriptor values."""
        if self.slide_number < 1:
            raise ValueError(f"slide_number must be >= 1, got {self.slide_number}")
        if not self.image_url:
            raise ValueError("image_url cannot be empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SlideDescriptor':
        """
        Create SlideDescriptor from a slides table row.

        Args:
            data: Row with slide_number, image_url and thumbnail_url

        Returns:
            SlideDescriptor instance

        Raises:
            ValueError: If the row lacks a usable slide number or image URL
        """
        try:
            slide_number = int(data['slide_number'])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid slide_number in slides row: {data!r}") from e

        return cls(
            slide_number=slide_number,
            image_url=data.get('image_url') or '',
            thumbnail_url=data.get('thumbnail_url') or None
        )


class SlideManifest:
    """
    Ordered, immutable sequence of slide descriptors.

    Descriptors are sorted by slide number on construction. Lookup by slide
    number is constant time.
    """

    def __init__(self, slides: Iterable[SlideDescriptor] = ()):
        """
        Initialize slide manifest.

        Args:
            slides: Slide descriptors in any order

        Raises:
            ValueError: If two descriptors share a slide number
        """
        ordered = sorted(slides, key=lambda s: s.slide_number)
        by_number: Dict[int, SlideDescriptor] = {}
        for slide in ordered:
            if slide.slide_number in by_number:
                raise ValueError(f"Duplicate slide number {slide.slide_number}")
            by_number[slide.slide_number] = slide

        self._slides: Tuple[SlideDescriptor, ...] = tuple(ordered)
        self._by_number = by_number

    @classmethod
    def from_rows(cls, rows: Iterable[Dict[str, Any]]) -> 'SlideManifest':
        """Build a manifest from slides table rows."""
        return cls(SlideDescriptor.from_dict(row) for row in rows)

    def __len__(self) -> int:
        return len(self._slides)

    def __iter__(self) -> Iterator[SlideDescriptor]:
        return iter(self._slides)

    def __bool__(self) -> bool:
        return bool(self._slides)

    def __contains__(self, slide_number: int) -> bool:
        return slide_number in self._by_number

    def get(self, slide_number: int) -> Optional[SlideDescriptor]:
        """
        Get descriptor by slide number.

        Args:
            slide_number: 1-based slide number

        Returns:
            SlideDescriptor or None if the deck has no such slide
        """
        return self._by_number.get(slide_number)

    @property
    def first(self) -> Optional[int]:
        """Lowest slide number, or None for an empty manifest."""
        return self._slides[0].slide_number if self._slides else None

    @property
    def last(self) -> Optional[int]:
        """Highest slide number, or None for an empty manifest."""
        return self._slides[-1].slide_number if self._slides else None

    @property
    def slide_numbers(self) -> List[int]:
        """All slide numbers in ascending order."""
        return [slide.slide_number for slide in self._slides]

    def nearest(self, slide_number: int) -> Optional[int]:
        """
        Resolve a requested slide number to one the deck has.

        Returns the first slide at or after the request, the last slide when
        the request is past the end, or None for an empty manifest.
        """
        if slide_number in self._by_number:
            return slide_number
        for number in self.slide_numbers:
            if number >= slide_number:
                return number
        return self.last

    def next_after(self, slide_number: int) -> Optional[int]:
        """Following slide number, or None at the end of the deck."""
        return next((n for n in self.slide_numbers if n > slide_number), None)

    def previous_before(self, slide_number: int) -> Optional[int]:
        """Preceding slide number, or None at the start of the deck."""
        return next((n for n in reversed(self.slide_numbers) if n < slide_number), None)
