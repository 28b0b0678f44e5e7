"""
PresentationSnapshot model for the live slide position.
"""
import time
from dataclasses import dataclass, field
from typing import Dict, Any


@dataclass(frozen=True)
class PresentationSnapshot:
    """
    Authoritative slide position of a presentation at a point in time.

    Attributes:
        current_slide_index: 1-based slide number the presenter is showing
        is_live: Whether the presentation is still being presented
    """
    current_slide_index: int = 1
    is_live: bool = True

    def __post_init__(self):
        """Validate snapshot values."""
        if self.current_slide_index < 1:
            raise ValueError(
                f"current_slide_index must be >= 1, got {self.current_slide_index}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the row store's column naming.

        Returns:
            Dictionary with current_slide_index and is_live
        """
        return {
            'current_slide_index': self.current_slide_index,
            'is_live': self.is_live
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PresentationSnapshot':
        """
        Create PresentationSnapshot from a presentation row.

        Extra columns of a full row are ignored.

        Args:
            data: Row dictionary with current_slide_index and is_live

        Returns:
            PresentationSnapshot instance
        """
        return cls(
            current_slide_index=int(data.get('current_slide_index', 1)),
            is_live=bool(data.get('is_live', False))
        )


SOURCE_INITIAL = 'initial'
SOURCE_PUSH = 'push'
SOURCE_POLL = 'poll'
SOURCE_REFETCH = 'refetch'
SOURCE_LOCAL = 'local'          # optimistic presenter move


@dataclass(frozen=True)
class ReceivedSnapshot:
    """
    A snapshot stamped at receipt with a local sequence number.

    The sequence number is assigned by the connection manager in the order
    snapshots arrive, whatever their source, so the latest arrival wins.

    Attributes:
        snapshot: The received PresentationSnapshot
        sequence: Strictly increasing local receipt number
        source: One of initial, push, poll, refetch, local
        received_at: Unix timestamp of receipt
    """
    snapshot: PresentationSnapshot
    sequence: int
    source: str
    received_at: float = field(default_factory=time.time)

    def supersedes(self, other: 'ReceivedSnapshot') -> bool:
        """
        Check whether this snapshot should replace another one.

        Args:
            other: Previously applied snapshot, or None

        Returns:
            True if this snapshot was received later
        """
        return other is None or self.sequence > other.sequence
