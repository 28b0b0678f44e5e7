"""
Result data models for batch operations.
"""

from dataclasses import dataclass, field
from typing import List


@dataclass
class PreloadReport:
    """
    Outcome of a batch cache pass.

    A batch never fails as a whole; the session proceeds with whatever
    succeeded.

    Attributes:
        succeeded: Number of slides cached (or already cached)
        failed: Number of slides that could not be cached
        slide_numbers: Slides covered by the batch, in ascending order
    """

    succeeded: int = 0
    failed: int = 0
    slide_numbers: List[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Number of slides attempted."""
        return self.succeeded + self.failed

    @property
    def is_complete(self) -> bool:
        """Check if every slide in the batch was cached."""
        return self.failed == 0
