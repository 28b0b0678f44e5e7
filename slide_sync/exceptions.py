"""
Custom exceptions for slide synchronization sessions.

Only terminal session faults are raised to callers. Transport and cache
faults are recovered or swallowed inside the services that own them.
"""


class SlideSyncError(Exception):
    """Base exception for the slide_sync package."""
    pass


class SessionError(SlideSyncError):
    """Base exception for faults that terminate a viewing session."""
    pass


class PresentationNotFoundError(SessionError):
    """Raised when the initial fetch finds no such presentation."""

    def __init__(self, presentation_id: str):
        """
        Initialize presentation not found error.

        Args:
            presentation_id: Presentation identifier that was looked up
        """
        super().__init__(f"Presentation not found: {presentation_id}")
        self.presentation_id = presentation_id


class PresentationEndedError(SessionError):
    """Raised when an operation needs a live presentation that has ended."""

    def __init__(self, presentation_id: str):
        super().__init__(f"Presentation has ended: {presentation_id}")
        self.presentation_id = presentation_id


class ArtifactLoadError(SlideSyncError):
    """
    Raised when a cached artifact reference can no longer be resolved.

    This happens when a blob reference was revoked (session teardown,
    presentation change) or dropped after a previous load failure. Callers
    retry with the remote URL.
    """

    def __init__(self, url: str, reason: str = 'revoked'):
        super().__init__(f"Cannot load artifact {url}: {reason}")
        self.url = url
        self.reason = reason
