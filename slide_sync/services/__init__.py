"""
Synchronization and caching services.
"""

from .artifact_cache import ArtifactCache
from .blob_registry import BlobRegistry, is_blob_url
from .preload_scheduler import PreloadScheduler, priority_window, window_size
from .connection_manager import ConnectionManager
from .presence_tracker import PresenceTracker, count_viewers, generate_member_key
from .session_controller import SessionController, SessionStatus

__all__ = [
    'ArtifactCache',
    'BlobRegistry',
    'is_blob_url',
    'PreloadScheduler',
    'priority_window',
    'window_size',
    'ConnectionManager',
    'PresenceTracker',
    'count_viewers',
    'generate_member_key',
    'SessionController',
    'SessionStatus',
]
