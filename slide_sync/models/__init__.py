"""
Data models for slide synchronization and artifact caching.
"""

from .snapshot import (
    PresentationSnapshot,
    ReceivedSnapshot,
    SOURCE_INITIAL,
    SOURCE_PUSH,
    SOURCE_POLL,
    SOURCE_REFETCH,
    SOURCE_LOCAL,
)
from .connection_state import ConnectionState, ChannelStatus
from .manifest import SlideDescriptor, SlideManifest
from .cache_entry import CacheEntry, LastViewedSlide, now_ms
from .quality import ConnectionQuality, estimate_connection_quality
from .configuration import ConnectionConfig, PreloadConfig, CacheConfig
from .results import PreloadReport

__all__ = [
    'PresentationSnapshot',
    'ReceivedSnapshot',
    'SOURCE_INITIAL',
    'SOURCE_PUSH',
    'SOURCE_POLL',
    'SOURCE_REFETCH',
    'SOURCE_LOCAL',
    'ConnectionState',
    'ChannelStatus',
    'SlideDescriptor',
    'SlideManifest',
    'CacheEntry',
    'LastViewedSlide',
    'now_ms',
    'ConnectionQuality',
    'estimate_connection_quality',
    'ConnectionConfig',
    'PreloadConfig',
    'CacheConfig',
    'PreloadReport',
]
