"""
Configuration for slide synchronization.
"""

from .settings import Settings, get_settings, reset_settings
from .table_names import (
    PRESENTATIONS_TABLE_NAME,
    SLIDES_TABLE_NAME,
    ARTIFACT_CACHE_TABLE_NAME,
    LAST_VIEWED_TABLE_NAME,
    get_table_name,
    viewer_topic,
    presence_topic,
)

__all__ = [
    'Settings',
    'get_settings',
    'reset_settings',
    'PRESENTATIONS_TABLE_NAME',
    'SLIDES_TABLE_NAME',
    'ARTIFACT_CACHE_TABLE_NAME',
    'LAST_VIEWED_TABLE_NAME',
    'get_table_name',
    'viewer_topic',
    'presence_topic',
]
