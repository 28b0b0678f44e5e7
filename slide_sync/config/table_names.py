"""
Table name and channel topic constants.

This module provides centralized names for the remote tables, realtime
topics and the local cache table so every component agrees on them.
"""

import os

# Remote row store tables
PRESENTATIONS_TABLE_NAME = 'presentations'
SLIDES_TABLE_NAME = 'slides'

# Local cache tables (SQLite tables or DynamoDB tables)
ARTIFACT_CACHE_TABLE_NAME = 'slide_artifacts'
LAST_VIEWED_TABLE_NAME = 'slide_last_viewed'

# Table name mapping for environment variable overrides
TABLE_NAME_ENV_VARS = {
    'PRESENTATIONS_TABLE_NAME': PRESENTATIONS_TABLE_NAME,
    'SLIDES_TABLE_NAME': SLIDES_TABLE_NAME,
    'ARTIFACT_CACHE_TABLE_NAME': ARTIFACT_CACHE_TABLE_NAME,
    'LAST_VIEWED_TABLE_NAME': LAST_VIEWED_TABLE_NAME,
}

# Realtime channel topic prefixes
VIEWER_TOPIC_PREFIX = 'viewer'
PRESENCE_TOPIC_PREFIX = 'presence'


def get_table_name(table_key: str, default: str = None) -> str:
    """
    Get table name from environment variable or use default constant.

    Args:
        table_key: Environment variable key (e.g., 'SLIDES_TABLE_NAME')
        default: Default table name if environment variable not set

    Returns:
        Table name from environment or default

    Example:
        >>> os.environ['ARTIFACT_CACHE_TABLE_NAME'] = 'slide_artifacts_dev'
        >>> get_table_name('ARTIFACT_CACHE_TABLE_NAME')
        'slide_artifacts_dev'
    """
    if default is None:
        default = TABLE_NAME_ENV_VARS.get(table_key, '')

    return os.getenv(table_key) or default


def viewer_topic(presentation_id: str) -> str:
    """Topic of the live-position channel of a presentation."""
    return f'{VIEWER_TOPIC_PREFIX}:{presentation_id}'


def presence_topic(presentation_id: str) -> str:
    """Topic of the presence channel of a presentation."""
    return f'{PRESENCE_TOPIC_PREFIX}:{presentation_id}'
