"""
Data access layer: artifact stores, row store and artifact fetcher.
"""

from .exceptions import (
    DataAccessError,
    StoreError,
    DynamoDBError,
    ConditionalCheckFailedError,
    RowStoreError,
    RetryableError,
    ArtifactFetchError,
)
from .dynamodb_client import DynamoDBClient
from .sqlite_artifact_store import SqliteArtifactStore
from .dynamodb_artifact_store import DynamoDBArtifactStore
from .row_store import PostgrestRowStore
from .artifact_fetcher import HttpArtifactFetcher

__all__ = [
    'DataAccessError',
    'StoreError',
    'DynamoDBError',
    'ConditionalCheckFailedError',
    'RowStoreError',
    'RetryableError',
    'ArtifactFetchError',
    'DynamoDBClient',
    'SqliteArtifactStore',
    'DynamoDBArtifactStore',
    'PostgrestRowStore',
    'HttpArtifactFetcher',
]
