"""
Custom exceptions for data access layer.
"""


class DataAccessError(Exception):
    """Base exception for storage, row store and artifact fetch operations."""
    pass


class StoreError(DataAccessError):
    """Exception raised when the local artifact store fails."""
    pass


class DynamoDBError(StoreError):
    """Exception raised for DynamoDB operation failures."""
    pass


class ConditionalCheckFailedError(DynamoDBError):
    """Exception raised when a conditional check fails."""
    pass


class RowStoreError(DataAccessError):
    """Exception raised when the remote row store rejects a query."""

    def __init__(self, message: str, status_code: int = None):
        """
        Initialize row store error.

        Args:
            message: Error message
            status_code: HTTP status code if the failure came from a response
        """
        super().__init__(message)
        self.status_code = status_code


class RetryableError(RowStoreError):
    """Exception raised for transient errors that can be retried."""
    pass


class ArtifactFetchError(DataAccessError):
    """Exception raised when an artifact download fails."""

    def __init__(self, url: str, message: str):
        super().__init__(f"Failed to fetch {url}: {message}")
        self.url = url
