"""
Configuration settings for slide synchronization.

Loads configuration from environment variables with sensible defaults.
"""

import os
from typing import Optional

from slide_sync.models.configuration import (
    CacheConfig,
    ConnectionConfig,
    PreloadConfig,
    SECONDS_PER_DAY,
)


class Settings:
    """
    Configuration settings for the realtime backend, the artifact cache and
    observability.

    All settings are loaded from environment variables with defaults.
    Component timings are not environment-tunable; they come from the
    config dataclasses.
    """

    def __init__(self):
        """Initialize settings from environment variables."""
        # Realtime backend
        self.supabase_url: str = os.getenv('SUPABASE_URL', '').rstrip('/')
        self.supabase_anon_key: str = os.getenv('SUPABASE_ANON_KEY', '')
        self.http_timeout_seconds: float = float(os.getenv('HTTP_TIMEOUT_SECONDS', '10'))

        # Artifact cache
        self.cache_backend: str = os.getenv('CACHE_BACKEND', 'sqlite').lower()
        self.cache_db_path: str = os.getenv(
            'CACHE_DB_PATH',
            os.path.join(os.path.expanduser('~'), '.slide_sync', 'cache.db')
        )
        self.cache_retention_days: float = float(os.getenv('CACHE_RETENTION_DAYS', '7'))
        self.preload_whole_deck: bool = self._parse_bool(os.getenv('PRELOAD_WHOLE_DECK', 'false'))

        # AWS Configuration (DynamoDB cache backend, CloudWatch metrics)
        self.aws_region: str = os.getenv('AWS_REGION', 'us-east-1')
        self.dynamodb_endpoint_url: Optional[str] = os.getenv('DYNAMODB_ENDPOINT_URL') or None

        # Metrics
        self.metrics_enabled: bool = self._parse_bool(os.getenv('METRICS_ENABLED', 'false'))
        self.metrics_namespace: str = os.getenv('METRICS_NAMESPACE', 'SlideSync')

        # Logging Configuration
        self.log_level: str = os.getenv('LOG_LEVEL', 'INFO')

        self._validate()

    def _parse_bool(self, value: str) -> bool:
        """
        Parse boolean value from string.

        Args:
            value: String value to parse

        Returns:
            Boolean value
        """
        return value.lower() in ('true', '1', 'yes', 'on')

    def _validate(self):
        """Validate configuration values."""
        valid_backends = {'sqlite', 'dynamodb'}
        if self.cache_backend not in valid_backends:
            raise ValueError(
                f"Invalid CACHE_BACKEND: {self.cache_backend}. "
                f"Must be one of {valid_backends}"
            )

        if self.cache_retention_days <= 0:
            raise ValueError(
                f"CACHE_RETENTION_DAYS must be positive, got {self.cache_retention_days}"
            )

        if self.http_timeout_seconds <= 0:
            raise ValueError(
                f"HTTP_TIMEOUT_SECONDS must be positive, got {self.http_timeout_seconds}"
            )

        valid_log_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(
                f"Invalid LOG_LEVEL: {self.log_level}. "
                f"Must be one of {valid_log_levels}"
            )

    @property
    def rest_url(self) -> str:
        """PostgREST endpoint of the row store."""
        return f'{self.supabase_url}/rest/v1'

    @property
    def realtime_url(self) -> str:
        """Websocket endpoint of the realtime service."""
        base = self.supabase_url.replace('https://', 'wss://').replace('http://', 'ws://')
        return f'{base}/realtime/v1/websocket'

    @property
    def cache_db_url(self) -> str:
        """SQLAlchemy URL of the SQLite cache database."""
        return f'sqlite:///{self.cache_db_path}'

    def cache_config(self) -> CacheConfig:
        """Build the artifact cache configuration."""
        return CacheConfig(retention_seconds=self.cache_retention_days * SECONDS_PER_DAY)

    def connection_config(self) -> ConnectionConfig:
        """Build the connection manager configuration (production timings)."""
        return ConnectionConfig()

    def preload_config(self) -> PreloadConfig:
        """Build the preload scheduler configuration."""
        return PreloadConfig(preload_whole_deck=self.preload_whole_deck)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get global settings instance (singleton pattern).

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
