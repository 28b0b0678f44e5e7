"""
Utility functions and services.
"""

from .structured_logger import (
    StructuredLogger,
    LoggingContext,
    get_structured_logger,
    configure_logging,
)
from .event_source import EventSource
from .graceful_degradation import with_fallback, GracefulDegradationManager

__all__ = [
    'StructuredLogger',
    'LoggingContext',
    'get_structured_logger',
    'configure_logging',
    'EventSource',
    'with_fallback',
    'GracefulDegradationManager',
]
