"""
Realtime transport: Phoenix channel client over websockets.
"""

from .client import RealtimeClient
from .channel import RealtimeChannel

__all__ = [
    'RealtimeClient',
    'RealtimeChannel',
]
