"""
Network connection quality model.
"""
from enum import Enum
from typing import Optional


class ConnectionQuality(Enum):
    """Coarse network quality estimate driving the preload window size."""
    FAST = "fast"
    SLOW = "slow"
    UNKNOWN = "unknown"


def estimate_connection_quality(
    effective_type: Optional[str] = None,
    downlink_mbps: Optional[float] = None,
    rtt_ms: Optional[float] = None
) -> ConnectionQuality:
    """
    Estimate connection quality from network information signals.

    Any 4G connection, a downlink above 1 Mbps, or a round trip under
    100 ms counts as fast. Any other reported signal counts as slow. With no
    signal at all the quality is unknown.

    Args:
        effective_type: Effective connection type ('slow-2g', '2g', '3g', '4g')
        downlink_mbps: Estimated downlink bandwidth in Mbps
        rtt_ms: Estimated round-trip time in milliseconds

    Returns:
        ConnectionQuality estimate

    Example:
        >>> estimate_connection_quality('4g', 10.0, 50)
        <ConnectionQuality.FAST: 'fast'>
        >>> estimate_connection_quality('3g', 0.7, 300)
        <ConnectionQuality.SLOW: 'slow'>
    """
    if effective_type is None and downlink_mbps is None and rtt_ms is None:
        return ConnectionQuality.UNKNOWN

    if effective_type == '4g':
        return ConnectionQuality.FAST
    if downlink_mbps is not None and downlink_mbps > 1:
        return ConnectionQuality.FAST
    if rtt_ms is not None and rtt_ms < 100:
        return ConnectionQuality.FAST

    return ConnectionQuality.SLOW
