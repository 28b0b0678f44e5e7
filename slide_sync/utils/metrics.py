"""
CloudWatch metrics utility for viewing session metrics.

Provides methods for emitting:
- Cache metrics (hit rate, size, write failures)
- Connection metrics (state transitions, polling fallbacks)
- Count metrics (sessions ended, presentations not found)

Publishing is optional and always fail-soft: a metrics outage never
affects slide display.
"""
import os
import logging
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class MetricsPublisher:
    """
    CloudWatch metrics publisher for viewing sessions.

    Metrics are buffered and flushed in batches of up to 20 data points,
    the CloudWatch PutMetricData limit.
    """

    MAX_BATCH_SIZE = 20

    def __init__(
        self,
        namespace: str = 'SlideSync',
        cloudwatch_client=None,
        region: Optional[str] = None
    ):
        """
        Initialize metrics publisher.

        Args:
            namespace: CloudWatch metrics namespace
            cloudwatch_client: Optional CloudWatch client for testing
            region: AWS region (defaults to AWS_REGION or us-east-1)
        """
        self.namespace = namespace
        self.cloudwatch = cloudwatch_client or boto3.client(
            'cloudwatch',
            region_name=region or os.environ.get('AWS_REGION', 'us-east-1')
        )
        self._buffer: List[Dict[str, Any]] = []

    def put_count_metric(
        self,
        metric_name: str,
        value: int = 1,
        dimensions: Optional[List[Dict[str, str]]] = None
    ) -> None:
        """
        Buffer count metric.

        Args:
            metric_name: Metric name (e.g., 'PollingFallbacks')
            value: Count value (default: 1)
            dimensions: Metric dimensions
        """
        self._add_metric(metric_name, value, 'Count', dimensions)

    def put_gauge_metric(
        self,
        metric_name: str,
        value: float,
        unit: str = 'None',
        dimensions: Optional[List[Dict[str, str]]] = None
    ) -> None:
        """
        Buffer gauge metric.

        Args:
            metric_name: Metric name (e.g., 'ArtifactCacheSize')
            value: Gauge value
            unit: CloudWatch unit (e.g., 'Bytes', 'Percent')
            dimensions: Metric dimensions
        """
        self._add_metric(metric_name, value, unit, dimensions)

    def emit_cache_stats(self, stats: Dict[str, Any], size_bytes: int) -> None:
        """
        Buffer artifact cache metrics.

        Args:
            stats: Output of ArtifactCache.get_cache_stats()
            size_bytes: Output of ArtifactCache.size_estimate()
        """
        self.put_gauge_metric('ArtifactCacheHitRate', stats.get('hit_rate', 0) * 100, 'Percent')
        self.put_gauge_metric('ArtifactCacheSize', size_bytes, 'Bytes')
        self.put_count_metric('ArtifactCacheWriteFailures', stats.get('write_failures', 0))

    def emit_connection_stats(self, state_transitions: int, polling_fallback: bool) -> None:
        """
        Buffer connection manager metrics.

        Args:
            state_transitions: Number of connection state transitions in the session
            polling_fallback: Whether the session fell back to polling
        """
        self.put_count_metric('ConnectionStateTransitions', state_transitions)
        if polling_fallback:
            self.put_count_metric('PollingFallbacks')

    def _add_metric(
        self,
        metric_name: str,
        value: float,
        unit: str,
        dimensions: Optional[List[Dict[str, str]]]
    ) -> None:
        metric_data = {
            'MetricName': metric_name,
            'Value': value,
            'Unit': unit,
            'Timestamp': datetime.now(timezone.utc)
        }
        if dimensions:
            metric_data['Dimensions'] = dimensions

        self._buffer.append(metric_data)
        if len(self._buffer) >= self.MAX_BATCH_SIZE:
            self.flush()

    def flush(self) -> int:
        """
        Send buffered metrics to CloudWatch.

        Returns:
            Number of data points sent (0 on failure)
        """
        if not self._buffer:
            return 0

        batch, self._buffer = self._buffer, []
        try:
            for start in range(0, len(batch), self.MAX_BATCH_SIZE):
                self.cloudwatch.put_metric_data(
                    Namespace=self.namespace,
                    MetricData=batch[start:start + self.MAX_BATCH_SIZE]
                )
            return len(batch)
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Failed to emit {len(batch)} metrics: {e}")
            return 0
