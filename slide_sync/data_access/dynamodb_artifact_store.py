"""
DynamoDB-backed artifact store.

Alternative substrate of the artifact cache for hosts that keep state in
AWS. Items are keyed by presentationId (HASH) and slideNumber (RANGE) and
hold the artifacts as binary attributes. DynamoDB limits items to 400KB, so
oversized artifacts fail to write; the cache treats that like any other
write failure. The last displayed slide of each presentation lives in a
second table keyed by presentationId alone.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from slide_sync.config.table_names import get_table_name
from slide_sync.models import CacheEntry, LastViewedSlide

from .dynamodb_client import DynamoDBClient
from .exceptions import ConditionalCheckFailedError

logger = logging.getLogger(__name__)


def _as_bytes(value: Any) -> Optional[bytes]:
    if value is None:
        return None
    # boto3 wraps binary attributes in boto3.dynamodb.types.Binary
    return bytes(getattr(value, 'value', value))


class DynamoDBArtifactStore:
    """
    Store slide artifacts in a DynamoDB table.

    A write only replaces an existing item whose cachedAt is not newer, so
    the cache timestamp of a key never moves backwards.
    """

    def __init__(
        self,
        dynamodb_client: Optional[DynamoDBClient] = None,
        table_name: Optional[str] = None,
        last_viewed_table_name: Optional[str] = None,
        region: str = 'us-east-1',
        endpoint_url: Optional[str] = None,
        create_table: bool = False
    ):
        """
        Initialize DynamoDB artifact store.

        Args:
            dynamodb_client: Optional client (built from region/endpoint_url otherwise)
            table_name: Table name (defaults to ARTIFACT_CACHE_TABLE_NAME)
            last_viewed_table_name: Table of last displayed slides
                (defaults to LAST_VIEWED_TABLE_NAME)
            region: AWS region
            endpoint_url: Optional endpoint override
            create_table: Create the tables when they do not exist
        """
        self.client = dynamodb_client or DynamoDBClient(region=region, endpoint_url=endpoint_url)
        self.table_name = table_name or get_table_name('ARTIFACT_CACHE_TABLE_NAME')
        self.last_viewed_table_name = last_viewed_table_name or get_table_name('LAST_VIEWED_TABLE_NAME')

        if create_table:
            self.client.ensure_table(
                self.table_name,
                hash_key='presentationId',
                hash_key_type='S',
                range_key='slideNumber',
                range_key_type='N'
            )
            self.client.ensure_table(
                self.last_viewed_table_name,
                hash_key='presentationId',
                hash_key_type='S'
            )

    def put(self, entry: CacheEntry) -> None:
        item: Dict[str, Any] = {
            'presentationId': entry.presentation_id,
            'slideNumber': entry.slide_number,
            'image': entry.image,
            'imageSize': len(entry.image),
            'thumbnailSize': len(entry.thumbnail) if entry.thumbnail else 0,
            'cachedAt': entry.cached_at,
        }
        if entry.thumbnail:
            item['thumbnail'] = entry.thumbnail
        if entry.image_url:
            item['imageUrl'] = entry.image_url
        if entry.thumbnail_url:
            item['thumbnailUrl'] = entry.thumbnail_url

        try:
            self.client.put_item(
                table_name=self.table_name,
                item=item,
                condition_expression='attribute_not_exists(presentationId) OR cachedAt <= :cachedAt',
                expression_attribute_values={':cachedAt': entry.cached_at}
            )
        except ConditionalCheckFailedError:
            logger.debug(
                f"Skipped write of {entry.key}: a newer entry is already cached"
            )

    def get(self, presentation_id: str, slide_number: int) -> Optional[CacheEntry]:
        item = self.client.get_item(
            table_name=self.table_name,
            key={'presentationId': presentation_id, 'slideNumber': slide_number},
            consistent_read=True
        )
        if item is None:
            return None

        return CacheEntry(
            presentation_id=item['presentationId'],
            slide_number=int(item['slideNumber']),
            image=_as_bytes(item['image']),
            thumbnail=_as_bytes(item.get('thumbnail')),
            cached_at=int(item['cachedAt']),
            image_url=item.get('imageUrl'),
            thumbnail_url=item.get('thumbnailUrl')
        )

    def exists(self, presentation_id: str, slide_number: int) -> bool:
        item = self.client.get_item(
            table_name=self.table_name,
            key={'presentationId': presentation_id, 'slideNumber': slide_number},
            consistent_read=True,
            projection_expression='presentationId'
        )
        return item is not None

    def delete_presentation(self, presentation_id: str) -> int:
        keys = self.client.query(
            table_name=self.table_name,
            key_condition_expression='presentationId = :pid',
            expression_attribute_values={':pid': presentation_id},
            projection_expression='presentationId, slideNumber',
            consistent_read=True
        )
        self.client.batch_delete(self.table_name, keys)

        logger.info(f"Deleted {len(keys)} cached slides of presentation {presentation_id}")
        return len(keys)

    def delete_older_than(self, cutoff_ms: int) -> int:
        keys = self.client.scan(
            table_name=self.table_name,
            filter_expression='cachedAt < :cutoff',
            expression_attribute_values={':cutoff': cutoff_ms},
            projection_expression='presentationId, slideNumber'
        )
        self.client.batch_delete(self.table_name, keys)

        logger.info(f"Evicted {len(keys)} cached slides older than {cutoff_ms}")
        return len(keys)

    def size_bytes(self) -> int:
        items = self.client.scan(
            table_name=self.table_name,
            projection_expression='imageSize, thumbnailSize'
        )
        total = sum(
            Decimal(item.get('imageSize', 0)) + Decimal(item.get('thumbnailSize', 0))
            for item in items
        )
        return int(total)

    def put_last_viewed(self, slide: LastViewedSlide) -> None:
        self.client.put_item(
            table_name=self.last_viewed_table_name,
            item={
                'presentationId': slide.presentation_id,
                'slideNumber': slide.slide_number,
                'imageUrl': slide.image_url,
                'viewedAt': slide.viewed_at,
            }
        )

    def get_last_viewed(self, presentation_id: str) -> Optional[LastViewedSlide]:
        item = self.client.get_item(
            table_name=self.last_viewed_table_name,
            key={'presentationId': presentation_id},
            consistent_read=True
        )
        if item is None:
            return None

        return LastViewedSlide(
            presentation_id=item['presentationId'],
            slide_number=int(item['slideNumber']),
            image_url=item['imageUrl'],
            viewed_at=int(item['viewedAt'])
        )
