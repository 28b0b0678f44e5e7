"""
DynamoDB client with conditional writes, paginated reads and error handling.
"""
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import (
    DynamoDBError,
    ConditionalCheckFailedError,
)

logger = logging.getLogger(__name__)


def _present(**kwargs) -> Dict[str, Any]:
    """Drop request parameters that were not supplied."""
    return {name: value for name, value in kwargs.items() if value}


class DynamoDBClient:
    """
    Thin wrapper over the boto3 resource API for the artifact table.

    All botocore failures surface as DynamoDBError; a failed condition on
    put surfaces as ConditionalCheckFailedError so callers can treat a
    lost write race as a non-event. Query and scan follow
    LastEvaluatedKey until the result set is exhausted.
    """

    def __init__(
        self,
        region: str = 'us-east-1',
        endpoint_url: Optional[str] = None
    ):
        self.dynamodb = boto3.resource('dynamodb', region_name=region, endpoint_url=endpoint_url)
        self.client = self.dynamodb.meta.client

    def get_table(self, table_name: str):
        return self.dynamodb.Table(table_name)

    @contextmanager
    def _translate_errors(self, action: str, table_name: str) -> Iterator[None]:
        try:
            yield
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                raise ConditionalCheckFailedError("Conditional check failed")
            logger.error(f"DynamoDB {action} on {table_name} failed: {e}")
            raise DynamoDBError(f"Failed to {action}: {e}")
        except BotoCoreError as e:
            logger.error(f"DynamoDB {action} on {table_name} failed: {e}")
            raise DynamoDBError(f"Failed to {action}: {e}")

    def ensure_table(
        self,
        table_name: str,
        hash_key: str,
        hash_key_type: str,
        range_key: Optional[str] = None,
        range_key_type: Optional[str] = None
    ) -> None:
        """
        Create an on-demand table unless it already exists.

        Key types are DynamoDB scalar codes ('S', 'N' or 'B'). Without a
        range key the table has a simple primary key.
        """
        key_schema = [{'AttributeName': hash_key, 'KeyType': 'HASH'}]
        attributes = [{'AttributeName': hash_key, 'AttributeType': hash_key_type}]
        if range_key:
            key_schema.append({'AttributeName': range_key, 'KeyType': 'RANGE'})
            attributes.append({'AttributeName': range_key, 'AttributeType': range_key_type})

        with self._translate_errors('create table', table_name):
            if table_name in self.client.list_tables().get('TableNames', []):
                return

            self.client.create_table(
                TableName=table_name,
                KeySchema=key_schema,
                AttributeDefinitions=attributes,
                BillingMode='PAY_PER_REQUEST'
            )
            self.client.get_waiter('table_exists').wait(TableName=table_name)
            logger.info(f"Created DynamoDB table {table_name}")

    def get_item(
        self,
        table_name: str,
        key: Dict[str, Any],
        consistent_read: bool = False,
        projection_expression: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Return the item under `key`, or None when it does not exist."""
        request = {'Key': key, 'ConsistentRead': consistent_read}
        request.update(_present(ProjectionExpression=projection_expression))

        with self._translate_errors('get item', table_name):
            return self.get_table(table_name).get_item(**request).get('Item')

    def put_item(
        self,
        table_name: str,
        item: Dict[str, Any],
        condition_expression: Optional[str] = None,
        expression_attribute_values: Optional[Dict[str, Any]] = None,
        expression_attribute_names: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Write an item, optionally guarded by a condition expression.

        Raises:
            ConditionalCheckFailedError: If the condition rejected the write
            DynamoDBError: On any other failure, including oversized items
        """
        request = {'Item': item}
        request.update(_present(
            ConditionExpression=condition_expression,
            ExpressionAttributeValues=expression_attribute_values,
            ExpressionAttributeNames=expression_attribute_names
        ))

        with self._translate_errors('put item', table_name):
            self.get_table(table_name).put_item(**request)

    def query(
        self,
        table_name: str,
        key_condition_expression: str,
        expression_attribute_values: Dict[str, Any],
        expression_attribute_names: Optional[Dict[str, str]] = None,
        projection_expression: Optional[str] = None,
        consistent_read: bool = False
    ) -> List[Dict[str, Any]]:
        request = {
            'KeyConditionExpression': key_condition_expression,
            'ExpressionAttributeValues': expression_attribute_values,
            'ConsistentRead': consistent_read,
        }
        request.update(_present(
            ExpressionAttributeNames=expression_attribute_names,
            ProjectionExpression=projection_expression
        ))

        with self._translate_errors('query table', table_name):
            return self._paginate(self.get_table(table_name).query, request)

    def scan(
        self,
        table_name: str,
        filter_expression: Optional[str] = None,
        expression_attribute_values: Optional[Dict[str, Any]] = None,
        expression_attribute_names: Optional[Dict[str, str]] = None,
        projection_expression: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        request = _present(
            FilterExpression=filter_expression,
            ExpressionAttributeValues=expression_attribute_values,
            ExpressionAttributeNames=expression_attribute_names,
            ProjectionExpression=projection_expression
        )

        with self._translate_errors('scan table', table_name):
            return self._paginate(self.get_table(table_name).scan, request)

    @staticmethod
    def _paginate(operation: Callable[..., Dict[str, Any]], request: Dict[str, Any]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        while True:
            response = operation(**request)
            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return items
            request['ExclusiveStartKey'] = last_key

    def batch_delete(self, table_name: str, keys: List[Dict[str, Any]]) -> None:
        """Delete every key through a batch writer; an empty list is a no-op."""
        if not keys:
            return

        with self._translate_errors('batch delete', table_name):
            with self.get_table(table_name).batch_writer() as batch:
                for key in keys:
                    batch.delete_item(Key=key)
