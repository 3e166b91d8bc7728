"""DynamoDB-backed cache and metadata stores."""
import hashlib
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.dates import from_millis, to_millis
from processor.models import CalendarEvent, FeedItem

logger = logging.getLogger(__name__)


class DynamoDBTable:
    """Shared scan and batch helpers for a single-key DynamoDB table."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    KEY = 'id'

    # batch_writer is not transactional
    supports_transactions = False

    def __init__(self, table_name: str, dynamodb=None):
        """
        Initialize DynamoDB table reference.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb: Optional boto3 DynamoDB resource
        """
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized {type(self).__name__} for table: {table_name}")

    def scan_all(self, **kwargs) -> List[dict]:
        """
        Scan the whole table, following pagination.

        Args:
            **kwargs: Extra Scan parameters (filters, projections)

        Returns:
            List of raw DynamoDB items
        """
        try:
            response = self.table.scan(**kwargs)
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **kwargs
                )
                items.extend(response.get('Items', []))

            return items

        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table {self.table_name}: {e}")
            raise

    def count(self) -> int:
        """Count items in the table."""
        try:
            response = self.table.scan(Select='COUNT')
            total = response.get('Count', 0)
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    Select='COUNT',
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                total += response.get('Count', 0)
            return total

        except ClientError as e:
            logger.error(f"Error counting DynamoDB table {self.table_name}: {e}")
            raise

    def delete_all(self) -> int:
        """
        Delete every item in the table.

        Returns:
            Count of deleted items
        """
        return self.batch_delete(self.scan_keys())

    def scan_keys(self) -> List[str]:
        """Key values of every item in the table."""
        return [item[self.KEY] for item in self.scan_all(ProjectionExpression=self.KEY)]

    def insert_many(self, records: Iterable) -> int:
        return self.batch_write(self._to_rows(records))

    def replace_all(self, records: Iterable) -> Tuple[int, int]:
        """
        Replace the table contents with records without ever emptying it.

        New rows are written first under their deterministic keys, then
        rows whose keys are not among them are deleted. A failed write
        leaves every previous row in place.

        Returns:
            Tuple of (deleted count, written count)
        """
        rows = self._to_rows(records)
        existing = self.scan_keys()
        written = self.batch_write(rows)

        fresh = {row[self.KEY] for row in rows}
        deleted = self.batch_delete([key for key in existing if key not in fresh])
        return deleted, written

    def _to_rows(self, records: Iterable) -> List[dict]:
        raise NotImplementedError

    def batch_write(self, items: List[dict]) -> int:
        """
        Write items in batches of 25.

        Args:
            items: DynamoDB items to write

        Returns:
            Count of written items

        Raises:
            ClientError: If a batch fails; earlier batches stay written
        """
        if not items:
            return 0

        logger.info(f"Writing {len(items)} items to {self.table_name}")
        success_count = 0

        # Process in batches of 25 (DynamoDB limit)
        for i in range(0, len(items), self.BATCH_SIZE):
            batch = items[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer(overwrite_by_pkeys=[self.KEY]) as writer:
                    for item in batch:
                        writer.put_item(Item=item)
                success_count += len(batch)

            except ClientError as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1} "
                    f"to {self.table_name}: {e}"
                )
                raise

        logger.info(f"Successfully wrote {success_count} items")
        return success_count

    def batch_delete(self, keys: List[str]) -> int:
        """
        Delete items by key in batches of 25.

        Args:
            keys: Key values of the items to delete

        Returns:
            Count of deleted items
        """
        if not keys:
            return 0

        logger.info(f"Deleting {len(keys)} items from {self.table_name}")
        success_count = 0

        # Process in batches of 25 (DynamoDB limit)
        for i in range(0, len(keys), self.BATCH_SIZE):
            batch = keys[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for key in batch:
                        writer.delete_item(Key={self.KEY: key})
                success_count += len(batch)

            except ClientError as e:
                logger.error(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1} "
                    f"from {self.table_name}: {e}"
                )
                raise

        logger.info(f"Successfully deleted {success_count} items")
        return success_count


class DynamoDBPostStore(DynamoDBTable):
    """Post cache stored in DynamoDB."""

    KEY = 'item_id'

    def _to_rows(self, items: Iterable[FeedItem]) -> List[dict]:
        return [self._post_to_item(item) for item in items]

    def oldest_timestamp(self) -> Optional[datetime]:
        """Publish time of the oldest cached post, or None for an empty cache."""
        rows = self.scan_all(ProjectionExpression='published_at')
        if not rows:
            return None
        return from_millis(min(int(row['published_at']) for row in rows))

    def all(self) -> List[FeedItem]:
        """Cached posts, newest first."""
        posts = [self._item_to_post(row) for row in self.scan_all()]
        posts = [post for post in posts if post is not None]
        return sorted(posts, key=lambda post: post.published_at, reverse=True)

    @staticmethod
    def item_key(item: FeedItem) -> str:
        """
        Generate the key of a post from its publish time and URL.

        Returns:
            SHA256 hex digest
        """
        composite = f"{to_millis(item.published_at)}|{item.canonical_url}"
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()

    def _post_to_item(self, item: FeedItem) -> dict:
        return {
            'item_id': self.item_key(item),
            'published_at': to_millis(item.published_at),
            'title': item.title,
            'body_html': item.body_html,
            'tags': list(item.tags),
            'lead_icon': item.lead_icon,
            'canonical_url': item.canonical_url,
            'preview': item.preview
        }

    def _item_to_post(self, row: dict) -> Optional[FeedItem]:
        try:
            return FeedItem(
                published_at=from_millis(int(row['published_at'])),
                title=row['title'],
                body_html=row.get('body_html', ''),
                tags=tuple(row.get('tags', [])),
                lead_icon=row['lead_icon'],
                canonical_url=row['canonical_url'],
                preview=row.get('preview', '')
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to FeedItem: {e}")
            return None


class DynamoDBEventStore(DynamoDBTable):
    """Event cache stored in DynamoDB."""

    KEY = 'event_id'

    def _to_rows(self, events: Iterable[CalendarEvent]) -> List[dict]:
        seen: Dict[str, int] = {}
        items = []
        for event in events:
            key = self.event_key(event)
            # Identical events without an id get distinct keys
            occurrence = seen.get(key, 0)
            seen[key] = occurrence + 1
            if occurrence:
                key = f"{key}#{occurrence}"
            items.append(self._event_to_item(event, key))
        return items

    def delete_where(self, start_at_or_after: datetime) -> int:
        """
        Delete events starting at or after the cursor.

        Returns:
            Count of deleted events
        """
        rows = self.scan_all(
            FilterExpression=Attr('start_at').gte(to_millis(start_at_or_after)),
            ProjectionExpression=self.KEY
        )
        return self.batch_delete([row[self.KEY] for row in rows])

    def all(self) -> List[CalendarEvent]:
        """Cached events ordered by start time, undated events last."""
        events = [self._item_to_event(row) for row in self.scan_all()]
        dated = sorted(
            (event for event in events if event.start_at is not None),
            key=lambda event: event.start_at
        )
        return dated + [event for event in events if event.start_at is None]

    @staticmethod
    def event_key(event: CalendarEvent) -> str:
        """
        Use the calendar's own id, else a SHA256 of the event's fields.
        """
        if event.uid:
            return event.uid
        composite = "|".join([
            event.title or '',
            event.description or '',
            event.location or '',
            str(to_millis(event.start_at)) if event.start_at else '',
            str(to_millis(event.end_at)) if event.end_at else '',
        ])
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()

    def _event_to_item(self, event: CalendarEvent, key: str) -> dict:
        item = {'event_id': key}

        # Add optional fields if present
        if event.uid is not None:
            item['uid'] = event.uid
        if event.title is not None:
            item['title'] = event.title
        if event.description is not None:
            item['description'] = event.description
        if event.location is not None:
            item['location'] = event.location
        if event.start_at is not None:
            item['start_at'] = to_millis(event.start_at)
        if event.end_at is not None:
            item['end_at'] = to_millis(event.end_at)

        return item

    def _item_to_event(self, row: dict) -> CalendarEvent:
        def moment(value: Optional[Decimal]) -> Optional[datetime]:
            return from_millis(int(value)) if value is not None else None

        return CalendarEvent(
            title=row.get('title'),
            description=row.get('description'),
            location=row.get('location'),
            start_at=moment(row.get('start_at')),
            end_at=moment(row.get('end_at')),
            uid=row.get('uid')
        )


class DynamoDBMetadataStore(DynamoDBTable):
    """Version metadata stored as key/value items."""

    KEY = 'meta_key'

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        try:
            response = self.table.get_item(Key={self.KEY: key})
        except ClientError as e:
            logger.error(f"Error reading metadata key {key}: {e}")
            raise
        item = response.get('Item')
        if item is None or 'value' not in item:
            return default
        return str(item['value'])

    def put(self, key: str, value: str) -> None:
        try:
            self.table.put_item(Item={self.KEY: key, 'value': value})
        except ClientError as e:
            logger.error(f"Error writing metadata key {key}: {e}")
            raise
