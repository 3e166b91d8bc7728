"""Unit tests for the DynamoDB stores."""
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from processor.feed_parser import PostFeedParser
from processor.models import CalendarEvent
from scraper.feed_urls import BloggerFeedUrls
from storage.dynamodb_manager import (
    DynamoDBEventStore,
    DynamoDBMetadataStore,
    DynamoDBPostStore,
)
from storage.memory_store import MemoryMetadataStore
from sync.post_sync import FullSyncEngine

T0 = datetime(2014, 11, 1, tzinfo=timezone.utc)

THROTTLED = ClientError(
    {'Error': {'Code': 'ProvisionedThroughputExceededException', 'Message': 'Rate exceeded'}},
    'BatchWriteItem'
)


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches real AWS."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def dynamodb(aws_credentials):
    """Create mock DynamoDB tables for posts, events and metadata."""
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')
        for name, key in (
            ('test-posts', 'item_id'),
            ('test-events', 'event_id'),
            ('test-metadata', 'meta_key'),
        ):
            resource.create_table(
                TableName=name,
                KeySchema=[{'AttributeName': key, 'KeyType': 'HASH'}],
                AttributeDefinitions=[{'AttributeName': key, 'AttributeType': 'S'}],
                BillingMode='PAY_PER_REQUEST'
            )
        yield resource


@pytest.fixture
def post_store(dynamodb):
    return DynamoDBPostStore('test-posts', dynamodb=dynamodb)


@pytest.fixture
def event_store(dynamodb):
    return DynamoDBEventStore('test-events', dynamodb=dynamodb)


@pytest.fixture
def metadata_store(dynamodb):
    return DynamoDBMetadataStore('test-metadata', dynamodb=dynamodb)


class TestDynamoDBPostStore:
    """Test cases for DynamoDBPostStore class."""

    def test_empty_table(self, post_store):
        """An empty table has no posts and no oldest timestamp."""
        assert post_store.count() == 0
        assert post_store.oldest_timestamp() is None
        assert post_store.all() == []

    def test_insert_and_read_back(self, post_store, make_item):
        """Posts round-trip with tags and millisecond timestamps."""
        item = replace(
            make_item(T0 + timedelta(milliseconds=123)),
            tags=('Official', 'Clubs'),
            lead_icon='o.png'
        )

        assert post_store.insert_many([item]) == 1

        assert post_store.all() == [item]

    def test_large_batch_and_oldest(self, post_store, make_item):
        """More than 25 posts are written across batches."""
        items = [make_item(T0 + timedelta(hours=i)) for i in range(30)]

        post_store.insert_many(items)

        assert post_store.count() == 30
        assert post_store.oldest_timestamp() == T0
        assert post_store.all()[0].published_at == T0 + timedelta(hours=29)

    def test_same_post_is_not_duplicated(self, post_store, make_item):
        """Identical (published, url) pairs share one key."""
        item = make_item(T0, url='http://blog/a.html')

        post_store.insert_many([item])
        post_store.insert_many([item])

        assert post_store.count() == 1

    def test_delete_all(self, post_store, make_item):
        """delete_all empties the table and reports the count."""
        post_store.insert_many([make_item(T0 + timedelta(hours=i)) for i in range(3)])

        assert post_store.delete_all() == 3
        assert post_store.count() == 0

    def test_not_transactional(self, post_store):
        """Batch writes are not a transaction."""
        assert post_store.supports_transactions is False

    def test_replace_all_keeps_shared_and_drops_stale(self, post_store, make_item):
        """Posts present before and after are rewritten, the rest removed."""
        kept = make_item(T0, url='http://blog/kept.html')
        stale = make_item(T0 + timedelta(hours=1), url='http://blog/stale.html')
        fresh = make_item(T0 + timedelta(hours=2), url='http://blog/fresh.html')
        post_store.insert_many([kept, stale])

        deleted, written = post_store.replace_all([fresh, kept])

        assert (deleted, written) == (1, 2)
        assert post_store.all() == [fresh, kept]

    def test_failed_write_keeps_previous_posts(self, post_store, make_item):
        """A throttled write leaves the old posts in the table."""
        post_store.insert_many([make_item(T0), make_item(T0 + timedelta(hours=1))])
        post_store.batch_write = Mock(side_effect=THROTTLED)

        with pytest.raises(ClientError):
            post_store.replace_all([make_item(T0 + timedelta(days=1))])

        assert post_store.count() == 2

    def test_failed_full_sync_keeps_cache_and_version(
        self, post_store, make_item, clock, post_feed, post_entry
    ):
        """A full sync whose write fails leaves cache and version as they were."""
        post_store.insert_many([make_item(T0), make_item(T0 + timedelta(hours=1))])
        post_store.batch_write = Mock(side_effect=THROTTLED)
        metadata = MemoryMetadataStore({'posts-version': 'v1'})
        client = Mock()
        client.fetch_json.return_value = post_feed(version='v2', entries=[post_entry()])
        engine = FullSyncEngine(
            client, BloggerFeedUrls('moscropnews', page_size=2), PostFeedParser(),
            post_store, metadata, clock
        )

        with pytest.raises(ClientError):
            engine.run(last_known_version='v1')

        assert post_store.count() == 2
        assert metadata.get('posts-version') == 'v1'


class TestDynamoDBEventStore:
    """Test cases for DynamoDBEventStore class."""

    def test_delete_where(self, event_store, make_event):
        """Events at or after the cursor go, earlier and undated events stay."""
        event_store.insert_many([
            make_event(T0, 'before'),
            make_event(T0 + timedelta(days=1), 'at'),
            make_event(T0 + timedelta(days=2), 'after'),
            make_event(None, 'undated'),
        ])

        deleted = event_store.delete_where(T0 + timedelta(days=1))

        assert deleted == 2
        assert [event.title for event in event_store.all()] == ['before', 'undated']

    def test_optional_fields_round_trip(self, event_store):
        """Absent fields stay absent."""
        event = CalendarEvent(
            title=None, description=None, location='Gym',
            start_at=T0, end_at=None, uid='gcal-1'
        )

        event_store.insert_many([event])

        assert event_store.all() == [event]

    def test_identical_events_without_id_are_kept(self, event_store, make_event):
        """Two identical events without ids both get stored."""
        event_store.insert_many([make_event(T0), make_event(T0)])

        assert event_store.count() == 2

    def test_replace_all_with_duplicate_events(self, event_store, make_event):
        """Replacing with identical id-less events keeps each occurrence."""
        event_store.insert_many([make_event(T0, 'old')])

        deleted, written = event_store.replace_all([make_event(T0, 'new'), make_event(T0, 'new')])

        assert (deleted, written) == (1, 2)
        assert [event.title for event in event_store.all()] == ['new', 'new']

    def test_calendar_id_is_the_key(self, make_event):
        """The calendar's own id is used when present."""
        assert DynamoDBEventStore.event_key(make_event(T0, uid='abc')) == 'abc'


class TestDynamoDBMetadataStore:
    """Test cases for DynamoDBMetadataStore class."""

    def test_get_default_and_put(self, metadata_store):
        """Missing keys return the default; put overwrites."""
        assert metadata_store.get('posts-version', '') == ''

        metadata_store.put('posts-version', 'v1')
        metadata_store.put('posts-version', 'v2')

        assert metadata_store.get('posts-version') == 'v2'
