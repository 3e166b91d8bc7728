"""Front-of-feed replacement and historical backfill for the post cache."""
import logging
from contextlib import nullcontext
from datetime import datetime
from typing import Callable, Optional

from processor.models import FeedKind, FeedProbe, SyncOutcome, SyncState
from sync.version_gate import write_version_state

logger = logging.getLogger(__name__)


def store_transaction(store):
    """Transaction scope of a cache store, or a no-op scope if it has none."""
    if getattr(store, 'supports_transactions', False):
        return store.transaction()
    return nullcontext(store)


class FullSyncEngine:
    """Replaces the cached posts with the newest window of the feed."""

    MODE = 'refresh'

    def __init__(self, client, urls, parser, store, metadata, clock: Callable[[], datetime]):
        """
        Args:
            client: FeedClient
            urls: BloggerFeedUrls
            parser: PostFeedParser carrying the tag criteria
            store: Post cache store
            metadata: Version metadata store
            clock: Returns the current aware datetime
        """
        self.client = client
        self.urls = urls
        self.parser = parser
        self.store = store
        self.metadata = metadata
        self.clock = clock

    def run(self, last_known_version: str) -> SyncOutcome:
        """
        Fetch the newest window and replace the cache if its version is new.

        The stored version and sync time advance after every successful
        fetch, even when the content matches last_known_version.

        Args:
            last_known_version: Version of the content currently cached

        Raises:
            FeedSyncError: If fetching or parsing fails; nothing is written
        """
        payload = self.client.fetch_json(self.urls.window())
        window = self.parser.parse_window(payload)

        deleted = inserted = 0
        if window.version != last_known_version:
            logger.info(
                f"Post feed version {window.version} replaces {last_known_version!r}; "
                f"replacing cache with {len(window.items)} posts"
            )
            deleted, inserted = self.store.replace_all(window.items)
        else:
            logger.info("Existing post cache is already up to date")

        write_version_state(self.metadata, FeedKind.POSTS, window.version, self.clock())
        return SyncOutcome(
            feed=FeedKind.POSTS,
            mode=self.MODE,
            state=SyncState.UPDATED,
            version=window.version,
            inserted=inserted,
            deleted=deleted
        )


class IncrementalBackfillEngine:
    """Appends posts older than the oldest cached post."""

    MODE = 'backfill'

    def __init__(self, client, urls, parser, store, metadata, clock: Callable[[], datetime]):
        self.client = client
        self.urls = urls
        self.parser = parser
        self.store = store
        self.metadata = metadata
        self.clock = clock

    def needs_backfill(self, probe: FeedProbe) -> bool:
        """True when the remote feed holds more posts than the cache."""
        if probe.total_count is None:
            return False
        cached = self.store.count()
        logger.info(f"Remote post count {probe.total_count}, cached {cached}")
        return probe.total_count > cached

    def run(self) -> SyncOutcome:
        """
        Fetch one page strictly older than the oldest cached post and append it.

        Raises:
            FeedSyncError: If fetching or parsing fails; nothing is written
        """
        cursor: Optional[datetime] = self.store.oldest_timestamp()
        payload = self.client.fetch_json(self.urls.window(published_before=cursor))
        window = self.parser.parse_window(payload)

        items = window.items
        if cursor is not None:
            # published-max is inclusive; the post at the cursor is already cached
            items = [item for item in items if item.published_at < cursor]
            if len(items) != len(window.items):
                logger.info(
                    f"Skipped {len(window.items) - len(items)} posts at or after "
                    f"the backfill cursor"
                )

        with store_transaction(self.store) as store:
            inserted = store.insert_many(items)
        logger.info(f"Appended {inserted} older posts to cache")

        write_version_state(self.metadata, FeedKind.POSTS, window.version, self.clock())
        return SyncOutcome(
            feed=FeedKind.POSTS,
            mode=self.MODE,
            state=SyncState.UPDATED,
            version=window.version,
            inserted=inserted
        )
