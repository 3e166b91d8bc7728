"""Cheap version probes and persisted version bookkeeping."""
import logging
from datetime import datetime
from typing import Callable

from processor.dates import format_cursor, parse_rfc3339
from processor.models import FeedKind, FeedProbe, SyncVersionState
from sync.errors import FeedSyncError, VersionProbeFailure

logger = logging.getLogger(__name__)


class VersionGate:
    """
    Issues the header-only request of one feed and reads its version token.

    The gate never retries and never guesses: any failure surfaces as
    VersionProbeFailure so the caller can skip the cycle.
    """

    def __init__(self, feed: FeedKind, client, probe_url: Callable[[], str], parser):
        """
        Args:
            feed: Feed this gate probes
            client: FeedClient used for the request
            probe_url: Builds the probe URL at call time
            parser: Parser exposing parse_probe(payload) -> FeedProbe
        """
        self.feed = feed
        self.client = client
        self.probe_url = probe_url
        self.parser = parser

    def probe(self) -> FeedProbe:
        """
        Fetch the feed header.

        Raises:
            VersionProbeFailure: On any transport or parse failure
        """
        url = self.probe_url()
        try:
            payload = self.client.fetch_json(url)
            probe = self.parser.parse_probe(payload)
        except FeedSyncError as e:
            logger.warning(f"Version probe for {self.feed.value} failed: {e}")
            raise VersionProbeFailure(f"{self.feed.value} probe failed: {e}") from e

        logger.info(
            f"Probed {self.feed.value}: version={probe.version} "
            f"total={probe.total_count}"
        )
        return probe


def read_version_state(metadata, feed: FeedKind) -> SyncVersionState:
    """Load the stored version state of a feed; absent values read as empty."""
    return SyncVersionState(
        version=metadata.get(feed.version_key, '') or '',
        last_synced_at=parse_rfc3339(metadata.get(feed.last_sync_key))
    )


def write_version_state(metadata, feed: FeedKind, version: str, synced_at: datetime) -> SyncVersionState:
    """Persist a freshly observed version and the time it was observed."""
    metadata.put(feed.version_key, version)
    metadata.put(feed.last_sync_key, format_cursor(synced_at))
    return SyncVersionState(version=version, last_synced_at=synced_at)
