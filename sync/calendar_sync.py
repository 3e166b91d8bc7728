"""Full and cursor-bounded reconciliation of the event cache."""
import logging
from datetime import datetime
from typing import Callable, Optional

from processor.dates import format_cursor
from processor.models import FeedKind, ReconcileReport, SyncOutcome, SyncState
from sync.post_sync import store_transaction
from sync.version_gate import write_version_state

logger = logging.getLogger(__name__)


class CalendarSyncEngine:
    """
    Keeps the event cache in step with a Google Calendar.

    Events are mutable upstream, so instead of appending, the selective path
    deletes everything from the cursor forward and reinserts the fetched
    events. Stores that support transactions run delete and insert in one
    scope; others may be left with the delete applied if the insert fails.
    """

    def __init__(
        self,
        client,
        urls,
        parser,
        store,
        metadata,
        clock: Callable[[], datetime],
        on_inconsistency: Optional[Callable[[ReconcileReport], None]] = None
    ):
        """
        Args:
            client: FeedClient
            urls: CalendarFeedUrls
            parser: CalendarFeedParser
            store: Event cache store
            metadata: Version metadata store
            clock: Returns the current aware datetime
            on_inconsistency: Called with the report when deleted != inserted
        """
        self.client = client
        self.urls = urls
        self.parser = parser
        self.store = store
        self.metadata = metadata
        self.clock = clock
        self.on_inconsistency = on_inconsistency

    def full_resync(self) -> SyncOutcome:
        """
        Replace the whole event cache with the current calendar.

        Raises:
            FeedSyncError: If fetching or parsing fails; nothing is written
        """
        logger.info("Processing all calendar events")
        payload = self.client.fetch_json(self.urls.window())
        window = self.parser.parse_window(payload)

        deleted, inserted = self.store.replace_all(window.events)

        write_version_state(self.metadata, FeedKind.EVENTS, window.version, self.clock())
        return SyncOutcome(
            feed=FeedKind.EVENTS,
            mode='full',
            state=SyncState.UPDATED,
            version=window.version,
            inserted=inserted,
            deleted=deleted
        )

    def selective_resync(self, time_min: datetime, last_known_version: str) -> SyncOutcome:
        """
        Replace cached events starting at or after time_min.

        Args:
            time_min: Cursor; events before it are left untouched
            last_known_version: Version of the content currently cached

        Raises:
            FeedSyncError: If fetching or parsing fails; nothing is written
        """
        logger.info(f"Processing calendar events from {format_cursor(time_min)}")
        payload = self.client.fetch_json(self.urls.window(time_min=time_min))
        window = self.parser.parse_window(payload)

        outcome = SyncOutcome(
            feed=FeedKind.EVENTS,
            mode='selective',
            state=SyncState.UPDATED,
            version=window.version
        )

        if window.version != last_known_version:
            # timeMin filters on end time; events already running are cached
            events = [
                event for event in window.events
                if event.start_at is not None and event.start_at >= time_min
            ]
            if len(events) != len(window.events):
                logger.info(
                    f"Skipped {len(window.events) - len(events)} events starting "
                    f"before {format_cursor(time_min)}"
                )
            report = self._reconcile(time_min, events)
            outcome.reconcile = report
            outcome.deleted = report.deleted
            outcome.inserted = report.inserted
            if not report.consistent:
                outcome.warnings.append(
                    f"deleted {report.deleted} events but inserted {report.inserted}"
                )
        else:
            logger.info("Existing event cache is already up to date")

        write_version_state(self.metadata, FeedKind.EVENTS, window.version, self.clock())
        return outcome

    def _reconcile(self, time_min: datetime, events) -> ReconcileReport:
        transactional = getattr(self.store, 'supports_transactions', False)
        with store_transaction(self.store) as store:
            deleted = store.delete_where(time_min)
            if deleted != len(events):
                logger.warning(
                    f"Processing calendar events: deleted {deleted} events from cache, "
                    f"but inserting {len(events)} new events"
                )
            inserted = store.insert_many(events)

        report = ReconcileReport(
            cursor=time_min,
            deleted=deleted,
            inserted=inserted,
            transactional=transactional
        )
        if not report.consistent and self.on_inconsistency is not None:
            self.on_inconsistency(report)
        return report
