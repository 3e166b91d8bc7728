"""Per-feed sync orchestration: probe, decide, reconcile, record."""
import logging
from concurrent.futures import Future, wait
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Hashable, List, Optional, Tuple

from botocore.exceptions import ClientError

from processor.models import FeedKind, SyncOutcome, SyncState
from sync.errors import FeedSyncError
from sync.version_gate import read_version_state

logger = logging.getLogger(__name__)

# Failures that end a cycle without touching the cache
CYCLE_ERRORS = (FeedSyncError, ClientError, OSError)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SingleFlight:
    """
    Runs at most one call per key at a time.

    A caller whose signature matches the in-flight call shares its result.
    A caller asking for something else waits for that call to finish and
    then runs its own.
    """

    def __init__(self):
        self._lock = Lock()
        self._calls: Dict[str, Tuple[Hashable, Future]] = {}

    def do(self, key: str, fn: Callable[[], SyncOutcome], signature: Hashable = None) -> SyncOutcome:
        while True:
            with self._lock:
                pending = self._calls.get(key)
                if pending is None:
                    future: Future = Future()
                    self._calls[key] = (signature, future)
                    break

            pending_signature, pending_future = pending
            if pending_signature == signature:
                logger.info(f"Joining in-flight {key} sync")
                return pending_future.result()

            logger.info(f"Waiting for in-flight {key} sync to finish")
            wait([pending_future])

        try:
            result = fn()
        except BaseException as e:
            self._release(key)
            future.set_exception(e)
            raise

        self._release(key)
        future.set_result(result)
        return result

    def _release(self, key: str) -> None:
        # Waiters woken by the future must not find the finished call
        with self._lock:
            self._calls.pop(key, None)


class SyncOrchestrator:
    """Shared plumbing of the post and event orchestrators."""

    feed: FeedKind

    def __init__(self, gate, metadata, single_flight: Optional[SingleFlight] = None):
        self.gate = gate
        self.metadata = metadata
        self.single_flight = single_flight or SingleFlight()
        self.listeners: List[Callable[[SyncOutcome], None]] = []

    def add_listener(self, listener: Callable[[SyncOutcome], None]) -> None:
        """Register a callback run after every cycle that changed data."""
        self.listeners.append(listener)

    def _run(self, mode: str, cycle: Callable[[], SyncOutcome], signature: Hashable = None) -> SyncOutcome:
        # Only callers asking for the same mode (and cursor) share one outcome
        return self.single_flight.do(
            self.feed.value,
            lambda: self._guarded(mode, cycle),
            signature=signature or (mode,)
        )

    def _guarded(self, mode: str, cycle: Callable[[], SyncOutcome]) -> SyncOutcome:
        try:
            outcome = cycle()
        except CYCLE_ERRORS as e:
            logger.error(
                f"{self.feed.value} {mode} sync failed: {e}",
                extra={'error_type': type(e).__name__}
            )
            return SyncOutcome(
                feed=self.feed,
                mode=mode,
                state=SyncState.FAILED,
                error=f"{type(e).__name__}: {e}"
            )

        logger.info(
            f"{self.feed.value} {mode} sync finished: {outcome.state.value}",
            extra={
                'version': outcome.version,
                'inserted': outcome.inserted,
                'deleted': outcome.deleted
            }
        )
        if outcome.state is SyncState.UPDATED:
            for listener in self.listeners:
                listener(outcome)
        return outcome

    def _no_change(self, mode: str, version: str) -> SyncOutcome:
        logger.info(f"{self.feed.value} feed unchanged at version {version}")
        return SyncOutcome(
            feed=self.feed,
            mode=mode,
            state=SyncState.NO_CHANGE,
            version=version
        )


class PostSyncOrchestrator(SyncOrchestrator):
    """Sequences version probe, full sync or backfill for the post feed."""

    feed = FeedKind.POSTS

    def __init__(
        self,
        gate,
        full_engine,
        backfill_engine,
        metadata,
        criteria_store=None,
        tag_list_url: Optional[str] = None,
        refresh_tags: bool = False,
        single_flight: Optional[SingleFlight] = None
    ):
        """
        Args:
            gate: VersionGate for the post feed
            full_engine: FullSyncEngine
            backfill_engine: IncrementalBackfillEngine
            metadata: Version metadata store
            criteria_store: TagCriteriaStore, needed for tag list refreshes
            tag_list_url: Remote tag list location
            refresh_tags: Refresh the tag list before each front-of-feed sync
            single_flight: Guard shared with other orchestrators, if any
        """
        super().__init__(gate, metadata, single_flight)
        self.full_engine = full_engine
        self.backfill_engine = backfill_engine
        self.criteria_store = criteria_store
        self.tag_list_url = tag_list_url
        self.refresh_tags = refresh_tags

    def refresh(self) -> SyncOutcome:
        """Resync the newest posts if the feed version changed."""
        return self._run(self.full_engine.MODE, self._refresh)

    def backfill(self) -> SyncOutcome:
        """Append one page of older posts if the remote holds more than the cache."""
        return self._run(self.backfill_engine.MODE, self._backfill)

    def update_tag_criteria(self) -> bool:
        """
        Refresh the tag list. Failures are logged and reported as no change.

        Returns:
            True if a new tag list version was stored
        """
        if self.criteria_store is None or not self.tag_list_url:
            return False
        try:
            changed = self.criteria_store.refresh(self.full_engine.client, self.tag_list_url)
        except CYCLE_ERRORS as e:
            logger.warning(f"Tag list refresh failed: {e}")
            return False

        self._apply_criteria()
        return changed

    def _apply_criteria(self) -> None:
        """Hand the current tag criteria to the post parser."""
        if self.criteria_store is not None:
            self.full_engine.parser.criteria = list(self.criteria_store.criteria)

    def _refresh(self) -> SyncOutcome:
        if self.refresh_tags:
            self.update_tag_criteria()
        self._apply_criteria()

        state = read_version_state(self.metadata, self.feed)
        probe = self.gate.probe()
        if probe.version == state.version:
            return self._no_change(self.full_engine.MODE, probe.version)
        return self.full_engine.run(last_known_version=state.version)

    def _backfill(self) -> SyncOutcome:
        self._apply_criteria()
        probe = self.gate.probe()
        if not self.backfill_engine.needs_backfill(probe):
            return self._no_change(self.backfill_engine.MODE, probe.version)
        return self.backfill_engine.run()


class EventSyncOrchestrator(SyncOrchestrator):
    """Sequences version probe and reconciliation for the event feed."""

    feed = FeedKind.EVENTS

    def __init__(self, gate, engine, metadata, single_flight: Optional[SingleFlight] = None):
        """
        Args:
            gate: VersionGate for the calendar
            engine: CalendarSyncEngine
            metadata: Version metadata store
            single_flight: Guard shared with other orchestrators, if any
        """
        super().__init__(gate, metadata, single_flight)
        self.engine = engine

    def full(self) -> SyncOutcome:
        """Reload the whole calendar. No version check gates this path."""
        return self._run('full', self.engine.full_resync)

    def selective(self, time_min: datetime) -> SyncOutcome:
        """Reload events from time_min forward if the calendar version changed."""
        return self._run(
            'selective',
            lambda: self._selective(time_min),
            signature=('selective', time_min)
        )

    def _selective(self, time_min: datetime) -> SyncOutcome:
        state = read_version_state(self.metadata, self.feed)
        probe = self.gate.probe()
        if probe.version == state.version:
            return self._no_change('selective', probe.version)
        return self.engine.selective_resync(time_min, last_known_version=state.version)
