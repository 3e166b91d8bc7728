"""In-process cache and metadata stores with transaction support."""
import logging
from contextlib import contextmanager
from datetime import datetime
from threading import RLock
from typing import Dict, Iterable, List, Optional, Tuple

from processor.models import CalendarEvent, FeedItem

logger = logging.getLogger(__name__)


class _MemoryCache:
    """List-backed cache whose transaction() restores a snapshot on error."""

    supports_transactions = True

    def __init__(self, records: Iterable = ()):
        self._records: List = list(records)
        self._lock = RLock()

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = list(self._records)
            try:
                yield self
            except BaseException:
                logger.warning("Rolling back in-memory cache transaction")
                self._records = snapshot
                raise

    def delete_all(self) -> int:
        with self._lock:
            count = len(self._records)
            self._records = []
            return count

    def insert_many(self, records: Iterable) -> int:
        records = list(records)
        with self._lock:
            self._records.extend(records)
        return len(records)

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def replace_all(self, records: Iterable) -> Tuple[int, int]:
        """Swap the contents in one transaction; returns (deleted, inserted)."""
        records = list(records)
        with self.transaction():
            deleted = self.delete_all()
            inserted = self.insert_many(records)
        return deleted, inserted


class MemoryPostStore(_MemoryCache):
    """Post cache kept in memory."""

    def oldest_timestamp(self) -> Optional[datetime]:
        with self._lock:
            if not self._records:
                return None
            return min(item.published_at for item in self._records)

    def all(self) -> List[FeedItem]:
        """Cached posts, newest first."""
        with self._lock:
            return sorted(self._records, key=lambda item: item.published_at, reverse=True)


class MemoryEventStore(_MemoryCache):
    """Event cache kept in memory."""

    def delete_where(self, start_at_or_after: datetime) -> int:
        """Delete events starting at or after the cursor; undated events stay."""
        with self._lock:
            keep = [
                event for event in self._records
                if event.start_at is None or event.start_at < start_at_or_after
            ]
            deleted = len(self._records) - len(keep)
            self._records = keep
            return deleted

    def all(self) -> List[CalendarEvent]:
        """Cached events ordered by start time, undated events last."""
        with self._lock:
            dated = [event for event in self._records if event.start_at is not None]
            undated = [event for event in self._records if event.start_at is None]
            return sorted(dated, key=lambda event: event.start_at) + undated


class MemoryMetadataStore:
    """Key/value version metadata kept in memory."""

    def __init__(self, values: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})
        self._lock = RLock()

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            return self._values.get(key, default)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value
