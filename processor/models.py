"""Data models for feed synchronization."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


NO_IMAGE = "no image"


class FeedKind(Enum):
    """The feeds kept in the local cache, each with its own metadata keys."""
    POSTS = "posts"
    EVENTS = "events"

    @property
    def version_key(self) -> str:
        return f"{self.value}-version"

    @property
    def last_sync_key(self) -> str:
        return f"{self.value}-last-sync-time"


TAG_CRITERIA_VERSION_KEY = "tagcriteria-version"


@dataclass(frozen=True)
class FeedItem:
    """A blog post as stored in the post cache."""
    published_at: datetime
    title: str
    body_html: str
    tags: Tuple[str, ...]
    lead_icon: str
    canonical_url: str
    preview: str = ""


@dataclass(frozen=True)
class CalendarEvent:
    """A calendar entry. Every field may be absent."""
    title: Optional[str]
    description: Optional[str]
    location: Optional[str]
    start_at: Optional[datetime]
    end_at: Optional[datetime]
    uid: Optional[str] = None


@dataclass(frozen=True)
class TagCriterion:
    """A named rule mapping author/category labels to a tag and an icon."""
    name: str
    author_match: Optional[str] = None
    category_match: Optional[str] = None
    icon_ref: Optional[str] = None


@dataclass(frozen=True)
class FeedProbe:
    """Result of a header-only request against a feed."""
    version: str
    total_count: Optional[int] = None


@dataclass(frozen=True)
class FeedWindow:
    """One page of posts as returned by the server."""
    version: str
    items: List[FeedItem]


@dataclass(frozen=True)
class CalendarWindow:
    """One page of calendar events as returned by the server."""
    version: str
    events: List[CalendarEvent]


@dataclass(frozen=True)
class SyncVersionState:
    """Persisted version bookkeeping for one feed."""
    version: str
    last_synced_at: Optional[datetime]


class SyncState(Enum):
    """Terminal states of one sync invocation."""
    NO_CHANGE = "no_change"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass
class ReconcileReport:
    """Counts from a cursor-bounded delete+insert on the event cache."""
    cursor: Optional[datetime]
    deleted: int
    inserted: int
    transactional: bool

    @property
    def consistent(self) -> bool:
        return self.deleted == self.inserted


@dataclass
class SyncOutcome:
    """Result of a sync operation."""
    feed: FeedKind
    mode: str
    state: SyncState
    version: Optional[str] = None
    inserted: int = 0
    deleted: int = 0
    reconcile: Optional[ReconcileReport] = None
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
