"""AWS Lambda handler for the post feed and calendar sync."""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from config import ConfigError, Settings
from processor.dates import parse_cursor_value
from processor.feed_parser import CalendarFeedParser, PostFeedParser
from processor.models import FeedKind, ReconcileReport, SyncOutcome, SyncState
from processor.tag_criteria import TagCriteriaStore
from scraper.feed_client import FeedClient
from scraper.feed_urls import BloggerFeedUrls, CalendarFeedUrls
from storage.dynamodb_manager import (
    DynamoDBEventStore,
    DynamoDBMetadataStore,
    DynamoDBPostStore,
)
from storage.memory_store import MemoryEventStore, MemoryMetadataStore, MemoryPostStore
from sync.calendar_sync import CalendarSyncEngine
from sync.errors import FeedSyncError
from sync.orchestrator import (
    EventSyncOrchestrator,
    PostSyncOrchestrator,
    SingleFlight,
    utc_now,
)
from sync.post_sync import FullSyncEngine, IncrementalBackfillEngine
from sync.version_gate import VersionGate, read_version_state

POST_MODES = ('refresh', 'backfill')
EVENT_MODES = ('selective', 'full')


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class Stores:
    """The cache partitions and metadata store used by one invocation."""
    posts: Any
    events: Any
    metadata: Any


_memory_stores: Optional[Stores] = None
_single_flight = SingleFlight()


def build_stores(settings: Settings) -> Stores:
    """Create the configured storage backend; memory stores live per process."""
    global _memory_stores
    if settings.storage_backend == 'memory':
        if _memory_stores is None:
            _memory_stores = Stores(
                posts=MemoryPostStore(),
                events=MemoryEventStore(),
                metadata=MemoryMetadataStore()
            )
        return _memory_stores

    return Stores(
        posts=DynamoDBPostStore(settings.posts_table),
        events=DynamoDBEventStore(settings.events_table),
        metadata=DynamoDBMetadataStore(settings.metadata_table)
    )


def build_post_orchestrator(settings: Settings, client: FeedClient, stores: Stores) -> PostSyncOrchestrator:
    criteria_store = TagCriteriaStore(settings.tag_list_path, stores.metadata)
    urls = BloggerFeedUrls(settings.blog_id, page_size=settings.page_size)
    # Criteria load inside each cycle
    parser = PostFeedParser()
    args = (client, urls, parser, stores.posts, stores.metadata, utc_now)

    return PostSyncOrchestrator(
        gate=VersionGate(FeedKind.POSTS, client, urls.probe, parser),
        full_engine=FullSyncEngine(*args),
        backfill_engine=IncrementalBackfillEngine(*args),
        metadata=stores.metadata,
        criteria_store=criteria_store,
        tag_list_url=settings.tag_list_url,
        refresh_tags=True,
        single_flight=_single_flight
    )


def build_event_orchestrator(settings: Settings, client: FeedClient, stores: Stores) -> EventSyncOrchestrator:
    if not settings.calendar_id:
        raise ConfigError("CALENDAR_ID must be set to sync events")

    logger = logging.getLogger(__name__)
    urls = CalendarFeedUrls(
        settings.calendar_id,
        settings.calendar_api_key,
        max_results=settings.calendar_max_results
    )
    parser = CalendarFeedParser()

    def report_inconsistency(report: ReconcileReport) -> None:
        logger.warning(
            "Calendar reconcile inconsistency",
            extra={
                'deleted': report.deleted,
                'inserted': report.inserted,
                'transactional': report.transactional
            }
        )

    engine = CalendarSyncEngine(
        client, urls, parser, stores.events, stores.metadata, utc_now,
        on_inconsistency=report_inconsistency
    )
    return EventSyncOrchestrator(
        gate=VersionGate(FeedKind.EVENTS, client, lambda: urls.probe(utc_now()), parser),
        engine=engine,
        metadata=stores.metadata,
        single_flight=_single_flight
    )


def outcome_to_dict(outcome: SyncOutcome) -> Dict[str, Any]:
    """Summarize a sync outcome for the response body."""
    body: Dict[str, Any] = {
        'feed': outcome.feed.value,
        'mode': outcome.mode,
        'state': outcome.state.value,
        'version': outcome.version,
        'inserted': outcome.inserted,
        'deleted': outcome.deleted,
        'warnings': outcome.warnings
    }
    if outcome.reconcile is not None:
        body['reconcile'] = {
            'deleted': outcome.reconcile.deleted,
            'inserted': outcome.reconcile.inserted,
            'consistent': outcome.reconcile.consistent,
            'transactional': outcome.reconcile.transactional
        }
    if outcome.error:
        body['error'] = outcome.error
    return body


def _response(status: int, body: Dict[str, Any], start_time: float) -> Dict[str, Any]:
    body['duration_seconds'] = round(time.time() - start_time, 2)
    return {'statusCode': status, 'body': json.dumps(body)}


def run_sync(request: Dict[str, Any], settings: Settings) -> SyncOutcome:
    """
    Run the sync named by the request payload.

    Raises:
        ConfigError: If the payload names an unknown feed or mode
    """
    feed = request.get('feed', FeedKind.POSTS.value)
    client = FeedClient(timeout=settings.timeout_seconds, max_retries=settings.max_retries)
    stores = build_stores(settings)

    if feed == FeedKind.POSTS.value:
        mode = request.get('mode', 'refresh')
        if mode not in POST_MODES:
            raise ConfigError(f"Unknown posts mode {mode!r}")
        orchestrator = build_post_orchestrator(settings, client, stores)
        return orchestrator.refresh() if mode == 'refresh' else orchestrator.backfill()

    if feed == FeedKind.EVENTS.value:
        mode = request.get('mode', 'selective')
        if mode not in EVENT_MODES:
            raise ConfigError(f"Unknown events mode {mode!r}")
        orchestrator = build_event_orchestrator(settings, client, stores)
        if mode == 'full':
            return orchestrator.full()

        time_min = parse_cursor_value(request.get('time_min'))
        if request.get('time_min') not in (None, '') and time_min is None:
            raise ConfigError(f"Unreadable time_min {request.get('time_min')!r}")
        if time_min is None:
            time_min = read_version_state(stores.metadata, FeedKind.EVENTS).last_synced_at
        if time_min is None:
            logging.getLogger(__name__).info("No event cursor stored; running full resync")
            return orchestrator.full()
        return orchestrator.selective(time_min)

    raise ConfigError(f"Unknown feed {feed!r}")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for feed sync.

    Args:
        event: Payload with "feed" ("posts", "events" or "tags"), "mode"
            and, for selective event syncs, an optional "time_min"
        context: Lambda context object

    Returns:
        Response dict with statusCode and the sync outcome
    """
    start_time = time.time()
    event = event or {}

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        setup_logging()
        logging.getLogger(__name__).error(f"Invalid configuration: {e}")
        return _response(500, {'message': 'Invalid configuration', 'error': str(e)}, start_time)

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)
    logger.info(
        "Lambda execution started",
        extra={'feed': event.get('feed'), 'mode': event.get('mode')}
    )

    try:
        if event.get('feed') == 'tags':
            stores = build_stores(settings)
            client = FeedClient(timeout=settings.timeout_seconds, max_retries=settings.max_retries)
            orchestrator = build_post_orchestrator(settings, client, stores)
            changed = orchestrator.update_tag_criteria()
            return _response(200, {
                'message': 'Tag list refreshed',
                'changed': changed,
                'tags': orchestrator.criteria_store.known_tag_names()
            }, start_time)

        outcome = run_sync(event, settings)

    except ConfigError as e:
        logger.error(f"Invalid request: {e}")
        return _response(400, {'message': 'Invalid request', 'error': str(e)}, start_time)

    except FeedSyncError as e:
        logger.error(
            f"Tag list unavailable: {e}",
            extra={'error_type': type(e).__name__}
        )
        return _response(502, {
            'message': 'Tag list unavailable',
            'error': f"{type(e).__name__}: {e}"
        }, start_time)

    except Exception as e:
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {
            'message': 'Sync failed',
            'error': str(e),
            'error_type': type(e).__name__
        }, start_time)

    body = outcome_to_dict(outcome)
    if outcome.state is SyncState.FAILED:
        body['message'] = 'Sync failed'
        body['note'] = 'Previous cache remains'
        return _response(502, body, start_time)

    logger.info(
        "Lambda execution completed successfully",
        extra={
            'state': outcome.state.value,
            'records_inserted': outcome.inserted,
            'records_deleted': outcome.deleted
        }
    )
    body['message'] = 'Sync completed successfully'
    return _response(200, body, start_time)
