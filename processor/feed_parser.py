"""Parsers turning decoded feed JSON into domain models."""
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup

from processor.dates import parse_all_day, parse_rfc3339
from processor.models import (
    CalendarEvent,
    CalendarWindow,
    FeedItem,
    FeedProbe,
    FeedWindow,
    TagCriterion,
)
from processor.tag_classifier import classify
from sync.errors import MalformedResponse

logger = logging.getLogger(__name__)


def _text(node: Any) -> Optional[str]:
    """Return node["$t"] for GData-style text nodes, else None."""
    if isinstance(node, dict):
        value = node.get('$t')
        if isinstance(value, (str, int)):
            return str(value)
    return None


def _object_list(node: Any) -> List[Dict[str, Any]]:
    if not isinstance(node, list):
        return []
    return [entry for entry in node if isinstance(entry, dict)]


class PostFeedParser:
    """Parser for the Blogger JSON post feed."""

    PREVIEW_LENGTH = 200

    def __init__(self, criteria: Sequence[TagCriterion] = ()):
        """
        Args:
            criteria: Tag criteria in priority order used to tag each post
        """
        self.criteria = list(criteria)

    def parse_probe(self, payload: Dict[str, Any]) -> FeedProbe:
        """
        Extract the version token and total post count from a feed header.

        Raises:
            MalformedResponse: If either field is missing or unreadable
        """
        feed = self._feed(payload)
        version = self._version(feed)

        total = _text(feed.get('openSearch$totalResults'))
        try:
            total_count = int(total)
        except (TypeError, ValueError) as e:
            raise MalformedResponse(
                f"Feed header has no usable total count: {total!r}"
            ) from e

        return FeedProbe(version=version, total_count=total_count)

    def parse_window(self, payload: Dict[str, Any]) -> FeedWindow:
        """
        Parse a page of posts. Entries without a publish date are dropped.

        Raises:
            MalformedResponse: If the feed object or its version is missing
        """
        feed = self._feed(payload)
        version = self._version(feed)

        entries = _object_list(feed.get('entry'))
        items = []
        for entry in entries:
            item = self.parse_entry(entry)
            if item is not None:
                items.append(item)

        if len(items) != len(entries):
            logger.warning(
                f"Dropped {len(entries) - len(items)} of {len(entries)} "
                f"feed entries without a usable publish date"
            )
        return FeedWindow(version=version, items=items)

    def parse_entry(self, entry: Dict[str, Any]) -> Optional[FeedItem]:
        """
        Convert one feed entry to a FeedItem.

        Returns:
            FeedItem or None if the publish date is missing or invalid
        """
        published_at = parse_rfc3339(_text(entry.get('published')))
        if published_at is None:
            return None

        body_html = _text(entry.get('content')) or ''

        url = ''
        for link in _object_list(entry.get('link')):
            if link.get('rel') == 'alternate':
                url = link.get('href') or ''
                break

        categories = [
            category['term'] for category in _object_list(entry.get('category'))
            if isinstance(category.get('term'), str)
        ]
        authors = [
            name for name in (
                _text(author.get('name'))
                for author in _object_list(entry.get('author'))
            )
            if name is not None
        ]
        tags, lead_icon = classify(categories, authors, self.criteria)

        return FeedItem(
            published_at=published_at,
            title=_text(entry.get('title')) or '',
            body_html=body_html,
            tags=tuple(tags),
            lead_icon=lead_icon,
            canonical_url=url,
            preview=self.make_preview(body_html)
        )

    @classmethod
    def make_preview(cls, body_html: str) -> str:
        """Plain-text excerpt of a post body for list rendering."""
        if not body_html:
            return ''
        text = BeautifulSoup(body_html, 'html.parser').get_text(' ', strip=True)
        text = re.sub(r'\s+', ' ', text)
        if len(text) > cls.PREVIEW_LENGTH:
            text = text[:cls.PREVIEW_LENGTH].rstrip() + '…'
        return text

    def _feed(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        feed = payload.get('feed') if isinstance(payload, dict) else None
        if not isinstance(feed, dict):
            raise MalformedResponse("Post feed response has no 'feed' object")
        return feed

    def _version(self, feed: Dict[str, Any]) -> str:
        version = _text(feed.get('updated'))
        if not version:
            raise MalformedResponse("Post feed response has no 'updated' token")
        return version


class CalendarFeedParser:
    """Parser for Google Calendar v3 event lists."""

    def parse_probe(self, payload: Dict[str, Any]) -> FeedProbe:
        """
        Raises:
            MalformedResponse: If the "updated" token is missing
        """
        return FeedProbe(version=self._version(payload))

    def parse_window(self, payload: Dict[str, Any]) -> CalendarWindow:
        """
        Parse a list of events. Unreadable fields degrade to None.

        Raises:
            MalformedResponse: If the "updated" token or "items" list is missing
        """
        version = self._version(payload)
        items = payload.get('items')
        if not isinstance(items, list):
            raise MalformedResponse("Calendar response has no 'items' list")

        events = [self.parse_item(item) for item in _object_list(items)]
        return CalendarWindow(version=version, events=events)

    def parse_item(self, item: Dict[str, Any]) -> CalendarEvent:
        """Convert one calendar item to a CalendarEvent."""
        return CalendarEvent(
            title=self._string(item, 'summary'),
            description=self._string(item, 'description'),
            location=self._string(item, 'location'),
            start_at=self._moment(item.get('start')),
            end_at=self._moment(item.get('end')),
            uid=self._string(item, 'id')
        )

    def _moment(self, node: Any):
        # Exact date-time wins over an all-day date
        if not isinstance(node, dict):
            return None
        return parse_rfc3339(node.get('dateTime')) or parse_all_day(node.get('date'))

    def _string(self, item: Dict[str, Any], key: str) -> Optional[str]:
        value = item.get(key)
        return value if isinstance(value, str) else None

    def _version(self, payload: Dict[str, Any]) -> str:
        version = payload.get('updated') if isinstance(payload, dict) else None
        if not isinstance(version, str) or not version:
            raise MalformedResponse("Calendar response has no 'updated' token")
        return version
