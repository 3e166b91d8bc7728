"""Shared fixtures: feed payload factories, fixed clock and criteria."""
from datetime import datetime, timedelta, timezone

import pytest

from processor.models import CalendarEvent, FeedItem, NO_IMAGE, TagCriterion


NOW = datetime(2014, 11, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """Clock returning a fixed moment."""
    return lambda: NOW


@pytest.fixture
def criteria():
    """A small ordered criteria list."""
    return [
        TagCriterion(name='Official', author_match='Moscrop Secondary', icon_ref='official.png'),
        TagCriterion(name='Athletics', category_match='Athletics', icon_ref='athletics.png'),
        TagCriterion(name='Clubs', category_match='Clubs'),
    ]


@pytest.fixture
def post_entry():
    """Factory for one Blogger JSON feed entry."""
    def make(published='2014-11-01T09:30:00.000-07:00', title='Post', url='http://blog/post.html',
             content='<p>Hello <b>world</b></p>', categories=(), authors=('Someone',)):
        entry = {
            'title': {'$t': title},
            'content': {'$t': content},
            'link': [
                {'rel': 'replies', 'href': url + '#comments'},
                {'rel': 'alternate', 'href': url},
            ],
            'category': [{'term': term} for term in categories],
            'author': [{'name': {'$t': name}} for name in authors],
        }
        if published is not None:
            entry['published'] = {'$t': published}
        return entry
    return make


@pytest.fixture
def post_feed():
    """Factory for a Blogger JSON feed document."""
    def make(entries=None, version='2014-11-02T10:00:00.000-08:00', total=None):
        feed = {'updated': {'$t': version}}
        if total is not None:
            feed['openSearch$totalResults'] = {'$t': str(total)}
        if entries is not None:
            feed['entry'] = entries
        return {'feed': feed}
    return make


@pytest.fixture
def calendar_feed():
    """Factory for a Google Calendar event list."""
    def make(items=(), version='2014-11-03T08:00:00.000Z'):
        return {'updated': version, 'items': list(items)}
    return make


@pytest.fixture
def make_item():
    """Factory for cached posts."""
    def make(published_at, url=None, title='Post'):
        return FeedItem(
            published_at=published_at,
            title=title,
            body_html='<p>body</p>',
            tags=(),
            lead_icon=NO_IMAGE,
            canonical_url=url or f"http://blog/{published_at.isoformat()}.html",
            preview='body'
        )
    return make


@pytest.fixture
def make_event():
    """Factory for cached calendar events."""
    def make(start_at, title='Event', uid=None):
        return CalendarEvent(
            title=title,
            description=None,
            location=None,
            start_at=start_at,
            end_at=start_at + timedelta(hours=1) if start_at else None,
            uid=uid
        )
    return make
