"""Unit tests for the post feed and calendar parsers."""
from datetime import datetime, timezone

import pytest

from processor.feed_parser import CalendarFeedParser, PostFeedParser
from processor.models import NO_IMAGE
from sync.errors import MalformedResponse


class TestPostFeedParser:
    """Test cases for PostFeedParser class."""

    def test_parse_probe(self, post_feed):
        """The header yields version and total count."""
        probe = PostFeedParser().parse_probe(post_feed(version='v1', total=42))

        assert probe.version == 'v1'
        assert probe.total_count == 42

    def test_parse_probe_without_count(self, post_feed):
        """A header without total count is malformed."""
        with pytest.raises(MalformedResponse):
            PostFeedParser().parse_probe(post_feed(version='v1'))

    def test_parse_probe_without_feed(self):
        """A body without a feed object is malformed."""
        with pytest.raises(MalformedResponse):
            PostFeedParser().parse_probe({'error': 'nope'})

    def test_parse_window(self, post_feed, post_entry, criteria):
        """Entries become tagged FeedItems."""
        payload = post_feed(entries=[
            post_entry(title='Tryouts', url='http://blog/tryouts.html',
                       categories=['Athletics', 'Clubs'], authors=['Moscrop Secondary']),
        ])

        window = PostFeedParser(criteria).parse_window(payload)

        assert window.version == '2014-11-02T10:00:00.000-08:00'
        assert len(window.items) == 1
        item = window.items[0]
        assert item.title == 'Tryouts'
        assert item.canonical_url == 'http://blog/tryouts.html'
        assert item.published_at == datetime(2014, 11, 1, 16, 30, tzinfo=timezone.utc)
        assert item.tags == ('Official', 'Athletics', 'Clubs')
        assert item.lead_icon == 'official.png'
        assert item.body_html == '<p>Hello <b>world</b></p>'
        assert item.preview == 'Hello world'

    def test_entry_without_date_is_dropped(self, post_feed, post_entry):
        """Only the undated entry is discarded."""
        payload = post_feed(entries=[
            post_entry(published=None, title='Undated'),
            post_entry(published='garbage', title='Bad date'),
            post_entry(title='Dated'),
        ])

        window = PostFeedParser().parse_window(payload)

        assert [item.title for item in window.items] == ['Dated']

    def test_missing_optional_fields_degrade(self, post_feed):
        """Entries with only a date still parse."""
        payload = post_feed(entries=[{'published': {'$t': '2014-11-01T00:00:00Z'}}])

        item = PostFeedParser().parse_window(payload).items[0]

        assert item.title == ''
        assert item.canonical_url == ''
        assert item.tags == ()
        assert item.lead_icon == NO_IMAGE
        assert item.preview == ''

    def test_feed_without_entries_is_empty(self, post_feed):
        """Blogger omits "entry" when there are no posts."""
        window = PostFeedParser().parse_window(post_feed())

        assert window.items == []

    def test_preview_is_truncated(self):
        """Long bodies are cut with an ellipsis."""
        preview = PostFeedParser.make_preview('<div>' + 'word ' * 100 + '</div>')

        assert len(preview) <= PostFeedParser.PREVIEW_LENGTH + 1
        assert preview.endswith('…')


class TestCalendarFeedParser:
    """Test cases for CalendarFeedParser class."""

    def test_parse_item(self, calendar_feed):
        """All fields parse, exact date-time included."""
        payload = calendar_feed([{
            'id': 'abc123',
            'summary': 'Pro-D Day',
            'description': 'No classes',
            'location': 'School',
            'start': {'dateTime': '2014-11-14T08:00:00-08:00'},
            'end': {'dateTime': '2014-11-14T15:00:00-08:00'},
        }])

        window = CalendarFeedParser().parse_window(payload)

        event = window.events[0]
        assert window.version == '2014-11-03T08:00:00.000Z'
        assert event.uid == 'abc123'
        assert event.title == 'Pro-D Day'
        assert event.description == 'No classes'
        assert event.location == 'School'
        assert event.start_at == datetime(2014, 11, 14, 16, 0, tzinfo=timezone.utc)
        assert event.end_at == datetime(2014, 11, 14, 23, 0, tzinfo=timezone.utc)

    def test_all_day_date_fallback(self, calendar_feed):
        """An all-day date is used when there is no dateTime."""
        payload = calendar_feed([{
            'summary': 'Winter break',
            'start': {'date': '2014-12-22'},
            'end': {'date': '2015-01-05'},
        }])

        event = CalendarFeedParser().parse_window(payload).events[0]

        assert event.start_at == datetime(2014, 12, 22, tzinfo=timezone.utc)
        assert event.end_at == datetime(2015, 1, 5, tzinfo=timezone.utc)

    def test_date_time_wins_over_date(self, calendar_feed):
        """When both forms are present the exact time is used."""
        payload = calendar_feed([{
            'start': {'dateTime': '2014-12-22T10:00:00Z', 'date': '2014-12-22'},
        }])

        event = CalendarFeedParser().parse_window(payload).events[0]

        assert event.start_at == datetime(2014, 12, 22, 10, 0, tzinfo=timezone.utc)

    def test_unparsable_times_are_absent(self, calendar_feed):
        """Bad or missing times stay None rather than defaulting."""
        payload = calendar_feed([{'start': {'dateTime': 'tomorrow'}}])

        event = CalendarFeedParser().parse_window(payload).events[0]

        assert event.start_at is None
        assert event.end_at is None
        assert event.title is None

    def test_missing_updated_is_malformed(self):
        """The version token is required."""
        with pytest.raises(MalformedResponse):
            CalendarFeedParser().parse_window({'items': []})

    def test_missing_items_is_malformed(self):
        """The items list is required for a window."""
        with pytest.raises(MalformedResponse):
            CalendarFeedParser().parse_window({'updated': 'v1'})

    def test_probe_needs_only_updated(self):
        """The probe ignores items."""
        assert CalendarFeedParser().parse_probe({'updated': 'v9'}).version == 'v9'
