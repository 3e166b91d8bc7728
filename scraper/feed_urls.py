"""Request URL builders for the Blogger post feed and Google Calendar."""
from datetime import datetime
from typing import Optional
from urllib.parse import quote, urlencode

from processor.dates import format_cursor

CALENDAR_API = "https://www.googleapis.com/calendar/v3/calendars"


class BloggerFeedUrls:
    """Builds post feed URLs for one Blogger blog."""

    def __init__(self, blog_id: str, page_size: int = 20):
        self.blog_id = blog_id
        self.page_size = page_size

    @property
    def base_url(self) -> str:
        return f"http://{self.blog_id}.blogspot.ca/feeds/posts/default"

    def probe(self) -> str:
        """URL returning only the feed header (version and total count)."""
        return self._build({'alt': 'json', 'max-results': 0})

    def window(self, published_before: Optional[datetime] = None) -> str:
        """
        URL for one page of the newest posts, optionally bounded by a cursor.

        Args:
            published_before: Only posts published up to this moment
        """
        params = {'alt': 'json', 'max-results': self.page_size}
        if published_before is not None:
            params['published-max'] = format_cursor(published_before)
        return self._build(params)

    def _build(self, params: dict) -> str:
        return f"{self.base_url}?{urlencode(params, safe=':')}"


class CalendarFeedUrls:
    """Builds Google Calendar v3 event list URLs for one calendar."""

    def __init__(self, calendar_id: str, api_key: str, max_results: int = 1000):
        self.calendar_id = calendar_id
        self.api_key = api_key
        self.max_results = max_results

    @property
    def base_url(self) -> str:
        return f"{CALENDAR_API}/{quote(self.calendar_id, safe='@.')}/events"

    def probe(self, now: datetime) -> str:
        """URL returning at most one past event; only its "updated" field is used."""
        return self._build([
            ('maxResults', 1),
            ('timeMax', format_cursor(now)),
            ('key', self.api_key),
        ])

    def window(self, time_min: Optional[datetime] = None) -> str:
        """
        URL for all single events ordered by start, optionally from a cursor.

        Args:
            time_min: Only events starting at or after this moment
        """
        params = [
            ('maxResults', self.max_results),
            ('orderBy', 'startTime'),
            ('singleEvents', 'true'),
        ]
        if time_min is not None:
            params.append(('timeMin', format_cursor(time_min)))
        params.append(('key', self.api_key))
        return self._build(params)

    def _build(self, params: list) -> str:
        return f"{self.base_url}?{urlencode(params, safe=':')}"
