"""HTTP client for the remote feeds."""
import logging
import time
from typing import Any, Dict, Optional

import requests

from sync.errors import MalformedResponse, TransportFailure

logger = logging.getLogger(__name__)


class FeedClient:
    """Fetches JSON documents from the post feed, calendar and tag list."""

    def __init__(
        self,
        timeout: int = 30,
        max_retries: int = 3,
        base_delay: float = 1,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the feed client.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per request before giving up (default: 3)
            base_delay: First backoff delay in seconds, doubled per attempt
            session: Optional requests session to reuse connections
        """
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.session = session or requests.Session()

    def fetch_json(self, url: str) -> Dict[str, Any]:
        """
        Fetch a URL and decode its body as a JSON object.

        Args:
            url: Fully built request URL

        Returns:
            Decoded JSON object

        Raises:
            TransportFailure: If all retry attempts fail
            MalformedResponse: If the body is not a JSON object
        """
        response = self._get(url)

        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponse(f"Response from {url} is not JSON: {e}") from e

        if not isinstance(payload, dict):
            raise MalformedResponse(
                f"Response from {url} is a {type(payload).__name__}, not an object"
            )
        return payload

    def fetch_text(self, url: str) -> str:
        """
        Fetch a URL and return its body as text.

        Raises:
            TransportFailure: If all retry attempts fail
        """
        return self._get(url).text

    def _get(self, url: str) -> requests.Response:
        """
        Issue a GET request with retry logic.

        Raises:
            TransportFailure: If all retry attempts fail
        """
        for attempt in range(self.max_retries):
            try:
                logger.debug(
                    f"GET {url} (attempt {attempt + 1}/{self.max_retries})"
                )
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    # Calculate exponential backoff delay
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise TransportFailure(str(e)) from e
