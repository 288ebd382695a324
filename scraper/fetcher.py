# scraper/fetcher.py
import os

import httpx
from dotenv import load_dotenv

from .errors import ExtractionFailure, NavigationError, RateLimitedError, message_is_retryable

load_dotenv()
HTTP_TIMEOUT = float(os.getenv("SCRAPER_HTTP_TIMEOUT", "10"))


class HttpFetcher:
    """Capability: fetch a URL over HTTP with the given headers."""

    def __init__(self, timeout=HTTP_TIMEOUT, client=None):
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def close(self):
        await self.client.aclose()

    async def fetch(self, url, headers):
        """
        GET a page and return its body.

        Errors are classified here, from the exception type and httpx's own
        message, never from text that contains the URL.

        Args:
            url (str): Page URL
            headers (dict): Request headers from the platform configuration

        Returns:
            str: Response text

        Raises:
            RateLimitedError: On HTTP 429
            NavigationError: On connect/read timeouts (retryable) and other
                transport failures (retryable only if httpx reports a timeout)
            ExtractionFailure: On any other non-2xx status
        """
        try:
            resp = await self.client.get(url, headers=headers, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise NavigationError(
                f"Request timeout after {self.timeout}s: {url}", retryable=True
            ) from e
        except httpx.TransportError as e:
            raise NavigationError(
                f"Request to {url} failed: {e}", retryable=message_is_retryable(e)
            ) from e
        if resp.status_code == 429:
            raise RateLimitedError("HTTP 429: Too Many Requests")
        if resp.is_error:
            raise ExtractionFailure(
                f"HTTP {resp.status_code}: {resp.reason_phrase}", retryable=False
            )
        return resp.text
