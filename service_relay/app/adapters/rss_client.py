"""
RSS source client for the fetch proxy.
"""

from typing import Optional

import httpx

from shared.logging import get_logger
from shared.errors import FetchFailedError
from ..caching.feed_cache import Content, XML_CONTENT_TYPE


DEFAULT_HEADERS = {
    "User-Agent": "NewsRelay/1.0 (+rss proxy)",
    "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml, */*",
}


class RssSourceClient:
    """Fetches raw RSS/Atom documents over HTTP."""

    def __init__(self, timeout: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport
        self.logger = get_logger("relay.rss_client")

    async def fetch(self, url: str) -> Content:
        """Perform a single GET; any non-2xx status or transport error is a FetchFailedError."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers=DEFAULT_HEADERS,
                transport=self.transport,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            self.logger.error("RSS transport error", url=url, error=str(exc))
            raise FetchFailedError(
                service="rss_source",
                message=str(exc) or type(exc).__name__,
                details={"url": url},
            )

        if not response.is_success:
            self.logger.error(
                "RSS source returned error status",
                url=url,
                status_code=response.status_code,
            )
            raise FetchFailedError(
                service="rss_source",
                message=f"HTTP error! status: {response.status_code}",
                upstream_status=response.status_code,
                details={"url": url},
            )

        self.logger.debug("RSS document retrieved", url=url, size=len(response.content))
        return Content(payload=response.text, content_type=XML_CONTENT_TYPE)
