"""Outbound HTTP fetching with MIME-type classification."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config.models import DEFAULT_USER_AGENT
from ..errors import FetchError
from ..result import Err, Ok, Result

logger = logging.getLogger(__name__)

HTML_ACCEPT = "text/html,application/xhtml+xml"
FEED_ACCEPT = (
    "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"
)


def classify_mime_type(content_type: Optional[str]) -> Optional[str]:
    """Reduce a Content-Type header to its lower-cased media type."""
    if content_type is None:
        return None
    return content_type.split(";", 1)[0].strip().lower()


def is_html_mime_type(mime_type: Optional[str]) -> bool:
    """Only ``text/html`` is treated as parseable HTML."""
    return mime_type == "text/html"


@dataclass(frozen=True)
class FetchedPage:
    """Body and classification of a successful response."""

    url: str
    status_code: int
    mime_type: Optional[str]
    content: bytes
    encoding: Optional[str] = None

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")

    @property
    def is_html(self) -> bool:
        return is_html_mime_type(self.mime_type)


class HttpFetcher:
    """Fetch URLs with a configured User-Agent and timeout."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 10.0,
    ) -> None:
        """Initialize fetcher; ``client`` is owned by the caller when given."""
        self.user_agent = user_agent
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        """Close the underlying client if this fetcher created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(
        self,
        url: str,
        accept: str = HTML_ACCEPT,
        timeout: Optional[float] = None,
    ) -> Result[FetchedPage, FetchError]:
        """GET a URL; network failures and non-2xx responses become ``FetchError``."""
        headers = {
            "User-Agent": self.user_agent,
            "Accept": accept,
        }

        try:
            response = await self.client.get(
                url,
                headers=headers,
                timeout=timeout or self.timeout,
                follow_redirects=True,
            )
        except httpx.TimeoutException:
            return Err(FetchError(url, "Request timed out"))
        except httpx.HTTPError as e:
            return Err(FetchError(url, f"HTTP error: {e}"))
        except (httpx.InvalidURL, ValueError) as e:
            return Err(FetchError(url, f"Invalid URL: {e}"))

        if not response.is_success:
            status = response.status_code
            if status == 404:
                message = "Not found (404)"
            elif status == 403:
                message = "Access forbidden (403)"
            elif status >= 500:
                message = f"Server error ({status})"
            else:
                message = f"HTTP {status}"
            return Err(FetchError(url, message, status_code=status))

        return Ok(
            FetchedPage(
                url=str(response.url),
                status_code=response.status_code,
                mime_type=classify_mime_type(response.headers.get("content-type")),
                content=response.content,
                encoding=response.encoding,
            )
        )
