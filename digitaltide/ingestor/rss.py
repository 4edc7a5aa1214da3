"""RSS/Atom feed fetching with conditional requests and retry."""

import asyncio
from datetime import datetime, timezone
from email.utils import formatdate, parsedate_to_datetime
from typing import Any, Dict, NamedTuple, Optional, Tuple

import feedparser
import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from digitaltide.core.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "DigitalTide/1.0 (news aggregation; RSS reader)"
RETRYABLE_STATUS = (429, 500, 502, 503, 504)
MAX_RETRY_AFTER_SECONDS = 60.0


class FetchResult(NamedTuple):
    """Result of RSS feed fetch operation."""
    status_code: int
    feed: Optional[Any] = None  # feedparser.FeedParserDict
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status_code in (200, 304)

    @property
    def entries(self) -> list:
        return list(self.feed.entries) if self.feed is not None else []


def build_conditional_headers(etag: Optional[str] = None,
                              last_modified: Optional[datetime] = None) -> Dict[str, str]:
    """If-None-Match / If-Modified-Since headers from a previous response."""
    headers = {}
    if etag:
        headers["If-None-Match"] = etag
    if last_modified:
        headers["If-Modified-Since"] = formatdate(last_modified.timestamp(), usegmt=True)
    return headers


def parse_last_modified(header_value: str) -> Optional[datetime]:
    """
    Parse a Last-Modified header into UTC.

    Server dates in the future are clamped to now to absorb clock skew.
    """
    try:
        dt = parsedate_to_datetime(header_value)
    except (ValueError, TypeError, OverflowError) as e:
        logger.warning(f"Failed to parse Last-Modified header '{header_value}': {e}")
        return None

    dt = dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)
    now = datetime.now(timezone.utc)
    if dt > now:
        logger.warning(f"Server Last-Modified is in future ({dt}), clamping to now ({now})")
        dt = now
    return dt


class RSSFetcher:
    """Feed fetcher with conditional caching, bounded concurrency and retry."""

    def __init__(self, timeout: float = 10.0, max_concurrent: int = 8,
                 client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    @staticmethod
    def _response_validators(response: httpx.Response) -> Tuple[Optional[str], Optional[datetime]]:
        etag = response.headers.get("ETag")
        last_modified_header = response.headers.get("Last-Modified")
        last_modified = parse_last_modified(last_modified_header) if last_modified_header else None
        return (etag.strip() if etag else None), last_modified

    @retry(
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4.0),
        retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.TimeoutException, httpx.NetworkError)),
        reraise=True
    )
    async def _get_with_retry(self, url: str, headers: Dict[str, str]) -> httpx.Response:
        """GET with exponential backoff; honours Retry-After on 429."""
        response = await self.client.get(url, headers=headers)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            try:
                wait_time = float(retry_after) if retry_after else 0.0
            except ValueError:
                wait_time = 0.0
            if 0 < wait_time <= MAX_RETRY_AFTER_SECONDS:
                logger.info(f"Rate limited (429) on {url}, waiting {wait_time}s as per Retry-After")
                await asyncio.sleep(wait_time)

        if response.status_code in RETRYABLE_STATUS:
            logger.warning(f"Retryable HTTP {response.status_code} for {url}")
            response.raise_for_status()

        return response

    async def fetch(self, url: str, etag: Optional[str] = None,
                    last_modified: Optional[datetime] = None) -> FetchResult:
        """
        Fetch and parse a feed.

        A 304 answer keeps the previous validators and skips parsing.
        Network and HTTP failures are reported through ``FetchResult.error``.
        """
        async with self.semaphore:
            try:
                logger.info(f"Fetching RSS feed: {url}")
                response = await self._get_with_retry(url, build_conditional_headers(etag, last_modified))
            except httpx.HTTPStatusError as e:
                logger.error(f"HTTP error {e.response.status_code} fetching {url}")
                return FetchResult(status_code=e.response.status_code, error=f"HTTP {e.response.status_code}")
            except httpx.RequestError as e:
                logger.error(f"Request error fetching {url}: {e}")
                return FetchResult(status_code=0, error=f"Request error: {e}")

        if response.status_code == 304:
            logger.info(f"Feed not modified (304): {url}")
            return FetchResult(status_code=304, etag=etag, last_modified=last_modified)

        if response.status_code != 200:
            logger.error(f"HTTP error {response.status_code} for {url}")
            return FetchResult(status_code=response.status_code, error=f"HTTP {response.status_code}")

        new_etag, new_last_modified = self._response_validators(response)
        content = response.text
        if not content.strip():
            logger.warning(f"Empty feed content from {url}")
            return FetchResult(200, None, new_etag, new_last_modified, "Empty feed content")

        feed = feedparser.parse(content)
        if feed.bozo and not feed.entries:
            logger.error(f"Feed parsing error for {url}: {feed.bozo_exception}")
            return FetchResult(200, None, new_etag, new_last_modified, f"Feed parsing error: {feed.bozo_exception}")
        if feed.bozo:
            logger.warning(f"Feed parsing warning for {url}: {feed.bozo_exception}")

        logger.info(f"Successfully parsed {len(feed.entries)} entries from {url}")
        return FetchResult(200, feed, new_etag, new_last_modified)
