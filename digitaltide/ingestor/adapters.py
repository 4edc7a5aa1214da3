"""
Fetch adapters.

An adapter turns one configured source into a list of raw article items for
the aggregator. Adapters raise ``SourceError`` subclasses on failure; the
aggregator isolates and records them per source.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from digitaltide.core.errors import MalformedResponseError, QuotaExceededError, SourceError, SourceTimeoutError
from digitaltide.core.logging import get_logger
from digitaltide.ingestor.normalizer import clean_text
from digitaltide.ingestor.rss import USER_AGENT, RSSFetcher

logger = get_logger(__name__)

QUOTA_ERROR_CODES = {"rateLimited", "apiKeyExhausted", "maximumResultsReached"}


@dataclass
class FetchQuery:
    """Options forwarded from an aggregation request to every adapter."""
    query: Optional[str] = None
    category: Optional[str] = None
    country: Optional[str] = None
    language: Optional[str] = None
    limit: int = 50


class SourceAdapter(ABC):
    """Base class for source adapters."""

    name: str = "adapter"

    @abstractmethod
    async def fetch(self, query: FetchQuery) -> List[Any]:
        """Return raw article items for ``query``."""

    async def aclose(self) -> None:
        """Release network resources."""


def matches_query(item: Any, query: Optional[str]) -> bool:
    """Case-insensitive match of every query term against title and summary."""
    if not query:
        return True
    getter = item.get if hasattr(item, "get") else lambda k, d=None: getattr(item, k, d)
    text = clean_text(f"{getter('title', '') or ''} {getter('summary', '') or getter('description', '') or ''}").lower()
    return all(term in text for term in query.lower().split())


class RSSAdapter(SourceAdapter):
    """Fetches a set of feeds and filters entries locally by query."""

    def __init__(self, name: str, feeds: List[str], fetcher: Optional[RSSFetcher] = None):
        self.name = name
        self.feeds = list(feeds)
        self.fetcher = fetcher or RSSFetcher()
        self._owns_fetcher = fetcher is None
        # feed url -> (etag, last_modified)
        self._validators: Dict[str, Tuple[Optional[str], Optional[datetime]]] = {}

    async def _fetch_feed(self, url: str) -> List[Any]:
        etag, last_modified = self._validators.get(url, (None, None))
        result = await self.fetcher.fetch(url, etag=etag, last_modified=last_modified)
        if not result.ok:
            raise SourceError(f"{url}: {result.error}", source=self.name)
        if result.status_code == 200:
            self._validators[url] = (result.etag, result.last_modified)
        return result.entries

    async def fetch(self, query: FetchQuery) -> List[Any]:
        results = await asyncio.gather(*(self._fetch_feed(url) for url in self.feeds), return_exceptions=True)

        entries: List[Any] = []
        errors = []
        for url, result in zip(self.feeds, results):
            if isinstance(result, Exception):
                logger.warning(f"Feed {url} failed for source {self.name}: {result}")
                errors.append(str(result))
                continue
            entries.extend(result)

        if errors and len(errors) == len(self.feeds):
            raise SourceError(f"All feeds failed: {'; '.join(errors)}", source=self.name)

        matched = [entry for entry in entries if matches_query(entry, query.query)]
        return matched[:query.limit] if query.limit else matched

    async def aclose(self) -> None:
        if self._owns_fetcher:
            await self.fetcher.aclose()


class NewsAPIAdapter(SourceAdapter):
    """
    Client for NewsAPI-style JSON endpoints.

    ``/everything`` is used for free-text queries, ``/top-headlines`` for
    category/country browsing. Quota exhaustion surfaces as
    ``QuotaExceededError`` and unusable payloads as ``MalformedResponseError``.
    """

    def __init__(self, name: str, api_key: str, base_url: str = "https://newsapi.org/v2",
                 timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.name = name
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )

    def _build_request(self, query: FetchQuery) -> Tuple[str, Dict[str, Any]]:
        params: Dict[str, Any] = {"pageSize": min(max(query.limit, 1), 100)}
        if query.query:
            endpoint = "everything"
            params["q"] = query.query
            params["sortBy"] = "publishedAt"
            if query.language:
                params["language"] = query.language
        else:
            endpoint = "top-headlines"
            if query.category:
                params["category"] = query.category
            params["country"] = query.country or "us"
        return f"{self.base_url}/{endpoint}", params

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4.0),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True
    )
    async def _get(self, url: str, params: Dict[str, Any]) -> httpx.Response:
        return await self.client.get(url, params=params, headers={"X-Api-Key": self.api_key})

    async def fetch(self, query: FetchQuery) -> List[Any]:
        url, params = self._build_request(query)
        try:
            response = await self._get(url, params)
        except httpx.TimeoutException as e:
            raise SourceTimeoutError(f"Request timed out: {e}", source=self.name) from e
        except httpx.RequestError as e:
            raise SourceError(f"Request error: {e}", source=self.name) from e

        if response.status_code == 429:
            raise QuotaExceededError("Rate limited by provider (429)", source=self.name)

        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON (HTTP {response.status_code})", source=self.name) from e

        if not isinstance(payload, dict):
            raise MalformedResponseError("Unexpected payload type", source=self.name)

        if payload.get("status") == "error":
            code = payload.get("code", "")
            message = payload.get("message", "provider error")
            if code in QUOTA_ERROR_CODES:
                raise QuotaExceededError(f"{code}: {message}", source=self.name)
            raise SourceError(f"{code}: {message}", source=self.name)

        if response.status_code >= 400:
            raise SourceError(f"HTTP {response.status_code}", source=self.name)

        articles = payload.get("articles")
        if not isinstance(articles, list):
            raise MalformedResponseError("Response has no 'articles' list", source=self.name)

        logger.debug(f"{self.name} returned {len(articles)} articles")
        return articles[:query.limit] if query.limit else articles

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
