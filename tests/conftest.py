"""Shared fixtures for digitaltide tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import pytest

from digitaltide.core.models import Article, SourceProfile
from digitaltide.ingestor.adapters import FetchQuery, SourceAdapter

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_article(title: str, url: Optional[str] = None, content: Optional[str] = None,
                 hours_ago: float = 1.0, credibility: Optional[float] = None, **kwargs) -> Article:
    """Build an Article with sensible defaults."""
    if url is None:
        slug = "-".join(title.lower().split())[:60]
        url = f"https://example.com/news/{slug}"
    return Article(
        title=title,
        url=url,
        domain=kwargs.pop("domain", url.split("/")[2] if url and "://" in url else None),
        content=content,
        published_at=kwargs.pop("published_at", NOW - timedelta(hours=hours_ago)),
        credibility=credibility,
        **kwargs,
    )


def raw_item(title: str, url: str, content: str = "", source: str = "Example",
             published: str = "2024-06-01T10:00:00Z") -> dict:
    """Raw item in the adapter input shape."""
    return {
        "title": title,
        "url": url,
        "content": content,
        "source": {"name": source},
        "publishedAt": published,
    }


class FakeAdapter(SourceAdapter):
    """Adapter returning canned items, optionally slow or failing."""

    def __init__(self, name: str, items: Optional[List[Any]] = None, delay: float = 0.0,
                 error: Optional[Exception] = None):
        self.name = name
        self.items = list(items or [])
        self.delay = delay
        self.error = error
        self.calls: List[FetchQuery] = []
        self.closed = False

    async def fetch(self, query: FetchQuery) -> List[Any]:
        self.calls.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.items)

    async def aclose(self) -> None:
        self.closed = True


def make_profile(name: str, domain: Optional[str] = None, **kwargs) -> SourceProfile:
    return SourceProfile(name=name, domain=domain or f"{name}.com", **kwargs)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def article_factory():
    return make_article
