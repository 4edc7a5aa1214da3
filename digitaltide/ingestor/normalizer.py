"""Raw article normalization helpers.

This module is the single ingestion boundary: RSS/Atom entries and JSON news
API items are validated here and turned into ``Article`` records. Everything
downstream relies on the required fields (title, url) being present.
"""

import re
from typing import Any, Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup

from digitaltide.core.logging import get_logger
from digitaltide.core.models import Article
from digitaltide.core.time import parse_datetime
from digitaltide.core.utils import extract_domain, normalize_url, validate_url

logger = get_logger(__name__)

__all__ = ["clean_text", "normalize_article", "normalize_batch", "normalize_url"]


def clean_text(html_or_text: Optional[str]) -> str:
    """
    Clean HTML/text content by stripping script/style tags, handling entities, and normalizing whitespace.

    Args:
        html_or_text: Raw HTML or text content

    Returns:
        Cleaned text with normalized whitespace
    """
    if not html_or_text:
        return ""

    soup = BeautifulSoup(str(html_or_text), "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()

    return re.sub(r"\s+", " ", soup.get_text()).strip()


def _get_field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a mapping or an attribute-style entry (feedparser)."""
    if hasattr(obj, "get"):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value


def _first_text(value: Any) -> str:
    """Extract text from plain strings or Atom-style content arrays."""
    if isinstance(value, list):
        if not value:
            return ""
        head = value[0]
        value = _get_field(head, "value", "") if not isinstance(head, str) else head
    return clean_text(str(value)) if value else ""


def _extract_image(entry: Any) -> Optional[str]:
    for key in ("image", "urlToImage", "image_url"):
        value = _get_field(entry, key)
        if isinstance(value, str) and value:
            return value
        if value and hasattr(value, "get") and value.get("href"):
            return value.get("href")

    for key in ("media_content", "media_thumbnail"):
        media = _get_field(entry, key) or []
        for item in media:
            url = _get_field(item, "url")
            if url:
                return url

    for enclosure in _get_field(entry, "enclosures") or []:
        if str(_get_field(enclosure, "type", "")).startswith("image") and _get_field(enclosure, "href"):
            return _get_field(enclosure, "href")
    return None


def _extract_source(entry: Any) -> Tuple[Optional[str], Optional[float]]:
    source = _get_field(entry, "source")
    if isinstance(source, str):
        return source or None, None
    if source is None:
        return None, None
    name = _get_field(source, "name") or _get_field(source, "title")
    credibility = _get_field(source, "credibility")
    try:
        credibility = float(credibility) if credibility is not None else None
    except (TypeError, ValueError):
        credibility = None
    return name, credibility


def normalize_article(entry: Any, source_ref: Optional[str] = None,
                      source_name: Optional[str] = None,
                      source_credibility: Optional[float] = None) -> Optional[Article]:
    """
    Normalize a raw article into an ``Article``.

    Accepted shapes:
        - ``{title, url, content?, description?, source: {name, credibility?},
          publishedAt | published_at, image?, author?}``
        - feedparser entries (``link``, ``summary``, ``content``, ``published``...)

    Args:
        entry: Raw item from a fetch adapter
        source_ref: Name of the registered source that produced the item
        source_name: Fallback source name when the item carries none
        source_credibility: Fallback source credibility

    Returns:
        Article, or None when the title or a usable URL is missing.
    """
    if entry is None:
        return None

    title = clean_text(_get_field(entry, "title", ""))
    raw_url = _get_field(entry, "url") or _get_field(entry, "link")
    if not title or not isinstance(raw_url, str) or not validate_url(raw_url):
        logger.debug(f"Dropping malformed article (title={title[:40]!r}, url={raw_url!r})")
        return None

    url = normalize_url(raw_url)

    content = ""
    for key in ("content", "description", "summary", "subtitle"):
        content = _first_text(_get_field(entry, key))
        if content:
            break

    published_raw = None
    for key in ("publishedAt", "published_at", "published", "updated", "pubDate",
                "published_parsed", "updated_parsed"):
        published_raw = _get_field(entry, key)
        if published_raw:
            break

    name, credibility = _extract_source(entry)
    author = _get_field(entry, "author")
    author = clean_text(author) if isinstance(author, str) else None

    return Article(
        title=title,
        url=url,
        domain=extract_domain(url),
        content=content or None,
        author=author or None,
        published_at=parse_datetime(published_raw),
        image=_extract_image(entry),
        source_name=name or source_name or source_ref,
        source_ref=source_ref,
        source_credibility=credibility if credibility is not None else source_credibility,
    )


def normalize_batch(entries: Iterable[Any], source_ref: Optional[str] = None,
                    source_name: Optional[str] = None,
                    source_credibility: Optional[float] = None) -> Tuple[List[Article], int]:
    """
    Normalize many raw items.

    Returns:
        Tuple of (articles, malformed_count)
    """
    articles: List[Article] = []
    malformed = 0
    for entry in entries:
        article = normalize_article(entry, source_ref, source_name, source_credibility)
        if article is None:
            malformed += 1
        else:
            articles.append(article)

    if malformed:
        logger.info(f"Normalized {len(articles)} articles from {source_ref or 'unknown source'}, dropped {malformed}")
    return articles, malformed
