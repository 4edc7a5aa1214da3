"""Core records shared by the aggregation engines."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .time import parse_datetime
from .utils import normalize_url, sha1_hex

# Completeness saturation points
TITLE_FULL_LENGTH = 60
CONTENT_FULL_LENGTH = 500


def compute_fingerprint(url: Optional[str], title: Optional[str] = None,
                        domain: Optional[str] = None) -> str:
    """
    Stable dedup key for an article.

    SHA1 of the normalized URL, or of ``title||domain`` when there is no URL.
    """
    normalized = normalize_url(url)
    if normalized:
        return sha1_hex(normalized)
    return sha1_hex(f"{(title or '').strip().lower()}||{(domain or '').lower()}")


@dataclass
class Article:
    """Canonical ingested article. ``fingerprint`` is fixed once assigned."""
    title: str
    url: Optional[str]
    domain: Optional[str] = None
    content: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    image: Optional[str] = None
    source_name: Optional[str] = None
    source_ref: Optional[str] = None
    source_credibility: Optional[float] = None
    fingerprint: str = ""
    # Computed downstream
    credibility: Optional[float] = None
    credibility_tier: Optional[Any] = None
    duplicate_count: int = 0
    trending_keywords: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.fingerprint:
            self.fingerprint = compute_fingerprint(self.url, self.title, self.domain)

    def __setattr__(self, name, value):
        if name == "fingerprint" and getattr(self, "fingerprint", "") and value != self.fingerprint:
            raise AttributeError("Article fingerprint is immutable once assigned")
        super().__setattr__(name, value)

    def completeness(self) -> float:
        """Completeness signal in [0, 1] from length and presence of fields."""
        signals = [
            min(len(self.title or "") / TITLE_FULL_LENGTH, 1.0),
            min(len(self.content or "") / CONTENT_FULL_LENGTH, 1.0),
            1.0 if self.author else 0.0,
            1.0 if self.image else 0.0,
            1.0 if self.published_at else 0.0,
        ]
        return sum(signals) / len(signals)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'fingerprint': self.fingerprint,
            'title': self.title,
            'url': self.url,
            'domain': self.domain,
            'content': self.content,
            'author': self.author,
            'published_at': self.published_at.isoformat() if self.published_at else None,
            'image': self.image,
            'source': {'name': self.source_name, 'credibility': self.source_credibility},
            'source_ref': self.source_ref,
            'credibility': self.credibility,
            'credibility_tier': self.credibility_tier,
            'duplicate_count': self.duplicate_count,
            'trending_keywords': list(self.trending_keywords),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Article":
        """Rebuild an article produced by ``to_dict``."""
        source = data.get('source') or {}
        return cls(
            title=data['title'],
            url=data.get('url'),
            domain=data.get('domain'),
            content=data.get('content'),
            author=data.get('author'),
            published_at=parse_datetime(data.get('published_at')),
            image=data.get('image'),
            source_name=source.get('name'),
            source_ref=data.get('source_ref'),
            source_credibility=source.get('credibility'),
            fingerprint=data.get('fingerprint') or "",
            credibility=data.get('credibility'),
            credibility_tier=data.get('credibility_tier'),
            duplicate_count=data.get('duplicate_count', 0),
            trending_keywords=list(data.get('trending_keywords') or []),
        )


@dataclass
class Reputation:
    """Rolling per-source statistics, updated after every fetch attempt."""
    success_rate: float = 1.0
    avg_response_time: float = 0.0  # milliseconds
    avg_article_quality: float = 0.5
    consecutive_failures: int = 0
    total_requests: int = 0
    total_failures: int = 0
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'success_rate': self.success_rate,
            'avg_response_time': self.avg_response_time,
            'avg_article_quality': self.avg_article_quality,
            'consecutive_failures': self.consecutive_failures,
            'total_requests': self.total_requests,
            'total_failures': self.total_failures,
            'last_success': self.last_success.isoformat() if self.last_success else None,
            'last_failure': self.last_failure.isoformat() if self.last_failure else None,
        }


@dataclass
class SourceProfile:
    """Per-source configuration plus its mutable reputation."""
    name: str
    domain: str
    type: str = "rss"  # 'rss' | 'api'
    base_credibility: float = 0.5
    tier: Any = "unknown"
    quota_limit: Optional[int] = None
    cost_per_request: float = 0.0
    categories: List[str] = field(default_factory=list)
    countries: List[str] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)
    enabled: bool = True
    reputation: Reputation = field(default_factory=Reputation)
    requests_used: int = 0

    def quota_remaining(self) -> Optional[int]:
        if self.quota_limit is None:
            return None
        return max(0, self.quota_limit - self.requests_used)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'name': self.name,
            'domain': self.domain,
            'type': self.type,
            'base_credibility': self.base_credibility,
            'tier': self.tier,
            'quota_limit': self.quota_limit,
            'quota_remaining': self.quota_remaining(),
            'cost_per_request': self.cost_per_request,
            'categories': list(self.categories),
            'countries': list(self.countries),
            'languages': list(self.languages),
            'enabled': self.enabled,
            'requests_used': self.requests_used,
            'reputation': self.reputation.to_dict(),
        }
