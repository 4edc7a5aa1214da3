"""
Source credibility scoring.

Sources are bucketed into tiers by an exact-domain lookup, then refined by
rolling historical performance and the completeness of recently supplied
articles. The final score is always clamped into the band of its tier:

- 0.90-1.00: Tier 1 premium sources
- 0.70-0.89: Tier 2 reliable sources
- 0.50-0.69: Tier 3 supplementary sources
- 0.00-0.49: blocked sources
- unknown sources start neutral at 0.5 and never reach Tier 2 territory
"""

import math
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from digitaltide.core.logging import get_logger
from digitaltide.core.models import Article
from digitaltide.core.settings import get_settings
from digitaltide.core.time import parse_datetime, utc_now
from digitaltide.core.utils import extract_domain

logger = get_logger(__name__)

# Tier membership (exact domains, ``www.`` stripped)
TIER1_DOMAINS = frozenset({
    # Wire services
    'reuters.com', 'apnews.com', 'ap.org', 'bbc.com', 'bbc.co.uk',
    # International news
    'nytimes.com', 'washingtonpost.com', 'wsj.com', 'ft.com', 'economist.com',
    'theguardian.com',
    # Academic / scientific
    'nature.com', 'sciencemag.org', 'thelancet.com', 'nejm.org', 'science.org',
    # Government / official
    'gov.uk', 'whitehouse.gov', 'who.int', 'cdc.gov', 'nasa.gov',
})

TIER2_DOMAINS = frozenset({
    'techcrunch.com', 'theverge.com', 'arstechnica.com', 'wired.com', 'cnet.com',
    'npr.org', 'pbs.org', 'cbc.ca', 'aljazeera.com', 'dw.com',
    'bloomberg.com', 'forbes.com', 'businessinsider.com', 'cnbc.com',
    'technologyreview.com', 'scientificamerican.com', 'newscientist.com',
})

TIER3_DOMAINS = frozenset({
    'medium.com', 'substack.com', 'reddit.com', 'twitter.com', 'linkedin.com',
    'youtube.com',
})

BLOCKED_DOMAINS = frozenset({
    'theonion.com', 'clickhole.com', 'infowars.com', 'naturalnews.com',
})

# Factor weights (sum to 1)
SOURCE_REPUTATION_WEIGHT = 0.60
HISTORICAL_WEIGHT = 0.25
CONTENT_QUALITY_WEIGHT = 0.15

MIN_ARTICLES_FOR_HISTORY = 5
PERFORMANCE_WINDOW = timedelta(days=30)
CONFIDENCE_SATURATION = 20.0  # records at which confidence is ~63% of the way to its cap


@dataclass(frozen=True)
class TierConfig:
    """Base score, score band and confidence curve for a tier."""
    base_score: float
    band: Tuple[float, float]
    base_confidence: float
    max_confidence: float


TIER_CONFIG: Dict[Any, TierConfig] = {
    1: TierConfig(0.95, (0.90, 1.00), 0.90, 0.99),
    2: TierConfig(0.80, (0.70, 0.88), 0.87, 0.97),
    3: TierConfig(0.60, (0.50, 0.68), 0.85, 0.95),
    'unknown': TierConfig(0.50, (0.00, 0.69), 0.30, 0.84),
    'blocked': TierConfig(0.00, (0.00, 0.49), 0.95, 1.00),
}

TIER_ORDER = {1: 0, 2: 1, 3: 2, 'unknown': 3, 'blocked': 4}


@dataclass
class SourceDescriptor:
    """What the scorer needs to know about a source."""
    domain: Optional[str] = None
    url: Optional[str] = None
    name: Optional[str] = None
    recent_articles: List[Any] = field(default_factory=list)
    # Caller-held performance summary: article_count, success_rate, avg_quality,
    # fact_check_score, error_rate
    historical_data: Optional[Mapping[str, Any]] = None

    @classmethod
    def coerce(cls, value: Union["SourceDescriptor", Mapping[str, Any]]) -> "SourceDescriptor":
        if isinstance(value, cls):
            return value
        return cls(
            domain=value.get('domain'),
            url=value.get('url'),
            name=value.get('name'),
            recent_articles=list(value.get('recent_articles') or value.get('recentArticles') or []),
            historical_data=value.get('historical_data') or value.get('historicalData'),
        )


@dataclass
class CredibilityResult:
    """Credibility assessment for one source."""
    score: float
    tier: Any
    confidence: float
    factors: Dict[str, float]
    metadata: Dict[str, Any]
    domain: str = ""
    name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'score': self.score,
            'tier': self.tier,
            'confidence': self.confidence,
            'factors': dict(self.factors),
            'metadata': dict(self.metadata),
            'domain': self.domain,
            'name': self.name,
        }


@dataclass
class HistoryRecord:
    timestamp: datetime
    quality: float
    success: bool


@dataclass
class DomainHistory:
    domain: str
    records: Deque[HistoryRecord]
    total_articles: int = 0
    successful_articles: int = 0
    failed_articles: int = 0


def _record_quality(article: Any) -> float:
    """Content completeness of an Article or raw article mapping."""
    if isinstance(article, Article):
        return article.completeness()
    if not isinstance(article, Mapping):
        return 0.0
    title = article.get('title') or ''
    content = article.get('content') or article.get('description') or ''
    signals = [
        min(len(title) / 60, 1.0),
        min(len(content) / 500, 1.0),
        1.0 if article.get('author') else 0.0,
        1.0 if article.get('image') or article.get('urlToImage') else 0.0,
        1.0 if article.get('published_at') or article.get('publishedAt') else 0.0,
    ]
    return sum(signals) / len(signals)


class CredibilityScorer:
    """Tiered, confidence-weighted source trust model with rolling history."""

    def __init__(self, max_history_per_domain: Optional[int] = None,
                 performance_window: timedelta = PERFORMANCE_WINDOW,
                 min_articles_for_history: int = MIN_ARTICLES_FOR_HISTORY):
        settings = get_settings()
        self.max_history_per_domain = max_history_per_domain or settings.credibility_history_size
        self.performance_window = performance_window
        self.min_articles_for_history = min_articles_for_history

        self._history: Dict[str, DomainHistory] = {}
        self._lock = threading.Lock()
        self.stats = {
            'evaluations_performed': 0,
            'tier1_count': 0,
            'tier2_count': 0,
            'tier3_count': 0,
            'unknown_count': 0,
            'blocked_count': 0,
        }

    # --- Classification ---

    @staticmethod
    def normalize_domain(domain: Optional[str]) -> str:
        domain = (domain or '').strip().lower().rstrip('.')
        if domain.startswith('www.'):
            domain = domain[4:]
        return domain

    def classify_domain(self, domain: Optional[str]) -> Any:
        """Exact-domain tier lookup: 1, 2, 3, 'blocked' or 'unknown'."""
        domain = self.normalize_domain(domain)
        if domain in BLOCKED_DOMAINS:
            return 'blocked'
        if domain in TIER1_DOMAINS:
            return 1
        if domain in TIER2_DOMAINS:
            return 2
        if domain in TIER3_DOMAINS:
            return 3
        return 'unknown'

    # --- Factors ---

    def _historical_score(self, history: Optional[DomainHistory], base: float) -> Tuple[float, bool]:
        if history is None or len(history.records) < self.min_articles_for_history:
            return base, False
        records = history.records
        success_rate = sum(1 for r in records if r.success) / len(records)
        avg_quality = sum(r.quality for r in records) / len(records)
        return max(0.0, min(1.0, success_rate * 0.6 + avg_quality * 0.4)), True

    def _supplied_history_score(self, data: Optional[Mapping[str, Any]]) -> Optional[float]:
        """Score a caller-held history summary, or None when it is too thin to use."""
        if not data:
            return None
        try:
            count = int(data.get('article_count', data.get('articleCount', 0)) or 0)
            success_rate = float(data.get('success_rate', data.get('successRate', 1.0)))
            avg_quality = float(data.get('avg_quality', data.get('avgQuality', 0.5)))
            fact_check = float(data.get('fact_check_score', data.get('factCheckScore', 0.5)))
            error_rate = float(data.get('error_rate', data.get('errorRate', 0.0)))
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed historical data: {e}")
            return None
        if count < self.min_articles_for_history:
            return None
        score = success_rate * 0.4 + avg_quality * 0.3 + fact_check * 0.2 + (1 - error_rate) * 0.1
        return max(0.0, min(1.0, score))

    @staticmethod
    def _content_quality_score(recent_articles: List[Any], base: float) -> float:
        if not recent_articles:
            return base
        # Most recent first; earlier positions weigh more
        n = len(recent_articles)
        weights = [(n - i) / n for i in range(n)]
        scores = [_record_quality(a) for a in recent_articles]
        return sum(s * w for s, w in zip(scores, weights)) / sum(weights)

    @staticmethod
    def _confidence(tier: Any, data_points: int) -> float:
        config = TIER_CONFIG[tier]
        growth = 1 - math.exp(-data_points / CONFIDENCE_SATURATION)
        confidence = config.base_confidence + (config.max_confidence - config.base_confidence) * growth
        return round(min(confidence, config.max_confidence), 3)

    # --- Public API ---

    def calculate_credibility(self, descriptor: Union[SourceDescriptor, Mapping[str, Any]]) -> CredibilityResult:
        """
        Score a source.

        Args:
            descriptor: SourceDescriptor or mapping with ``domain``, ``url``,
                ``name`` and optional ``recent_articles``.

        Returns:
            CredibilityResult. Deterministic for a given history state.
        """
        descriptor = SourceDescriptor.coerce(descriptor)
        domain = self.normalize_domain(descriptor.domain or extract_domain(descriptor.url) or '')
        tier = self.classify_domain(domain)
        config = TIER_CONFIG[tier]

        with self._lock:
            history = self._history.get(domain)
            history_size = len(history.records) if history else 0
            historical, _ = self._historical_score(history, config.base_score)

        supplied = self._supplied_history_score(descriptor.historical_data)
        if supplied is not None:
            historical = supplied

        content_quality = self._content_quality_score(descriptor.recent_articles, config.base_score)

        raw = (config.base_score * SOURCE_REPUTATION_WEIGHT
               + historical * HISTORICAL_WEIGHT
               + content_quality * CONTENT_QUALITY_WEIGHT)
        low, high = config.band
        score = round(max(low, min(high, raw)), 2)

        self.stats['evaluations_performed'] += 1
        self.stats[f"{tier}_count" if isinstance(tier, str) else f"tier{tier}_count"] += 1

        return CredibilityResult(
            score=score,
            tier=tier,
            confidence=self._confidence(tier, history_size + len(descriptor.recent_articles)),
            factors={
                'source_reputation': round(config.base_score, 2),
                'historical_performance': round(historical, 2),
                'content_quality': round(content_quality, 2),
            },
            metadata={
                'has_historical_data': history_size > 0 or supplied is not None,
                'articles_analyzed': len(descriptor.recent_articles),
                'history_size': history_size,
                'timestamp': utc_now().isoformat(),
            },
            domain=domain,
            name=descriptor.name or domain,
        )

    def batch_evaluate(self, sources: Iterable[Union[SourceDescriptor, Mapping[str, Any]]]) -> List[CredibilityResult]:
        """Evaluate many sources, preserving input order."""
        return [self.calculate_credibility(source) for source in sources]

    @staticmethod
    def sort_by_credibility(results: Iterable[CredibilityResult]) -> List[CredibilityResult]:
        """Order by tier (1, 2, 3, unknown, blocked) then score descending."""
        return sorted(results, key=lambda r: (TIER_ORDER.get(r.tier, 99), -r.score))

    def get_credibility_for_url(self, url: Optional[str]) -> CredibilityResult:
        """Score the source behind ``url``; malformed URLs are scored as unknown."""
        domain = extract_domain(url)
        if domain is None:
            logger.debug(f"Could not extract domain from url {url!r}")
        return self.calculate_credibility(SourceDescriptor(domain=domain or '', url=url))

    def update_source_history(self, record: Union[Article, Mapping[str, Any]]) -> bool:
        """
        Append one observation to the domain's rolling history.

        ``record`` is an Article or a mapping carrying ``url``/``domain`` and
        optionally ``quality`` and ``success``. Returns False when no domain
        can be determined.
        """
        if isinstance(record, Article):
            domain = record.domain or extract_domain(record.url)
            quality = record.completeness()
            success = True
            timestamp = utc_now()
        else:
            domain = record.get('domain') or extract_domain(record.get('url'))
            quality = record.get('quality')
            if quality is None:
                quality = _record_quality(record)
            success = record.get('success', True) is not False
            timestamp = parse_datetime(record.get('timestamp')) or utc_now()

        domain = self.normalize_domain(domain)
        if not domain:
            return False

        cutoff = utc_now() - self.performance_window
        with self._lock:
            history = self._history.get(domain)
            if history is None:
                history = DomainHistory(domain=domain, records=deque(maxlen=self.max_history_per_domain))
                self._history[domain] = history
            history.records.append(HistoryRecord(timestamp, max(0.0, min(1.0, float(quality))), success))
            history.total_articles += 1
            if success:
                history.successful_articles += 1
            else:
                history.failed_articles += 1
            while history.records and history.records[0].timestamp < cutoff:
                history.records.popleft()
        return True

    def history_size(self) -> int:
        """Total number of history records across all domains."""
        with self._lock:
            return sum(len(h.records) for h in self._history.values())

    def export_history(self) -> List[Dict[str, Any]]:
        """Snapshot the domain history store as plain data."""
        with self._lock:
            return [
                {
                    'domain': h.domain,
                    'total_articles': h.total_articles,
                    'successful_articles': h.successful_articles,
                    'failed_articles': h.failed_articles,
                    'records': [
                        {'timestamp': r.timestamp.isoformat(), 'quality': r.quality, 'success': r.success}
                        for r in h.records
                    ],
                }
                for h in self._history.values()
            ]

    def import_history(self, data: Iterable[Any]) -> int:
        """
        Restore a snapshot produced by ``export_history``.

        Malformed domain entries and records are skipped. Returns the number
        of records restored.
        """
        restored = 0
        for entry in data or []:
            if not isinstance(entry, Mapping) or not isinstance(entry.get('domain'), str) or not entry['domain']:
                logger.warning(f"Skipping malformed history entry: {entry!r}")
                continue
            records: Deque[HistoryRecord] = deque(maxlen=self.max_history_per_domain)
            for raw in entry.get('records') or []:
                try:
                    timestamp = parse_datetime(raw['timestamp'])
                    if timestamp is None:
                        raise ValueError("unparseable timestamp")
                    records.append(HistoryRecord(timestamp, float(raw['quality']), bool(raw.get('success', True))))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed history record for {entry['domain']}: {e}")
            if not records:
                continue
            domain = self.normalize_domain(entry['domain'])
            with self._lock:
                self._history[domain] = DomainHistory(
                    domain=domain,
                    records=records,
                    total_articles=int(entry.get('total_articles') or len(records)),
                    successful_articles=int(entry.get('successful_articles') or 0),
                    failed_articles=int(entry.get('failed_articles') or 0),
                )
            restored += len(records)
        logger.info(f"Imported {restored} credibility history records")
        return restored

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            tracked = len(self._history)
        return {
            **self.stats,
            'sources_tracked': tracked,
            'history_size': self.history_size(),
            'tier1_sources': len(TIER1_DOMAINS),
            'tier2_sources': len(TIER2_DOMAINS),
            'tier3_sources': len(TIER3_DOMAINS),
            'blocked_sources': len(BLOCKED_DOMAINS),
        }

    def get_config(self) -> Dict[str, Any]:
        return {
            'weights': {
                'source_reputation': SOURCE_REPUTATION_WEIGHT,
                'historical_performance': HISTORICAL_WEIGHT,
                'content_quality': CONTENT_QUALITY_WEIGHT,
            },
            'min_articles_for_history': self.min_articles_for_history,
            'performance_window_days': self.performance_window.days,
            'max_history_per_domain': self.max_history_per_domain,
        }
