"""
Multi-source news aggregation.

One aggregation pass:
    select sources -> concurrent fetch -> normalize -> credibility annotation
    -> duplicate collapse -> min credibility filter -> sort -> truncate

Per-source failures are isolated and reported in ``metadata['sources']``;
only invalid options raise.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from digitaltide.aggregator.cache import AggregationCache, make_cache_key
from digitaltide.aggregator.monitor import MonitorManager
from digitaltide.aggregator.reputation import PRIORITY_WEIGHTS, ReputationTracker
from digitaltide.analytics.credibility import CredibilityScorer
from digitaltide.analytics.duplicates import DuplicateDetector, calculate_article_quality_score
from digitaltide.core.errors import ConfigurationError, MalformedResponseError, QuotaExceededError, SourceError
from digitaltide.core.logging import get_logger
from digitaltide.core.models import Article, SourceProfile
from digitaltide.core.settings import get_settings
from digitaltide.core.time import utc_now
from digitaltide.core.utils import tokenize
from digitaltide.ingestor.adapters import FetchQuery, SourceAdapter
from digitaltide.ingestor.normalizer import normalize_batch

logger = get_logger(__name__)

SORT_FIELDS = ('published_at', 'quality', 'relevance', 'credibility')


@dataclass
class AggregationResult:
    articles: List[Article] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def cached(self) -> bool:
        return bool(self.metadata.get('cached'))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'articles': [article.to_dict() for article in self.articles],
            'metadata': dict(self.metadata),
        }


@dataclass
class SourceOutcome:
    """Result of fetching one source during a pass."""
    name: str
    articles: List[Article] = field(default_factory=list)
    malformed: int = 0
    error: Optional[str] = None
    response_time: float = 0.0  # milliseconds

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': 'success' if self.ok else 'error',
            'error': self.error,
            'response_time': round(self.response_time, 2),
            'count': len(self.articles),
        }


def relevance_score(article: Article, terms: List[str]) -> float:
    """Query term hits, title hits weighted double."""
    if not terms:
        return 0.0
    title_tokens = tokenize(article.title)
    content_tokens = tokenize(article.content)
    return sum(2.0 * title_tokens.count(term) + content_tokens.count(term) for term in terms)


def _published_key(article: Article) -> float:
    return article.published_at.timestamp() if article.published_at else float('-inf')


class NewsAggregator:
    """Fan-out aggregation over registered sources."""

    def __init__(self, sources: Optional[List[Tuple[SourceProfile, SourceAdapter]]] = None,
                 scorer: Optional[CredibilityScorer] = None,
                 detector: Optional[DuplicateDetector] = None,
                 cache: Optional[AggregationCache] = None,
                 reputation: Optional[ReputationTracker] = None,
                 fetch_timeout: Optional[float] = None,
                 max_concurrent: Optional[int] = None):
        settings = get_settings()
        self.scorer = scorer or CredibilityScorer()
        self.detector = detector or DuplicateDetector()
        self.cache = cache or AggregationCache()
        self.reputation = reputation or ReputationTracker()
        self.fetch_timeout = fetch_timeout or settings.fetch_timeout_seconds
        self.max_concurrent = max_concurrent or settings.max_concurrent_sources

        self.default_source_priority = settings.default_source_priority
        self.default_min_credibility = settings.default_min_credibility
        self.default_limit = settings.default_limit

        self._profiles: Dict[str, SourceProfile] = {}
        self._adapters: Dict[str, SourceAdapter] = {}
        for profile, adapter in sources or []:
            self.register_source(profile, adapter)

        self.stats = self._empty_stats()
        self._monitor: Optional[MonitorManager] = None

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            'total_requests': 0,
            'cache_hits': 0,
            'total_articles': 0,
            'source_errors': 0,
        }

    # --- Source registry ---

    def register_source(self, profile: SourceProfile, adapter: SourceAdapter) -> None:
        if profile.name in self._profiles:
            logger.warning(f"Replacing registered source {profile.name}")
        self._profiles[profile.name] = profile
        self._adapters[profile.name] = adapter

    def get_source_info(self) -> Dict[str, Dict[str, Any]]:
        return {name: profile.to_dict() for name, profile in self._profiles.items()}

    def reset_reputation(self, name: Optional[str] = None) -> int:
        """Reset one source's reputation, or all when ``name`` is None. Returns the number reset."""
        if name is not None:
            profile = self._profiles.get(name)
            if profile is None:
                return 0
            self.reputation.reset(profile)
            return 1
        for profile in self._profiles.values():
            self.reputation.reset(profile)
        return len(self._profiles)

    def reset_usage(self) -> None:
        """Reset per-source request counters (e.g. at a quota period boundary)."""
        for profile in self._profiles.values():
            profile.requests_used = 0

    def select_sources(self, category: Optional[str] = None, country: Optional[str] = None,
                       language: Optional[str] = None, enabled_sources: Optional[List[str]] = None,
                       source_priority: Optional[str] = None) -> List[SourceProfile]:
        """Eligible sources ranked by ``source_priority``."""
        strategy = source_priority or self.default_source_priority
        if strategy not in PRIORITY_WEIGHTS:
            raise ConfigurationError(
                f"Unknown source priority '{strategy}', expected one of {sorted(PRIORITY_WEIGHTS)}"
            )

        if enabled_sources is not None:
            unknown = [name for name in enabled_sources if name not in self._profiles]
            if unknown:
                logger.warning(f"Ignoring unknown sources: {unknown}")

        now = utc_now()
        candidates = []
        for profile in self._profiles.values():
            if not profile.enabled:
                continue
            if enabled_sources is not None and profile.name not in enabled_sources:
                continue
            if category and profile.categories and category not in profile.categories:
                continue
            if country and profile.countries and country not in profile.countries:
                continue
            if language and profile.languages and language not in profile.languages:
                continue
            if not self.reputation.is_available(profile, now):
                logger.info(f"Skipping source {profile.name}: cooling down after failures")
                continue
            candidates.append(profile)

        return self.reputation.rank(candidates, strategy)

    # --- Fan-out ---

    async def _fetch_source(self, profile: SourceProfile, query: FetchQuery,
                            semaphore: asyncio.Semaphore) -> SourceOutcome:
        outcome = SourceOutcome(name=profile.name)
        adapter = self._adapters[profile.name]

        remaining = profile.quota_remaining()
        if remaining is not None and remaining <= 0:
            # Local quota exhaustion is not held against the source's reputation
            outcome.error = str(QuotaExceededError(f"Quota of {profile.quota_limit} requests exhausted",
                                                   source=profile.name))
            logger.warning(f"Source {profile.name} skipped: {outcome.error}")
            return outcome

        async with semaphore:
            start = time.perf_counter()
            profile.requests_used += 1
            try:
                raw_items = await asyncio.wait_for(adapter.fetch(query), timeout=self.fetch_timeout)
                if not isinstance(raw_items, list):
                    raise MalformedResponseError(
                        f"Expected a list of items, got {type(raw_items).__name__}", source=profile.name)
                articles, malformed = normalize_batch(
                    raw_items, source_ref=profile.name, source_name=profile.name,
                    source_credibility=profile.base_credibility,
                )
            except asyncio.TimeoutError:
                outcome.error = f"Timed out after {self.fetch_timeout}s"
            except SourceError as e:
                outcome.error = str(e)
            except Exception as e:
                logger.exception(f"Unexpected error from source {profile.name}")
                outcome.error = f"{type(e).__name__}: {e}"
            outcome.response_time = (time.perf_counter() - start) * 1000.0

        if outcome.error:
            logger.warning(f"Source {profile.name} failed: {outcome.error}")
            self.reputation.record_failure(profile, outcome.response_time)
            return outcome

        outcome.articles = articles
        outcome.malformed = malformed
        quality = sum(a.completeness() for a in articles) / len(articles) if articles else None
        self.reputation.record_success(profile, outcome.response_time, quality)
        logger.info(f"Source {profile.name} returned {len(articles)} articles in {outcome.response_time:.0f}ms")
        return outcome

    def _annotate_credibility(self, articles: List[Article]) -> None:
        for article in articles:
            result = self.scorer.get_credibility_for_url(article.url)
            if result.tier == 'unknown' and article.source_credibility is not None:
                article.credibility = max(0.0, min(1.0, article.source_credibility))
            else:
                article.credibility = result.score
            article.credibility_tier = result.tier
            self.scorer.update_source_history(article)

    @staticmethod
    def _sort(articles: List[Article], sort_by: str, query: Optional[str]) -> List[Article]:
        if sort_by == 'published_at':
            return sorted(articles, key=_published_key, reverse=True)
        if sort_by == 'quality':
            return sorted(articles, key=calculate_article_quality_score, reverse=True)
        if sort_by == 'credibility':
            return sorted(articles, key=lambda a: (a.credibility or 0.0, _published_key(a)), reverse=True)
        terms = tokenize(query)
        return sorted(articles, key=lambda a: (relevance_score(a, terms), _published_key(a)), reverse=True)

    async def aggregate_from_multiple_sources(self, query: Optional[str] = None,
                                              category: Optional[str] = None,
                                              country: Optional[str] = None,
                                              language: Optional[str] = None,
                                              limit: Optional[int] = None,
                                              source_priority: Optional[str] = None,
                                              enabled_sources: Optional[List[str]] = None,
                                              use_cache: bool = True,
                                              deduplication: bool = True,
                                              min_credibility: Optional[float] = None,
                                              sort_by: str = 'published_at') -> AggregationResult:
        """
        Aggregate articles from all eligible sources.

        Returns an empty article list, never an exception, when every source
        fails. Invalid ``source_priority``, ``sort_by``, ``limit`` or
        ``min_credibility`` raise ``ConfigurationError``.
        """
        started = time.perf_counter()
        limit = self.default_limit if limit is None else limit
        min_credibility = self.default_min_credibility if min_credibility is None else min_credibility
        source_priority = source_priority or self.default_source_priority

        if sort_by not in SORT_FIELDS:
            raise ConfigurationError(f"Unknown sort_by '{sort_by}', expected one of {SORT_FIELDS}")
        if limit < 0:
            raise ConfigurationError("limit must be >= 0")
        if not 0.0 <= min_credibility <= 1.0:
            raise ConfigurationError("min_credibility must be within [0, 1]")

        self.stats['total_requests'] += 1
        cache_key = make_cache_key({
            'query': query, 'category': category, 'country': country, 'language': language,
            'limit': limit, 'source_priority': source_priority, 'enabled_sources': enabled_sources,
            'deduplication': deduplication, 'min_credibility': min_credibility, 'sort_by': sort_by,
        })

        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                self.stats['cache_hits'] += 1
                metadata = dict(cached['metadata'])
                metadata['cached'] = True
                metadata['aggregation_time'] = round(time.perf_counter() - started, 4)
                logger.debug(f"Aggregation cache hit for {cache_key}")
                return AggregationResult([Article.from_dict(a) for a in cached['articles']], metadata)

        selected = self.select_sources(category, country, language, enabled_sources, source_priority)
        fetch_query = FetchQuery(query=query, category=category, country=country,
                                 language=language, limit=limit)

        semaphore = asyncio.Semaphore(max(1, min(self.max_concurrent, len(selected) or 1)))
        outcomes: List[SourceOutcome] = await asyncio.gather(
            *(self._fetch_source(profile, fetch_query, semaphore) for profile in selected)
        )

        merged: List[Article] = []
        malformed = 0
        for outcome in outcomes:
            merged.extend(outcome.articles)
            malformed += outcome.malformed
        total_fetched = len(merged)

        self._annotate_credibility(merged)

        deduplicated = 0
        if deduplication and merged:
            detection = self.detector.detect_duplicates(merged)
            deduplicated = len(merged) - len(detection.unique)
            merged = detection.unique

        kept = [a for a in merged if (a.credibility or 0.0) >= min_credibility]
        filtered = len(merged) - len(kept)

        articles = self._sort(kept, sort_by, query)[:limit]

        errors = [{'source': o.name, 'error': o.error} for o in outcomes if not o.ok]
        self.stats['total_articles'] += len(articles)
        self.stats['source_errors'] += len(errors)

        metadata = {
            'total_fetched': total_fetched,
            'malformed': malformed,
            'deduplicated': deduplicated,
            'filtered': filtered,
            'returned': len(articles),
            'aggregation_time': round(time.perf_counter() - started, 4),
            'selected_sources': [profile.name for profile in selected],
            'source_priority': source_priority,
            'sources': {o.name: o.to_dict() for o in outcomes},
            'errors': errors,
            'cached': False,
        }

        if errors and len(errors) == len(outcomes):
            logger.error(f"All {len(outcomes)} sources failed for query={query!r} category={category!r}")
        logger.info(
            f"Aggregated {len(articles)} articles from {len(selected)} sources "
            f"(fetched={total_fetched}, duplicates={deduplicated}, filtered={filtered})"
        )

        result = AggregationResult(articles, metadata)
        if use_cache and len(errors) < len(outcomes):
            self.cache.set(cache_key, result.to_dict())
        return result

    # --- Monitoring ---

    @property
    def monitor(self) -> MonitorManager:
        if self._monitor is None:
            self._monitor = MonitorManager(self)
        return self._monitor

    def start_monitoring(self, interval: Optional[float] = None,
                         on_new_articles: Optional[Callable] = None,
                         on_error: Optional[Callable] = None,
                         webhook_urls: Optional[List[str]] = None,
                         **aggregation_options) -> Dict[str, Any]:
        return self.monitor.start_monitoring(
            interval=interval, on_new_articles=on_new_articles, on_error=on_error,
            webhook_urls=webhook_urls, **aggregation_options
        )

    def stop_monitoring(self, monitor_id: str) -> Dict[str, Any]:
        return self.monitor.stop_monitoring(monitor_id)

    def stop_all_monitors(self) -> Dict[str, Any]:
        return self.monitor.stop_all_monitors()

    def get_monitor_status(self) -> List[Dict[str, Any]]:
        return self.monitor.get_monitor_status()

    # --- Stats / lifecycle ---

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            'sources': len(self._profiles),
            'source_usage': {name: p.requests_used for name, p in self._profiles.items()},
            'active_monitors': len(self._monitor.sessions) if self._monitor else 0,
            'cache': self.cache.get_stats(),
            'duplicates': self.detector.get_stats(),
        }

    def reset_stats(self) -> None:
        self.stats = self._empty_stats()

    async def close(self) -> None:
        """Stop monitors and release adapter network resources."""
        if self._monitor is not None:
            await self._monitor.close()
        for adapter in self._adapters.values():
            await adapter.aclose()
