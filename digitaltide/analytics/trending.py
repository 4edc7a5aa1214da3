"""
Trending topic detection.

Keywords are extracted from article titles and scored with four components:

- Velocity: blended mention rate over short/medium/long windows
- Volume: log-scaled mention count
- Recency: exp(-avg_age / tau) of the mentions
- Credibility: mean credibility of contributing articles

Each scored topic also advances a lifecycle state machine whose state is
kept per keyword across analysis passes.
"""

import math
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional, Sequence

import numpy as np
from rapidfuzz.distance import Levenshtein

from digitaltide.analytics.lifecycle import INITIAL_CONFIDENCE, Lifecycle, LifecycleStage, transition
from digitaltide.core.errors import ConfigurationError
from digitaltide.core.logging import get_logger
from digitaltide.core.models import Article
from digitaltide.core.settings import get_settings
from digitaltide.core.time import age_hours, to_utc, utc_now
from digitaltide.core.utils import STOPWORDS, tokenize

logger = get_logger(__name__)

# Time windows
SHORT_WINDOW_HOURS = 1.0
MEDIUM_WINDOW_HOURS = 4.0
LONG_WINDOW_HOURS = 24.0
# Window blend for velocity (mentions/hour)
SHORT_RATE_WEIGHT = 0.5
MEDIUM_RATE_WEIGHT = 0.3
LONG_RATE_WEIGHT = 0.2
VELOCITY_SCALE = 2.0  # mentions/hour at which the velocity score is ~0.63

VOLUME_SATURATION = 10
RECENCY_TAU_HOURS = 4.0
DEFAULT_CREDIBILITY = 0.5

# Clustering
SIMILARITY_THRESHOLD = 0.6
MAX_CLUSTER_SIZE = 10

# Keywords
MIN_KEYWORD_LENGTH = 2
MAX_KEYWORD_LENGTH = 20

# History
MAX_HISTORY_POINTS = 24
MAX_TRACKED_TOPICS = 1000

WEIGHT_KEYS = ("velocity", "volume", "recency", "credibility")


@dataclass
class TrendingTopic:
    keyword: str
    mentions: int
    velocity: float
    scores: Dict[str, float]
    trend_score: float
    articles: List[Article]
    distribution: Dict[str, int]
    first_seen: datetime
    last_seen: datetime
    lifecycle: Optional[Lifecycle] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'keyword': self.keyword,
            'mentions': self.mentions,
            'velocity': self.velocity,
            'scores': dict(self.scores),
            'trend_score': self.trend_score,
            'lifecycle': self.lifecycle.to_dict() if self.lifecycle else None,
            'articles': [a.fingerprint for a in self.articles],
            'distribution': dict(self.distribution),
            'first_seen': self.first_seen.isoformat(),
            'last_seen': self.last_seen.isoformat(),
        }


@dataclass
class TopicCluster:
    id: str
    main_topic: str
    topics: List[TrendingTopic]
    total_mentions: int
    avg_trend_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'main_topic': self.main_topic,
            'topics': [t.keyword for t in self.topics],
            'total_mentions': self.total_mentions,
            'avg_trend_score': self.avg_trend_score,
        }


@dataclass
class TrendingResult:
    trending: List[TrendingTopic] = field(default_factory=list)
    clusters: List[TopicCluster] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class HistoryPoint:
    timestamp: datetime
    mentions: int
    velocity: float
    trend_score: float
    stage: LifecycleStage
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'mentions': self.mentions,
            'velocity': self.velocity,
            'trend_score': self.trend_score,
            'stage': self.stage.value,
            'confidence': self.confidence,
        }


def extract_keywords(text: Optional[str], min_length: int = MIN_KEYWORD_LENGTH,
                     max_length: int = MAX_KEYWORD_LENGTH) -> List[str]:
    """Lowercased, alphabetic, stop-worded and length-filtered title keywords."""
    return [
        word for word in tokenize(text)
        if min_length <= len(word) <= max_length and word.isalpha() and word not in STOPWORDS
    ]


def calculate_velocity(timestamps: Sequence[datetime], now: datetime) -> Dict[str, float]:
    """
    Mentions per hour from the concentration of ``timestamps``.

    The blend favours the short window, so the same number of mentions
    packed into the last hour beats a uniform spread over a day.
    """
    ages = [age_hours(ts, now) for ts in timestamps]
    short = sum(1 for a in ages if a <= SHORT_WINDOW_HOURS)
    medium = sum(1 for a in ages if a <= MEDIUM_WINDOW_HOURS)
    long = sum(1 for a in ages if a <= LONG_WINDOW_HOURS)

    raw = (SHORT_RATE_WEIGHT * short / SHORT_WINDOW_HOURS
           + MEDIUM_RATE_WEIGHT * medium / MEDIUM_WINDOW_HOURS
           + LONG_RATE_WEIGHT * long / LONG_WINDOW_HOURS)
    return {
        'raw': raw,
        'normalized': 1 - math.exp(-raw / VELOCITY_SCALE),
        'short_window': short,
        'medium_window': medium,
        'long_window': long,
    }


def volume_score(mentions: int) -> float:
    return min(1.0, math.log1p(mentions) / math.log1p(VOLUME_SATURATION))


def recency_score(timestamps: Sequence[datetime], now: datetime, tau_hours: float = RECENCY_TAU_HOURS) -> float:
    """exp(-avg_age / tau), where avg_age is the mean age of the mentions in hours."""
    if not timestamps:
        return 0.0
    avg_age = float(np.mean([age_hours(ts, now) for ts in timestamps]))
    return math.exp(-avg_age / tau_hours)


def calculate_similarity(first: str, second: str) -> float:
    """
    Lexical similarity of two keywords in [0, 1].

    Prefix/suffix containment (``tech``/``technology``, plurals) scores
    highest, other containment next, everything else falls back to
    normalized Levenshtein similarity.
    """
    a, b = first.lower().strip(), second.lower().strip()
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    ratio = len(shorter) / len(longer)
    if len(shorter) >= 3 and shorter in longer:
        if longer.startswith(shorter) or longer.endswith(shorter):
            return 0.5 + 0.5 * ratio
        return 0.3 + 0.5 * ratio
    return float(Levenshtein.normalized_similarity(a, b))


def _article_credibility(article: Article) -> float:
    if article.credibility is not None:
        return article.credibility
    if article.source_credibility is not None:
        return article.source_credibility
    return DEFAULT_CREDIBILITY


class TrendingAnalyzer:
    """Velocity-scored keyword trends with per-keyword lifecycle history."""

    def __init__(self, min_mentions: Optional[int] = None, min_velocity: Optional[float] = None,
                 weights: Optional[Dict[str, float]] = None,
                 similarity_threshold: float = SIMILARITY_THRESHOLD,
                 max_cluster_size: int = MAX_CLUSTER_SIZE,
                 max_history_points: int = MAX_HISTORY_POINTS,
                 max_tracked_topics: int = MAX_TRACKED_TOPICS,
                 stale_after: Optional[timedelta] = None):
        settings = get_settings()
        self.min_mentions = settings.trend_min_mentions if min_mentions is None else min_mentions
        self.min_velocity = settings.trend_min_velocity if min_velocity is None else min_velocity
        self.similarity_threshold = similarity_threshold
        self.max_cluster_size = max_cluster_size
        self.max_history_points = max_history_points
        self.max_tracked_topics = max_tracked_topics
        self.stale_after = stale_after or timedelta(hours=settings.trend_history_stale_hours)

        self._weights = {
            'velocity': settings.trend_velocity_weight,
            'volume': settings.trend_volume_weight,
            'recency': settings.trend_recency_weight,
            'credibility': settings.trend_credibility_weight,
        }
        self._validate_weights(self._weights)
        if weights:
            self.set_weights(weights)

        # keyword -> bounded history, ordered by last update
        self._history: "OrderedDict[str, Deque[HistoryPoint]]" = OrderedDict()
        self.stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {'analyses': 0, 'topics_scored': 0, 'last_cluster_count': 0}

    # --- Configuration ---

    @staticmethod
    def _validate_weights(weights: Dict[str, float]) -> None:
        unknown = set(weights) - set(WEIGHT_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown trend weights: {sorted(unknown)}")
        if any(w is None or w < 0 for w in weights.values()):
            raise ConfigurationError("Trend weights must be non-negative")
        total = sum(weights.values())
        if abs(total - 1.0) > 1e-6:
            raise ConfigurationError(f"Trend weights must sum to 1 (got {total:.3f})")

    def get_weights(self) -> Dict[str, float]:
        return dict(self._weights)

    def set_weights(self, weights: Dict[str, float]) -> Dict[str, float]:
        unknown = set(weights) - set(WEIGHT_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown trend weights: {sorted(unknown)}")
        merged = {**self._weights, **weights}
        self._validate_weights(merged)
        self._weights = merged
        logger.info(f"Trend weights updated: {merged}")
        return self.get_weights()

    def get_config(self) -> Dict[str, Any]:
        return {
            'min_mentions': self.min_mentions,
            'min_velocity': self.min_velocity,
            'windows_hours': {
                'short': SHORT_WINDOW_HOURS,
                'medium': MEDIUM_WINDOW_HOURS,
                'long': LONG_WINDOW_HOURS,
            },
            'weights': self.get_weights(),
            'similarity_threshold': self.similarity_threshold,
            'max_cluster_size': self.max_cluster_size,
            'max_history_points': self.max_history_points,
            'max_tracked_topics': self.max_tracked_topics,
            'stale_after_hours': self.stale_after.total_seconds() / 3600,
        }

    # --- Analysis ---

    def analyze_trending(self, articles: List[Article], limit: int = 20,
                         include_lifecycle: bool = True, include_clusters: bool = True,
                         now: Optional[datetime] = None) -> TrendingResult:
        """
        Detect trending keywords in a batch of articles.

        Args:
            articles: Normalized articles (titles are the keyword source).
            limit: Maximum number of topics returned.
            include_lifecycle: Attach lifecycle stage/confidence to topics.
            include_clusters: Group lexically related keywords.
            now: Reference time; defaults to the current UTC time.

        Returns:
            TrendingResult with topics sorted by trend score descending.
        """
        start_time = time.time()
        now = to_utc(now) if now else utc_now()

        topic_articles: Dict[str, List[Article]] = {}
        for article in articles:
            for keyword in dict.fromkeys(extract_keywords(article.title)):
                topic_articles.setdefault(keyword, []).append(article)

        candidates: List[TrendingTopic] = []
        for keyword, contributing in topic_articles.items():
            if len(contributing) < self.min_mentions:
                continue
            timestamps = [a.published_at or now for a in contributing]
            velocity = calculate_velocity(timestamps, now)
            if velocity['raw'] < self.min_velocity:
                continue
            candidates.append(self._score_topic(keyword, contributing, timestamps, velocity, now))

        candidates.sort(key=lambda t: (-t.trend_score, t.keyword))
        trending = candidates[:limit]

        for topic in trending:
            lifecycle = self._advance_lifecycle(topic, now)
            if include_lifecycle:
                topic.lifecycle = lifecycle
            for article in topic.articles:
                if topic.keyword not in article.trending_keywords:
                    article.trending_keywords.append(topic.keyword)
        self._evict_stale(now)

        clusters = self.cluster_topics(trending) if include_clusters else []

        self.stats['analyses'] += 1
        self.stats['topics_scored'] += len(candidates)
        self.stats['last_cluster_count'] = len(clusters)

        logger.info(
            f"Trending analysis: {len(articles)} articles, {len(topic_articles)} keywords, "
            f"{len(candidates)} above thresholds, {len(trending)} returned"
        )
        return TrendingResult(
            trending=trending,
            clusters=clusters,
            metadata={
                'total_keywords': len(topic_articles),
                'total_topics': len(candidates),
                'trending_count': len(trending),
                'articles_analyzed': len(articles),
                'time_window_hours': {
                    'short': SHORT_WINDOW_HOURS,
                    'medium': MEDIUM_WINDOW_HOURS,
                    'long': LONG_WINDOW_HOURS,
                },
                'timestamp': now.isoformat(),
                'runtime_seconds': round(time.time() - start_time, 4),
            },
        )

    def _score_topic(self, keyword: str, contributing: List[Article], timestamps: List[datetime],
                     velocity: Dict[str, float], now: datetime) -> TrendingTopic:
        scores = {
            'velocity': velocity['normalized'],
            'volume': volume_score(len(contributing)),
            'recency': recency_score(timestamps, now),
            'credibility': float(np.mean([_article_credibility(a) for a in contributing])),
        }
        trend_score = sum(scores[k] * self._weights[k] for k in WEIGHT_KEYS)
        ordered = sorted(zip(timestamps, contributing), key=lambda pair: pair[0], reverse=True)
        return TrendingTopic(
            keyword=keyword,
            mentions=len(contributing),
            velocity=round(velocity['raw'], 4),
            scores={k: round(v, 4) for k, v in scores.items()},
            trend_score=round(max(0.0, min(1.0, trend_score)), 4),
            articles=[article for _, article in ordered],
            distribution={
                'last_hour': int(velocity['short_window']),
                'last_4_hours': int(velocity['medium_window']),
                'last_24_hours': int(velocity['long_window']),
            },
            first_seen=min(timestamps),
            last_seen=max(timestamps),
        )

    # --- Lifecycle history ---

    def _advance_lifecycle(self, topic: TrendingTopic, now: datetime) -> Lifecycle:
        history = self._history.get(topic.keyword)
        if not history:
            stage, confidence = transition(None, 0.0, 0.0)
            velocity_change = score_change = 0.0
        else:
            previous = history[-1]
            velocity_change = ((topic.velocity - previous.velocity) / previous.velocity
                               if previous.velocity > 0 else (1.0 if topic.velocity > 0 else 0.0))
            score_change = topic.trend_score - previous.trend_score
            stage, confidence = transition(previous.stage, score_change, velocity_change, previous.confidence)

        if history is None:
            history = deque(maxlen=self.max_history_points)
        history.append(HistoryPoint(now, topic.mentions, topic.velocity, topic.trend_score, stage, confidence))
        self._history[topic.keyword] = history
        self._history.move_to_end(topic.keyword)

        return Lifecycle(
            stage=stage,
            confidence=confidence,
            velocity_change=round(velocity_change, 4),
            trend_score_change=round(score_change, 4),
            history_length=len(history),
        )

    def _evict_stale(self, now: datetime) -> None:
        cutoff = now - self.stale_after
        for keyword in [k for k, h in self._history.items() if h[-1].timestamp < cutoff]:
            del self._history[keyword]
        while len(self._history) > self.max_tracked_topics:
            self._history.popitem(last=False)

    def get_trend_history(self, keyword: str) -> List[Dict[str, Any]]:
        return [point.to_dict() for point in self._history.get(keyword.lower(), [])]

    def get_lifecycle_state(self, keyword: str) -> Lifecycle:
        """Current lifecycle of ``keyword`` (EMERGING if never seen)."""
        history = self._history.get(keyword.lower())
        if not history:
            return Lifecycle(stage=LifecycleStage.EMERGING, confidence=INITIAL_CONFIDENCE)
        last = history[-1]
        return Lifecycle(stage=last.stage, confidence=last.confidence, history_length=len(history))

    def clear_history(self) -> None:
        self._history.clear()

    # --- Clustering ---

    def calculate_similarity(self, first: str, second: str) -> float:
        return calculate_similarity(first, second)

    def cluster_topics(self, topics: List[TrendingTopic]) -> List[TopicCluster]:
        """Greedy clustering of related keywords around the strongest topics."""
        clusters: List[TopicCluster] = []
        assigned = set()
        for topic in sorted(topics, key=lambda t: (-t.trend_score, t.keyword)):
            if topic.keyword in assigned:
                continue
            members = [topic]
            assigned.add(topic.keyword)
            for other in topics:
                if len(members) >= self.max_cluster_size:
                    break
                if other.keyword in assigned:
                    continue
                if calculate_similarity(topic.keyword, other.keyword) >= self.similarity_threshold:
                    members.append(other)
                    assigned.add(other.keyword)

            members.sort(key=lambda t: (-t.trend_score, t.keyword))
            clusters.append(TopicCluster(
                id=f"cluster_{len(clusters) + 1}",
                main_topic=members[0].keyword,
                topics=members,
                total_mentions=sum(t.mentions for t in members),
                avg_trend_score=round(float(np.mean([t.trend_score for t in members])), 4),
            ))

        clusters.sort(key=lambda c: (-c.total_mentions, -c.avg_trend_score))
        return clusters

    # --- Stats ---

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            'tracked_topics': len(self._history),
            'clusters': self.stats['last_cluster_count'],
            'config': self.get_config(),
        }

    def reset_stats(self) -> None:
        self.stats = self._empty_stats()
