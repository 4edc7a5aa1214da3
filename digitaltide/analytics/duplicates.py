"""
Duplicate detection for news articles.

Two passes over a batch:

1. Exact pass: articles whose normalized URLs match collapse immediately
   with similarity 1.0 (reason ``exact-url``).
2. Fuzzy pass: one representative per exact group is compared against
   previously seen representatives and linked with Union-Find whenever the
   weighted title/content/URL similarity reaches the threshold.

The fuzzy pass uses an inverted index (title keywords, content shingles,
whole title, normalized URL) for blocking. Two articles sharing no index
key can score at most ``blocking_bound()``; above that threshold blocking
is lossless and the pass is sub-quadratic, at or below it every earlier
representative is a candidate. Either way the set of linked pairs is exactly
the set scoring at or above the threshold, so grouping only ever coarsens as
the threshold drops.
"""

import hashlib
import threading
import time
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Set

from rapidfuzz.distance import Levenshtein

from digitaltide.core.errors import ConfigurationError
from digitaltide.core.logging import get_logger
from digitaltide.core.models import Article
from digitaltide.core.settings import get_settings
from digitaltide.core.utils import content_tokens, dice, jaccard, normalize_url, tokenize, word_shingles

logger = get_logger(__name__)

REASON_EXACT = "exact-url"
REASON_NEAR = "near-duplicate"
REASON_SIMILAR = "similar"

WEIGHT_KEYS = ("title", "content", "url")
THRESHOLD_KEYS = ("near_duplicate", "similar")

# Title similarity blend
TOKEN_WEIGHT = 0.6
EDIT_WEIGHT = 0.4

SHINGLE_SIZE = 3


@dataclass(frozen=True)
class ArticleFeatures:
    """Per-article similarity inputs, cached by content fingerprint."""
    title: str
    title_keywords: FrozenSet[str]
    shingles: FrozenSet[str]
    url: str
    domain: str
    path: str

    def index_keys(self) -> Set[str]:
        keys = {f"t:{token}" for token in self.title_keywords}
        keys.update(f"c:{shingle}" for shingle in self.shingles)
        if self.title:
            keys.add(f"T:{self.title}")
        if self.url:
            keys.add(f"u:{self.url}")
        return keys


@dataclass
class DuplicateEntry:
    """An article folded into a group, with its link strength."""
    article: Article
    duplicate_of: Article
    similarity_score: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fingerprint': self.article.fingerprint,
            'duplicate_of': self.duplicate_of.fingerprint,
            'similarity_score': self.similarity_score,
            'reason': self.reason,
        }


@dataclass
class DuplicateGroup:
    best: Article
    duplicates: List[DuplicateEntry]
    avg_similarity: float

    @property
    def size(self) -> int:
        return len(self.duplicates) + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'best': self.best.fingerprint,
            'duplicates': [d.to_dict() for d in self.duplicates],
            'avg_similarity': self.avg_similarity,
            'size': self.size,
        }


@dataclass
class DuplicateDetectionResult:
    original: int
    unique: List[Article] = field(default_factory=list)
    duplicates: List[DuplicateEntry] = field(default_factory=list)
    groups: List[DuplicateGroup] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, x: int) -> int:
        while self.parent[x] != x:
            self.parent[x] = self.parent[self.parent[x]]
            x = self.parent[x]
        return x

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            # Keep the earliest index as root so group order is stable
            if ra < rb:
                self.parent[rb] = ra
            else:
                self.parent[ra] = rb


def _normalize_text(text: Optional[str]) -> str:
    return " ".join(tokenize(text))


def text_similarity(a: str, b: str) -> float:
    """Token Dice blended with normalized Levenshtein similarity."""
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return TOKEN_WEIGHT * dice(a.split(), b.split()) + EDIT_WEIGHT * Levenshtein.normalized_similarity(a, b)


def calculate_article_quality_score(article: Article) -> float:
    """
    Quality used to pick the canonical article of a duplicate group.

    Dominated by credibility (article score, then source score, then a
    neutral 0.5) with content completeness as the secondary signal.
    """
    if article.credibility is not None:
        credibility = article.credibility
    elif article.source_credibility is not None:
        credibility = article.source_credibility
    else:
        credibility = 0.5
    return 0.6 * max(0.0, min(1.0, credibility)) + 0.4 * article.completeness()


class DuplicateDetector:
    """Similarity-weighted transitive grouping of articles."""

    def __init__(self, thresholds: Optional[Dict[str, float]] = None,
                 weights: Optional[Dict[str, float]] = None,
                 cache_size: Optional[int] = None):
        settings = get_settings()
        self._thresholds = {
            'near_duplicate': settings.near_duplicate_threshold,
            'similar': settings.similar_threshold,
        }
        self._weights = {
            'title': settings.title_weight,
            'content': settings.content_weight,
            'url': settings.url_weight,
        }
        self._validate_thresholds(self._thresholds)
        self._validate_weights(self._weights)
        if thresholds:
            self.set_thresholds(thresholds)
        if weights:
            self.set_weights(weights)

        self.cache_size = cache_size or settings.similarity_cache_size
        self._cache: "OrderedDict[str, ArticleFeatures]" = OrderedDict()
        self._lock = threading.Lock()
        self.stats = self._empty_stats()

    # --- Configuration ---

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            'total_comparisons': 0,
            'exact_duplicates': 0,
            'near_duplicates': 0,
            'similar_duplicates': 0,
            'unique_articles': 0,
            'runs': 0,
        }

    @staticmethod
    def _validate_weights(weights: Dict[str, float]) -> None:
        unknown = set(weights) - set(WEIGHT_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown similarity weights: {sorted(unknown)}")
        if any(w is None or w < 0 for w in weights.values()):
            raise ConfigurationError("Similarity weights must be non-negative")
        total = sum(weights.values())
        if abs(total - 1.0) > 1e-6:
            raise ConfigurationError(f"Similarity weights must sum to 1 (got {total:.3f})")

    @staticmethod
    def _validate_thresholds(thresholds: Dict[str, float]) -> None:
        unknown = set(thresholds) - set(THRESHOLD_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown thresholds: {sorted(unknown)}")
        for name, value in thresholds.items():
            if value is None or not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"Threshold {name} must be within [0, 1]")
        if thresholds['similar'] > thresholds['near_duplicate']:
            raise ConfigurationError("Similar threshold cannot exceed near-duplicate threshold")

    def get_weights(self) -> Dict[str, float]:
        return dict(self._weights)

    def set_weights(self, weights: Dict[str, float]) -> Dict[str, float]:
        """Merge ``weights`` into the current ones; rejected unless the result sums to 1."""
        unknown = set(weights) - set(WEIGHT_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown similarity weights: {sorted(unknown)}")
        merged = {**self._weights, **weights}
        self._validate_weights(merged)
        self._weights = merged
        logger.info(f"Similarity weights updated: {merged}")
        return self.get_weights()

    def get_thresholds(self) -> Dict[str, float]:
        return dict(self._thresholds)

    def set_thresholds(self, thresholds: Dict[str, float]) -> Dict[str, float]:
        unknown = set(thresholds) - set(THRESHOLD_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown thresholds: {sorted(unknown)}")
        merged = {**self._thresholds, **thresholds}
        self._validate_thresholds(merged)
        self._thresholds = merged
        logger.info(f"Duplicate thresholds updated: {merged}")
        return self.get_thresholds()

    def blocking_bound(self) -> float:
        """
        Highest similarity two articles sharing no index key can reach.

        Without a shared key their title keyword Dice and shingle Jaccard are
        zero, leaving at most the edit-distance part of the title score and a
        same-domain URL score of 1.0. The worst case is a pair without content.
        """
        wt, wc, wu = self._weights['title'], self._weights['content'], self._weights['url']
        candidates = []
        for denominator, numerator in ((wt + wu, EDIT_WEIGHT * wt + wu),
                                       (wt + wc + wu, EDIT_WEIGHT * wt + wu),
                                       (wt, EDIT_WEIGHT * wt),
                                       (wt + wc, EDIT_WEIGHT * wt)):
            if denominator > 0:
                candidates.append(numerator / denominator)
        return max(candidates) if candidates else 1.0

    # --- Features ---

    @staticmethod
    def _fingerprint(article: Article) -> str:
        key = f"{article.title}\x00{article.content or ''}\x00{article.url or ''}"
        return hashlib.md5(key.encode("utf-8")).hexdigest()

    def _features(self, article: Article) -> ArticleFeatures:
        key = self._fingerprint(article)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                return cached

        url = normalize_url(article.url)
        domain, path = "", ""
        if url:
            rest = url.split("://", 1)[-1]
            domain, _, path = rest.partition("/")
        features = ArticleFeatures(
            title=_normalize_text(article.title),
            title_keywords=frozenset(content_tokens(article.title)),
            shingles=frozenset(word_shingles(tokenize(article.content), SHINGLE_SIZE)),
            url=url,
            domain=domain,
            path=_normalize_text(path),
        )

        with self._lock:
            self._cache[key] = features
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return features

    # --- Similarity ---

    def _title_similarity(self, a: ArticleFeatures, b: ArticleFeatures) -> float:
        if a.title == b.title:
            return 1.0
        return (TOKEN_WEIGHT * dice(a.title_keywords, b.title_keywords)
                + EDIT_WEIGHT * Levenshtein.normalized_similarity(a.title, b.title))

    @staticmethod
    def _url_similarity(a: ArticleFeatures, b: ArticleFeatures) -> float:
        if a.url == b.url:
            return 1.0
        if a.domain != b.domain:
            return 0.0
        return 0.5 + 0.5 * text_similarity(a.path, b.path)

    def _feature_similarity(self, a: ArticleFeatures, b: ArticleFeatures) -> float:
        if a.url and a.url == b.url:
            return 1.0

        total, weight = 0.0, 0.0
        if a.title and b.title:
            total += self._title_similarity(a, b) * self._weights['title']
            weight += self._weights['title']
        if a.shingles and b.shingles:
            total += jaccard(a.shingles, b.shingles) * self._weights['content']
            weight += self._weights['content']
        if a.url and b.url:
            total += self._url_similarity(a, b) * self._weights['url']
            weight += self._weights['url']
        return min(1.0, total / weight) if weight > 0 else 0.0

    def calculate_similarity(self, first: Article, second: Article) -> float:
        """Weighted similarity of two articles in [0, 1]."""
        self.stats['total_comparisons'] += 1
        return self._feature_similarity(self._features(first), self._features(second))

    # --- Detection ---

    def detect_duplicates(self, articles: List[Article], threshold: Optional[float] = None,
                          include_exact: bool = True, include_near: bool = True,
                          include_similar: bool = False,
                          return_groups: bool = True) -> DuplicateDetectionResult:
        """
        Collapse duplicates in ``articles``.

        Args:
            articles: Normalized articles.
            threshold: Explicit link threshold; defaults to the similar
                threshold when ``include_similar`` is set, else near-duplicate.
            include_exact: Merge articles with identical normalized URLs.
            include_near: Run the fuzzy pass at the near-duplicate threshold.
            include_similar: Run the fuzzy pass at the similar threshold.
            return_groups: Populate ``groups`` in the result.

        Returns:
            DuplicateDetectionResult with unique articles in input order.
        """
        start_time = time.time()
        if threshold is not None and not 0.0 <= threshold <= 1.0:
            raise ConfigurationError("threshold must be within [0, 1]")

        fuzzy = include_near or include_similar
        if threshold is None:
            threshold = self._thresholds['similar'] if include_similar else self._thresholds['near_duplicate']

        n = len(articles)
        features = [self._features(a) for a in articles]
        uf = _UnionFind(n)
        link_score = [0.0] * n
        exact_of: Dict[int, int] = {}

        # Exact pass
        representatives: List[int] = []
        if include_exact:
            seen_urls: Dict[str, int] = {}
            for i, feat in enumerate(features):
                if feat.url and feat.url in seen_urls:
                    first = seen_urls[feat.url]
                    uf.union(first, i)
                    exact_of[i] = first
                    continue
                if feat.url:
                    seen_urls[feat.url] = i
                representatives.append(i)
        else:
            representatives = list(range(n))

        # Fuzzy pass
        comparisons = 0
        use_blocking = threshold > self.blocking_bound()
        if fuzzy:
            index: Dict[str, List[int]] = defaultdict(list)
            seen: List[int] = []
            untitled: List[int] = []
            for i in representatives:
                keys = features[i].index_keys()
                if use_blocking and features[i].title:
                    # Untitled articles escape the bound, so they always compare
                    candidates = sorted({j for key in keys for j in index.get(key, ())}.union(untitled))
                else:
                    candidates = seen
                for j in candidates:
                    if uf.find(i) == uf.find(j):
                        continue
                    comparisons += 1
                    score = self._feature_similarity(features[i], features[j])
                    if score >= threshold:
                        uf.union(i, j)
                        link_score[i] = max(link_score[i], score)
                        link_score[j] = max(link_score[j], score)
                for key in keys:
                    index[key].append(i)
                if not features[i].title:
                    untitled.append(i)
                seen.append(i)

        result = self._build_result(articles, features, uf, exact_of, link_score, return_groups)
        result.metadata.update({
            'threshold': threshold,
            'comparisons': comparisons,
            'blocking': fuzzy and use_blocking,
            'processing_time': round(time.time() - start_time, 4),
        })
        self._update_stats(result, comparisons)

        logger.debug(
            f"Duplicate detection: {n} articles -> {len(result.unique)} unique "
            f"({len(result.duplicates)} duplicates, {comparisons} comparisons)"
        )
        return result

    def _build_result(self, articles: List[Article], features: List[ArticleFeatures],
                      uf: _UnionFind, exact_of: Dict[int, int], link_score: List[float],
                      return_groups: bool) -> DuplicateDetectionResult:
        members: Dict[int, List[int]] = defaultdict(list)
        for i in range(len(articles)):
            members[uf.find(i)].append(i)

        result = DuplicateDetectionResult(original=len(articles))
        exact = near = similar = 0
        for root in sorted(members, key=lambda r: members[r][0]):
            group = members[root]
            if len(group) == 1:
                articles[group[0]].duplicate_count = 0
                result.unique.append(articles[group[0]])
                continue

            best_idx = max(group, key=lambda i: (calculate_article_quality_score(articles[i]), -i))
            best = articles[best_idx]
            entries = []
            for i in group:
                if i == best_idx:
                    continue
                if features[i].url and features[i].url == features[best_idx].url:
                    score, reason = 1.0, REASON_EXACT
                    exact += 1
                else:
                    # Exact copies of another member inherit that member's link
                    score = round(link_score[exact_of.get(i, i)], 4)
                    if score >= self._thresholds['near_duplicate']:
                        reason = REASON_NEAR
                        near += 1
                    else:
                        reason = REASON_SIMILAR
                        similar += 1
                entries.append(DuplicateEntry(articles[i], best, score, reason))

            best.duplicate_count = len(entries)
            result.unique.append(best)
            result.duplicates.extend(entries)
            if return_groups:
                avg = sum(e.similarity_score for e in entries) / len(entries)
                result.groups.append(DuplicateGroup(best=best, duplicates=entries, avg_similarity=round(avg, 4)))

        result.metadata = {
            'exact_matches': exact,
            'near_matches': near,
            'similar_matches': similar,
            'groups': sum(1 for g in members.values() if len(g) > 1),
        }
        return result

    def _update_stats(self, result: DuplicateDetectionResult, comparisons: int) -> None:
        self.stats['runs'] += 1
        self.stats['total_comparisons'] += comparisons
        self.stats['exact_duplicates'] += result.metadata['exact_matches']
        self.stats['near_duplicates'] += result.metadata['near_matches']
        self.stats['similar_duplicates'] += result.metadata['similar_matches']
        self.stats['unique_articles'] += len(result.unique)

    # --- Cache / stats ---

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            cache_size = len(self._cache)
        return {
            **self.stats,
            'cache_size': cache_size,
            'cache_max_size': self.cache_size,
            'thresholds': self.get_thresholds(),
            'weights': self.get_weights(),
        }

    def reset_stats(self) -> None:
        self.stats = self._empty_stats()
