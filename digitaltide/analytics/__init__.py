"""Article analytics engines.

This package contains modules for:
- Source credibility scoring (credibility.py)
- Duplicate detection and canonical article selection (duplicates.py)
- Trending topic detection (trending.py)
- Trend lifecycle state machine (lifecycle.py)
"""

from .credibility import CredibilityResult, CredibilityScorer, SourceDescriptor
from .duplicates import (
    DuplicateDetectionResult,
    DuplicateDetector,
    DuplicateEntry,
    DuplicateGroup,
    calculate_article_quality_score
)
from .lifecycle import Lifecycle, LifecycleStage
from .trending import TopicCluster, TrendingAnalyzer, TrendingResult, TrendingTopic

__all__ = [
    "CredibilityResult",
    "CredibilityScorer",
    "SourceDescriptor",
    "DuplicateDetectionResult",
    "DuplicateDetector",
    "DuplicateEntry",
    "DuplicateGroup",
    "calculate_article_quality_score",
    "Lifecycle",
    "LifecycleStage",
    "TopicCluster",
    "TrendingAnalyzer",
    "TrendingResult",
    "TrendingTopic",
]
