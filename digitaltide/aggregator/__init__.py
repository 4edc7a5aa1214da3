"""Multi-source aggregation package.

This package contains modules for:
- Aggregation passes over registered sources (aggregator.py)
- Source reputation and prioritization (reputation.py)
- Aggregation result caching (cache.py)
- Continuous monitoring sessions (monitor.py)
"""

from .aggregator import AggregationResult, NewsAggregator
from .cache import AggregationCache
from .monitor import MonitorManager, MonitorSession
from .reputation import ReputationTracker, priority_score

__all__ = [
    "AggregationResult",
    "NewsAggregator",
    "AggregationCache",
    "MonitorManager",
    "MonitorSession",
    "ReputationTracker",
    "priority_score",
]
