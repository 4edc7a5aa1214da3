"""
Source reputation and prioritization.

Every fetch attempt feeds an exponential moving average of response time,
success rate and returned-article quality. The rolling reputation drives
source ranking for the next aggregation pass and a cool-down that skips
sources with a streak of consecutive failures.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from digitaltide.core.errors import ConfigurationError
from digitaltide.core.logging import get_logger
from digitaltide.core.models import Reputation, SourceProfile
from digitaltide.core.settings import get_settings
from digitaltide.core.time import utc_now

logger = get_logger(__name__)

PRIORITY_WEIGHTS: Dict[str, Dict[str, float]] = {
    'quality': {'credibility': 0.5, 'quality': 0.3, 'success': 0.2},
    'speed': {'speed': 0.7, 'success': 0.3},
    'cost': {'cost': 0.7, 'success': 0.3},
    'balanced': {'credibility': 0.3, 'speed': 0.25, 'cost': 0.2, 'success': 0.25},
}

# Reference points for normalizing raw metrics to [0, 1]
RESPONSE_TIME_SCALE_MS = 1000.0
COST_SCALE = 100.0


def speed_component(reputation: Reputation) -> float:
    return 1.0 / (1.0 + reputation.avg_response_time / RESPONSE_TIME_SCALE_MS)


def cost_component(profile: SourceProfile) -> float:
    return 1.0 / (1.0 + max(0.0, profile.cost_per_request) * COST_SCALE)


def priority_score(profile: SourceProfile, strategy: str) -> float:
    """Ranking score in [0, 1] for ``profile`` under ``strategy``."""
    weights = PRIORITY_WEIGHTS.get(strategy)
    if weights is None:
        raise ConfigurationError(
            f"Unknown source priority '{strategy}', expected one of {sorted(PRIORITY_WEIGHTS)}"
        )

    reputation = profile.reputation
    components = {
        'credibility': profile.base_credibility,
        'quality': reputation.avg_article_quality,
        'success': reputation.success_rate,
        'speed': speed_component(reputation),
        'cost': cost_component(profile),
    }
    return sum(components[name] * weight for name, weight in weights.items())


class ReputationTracker:
    """EMA updates and availability checks for source reputations."""

    def __init__(self, alpha: Optional[float] = None, failure_threshold: Optional[int] = None,
                 cooldown_seconds: Optional[float] = None):
        settings = get_settings()
        self.alpha = settings.reputation_alpha if alpha is None else alpha
        self.failure_threshold = settings.failure_threshold if failure_threshold is None else failure_threshold
        self.cooldown = timedelta(
            seconds=settings.failure_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        )
        if not 0.0 < self.alpha <= 1.0:
            raise ConfigurationError(f"reputation alpha must be in (0, 1], got {self.alpha}")

    def _ema(self, previous: float, sample: float) -> float:
        return self.alpha * sample + (1.0 - self.alpha) * previous

    def record_success(self, profile: SourceProfile, response_time_ms: float,
                       article_quality: Optional[float] = None,
                       now: Optional[datetime] = None) -> Reputation:
        reputation = profile.reputation
        first_request = reputation.total_requests == 0
        reputation.total_requests += 1
        reputation.consecutive_failures = 0
        reputation.last_success = now or utc_now()
        reputation.success_rate = self._ema(reputation.success_rate, 1.0)
        reputation.avg_response_time = (
            response_time_ms if first_request else self._ema(reputation.avg_response_time, response_time_ms)
        )
        if article_quality is not None:
            reputation.avg_article_quality = self._ema(reputation.avg_article_quality, article_quality)
        return reputation

    def record_failure(self, profile: SourceProfile, response_time_ms: Optional[float] = None,
                       now: Optional[datetime] = None) -> Reputation:
        reputation = profile.reputation
        reputation.total_requests += 1
        reputation.total_failures += 1
        reputation.consecutive_failures += 1
        reputation.last_failure = now or utc_now()
        reputation.success_rate = self._ema(reputation.success_rate, 0.0)
        if response_time_ms is not None:
            reputation.avg_response_time = self._ema(reputation.avg_response_time, response_time_ms)

        if reputation.consecutive_failures == self.failure_threshold:
            logger.warning(
                f"Source {profile.name} failed {reputation.consecutive_failures} times in a row, "
                f"cooling down for {self.cooldown.total_seconds():.0f}s"
            )
        return reputation

    def is_available(self, profile: SourceProfile, now: Optional[datetime] = None) -> bool:
        """False while a source with a failure streak is inside its cool-down."""
        reputation = profile.reputation
        if reputation.consecutive_failures < self.failure_threshold or reputation.last_failure is None:
            return True
        return (now or utc_now()) - reputation.last_failure >= self.cooldown

    def rank(self, profiles: Iterable[SourceProfile], strategy: str) -> List[SourceProfile]:
        """Profiles ordered by descending priority; ties keep registration order."""
        scored = [(priority_score(profile, strategy), index, profile)
                  for index, profile in enumerate(profiles)]
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [profile for _, _, profile in scored]

    @staticmethod
    def reset(profile: SourceProfile) -> None:
        profile.reputation = Reputation()
