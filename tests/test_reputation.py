"""Tests for source reputation tracking and ranking."""

from datetime import timedelta

import pytest

from digitaltide.aggregator.reputation import ReputationTracker, priority_score
from digitaltide.core.errors import ConfigurationError

from conftest import NOW, make_profile


@pytest.fixture
def tracker():
    return ReputationTracker(alpha=0.5, failure_threshold=3, cooldown_seconds=300)


class TestEMA:

    def test_first_success_sets_response_time(self, tracker):
        profile = make_profile("wire")
        tracker.record_success(profile, 400.0, article_quality=0.9, now=NOW)
        reputation = profile.reputation
        assert reputation.avg_response_time == 400.0
        assert reputation.success_rate == 1.0
        assert reputation.avg_article_quality == pytest.approx(0.7)
        assert reputation.total_requests == 1
        assert reputation.last_success == NOW

    def test_response_time_smoothed(self, tracker):
        profile = make_profile("wire")
        tracker.record_success(profile, 400.0, now=NOW)
        tracker.record_success(profile, 800.0, now=NOW)
        assert profile.reputation.avg_response_time == pytest.approx(600.0)

    def test_failure_lowers_success_rate(self, tracker):
        profile = make_profile("wire")
        tracker.record_failure(profile, now=NOW)
        assert profile.reputation.success_rate == pytest.approx(0.5)
        assert profile.reputation.consecutive_failures == 1
        assert profile.reputation.total_failures == 1

        tracker.record_success(profile, 100.0, now=NOW)
        assert profile.reputation.consecutive_failures == 0
        assert profile.reputation.success_rate == pytest.approx(0.75)

    def test_alpha_validated(self):
        with pytest.raises(ConfigurationError):
            ReputationTracker(alpha=0.0)
        with pytest.raises(ConfigurationError):
            ReputationTracker(alpha=1.5)


class TestCooldown:
    """A failure streak takes a source out of rotation until the cool-down ends."""

    def test_below_threshold_available(self, tracker):
        profile = make_profile("wire")
        for _ in range(2):
            tracker.record_failure(profile, now=NOW)
        assert tracker.is_available(profile, now=NOW)

    def test_streak_triggers_cooldown(self, tracker):
        profile = make_profile("wire")
        for _ in range(3):
            tracker.record_failure(profile, now=NOW)
        assert not tracker.is_available(profile, now=NOW + timedelta(seconds=60))
        assert tracker.is_available(profile, now=NOW + timedelta(seconds=300))

    def test_reset_clears_streak(self, tracker):
        profile = make_profile("wire")
        for _ in range(3):
            tracker.record_failure(profile, now=NOW)
        ReputationTracker.reset(profile)
        assert tracker.is_available(profile, now=NOW)
        assert profile.reputation.total_requests == 0


class TestRanking:

    def test_strategies_reorder_sources(self, tracker):
        cheap_slow = make_profile("cheap", base_credibility=0.6, cost_per_request=0.0)
        fast = make_profile("fast", base_credibility=0.6, cost_per_request=0.05)
        credible = make_profile("credible", base_credibility=0.95, cost_per_request=0.05)
        tracker.record_success(cheap_slow, 4000.0, now=NOW)
        tracker.record_success(fast, 100.0, now=NOW)
        tracker.record_success(credible, 2000.0, now=NOW)
        profiles = [cheap_slow, fast, credible]

        assert tracker.rank(profiles, "speed")[0] is fast
        assert tracker.rank(profiles, "cost")[0] is cheap_slow
        assert tracker.rank(profiles, "quality")[0] is credible

    def test_ties_keep_registration_order(self, tracker):
        profiles = [make_profile(n) for n in ("a", "b", "c")]
        assert [p.name for p in tracker.rank(profiles, "balanced")] == ["a", "b", "c"]

    def test_failures_lower_priority(self, tracker):
        healthy, flaky = make_profile("healthy"), make_profile("flaky")
        tracker.record_failure(flaky, now=NOW)
        assert priority_score(flaky, "balanced") < priority_score(healthy, "balanced")
        assert tracker.rank([flaky, healthy], "balanced")[0] is healthy

    def test_unknown_strategy(self, tracker):
        with pytest.raises(ConfigurationError):
            tracker.rank([make_profile("a")], "random")

    def test_scores_bounded(self):
        profile = make_profile("a", base_credibility=1.0)
        for strategy in ("quality", "speed", "cost", "balanced"):
            assert 0.0 <= priority_score(profile, strategy) <= 1.0
