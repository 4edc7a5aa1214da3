"""Tests for source credibility scoring."""

import pytest

from digitaltide.analytics.credibility import CredibilityScorer, SourceDescriptor, TIER_ORDER

from conftest import make_article


@pytest.fixture
def scorer():
    return CredibilityScorer()


class TestTierClassification:
    """Exact-domain tier lookup and per-tier score bands."""

    @pytest.mark.parametrize("domain", ["reuters.com", "nytimes.com", "bbc.com", "washingtonpost.com"])
    def test_tier1_domains(self, scorer, domain):
        result = scorer.calculate_credibility({'domain': domain})
        assert result.tier == 1
        assert result.score >= 0.90

    @pytest.mark.parametrize("domain", ["techcrunch.com", "npr.org", "theverge.com"])
    def test_tier2_domains(self, scorer, domain):
        result = scorer.calculate_credibility({'domain': domain})
        assert result.tier == 2
        assert 0.70 <= result.score < 0.89

    def test_tier3_domain(self, scorer):
        result = scorer.calculate_credibility({'domain': 'medium.com'})
        assert result.tier == 3
        assert 0.50 <= result.score < 0.69

    def test_unknown_domain_is_neutral_with_low_confidence(self, scorer):
        unknown = scorer.calculate_credibility({'domain': 'some-local-blog.net'})
        assert unknown.tier == 'unknown'
        assert unknown.score == 0.5

        known = [scorer.calculate_credibility({'domain': d})
                 for d in ('reuters.com', 'techcrunch.com', 'medium.com')]
        assert all(unknown.confidence < k.confidence for k in known)

    def test_lookup_is_exact_not_substring(self, scorer):
        """A domain merely containing a tier-1 name is not tier 1."""
        assert scorer.classify_domain('notreuters.com') == 'unknown'
        assert scorer.classify_domain('reuters.com.fake.io') == 'unknown'
        assert scorer.classify_domain('www.reuters.com') == 1

    def test_blocked_domain(self, scorer):
        result = scorer.calculate_credibility({'domain': 'theonion.com'})
        assert result.tier == 'blocked'
        assert result.score < 0.5

    def test_descriptor_from_url(self, scorer):
        result = scorer.calculate_credibility(SourceDescriptor(url='https://www.bbc.com/news/x'))
        assert result.tier == 1
        assert result.domain == 'bbc.com'


class TestBatchEvaluate:
    """Ordering guarantees of batch evaluation."""

    def test_order_preserved_and_monotonic(self, scorer):
        results = scorer.batch_evaluate([
            {'domain': 'reuters.com'},
            {'domain': 'techcrunch.com'},
            {'domain': 'medium.com'},
            {'domain': 'unknown-site.org'},
        ])
        tiers = [TIER_ORDER[r.tier] for r in results]
        scores = [r.score for r in results]
        assert [r.domain for r in results] == ['reuters.com', 'techcrunch.com', 'medium.com', 'unknown-site.org']
        assert tiers == sorted(tiers)
        assert scores == sorted(scores, reverse=True)

    def test_sort_by_credibility(self, scorer):
        results = scorer.batch_evaluate([{'domain': d} for d in ('medium.com', 'x.org', 'reuters.com', 'npr.org')])
        ordered = scorer.sort_by_credibility(results)
        assert [r.tier for r in ordered] == [1, 2, 3, 'unknown']


class TestUrlLookup:

    def test_malformed_url_is_unknown(self, scorer):
        result = scorer.get_credibility_for_url('not a url')
        assert result.tier == 'unknown'
        assert result.score == 0.5

    def test_none_url(self, scorer):
        assert scorer.get_credibility_for_url(None).tier == 'unknown'

    def test_www_is_stripped(self, scorer):
        assert scorer.get_credibility_for_url('https://www.nytimes.com/2024/a.html').tier == 1


class TestHistory:
    """Rolling per-domain history and snapshot/restore."""

    def test_update_sets_has_historical_data(self, scorer):
        before = scorer.calculate_credibility({'domain': 'example.com'})
        assert before.metadata['has_historical_data'] is False

        assert scorer.update_source_history({'domain': 'example.com', 'quality': 0.9})
        after = scorer.calculate_credibility({'domain': 'example.com'})
        assert after.metadata['has_historical_data'] is True

    def test_update_without_domain_is_rejected(self, scorer):
        assert scorer.update_source_history({'quality': 0.5}) is False

    def test_confidence_rises_with_history(self, scorer):
        initial = scorer.calculate_credibility({'domain': 'example.com'}).confidence
        for _ in range(30):
            scorer.update_source_history({'domain': 'example.com', 'quality': 0.8})
        later = scorer.calculate_credibility({'domain': 'example.com'})
        assert later.confidence > initial
        assert later.confidence <= 1.0
        # Volume alone never lifts an unknown source to known-tier confidence
        assert later.confidence < scorer.calculate_credibility({'domain': 'medium.com'}).confidence

    def test_history_raises_unknown_score_within_band(self, scorer):
        for _ in range(10):
            scorer.update_source_history({'domain': 'good-blog.com', 'quality': 1.0, 'success': True})
        result = scorer.calculate_credibility({'domain': 'good-blog.com'})
        assert 0.5 < result.score < 0.70

    def test_supplied_history_used(self, scorer):
        result = scorer.calculate_credibility({
            'domain': 'good-blog.com',
            'historical_data': {'article_count': 20, 'success_rate': 1.0, 'avg_quality': 1.0,
                                'fact_check_score': 1.0, 'error_rate': 0.0},
        })
        assert result.factors['historical_performance'] == 1.0
        assert result.metadata['has_historical_data'] is True
        assert 0.6 < result.score < 0.70

    def test_supplied_history_accepts_camel_case(self, scorer):
        descriptor = SourceDescriptor(domain='good-blog.com',
                                      historical_data={'articleCount': 10, 'successRate': 0.0,
                                                       'avgQuality': 0.0, 'factCheckScore': 0.0,
                                                       'errorRate': 1.0})
        result = scorer.calculate_credibility(descriptor)
        assert result.factors['historical_performance'] == 0.0
        assert result.metadata['has_historical_data'] is True

    def test_thin_supplied_history_ignored(self, scorer):
        result = scorer.calculate_credibility({
            'domain': 'good-blog.com',
            'historicalData': {'articleCount': 2, 'successRate': 1.0},
        })
        assert result.factors['historical_performance'] == 0.5
        assert result.metadata['has_historical_data'] is False

    def test_history_is_bounded(self):
        scorer = CredibilityScorer(max_history_per_domain=5)
        for _ in range(20):
            scorer.update_source_history({'domain': 'example.com', 'quality': 0.5})
        assert scorer.history_size() == 5

    def test_article_updates_history(self, scorer):
        article = make_article("Quarterly results beat expectations", url="https://www.reuters.com/markets/q2")
        assert scorer.update_source_history(article)
        assert scorer.calculate_credibility({'domain': 'reuters.com'}).metadata['history_size'] == 1

    def test_export_clear_import_roundtrip(self, scorer):
        for domain in ('reuters.com', 'example.com', 'medium.com'):
            for quality in (0.2, 0.6, 0.9):
                scorer.update_source_history({'domain': domain, 'quality': quality})
        size = scorer.history_size()
        snapshot = scorer.export_history()

        scorer.clear_history()
        assert scorer.history_size() == 0

        assert scorer.import_history(snapshot) == size
        assert scorer.history_size() == size

    def test_import_skips_corrupt_entries(self, scorer):
        snapshot = [
            {'domain': 'example.com', 'records': [
                {'timestamp': '2024-06-01T10:00:00Z', 'quality': 0.7, 'success': True},
                {'timestamp': 'garbage', 'quality': 0.7},
                {'quality': 0.3},
            ]},
            {'records': []},
            'not a mapping',
        ]
        assert scorer.import_history(snapshot) == 1
        assert scorer.history_size() == 1


class TestContentQuality:

    def test_recent_articles_raise_content_factor(self, scorer):
        rich = make_article(
            "A thorough investigation into municipal water infrastructure funding",
            content="x" * 600, author="Reporter", image="https://example.com/a.jpg",
        )
        sparse = {'title': 'Hi', 'url': 'https://example.com/hi'}

        high = scorer.calculate_credibility({'domain': 'example.com', 'recent_articles': [rich]})
        low = scorer.calculate_credibility({'domain': 'example.com', 'recent_articles': [sparse]})
        assert high.factors['content_quality'] > low.factors['content_quality']
        assert high.score >= low.score

    def test_stats_and_config(self, scorer):
        scorer.calculate_credibility({'domain': 'reuters.com'})
        scorer.calculate_credibility({'domain': 'unknown.io'})
        stats = scorer.get_stats()
        assert stats['evaluations_performed'] == 2
        assert stats['tier1_count'] == 1
        assert stats['unknown_count'] == 1
        assert scorer.get_config()['weights']['source_reputation'] == 0.60
