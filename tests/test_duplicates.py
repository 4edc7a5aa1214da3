"""Tests for duplicate detection."""

import pytest

from digitaltide.analytics.duplicates import (
    REASON_EXACT,
    REASON_NEAR,
    REASON_SIMILAR,
    DuplicateDetector,
    calculate_article_quality_score,
)
from digitaltide.core.errors import ConfigurationError

from conftest import make_article

STORY = (
    "The city council approved a new budget on Tuesday that expands funding for public "
    "transit, adds two hundred teachers to local schools and freezes property taxes for "
    "another year while officials review the long term pension obligations of the city."
)


@pytest.fixture
def detector():
    return DuplicateDetector()


def corpus():
    """Mixed batch: a syndicated story, a rewrite, and unrelated pieces."""
    return [
        make_article("City council approves budget expanding transit funding",
                     url="https://localnews.com/politics/budget-approved", content=STORY),
        make_article("City council approves budget expanding transit funding",
                     url="https://localnews.com/politics/budget-approved-update", content=STORY),
        make_article("Council passes budget with transit and school funding",
                     url="https://othernews.org/city/council-budget",
                     content=STORY.replace("Tuesday", "Wednesday")),
        make_article("Local team wins championship in overtime thriller",
                     url="https://sports.example.com/final",
                     content="The home side won the title after a dramatic overtime period."),
        make_article("New telescope captures images of distant galaxy",
                     url="https://science.example.com/telescope",
                     content="Astronomers released the first images from the orbiting telescope."),
        make_article("Telescope captures first images of distant galaxy",
                     url="https://space.example.net/telescope-images",
                     content="Astronomers released the first images from the new orbiting telescope."),
    ]


class TestExactDuplicates:
    """Same normalized URL always merges with similarity 1.0."""

    def test_identical_url_different_titles(self, detector):
        a = make_article("Markets rally on rate cut hopes", url="https://example.com/markets/rally")
        b = make_article("Completely different headline", url="https://www.example.com/markets/rally/?utm_source=x")

        result = detector.detect_duplicates([a, b])

        assert len(result.unique) == 1
        assert len(result.groups) == 1
        entry = result.duplicates[0]
        assert entry.similarity_score == 1.0
        assert entry.reason == REASON_EXACT
        assert result.metadata['exact_matches'] == 1

    def test_similarity_of_exact_url_pair(self, detector):
        a = make_article("One", url="https://example.com/a")
        b = make_article("Two", url="https://example.com/a#section")
        assert detector.calculate_similarity(a, b) == 1.0

    def test_exact_pass_can_be_disabled(self, detector):
        a = make_article("Markets rally", url="https://example.com/m")
        b = make_article("Weather turns cold", url="https://example.com/m")
        result = detector.detect_duplicates([a, b], include_exact=False, include_near=False)
        assert len(result.unique) == 2

    def test_same_url_found_by_fuzzy_pass(self, detector):
        a = make_article("Volcano erupts overnight", url="https://example.com/story/1")
        b = make_article("Central bank holds rates", url="https://example.com/story/1")

        result = detector.detect_duplicates([a, b], include_exact=False, threshold=0.9)

        assert result.metadata['blocking'] is True
        assert len(result.unique) == 1
        assert result.duplicates[0].similarity_score == 1.0
        assert result.duplicates[0].reason == REASON_EXACT


class TestNearDuplicates:

    def test_same_story_same_site_is_near_duplicate(self, detector):
        articles = corpus()[:2]
        result = detector.detect_duplicates(articles)
        assert len(result.unique) == 1
        assert result.duplicates[0].reason == REASON_NEAR
        assert result.duplicates[0].similarity_score >= 0.85

    def test_similar_only_when_requested(self, detector):
        articles = corpus()
        near = detector.detect_duplicates(articles)
        loose = detector.detect_duplicates(articles, include_similar=True)
        assert len(loose.unique) <= len(near.unique)
        assert loose.metadata["threshold"] == detector.get_thresholds()["similar"]

    def test_cross_site_rewrite_is_similar(self, detector):
        original, rewrite = corpus()[0], corpus()[2]

        assert len(detector.detect_duplicates([original, rewrite]).unique) == 2

        result = detector.detect_duplicates([original, rewrite], include_similar=True)
        assert len(result.unique) == 1
        entry = result.duplicates[0]
        assert entry.reason == REASON_SIMILAR
        assert 0.5 <= entry.similarity_score < 0.85

    def test_unrelated_articles_stay_unique(self, detector):
        articles = [corpus()[3], corpus()[4]]
        result = detector.detect_duplicates(articles, include_similar=True)
        assert len(result.unique) == 2
        assert result.groups == []

    def test_grouping_is_transitive(self, detector):
        """a~b and b~c put a, b, c in one group even if a and c alone would not link."""
        extra = " Reporters asked the mayor about delays and she declined comment."
        more = " Opposition members promised a referendum campaign starting early next spring."
        a = make_article("Budget vote", url="https://a.com/budget-vote-1", content=STORY)
        b = make_article("Budget vote", url="https://a.com/budget-vote-2", content=STORY + extra)
        c = make_article("Budget vote", url="https://a.com/budget-vote-3", content=STORY + extra + more)

        assert detector.calculate_similarity(a, c) < 0.85
        result = detector.detect_duplicates([a, b, c], threshold=0.85)
        assert len(result.unique) == 1
        assert result.groups[0].size == 3


class TestMonotonicity:
    """Lowering the threshold can only merge more."""

    def test_unique_count_non_increasing_as_threshold_drops(self, detector):
        articles = corpus()
        thresholds = [0.99, 0.9, 0.85, 0.7, 0.6, 0.5, 0.3, 0.1, 0.0]
        counts = [len(detector.detect_duplicates(articles, threshold=t).unique) for t in thresholds]
        assert counts == sorted(counts, reverse=True)

    def test_group_count_non_increasing_as_threshold_rises(self, detector):
        articles = corpus()
        thresholds = [0.3, 0.5, 0.7, 0.85, 0.95]
        merged = [len(articles) - len(detector.detect_duplicates(articles, threshold=t).unique)
                  for t in thresholds]
        assert merged == sorted(merged, reverse=True)

    def test_blocking_used_only_above_bound(self, detector):
        articles = corpus()
        bound = detector.blocking_bound()
        assert 0.0 < bound < detector.get_thresholds()['near_duplicate']
        assert detector.detect_duplicates(articles, threshold=0.85).metadata['blocking'] is True
        assert detector.detect_duplicates(articles, threshold=0.5).metadata['blocking'] is False


class TestBestArticle:

    def test_best_prefers_credibility_over_length(self, detector):
        credible = make_article("Budget approved", url="https://x.com/a", content=STORY, credibility=0.95)
        longer = make_article("Budget approved", url="https://x.com/a",
                              content=STORY + " " + STORY, credibility=0.3,
                              author="Someone", image="https://x.com/i.jpg")
        result = detector.detect_duplicates([longer, credible])
        assert result.unique[0] is credible
        assert credible.duplicate_count == 1

    def test_quality_score_monotonic_in_credibility(self):
        low = make_article("Title", content=STORY, credibility=0.2)
        high = make_article("Title", content=STORY, credibility=0.9)
        assert calculate_article_quality_score(high) > calculate_article_quality_score(low)

    def test_unique_preserves_first_appearance_order(self, detector):
        sports, telescope = corpus()[3], corpus()[4]
        first, copy = corpus()[:2]
        result = detector.detect_duplicates([sports, telescope, first, copy])
        assert [a.url for a in result.unique] == [sports.url, telescope.url, first.url]


class TestConfiguration:

    def test_set_weights_accepts_valid(self, detector):
        weights = detector.set_weights({'title': 0.4, 'content': 0.6, 'url': 0})
        assert weights == {'title': 0.4, 'content': 0.6, 'url': 0}
        assert detector.get_weights() == weights

    def test_set_weights_rejects_bad_sum(self, detector):
        before = detector.get_weights()
        with pytest.raises(ConfigurationError):
            detector.set_weights({'title': 0.9, 'content': 0.9})
        assert detector.get_weights() == before

    def test_set_weights_rejects_negative(self, detector):
        with pytest.raises(ConfigurationError):
            detector.set_weights({'title': -0.2, 'content': 1.0, 'url': 0.2})

    def test_set_weights_rejects_unknown_key(self, detector):
        with pytest.raises(ConfigurationError):
            detector.set_weights({'image': 1.0})

    def test_thresholds(self, detector):
        assert detector.set_thresholds({'near_duplicate': 0.9})['near_duplicate'] == 0.9
        with pytest.raises(ConfigurationError):
            detector.set_thresholds({'similar': 0.95})
        with pytest.raises(ConfigurationError):
            detector.detect_duplicates([], threshold=1.5)


class TestSimilarityAndCache:

    def test_similarity_bounds(self, detector):
        articles = corpus()
        for a in articles:
            assert detector.calculate_similarity(a, a) == pytest.approx(1.0)
            for b in articles:
                assert 0.0 <= detector.calculate_similarity(a, b) <= 1.0

    def test_cache_and_stats(self, detector):
        articles = corpus()
        detector.detect_duplicates(articles)
        stats = detector.get_stats()
        assert stats['cache_size'] == len(articles)
        assert stats['runs'] == 1
        assert stats['total_comparisons'] > 0

        detector.clear_cache()
        assert detector.get_stats()['cache_size'] == 0

        detector.reset_stats()
        assert detector.get_stats()['total_comparisons'] == 0

    def test_cache_is_bounded(self):
        detector = DuplicateDetector(cache_size=2)
        detector.detect_duplicates(corpus())
        assert detector.get_stats()['cache_size'] == 2

    def test_empty_batch(self, detector):
        result = detector.detect_duplicates([])
        assert result.original == 0
        assert result.unique == []

    def test_groups_optional(self, detector):
        result = detector.detect_duplicates(corpus()[:2], return_groups=False)
        assert result.groups == []
        assert len(result.unique) == 1

    def test_duplicate_count_reset_for_singletons(self, detector):
        a = make_article("Markets rally", url="https://example.com/m")
        b = make_article("Weather turns cold", url="https://example.com/m")
        first = detector.detect_duplicates([a, b])
        best = first.unique[0]
        assert best.duplicate_count == 1

        second = detector.detect_duplicates([best])
        assert second.unique == [best]
        assert best.duplicate_count == 0
