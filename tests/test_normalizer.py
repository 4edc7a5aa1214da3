"""Tests for raw article normalization."""

import time
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from digitaltide.core.models import Article, compute_fingerprint
from digitaltide.ingestor.normalizer import clean_text, normalize_article, normalize_batch

from conftest import raw_item


class TestCleanText:

    def test_strips_html_and_scripts(self):
        html = "<p>Hello <b>world</b></p><script>alert(1)</script><style>p{}</style>"
        assert clean_text(html) == "Hello world"

    def test_entities_and_whitespace(self):
        assert clean_text("  Fish &amp; chips\n\n  tonight ") == "Fish & chips tonight"

    def test_empty(self):
        assert clean_text(None) == ""
        assert clean_text("") == ""


class TestNormalizeArticle:
    """Both API-style dicts and feedparser-style entries are accepted."""

    def test_api_item(self):
        item = raw_item("Rates held steady", "https://www.example.com/rates?utm_source=feed",
                        content="<p>The central bank kept rates unchanged.</p>", source="Example Wire")
        item["source"]["credibility"] = 0.8
        item["urlToImage"] = "https://example.com/img.jpg"

        article = normalize_article(item, source_ref="newsapi")

        assert isinstance(article, Article)
        assert article.url == "https://example.com/rates"
        assert article.domain == "example.com"
        assert article.content == "The central bank kept rates unchanged."
        assert article.source_name == "Example Wire"
        assert article.source_credibility == 0.8
        assert article.source_ref == "newsapi"
        assert article.image == "https://example.com/img.jpg"
        assert article.published_at == datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)

    def test_feed_entry(self):
        entry = SimpleNamespace(
            title="  Breaking: storm warning  ",
            link="https://news.example.org/storm/",
            summary="<div>Heavy rain expected</div>",
            published_parsed=time.struct_time((2024, 6, 1, 8, 30, 0, 5, 153, 0)),
            author="Weather Desk",
        )
        article = normalize_article(entry, source_ref="rss", source_name="Example RSS")

        assert article.title == "Breaking: storm warning"
        assert article.url == "https://news.example.org/storm"
        assert article.content == "Heavy rain expected"
        assert article.author == "Weather Desk"
        assert article.source_name == "Example RSS"
        assert article.published_at.tzinfo is not None

    def test_atom_content_list(self):
        entry = {"title": "Atom post", "link": "https://blog.example.com/p/1",
                 "content": [{"value": "<p>Full body</p>"}]}
        assert normalize_article(entry).content == "Full body"

    @pytest.mark.parametrize("item", [
        {"url": "https://example.com/a"},
        {"title": "No url"},
        {"title": "Bad url", "url": "ftp://example.com/file"},
        {"title": "Relative url", "url": "/news/1"},
        {"title": "   ", "url": "https://example.com/a"},
        None,
    ])
    def test_malformed_items_dropped(self, item):
        assert normalize_article(item) is None

    def test_missing_optional_fields_stay_none(self):
        article = normalize_article({"title": "Bare", "url": "https://example.com/bare"})
        assert article.content is None
        assert article.author is None
        assert article.image is None
        assert article.published_at is None
        assert article.source_name is None

    def test_unparseable_date_is_none(self):
        article = normalize_article({"title": "T", "url": "https://example.com/t", "publishedAt": "yesterday-ish"})
        assert article.published_at is None


class TestBatchAndFingerprint:

    def test_batch_counts_malformed(self):
        items = [
            raw_item("One", "https://example.com/1"),
            {"title": "missing url"},
            raw_item("Two", "https://example.com/2"),
        ]
        articles, malformed = normalize_batch(items, source_ref="test")
        assert [a.title for a in articles] == ["One", "Two"]
        assert malformed == 1

    def test_fingerprint_from_normalized_url(self):
        a = normalize_article(raw_item("A", "https://example.com/x?utm_campaign=1"))
        b = normalize_article(raw_item("B", "https://www.example.com/x/"))
        assert a.fingerprint == b.fingerprint
        assert len(a.fingerprint) == 40

    def test_fingerprint_without_url(self):
        first = compute_fingerprint(None, "Title", "example.com")
        assert first == compute_fingerprint("", "  title ", "EXAMPLE.com")
        assert first != compute_fingerprint(None, "Other", "example.com")

    def test_fingerprint_immutable(self):
        article = normalize_article(raw_item("A", "https://example.com/x"))
        with pytest.raises(AttributeError):
            article.fingerprint = "changed"

    def test_dict_roundtrip_keeps_identity(self):
        article = normalize_article(raw_item("A", "https://example.com/x", content="body"))
        article.credibility = 0.7
        restored = Article.from_dict(article.to_dict())
        assert restored.fingerprint == article.fingerprint
        assert restored.published_at == article.published_at
        assert restored.credibility == 0.7
