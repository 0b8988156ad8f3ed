from fetcher import FeedFetcher
from models import UNTITLED


def test_normalize_entry_identity_basic():
    fetcher = FeedFetcher()
    title, url = fetcher._normalize_entry_identity(
        "  Example Title  ",
        "https://example.com/a/very/long/path" + "?" + "x" * 2050,
    )
    assert title == "Example Title"
    assert len(url) == 2048
    assert url.startswith("https://example.com/a/very/long/path?")


def test_normalize_entry_identity_defaults():
    fetcher = FeedFetcher()
    title, url = fetcher._normalize_entry_identity(None, None)
    assert title == UNTITLED
    assert url == ""


def test_normalize_entry_identity_blank_title():
    fetcher = FeedFetcher()
    title, url = fetcher._normalize_entry_identity("   ", " http://example.com ")
    assert title == "(untitled)"
    assert url == "http://example.com"


def test_resolve_entry_url_fallbacks():
    fetcher = FeedFetcher()

    assert fetcher.resolve_entry_url({"link": " https://example.com/a "}) == "https://example.com/a"
    assert fetcher.resolve_entry_url(
        {"links": [{"rel": "enclosure", "href": "https://example.com/a.mp3"},
                   {"rel": "alternate", "href": "https://example.com/b"}]}
    ) == "https://example.com/b"
    assert fetcher.resolve_entry_url({"id": "https://example.com/guid"}) == "https://example.com/guid"
    # Opaque guids are not urls
    assert fetcher.resolve_entry_url({"id": "tag:example.com,2025:42"}) == ""
    assert fetcher.resolve_entry_url({}) == ""


def test_extract_snippet_prefers_summary_and_strips_markup():
    fetcher = FeedFetcher(snippet_max_chars=100)

    entry = {
        "summary": "<p>Short <b>teaser</b></p><script>track()</script>",
        "content": [{"value": "<p>Full body</p>"}],
    }
    assert fetcher.extract_snippet(entry) == "Short teaser"
    assert fetcher.extract_snippet({"content": [{"value": "<p>Full body</p>"}]}) == "Full body"
    assert fetcher.extract_snippet({}) == ""


def test_extract_snippet_is_bounded():
    fetcher = FeedFetcher(snippet_max_chars=100)

    snippet = fetcher.extract_snippet({"description": "word " * 200})
    assert len(snippet) == 100
    assert snippet.endswith("...")


def test_entry_to_raw_item_maps_fields():
    fetcher = FeedFetcher()
    item = fetcher.entry_to_raw_item(
        {
            "title": "Scaling <em>and</em> Serving",
            "link": "https://example.com/post",
            "published": "2025-01-02T03:04:05Z",
            "summary": "Teaser",
        },
        "Example Blog",
    )
    assert item.title == "Scaling and Serving"
    assert item.url == "https://example.com/post"
    assert item.source_name == "Example Blog"
    assert item.published_at.isoformat() == "2025-01-02T03:04:05+00:00"
    assert item.snippet == "Teaser"
