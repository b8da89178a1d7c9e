"""Unit tests for FeedFetcher."""

from datetime import UTC, datetime
from unittest.mock import Mock

import pytest
import requests

from patchnotes_bot.config import FeedSource
from patchnotes_bot.exceptions import FetchError, ParseError
from patchnotes_bot.feeds import FeedFetcher, extract_content_html, with_language

LISTING_URL = "https://www.counter-strike.net/news/updates?l=finnish"

RSS_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Counter-Strike 2 News</title>
    <link>https://store.steampowered.com/news/app/730</link>
    <item>
      <title>Release Notes for 10/18/2026</title>
      <link>https://store.steampowered.com/news/app/730/view/5001</link>
      <pubDate>Sun, 18 Oct 2026 18:00:00 +0000</pubDate>
      <description><![CDATA[<p>Fixed a bug with <b>smokes</b>.</p>]]></description>
    </item>
    <item>
      <title>Community Spotlight</title>
      <link>https://store.steampowered.com/news/app/730/view/5000</link>
      <description>Art from the community</description>
    </item>
  </channel>
</rss>"""

ATOM_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Updates</title>
  <id>urn:updates</id>
  <updated>2026-10-18T10:00:00Z</updated>
  <entry>
    <title>Client Update</title>
    <id>urn:updates:1</id>
    <link href="https://www.counter-strike.net/news/updates/abc"/>
    <updated>2026-10-18T10:00:00Z</updated>
    <summary>Short summary</summary>
    <content type="html">&lt;p&gt;Atom body&lt;/p&gt;</content>
  </entry>
</feed>"""


def _response(text: str = "", content: bytes | None = None, json_data=None) -> Mock:
    response = Mock()
    response.text = text
    response.content = content if content is not None else text.encode("utf-8")
    response.raise_for_status = Mock()
    if json_data is not None:
        response.json.return_value = json_data
    return response


class TestWithLanguage:
    """Language query parameter handling."""

    def test_appends_parameter(self):
        assert (
            with_language("https://example.com/news/updates/abc", "finnish")
            == "https://example.com/news/updates/abc?l=finnish"
        )

    def test_keeps_existing_query(self):
        assert (
            with_language("https://example.com/a?foo=1", "finnish")
            == "https://example.com/a?foo=1&l=finnish"
        )

    def test_existing_language_wins(self):
        url = "https://example.com/a?l=english"
        assert with_language(url, "finnish") == url

    def test_no_language(self):
        assert with_language("https://example.com/a", None) == "https://example.com/a"


class TestExtractContentHtml:
    """Locating the announcement body inside a page."""

    def test_class_match(self):
        page = (
            "<html><body><div class='header'>Nav</div>"
            "<div class='entry patchnotes-body'><p>Notes</p></div></body></html>"
        )
        assert extract_content_html(page) == "<p>Notes</p>"

    def test_id_match(self):
        page = "<html><body><nav>Nav</nav><section id='patchnotes'><p>By id</p></section></body></html>"
        assert extract_content_html(page) == "<p>By id</p>"

    def test_article_fallback(self):
        page = "<html><body><nav>Nav</nav><article><p>In article</p></article></body></html>"
        assert extract_content_html(page) == "<p>In article</p>"

    def test_body_fallback(self):
        page = "<html><body><p>Whole body</p></body></html>"
        assert extract_content_html(page) == "<p>Whole body</p>"

    def test_fragment_fallback(self):
        assert extract_content_html("<p>Just text</p>") == "<p>Just text</p>"


class TestFeedFetcherUnit:
    """Unit tests for FeedFetcher."""

    def setup_method(self):
        self.session = Mock()
        self.fetcher = FeedFetcher(session=self.session)

    def test_listing_links_in_document_order(self):
        """Both quote styles are recognized and the language is appended."""
        page = (
            '<html><body><a href="/news/updates/abc">Release Notes</a>'
            "<a href='/news/updates/def?foo=1'>Older</a>"
            '<a href="/news/other">Other</a>'
            '<a href="/news/updates/abc">Release Notes again</a></body></html>'
        )
        self.session.get.return_value = _response(page)
        source = FeedSource(kind="html", url=LISTING_URL, language="finnish")

        candidates = self.fetcher.fetch_candidates(source)

        assert [c.link for c in candidates] == [
            "https://www.counter-strike.net/news/updates/abc?l=finnish",
            "https://www.counter-strike.net/news/updates/def?foo=1&l=finnish",
        ]
        assert candidates[0].title == "Release Notes"
        assert candidates[0].body_markup == ""
        assert candidates[0].source_kind == "html"

    def test_listing_raw_href_fallback(self):
        """Links only present inside script markup are still found."""
        page = (
            "<html><body><script>var s = '<a href=\"/news/updates/xyz\">';</script>"
            "</body></html>"
        )
        self.session.get.return_value = _response(page)
        source = FeedSource(kind="html", url=LISTING_URL, language="finnish")

        candidates = self.fetcher.fetch_candidates(source)

        assert [c.link for c in candidates] == [
            "https://www.counter-strike.net/news/updates/xyz?l=finnish"
        ]

    def test_listing_without_links(self):
        self.session.get.return_value = _response("<html><body>Nothing</body></html>")
        source = FeedSource(kind="html", url=LISTING_URL)

        assert self.fetcher.fetch_candidates(source) == []

    def test_rss_entries(self):
        self.session.get.return_value = _response(content=RSS_FEED)
        source = FeedSource(kind="rss", url="https://store.steampowered.com/feeds/news/app/730/")

        candidates = self.fetcher.fetch_candidates(source)

        assert len(candidates) == 2
        first = candidates[0]
        assert first.title == "Release Notes for 10/18/2026"
        assert first.link == "https://store.steampowered.com/news/app/730/view/5001"
        assert "Fixed a bug with" in first.body_markup
        assert "<b>smokes</b>" in first.body_markup
        assert first.published == datetime(2026, 10, 18, 18, 0, tzinfo=UTC)
        assert first.source_kind == "rss"
        assert candidates[1].published is None

    def test_atom_content_preferred_over_summary(self):
        self.session.get.return_value = _response(content=ATOM_FEED)
        source = FeedSource(kind="rss", url="https://example.com/atom.xml")

        candidates = self.fetcher.fetch_candidates(source)

        assert len(candidates) == 1
        assert candidates[0].title == "Client Update"
        assert candidates[0].link == "https://www.counter-strike.net/news/updates/abc"
        assert "Atom body" in candidates[0].body_markup
        assert "Short summary" not in candidates[0].body_markup

    def test_rss_unparseable_raises_parse_error(self):
        self.session.get.return_value = _response(content=b"not a feed at all")
        source = FeedSource(kind="rss", url="https://example.com/feed.xml")

        with pytest.raises(ParseError):
            self.fetcher.fetch_candidates(source)

    def test_json_single_item(self):
        data = {
            "appnews": {
                "appid": 730,
                "newsitems": [
                    {
                        "title": "Counter-Strike 2 Update",
                        "url": "https://store.steampowered.com/news/app/730/view/123",
                        "contents": "[list][*]Fixed smokes[/list]",
                        "date": 1700000000,
                    }
                ],
            }
        }
        self.session.get.return_value = _response(json_data=data)
        source = FeedSource(
            kind="json",
            url="https://api.steampowered.com/ISteamNews/GetNewsForApp/v2/",
            language="finnish",
            app_id="730",
        )

        candidates = self.fetcher.fetch_candidates(source)

        assert len(candidates) == 1
        assert candidates[0].title == "Counter-Strike 2 Update"
        assert candidates[0].link.endswith("/view/123")
        assert candidates[0].body_markup == "[list][*]Fixed smokes[/list]"
        assert candidates[0].published == datetime.fromtimestamp(1700000000, UTC)

        params = self.session.get.call_args.kwargs["params"]
        assert params["count"] == 1
        assert params["l"] == "finnish"
        assert params["appid"] == "730"

    def test_json_empty_list(self):
        self.session.get.return_value = _response(json_data={"appnews": {"newsitems": []}})
        source = FeedSource(kind="json", url="https://example.com/news.json")

        assert self.fetcher.fetch_candidates(source) == []

    def test_json_without_items_raises_parse_error(self):
        self.session.get.return_value = _response(json_data={"status": "ok"})
        source = FeedSource(kind="json", url="https://example.com/news.json")

        with pytest.raises(ParseError):
            self.fetcher.fetch_candidates(source)

    def test_json_invalid_document_raises_parse_error(self):
        response = _response("<html>")
        response.json.side_effect = ValueError("Expecting value")
        self.session.get.return_value = response
        source = FeedSource(kind="json", url="https://example.com/news.json")

        with pytest.raises(ParseError):
            self.fetcher.fetch_candidates(source)

    def test_http_error_raises_fetch_error(self):
        response = _response("Service Unavailable")
        response.raise_for_status.side_effect = requests.HTTPError("503 Server Error")
        self.session.get.return_value = response
        source = FeedSource(kind="html", url=LISTING_URL)

        with pytest.raises(FetchError):
            self.fetcher.fetch_candidates(source)

    def test_connection_error_raises_fetch_error(self):
        self.session.get.side_effect = requests.ConnectionError("connection refused")
        source = FeedSource(kind="rss", url="https://example.com/feed.xml")

        with pytest.raises(FetchError):
            self.fetcher.fetch_candidates(source)

    def test_http_url_rejected(self):
        source = FeedSource(kind="rss", url="http://example.com/feed.xml")

        with pytest.raises(FetchError):
            self.fetcher.fetch_candidates(source)
        self.session.get.assert_not_called()

    def test_unknown_kind_raises_parse_error(self):
        source = FeedSource(kind="csv", url="https://example.com/feed.csv")

        with pytest.raises(ParseError):
            self.fetcher.fetch_candidates(source)

    def test_fetch_content_extracts_body(self):
        page = "<html><body><div class='patchnotes'><p>Fixed a bug.</p></div></body></html>"
        self.session.get.return_value = _response(page)
        source = FeedSource(kind="html", url=LISTING_URL)

        content = self.fetcher.fetch_content(
            "https://www.counter-strike.net/news/updates/abc?l=finnish", source
        )

        assert content == "<p>Fixed a bug.</p>"
