"""Feed fetching for HTML listing pages, RSS/Atom feeds and JSON news APIs."""

import re
from datetime import UTC, datetime
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlsplit, urlunsplit

import feedparser
import requests
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from .config import FeedSource
from .exceptions import FetchError, ParseError
from .logging_config import create_execution_logger
from .models import Candidate

USER_AGENT = "patchnotes-bot/1.0 (Discord update relay)"

_RAW_HREF_RE = re.compile(r"""href\s*=\s*(['"])(.*?)\1""", re.IGNORECASE)


def with_language(url: str, language: str | None, param: str = "l") -> str:
    """Add the language query parameter unless the URL already carries one."""
    if not language:
        return url
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if any(key == param for key, _ in query):
        return url
    query.append((param, language))
    return urlunsplit(parts._replace(query=urlencode(query)))


def extract_content_html(
    page_html: str,
    content_class: str | None = "patchnotes",
    content_id: str | None = "patchnotes",
) -> str:
    """Locate the announcement body inside a full page.

    Tries, in order: a ``div`` whose class contains ``content_class``, the
    element with id ``content_id``, the first ``<article>``, the ``<body>``,
    and finally the whole document. Returns the inner HTML of the first match.
    """
    soup = BeautifulSoup(page_html or "", "html.parser")

    container = None
    if content_class:
        container = soup.find("div", class_=re.compile(re.escape(content_class)))
    if container is None and content_id:
        container = soup.find(id=content_id)
    if container is None:
        container = soup.find("article")
    if container is None:
        container = soup.body
    if container is None:
        return str(soup)
    return container.decode_contents()


def _parse_published(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        published = date_parser.parse(raw)
    except (ValueError, TypeError, OverflowError):
        return None
    if published.tzinfo is None:
        published = published.replace(tzinfo=UTC)
    return published


class FeedFetcher:
    """Fetches candidates from configured sources.

    The parser is chosen from ``FeedSource.kind`` through a lookup table, so
    adding a source shape means adding one parse method and one table entry.
    """

    def __init__(
        self,
        timeout: int = 30,
        execution_id: str | None = None,
        session: requests.Session | None = None,
    ):
        """Initialize FeedFetcher with configuration.

        Args:
            timeout: HTTP request timeout in seconds
            execution_id: Execution ID for logging context
            session: Optional pre-configured HTTP session
        """
        self.timeout = timeout
        self.logger = create_execution_logger("feed_fetcher", execution_id)
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        self._parsers = {
            "html": self._parse_listing,
            "rss": self._parse_rss,
            "json": self._parse_json,
        }

        self.logger.info("FeedFetcher initialized", timeout=timeout)

    def fetch_candidates(self, source: FeedSource) -> list[Candidate]:
        """Fetch one source and return its candidates, newest first.

        Raises:
            FetchError: On transport failure or non-2xx response
            ParseError: If the document holds no recognizable entry structure
        """
        parser = self._parsers.get(source.kind)
        if parser is None:
            raise ParseError(f"Unsupported feed type: {source.kind}")

        parsed_url = urlparse(source.url)
        if parsed_url.scheme != "https":
            raise FetchError(f"Feed URL must use HTTPS protocol: {source.url}")

        params = None
        if source.kind == "json":
            params = {"count": 1, "format": "json"}
            if source.language:
                params["l"] = source.language
            if source.app_id:
                params["appid"] = source.app_id

        response = self._get(source.url, params=params)
        candidates = parser(response, source)
        self.logger.log_source_fetch(source.url, len(candidates))
        return candidates

    def fetch_content(self, url: str, source: FeedSource) -> str:
        """Fetch a candidate's own page and extract its body markup."""
        self.logger.info("Fetching update page", candidate_link=url)
        response = self._get(url)
        content = extract_content_html(
            response.text, source.content_class, source.content_id
        )
        self.logger.debug(
            "Extracted content container",
            candidate_link=url,
            content_length=len(content),
        )
        return content

    def _get(self, url: str, params: dict | None = None) -> requests.Response:
        try:
            self.logger.debug("Downloading", source_url=url)
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            self.logger.error(
                f"Failed to download {url}: {e}", source_url=url, error=str(e)
            )
            raise FetchError(f"Failed to fetch {url}: {e}") from e
        return response

    def _parse_listing(self, response: requests.Response, source: FeedSource) -> list[Candidate]:
        """Collect update links from an HTML listing page in document order."""
        pattern = re.compile(source.link_pattern, re.IGNORECASE)
        found: list[tuple[str, str]] = []

        soup = BeautifulSoup(response.text, "html.parser")
        for tag in soup.find_all(href=True):
            href = tag["href"].strip()
            if pattern.search(href):
                title = tag.get_text(" ", strip=True) if tag.name == "a" else ""
                found.append((href, title))

        if not found:
            # Client-rendered listings keep their links inside script markup
            for match in _RAW_HREF_RE.finditer(response.text):
                href = match.group(2).strip()
                if pattern.search(href):
                    found.append((href, ""))

        candidates = []
        seen = set()
        for href, title in found:
            link = with_language(urljoin(source.url, href), source.language)
            if link in seen:
                continue
            seen.add(link)
            candidates.append(Candidate(title=title, link=link, source_kind="html"))
        return candidates

    def _parse_rss(self, response: requests.Response, source: FeedSource) -> list[Candidate]:
        """Parse RSS/Atom entries with feedparser, one candidate per entry."""
        feed = feedparser.parse(response.content)

        if feed.bozo and hasattr(feed, "bozo_exception"):
            self.logger.warning(
                f"Feed parsing warning for {source.url}: {feed.bozo_exception}",
                source_url=source.url,
            )
            if not feed.entries:
                raise ParseError(f"No entries could be parsed from {source.url}")

        candidates = []
        for entry in feed.entries:
            body = ""
            if entry.get("content"):
                body = entry["content"][0].get("value", "")
            if not body:
                body = entry.get("summary", "") or entry.get("description", "")

            candidates.append(
                Candidate(
                    title=entry.get("title", "").strip(),
                    link=entry.get("link", "").strip(),
                    body_markup=body,
                    source_kind="rss",
                    published=_parse_published(
                        entry.get("published") or entry.get("updated")
                    ),
                )
            )
        return candidates

    def _parse_json(self, response: requests.Response, source: FeedSource) -> list[Candidate]:
        """Read the single item returned by a JSON news API."""
        try:
            data = response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {source.url}: {e}") from e

        if not isinstance(data, dict):
            raise ParseError(f"Unexpected JSON document from {source.url}")

        items = None
        if isinstance(data.get("appnews"), dict):
            items = data["appnews"].get("newsitems")
        if items is None:
            items = data.get("newsitems", data.get("items"))
        if not isinstance(items, list):
            raise ParseError(f"No news items in JSON from {source.url}")
        if not items:
            return []

        item = items[0]
        if not isinstance(item, dict):
            raise ParseError(f"Malformed news item in JSON from {source.url}")

        published = None
        if isinstance(item.get("date"), (int, float)):
            published = datetime.fromtimestamp(item["date"], UTC)

        return [
            Candidate(
                title=str(item.get("title", "")).strip(),
                link=str(item.get("url") or item.get("link") or "").strip(),
                body_markup=str(item.get("contents") or item.get("content") or ""),
                source_kind="json",
                published=published,
            )
        ]
