"""
Search source adapters.

A source knows how to ask one upstream site for a keyword (which requests to
send) and how to read the documents it returns into DocumentEntry items.
Page-structure knowledge lives in configuration (settings.yaml "sources"):

- HtmlListingSource: CSS selectors over an HTML result listing (bs4)
- JsonApiSource: dotted field paths over a JSON API response

Adapters raise ParseError for documents they cannot read. A readable
document with no items is an empty list, not an error.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote, urljoin

from bs4 import BeautifulSoup, Comment, Tag

from panlink.crawler.fetcher import FetchRequest
from panlink.utils.config import SourceConfig
from panlink.utils.errors import ParseError
from panlink.utils.logging import get_logger
from panlink.utils.schemas import DocumentEntry, EntryLink, RawDocument

logger = get_logger(__name__)

CONTENT_SNIPPET_LENGTH = 300

_HORIZONTAL_SPACE = re.compile(r"[ \t\u00a0\u3000]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an upstream timestamp into an aware UTC datetime.

    Accepts ISO 8601 strings (``T`` or space separated, ``/`` dates) and unix
    epochs in seconds or milliseconds. Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None

    if isinstance(value, int | float) or (isinstance(value, str) and value.strip().isdigit()):
        epoch = float(value)
        if epoch > 1e12:
            epoch /= 1000.0
        try:
            return datetime.fromtimestamp(epoch, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None

    text = str(value).strip().replace("/", "-")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def normalize_text(text: str) -> str:
    """Collapse horizontal whitespace and blank lines."""
    lines = (_HORIZONTAL_SPACE.sub(" ", line).strip() for line in text.split("\n"))
    return _BLANK_LINES.sub("\n", "\n".join(lines)).strip()


def element_text(element: Tag, base_url: str = "") -> str:
    """Visible text of an element with each anchor's href after its label.

    The element is modified in place.
    """
    for node in element.find_all(["script", "style", "noscript"]):
        node.decompose()
    for comment in element.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    for br in element.find_all("br"):
        br.replace_with("\n")
    for anchor in element.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if not href or href.startswith(("#", "javascript:")):
            continue
        absolute = urljoin(base_url, href)
        if absolute not in anchor.get_text():
            anchor.append(f" {absolute} ")
    return normalize_text(element.get_text(" "))


def get_path(data: Any, path: str | None) -> Any:
    """Follow a dotted path through dicts and lists ("data.items.0.title")."""
    if not path:
        return data
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def _string_leaves(data: Any) -> list[str]:
    if isinstance(data, str):
        return [data]
    if isinstance(data, dict):
        return [s for value in data.values() for s in _string_leaves(value)]
    if isinstance(data, list):
        return [s for value in data for s in _string_leaves(value)]
    return []


# =============================================================================
# Base Source
# =============================================================================


class SearchSource(ABC):
    """Base class for search sources."""

    name: str = ""

    @abstractmethod
    def build_requests(self, keyword: str, pages: int) -> list[FetchRequest]:
        """Requests to send for a keyword, one per page."""

    @abstractmethod
    def parse(self, document: RawDocument) -> list[DocumentEntry]:
        """Read a fetched document into entries.

        Raises:
            ParseError: If the document cannot be read.
        """


class ConfiguredSource(SearchSource):
    """Source driven by a SourceConfig."""

    def __init__(self, config: SourceConfig):
        self.config = config
        self.name = config.name

    def build_requests(self, keyword: str, pages: int) -> list[FetchRequest]:
        requests = []
        for i in range(max(1, pages)):
            page = str(self.config.first_page + i * self.config.page_step)
            url = (
                self.config.url_template
                .replace("{keyword}", quote(keyword, safe=""))
                .replace("{page}", page)
            )
            body = None
            if self.config.body_template is not None:
                body = (
                    self.config.body_template
                    .replace("{keyword}", json.dumps(keyword, ensure_ascii=False)[1:-1])
                    .replace("{page}", page)
                )
            requests.append(
                FetchRequest(
                    url=url,
                    method=self.config.method,
                    headers=dict(self.config.headers),
                    body=body,
                )
            )
        return requests


class HtmlListingSource(ConfiguredSource):
    """HTML result listing read with CSS selectors."""

    def _select_text(self, item: Tag, selector: str | None) -> str:
        if not selector:
            return ""
        node = item.select_one(selector)
        return normalize_text(node.get_text(" ")) if node is not None else ""

    def _timestamp(self, item: Tag) -> datetime | None:
        if not self.config.timestamp_selector:
            return None
        node = item.select_one(self.config.timestamp_selector)
        if node is None:
            return None
        if self.config.timestamp_attribute:
            return parse_timestamp(node.get(self.config.timestamp_attribute))
        return parse_timestamp(node.get_text(strip=True))

    def _ref(self, item: Tag, base_url: str) -> str | None:
        if self.config.id_attribute:
            value = item.get(self.config.id_attribute)
            if value:
                return str(value)
        if self.config.title_selector:
            node = item.select_one(self.config.title_selector)
            if node is not None:
                anchor = node if node.name == "a" else node.find("a", href=True)
                if anchor is not None and anchor.get("href"):
                    return urljoin(base_url, str(anchor["href"]))
        return None

    def parse(self, document: RawDocument) -> list[DocumentEntry]:
        if not document.text.strip():
            raise ParseError("Empty HTML document", source=self.name)

        soup = BeautifulSoup(document.text, "html.parser")
        try:
            items = soup.select(self.config.item_selector or "")
        except Exception as e:
            raise ParseError(
                f"Invalid item selector {self.config.item_selector!r}: {e}",
                source=self.name,
            ) from e

        entries = []
        for item in items:
            title = self._select_text(item, self.config.title_selector)
            content = self._select_text(item, self.config.content_selector)
            timestamp = self._timestamp(item)
            ref = self._ref(item, document.url)
            text = element_text(item, document.url)
            if not title:
                title = text.split("\n", 1)[0]
            entries.append(
                DocumentEntry(
                    title=title,
                    content=(content or text)[:CONTENT_SNIPPET_LENGTH],
                    text=text,
                    timestamp=timestamp,
                    ref=ref,
                )
            )

        logger.debug("HTML listing parsed", source=self.name, items=len(entries))
        return entries


class JsonApiSource(ConfiguredSource):
    """JSON API response read with dotted field paths."""

    def parse(self, document: RawDocument) -> list[DocumentEntry]:
        try:
            data = json.loads(document.text)
        except ValueError as e:
            raise ParseError(f"Invalid JSON: {e}", source=self.name) from e

        items = get_path(data, self.config.items_path)
        if items is None:
            return []
        if not isinstance(items, list):
            raise ParseError(
                f"Expected a list at {self.config.items_path!r}, got {type(items).__name__}",
                source=self.name,
            )

        entries = []
        for item in items:
            if not isinstance(item, dict):
                continue
            title = normalize_text(str(get_path(item, self.config.title_field) or ""))
            content = normalize_text(str(get_path(item, self.config.content_field) or ""))
            ref = get_path(item, self.config.id_field) if self.config.id_field else None
            timestamp = None
            if self.config.timestamp_field:
                timestamp = parse_timestamp(get_path(item, self.config.timestamp_field))

            links: tuple[EntryLink, ...] = ()
            link = ""
            if self.config.link_field:
                link = str(get_path(item, self.config.link_field) or "").strip()
            if link:
                password = None
                if self.config.password_field:
                    password = str(get_path(item, self.config.password_field) or "").strip()
                links = (EntryLink(url=link, password=password or None),)

            leaves = [
                s for s in _string_leaves(item)
                if s.strip() and s not in (title, content, link)
            ]
            text = "\n".join([title, content, *leaves, link])

            entries.append(
                DocumentEntry(
                    title=title,
                    content=content[:CONTENT_SNIPPET_LENGTH],
                    text=text,
                    timestamp=timestamp,
                    ref=str(ref) if ref not in (None, "") else None,
                    links=links,
                )
            )

        logger.debug("JSON response parsed", source=self.name, items=len(entries))
        return entries
