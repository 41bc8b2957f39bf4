"""RSS feed parser for podcast channels and items.

Uses feedparser library to handle feed variants and extract podcast
metadata including iTunes namespace extensions. The parser only
normalizes; deciding which items become episodes is the reconciler's job.
"""

import logging
import math
import re
import xml.sax
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import List, Optional

import feedparser
import requests

from ..errors import FeedParseError, NetworkError

logger = logging.getLogger(__name__)


@dataclass
class Enclosure:
    """Audio attachment of a feed item."""

    url: str
    length: int = 0
    mime_type: str = "audio/mpeg"


@dataclass
class ParsedItem:
    """Normalized feed item."""

    title: str
    guid: str = ""
    description: Optional[str] = None
    pub_date_raw: Optional[str] = None
    publish_date: Optional[datetime] = None
    enclosure: Optional[Enclosure] = None
    duration_raw: Optional[str] = None
    duration: int = 0
    publish_date_estimated: bool = False
    warnings: List[str] = field(default_factory=list)


@dataclass
class ParsedChannel:
    """Normalized feed channel with its items in feed order."""

    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    author: Optional[str] = None
    feed_url: str = ""
    items: List[ParsedItem] = field(default_factory=list)

    @property
    def warnings(self) -> List[str]:
        return [warning for item in self.items for warning in item.warnings]


def parse_duration(value) -> int:
    """Parse an itunes:duration value into whole seconds.

    Handles three formats:
    - Seconds: "125"
    - MM:SS: "2:05"
    - HH:MM:SS: "1:02:05"

    Args:
        value: Duration string

    Returns:
        Duration in seconds, or 0 when absent or unparseable
    """
    if value is None:
        return 0

    value_str = str(value).strip()
    if not value_str:
        return 0

    parts = value_str.split(":")
    if len(parts) > 3:
        return 0

    try:
        numbers = [float(part) for part in parts]
    except ValueError:
        return 0

    if any(number < 0 for number in numbers):
        return 0

    total = 0.0
    for number in numbers:
        total = total * 60 + number
    if not math.isfinite(total):
        return 0
    return int(total)


class FeedParser:
    """Parser for podcast RSS feeds.

    Example:
        parser = FeedParser()
        channel = parser.parse_url("https://example.com/feed.xml")
        print(f"Podcast: {channel.title}")
        for item in channel.items:
            print(f"  - {item.title}")
    """

    USER_AGENT = "PodcastPlayer/1.0"
    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        user_agent: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the feed parser.

        Args:
            user_agent: Custom user agent string for feed requests
            timeout: Feed request timeout in seconds
            session: Optional requests session to reuse
        """
        self.user_agent = user_agent or self.USER_AGENT
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": self.user_agent})

    def fetch(self, feed_url: str) -> bytes:
        """Download raw feed bytes.

        Raises:
            NetworkError: If the request fails or returns an error status
        """
        logger.info(f"Fetching feed: {feed_url}")
        try:
            response = self._session.get(
                feed_url, timeout=self.timeout, allow_redirects=True
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Failed to fetch feed {feed_url}: {e}") from e
        return response.content

    def parse_url(self, feed_url: str) -> ParsedChannel:
        """Fetch and parse a feed.

        Raises:
            NetworkError: If the feed cannot be fetched
            FeedParseError: If the feed cannot be parsed
        """
        return self.parse_bytes(self.fetch(feed_url), feed_url)

    def parse_bytes(self, content: bytes, feed_url: str = "") -> ParsedChannel:
        """Parse raw RSS bytes into a ParsedChannel.

        A feed either parses completely or raises; no partial channel is
        ever returned.

        Args:
            content: Raw XML bytes
            feed_url: Original URL of the feed (for reference)

        Raises:
            FeedParseError: If the XML is malformed or the channel or its title is missing
        """
        feed = feedparser.parse(content)

        if feed.bozo and isinstance(feed.bozo_exception, xml.sax.SAXParseException):
            exc = feed.bozo_exception
            raise FeedParseError(
                f"Malformed feed XML: {exc.getMessage()}",
                line=exc.getLineNumber(),
                column=exc.getColumnNumber(),
            )
        if feed.bozo and feed.bozo_exception:
            logger.warning(f"Feed parsing warning: {feed.bozo_exception}")

        if not feed.get("version") or not feed.feed:
            raise FeedParseError("Feed has no channel", element="channel")

        title = (feed.feed.get("title") or "").strip()
        if not title:
            raise FeedParseError("Feed channel has no title", element="title")

        return self._parse_channel(feed, title, feed_url)

    def _parse_channel(
        self, feed: feedparser.FeedParserDict, title: str, feed_url: str
    ) -> ParsedChannel:
        f = feed.feed

        channel = ParsedChannel(
            title=title,
            description=self._clean_html(f.get("description") or f.get("subtitle")),
            image_url=self._extract_image_url(f),
            author=f.get("author") or f.get("itunes_author"),
            feed_url=feed_url,
        )

        for entry in feed.entries:
            channel.items.append(self._parse_item(entry))

        logger.info(f"Parsed feed '{channel.title}' with {len(channel.items)} items")
        return channel

    def _parse_item(self, entry: feedparser.FeedParserDict) -> ParsedItem:
        item = ParsedItem(
            title=entry.get("title") or entry.get("itunes_title") or "Untitled Episode",
            guid=(entry.get("id") or "").strip(),
            description=self._clean_html(
                entry.get("description") or entry.get("summary")
            ),
            pub_date_raw=entry.get("published"),
            enclosure=self._extract_enclosure(entry),
            duration_raw=entry.get("itunes_duration"),
        )

        item.duration = parse_duration(item.duration_raw)
        item.publish_date = self._parse_publish_date(entry, item)
        return item

    def _parse_publish_date(
        self, entry: feedparser.FeedParserDict, item: ParsedItem
    ) -> datetime:
        """Parse the item's pubDate, falling back to the current time.

        The fallback keeps the item orderable but is lossy, so an
        unparseable date is recorded as a warning on the item.
        """
        if entry.get("published_parsed"):
            try:
                return datetime(*entry.published_parsed[:6], tzinfo=UTC)
            except (TypeError, ValueError):
                pass

        if item.pub_date_raw:
            try:
                parsed = parsedate_to_datetime(item.pub_date_raw)
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=UTC)
                return parsed
            except (TypeError, ValueError):
                pass

            warning = f"Unparseable pubDate {item.pub_date_raw!r} for '{item.title}', using current time"
            item.warnings.append(warning)
            logger.warning(warning)

        item.publish_date_estimated = True
        return datetime.now(UTC)

    def _extract_enclosure(self, entry: feedparser.FeedParserDict) -> Optional[Enclosure]:
        """Return the first enclosure of an entry that has a URL, whatever its type."""
        for enclosure in entry.get("enclosures", []):
            url = (enclosure.get("href") or enclosure.get("url") or "").strip()
            if not url:
                continue

            length = 0
            if enclosure.get("length"):
                try:
                    length = max(int(enclosure.get("length")), 0)
                except (ValueError, TypeError):
                    pass
            return Enclosure(url=url, length=length, mime_type=enclosure.get("type") or "audio/mpeg")

        return None

    def _extract_image_url(self, feed: feedparser.FeedParserDict) -> Optional[str]:
        # Try itunes:image
        if feed.get("itunes_image"):
            if isinstance(feed.itunes_image, dict):
                return feed.itunes_image.get("href")
            return feed.itunes_image

        # Try image element
        if feed.get("image"):
            if isinstance(feed.image, dict):
                return feed.image.get("href") or feed.image.get("url")
            return feed.image

        return None

    def _clean_html(self, text: Optional[str]) -> Optional[str]:
        """Remove HTML tags and common entities from text."""
        if not text:
            return None

        clean = re.sub(r"<[^>]+>", "", text)
        clean = clean.replace("&amp;", "&")
        clean = clean.replace("&lt;", "<")
        clean = clean.replace("&gt;", ">")
        clean = clean.replace("&quot;", '"')
        clean = clean.replace("&#39;", "'")
        clean = clean.replace("&nbsp;", " ")
        clean = re.sub(r"\s+", " ", clean).strip()

        return clean if clean else None


_default_parser = None


def parse_feed(content: bytes) -> ParsedChannel:
    """Parse raw feed bytes with a shared default parser."""
    global _default_parser
    if _default_parser is None:
        _default_parser = FeedParser()
    return _default_parser.parse_bytes(content)
