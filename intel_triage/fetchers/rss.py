from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from xml.sax import SAXException

import feedparser

from ..errors import FetchError, ParseError
from ..models import Feed, FeedDialect, FeedItem
from ..utils.logging import get_logger
from .http import FeedFetcher

logger = get_logger("triage.fetchers.rss")


def _parse_datetime(entry: dict) -> Optional[datetime]:
    # feedparser normalizes both dialects to UTC struct_time values
    for key in ("published_parsed", "updated_parsed"):
        tm = entry.get(key)
        if tm:
            try:
                return datetime(*tm[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                return None
    return None


def detect_dialect(parsed: Any) -> FeedDialect:
    """Map feedparser's version string onto the two supported dialects."""
    version = getattr(parsed, "version", "") or ""
    if version.startswith("rss"):
        return "rss"
    if version.startswith("atom"):
        return "atom"
    exc = getattr(parsed, "bozo_exception", None)
    if getattr(parsed, "bozo", False) and exc is not None:
        raise ParseError(f"malformed feed XML: {exc}")
    raise ParseError("unrecognized format: neither RSS channel nor Atom feed root")


def _entry_content(entry: Any) -> Optional[str]:
    # RSS content:encoded and Atom <content> both land in entry.content
    contents = entry.get("content")
    if contents and isinstance(contents, list):
        value = contents[0].get("value")
        if value and value.strip():
            return value.strip()
    return None


def _entry_categories(entry: Any) -> List[str]:
    terms: List[str] = []
    for tag in entry.get("tags") or []:
        term = (tag.get("term") or tag.get("label") or "").strip()
        if term:
            terms.append(term)
    return terms


def _to_item(entry: Any) -> Optional[FeedItem]:
    title = (entry.get("title") or "").strip()
    description = (entry.get("summary") or "").strip() or None
    if not title and not description:
        return None
    return FeedItem(
        title=title,
        link=(entry.get("link") or "").strip(),
        description=description,
        content=_entry_content(entry),
        published=_parse_datetime(entry),
        author=(entry.get("author") or "").strip() or None,
        guid=(entry.get("id") or "").strip() or None,
        categories=_entry_categories(entry),
    )


def parse_feed(data: bytes | str, dialect: Optional[FeedDialect] = None) -> Feed:
    """Parse RSS 2.0 or Atom XML into a canonical :class:`Feed`.

    ``dialect`` may be given to assert the expected format; a mismatch with
    the detected dialect is a ``ParseError``. Items are returned in document
    order; entries without a title and without a description are dropped.
    """
    if isinstance(data, str):
        # feedparser treats bare strings as URLs or paths when they look like one
        data = data.encode("utf-8")
    if not data or not data.strip():
        raise ParseError("empty feed document")

    parsed = feedparser.parse(data)
    detected = detect_dialect(parsed)
    if dialect is not None and dialect != detected:
        raise ParseError(f"declared dialect '{dialect}' but document is {detected}")

    if getattr(parsed, "bozo", False):
        exc = getattr(parsed, "bozo_exception", None)
        if isinstance(exc, SAXException):
            raise ParseError(f"malformed feed XML: {exc}")
        # e.g. declared charset overridden; entries are still usable
        logger.debug("Feed flagged bozo but parsed as %s: %s", detected, exc)

    meta: Dict[str, Any] = parsed.feed
    feed = Feed(
        title=(meta.get("title") or "").strip(),
        description=(meta.get("subtitle") or meta.get("description") or "").strip(),
        dialect=detected,
        link=meta.get("link"),
        last_build_date=meta.get("updated"),
    )

    dropped = 0
    for entry in parsed.entries:
        item = _to_item(entry)
        if item is None:
            dropped += 1
            continue
        feed.items.append(item)

    logger.debug("Parsed %s feed '%s': %d item(s), %d dropped", detected, feed.title, len(feed.items), dropped)
    return feed


def fetch_feed(fetcher: FeedFetcher, url: str, dialect: Optional[FeedDialect] = None) -> Feed:
    """Fetch ``url`` through the proxy chain and parse the result."""
    return parse_feed(fetcher.fetch(url), dialect=dialect)


def probe_feed(fetcher: FeedFetcher, url: str) -> Dict[str, Any]:
    """Check that a URL serves a parseable feed, for source setup screens."""
    try:
        feed = fetch_feed(fetcher, url)
    except (FetchError, ParseError) as exc:
        return {"success": False, "error": str(exc)}
    return {
        "success": True,
        "title": feed.title or "Unknown Feed",
        "description": feed.description,
        "dialect": feed.dialect,
        "item_count": len(feed.items),
        "last_build_date": feed.last_build_date,
    }
