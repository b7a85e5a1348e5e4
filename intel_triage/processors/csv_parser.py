"""Delimiter-separated uploads (social listening exports and the like).

Rows are converted into :class:`RawItem` records with the same shape the
feed parser produces, so CSV content flows through the same dedup and queue
path as feed items.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from ..errors import ParseError
from ..models import RawItem
from ..utils.logging import get_logger
from .normalize import normalize_plain_text, parse_date

logger = get_logger("triage.processors.csv")

# Canonical field -> accepted header names, in preference order.
HEADER_ALIASES: Dict[str, tuple] = {
    "content": ("content", "text", "message", "post", "body"),
    "title": ("title", "headline", "subject"),
    "source": ("source", "platform"),
    "date": ("date", "created", "timestamp"),
    "location": ("location", "country", "region"),
    "author": ("author", "user", "username"),
    "url": ("url", "link"),
}


def split_csv_line(line: str) -> List[str]:
    """Split one CSV line; fields are trimmed.

    A double quote toggles quoting wherever it appears in a field; inside
    quotes ``""`` is a literal quote and commas do not split. A line that
    ends inside quotes raises ``ParseError``.

    >>> split_csv_line('"a,b","c""d",e')
    ['a,b', 'c"d', 'e']
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and line[i + 1:i + 2] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1
    if in_quotes:
        raise ParseError("unterminated quoted field")
    fields.append("".join(current).strip())
    return fields


def _resolve(row: Dict[str, str], canonical: str) -> str:
    for alias in HEADER_ALIASES[canonical]:
        value = row.get(alias)
        if value:
            return value.strip()
    return ""


def _row_to_item(row: Dict[str, str], label: str) -> Optional[RawItem]:
    content = normalize_plain_text(_resolve(row, "content"))
    if not content:
        return None
    title = _resolve(row, "title") or " ".join(content.split()[:12])
    return RawItem(
        title=normalize_plain_text(title),
        body=content,
        link=_resolve(row, "url"),
        origin=_resolve(row, "source") or label,
        published=parse_date(_resolve(row, "date")),
        author=_resolve(row, "author") or None,
        location=_resolve(row, "location") or None,
    )


def parse_csv(text: str, label: str = "unknown") -> List[RawItem]:
    """Parse CSV text into canonical items.

    Raises ``ParseError`` when there is no header plus at least one data row.
    A row that fails to parse is logged and skipped; rows whose content is
    empty after trimming are dropped.
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise ParseError("CSV must have at least a header row and one data row")

    headers = [h.lower() for h in split_csv_line(lines[0])]
    items: List[RawItem] = []
    skipped = 0
    for number, line in enumerate(lines[1:], start=2):
        try:
            values = split_csv_line(line)
            row = {h: (values[i] if i < len(values) else "") for i, h in enumerate(headers)}
            item = _row_to_item(row, label)
        except ParseError as exc:
            logger.warning("Skipping malformed CSV row %d in %s: %s", number, label, exc)
            skipped += 1
            continue
        if item is None:
            skipped += 1
            continue
        items.append(item)

    logger.info("Parsed %d CSV item(s) from %s (skipped=%d)", len(items), label, skipped)
    return items
