from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timezone
from typing import Optional

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from ..utils.logging import get_logger

_whitespace_re = re.compile(r"\s+")
_control_chars_re = re.compile(r"[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F]")

_PUNCT_TRANSLATION = {
    ord("\u2018"): "'",  # left single quote
    ord("\u2019"): "'",  # right single quote
    ord("\u201C"): '"',  # left double quote
    ord("\u201D"): '"',  # right double quote
    ord("\u2013"): "-",  # en dash
    ord("\u2014"): "-",  # em dash
    ord("\u00A0"): " ",  # non-breaking space
}

_logger = get_logger("triage.processors.normalize")


def clean_html_to_text(raw_html: str | None) -> str:
    """Strip markup from feed HTML and collapse whitespace."""
    if not raw_html:
        return ""
    if "<" not in raw_html and "&" not in raw_html:
        return _whitespace_re.sub(" ", raw_html).strip()

    soup = BeautifulSoup(raw_html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = soup.get_text(" ")
    return _whitespace_re.sub(" ", text).strip()


def normalize_plain_text(text: str | None) -> str:
    """Normalize plain text for hashing and classification.

    - strip BOM
    - fold curly quotes, dashes and non-breaking spaces
    - NFKC unicode normalization
    - drop control characters and collapse whitespace
    """
    if not text:
        return ""
    if text.startswith("\ufeff"):
        text = text.lstrip("\ufeff")
    text = text.translate(_PUNCT_TRANSLATION)
    text = unicodedata.normalize("NFKC", text)
    text = _control_chars_re.sub(" ", text)
    return _whitespace_re.sub(" ", text).strip()


def to_text(raw_html: str | None) -> str:
    return normalize_plain_text(clean_html_to_text(raw_html))


def parse_date(value: str | datetime | None) -> Optional[datetime]:
    """Parse a free-form timestamp into an aware UTC datetime, or None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = date_parser.parse(str(value))
        except (ValueError, OverflowError) as exc:
            _logger.debug("Unparseable date %r: %s", value, exc)
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def truncate(text: str, limit: int, marker: str = "") -> str:
    """Cut ``text`` to ``limit`` characters, appending ``marker`` when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + marker
