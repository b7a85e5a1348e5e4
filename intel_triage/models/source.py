from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional

SourceKind = Literal["rss", "atom", "manual", "csv"]
SourceStatus = Literal["active", "inactive", "error"]

SOURCE_KINDS = ("rss", "atom", "manual", "csv")
FEED_KINDS = ("rss", "atom")


@dataclass(slots=True)
class Source:
    """A configured origin of content (feed, CSV upload or manual entry)."""

    name: str
    url: str
    kind: SourceKind = "rss"
    id: Optional[int] = None
    refresh_interval: int = 3600
    active: bool = True
    status: SourceStatus = "active"
    consecutive_failures: int = 0
    target_pirs: List[str] = field(default_factory=list)
    last_fetched: Optional[datetime] = None
    last_successful_fetch: Optional[datetime] = None
    last_item_count: int = 0
    last_error: Optional[str] = None
    feed_title: Optional[str] = None
    feed_description: Optional[str] = None

    @property
    def is_feed(self) -> bool:
        return self.kind in FEED_KINDS
