from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional

FeedDialect = Literal["rss", "atom"]


@dataclass(slots=True)
class FeedItem:
    title: str
    link: str
    description: Optional[str] = None
    content: Optional[str] = None
    published: Optional[datetime] = None
    author: Optional[str] = None
    guid: Optional[str] = None
    categories: List[str] = field(default_factory=list)

    @property
    def body(self) -> str:
        """Full content when present, otherwise the short description."""
        return self.content or self.description or ""


@dataclass(slots=True)
class Feed:
    title: str
    description: str
    dialect: FeedDialect
    link: Optional[str] = None
    last_build_date: Optional[str] = None
    items: List[FeedItem] = field(default_factory=list)
