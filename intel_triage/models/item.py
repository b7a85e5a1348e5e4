from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass(slots=True)
class RawItem:
    """Content as retrieved from a source, before classification."""

    title: str
    body: str
    link: str = ""
    source_id: Optional[int] = None
    origin: str = ""
    description: Optional[str] = None
    published: Optional[datetime] = None
    author: Optional[str] = None
    guid: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    location: Optional[str] = None
    content_hash: str = ""
    id: Optional[int] = None

    @property
    def text(self) -> str:
        """Text handed to the classifier."""
        return self.body or self.description or self.title
