from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from .classification import Classification

ReviewState = Literal["pending_review", "approved", "rejected", "published"]
ReviewDecision = Literal["undecided", "approved", "rejected"]

EDITABLE_FIELDS = ("title", "summary", "category", "priority", "confidence")


@dataclass(slots=True)
class ReviewItem:
    id: int
    queue_entry_id: int
    classification: Classification
    state: ReviewState = "pending_review"
    decision: ReviewDecision = "undecided"
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    edits: Dict[str, Any] = field(default_factory=dict)
    content: str = ""
    origin: str = ""
    link: str = ""
    publish_error: Optional[str] = None
    published_at: Optional[datetime] = None
    intelligence_item_id: Optional[int] = None
    created_at: Optional[datetime] = None

    def effective(self) -> Classification:
        """Classification with analyst edits overriding the machine values."""
        if not self.edits:
            return self.classification
        return replace(self.classification, **self.edits)


@dataclass(slots=True)
class IntelligenceItem:
    id: int
    review_item_id: int
    title: str
    summary: str
    category: str
    priority: str
    confidence: int
    content: str = ""
    quote: str = ""
    reasoning: str = ""
    tags: list = field(default_factory=list)
    source_name: str = ""
    link: str = ""
    published_at: Optional[datetime] = None


@dataclass(slots=True)
class Outcome:
    """Per-item result of a bulk operation."""

    item_id: int
    ok: bool
    error: Optional[str] = None
