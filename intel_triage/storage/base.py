from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models import PIR, Classification, IntelligenceItem, QueueEntry, RawItem, ReviewItem, Source


class Repository(ABC):
    """Persistence collaborator shared by every pipeline stage.

    Implementations must make ``create_ingested_item``, ``claim``,
    ``update_queue_status`` and ``record_review_decision`` atomic so that
    concurrent workers and schedulers cannot double-insert or double-claim.
    """

    # sources

    @abstractmethod
    def save_source(self, source: Source) -> Source:
        """Insert or update a source by name; runtime health fields are kept."""

    @abstractmethod
    def get_source(self, source_id: int) -> Optional[Source]:
        ...

    @abstractmethod
    def list_sources(self, *, active_only: bool = False) -> List[Source]:
        ...

    @abstractmethod
    def update_source_state(self, source_id: int, **fields: Any) -> Optional[Source]:
        """Update fetch health / activation fields of a source."""

    # PIRs

    @abstractmethod
    def get_active_pirs(self) -> List[PIR]:
        ...

    @abstractmethod
    def save_pir(self, pir: PIR) -> PIR:
        """Insert or update a PIR keyed by category."""

    # raw items and dedup

    @abstractmethod
    def find_by_content_hash(self, content_hash: str) -> Optional[RawItem]:
        ...

    @abstractmethod
    def find_by_native_id(self, source_id: int, guid: str) -> Optional[RawItem]:
        ...

    @abstractmethod
    def create_ingested_item(
        self, item: RawItem, priority: int, *, max_attempts: int = 3
    ) -> Optional[QueueEntry]:
        """Store ``item`` and its queue entry in one transaction.

        Returns None, without side effects, when a uniqueness constraint says
        the item was already ingested.
        """

    # queue

    @abstractmethod
    def enqueue(
        self,
        content: str,
        *,
        priority: int,
        origin: str = "",
        title: str = "",
        max_attempts: int = 3,
        raw_item_id: Optional[int] = None,
    ) -> QueueEntry:
        ...

    @abstractmethod
    def get_queue_entry(self, entry_id: int) -> Optional[QueueEntry]:
        ...

    @abstractmethod
    def dequeue_by_status(
        self, status: str, *, now: Optional[datetime] = None, limit: int = 1
    ) -> List[QueueEntry]:
        """Entries in ``status`` ordered by priority desc then creation order.

        When ``now`` is given, entries whose ``available_at`` lies in the
        future are skipped.
        """

    @abstractmethod
    def claim(
        self, entry_id: int, *, expected: str, status: str, lease_until: Optional[datetime] = None
    ) -> bool:
        """Conditionally move an entry; False if another caller got there first.

        ``lease_until`` is stored as the entry's ``available_at`` so an
        abandoned claim can be recovered once it passes.
        """

    @abstractmethod
    def update_queue_status(self, entry_id: int, *, expected: str, status: str, **fields: Any) -> bool:
        """Conditional status update carrying attempts/error/backoff/classification."""

    @abstractmethod
    def list_queue(self, status: Optional[str] = None, *, limit: int = 100) -> List[QueueEntry]:
        ...

    @abstractmethod
    def count_by_status(self) -> Dict[str, int]:
        ...

    # review and publication

    @abstractmethod
    def create_review_item(self, queue_entry_id: int, classification: Classification) -> ReviewItem:
        """Create (or return the existing) review item for a queue entry."""

    @abstractmethod
    def route_to_review(self, entry_id: int, classification: Classification) -> Optional[ReviewItem]:
        """Move a processing entry to review and open its review item in one transaction.

        None when the entry is no longer in ``processing``.
        """

    @abstractmethod
    def get_review_item(self, review_id: int) -> Optional[ReviewItem]:
        ...

    @abstractmethod
    def list_review_items(self, state: Optional[str] = None) -> List[ReviewItem]:
        ...

    @abstractmethod
    def update_review_edits(self, review_id: int, edits: Dict[str, Any]) -> bool:
        """Replace the edits of a review item still pending review."""

    @abstractmethod
    def record_review_decision(self, review_id: int, decision: str, decided_by: str, decided_at: datetime) -> bool:
        """Decide a pending review and complete its queue entry atomically."""

    @abstractmethod
    def publish_approved_item(self, review_id: int, record: Dict[str, Any]) -> IntelligenceItem:
        """Insert the published record and mark the review item published."""

    @abstractmethod
    def set_publish_error(self, review_id: int, error: Optional[str]) -> None:
        ...

    @abstractmethod
    def list_intelligence_items(self, *, limit: int = 100) -> List[IntelligenceItem]:
        ...
