from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from ..errors import InvalidTransition, NotFound
from ..models import EDITABLE_FIELDS, PRIORITIES, Classification, IntelligenceItem, Outcome, QueueEntry, ReviewItem, default_pirs
from ..models.classification import MAX_SUMMARY, MAX_TITLE
from ..storage import Repository
from ..utils.logging import get_logger

logger = get_logger("triage.pipeline.review")

Publisher = Callable[[Dict[str, Any]], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ReviewWorkflow:
    """Analyst review of relevant classifications.

    States: pending_review -> approved | rejected, approved -> published.
    A failed publish keeps the item approved and records ``publish_error``
    so it can be retried. Bulk operations report one ``Outcome`` per item
    and never roll back items that already succeeded.
    """

    def __init__(
        self,
        repository: Repository,
        *,
        publisher: Optional[Publisher] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.publisher = publisher
        self._clock = clock

    def submit(self, entry: QueueEntry, classification: Classification) -> Optional[ReviewItem]:
        """Open a review for a relevant classification; None for anything else."""
        if not classification.reviewable:
            logger.debug("Entry %s not reviewable (relevant=%s, category=%s)", entry.id, classification.relevant, classification.category)
            return None
        item = self.repository.create_review_item(entry.id, classification)
        logger.info("Review item %s opened for entry %s (%s)", item.id, entry.id, classification.category)
        return item

    def route(self, entry: QueueEntry, classification: Classification) -> Optional[ReviewItem]:
        """Move a claimed entry to ``review`` and open its review item together.

        Returns None when the entry is no longer being processed (for
        instance its claim expired and another worker took it over).
        """
        if not classification.reviewable:
            raise ValueError(f"entry {entry.id} is not reviewable")
        item = self.repository.route_to_review(entry.id, classification)
        if item is not None:
            logger.info("Review item %s opened for entry %s (%s)", item.id, entry.id, classification.category)
        return item

    def get(self, review_id: int) -> Optional[ReviewItem]:
        return self.repository.get_review_item(review_id)

    def _require(self, review_id: int) -> ReviewItem:
        item = self.repository.get_review_item(review_id)
        if item is None:
            raise NotFound(f"review item {review_id} not found")
        return item

    def pending(self) -> List[ReviewItem]:
        return self.repository.list_review_items("pending_review")

    def approved(self) -> List[ReviewItem]:
        return self.repository.list_review_items("approved")

    def rejected(self) -> List[ReviewItem]:
        return self.repository.list_review_items("rejected")

    def _categories(self) -> Set[str]:
        # "none" is never a PIR category, so it cannot be chosen here
        pirs = self.repository.get_active_pirs() or default_pirs()
        return {p.category for p in pirs}

    def edit(self, review_id: int, **changes: Any) -> ReviewItem:
        """Override classification fields while the item awaits review."""
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields not editable: {sorted(unknown)}")
        item = self._require(review_id)
        if item.state != "pending_review":
            raise InvalidTransition(f"review item {review_id} is {item.state}; edits are closed")

        clean: Dict[str, Any] = {}
        for name, value in changes.items():
            if name == "title":
                clean[name] = str(value).strip()[:MAX_TITLE]
            elif name == "summary":
                clean[name] = str(value).strip()[:MAX_SUMMARY]
            elif name == "priority":
                if value not in PRIORITIES:
                    raise ValueError(f"Invalid priority '{value}'")
                clean[name] = value
            elif name == "category":
                category = str(value).strip()
                allowed = self._categories()
                if category not in allowed:
                    raise ValueError(f"Invalid category '{value}'; expected one of {sorted(allowed)}")
                clean[name] = category
            elif name == "confidence":
                if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
                    raise ValueError(f"Confidence must be an integer 0-100, got {value!r}")
                clean[name] = value

        edits = {**item.edits, **clean}
        if not self.repository.update_review_edits(review_id, edits):
            raise InvalidTransition(f"review item {review_id} left pending_review during edit")
        return self._require(review_id)

    def _decide(self, review_id: int, decision: str, decided_by: str) -> ReviewItem:
        item = self._require(review_id)
        if item.state != "pending_review":
            raise InvalidTransition(f"review item {review_id} is already {item.state}")
        if not self.repository.record_review_decision(review_id, decision, decided_by, self._clock()):
            current = self._require(review_id)
            raise InvalidTransition(f"review item {review_id} is already {current.state}")
        logger.info("Review item %s %s by %s", review_id, decision, decided_by)
        return self._require(review_id)

    def approve(self, review_id: int, decided_by: str = "analyst") -> ReviewItem:
        return self._decide(review_id, "approved", decided_by)

    def reject(self, review_id: int, decided_by: str = "analyst") -> ReviewItem:
        return self._decide(review_id, "rejected", decided_by)

    def _bulk(self, action: Callable[[int], Any], ids: List[int]) -> List[Outcome]:
        outcomes: List[Outcome] = []
        for review_id in ids:
            try:
                action(review_id)
            except Exception as exc:  # noqa: BLE001 - one failed item must not stop the rest
                logger.warning("Bulk review action failed for %s: %s", review_id, exc)
                outcomes.append(Outcome(review_id, False, str(exc)))
            else:
                outcomes.append(Outcome(review_id, True))
        return outcomes

    def approve_all(self, decided_by: str = "analyst") -> List[Outcome]:
        return self._bulk(lambda rid: self.approve(rid, decided_by), [i.id for i in self.pending()])

    def reject_all(self, decided_by: str = "analyst") -> List[Outcome]:
        return self._bulk(lambda rid: self.reject(rid, decided_by), [i.id for i in self.pending()])

    @staticmethod
    def _record(item: ReviewItem) -> Dict[str, Any]:
        final = item.effective()
        return {
            "title": final.title,
            "summary": final.summary,
            "quote": final.quote,
            "content": item.content,
            "category": final.category,
            "priority": final.priority,
            "confidence": final.confidence,
            "reasoning": final.reasoning,
            "tags": list(final.tags),
            "source_name": item.origin,
            "link": item.link,
        }

    def publish(self, review_id: int) -> IntelligenceItem:
        """Publish an approved item; on failure it stays approved with the error kept."""
        item = self._require(review_id)
        if item.state != "approved":
            raise InvalidTransition(f"review item {review_id} is {item.state}, not approved")
        record = self._record(item)
        try:
            if self.publisher is not None:
                self.publisher(record)
            published = self.repository.publish_approved_item(review_id, record)
        except Exception as exc:
            self.repository.set_publish_error(review_id, str(exc))
            logger.error("Publishing review item %s failed: %s", review_id, exc)
            raise
        logger.info("Published review item %s as intelligence item %s", review_id, published.id)
        return published

    def publish_approved(self) -> List[Outcome]:
        outcomes: List[Outcome] = []
        for item in self.approved():
            try:
                self.publish(item.id)
            except Exception as exc:  # noqa: BLE001 - reported per item, error kept on the row
                outcomes.append(Outcome(item.id, False, str(exc)))
            else:
                outcomes.append(Outcome(item.id, True))
        return outcomes

    def export(self) -> Dict[str, Any]:
        """JSON-ready snapshot of every review item grouped by state."""

        def row(item: ReviewItem) -> Dict[str, Any]:
            return {
                "id": item.id,
                "queue_entry_id": item.queue_entry_id,
                "state": item.state,
                "decided_by": item.decided_by,
                "decided_at": _iso(item.decided_at),
                "published_at": _iso(item.published_at),
                "publish_error": item.publish_error,
                "source": item.origin,
                "link": item.link,
                "edited_fields": sorted(item.edits),
                **item.effective().to_dict(),
            }

        snapshot: Dict[str, Any] = {"exported_at": self._clock().isoformat()}
        for state in ("pending_review", "approved", "rejected", "published"):
            snapshot[state] = [row(i) for i in self.repository.list_review_items(state)]
        return snapshot
