from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from ..errors import InvalidTransition, QueueExhausted
from ..models import DEFAULT_MAX_ATTEMPTS, DEFAULT_PRIORITY, QUEUE_STATUSES, Classification, QueueEntry, RawItem
from ..storage import Repository
from ..utils.logging import get_logger

logger = get_logger("triage.pipeline.queue")

# status -> statuses it may move to
TRANSITIONS: Dict[str, tuple] = {
    "pending": ("processing",),
    "processing": ("pending", "review", "completed", "error"),
    "review": ("completed",),
    "error": ("pending",),
    "completed": (),
}

_CLAIM_BATCH = 5
_RECOVER_BATCH = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessingQueue:
    """Priority queue of classification work persisted in the repository.

    Entries are served by descending priority, then creation order. Moving
    an entry from ``pending`` to ``processing`` is a conditional update, so
    two workers can never hold the same entry.
    """

    def __init__(
        self,
        repository: Repository,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_backoff: float = 30.0,
        claim_timeout: float = 600.0,
        default_priority: int = DEFAULT_PRIORITY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self.claim_timeout = claim_timeout
        self.default_priority = default_priority
        self._clock = clock

    def enqueue(self, item: RawItem, priority: Optional[int] = None) -> QueueEntry:
        """Queue an already-stored raw item."""
        entry = self.repository.enqueue(
            item.text,
            priority=self.default_priority if priority is None else priority,
            origin=item.origin,
            title=item.title,
            max_attempts=self.max_attempts,
            raw_item_id=item.id,
        )
        logger.debug("Enqueued entry %s (priority=%s)", entry.id, entry.priority)
        return entry

    def enqueue_content(self, content: str, origin: str = "manual", priority: Optional[int] = None, *, title: str = "") -> QueueEntry:
        """Queue directly entered content that has no raw item behind it."""
        return self.repository.enqueue(
            content,
            priority=self.default_priority if priority is None else priority,
            origin=origin,
            title=title,
            max_attempts=self.max_attempts,
        )

    def get(self, entry_id: int) -> Optional[QueueEntry]:
        return self.repository.get_queue_entry(entry_id)

    def dequeue_next(self, status: str = "pending") -> Optional[QueueEntry]:
        """Return the next entry in ``status``.

        For ``pending`` the entry is claimed (moved to ``processing``) before
        it is returned, and entries still in retry backoff are skipped. The
        claim is a lease of ``claim_timeout`` seconds; expired claims are put
        back first so work held by a dead worker is served again.
        """
        if status not in QUEUE_STATUSES:
            raise ValueError(f"Unknown queue status '{status}'")
        if status != "pending":
            found = self.repository.dequeue_by_status(status, limit=1)
            return found[0] if found else None

        self.recover_stale()
        while True:
            now = self._clock()
            candidates = self.repository.dequeue_by_status("pending", now=now, limit=_CLAIM_BATCH)
            if not candidates:
                return None
            lease_until = now + timedelta(seconds=self.claim_timeout)
            for candidate in candidates:
                if self.repository.claim(candidate.id, expected="pending", status="processing", lease_until=lease_until):
                    return self.repository.get_queue_entry(candidate.id)
            # every candidate was taken by another worker; look again
            logger.debug("Lost claim race on %d candidate(s); retrying", len(candidates))

    def recover_stale(self) -> int:
        """Return ``processing`` entries whose claim expired to ``pending``.

        The lost attempt is counted; an entry that runs out of attempts goes
        to ``error``. Recovered entries are served again without backoff.
        """
        recovered = 0
        stale = self.repository.dequeue_by_status("processing", now=self._clock(), limit=_RECOVER_BATCH)
        for entry in stale:
            attempts = entry.attempts + 1
            target = "error" if attempts >= entry.max_attempts else "pending"
            if self.repository.update_queue_status(
                entry.id,
                expected="processing",
                status=target,
                attempts=attempts,
                last_error="claim expired before processing finished",
                available_at=None,
            ):
                recovered += 1
                logger.warning("Queue entry %s claim expired; moved to %s (attempt %d/%d)", entry.id, target, attempts, entry.max_attempts)
        return recovered

    def advance(
        self,
        entry_id: int,
        new_status: str,
        error: Optional[str] = None,
        *,
        classification: Optional[Classification] = None,
    ) -> Optional[QueueEntry]:
        """Move an entry to ``new_status``; None if the entry no longer exists.

        ``processing -> pending`` counts a failed attempt and schedules the
        retry with exponential backoff; once attempts reach the maximum the
        entry lands in ``error`` instead. ``error -> pending`` is an operator
        requeue and resets the attempt counter.
        """
        entry = self.repository.get_queue_entry(entry_id)
        if entry is None:
            logger.info("Queue entry %s not found; it may have been removed", entry_id)
            return None
        if new_status not in TRANSITIONS.get(entry.status, ()):
            raise InvalidTransition(f"queue entry {entry_id}: {entry.status} -> {new_status} not allowed")

        fields: Dict[str, object] = {}
        target = new_status
        if classification is not None:
            fields["classification"] = classification

        if entry.status == "processing" and new_status == "pending":
            attempts = entry.attempts + 1
            fields["attempts"] = attempts
            fields["last_error"] = error
            if attempts >= entry.max_attempts:
                target = "error"
            else:
                delay = self.retry_backoff * 2 ** (attempts - 1)
                fields["available_at"] = self._clock() + timedelta(seconds=delay)
        elif new_status == "error":
            if not entry.exhausted:
                raise InvalidTransition(
                    f"queue entry {entry_id} has {entry.attempts}/{entry.max_attempts} attempts; cannot fail it yet"
                )
            if error is not None:
                fields["last_error"] = error
        elif entry.status == "error" and new_status == "pending":
            fields["attempts"] = 0
            fields["available_at"] = None
        elif error is not None:
            fields["last_error"] = error

        if not self.repository.update_queue_status(entry_id, expected=entry.status, status=target, **fields):
            current = self.repository.get_queue_entry(entry_id)
            if current is None:
                return None
            raise InvalidTransition(f"queue entry {entry_id} changed concurrently (now {current.status})")

        updated = self.repository.get_queue_entry(entry_id)
        if updated is not None and target == "error" and new_status == "pending":
            logger.error("%s", QueueExhausted(updated))
        return updated

    def fail(self, entry_id: int, error: str) -> Optional[QueueEntry]:
        """Record a failed processing attempt (retry or error)."""
        return self.advance(entry_id, "pending", error)

    def requeue(self, entry_id: int) -> Optional[QueueEntry]:
        return self.advance(entry_id, "pending")

    def list(self, status: Optional[str] = None, *, limit: int = 100) -> List[QueueEntry]:
        return self.repository.list_queue(status, limit=limit)

    def status_counts(self) -> Dict[str, int]:
        counts = {s: 0 for s in QUEUE_STATUSES}
        counts.update(self.repository.count_by_status())
        return counts

    def exhausted(self) -> List[QueueEntry]:
        """Entries parked in ``error`` that need operator attention."""
        return self.repository.list_queue("error")
