from __future__ import annotations

import threading
from typing import List, Optional

from ..errors import InvalidResponse, InvalidTransition, ProviderError
from ..models import QueueEntry
from ..processors.classify import ClassificationService
from ..utils.logging import get_logger
from .queue import ProcessingQueue
from .review import ReviewWorkflow

logger = get_logger("triage.pipeline.worker")


class QueueWorker:
    """Claim one queue entry at a time, classify it and route the result."""

    def __init__(self, queue: ProcessingQueue, service: ClassificationService, review: ReviewWorkflow) -> None:
        self.queue = queue
        self.service = service
        self.review = review

    def process_next(self) -> Optional[QueueEntry]:
        """Process the next pending entry; None when there is nothing to do."""
        entry = self.queue.dequeue_next()
        if entry is None:
            return None
        logger.debug("Classifying entry %s (attempt %d/%d)", entry.id, entry.attempts + 1, entry.max_attempts)

        try:
            result = self.service.classify(entry.content, source=entry.origin)
        except (InvalidResponse, ProviderError) as exc:
            logger.warning("Classification of entry %s failed: %s", entry.id, exc)
            return self._fail(entry, str(exc))
        except Exception as exc:  # noqa: BLE001 - never leave an entry stuck in processing
            logger.exception("Unexpected error classifying entry %s", entry.id)
            return self._fail(entry, f"{type(exc).__name__}: {exc}")

        try:
            if result.reviewable:
                if self.review.route(entry, result) is None:
                    logger.info("Entry %s left processing before it could be routed", entry.id)
                updated = self.queue.get(entry.id)
            else:
                updated = self.queue.advance(entry.id, "completed", classification=result)
        except Exception as exc:  # noqa: BLE001 - a failed hand-off counts as a failed attempt
            logger.exception("Routing entry %s failed", entry.id)
            return self._fail(entry, f"{type(exc).__name__}: {exc}")
        if updated is None:
            logger.info("Entry %s disappeared while being classified", entry.id)
        return updated or entry

    def _fail(self, entry: QueueEntry, error: str) -> QueueEntry:
        try:
            updated = self.queue.fail(entry.id, error)
        except InvalidTransition as exc:
            logger.warning("Could not record failure of entry %s: %s", entry.id, exc)
            updated = None
        return updated or entry

    def drain(self, max_items: Optional[int] = None) -> int:
        """Process entries until none are ready (or ``max_items`` is reached)."""
        processed = 0
        while max_items is None or processed < max_items:
            if self.process_next() is None:
                break
            processed += 1
        return processed


class WorkerPool:
    """Run ``size`` threads that keep draining the queue until stopped."""

    def __init__(self, worker: QueueWorker, size: int = 2, *, idle_sleep: float = 2.0) -> None:
        self.worker = worker
        self.size = max(1, size)
        self.idle_sleep = idle_sleep
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                entry = self.worker.process_next()
            except Exception:  # noqa: BLE001 - keep the worker thread alive
                logger.exception("Worker iteration failed")
                entry = None
            if entry is None:
                self._stop.wait(self.idle_sleep)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._loop, name=f"triage-worker-{i}", daemon=True)
            for i in range(self.size)
        ]
        for t in self._threads:
            t.start()
        logger.info("Started %d classification worker(s)", self.size)

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout)
        self._threads = []
        logger.info("Classification workers stopped")
