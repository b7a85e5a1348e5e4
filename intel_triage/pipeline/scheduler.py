from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models import Source
from ..storage import Repository
from ..utils.logging import get_logger
from .ingest import IngestReport, Ingestor

logger = get_logger("triage.pipeline.scheduler")

FAILURE_THRESHOLD = 3
BASE_RETRY_SECONDS = 300
MAX_RETRY_SECONDS = 3600

TimerFactory = Callable[..., Any]


def retry_delay(failures: int) -> int:
    """Backoff after ``failures`` consecutive failed fetches, capped at one hour."""
    return min(BASE_RETRY_SECONDS * 2 ** failures, MAX_RETRY_SECONDS)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedScheduler:
    """Per-source refresh timers.

    Each source has at most one outstanding timer; scheduling again cancels
    the previous one. A per-source lock serializes fetches of the same feed,
    so a manual refresh and a timer firing at once run one after the other.
    Timers are only armed while the scheduler is started; ``refresh_now``
    works either way.
    """

    def __init__(
        self,
        repository: Repository,
        ingestor: Ingestor,
        *,
        timer_factory: TimerFactory = threading.Timer,
        activation_delay: float = 1.0,
        max_workers: int = 4,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.ingestor = ingestor
        self.timer_factory = timer_factory
        self.activation_delay = activation_delay
        self.max_workers = max_workers
        self._clock = clock
        self._timers: Dict[int, Tuple[Any, int]] = {}
        self._generation = 0
        self._timers_lock = threading.Lock()
        self._source_locks: Dict[int, threading.Lock] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def _lock_for(self, source_id: int) -> threading.Lock:
        with self._timers_lock:
            return self._source_locks.setdefault(source_id, threading.Lock())

    # timers

    def schedule(self, source_id: int, delay: float) -> None:
        with self._timers_lock:
            previous = self._timers.pop(source_id, None)
            if previous is not None:
                previous[0].cancel()
            self._generation += 1
            timer = self.timer_factory(delay, self._fire, args=(source_id, self._generation))
            timer.daemon = True
            self._timers[source_id] = (timer, self._generation)
            timer.start()
        logger.debug("Source %s scheduled in %.0fs", source_id, delay)

    def cancel(self, source_id: int) -> bool:
        with self._timers_lock:
            slot = self._timers.pop(source_id, None)
        if slot is None:
            return False
        slot[0].cancel()
        return True

    def is_scheduled(self, source_id: int) -> bool:
        with self._timers_lock:
            return source_id in self._timers

    def _fire(self, source_id: int, generation: int) -> None:
        with self._timers_lock:
            slot = self._timers.get(source_id)
            # A timer that was replaced or cancelled after it started firing is stale
            if slot is None or slot[1] != generation:
                return
            del self._timers[source_id]
        self._refresh(source_id)

    def start(self) -> None:
        self._running = True
        sources = [s for s in self.repository.list_sources(active_only=True) if s.is_feed]
        for source in sources:
            self.schedule(source.id, self.activation_delay)
        logger.info("Feed scheduler started with %d active feed(s)", len(sources))

    def stop(self) -> None:
        self._running = False
        with self._timers_lock:
            timers = [timer for timer, _ in self._timers.values()]
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        logger.info("Feed scheduler stopped (%d timer(s) cancelled)", len(timers))

    # fetching

    def _record_success(self, source: Source, report: IngestReport) -> Optional[Source]:
        now = self._clock()
        feed = report.feed
        return self.repository.update_source_state(
            source.id,
            status="active",
            consecutive_failures=0,
            last_error=None,
            last_fetched=now,
            last_successful_fetch=now,
            last_item_count=report.created,
            feed_title=feed.title if feed else source.feed_title,
            feed_description=feed.description if feed else source.feed_description,
        )

    def _record_failure(self, source: Source, exc: Exception) -> int:
        failures = source.consecutive_failures + 1
        self.repository.update_source_state(
            source.id,
            status="error" if failures >= FAILURE_THRESHOLD else "active",
            consecutive_failures=failures,
            last_error=str(exc),
            last_fetched=self._clock(),
        )
        return failures

    def _refresh(self, source_id: int) -> Optional[IngestReport]:
        with self._lock_for(source_id):
            source = self.repository.get_source(source_id)
            if source is None or not source.active or not source.is_feed:
                logger.info("Source %s is missing, inactive or not a feed; not fetching", source_id)
                self.cancel(source_id)
                return None

            try:
                report = self.ingestor.ingest_source(source)
            except Exception as exc:  # noqa: BLE001 - a failing feed must not kill its timer thread
                failures = self._record_failure(source, exc)
                delay = retry_delay(failures)
                logger.warning(
                    "Fetch of '%s' failed (%d consecutive): %s; retry in %ds",
                    source.name,
                    failures,
                    exc,
                    delay,
                )
                report = IngestReport(source_id=source_id, label=source.name, errors=[str(exc)])
            else:
                self._record_success(source, report)
                delay = source.refresh_interval

            current = self.repository.get_source(source_id)
            if self._running and current is not None and current.active:
                self.schedule(source_id, delay)
            return report

    def refresh_now(self, source_id: int) -> Optional[IngestReport]:
        """Fetch immediately; the next timer is re-armed from now."""
        return self._refresh(source_id)

    def refresh_all(self) -> List[IngestReport]:
        """Refresh every active feed concurrently; one failure never blocks the rest."""
        sources = [s for s in self.repository.list_sources(active_only=True) if s.is_feed]
        if not sources:
            return []
        reports: List[IngestReport] = []
        max_workers = max(1, min(self.max_workers, len(sources)))
        logger.debug("Refreshing %d feed(s) (workers=%d)", len(sources), max_workers)
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_map = {executor.submit(self._refresh, s.id): s for s in sources}
            for fut in as_completed(future_map):
                report = fut.result()
                if report is not None:
                    reports.append(report)
        return reports

    # activation

    def activate(self, source_id: int) -> Optional[Source]:
        source = self.repository.update_source_state(
            source_id, active=True, status="active", consecutive_failures=0, last_error=None
        )
        if source is None:
            return None
        if self._running and source.is_feed:
            self.schedule(source_id, self.activation_delay)
        logger.info("Source '%s' activated", source.name)
        return source

    def deactivate(self, source_id: int) -> Optional[Source]:
        """Stop fetching a source; entries already queued are left alone."""
        source = self.repository.update_source_state(source_id, active=False, status="inactive")
        self.cancel(source_id)
        if source is not None:
            logger.info("Source '%s' deactivated", source.name)
        return source

    def feed_status(self) -> List[Dict[str, Any]]:
        rows = []
        for s in self.repository.list_sources():
            rows.append(
                {
                    "id": s.id,
                    "name": s.name,
                    "url": s.url,
                    "kind": s.kind,
                    "active": s.active,
                    "status": s.status,
                    "consecutive_failures": s.consecutive_failures,
                    "last_fetched": s.last_fetched.isoformat() if s.last_fetched else None,
                    "last_successful_fetch": s.last_successful_fetch.isoformat() if s.last_successful_fetch else None,
                    "last_item_count": s.last_item_count,
                    "last_error": s.last_error,
                    "scheduled": self.is_scheduled(s.id),
                }
            )
        return rows
