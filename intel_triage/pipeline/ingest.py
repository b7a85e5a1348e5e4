from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..errors import DuplicateItem
from ..fetchers import FeedFetcher, fetch_feed
from ..models import Feed, FeedItem, QueueEntry, RawItem, Source
from ..processors.csv_parser import parse_csv
from ..processors.dedup import DedupStore
from ..processors.normalize import normalize_plain_text, to_text
from ..storage import Repository
from ..utils.logging import get_logger
from ..utils.pipeline_config import PipelineConfig
from .queue import ProcessingQueue

logger = get_logger("triage.pipeline.ingest")


@dataclass(slots=True)
class IngestReport:
    source_id: Optional[int] = None
    label: str = ""
    fetched: int = 0
    created: int = 0
    duplicates: int = 0
    errors: List[str] = field(default_factory=list)
    stopped: bool = False
    feed: Optional[Feed] = None


def feed_item_to_raw(item: FeedItem, source: Source) -> RawItem:
    """Canonical item from a parsed feed entry (markup stripped)."""
    description = to_text(item.description) or None
    body = to_text(item.content) or description or ""
    return RawItem(
        title=to_text(item.title),
        body=body,
        link=item.link,
        source_id=source.id,
        origin=source.name,
        description=description,
        published=item.published,
        author=item.author,
        guid=item.guid,
        categories=list(item.categories),
    )


class Ingestor:
    """fetch -> parse -> dedup -> enqueue for feeds, CSV uploads and manual entries.

    Duplicates are idempotent no-ops: they are logged at DEBUG and counted,
    never raised to the caller. One bad item does not stop the rest.
    """

    def __init__(
        self,
        repository: Repository,
        fetcher: FeedFetcher,
        queue: ProcessingQueue,
        dedup: Optional[DedupStore] = None,
        *,
        config: Optional[PipelineConfig] = None,
    ) -> None:
        self.repository = repository
        self.fetcher = fetcher
        self.queue = queue
        self.dedup = dedup or DedupStore(repository)
        self.config = config or PipelineConfig()

    def _store(self, item: RawItem, priority: int) -> QueueEntry:
        self.dedup.check(item)
        entry = self.dedup.record(item, priority, max_attempts=self.queue.max_attempts)
        if entry is None:
            raise DuplicateItem(item.content_hash, "concurrent insert")
        return entry

    def _ingest_items(
        self,
        items: Iterable[RawItem],
        report: IngestReport,
        priority: Optional[int],
        source_id: Optional[int] = None,
    ) -> IngestReport:
        priority = self.config.default_priority if priority is None else priority
        for item in items:
            if source_id is not None and not self._still_active(source_id):
                logger.info("Source %s deactivated mid-ingest; stopping after %d item(s)", source_id, report.created)
                report.stopped = True
                break
            try:
                entry = self._store(item, priority)
            except DuplicateItem as dup:
                logger.debug("Skipping '%s': %s", item.title[:60], dup)
                report.duplicates += 1
                continue
            except Exception as exc:  # noqa: BLE001 - isolate per item
                logger.warning("Failed to store '%s' from %s: %s", item.title[:60], report.label, exc)
                report.errors.append(f"{item.title[:60]}: {exc}")
                continue
            report.created += 1
            logger.debug("Queued entry %s for '%s'", entry.id, item.title[:60])
        return report

    def _still_active(self, source_id: int) -> bool:
        current = self.repository.get_source(source_id)
        return current is not None and current.active

    def ingest_source(self, source: Source, *, priority: Optional[int] = None) -> IngestReport:
        """Fetch and enqueue new items of a feed source in document order.

        ``FetchError`` and ``ParseError`` propagate so the scheduler can
        record the failure and back off.
        """
        report = IngestReport(source_id=source.id, label=source.name)
        if source.id is not None and not self._still_active(source.id):
            logger.info("Source '%s' is inactive; nothing ingested", source.name)
            report.stopped = True
            return report

        feed = fetch_feed(self.fetcher, source.url)
        report.feed = feed
        entries = feed.items
        if self.config.max_items_per_fetch > 0:
            entries = entries[: self.config.max_items_per_fetch]
        report.fetched = len(entries)

        raw_items = (feed_item_to_raw(e, source) for e in entries)
        self._ingest_items(raw_items, report, priority, source_id=source.id)
        logger.info(
            "Ingested '%s': fetched=%d created=%d duplicates=%d errors=%d",
            source.name,
            report.fetched,
            report.created,
            report.duplicates,
            len(report.errors),
        )
        return report

    def ingest_csv(self, text: str, label: str = "upload", *, priority: Optional[int] = None) -> IngestReport:
        """Parse a CSV upload and enqueue each new row."""
        items = parse_csv(text, label=label)
        report = IngestReport(label=label, fetched=len(items))
        self._ingest_items(items, report, priority)
        logger.info(
            "Ingested CSV '%s': rows=%d created=%d duplicates=%d",
            label,
            report.fetched,
            report.created,
            report.duplicates,
        )
        return report

    def ingest_manual(
        self,
        content: str,
        *,
        title: str = "",
        origin: str = "manual",
        link: str = "",
        priority: Optional[int] = None,
    ) -> Optional[QueueEntry]:
        """Enqueue analyst-entered content; None if it was already ingested."""
        body = normalize_plain_text(content)
        if not body:
            raise ValueError("Manual entry content is empty")
        item = RawItem(
            title=normalize_plain_text(title) or " ".join(body.split()[:12]),
            body=body,
            link=link,
            origin=origin,
        )
        try:
            return self._store(item, self.config.default_priority if priority is None else priority)
        except DuplicateItem as dup:
            logger.debug("Manual entry skipped: %s", dup)
            return None
