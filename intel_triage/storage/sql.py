from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import InvalidTransition, NotFound
from ..models import PIR, Classification, IntelligenceItem, QueueEntry, RawItem, ReviewItem, Source
from ..utils.logging import get_logger
from .base import Repository
from .tables import (
    Base,
    IntelligenceItemRow,
    PIRRow,
    QueueEntryRow,
    RawItemRow,
    ReviewItemRow,
    SourceRow,
    utcnow,
)

logger = get_logger("triage.storage")

_SOURCE_CONFIG_FIELDS = ("kind", "url", "refresh_interval", "target_pirs")
_SOURCE_STATE_FIELDS = {
    "active",
    "status",
    "consecutive_failures",
    "last_fetched",
    "last_successful_fetch",
    "last_item_count",
    "last_error",
    "feed_title",
    "feed_description",
}
_QUEUE_UPDATE_FIELDS = {"attempts", "last_error", "available_at", "classification"}


def _naive(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def _to_source(row: SourceRow) -> Source:
    return Source(
        id=row.id,
        name=row.name,
        url=row.url,
        kind=row.kind,
        refresh_interval=row.refresh_interval,
        active=bool(row.active),
        status=row.status,
        consecutive_failures=row.consecutive_failures or 0,
        target_pirs=list(row.target_pirs or []),
        last_fetched=_aware(row.last_fetched),
        last_successful_fetch=_aware(row.last_successful_fetch),
        last_item_count=row.last_item_count or 0,
        last_error=row.last_error,
        feed_title=row.feed_title,
        feed_description=row.feed_description,
    )


def _to_pir(row: PIRRow) -> PIR:
    return PIR(
        id=row.id,
        name=row.name,
        category=row.category,
        description=row.description or "",
        keywords=list(row.keywords or []),
        confidence_threshold=row.confidence_threshold,
        active=bool(row.active),
        display_order=row.display_order or 0,
    )


def _to_raw_item(row: RawItemRow) -> RawItem:
    return RawItem(
        id=row.id,
        source_id=row.source_id,
        guid=row.guid,
        content_hash=row.content_hash,
        title=row.title or "",
        body=row.body or "",
        description=row.description,
        link=row.link or "",
        author=row.author,
        categories=list(row.categories or []),
        location=row.location,
        origin=row.origin or "",
        published=_aware(row.published),
    )


def _to_queue_entry(row: QueueEntryRow) -> QueueEntry:
    return QueueEntry(
        id=row.id,
        raw_item_id=row.raw_item_id,
        content=row.content,
        title=row.title or "",
        origin=row.origin or "",
        priority=row.priority,
        status=row.status,
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        last_error=row.last_error,
        available_at=_aware(row.available_at),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        classification=Classification.from_dict(row.classification) if row.classification else None,
    )


def _to_review_item(row: ReviewItemRow) -> ReviewItem:
    return ReviewItem(
        id=row.id,
        queue_entry_id=row.queue_entry_id,
        classification=Classification.from_dict(row.classification),
        state=row.state,
        decision=row.decision,
        decided_by=row.decided_by,
        decided_at=_aware(row.decided_at),
        edits=dict(row.edits or {}),
        content=row.content or "",
        origin=row.origin or "",
        link=row.link or "",
        publish_error=row.publish_error,
        published_at=_aware(row.published_at),
        intelligence_item_id=row.intelligence_item_id,
        created_at=_aware(row.created_at),
    )


def _to_intelligence_item(row: IntelligenceItemRow) -> IntelligenceItem:
    return IntelligenceItem(
        id=row.id,
        review_item_id=row.review_item_id,
        title=row.title,
        summary=row.summary or "",
        quote=row.quote or "",
        content=row.content or "",
        category=row.category,
        priority=row.priority,
        confidence=row.confidence or 0,
        reasoning=row.reasoning or "",
        tags=list(row.tags or []),
        source_name=row.source_name or "",
        link=row.link or "",
        published_at=_aware(row.published_at),
    )


class SqlRepository(Repository):
    """SQLAlchemy-backed repository (SQLite by default).

    Uniqueness is enforced by the schema: content hash, (source_id, guid),
    one review per queue entry and one published record per review. Claims
    and decisions are conditional UPDATEs whose row count tells the caller
    whether it won.
    """

    def __init__(self, database_url: str = "sqlite:///data/intel-triage.db") -> None:
        self.database_url = database_url
        self._is_sqlite = database_url.startswith("sqlite")
        if self._is_sqlite:
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so every thread sees the same in-memory DB
                self.engine = create_engine(
                    database_url,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            else:
                db_path = database_url.split("///", 1)[-1]
                if db_path:
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
                self.engine = create_engine(database_url, connect_args={"check_same_thread": False})
        else:
            self.engine = create_engine(database_url, pool_pre_ping=True)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        # SQLite allows one writer; serialize sessions rather than retry on "database is locked"
        self._lock = threading.RLock() if self._is_sqlite else None

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.info("Database tables ready (%s)", self.engine.url.render_as_string(hide_password=True))

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        if self._lock is not None:
            self._lock.acquire()
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
            if self._lock is not None:
                self._lock.release()

    # sources

    def save_source(self, source: Source) -> Source:
        with self.get_session() as session:
            row = session.query(SourceRow).filter_by(name=source.name).first()
            if row is None:
                row = SourceRow(
                    name=source.name,
                    active=source.active,
                    status=source.status,
                )
                session.add(row)
            for name in _SOURCE_CONFIG_FIELDS:
                setattr(row, name, getattr(source, name))
            session.flush()
            return _to_source(row)

    def get_source(self, source_id: int) -> Optional[Source]:
        with self.get_session() as session:
            row = session.get(SourceRow, source_id)
            return _to_source(row) if row else None

    def list_sources(self, *, active_only: bool = False) -> List[Source]:
        with self.get_session() as session:
            q = session.query(SourceRow)
            if active_only:
                q = q.filter(SourceRow.active.is_(True))
            return [_to_source(r) for r in q.order_by(SourceRow.id).all()]

    def update_source_state(self, source_id: int, **fields: Any) -> Optional[Source]:
        unknown = set(fields) - _SOURCE_STATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown source fields: {sorted(unknown)}")
        with self.get_session() as session:
            row = session.get(SourceRow, source_id)
            if row is None:
                return None
            for name, value in fields.items():
                if isinstance(value, datetime):
                    value = _naive(value)
                setattr(row, name, value)
            session.flush()
            return _to_source(row)

    # PIRs

    def get_active_pirs(self) -> List[PIR]:
        with self.get_session() as session:
            rows = (
                session.query(PIRRow)
                .filter(PIRRow.active.is_(True))
                .order_by(PIRRow.display_order, PIRRow.id)
                .all()
            )
            return [_to_pir(r) for r in rows]

    def save_pir(self, pir: PIR) -> PIR:
        with self.get_session() as session:
            row = session.query(PIRRow).filter_by(category=pir.category).first()
            if row is None:
                row = PIRRow(category=pir.category)
                session.add(row)
            row.name = pir.name
            row.description = pir.description
            row.keywords = list(pir.keywords)
            row.confidence_threshold = pir.confidence_threshold
            row.active = pir.active
            row.display_order = pir.display_order
            session.flush()
            return _to_pir(row)

    # raw items

    def find_by_content_hash(self, content_hash: str) -> Optional[RawItem]:
        with self.get_session() as session:
            row = session.query(RawItemRow).filter_by(content_hash=content_hash).first()
            return _to_raw_item(row) if row else None

    def find_by_native_id(self, source_id: int, guid: str) -> Optional[RawItem]:
        with self.get_session() as session:
            row = session.query(RawItemRow).filter_by(source_id=source_id, guid=guid).first()
            return _to_raw_item(row) if row else None

    def create_ingested_item(
        self, item: RawItem, priority: int, *, max_attempts: int = 3
    ) -> Optional[QueueEntry]:
        try:
            with self.get_session() as session:
                raw = RawItemRow(
                    source_id=item.source_id,
                    guid=item.guid,
                    content_hash=item.content_hash,
                    title=item.title,
                    body=item.body,
                    description=item.description,
                    link=item.link,
                    author=item.author,
                    categories=list(item.categories),
                    location=item.location,
                    origin=item.origin,
                    published=_naive(item.published),
                )
                session.add(raw)
                session.flush()
                now = utcnow()
                entry = QueueEntryRow(
                    raw_item_id=raw.id,
                    content=item.text,
                    title=item.title,
                    origin=item.origin,
                    priority=priority,
                    max_attempts=max_attempts,
                    created_at=now,
                    updated_at=now,
                )
                session.add(entry)
                session.flush()
                item.id = raw.id
                return _to_queue_entry(entry)
        except IntegrityError as exc:
            logger.debug("Ingest skipped by unique constraint (%s): %s", item.content_hash[:12], exc.orig)
            return None

    # queue

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
        with self.get_session() as session:
            now = utcnow()
            row = QueueEntryRow(
                raw_item_id=raw_item_id,
                content=content,
                title=title,
                origin=origin,
                priority=priority,
                max_attempts=max_attempts,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            return _to_queue_entry(row)

    def get_queue_entry(self, entry_id: int) -> Optional[QueueEntry]:
        with self.get_session() as session:
            row = session.get(QueueEntryRow, entry_id)
            return _to_queue_entry(row) if row else None

    def dequeue_by_status(
        self, status: str, *, now: Optional[datetime] = None, limit: int = 1
    ) -> List[QueueEntry]:
        with self.get_session() as session:
            q = session.query(QueueEntryRow).filter(QueueEntryRow.status == status)
            if now is not None:
                q = q.filter(
                    or_(QueueEntryRow.available_at.is_(None), QueueEntryRow.available_at <= _naive(now))
                )
            # id follows insertion order, so it breaks priority ties FIFO
            rows = q.order_by(QueueEntryRow.priority.desc(), QueueEntryRow.id.asc()).limit(limit).all()
            return [_to_queue_entry(r) for r in rows]

    def claim(
        self, entry_id: int, *, expected: str, status: str, lease_until: Optional[datetime] = None
    ) -> bool:
        fields: Dict[str, Any] = {}
        if lease_until is not None:
            fields["available_at"] = lease_until
        return self.update_queue_status(entry_id, expected=expected, status=status, **fields)

    def update_queue_status(self, entry_id: int, *, expected: str, status: str, **fields: Any) -> bool:
        unknown = set(fields) - _QUEUE_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown queue fields: {sorted(unknown)}")
        values: Dict[Any, Any] = {QueueEntryRow.status: status, QueueEntryRow.updated_at: utcnow()}
        for name, value in fields.items():
            if name == "classification" and isinstance(value, Classification):
                value = value.to_dict()
            elif name == "available_at":
                value = _naive(value)
            values[getattr(QueueEntryRow, name)] = value
        with self.get_session() as session:
            count = (
                session.query(QueueEntryRow)
                .filter(QueueEntryRow.id == entry_id, QueueEntryRow.status == expected)
                .update(values, synchronize_session=False)
            )
            return count == 1

    def list_queue(self, status: Optional[str] = None, *, limit: int = 100) -> List[QueueEntry]:
        with self.get_session() as session:
            q = session.query(QueueEntryRow)
            if status is not None:
                q = q.filter(QueueEntryRow.status == status)
            rows = q.order_by(QueueEntryRow.priority.desc(), QueueEntryRow.id.asc()).limit(limit).all()
            return [_to_queue_entry(r) for r in rows]

    def count_by_status(self) -> Dict[str, int]:
        with self.get_session() as session:
            rows = (
                session.query(QueueEntryRow.status, func.count(QueueEntryRow.id))
                .group_by(QueueEntryRow.status)
                .all()
            )
            return {status: count for status, count in rows}

    # review and publication

    def _insert_review(self, session: Session, queue_entry_id: int, classification: Classification) -> ReviewItem:
        existing = session.query(ReviewItemRow).filter_by(queue_entry_id=queue_entry_id).first()
        if existing is not None:
            return _to_review_item(existing)
        entry = session.get(QueueEntryRow, queue_entry_id)
        if entry is None:
            raise NotFound(f"queue entry {queue_entry_id} not found")
        link = ""
        if entry.raw_item_id is not None:
            raw = session.get(RawItemRow, entry.raw_item_id)
            link = raw.link if raw is not None else ""
        row = ReviewItemRow(
            queue_entry_id=queue_entry_id,
            classification=classification.to_dict(),
            content=entry.content,
            origin=entry.origin,
            link=link or "",
            edits={},
        )
        session.add(row)
        session.flush()
        return _to_review_item(row)

    def create_review_item(self, queue_entry_id: int, classification: Classification) -> ReviewItem:
        with self.get_session() as session:
            return self._insert_review(session, queue_entry_id, classification)

    def route_to_review(self, entry_id: int, classification: Classification) -> Optional[ReviewItem]:
        with self.get_session() as session:
            count = (
                session.query(QueueEntryRow)
                .filter(QueueEntryRow.id == entry_id, QueueEntryRow.status == "processing")
                .update(
                    {
                        QueueEntryRow.status: "review",
                        QueueEntryRow.classification: classification.to_dict(),
                        QueueEntryRow.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if count != 1:
                return None
            return self._insert_review(session, entry_id, classification)

    def get_review_item(self, review_id: int) -> Optional[ReviewItem]:
        with self.get_session() as session:
            row = session.get(ReviewItemRow, review_id)
            return _to_review_item(row) if row else None

    def list_review_items(self, state: Optional[str] = None) -> List[ReviewItem]:
        with self.get_session() as session:
            q = session.query(ReviewItemRow)
            if state is not None:
                q = q.filter(ReviewItemRow.state == state)
            return [_to_review_item(r) for r in q.order_by(ReviewItemRow.id).all()]

    def update_review_edits(self, review_id: int, edits: Dict[str, Any]) -> bool:
        with self.get_session() as session:
            count = (
                session.query(ReviewItemRow)
                .filter(ReviewItemRow.id == review_id, ReviewItemRow.state == "pending_review")
                .update({ReviewItemRow.edits: dict(edits)}, synchronize_session=False)
            )
            return count == 1

    def record_review_decision(self, review_id: int, decision: str, decided_by: str, decided_at: datetime) -> bool:
        with self.get_session() as session:
            count = (
                session.query(ReviewItemRow)
                .filter(ReviewItemRow.id == review_id, ReviewItemRow.state == "pending_review")
                .update(
                    {
                        ReviewItemRow.state: decision,
                        ReviewItemRow.decision: decision,
                        ReviewItemRow.decided_by: decided_by,
                        ReviewItemRow.decided_at: _naive(decided_at),
                    },
                    synchronize_session=False,
                )
            )
            if count != 1:
                return False
            row = session.get(ReviewItemRow, review_id)
            session.query(QueueEntryRow).filter(
                QueueEntryRow.id == row.queue_entry_id,
                QueueEntryRow.status == "review",
            ).update(
                {QueueEntryRow.status: "completed", QueueEntryRow.updated_at: utcnow()},
                synchronize_session=False,
            )
            return True

    def publish_approved_item(self, review_id: int, record: Dict[str, Any]) -> IntelligenceItem:
        try:
            with self.get_session() as session:
                review = session.get(ReviewItemRow, review_id)
                if review is None:
                    raise NotFound(f"review item {review_id} not found")
                if review.state != "approved":
                    raise InvalidTransition(f"review item {review_id} is {review.state}, not approved")
                now = utcnow()
                row = IntelligenceItemRow(review_item_id=review_id, published_at=now, **record)
                session.add(row)
                session.flush()
                review.state = "published"
                review.published_at = now
                review.publish_error = None
                review.intelligence_item_id = row.id
                return _to_intelligence_item(row)
        except IntegrityError as exc:
            raise InvalidTransition(f"review item {review_id} already published") from exc

    def set_publish_error(self, review_id: int, error: Optional[str]) -> None:
        with self.get_session() as session:
            session.query(ReviewItemRow).filter(ReviewItemRow.id == review_id).update(
                {ReviewItemRow.publish_error: error}, synchronize_session=False
            )

    def list_intelligence_items(self, *, limit: int = 100) -> List[IntelligenceItem]:
        with self.get_session() as session:
            rows = (
                session.query(IntelligenceItemRow)
                .order_by(IntelligenceItemRow.published_at.desc(), IntelligenceItemRow.id.desc())
                .limit(limit)
                .all()
            )
            return [_to_intelligence_item(r) for r in rows]
