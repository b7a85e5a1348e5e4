"""
SQL schema for the triage pipeline.

Tables:
  - sources: configured feeds and upload labels, with fetch health
  - pirs: analyst-curated requirements used by the classifier
  - raw_items: every ingested item, unique by content hash and by
    (source_id, guid)
  - queue_entries: classification work with status, attempts and backoff
  - review_items: one analyst review per queue entry
  - intelligence_items: published records, one per review item
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    # Stored naive; every value written is UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SourceRow(Base):
    __tablename__ = "sources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, unique=True)
    kind = Column(String(20), nullable=False, default="rss")
    url = Column(String(1000), nullable=False)
    refresh_interval = Column(Integer, nullable=False, default=3600)
    active = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default="active")
    consecutive_failures = Column(Integer, nullable=False, default=0)
    target_pirs = Column(JSON, default=list)
    last_fetched = Column(DateTime)
    last_successful_fetch = Column(DateTime)
    last_item_count = Column(Integer, default=0)
    last_error = Column(Text)
    feed_title = Column(String(500))
    feed_description = Column(Text)
    created_at = Column(DateTime, default=utcnow)


class PIRRow(Base):
    __tablename__ = "pirs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    category = Column(String(50), nullable=False, unique=True)
    description = Column(Text, default="")
    keywords = Column(JSON, default=list)
    confidence_threshold = Column(Integer, default=70)
    active = Column(Boolean, default=True)
    display_order = Column(Integer, default=0)


class RawItemRow(Base):
    __tablename__ = "raw_items"
    __table_args__ = (UniqueConstraint("source_id", "guid", name="uq_raw_items_source_guid"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    # NULL source_id/guid never collide, so CSV and manual items rely on the hash
    source_id = Column(Integer, ForeignKey("sources.id"), index=True)
    guid = Column(String(1000))
    content_hash = Column(String(64), nullable=False, unique=True)
    title = Column(String(1000), default="")
    body = Column(Text, default="")
    description = Column(Text)
    link = Column(String(2000), default="")
    author = Column(String(300))
    categories = Column(JSON, default=list)
    location = Column(String(300))
    origin = Column(String(300), default="")
    published = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)


class QueueEntryRow(Base):
    __tablename__ = "queue_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    raw_item_id = Column(Integer, ForeignKey("raw_items.id"), index=True)
    content = Column(Text, nullable=False)
    title = Column(String(1000), default="")
    origin = Column(String(300), default="")
    priority = Column(Integer, nullable=False, default=5, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text)
    available_at = Column(DateTime)
    classification = Column(JSON)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)


class ReviewItemRow(Base):
    __tablename__ = "review_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue_entry_id = Column(Integer, ForeignKey("queue_entries.id"), nullable=False, unique=True)
    classification = Column(JSON, nullable=False)
    state = Column(String(20), nullable=False, default="pending_review", index=True)
    decision = Column(String(20), nullable=False, default="undecided")
    decided_by = Column(String(200))
    decided_at = Column(DateTime)
    edits = Column(JSON, default=dict)
    content = Column(Text, default="")
    origin = Column(String(300), default="")
    link = Column(String(2000), default="")
    publish_error = Column(Text)
    published_at = Column(DateTime)
    intelligence_item_id = Column(Integer)
    created_at = Column(DateTime, default=utcnow)


class IntelligenceItemRow(Base):
    __tablename__ = "intelligence_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    review_item_id = Column(Integer, ForeignKey("review_items.id"), nullable=False, unique=True)
    title = Column(String(200), nullable=False)
    summary = Column(Text, default="")
    quote = Column(Text, default="")
    content = Column(Text, default="")
    category = Column(String(50), nullable=False)
    priority = Column(String(10), nullable=False)
    confidence = Column(Integer, default=0)
    reasoning = Column(Text, default="")
    tags = Column(JSON, default=list)
    source_name = Column(String(300), default="")
    link = Column(String(2000), default="")
    published_at = Column(DateTime, default=utcnow)
