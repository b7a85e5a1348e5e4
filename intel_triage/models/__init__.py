"""Typed models used across the application."""

from .source import Source, SourceKind, SourceStatus, SOURCE_KINDS, FEED_KINDS
from .feed import Feed, FeedItem, FeedDialect
from .item import RawItem
from .classification import Classification, PRIORITIES, NO_CATEGORY
from .queue import QueueEntry, QueueStatus, QUEUE_STATUSES, DEFAULT_PRIORITY, DEFAULT_MAX_ATTEMPTS
from .review import ReviewItem, IntelligenceItem, Outcome, EDITABLE_FIELDS
from .pir import PIR, default_pirs

__all__ = [
    "Source",
    "SourceKind",
    "SourceStatus",
    "SOURCE_KINDS",
    "FEED_KINDS",
    "Feed",
    "FeedItem",
    "FeedDialect",
    "RawItem",
    "Classification",
    "PRIORITIES",
    "NO_CATEGORY",
    "QueueEntry",
    "QueueStatus",
    "QUEUE_STATUSES",
    "DEFAULT_PRIORITY",
    "DEFAULT_MAX_ATTEMPTS",
    "ReviewItem",
    "IntelligenceItem",
    "Outcome",
    "EDITABLE_FIELDS",
    "PIR",
    "default_pirs",
]
