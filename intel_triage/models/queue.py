from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

from .classification import Classification

QueueStatus = Literal["pending", "processing", "review", "completed", "error"]

QUEUE_STATUSES = ("pending", "processing", "review", "completed", "error")
DEFAULT_PRIORITY = 5
DEFAULT_MAX_ATTEMPTS = 3


@dataclass(slots=True)
class QueueEntry:
    id: int
    content: str
    priority: int = DEFAULT_PRIORITY
    status: QueueStatus = "pending"
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    raw_item_id: Optional[int] = None
    origin: str = ""
    title: str = ""
    last_error: Optional[str] = None
    available_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    classification: Optional[Classification] = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts
