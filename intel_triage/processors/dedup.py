from __future__ import annotations

import hashlib
from typing import Optional, Tuple

from ..errors import DuplicateItem
from ..models import QueueEntry, RawItem
from ..storage import Repository
from ..utils.logging import get_logger

logger = get_logger("triage.processors.dedup")


class DedupStore:
    """Detect items that were already ingested.

    Strategies, checked in order:
    - feed-native id: the (source_id, guid) pair, when the feed supplies a guid
    - SHA-256 hash of title + body + link

    Both are backed by UNIQUE constraints in the repository, so the checks
    here are an early exit; ``record`` is what actually guarantees that two
    concurrent fetches of the same feed cannot insert an item twice.
    """

    def __init__(self, repository: Repository) -> None:
        self.repository = repository

    @staticmethod
    def content_hash(title: str, body: str, link: str) -> str:
        content = (title or "") + (body or "") + (link or "")
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    def exists(self, content_hash: str) -> bool:
        return self.repository.find_by_content_hash(content_hash) is not None

    def exists_by_native_id(self, source_id: Optional[int], guid: Optional[str]) -> bool:
        if source_id is None or not guid:
            return False
        return self.repository.find_by_native_id(source_id, guid) is not None

    def is_duplicate(self, item: RawItem) -> Tuple[bool, Optional[str]]:
        if not item.content_hash:
            item.content_hash = self.content_hash(item.title, item.body, item.link)
        if self.exists_by_native_id(item.source_id, item.guid):
            return True, "guid"
        if self.exists(item.content_hash):
            return True, "hash"
        return False, None

    def check(self, item: RawItem) -> None:
        """Raise ``DuplicateItem`` if ``item`` was seen before."""
        dup, reason = self.is_duplicate(item)
        if dup:
            raise DuplicateItem(item.guid if reason == "guid" else item.content_hash, reason or "hash")

    def record(self, item: RawItem, priority: int, *, max_attempts: int = 3) -> Optional[QueueEntry]:
        """Persist ``item`` with its queue entry; None if it lost a race to a twin."""
        if not item.content_hash:
            item.content_hash = self.content_hash(item.title, item.body, item.link)
        entry = self.repository.create_ingested_item(item, priority, max_attempts=max_attempts)
        if entry is None:
            logger.debug("Item '%s' already stored by a concurrent ingest", item.title[:60])
        return entry

