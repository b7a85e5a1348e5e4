from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal

Priority = Literal["high", "medium", "low"]
ClassificationMethod = Literal["ai", "keyword"]

PRIORITIES = ("high", "medium", "low")
NO_CATEGORY = "none"

# Length caps relied on by storage and review consumers.
MAX_TITLE = 80
MAX_SUMMARY = 200
MAX_QUOTE = 150
MAX_REASONING = 300
MAX_TAGS = 5


@dataclass(slots=True)
class Classification:
    relevant: bool
    category: str
    priority: Priority
    confidence: int
    title: str
    summary: str
    reasoning: str
    quote: str = ""
    tags: List[str] = field(default_factory=list)
    method: ClassificationMethod = "ai"

    @property
    def reviewable(self) -> bool:
        return self.relevant and self.category != NO_CATEGORY

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Classification":
        return cls(
            relevant=bool(data["relevant"]),
            category=str(data["category"]),
            priority=data["priority"],
            confidence=int(data["confidence"]),
            title=str(data.get("title", "")),
            summary=str(data.get("summary", "")),
            reasoning=str(data.get("reasoning", "")),
            quote=str(data.get("quote", "") or ""),
            tags=[str(t) for t in data.get("tags") or []],
            method=data.get("method", "ai"),
        )
