from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable

from ...errors import InvalidResponse
from ...models import NO_CATEGORY, PRIORITIES, Classification
from ...models.classification import MAX_QUOTE, MAX_REASONING, MAX_SUMMARY, MAX_TAGS, MAX_TITLE

_REQUIRED_FIELDS = ("relevant", "category", "priority", "confidence", "title", "summary", "reasoning")


def _extract_object(raw: str) -> Dict[str, Any]:
    if not raw or not raw.strip():
        raise InvalidResponse("Empty AI response")

    # Models sometimes wrap the JSON in prose or code fences
    match = re.search(r"\{[\s\S]*\}", raw)
    if not match:
        raise InvalidResponse("No JSON object found in AI response")
    try:
        obj = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise InvalidResponse(f"AI response is not valid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise InvalidResponse("AI response JSON is not an object")
    return obj


def _confidence(value: Any) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidResponse(f"'confidence' must be a number, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise InvalidResponse(f"'confidence' must be an integer, got {value!r}")
    if not 0 <= value <= 100:
        raise InvalidResponse(f"Confidence out of range: {value}")
    return int(value)


def parse_classification_response(raw: str, categories: Iterable[str]) -> Classification:
    """Parse and validate an AI classification record.

    Expected object with keys:
      - relevant: bool
      - category: one of ``categories`` or "none"
      - priority: "high" | "medium" | "low"
      - confidence: integer in [0, 100]
      - title, summary, reasoning: strings
      - quote (optional string), tags (optional list of strings)

    Violations raise ``InvalidResponse``; nothing is coerced. Valid records
    are truncated to the storage bounds (title 80, summary 200, quote 150,
    reasoning 300, at most 5 tags).
    """
    obj = _extract_object(raw)

    missing = [f for f in _REQUIRED_FIELDS if obj.get(f) is None]
    if missing:
        raise InvalidResponse(f"Missing required field(s): {', '.join(missing)}")

    relevant = obj["relevant"]
    if not isinstance(relevant, bool):
        raise InvalidResponse(f"'relevant' must be a boolean, got {relevant!r}")

    allowed = set(categories) | {NO_CATEGORY}
    category = obj["category"]
    if not isinstance(category, str) or category not in allowed:
        raise InvalidResponse(f"Invalid category '{category}'; expected one of {sorted(allowed)}")

    priority = obj["priority"]
    if priority not in PRIORITIES:
        raise InvalidResponse(f"Invalid priority '{priority}'")

    confidence = _confidence(obj["confidence"])

    for key in ("title", "summary", "reasoning"):
        if not isinstance(obj[key], str):
            raise InvalidResponse(f"'{key}' must be a string")

    quote = obj.get("quote")
    if quote is None:
        quote = ""
    if not isinstance(quote, str):
        raise InvalidResponse("'quote' must be a string")

    tags = obj.get("tags")
    if tags is None:
        tags = []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise InvalidResponse(f"'tags' must be a list of strings, got {tags!r}")

    return Classification(
        relevant=relevant,
        category=category,
        priority=priority,
        confidence=confidence,
        title=obj["title"].strip()[:MAX_TITLE],
        summary=obj["summary"].strip()[:MAX_SUMMARY],
        quote=quote.strip()[:MAX_QUOTE],
        reasoning=obj["reasoning"].strip()[:MAX_REASONING],
        tags=[t for t in tags if t.strip()][:MAX_TAGS],
        method="ai",
    )
