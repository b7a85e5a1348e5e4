from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..models import NO_CATEGORY, PIR, Classification, default_pirs
from ..models.classification import MAX_QUOTE, MAX_TITLE
from ..storage import Repository
from ..utils.cache import TTLCache
from ..utils.logging import get_logger
from ..utils.pipeline_config import PipelineConfig
from .ai import AIClient, RateLimiter, parse_classification_response
from .normalize import truncate

logger = get_logger("triage.processors.classify")

_PIR_CACHE_KEY = "active_pirs"
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


class KeywordClassifier:
    """Deterministic keyword scoring used when no AI backend is usable.

    The category with the most keyword hits wins; ties keep the earlier PIR.
    Confidence is deliberately capped below what a model would report.
    """

    def __init__(self, pirs: Optional[Sequence[PIR]] = None) -> None:
        self.pirs = list(pirs) if pirs else default_pirs()

    def _score(self, lowered: str, pirs: Sequence[PIR]) -> Tuple[str, List[str]]:
        best, matched = NO_CATEGORY, []
        for pir in pirs:
            hits = [kw for kw in pir.keywords if kw.lower() in lowered]
            if len(hits) > len(matched):
                best, matched = pir.category, hits
        return best, matched

    @staticmethod
    def _quote(content: str, keywords: List[str]) -> str:
        if not keywords:
            return ""
        for sentence in _SENTENCE_SPLIT.split(content):
            if keywords[0].lower() in sentence.lower():
                return truncate(sentence.strip(), MAX_QUOTE - 3, "...")
        return ""

    @staticmethod
    def _tags(category: str, keywords: List[str], lowered: str) -> List[str]:
        tags = [category] if category != NO_CATEGORY else ["general"]
        tags.extend(keywords[:2])
        for word in ("cyber", "critical", "europe"):
            if word in lowered and word not in tags:
                tags.append(word)
        if len(keywords) > 2:
            tags.append("high-relevance")
        return tags[:4]

    def classify(self, content: str, pirs: Optional[Sequence[PIR]] = None) -> Classification:
        pirs = list(pirs) if pirs else self.pirs
        lowered = content.lower()
        category, matched = self._score(lowered, pirs)
        score = len(matched)
        relevant = score > 0
        if score > 3:
            priority = "high"
        elif score > 1:
            priority = "medium"
        else:
            priority = "low"

        names = {p.category: p.name for p in pirs}
        lead = " ".join(content.split()[:12])
        prefix = f"{names[category]}: " if category in names else "General: "
        if relevant:
            summary = (
                f"Keyword screening matched {score} {names.get(category, category)} term(s). "
                "Requires analyst review for verification."
            )
        else:
            summary = "Content does not match current PIR criteria."

        return Classification(
            relevant=relevant,
            category=category,
            priority=priority,
            confidence=min(50 + score * 12, 90),
            title=truncate(prefix + lead, MAX_TITLE - 3, "..."),
            summary=summary,
            quote=self._quote(content, matched),
            reasoning=f"Keyword analysis: {score} match(es) for {category}. Keywords: {', '.join(matched[:3])}",
            tags=self._tags(category, matched, lowered),
            method="keyword",
        )


class ClassificationService:
    """Score content against the active PIRs.

    The AI path is rate limited and never retried here: provider failures
    surface as ``ProviderError`` and bad output as ``InvalidResponse`` so the
    queue worker can apply the queue's attempt and backoff policy. When no
    client could be constructed the keyword classifier takes over.
    """

    def __init__(
        self,
        repository: Repository,
        client: Optional[AIClient],
        limiter: Optional[RateLimiter] = None,
        *,
        config: Optional[PipelineConfig] = None,
        cache: Optional[TTLCache] = None,
    ) -> None:
        self.repository = repository
        self.client = client
        self.config = config or PipelineConfig()
        self.limiter = limiter or RateLimiter(
            self.config.max_requests_per_minute,
            self.config.rate_window_seconds,
            self.config.request_spacing_seconds,
        )
        self.cache = cache or TTLCache(self.config.pir_cache_ttl)
        self.fallback = KeywordClassifier()

    @property
    def degraded(self) -> bool:
        return self.client is None

    def _load_pirs(self) -> List[PIR]:
        try:
            pirs = self.repository.get_active_pirs()
        except Exception as exc:  # noqa: BLE001 - any storage failure degrades to defaults
            logger.warning("Could not load PIRs, using defaults: %s", exc)
            return default_pirs()
        if not pirs:
            logger.info("No active PIRs configured; using built-in defaults")
            return default_pirs()
        return pirs

    def active_pirs(self) -> List[PIR]:
        return self.cache.get_or_set(_PIR_CACHE_KEY, self._load_pirs)

    def invalidate_pirs(self) -> None:
        self.cache.invalidate(_PIR_CACHE_KEY)

    def classify(
        self,
        content: str,
        *,
        source: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Classification:
        pirs = self.active_pirs()
        if self.client is None:
            result = self.fallback.classify(content, pirs)
            logger.debug("Keyword classification: %s/%s", result.category, result.confidence)
            return result

        capped = truncate(content, self.config.max_content_chars, "...")
        waited = self.limiter.acquire()
        if waited:
            logger.info("Waited %.1fs for classifier rate limit", waited)
        raw = self.client.classify(capped, pirs, source=source, metadata=metadata)
        result = parse_classification_response(raw, [p.category for p in pirs])
        logger.info(
            "Analysis complete: %s - %s (%d%% confidence)",
            "RELEVANT" if result.relevant else "NOT RELEVANT",
            result.category,
            result.confidence,
        )
        return result
