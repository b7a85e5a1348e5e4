from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

from ...models import PIR


class AIClient(ABC):
    """Abstract AI client interface for PIR classification."""

    name = "ai"

    @abstractmethod
    def classify(
        self,
        content: str,
        pirs: Sequence[PIR],
        *,
        source: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Return the provider's raw text answer for ``content``.

        Implementations raise ``ProviderError`` on transport, quota or
        authentication failures; validating the answer is the caller's job.
        """
