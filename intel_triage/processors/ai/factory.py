from __future__ import annotations

import os
from typing import Optional

from ...errors import ProviderUnavailable
from .base import AIClient


def create_ai_client(*, backend: Optional[str] = None, timeout: float = 60) -> AIClient:
    """Create an AI client based on TRIAGE_AI_BACKEND env or explicit value.

    Supported values: "anthropic" (default), "edge", "ollama", or "keyword"
    to run on the keyword fallback only. Missing credentials raise
    ``ProviderUnavailable`` so the caller can degrade instead of failing.
    """
    selected = (backend or os.environ.get("TRIAGE_AI_BACKEND", "anthropic")).lower()

    if selected == "anthropic":
        from .anthropic import AnthropicClient  # lazy import

        return AnthropicClient(timeout=timeout)
    if selected == "edge":
        from .edge import EdgeFunctionClient  # lazy import

        return EdgeFunctionClient(timeout=timeout)
    if selected == "ollama":
        from .ollama import OllamaClient  # lazy import

        return OllamaClient(timeout=timeout)
    if selected in ("keyword", "none"):
        raise ProviderUnavailable("AI backend disabled; keyword classification only")

    raise ValueError(
        f"Unsupported TRIAGE_AI_BACKEND '{selected}'. Use 'anthropic', 'edge', 'ollama' or 'keyword'."
    )
