from __future__ import annotations

import os
from typing import Any, Dict, Optional, Sequence

import requests

from ...errors import InvalidResponse, ProviderError
from ...models import PIR
from .base import AIClient
from .prompt import build_prompt


class OllamaClient(AIClient):
    """HTTP client for a local Ollama server's generate API.

    Environment:
      - OLLAMA_HOST (default: http://localhost:11434)
      - OLLAMA_MODEL (default: llama3.1:8b-instruct)
    """

    name = "ollama"

    def __init__(self, *, timeout: float = 60) -> None:
        self.host = os.environ.get("OLLAMA_HOST", "http://localhost:11434").rstrip("/")
        self.model = os.environ.get("OLLAMA_MODEL", "llama3.1:8b-instruct")
        self.timeout = timeout

    def _chat(self, prompt: str, *, temperature: float = 0.1) -> str:
        url = f"{self.host}/api/generate"
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
            "options": {"temperature": temperature},
        }
        try:
            resp = requests.post(url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise ProviderError(f"Ollama request failed: {exc}") from exc
        try:
            data = resp.json()
        except ValueError as exc:
            raise InvalidResponse(f"Ollama returned non-JSON body: {exc}") from exc
        # Ollama returns {'response': '...'}
        return (data.get("response") or "").strip()

    def classify(
        self,
        content: str,
        pirs: Sequence[PIR],
        *,
        source: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        return self._chat(build_prompt(content, pirs, source=source, metadata=metadata))
