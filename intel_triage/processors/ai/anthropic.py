from __future__ import annotations

import os
from typing import Any, Dict, Optional, Sequence

import requests

from ...errors import InvalidResponse, ProviderError, ProviderUnavailable
from ...models import PIR
from .base import AIClient
from .prompt import build_prompt

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"


class AnthropicClient(AIClient):
    """Client for Anthropic's Messages API over plain HTTP.

    Environment:
      - ANTHROPIC_API_KEY (required)
      - ANTHROPIC_MODEL (default: claude-3-5-sonnet-latest)
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: Optional[str] = None,
        timeout: float = 60,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        if not self.api_key:
            raise ProviderUnavailable("ANTHROPIC_API_KEY is not set")
        self.model = model or os.environ.get("ANTHROPIC_MODEL", "claude-3-5-sonnet-latest")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _messages(self, prompt: str, *, max_tokens: int = 1000, temperature: float = 0.1) -> str:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
        }
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        try:
            resp = self.session.post(API_URL, headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ProviderError(f"Anthropic request failed: {exc}") from exc

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("error", {}).get("message", "")
            except ValueError:
                detail = resp.text[:200]
            raise ProviderError(f"Anthropic API error {resp.status_code}: {detail or 'unknown error'}")

        try:
            data = resp.json()
            return data["content"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise InvalidResponse(f"Unexpected Anthropic response shape: {exc}") from exc

    def classify(
        self,
        content: str,
        pirs: Sequence[PIR],
        *,
        source: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        prompt = build_prompt(content, pirs, source=source, metadata=metadata)
        return self._messages(prompt)
