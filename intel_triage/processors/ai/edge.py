from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional, Sequence

import requests

from ...errors import ProviderError, ProviderUnavailable
from ...models import PIR
from .base import AIClient


class EdgeFunctionClient(AIClient):
    """First-party analysis function that holds the provider key server-side.

    The function receives ``{content, source, metadata, pirs}`` and answers
    with the classification record as JSON, or ``{"error": ...}`` with a
    non-2xx status.

    Environment:
      - EDGE_FUNCTION_URL (required)
      - EDGE_FUNCTION_TOKEN (bearer token, optional)
    """

    name = "edge"

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        *,
        timeout: float = 60,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url or os.environ.get("EDGE_FUNCTION_URL", "")
        if not self.url:
            raise ProviderUnavailable("EDGE_FUNCTION_URL is not set")
        self.token = token if token is not None else os.environ.get("EDGE_FUNCTION_TOKEN", "")
        self.timeout = timeout
        self.session = session or requests.Session()

    def classify(
        self,
        content: str,
        pirs: Sequence[PIR],
        *,
        source: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        payload = {
            "content": content,
            "source": source,
            "metadata": metadata or {},
            "pirs": [
                {
                    "name": p.name,
                    "category": p.category,
                    "description": p.description,
                    "keywords": list(p.keywords),
                    "confidenceThreshold": p.confidence_threshold,
                }
                for p in pirs
            ],
        }
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = self.session.post(self.url, headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ProviderError(f"Edge function request failed: {exc}") from exc

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("error", "")
            except ValueError:
                detail = resp.text[:200]
            raise ProviderError(f"Edge function error {resp.status_code}: {detail or 'unknown error'}")

        try:
            data = resp.json()
        except ValueError:
            # Not JSON at all; let the response validator reject it
            return resp.text
        if isinstance(data, dict) and data.get("error"):
            raise ProviderError(f"Edge function error: {data['error']}")
        return json.dumps(data)
