"""AI backend selection and clients (Anthropic, edge function, Ollama)."""

from .base import AIClient
from .factory import create_ai_client
from .parsing import parse_classification_response
from .rate_limit import RateLimiter

__all__ = ["AIClient", "create_ai_client", "parse_classification_response", "RateLimiter"]
