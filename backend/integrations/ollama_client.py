"""
Ollama REST API client.
Wraps POST /api/chat for JSON-mode completion. One HTTP call per `chat`;
retry policy belongs to the caller.
"""
import logging
from typing import Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)


class OllamaError(RuntimeError):
    """Non-retryable failure (4xx, unexpected response body)."""


class OllamaTransientError(OllamaError):
    """Timeout, transport failure or 5xx. Safe to retry with the same prompt."""


class OllamaClient:
    """Thin client for the Ollama local LLM server."""

    def __init__(
        self,
        host: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.host = (host or settings.OLLAMA_HOST).rstrip("/")
        self.model = model or settings.OLLAMA_MODEL
        self.timeout = timeout if timeout is not None else settings.OLLAMA_TIMEOUT_SECONDS
        self._http = httpx.Client(base_url=self.host, timeout=self.timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    def is_healthy(self) -> tuple[bool, Optional[str]]:
        """Returns (True, model_name) if Ollama is reachable, (False, error) otherwise."""
        try:
            resp = self._http.get("/api/version", timeout=5)
            resp.raise_for_status()
            return True, self.model
        except httpx.HTTPError as e:
            return False, str(e)

    def chat(self, messages: list[dict], json_mode: bool = True) -> str:
        """
        Call Ollama /api/chat with a list of {role, content} messages.
        Returns the assistant's reply as a string.
        """
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {"num_ctx": 8192, "temperature": 0.1},
        }
        if json_mode:
            payload["format"] = "json"

        try:
            resp = self._http.post("/api/chat", json=payload)
        except httpx.TimeoutException as e:
            raise OllamaTransientError(f"Ollama timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise OllamaTransientError(f"Ollama unreachable: {e}") from e

        if resp.status_code >= 500:
            raise OllamaTransientError(f"Ollama returned HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise OllamaError(f"Ollama rejected the request: HTTP {resp.status_code} {resp.text[:200]}")

        try:
            content = resp.json()["message"]["content"]
        except (ValueError, KeyError, TypeError) as e:
            raise OllamaError(f"Unexpected Ollama response body: {e}") from e
        logger.debug("Ollama response length: %d chars", len(content))
        return content.strip()
