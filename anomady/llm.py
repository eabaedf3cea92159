"""LLM client: HTTP connection to a text-generation backend.

Callers receive an LLM callable matching the protocol:

    async def __call__(self, stage: str, prompt: str) -> str: ...

`stage` names the caller ("narrator", "summarizer", "lore_evolver") and is
used for logging only.

HttpLLM is the only implementation. Tests pass async stubs instead.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Protocol

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["gemini", "openai"]


class HttpLLM:
    """Async HTTP client for text-generation backends.

    Supported formats:
      "gemini"  POST /v1beta/models/{model}:generateContent?key=...
                  {"contents": [{"role": "user", "parts": [{"text": ...}]}]}
                  Response: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}
      "openai"  POST /v1/completions   {"model": ..., "prompt": ...}
                  Response: {"choices": [{"text": "..."}]}

    Args:
        provider_url:    Base URL of the backend.
        api_key:         Gemini query key or OpenAI bearer token; may be empty.
        provider_format: Wire format to use. Defaults to "gemini".
        model:           Model identifier.
        timeout:         HTTP timeout in seconds. Defaults to 45.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "gemini",
        model: str = "",
        timeout: float = 45.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    @property
    def model(self) -> str:
        return self._model

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key and self._format == "openai":
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: str) -> tuple[str, dict[str, Any], dict[str, str]]:
        """Return (url, body, query params) for the configured format."""
        if self._format == "openai":
            url = f"{self._base_url}/v1/completions"
            body: dict[str, Any] = {"prompt": prompt}
            if self._model:
                body["model"] = self._model
            return url, body, {}

        # gemini (default)
        url = f"{self._base_url}/v1beta/models/{self._model}:generateContent"
        body = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        params = {"key": self._api_key} if self._api_key else {}
        return url, body, params

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "text" not in choices[0]:
                raise LLMError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["text"]

        # gemini
        candidates = data.get("candidates")
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason")
            if reason:
                raise LLMError(f"Gemini blocked the prompt: {reason}")
            raise LLMError("Unexpected response format from Gemini backend")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts or "text" not in parts[0]:
            raise LLMError("Unexpected response format from Gemini backend")
        return "".join(p.get("text", "") for p in parts)

    async def __call__(self, stage: str, prompt: str) -> str:
        url, body, params = self._build_request(prompt)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers(), params=params)
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM request failed: {type(e).__name__}: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise LLMError("Unexpected response format: body is not a JSON object")
        text = self._parse_response(data)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


def from_config(config: dict[str, Any], model: str | None = None) -> HttpLLM:
    """Build an HttpLLM from the app settings' llm_connection block."""
    conn = config.get("llm_connection", {})
    return HttpLLM(
        provider_url=conn.get("provider_url", ""),
        api_key=conn.get("api_key", ""),
        provider_format=conn.get("provider_format", "gemini"),
        model=model or conn.get("model", "") or config.get("default_model", ""),
    )


# ---------------------------------------------------------------------------
# LLMError: raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
