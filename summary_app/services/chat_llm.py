from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field

import httpx

from summary_app.exceptions import (
    CompletionRequestError,
    CompletionTimeoutError,
    CompletionUnavailableError,
    ConfigurationError,
    EmptyCompletionError,
    MalformedResponseError,
)
from summary_app.services.pacing import RequestPacer

logger = logging.getLogger(__name__)

# Module-level shared client for connection pooling across batch calls.
# Timeouts are passed per request, so one client serves every caller.
_shared_client: httpx.Client | None = None
_shared_client_lock = threading.Lock()

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def _get_shared_client() -> httpx.Client:
    global _shared_client
    if _shared_client is not None and not _shared_client.is_closed:
        return _shared_client
    with _shared_client_lock:
        if _shared_client is None or _shared_client.is_closed:
            _shared_client = httpx.Client()
    return _shared_client


def parse_json_object(content: str) -> dict:
    """Parse a completion body into a JSON object.

    Tolerates a fenced code block or leading prose around the object, which
    some providers emit even in JSON mode.
    """
    text = content.strip()
    try:
        parsed = json.loads(text)
    except ValueError:
        start = text.find("{")
        end = text.rfind("}")
        if start < 0 or end <= start:
            raise MalformedResponseError("completion content is not valid json") from None
        try:
            parsed = json.loads(text[start : end + 1])
        except ValueError as exc:
            raise MalformedResponseError("completion content is not valid json") from exc
    if not isinstance(parsed, dict):
        raise MalformedResponseError("completion content is not a json object")
    return parsed


@dataclass(slots=True)
class CompletionLLM:
    """OpenAI-compatible chat-completions client.

    Every call is a single attempt: retry decisions belong to the caller's
    RetryPolicy, which keys off the ``retryable`` flag of the raised error.
    """

    api_key: str = field(repr=False)
    model_name: str
    timeout_ms: int
    base_url: str = "https://api.openai.com/v1/chat/completions"
    pacer: RequestPacer | None = None

    def _headers(self) -> dict[str, str]:
        if not self.api_key.strip():
            raise ConfigurationError("LLM_API_KEY is required for summary generation")
        return {
            "Authorization": f"Bearer {self.api_key.strip()}",
            "Content-Type": "application/json",
        }

    def complete(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        temperature: float = 0.3,
        max_output_tokens: int | None = None,
        structured_output: bool = False,
        model_name: str | None = None,
        timeout_ms: int | None = None,
    ) -> str:
        model = model_name or self.model_name
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload: dict = {
            "model": model,
            "temperature": temperature,
            "messages": messages,
        }
        if max_output_tokens:
            payload["max_tokens"] = max_output_tokens
        if structured_output:
            payload["response_format"] = {"type": "json_object"}

        headers = self._headers()
        if self.pacer is not None:
            self.pacer.acquire(model)

        timeout_seconds = max(timeout_ms or self.timeout_ms, 1000) / 1000
        client = _get_shared_client()

        try:
            response = client.post(self.base_url, headers=headers, json=payload, timeout=timeout_seconds)
        except httpx.TimeoutException as exc:
            raise CompletionTimeoutError(f"completion timed out after {timeout_seconds:.0f}s") from exc
        except httpx.TransportError as exc:
            raise CompletionUnavailableError(f"completion transport error: {exc}") from exc

        if response.status_code >= 400:
            status = response.status_code
            if status in RETRYABLE_STATUS_CODES:
                logger.warning("completion %s retryable error: status=%s", model, status)
                raise CompletionUnavailableError(
                    f"completion service temporarily unavailable (status={status})",
                    status_code=status,
                )
            logger.error(
                "completion %s failed: status=%s body=%s prompt_len=%d",
                model, status, response.text[:500], len(prompt),
            )
            raise CompletionRequestError(
                f"completion request rejected (status={status})", status_code=status
            )

        try:
            parsed = response.json()
        except ValueError as exc:
            raise MalformedResponseError("completion returned non-json response") from exc

        choices = parsed.get("choices") if isinstance(parsed, dict) else None
        if not isinstance(choices, list) or len(choices) == 0:
            raise MalformedResponseError("completion response missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise MalformedResponseError("completion response missing message content")
        if not content.strip():
            raise EmptyCompletionError("completion returned empty content")
        return content
