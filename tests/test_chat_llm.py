"""Tests for CompletionLLM: error mapping, pacing, response parsing."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from summary_app.exceptions import (
    CompletionRequestError,
    CompletionTimeoutError,
    CompletionUnavailableError,
    ConfigurationError,
    EmptyCompletionError,
    MalformedResponseError,
)
from summary_app.services.chat_llm import CompletionLLM, parse_json_object


def _llm(api_key: str = "test-key", timeout_ms: int = 5000, pacer=None) -> CompletionLLM:
    return CompletionLLM(
        api_key=api_key,
        model_name="gpt-4o-mini",
        timeout_ms=timeout_ms,
        pacer=pacer,
    )


def _mock_response(status_code: int = 200, body: dict | str | None = None) -> httpx.Response:
    if body is None:
        body = {"choices": [{"message": {"content": json.dumps({"result": "ok"})}}]}
    content = json.dumps(body).encode() if isinstance(body, dict) else body.encode()
    return httpx.Response(
        status_code=status_code,
        content=content,
        request=httpx.Request("POST", "https://example.com"),
    )


def _patched_client(response=None, side_effect=None):
    mock_client = MagicMock()
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    else:
        mock_client.post.return_value = response
    return patch("summary_app.services.chat_llm._get_shared_client", return_value=mock_client), mock_client


# ── configuration ───────────────────────────────────────────────────────────


def test_blank_api_key_raises_configuration_error() -> None:
    llm = _llm(api_key="   ")
    with pytest.raises(ConfigurationError, match="LLM_API_KEY"):
        llm.complete("hello")


def test_api_key_hidden_from_repr() -> None:
    assert "test-key" not in repr(_llm())


# ── HTTP status mapping ─────────────────────────────────────────────────────


@pytest.mark.parametrize("status", [429, 500, 503])
def test_retryable_status_raises_unavailable(status: int) -> None:
    patcher, _ = _patched_client(_mock_response(status_code=status, body={"error": "busy"}))
    with patcher:
        with pytest.raises(CompletionUnavailableError) as exc_info:
            _llm().complete("hello")
    assert exc_info.value.retryable is True
    assert exc_info.value.status_code == status


def test_4xx_raises_terminal_request_error() -> None:
    patcher, _ = _patched_client(_mock_response(status_code=400, body={"error": "bad request"}))
    with patcher:
        with pytest.raises(CompletionRequestError, match="status=400") as exc_info:
            _llm().complete("hello")
    assert exc_info.value.retryable is False


def test_timeout_maps_to_retryable_timeout_error() -> None:
    patcher, _ = _patched_client(side_effect=httpx.ReadTimeout("timed out"))
    with patcher:
        with pytest.raises(CompletionTimeoutError) as exc_info:
            _llm().complete("hello")
    assert exc_info.value.retryable is True


def test_transport_error_maps_to_unavailable() -> None:
    patcher, _ = _patched_client(side_effect=httpx.ConnectError("refused"))
    with patcher:
        with pytest.raises(CompletionUnavailableError):
            _llm().complete("hello")


# ── response parsing ────────────────────────────────────────────────────────


def test_missing_choices_is_malformed() -> None:
    patcher, _ = _patched_client(_mock_response(body={"choices": []}))
    with patcher:
        with pytest.raises(MalformedResponseError, match="choices"):
            _llm().complete("hello")


def test_non_json_body_is_malformed() -> None:
    patcher, _ = _patched_client(_mock_response(body="<html>oops</html>"))
    with patcher:
        with pytest.raises(MalformedResponseError):
            _llm().complete("hello")


def test_whitespace_content_is_retryable_empty_error() -> None:
    patcher, _ = _patched_client(_mock_response(body={"choices": [{"message": {"content": "  "}}]}))
    with patcher:
        with pytest.raises(EmptyCompletionError) as exc_info:
            _llm().complete("hello")
    assert exc_info.value.retryable is True


def test_complete_sends_model_timeout_and_json_mode() -> None:
    patcher, mock_client = _patched_client(_mock_response())
    with patcher:
        content = _llm().complete(
            "hello",
            system_prompt="sys",
            structured_output=True,
            model_name="gpt-4o",
            timeout_ms=3000,
        )

    assert json.loads(content) == {"result": "ok"}
    _, kwargs = mock_client.post.call_args
    assert kwargs["json"]["model"] == "gpt-4o"
    assert kwargs["json"]["response_format"] == {"type": "json_object"}
    assert kwargs["json"]["messages"][0] == {"role": "system", "content": "sys"}
    assert kwargs["timeout"] == 3.0
    assert kwargs["headers"]["Authorization"] == "Bearer test-key"


def test_complete_acquires_pacer_per_model() -> None:
    pacer = MagicMock()
    patcher, _ = _patched_client(_mock_response())
    with patcher:
        _llm(pacer=pacer).complete("hello", model_name="gpt-4o")
    pacer.acquire.assert_called_once_with("gpt-4o")


def test_parse_json_object_tolerates_code_fence() -> None:
    assert parse_json_object('```json\n{"a": 1}\n```') == {"a": 1}


def test_parse_json_object_rejects_array() -> None:
    with pytest.raises(MalformedResponseError):
        parse_json_object("[1, 2]")
