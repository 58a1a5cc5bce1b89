"""Tests for the LiteLLM client wrapper."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from woodpecker.errors import ServiceErrorCategory, TransientServiceError
from woodpecker.rag.llm_client import (
    complete,
    stream_complete,
    to_service_error,
    validate_api_key,
)


class _StatusError(Exception):
    def __init__(self, status_code: int, message: str = "upstream said no") -> None:
        super().__init__(message)
        self.status_code = status_code


def _part(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="GEMINI_API_KEY"):
        validate_api_key("gemini/gemini-2.5-flash")


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    validate_api_key("openai/gpt-4o")  # should not raise


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/llama3")


def test_validate_api_key_unknown_provider_treated_as_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
        validate_api_key("unknown-provider-model")


# ------------------------------------------------------------------
# complete()
# ------------------------------------------------------------------


def test_complete_returns_content():
    mock_response = MagicMock()
    mock_response.choices[0].message.content = "Hello, world!"

    with patch("woodpecker.rag.llm_client.litellm.completion", return_value=mock_response):
        result = complete("openai/gpt-4o", [{"role": "user", "content": "Hi"}])

    assert result == "Hello, world!"


def test_complete_returns_empty_string_on_none_content():
    mock_response = MagicMock()
    mock_response.choices[0].message.content = None

    with patch("woodpecker.rag.llm_client.litellm.completion", return_value=mock_response):
        assert complete("openai/gpt-4o", [{"role": "user", "content": "Hi"}]) == ""


def test_complete_never_retries_by_default():
    mock_response = MagicMock()
    mock_response.choices[0].message.content = "ok"

    with patch("woodpecker.rag.llm_client.litellm.completion", return_value=mock_response) as mock_c:
        complete("openai/gpt-4o-mini", [{"role": "user", "content": "test"}], max_tokens=512)

    call_kwargs = mock_c.call_args.kwargs
    assert call_kwargs["num_retries"] == 0
    assert call_kwargs["max_tokens"] == 512


def test_complete_maps_rate_limit():
    with patch("woodpecker.rag.llm_client.litellm.completion", side_effect=_StatusError(429)):
        with pytest.raises(TransientServiceError) as info:
            complete("openai/gpt-4o", [])
    assert info.value.category is ServiceErrorCategory.RATE_LIMIT
    assert info.value.status == 429


# ------------------------------------------------------------------
# stream_complete()
# ------------------------------------------------------------------


def test_stream_complete_yields_deltas():
    parts = [_part("Hel"), _part(None), SimpleNamespace(choices=[]), _part("lo")]
    with patch("woodpecker.rag.llm_client.litellm.completion", return_value=iter(parts)) as mock_c:
        deltas = list(stream_complete("openai/gpt-4o", [{"role": "user", "content": "Hi"}]))
    assert deltas == ["Hel", "lo"]
    assert mock_c.call_args.kwargs["stream"] is True
    assert mock_c.call_args.kwargs["num_retries"] == 0


def test_stream_complete_refusal_raises_before_iteration():
    with patch("woodpecker.rag.llm_client.litellm.completion", side_effect=_StatusError(402)):
        with pytest.raises(TransientServiceError) as info:
            stream_complete("openai/gpt-4o", [])
    assert info.value.category is ServiceErrorCategory.QUOTA_EXCEEDED


def test_stream_broken_midway_raises_service_error():
    def _parts():
        yield _part("partial")
        raise RuntimeError("connection reset")

    with patch("woodpecker.rag.llm_client.litellm.completion", return_value=_parts()):
        stream = stream_complete("openai/gpt-4o", [])
        assert next(stream) == "partial"
        with pytest.raises(TransientServiceError):
            next(stream)


# ------------------------------------------------------------------
# to_service_error()
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "status,category",
    [
        (429, ServiceErrorCategory.RATE_LIMIT),
        (402, ServiceErrorCategory.QUOTA_EXCEEDED),
        (500, ServiceErrorCategory.SERVICE),
    ],
)
def test_to_service_error_by_status(status, category):
    err = to_service_error(_StatusError(status))
    assert err.category is category
    assert err.status == status


def test_to_service_error_passthrough():
    original = TransientServiceError("x")
    assert to_service_error(original) is original


def test_to_service_error_unknown_exception():
    err = to_service_error(RuntimeError("weird"))
    assert err.category is ServiceErrorCategory.SERVICE
    assert err.status is None
