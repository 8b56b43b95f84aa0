"""Tests for the LiteLLM client wrapper."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from sitebot.rag.llm_client import stream_chat, validate_api_key


def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
        validate_api_key("openai/gpt-4o-mini")


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    validate_api_key("openai/gpt-4o-mini")  # should not raise


def test_validate_api_key_anthropic(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="ANTHROPIC_API_KEY"):
        validate_api_key("anthropic/claude-3-5-haiku-20241022")


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/llama3")


def test_validate_api_key_bare_model_treated_as_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError):
        validate_api_key("gpt-4o-mini")


# ------------------------------------------------------------------
# stream_chat()
# ------------------------------------------------------------------


def test_stream_chat_yields_deltas():
    chunks = [_chunk("Hel"), _chunk(None), SimpleNamespace(choices=[]), _chunk("lo")]
    with patch("sitebot.rag.llm_client.litellm.completion", return_value=iter(chunks)):
        result = list(stream_chat("openai/gpt-4o-mini", [{"role": "user", "content": "Hi"}]))

    assert result == ["Hel", "lo"]


def test_stream_chat_passes_params_to_litellm():
    with patch("sitebot.rag.llm_client.litellm.completion", return_value=iter([])) as mock_c:
        list(
            stream_chat(
                "anthropic/claude-3-5-haiku-20241022",
                [{"role": "user", "content": "Hi"}],
                max_tokens=256,
                temperature=0.2,
            )
        )

    kwargs = mock_c.call_args.kwargs
    assert kwargs["model"] == "anthropic/claude-3-5-haiku-20241022"
    assert kwargs["max_tokens"] == 256
    assert kwargs["temperature"] == 0.2
    assert kwargs["stream"] is True


def test_stream_chat_close_closes_provider_stream():
    response = MagicMock()
    response.__iter__.return_value = iter([_chunk("a"), _chunk("b")])
    with patch("sitebot.rag.llm_client.litellm.completion", return_value=response):
        stream = stream_chat("openai/gpt-4o-mini", [])
        assert next(stream) == "a"
        stream.close()

    response.close.assert_called_once()


def test_stream_chat_propagates_provider_error():
    with patch(
        "sitebot.rag.llm_client.litellm.completion", side_effect=RuntimeError("rate limited")
    ):
        with pytest.raises(RuntimeError, match="rate limited"):
            list(stream_chat("openai/gpt-4o-mini", []))
