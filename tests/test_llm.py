# =============================================================================
# Unit Tests - Model Invoker, JSON Extraction, Provider Error Mapping
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import BaseModel

from csv_analyst.errors import UpstreamError, UpstreamErrorKind, ValidationError
from csv_analyst.services.llm import (
    LLMResponse,
    ModelInvoker,
    classify_provider_error,
    extract_json,
    get_llm_provider,
)
from csv_analyst.services.retry import RetryPolicy


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _response(content: str) -> LLMResponse:
    return LLMResponse(content=content, model="test", input_tokens=10, output_tokens=5)


def _invoker(*side_effect) -> tuple[ModelInvoker, AsyncMock]:
    llm = AsyncMock()
    llm.complete = AsyncMock(side_effect=list(side_effect))
    return ModelInvoker(llm, RetryPolicy(base_delay=0)), llm


class _Payload(BaseModel):
    answer: str
    score: float


class _StatusError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class APIConnectionError(Exception):
    pass


# ---------------------------------------------------------------------------
# Test: JSON Extraction
# ---------------------------------------------------------------------------


class TestExtractJson:
    def test_plain_json(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_json_fence(self):
        assert extract_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_bare_fence(self):
        assert extract_json('```\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_prose_around_object(self):
        assert extract_json('Here you go: {"a": 1} Hope that helps.') == {"a": 1}

    def test_no_json(self):
        with pytest.raises(ValueError):
            extract_json("I cannot help with that.")

    def test_broken_json(self):
        with pytest.raises(ValueError):
            extract_json('{"a": 1,,}')


# ---------------------------------------------------------------------------
# Test: Provider Error Mapping
# ---------------------------------------------------------------------------


class TestClassifyProviderError:
    def test_quota_by_message(self):
        err = classify_provider_error(
            _StatusError("Error code: 429 - insufficient_quota", 429), "OpenAI",
        )
        assert err.kind == UpstreamErrorKind.QUOTA_EXCEEDED
        assert err.message == (
            "OpenAI API quota exceeded. Please check your billing details and try again later."
        )
        assert err.status_code == 429

    def test_rate_limit(self):
        err = classify_provider_error(_StatusError("slow down", 429), "Anthropic")
        assert err.kind == UpstreamErrorKind.RATE_LIMITED
        assert err.message == "Anthropic API rate limit exceeded. Please try again later."

    def test_unauthenticated(self):
        err = classify_provider_error(_StatusError("bad key", 401), "OpenAI")
        assert err.kind == UpstreamErrorKind.UNAUTHENTICATED
        assert err.message == "Invalid OpenAI API key. Please check your configuration."
        assert err.status_code == 401

    def test_other_4xx_rejected(self):
        err = classify_provider_error(_StatusError("bad request", 400), "OpenAI")
        assert err.kind == UpstreamErrorKind.REJECTED
        assert not err.retryable

    def test_5xx_transient(self):
        err = classify_provider_error(_StatusError("overloaded", 529), "Anthropic")
        assert err.kind == UpstreamErrorKind.TRANSIENT
        assert err.retryable

    def test_connection_error_transient(self):
        err = classify_provider_error(APIConnectionError("reset"), "Anthropic")
        assert err.kind == UpstreamErrorKind.TRANSIENT

    def test_unknown_exception_rejected(self):
        err = classify_provider_error(KeyError("boom"), "Anthropic")
        assert err.kind == UpstreamErrorKind.REJECTED


# ---------------------------------------------------------------------------
# Test: Model Invoker
# ---------------------------------------------------------------------------


class TestModelInvoker:
    def test_text_reply(self):
        invoker, llm = _invoker(_response("hello"))
        assert _run(invoker.invoke("system", "user")) == "hello"
        kwargs = llm.complete.await_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "user"}]

    def test_history_precedes_user_turn(self):
        invoker, llm = _invoker(_response("ok"))
        history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hey"}]
        _run(invoker.invoke("s", "next", history=history))
        assert llm.complete.await_args.kwargs["messages"][-1] == {"role": "user", "content": "next"}
        assert len(llm.complete.await_args.kwargs["messages"]) == 3

    def test_schema_reply_validated(self):
        invoker, _ = _invoker(_response('```json\n{"answer": "yes", "score": 0.5}\n```'))
        result = _run(invoker.invoke("s", "u", _Payload))
        assert result == _Payload(answer="yes", score=0.5)

    def test_invalid_json_is_validation_error(self):
        invoker, llm = _invoker(_response("not json at all"))
        with pytest.raises(ValidationError):
            _run(invoker.invoke("s", "u", _Payload))
        assert llm.complete.await_count == 1

    def test_schema_mismatch_is_validation_error(self):
        invoker, _ = _invoker(_response('{"answer": "yes"}'))
        with pytest.raises(ValidationError, match="_Payload"):
            _run(invoker.invoke("s", "u", _Payload))

    def test_empty_reply_retried_then_succeeds(self):
        invoker, llm = _invoker(_response("   "), _response("second"))
        assert _run(invoker.invoke("s", "u")) == "second"
        assert llm.complete.await_count == 2

    def test_empty_reply_exhausts_retries(self):
        invoker, llm = _invoker(_response(""), _response(""), _response(""))
        with pytest.raises(UpstreamError) as exc_info:
            _run(invoker.invoke("s", "u"))
        assert exc_info.value.kind == UpstreamErrorKind.EMPTY_RESPONSE
        assert llm.complete.await_count == 3

    def test_sdk_error_classified(self):
        invoker, llm = _invoker(_StatusError("bad key", 401))
        with pytest.raises(UpstreamError) as exc_info:
            _run(invoker.invoke("s", "u"))
        assert exc_info.value.kind == UpstreamErrorKind.UNAUTHENTICATED
        assert llm.complete.await_count == 1

    def test_transient_sdk_error_retried(self):
        invoker, llm = _invoker(_StatusError("overloaded", 503), _response("ok"))
        assert _run(invoker.invoke("s", "u")) == "ok"
        assert llm.complete.await_count == 2


# ---------------------------------------------------------------------------
# Test: Provider Factory
# ---------------------------------------------------------------------------


class TestLLMProviderFactory:
    """Tests for get_llm_provider() factory function."""

    def test_anthropic_without_key_is_unauthenticated(self):
        with (
            patch("csv_analyst.services.llm._provider", None),
            patch("csv_analyst.services.llm.settings") as mock_settings,
        ):
            mock_settings.llm_provider = "anthropic"
            mock_settings.llm_api_key = None
            mock_settings.anthropic_api_key = None
            with pytest.raises(UpstreamError) as exc_info:
                get_llm_provider()
        assert exc_info.value.kind == UpstreamErrorKind.UNAUTHENTICATED

    def test_openai_compatible_selected(self):
        with (
            patch("csv_analyst.services.llm._provider", None),
            patch("csv_analyst.services.llm.settings") as mock_settings,
        ):
            mock_settings.llm_provider = "openai_compatible"
            mock_settings.llm_api_key = "sk-test"
            mock_settings.llm_base_url = "https://api.deepseek.com/v1"
            mock_settings.llm_model = "deepseek-chat"
            mock_settings.llm_temperature = 0.3
            mock_settings.llm_max_tokens = 1024
            provider = get_llm_provider()
        assert type(provider).__name__ == "OpenAICompatibleProvider"
