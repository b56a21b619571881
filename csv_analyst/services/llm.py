# =============================================================================
# Multi-Provider LLM Abstraction + Model Invoker
# =============================================================================
#
# Two layers:
#
# 1. LLMProvider - a thin async `complete()` over the native SDKs, with
#    implementations for Anthropic (Claude) and any OpenAI-compatible API
#    (OpenAI, DeepSeek, Qwen, ...). Switching providers is a .env change.
#
# 2. ModelInvoker - what the stage agents actually call:
#       invoke(system, user_content, output_schema=None)
#    It adds everything the pipeline needs on top of a raw completion:
#      - bounded retry on transient failures (services.retry)
#      - empty-response detection
#      - provider SDK exceptions mapped to UpstreamError kinds
#      - JSON extraction (markdown code fences stripped)
#      - pydantic schema validation → ValidationError (never retried)
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Tests hand the invoker an AsyncMock with a `complete` coroutine and it
# just works; no registration, no subclassing.
#
# DESIGN DECISION: Native SDKs over LangChain wrappers.
# Direct control over request parameters and exceptions we can classify
# by status code.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider         - system prompt as top-level kwarg
#   ├── OpenAICompatibleProvider  - system prompt as first message
#   └── get_llm_provider()        - lazy singleton, reads from config
#   ModelInvoker                  - retry + parse + validate
#   classify_provider_error()     - SDK exception → UpstreamError
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from csv_analyst.config import settings
from csv_analyst.errors import (
    AnalysisError,
    UpstreamError,
    UpstreamErrorKind,
    ValidationError,
)
from csv_analyst.services.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """Normalised completion from any provider."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            messages: dicts with "role" ("user" / "assistant") and "content".
            system: System prompt. Anthropic takes it as a top-level kwarg,
                OpenAI as a leading {"role": "system"} message.
            temperature: Override sampling temperature.
            max_tokens: Override max output tokens.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Claude via AsyncAnthropic.

    SDK-level retries are disabled (max_retries=0): ModelInvoker owns the
    retry policy so every stage backs off the same way.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise UpstreamError(
                "Invalid Anthropic API key. Please check your configuration.",
                UpstreamErrorKind.UNAUTHENTICATED,
            )

        self._client = AsyncAnthropic(api_key=resolved_key, max_retries=0)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)

        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Any API following the OpenAI chat-completions contract.

        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_MODEL=deepseek-chat
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise UpstreamError(
                "Invalid OpenAI API key. Please check your configuration.",
                UpstreamErrorKind.UNAUTHENTICATED,
            )

        client_kwargs: dict = {"api_key": resolved_key, "max_retries": 0}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=all_messages,
            max_tokens=max_tokens or self._max_tokens,
            temperature=self._temperature if temperature is None else temperature,
        )

        content = (response.choices[0].message.content or "") if response.choices else ""

        usage = response.usage
        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

# Lazy singleton - the SDK clients pool their own connections
_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def _provider_label() -> str:
    return "OpenAI" if settings.llm_provider == "openai_compatible" else "Anthropic"


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """Return the configured provider ("anthropic" or "openai_compatible")."""
    global _provider
    if _provider is None:
        if settings.llm_provider == "openai_compatible":
            _provider = OpenAICompatibleProvider()
        else:
            _provider = AnthropicProvider()
    return _provider


# ---------------------------------------------------------------------------
# Provider Error Mapping
# ---------------------------------------------------------------------------
# Both SDKs raise APIStatusError subclasses carrying `status_code`, and
# APIConnectionError / APITimeoutError for network failures. We classify
# by attribute and message rather than importing SDK classes so either
# SDK (or a test double) maps the same way.
# ---------------------------------------------------------------------------


_TRANSIENT_NAMES = ("Connection", "Timeout")


def classify_provider_error(exc: Exception, provider: str | None = None) -> UpstreamError:
    """
    Map a provider SDK exception to an UpstreamError with a fixed message.

    Quota is checked before the 429 status because OpenAI reports an
    exhausted quota as a 429 with code `insufficient_quota`.
    """
    label = provider or _provider_label()
    status = getattr(exc, "status_code", None)
    text = str(exc).lower()

    if "insufficient_quota" in text or "exceeded your current quota" in text:
        return UpstreamError(
            f"{label} API quota exceeded. "
            "Please check your billing details and try again later.",
            UpstreamErrorKind.QUOTA_EXCEEDED,
        )
    if status == 429:
        return UpstreamError(
            f"{label} API rate limit exceeded. Please try again later.",
            UpstreamErrorKind.RATE_LIMITED,
        )
    if status in (401, 403):
        return UpstreamError(
            f"Invalid {label} API key. Please check your configuration.",
            UpstreamErrorKind.UNAUTHENTICATED,
        )
    if isinstance(status, int) and status < 500:
        return UpstreamError(
            f"{label} API rejected the request (HTTP {status}).",
            UpstreamErrorKind.REJECTED,
        )
    if status is None and not any(n in type(exc).__name__ for n in _TRANSIENT_NAMES):
        return UpstreamError(
            f"{label} API call failed: {type(exc).__name__}",
            UpstreamErrorKind.REJECTED,
        )
    return UpstreamError(
        f"{label} API is temporarily unavailable. Please try again later.",
        UpstreamErrorKind.TRANSIENT,
    )


# ---------------------------------------------------------------------------
# JSON Extraction
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"^```(?:json|JSON)?\s*\n?(.*?)\n?```$", re.DOTALL)


def extract_json(content: str) -> Any:
    """
    Parse a JSON payload out of a model reply.

    Strips a surrounding markdown code fence if present. If the reply has
    prose around the object, falls back to the outermost {...} span.

    Raises:
        ValueError: No parseable JSON found.
    """
    text = content.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1).strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(text[start:end + 1])
        except json.JSONDecodeError as exc:
            raise ValueError(f"model reply is not valid JSON: {exc.msg}") from exc
    raise ValueError("model reply contains no JSON object")


# ---------------------------------------------------------------------------
# Model Invoker
# ---------------------------------------------------------------------------


class ModelInvoker:
    """
    The single entry point stage agents use to call the model.

    Retry wraps only the network call and the empty-response check.
    Parsing and validation run once on the final content: a malformed
    payload is a ValidationError and re-asking the same prompt is not a
    retry the policy covers.
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        policy: RetryPolicy | None = None,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self._llm = llm
        self.policy = policy or RetryPolicy.from_settings()
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def llm(self) -> LLMProvider:
        if self._llm is None:
            self._llm = get_llm_provider()
        return self._llm

    async def complete_text(
        self,
        system: str,
        user_content: str,
        *,
        history: list[dict[str, str]] | None = None,
        label: str = "model call",
    ) -> str:
        """Invoke the model and return the raw (non-empty) text reply."""
        messages = list(history or [])
        messages.append({"role": "user", "content": user_content})

        async def attempt() -> str:
            try:
                response = await self.llm.complete(
                    messages=messages,
                    system=system,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                )
            except AnalysisError:
                raise
            except Exception as exc:
                raise classify_provider_error(exc) from exc

            if not response.content or not response.content.strip():
                raise UpstreamError(
                    "No response received from the model.",
                    UpstreamErrorKind.EMPTY_RESPONSE,
                )
            return response.content

        return await with_retry(attempt, self.policy, label=label)

    async def invoke(
        self,
        system: str,
        user_content: str,
        output_schema: type[SchemaT] | None = None,
        *,
        history: list[dict[str, str]] | None = None,
        label: str = "model call",
    ) -> SchemaT | str:
        """
        invoke(systemInstructions, userContent, outputSchema?)

        Without a schema, returns the text reply. With one, returns a
        validated instance of it.

        Raises:
            UpstreamError: provider failure (after retries when retryable).
            ValidationError: reply isn't JSON or doesn't match the schema.
        """
        content = await self.complete_text(
            system, user_content, history=history, label=label,
        )
        if output_schema is None:
            return content
        return parse_payload(content, output_schema, label=label)


def parse_payload(content: str, schema: type[SchemaT], *, label: str = "model call") -> SchemaT:
    """Extract JSON from `content` and validate it against `schema`."""
    try:
        payload = extract_json(content)
    except ValueError as exc:
        logger.warning("%s returned unparseable output: %s", label, exc)
        raise ValidationError(f"{label} returned invalid JSON") from exc

    try:
        return schema.model_validate(payload)
    except PydanticValidationError as exc:
        logger.warning(
            "%s output failed %s validation (%d errors)",
            label, schema.__name__, exc.error_count(),
        )
        raise ValidationError(
            f"{label} returned output that does not match {schema.__name__}"
        ) from exc
