# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# Nothing here touches the network, an API key, or a Redis server:
#   - ScriptedLLM stands in for the provider, routing each call to a canned
#     reply by a marker phrase in the stage's system prompt
#   - the session store runs on InMemorySessionBackend
#   - retries use a zero-delay policy
# =============================================================================

from __future__ import annotations

import json
from typing import Any, Callable

import pytest

from csv_analyst.agents.orchestrator import AnalysisPipeline
from csv_analyst.services.llm import LLMResponse, ModelInvoker
from csv_analyst.services.retry import RetryPolicy
from csv_analyst.services.session_store import InMemorySessionBackend, SessionStore

SESSION_ID = "3f2b8c1e-9d4a-4e6b-8f7c-2a1d0e5b6c7d"

# Marker phrases from each stage's system prompt
PROFILER = "data profiling assistant"
DETECTIVE = "data detective"
STORYTELLER = "data storyteller"
ADDITIONAL_CONTEXT = "additional context agent"
ANSWER = "answering questions about a data analysis report"
EVALUATION = "quality control expert"
SYNTHESIS = "prompt engineering"

PROFILE_REPLY = {
    "columns": [
        {"name": "name", "type": "string"},
        {"name": "temp", "type": "numeric"},
    ],
    "rowCount": 5,
    "summary": "Daily temperature readings for five cities",
    "anomalies": ["Austin reading is unusually high"],
}

DETECTIVE_REPLY = {
    "insights": [
        {
            "type": "anomaly",
            "description": "Austin is much warmer than the other cities",
            "confidence": 0.9,
            "supportingData": {"evidence": "Austin temp 38 vs median 21", "statistics": {"median": 21}},
        },
        {
            "type": "pattern",
            "description": "Northern cities cluster around 15 degrees",
            "confidence": 0.7,
            "supportingData": {"evidence": "Oslo 12, Berlin 16", "statistics": "range 12-16"},
        },
    ],
}

STORY_REPLY = {
    "narrative": "Temperatures vary widely, with Austin standing out.",
    "keyPoints": ["Austin outlier"],
    "conclusion": "Regional climate drives most of the spread.",
}


def reply(payload: Any) -> str:
    return json.dumps(payload)


class ScriptedLLM:
    """
    LLMProvider double. `routes` maps a system-prompt marker to a reply:
    a string, an exception instance (raised), a list (consumed in order,
    last entry repeats), or a callable(system, messages) returning any of
    those.
    """

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes = dict(routes or {})
        self.calls: list[dict[str, Any]] = []

    def calls_for(self, marker: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if marker in (c["system"] or "")]

    async def complete(self, messages, system=None, temperature=None, max_tokens=None):
        self.calls.append({"system": system, "messages": messages})
        for marker, outcome in self.routes.items():
            if marker not in (system or ""):
                continue
            if isinstance(outcome, list):
                outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
            if callable(outcome) and not isinstance(outcome, Exception):
                outcome = outcome(system, messages)
            if isinstance(outcome, Exception):
                raise outcome
            return LLMResponse(content=outcome, model="fake", input_tokens=0, output_tokens=0)
        raise AssertionError(f"unexpected model call: {(system or '')[:60]!r}")


def happy_routes() -> dict[str, Any]:
    return {
        PROFILER: reply(PROFILE_REPLY),
        DETECTIVE: reply(DETECTIVE_REPLY),
        STORYTELLER: reply(STORY_REPLY),
        ANSWER: "Austin is the warmest city at 38 degrees.",
        EVALUATION: reply({"needsReanalysis": False, "reason": "answer is supported"}),
        SYNTHESIS: reply({
            "profilerPrompt": "Focus on temperature ranges",
            "detectivePrompt": "Compare cities by temperature",
            "storytellerPrompt": "Explain the warmest city",
        }),
    }


def five_rows() -> list[dict[str, Any]]:
    return [
        {"name": "Oslo", "temp": 12},
        {"name": "Berlin", "temp": 16},
        {"name": "Madrid", "temp": 24},
        {"name": "Austin", "temp": 38},
        {"name": "Lima", "temp": 21},
    ]


@pytest.fixture
def store() -> SessionStore:
    return SessionStore(InMemorySessionBackend(), key_prefix="test:", ttl_seconds=60)


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM(happy_routes())


@pytest.fixture
def make_invoker() -> Callable[[ScriptedLLM], ModelInvoker]:
    def build(provider: ScriptedLLM) -> ModelInvoker:
        return ModelInvoker(provider, RetryPolicy(max_attempts=3, base_delay=0.0))
    return build


@pytest.fixture
def invoker(llm, make_invoker) -> ModelInvoker:
    return make_invoker(llm)


@pytest.fixture
def pipeline(invoker, store) -> AnalysisPipeline:
    return AnalysisPipeline(invoker, store)
