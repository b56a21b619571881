# =============================================================================
# Unit Tests - Chat / Refinement Service
# =============================================================================

from __future__ import annotations

import asyncio

import pytest

from conftest import (
    ANSWER,
    DETECTIVE,
    EVALUATION,
    PROFILER,
    SESSION_ID,
    STORYTELLER,
    SYNTHESIS,
    ScriptedLLM,
    five_rows,
    happy_routes,
    reply,
)
from csv_analyst.agents.chat import ChatRefinementService, sanitize_text, template_prompts
from csv_analyst.agents.orchestrator import AnalysisPipeline
from csv_analyst.errors import InputError, SessionFormatError, StateError, UpstreamError, UpstreamErrorKind
from csv_analyst.models.domain import MessageRole


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _service(llm: ScriptedLLM, store, make_invoker) -> ChatRefinementService:
    invoker = make_invoker(llm)
    return ChatRefinementService(invoker, store, AnalysisPipeline(invoker, store))


def _analysed(llm: ScriptedLLM, store, make_invoker) -> ChatRefinementService:
    service = _service(llm, store, make_invoker)
    _run(service.pipeline.run(five_rows(), SESSION_ID))
    llm.calls.clear()
    return service


NEEDS_REANALYSIS = reply({
    "needsReanalysis": True,
    "reason": "answer lacks a city comparison",
    "focusAreas": ["city comparison"],
})


class TestAnswerQuestion:
    def test_adequate_answer_no_reanalysis(self, llm, store, make_invoker):
        service = _analysed(llm, store, make_invoker)

        result = _run(service.answer_question(SESSION_ID, "Which city is warmest?"))

        assert result.answer == "Austin is the warmest city at 38 degrees."
        assert result.reanalyzed is False
        assert llm.calls_for(PROFILER) == []
        history = _run(store.get_conversation_history(SESSION_ID))
        assert [m.role for m in history] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert history[0].content == "Which city is warmest?"
        assert history[1].content == result.answer

    def test_no_analysis_is_state_error_without_model_call(self, llm, store, make_invoker):
        service = _service(llm, store, make_invoker)
        with pytest.raises(StateError):
            _run(service.answer_question(SESSION_ID, "Anything?"))
        assert llm.calls == []
        assert _run(store.get_conversation_history(SESSION_ID)) == []

    def test_blank_question_rejected(self, llm, store, make_invoker):
        service = _analysed(llm, store, make_invoker)
        with pytest.raises(InputError, match="Question is required"):
            _run(service.answer_question(SESSION_ID, "   "))

    def test_malformed_session_rejected(self, llm, store, make_invoker):
        service = _service(llm, store, make_invoker)
        with pytest.raises(SessionFormatError):
            _run(service.answer_question("not-a-uuid", "Why?"))
        assert llm.calls == []

    def test_evaluator_failure_returns_initial_answer(self, store, make_invoker):
        routes = happy_routes()
        routes[EVALUATION] = UpstreamError("judge down", UpstreamErrorKind.RATE_LIMITED)
        llm = ScriptedLLM(routes)
        service = _analysed(llm, store, make_invoker)

        result = _run(service.answer_question(SESSION_ID, "Which city is warmest?"))

        assert result.reanalyzed is False
        assert result.evaluation.needs_reanalysis is False
        assert result.answer == "Austin is the warmest city at 38 degrees."
        assert llm.calls_for(PROFILER) == []

    def test_evaluator_garbage_returns_initial_answer(self, store, make_invoker):
        routes = happy_routes()
        routes[EVALUATION] = "Looks fine to me."
        llm = ScriptedLLM(routes)
        service = _analysed(llm, store, make_invoker)
        assert _run(service.answer_question(SESSION_ID, "Why?")).reanalyzed is False

    def test_answer_is_sanitised(self, store, make_invoker):
        routes = happy_routes()
        routes[ANSWER] = "## Answer\n\n\n\n**Austin** is the `warmest`."
        service = _analysed(ScriptedLLM(routes), store, make_invoker)
        result = _run(service.answer_question(SESSION_ID, "Which?"))
        assert result.answer == "Answer\n\nAustin is the warmest."

    def test_recent_conversation_in_answer_prompt(self, llm, store, make_invoker):
        service = _analysed(llm, store, make_invoker)
        _run(service.answer_question(SESSION_ID, "First question"))
        _run(service.answer_question(SESSION_ID, "Second question"))
        content = llm.calls_for(ANSWER)[-1]["messages"][-1]["content"]
        assert "user: First question" in content
        assert content.endswith("Question: Second question")

    def test_answer_prompt_carries_analysis_and_data_summary(self, llm, store, make_invoker):
        service = _analysed(llm, store, make_invoker)
        _run(service.answer_question(SESSION_ID, "Which city is warmest?"))
        content = llm.calls_for(ANSWER)[0]["messages"][-1]["content"]
        assert '"section": "all"' in content
        assert "Austin is much warmer than the other cities" in content
        assert '"format": "summary"' in content
        assert '"rowCount": 5' in content
        assert '"name": "Oslo"' in content


class TestReanalysis:
    def test_reanalysis_runs_once_and_preserves_original_data(self, store, make_invoker):
        routes = happy_routes()
        routes[EVALUATION] = NEEDS_REANALYSIS
        routes[ANSWER] = ["Not sure.", "Austin, by 14 degrees over the median."]
        llm = ScriptedLLM(routes)
        service = _analysed(llm, store, make_invoker)
        before = _run(store.get_analysis_state(SESSION_ID))

        result = _run(service.answer_question(SESSION_ID, "Compare the cities"))

        assert result.reanalyzed is True
        assert result.answer == "Austin, by 14 degrees over the median."
        # One evaluation, one pipeline rerun
        assert len(llm.calls_for(EVALUATION)) == 1
        assert len(llm.calls_for(PROFILER)) == 1
        assert len(llm.calls_for(DETECTIVE)) == 1

        after = _run(store.get_analysis_state(SESSION_ID))
        assert after.original_data == before.original_data == five_rows()

    def test_synthesised_prompts_reach_stages(self, store, make_invoker):
        routes = happy_routes()
        routes[EVALUATION] = NEEDS_REANALYSIS
        llm = ScriptedLLM(routes)
        service = _analysed(llm, store, make_invoker)

        _run(service.answer_question(SESSION_ID, "Compare the cities"))

        assert llm.calls_for(PROFILER)[0]["system"].endswith("Focus on temperature ranges")
        assert llm.calls_for(STORYTELLER)[0]["system"].endswith("Explain the warmest city")

    def test_synthesis_failure_uses_templates(self, store, make_invoker):
        routes = happy_routes()
        routes[EVALUATION] = NEEDS_REANALYSIS
        routes[SYNTHESIS] = "no json here"
        llm = ScriptedLLM(routes)
        service = _analysed(llm, store, make_invoker)

        result = _run(service.answer_question(SESSION_ID, "Compare the cities"))

        assert result.reanalyzed is True
        expected = template_prompts("Compare the cities").detective_prompt
        assert llm.calls_for(DETECTIVE)[0]["system"].endswith(expected)

    def test_reanalysis_failure_propagates(self, store, make_invoker):
        routes = happy_routes()
        routes[EVALUATION] = NEEDS_REANALYSIS
        llm = ScriptedLLM(routes)
        service = _analysed(llm, store, make_invoker)
        before = _run(store.get_analysis_state(SESSION_ID))
        llm.routes[STORYTELLER] = UpstreamError("quota", UpstreamErrorKind.QUOTA_EXCEEDED)

        with pytest.raises(UpstreamError):
            _run(service.answer_question(SESSION_ID, "Compare the cities"))

        assert _run(store.get_analysis_state(SESSION_ID)) == before
        history = _run(store.get_conversation_history(SESSION_ID))
        assert [m.role for m in history] == [MessageRole.USER]


class TestSanitizeText:
    def test_strips_markdown(self):
        assert sanitize_text("**bold** _it_ `code` # head") == "bold it code  head"

    def test_collapses_blank_lines(self):
        assert sanitize_text("a\n\n\n\nb\n  \nc") == "a\n\nb\n\nc"

    def test_trims(self):
        assert sanitize_text("  \n text \n ") == "text"
