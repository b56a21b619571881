# =============================================================================
# Unit Tests - Analysis Pipeline (LangGraph Orchestrator)
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from conftest import (
    ADDITIONAL_CONTEXT,
    DETECTIVE,
    PROFILER,
    SESSION_ID,
    STORYTELLER,
    ScriptedLLM,
    five_rows,
    happy_routes,
    reply,
)
from csv_analyst.agents.additional_context import AdditionalContextAgent
from csv_analyst.agents.orchestrator import AnalysisPipeline
from csv_analyst.errors import InputError, SessionFormatError, UpstreamError, UpstreamErrorKind
from csv_analyst.models.domain import AgencyTag, AgentName, StagePrompts, StageStatus
from csv_analyst.services.context_lookup import CandidateEvent, OpenFDALookup
from csv_analyst.services.status import StatusPublisher


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _recording_publisher(published: list[tuple[AgentName, StageStatus]]):
    """Patch StatusPublisher.publish to also record every transition."""
    original = StatusPublisher.publish

    async def publish(self, agent, status, message=""):
        record = await original(self, agent, status, message)
        published.append((agent, status))
        return record

    return patch.object(StatusPublisher, "publish", publish)


class TestPipelineRun:
    def test_five_row_scenario_persists_result(self, pipeline, store):
        result = _run(pipeline.run(five_rows(), SESSION_ID))

        assert result.profile.row_count == 5
        assert len(result.profile.columns) == 2
        assert len(result.insights) >= 1
        assert all(0.0 <= i.confidence <= 1.0 for i in result.insights)
        assert result.narrative
        assert result.additional_contexts == []

        state = _run(store.get_analysis_state(SESSION_ID))
        assert state.result() == result
        assert state.original_data == five_rows()

    def test_stage_order_and_status_sequence(self, pipeline, llm):
        published: list = []
        with _recording_publisher(published):
            _run(pipeline.run(five_rows(), SESSION_ID))

        stage_calls = [
            marker for call in llm.calls
            for marker in (PROFILER, DETECTIVE, STORYTELLER)
            if marker in call["system"]
        ]
        assert stage_calls == [PROFILER, DETECTIVE, STORYTELLER]

        assert published[0] == (AgentName.PIPELINE, StageStatus.STARTING)
        assert published[-1] == (AgentName.PIPELINE, StageStatus.COMPLETED)
        for agent in (AgentName.PROFILER, AgentName.DETECTIVE, AgentName.STORYTELLER):
            assert [s for a, s in published if a == agent] == [
                StageStatus.STARTING, StageStatus.RUNNING, StageStatus.COMPLETED,
            ]

    def test_final_status_is_pipeline_completed(self, pipeline, store):
        _run(pipeline.run(five_rows(), SESSION_ID))
        status = _run(store.get_agent_status(SESSION_ID))
        assert status.agent == AgentName.PIPELINE
        assert status.status == StageStatus.COMPLETED

    def test_prompt_overrides_reach_each_stage(self, pipeline, llm):
        prompts = StagePrompts(
            profiler_prompt="P-extra", detective_prompt="D-extra", storyteller_prompt="S-extra",
        )
        _run(pipeline.run(five_rows(), SESSION_ID, prompts))
        assert llm.calls_for(PROFILER)[0]["system"].endswith("P-extra")
        assert llm.calls_for(DETECTIVE)[0]["system"].endswith("D-extra")
        assert llm.calls_for(STORYTELLER)[0]["system"].endswith("S-extra")

    def test_malformed_session_rejected_before_any_work(self, pipeline, llm):
        with pytest.raises(SessionFormatError):
            _run(pipeline.run(five_rows(), "not-a-uuid"))
        assert llm.calls == []


class TestPipelineFailures:
    def _failing_pipeline(self, store, make_invoker, marker, error):
        routes = happy_routes()
        routes[marker] = error
        llm = ScriptedLLM(routes)
        return AnalysisPipeline(make_invoker(llm), store), llm

    def test_detective_failure_stops_pipeline(self, store, make_invoker):
        pipeline, llm = self._failing_pipeline(
            store, make_invoker, DETECTIVE, UpstreamError("rate", UpstreamErrorKind.RATE_LIMITED),
        )
        with pytest.raises(UpstreamError):
            _run(pipeline.run(five_rows(), SESSION_ID))

        assert llm.calls_for(STORYTELLER) == []
        status = _run(store.get_agent_status(SESSION_ID))
        assert status.agent == AgentName.PIPELINE
        assert status.status == StageStatus.ERROR

    def test_failed_run_keeps_previous_state(self, pipeline, store, make_invoker):
        first = _run(pipeline.run(five_rows(), SESSION_ID))

        failing, _ = self._failing_pipeline(
            store, make_invoker, STORYTELLER, UpstreamError("quota", UpstreamErrorKind.QUOTA_EXCEEDED),
        )
        with pytest.raises(UpstreamError):
            _run(failing.run([{"other": "1"}], SESSION_ID))

        state = _run(store.get_analysis_state(SESSION_ID))
        assert state.result() == first
        assert state.original_data == five_rows()

    def test_empty_dataset_is_input_error(self, pipeline, store, llm):
        with pytest.raises(InputError):
            _run(pipeline.run([], SESSION_ID))
        assert llm.calls == []
        assert _run(store.get_agent_status(SESSION_ID)).status == StageStatus.ERROR

    def test_additional_context_failure_is_not_fatal(self, store, make_invoker):
        routes = happy_routes()
        routes[ADDITIONAL_CONTEXT] = UpstreamError("down", UpstreamErrorKind.TRANSIENT)
        lookup = AsyncMock()
        lookup.search = AsyncMock(return_value=[
            CandidateEvent(source=AgencyTag.FDA, date="2024-01-01", title="Recall"),
        ])
        pipeline = AnalysisPipeline(make_invoker(ScriptedLLM(routes)), store, lookup)

        result = _run(pipeline.run(five_rows(), SESSION_ID))

        assert result.additional_contexts == []
        assert _run(store.get_analysis_state(SESSION_ID)) is not None

    def test_additional_contexts_included(self, store, make_invoker):
        routes = happy_routes()
        routes[ADDITIONAL_CONTEXT] = reply({"contexts": [{
            "type": "FDA", "date": "2024-01-01", "event": "Recall",
            "relevanceToData": "matches product",
        }]})
        lookup = AsyncMock()
        lookup.search = AsyncMock(return_value=[
            CandidateEvent(source=AgencyTag.FDA, date="2024-01-01", title="Recall"),
        ])
        pipeline = AnalysisPipeline(make_invoker(ScriptedLLM(routes)), store, lookup)

        result = _run(pipeline.run(five_rows(), SESSION_ID))

        assert [c.event for c in result.additional_contexts] == ["Recall"]
        state = _run(store.get_analysis_state(SESSION_ID))
        assert state.additional_contexts[0].relevance_to_data == "matches product"

    def test_unexpected_lookup_body_degrades_to_no_contexts(self, store, make_invoker):
        lookup = OpenFDALookup(
            "https://api.fda.gov/food/enforcement.json",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[{"x": 1}])),
        )
        llm = ScriptedLLM(happy_routes())
        pipeline = AnalysisPipeline(make_invoker(llm), store, lookup)

        result = _run(pipeline.run(five_rows(), SESSION_ID))

        assert result.additional_contexts == []
        assert llm.calls_for(ADDITIONAL_CONTEXT) == []
        assert _run(store.get_analysis_state(SESSION_ID)).result() == result

    def test_unexpected_stage_exception_is_not_fatal(self, pipeline, store):
        failing = AsyncMock(side_effect=RuntimeError("lookup exploded"))
        with patch.object(AdditionalContextAgent, "analyze", failing):
            result = _run(pipeline.run(five_rows(), SESSION_ID))

        assert result.additional_contexts == []
        assert _run(store.get_analysis_state(SESSION_ID)) is not None
        assert _run(store.get_agent_status(SESSION_ID)).status == StageStatus.COMPLETED
