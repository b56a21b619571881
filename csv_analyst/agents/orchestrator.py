# =============================================================================
# LangGraph Orchestrator - Analysis Pipeline Assembly
# =============================================================================
#
# Wires the four stage agents into a LangGraph StateGraph and wraps every
# stage in status publication:
#
#   START ──▶ profile ──▶ detect ──▶ narrate ──▶ contextualise ──▶ END
#
# Around each node: starting → running → completed | error, written to the
# session store so the SSE endpoint can stream progress. The pipeline as a
# whole reports under AgentName.PIPELINE.
#
# FAILURE SEMANTICS:
#   - profile / detect / narrate are required: the first error propagates.
#     Before it does, the pipeline publishes an `error` status naming the
#     pipeline (a store failure at that point is logged, not raised).
#   - contextualise is optional: its error is published for the stage and
#     the run continues with zero additional contexts.
#
# DESIGN DECISION: Linear graph, compiled once per AnalysisPipeline.
# Stages never overlap; concurrency lives INSIDE the Profiler and the
# Detective (window fan-out), not between graph nodes.
#
# DESIGN DECISION: Nothing per-user lives on the pipeline object.
# Session id, records, prompt overrides and the status publisher travel in
# the graph state, so one pipeline serves every session.
# =============================================================================

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from csv_analyst.agents.additional_context import AdditionalContextAgent
from csv_analyst.agents.detective import DetectiveAgent
from csv_analyst.agents.profiler import ProfilerAgent
from csv_analyst.agents.storyteller import StorytellerAgent
from csv_analyst.errors import AnalysisError
from csv_analyst.models.domain import (
    AdditionalContext,
    AgentName,
    AnalysisResult,
    ConversationMessage,
    DatasetProfile,
    Insight,
    StagePrompts,
    StageStatus,
)
from csv_analyst.services.context_lookup import ContextLookup, get_context_lookup
from csv_analyst.services.llm import ModelInvoker
from csv_analyst.services.session_store import (
    SessionStore,
    get_session_store,
    validate_session_id,
)
from csv_analyst.services.status import StatusPublisher

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Pipeline State Schema
# ---------------------------------------------------------------------------


class PipelineState(TypedDict, total=False):
    """
    State flowing through the graph. total=False so nodes return only the
    keys they produce.

    NOTE: `publisher` is not JSON-serialisable. Safe as long as no
    checkpointer is configured on the graph (current: none).
    """

    # --- Input ---
    records: list[dict[str, Any]]
    prompts: StagePrompts
    conversation: list[ConversationMessage]
    publisher: StatusPublisher

    # --- Stage outputs ---
    profile: DatasetProfile
    insights: list[Insight]
    narrative: str
    additional_contexts: list[AdditionalContext]


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class AnalysisPipeline:
    """run(records, session_id, prompt_overrides?) → AnalysisResult"""

    def __init__(
        self,
        invoker: ModelInvoker | None = None,
        store: SessionStore | None = None,
        lookup: ContextLookup | None = None,
        *,
        profiler: ProfilerAgent | None = None,
        detective: DetectiveAgent | None = None,
        storyteller: StorytellerAgent | None = None,
        additional_context: AdditionalContextAgent | None = None,
    ) -> None:
        invoker = invoker or ModelInvoker()
        self.store = store or get_session_store()
        self.profiler = profiler or ProfilerAgent(invoker)
        self.detective = detective or DetectiveAgent(invoker)
        self.storyteller = storyteller or StorytellerAgent(invoker)
        self.additional_context = additional_context or AdditionalContextAgent(
            invoker, lookup,
        )
        self.graph = self._build_graph()

    # --- Graph -------------------------------------------------------------

    def _build_graph(self):
        builder = StateGraph(PipelineState)
        builder.add_node("profile", self._profile_node)
        builder.add_node("detect", self._detect_node)
        builder.add_node("narrate", self._narrate_node)
        builder.add_node("contextualise", self._contextualise_node)

        builder.add_edge(START, "profile")
        builder.add_edge("profile", "detect")
        builder.add_edge("detect", "narrate")
        builder.add_edge("narrate", "contextualise")
        builder.add_edge("contextualise", END)
        return builder.compile()

    async def _profile_node(self, state: PipelineState) -> dict:
        prompts = state.get("prompts") or StagePrompts()
        profile = await _run_stage(
            state["publisher"],
            AgentName.PROFILER,
            lambda: self.profiler.analyze(state["records"], prompts.profiler_prompt),
            done=lambda p: f"Profiled {p.row_count} rows across {len(p.columns)} columns",
        )
        return {"profile": profile}

    async def _detect_node(self, state: PipelineState) -> dict:
        prompts = state.get("prompts") or StagePrompts()
        insights = await _run_stage(
            state["publisher"],
            AgentName.DETECTIVE,
            lambda: self.detective.analyze(
                state["records"], state.get("profile"), prompts.detective_prompt,
            ),
            done=lambda i: f"Found {len(i)} insights",
        )
        return {"insights": insights}

    async def _narrate_node(self, state: PipelineState) -> dict:
        prompts = state.get("prompts") or StagePrompts()
        narrative = await _run_stage(
            state["publisher"],
            AgentName.STORYTELLER,
            lambda: self.storyteller.analyze(
                state.get("profile"),
                state.get("insights") or [],
                prompts.storyteller_prompt,
                conversation=state.get("conversation"),
            ),
            done=lambda n: "Narrative generated",
        )
        return {"narrative": narrative}

    async def _contextualise_node(self, state: PipelineState) -> dict:
        try:
            contexts = await _run_stage(
                state["publisher"],
                AgentName.ADDITIONAL_CONTEXT,
                lambda: self.additional_context.analyze(
                    state["profile"], state.get("insights") or [],
                    records=state["records"],
                ),
                done=lambda c: f"Found {len(c)} related events",
            )
        except Exception as e:
            logger.warning("Additional context skipped: %s", _message(e))
            contexts = []
        return {"additional_contexts": contexts}

    # --- Public API --------------------------------------------------------

    async def run(
        self,
        records: Sequence[dict[str, Any]],
        session_id: str,
        prompt_overrides: StagePrompts | None = None,
        *,
        conversation: Sequence[ConversationMessage] | None = None,
    ) -> AnalysisResult:
        """
        Run every stage in order, persist the result, and return it.

        The stored AnalysisState is replaced only after all required
        stages succeed. A failed run leaves the previous state untouched.
        """
        validate_session_id(session_id)
        records = list(records)
        publisher = StatusPublisher(self.store, session_id)
        started = time.perf_counter()

        logger.info(
            "Starting analysis pipeline: session=%s, rows=%d, overrides=%s",
            session_id, len(records), prompt_overrides is not None,
        )

        try:
            await publisher.reset()
            await publisher.publish(AgentName.PIPELINE, StageStatus.STARTING, "Starting analysis")
            await publisher.publish(AgentName.PIPELINE, StageStatus.RUNNING, "Running analysis stages")

            initial: PipelineState = {
                "records": records,
                "prompts": prompt_overrides or StagePrompts(),
                "conversation": list(conversation or []),
                "publisher": publisher,
            }
            final = await self.graph.ainvoke(initial)

            result = AnalysisResult(
                profile=final["profile"],
                insights=final["insights"],
                narrative=final["narrative"],
                additional_contexts=final.get("additional_contexts") or [],
            )
            await self.store.save_analysis_state(session_id, result, records)
        except Exception as exc:
            await _publish_pipeline_error(publisher, exc)
            raise

        await publisher.publish(AgentName.PIPELINE, StageStatus.COMPLETED, "Analysis completed")
        logger.info(
            "Analysis pipeline complete: session=%s, insights=%d, contexts=%d (%.2fs)",
            session_id, len(result.insights), len(result.additional_contexts),
            time.perf_counter() - started,
        )
        return result


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


async def _run_stage(
    publisher: StatusPublisher,
    agent: AgentName,
    call: Callable[[], Awaitable[T]],
    done: Callable[[T], str],
) -> T:
    """starting → running → completed | error around one stage call."""
    await publisher.publish(agent, StageStatus.STARTING, f"{agent.value} starting")
    await publisher.publish(agent, StageStatus.RUNNING, f"{agent.value} running")
    started = time.perf_counter()
    try:
        value = await call()
    except Exception as exc:
        logger.error("%s failed: %s", agent.value, _message(exc))
        try:
            await publisher.publish(agent, StageStatus.ERROR, _message(exc))
        except AnalysisError as status_exc:
            logger.warning("Could not publish %s error status: %s", agent.value, status_exc)
        raise
    await publisher.publish(agent, StageStatus.COMPLETED, done(value))
    logger.info("%s completed in %.2fs", agent.value, time.perf_counter() - started)
    return value


async def _publish_pipeline_error(publisher: StatusPublisher, exc: Exception) -> None:
    if publisher.current(AgentName.PIPELINE) not in (StageStatus.STARTING, StageStatus.RUNNING):
        return
    try:
        await publisher.publish(AgentName.PIPELINE, StageStatus.ERROR, _message(exc))
    except Exception as status_exc:
        logger.warning("Could not publish pipeline error status: %s", status_exc)


def _message(exc: BaseException) -> str:
    return exc.message if isinstance(exc, AnalysisError) else str(exc) or type(exc).__name__


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_pipeline: AnalysisPipeline | None = None


def get_analysis_pipeline() -> AnalysisPipeline:
    """Lazy process-wide pipeline (stateless between runs)."""
    global _pipeline
    if _pipeline is None:
        _pipeline = AnalysisPipeline(lookup=get_context_lookup())
    return _pipeline
