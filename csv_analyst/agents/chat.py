# =============================================================================
# Chat / Refinement Service - Answer, Evaluate, Reanalyse Once
# =============================================================================
#
# Answers follow-up questions about a session's analysis. Instead of a
# single generate call, the service:
#
# 1. ANSWER    - from the stored analysis, a summary of the original data
#                and the recent conversation
# 2. EVALUATE  - LLM judges the answer on four axes: does it address the
#                question directly, is it supported by the analysis, is it
#                complete, would more analysis add value
# 3. REFINE    - if judged inadequate: synthesise one instruction per stage
#                (template fallback), re-run the pipeline over the SAME
#                originalData, and answer again from the new analysis
#
# The refine step runs at most once per question.
#
# DESIGN DECISION: Evaluation failures degrade to "no reanalysis".
# A broken judge should never block an answer the user can already have.
# Prompt-synthesis failures degrade to template instructions built from
# the question. Failing to produce any answer at all is terminal.
#
# DESIGN DECISION: Reanalysis failures propagate.
# By then the pipeline has published an error status; returning the
# unrefined answer would hide that the stored state did not change.
# =============================================================================

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Sequence

from pydantic import Field

from csv_analyst.agents.base import to_prompt_json
from csv_analyst.agents.context import analysis_context, conversation_window, dataset_view
from csv_analyst.agents.orchestrator import AnalysisPipeline
from csv_analyst.errors import InputError, StateError, ValidationError
from csv_analyst.models.domain import (
    AnalysisResult,
    AnswerEvaluation,
    CamelModel,
    ConversationMessage,
    MessageRole,
    StagePrompts,
)
from csv_analyst.services.llm import ModelInvoker
from csv_analyst.services.session_store import SessionStore, validate_session_id

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_ANSWER_SYSTEM = """You are a professional data analyst answering questions \
about a data analysis report.

Guidelines:
- Provide clear, concise answers based on the available analysis
- Use a professional, objective tone
- If the question cannot be answered from the available data, say so
- Focus on factual information from the analysis
- Avoid speculation beyond what the data shows
- Use precise, technical language where appropriate
- Answer in plain text without markdown"""

_EVALUATION_SYSTEM = """You are a quality control expert evaluating the \
adequacy of an answer to a data analysis question.

Consider:
1. Does the answer directly address the question?
2. Is the answer supported by the analysis data?
3. Are there gaps in the analysis that prevent a complete answer?
4. Would additional analysis provide more valuable insights?

If reanalysis is needed, identify specific areas of focus for it.

Respond with ONLY a valid JSON object (no markdown, no explanation):
{
  "needsReanalysis": true or false,
  "reason": "why reanalysis is or is not needed",
  "focusAreas": ["specific areas to focus on in reanalysis"]
}"""

_SYNTHESIS_SYSTEM = """You are an expert in data analysis and prompt \
engineering. Write one focused instruction for each agent of the analysis \
pipeline so that a rerun better answers the question.

The agents:
- profiler: dataset profiling and statistics
- detective: pattern discovery and insights
- storyteller: narrative synthesis

You MUST respond with ONLY a valid JSON object in this exact format:
{
  "profilerPrompt": "string",
  "detectivePrompt": "string",
  "storytellerPrompt": "string"
}"""


def template_prompts(question: str) -> StagePrompts:
    return StagePrompts(
        profiler_prompt=(
            "Analyze the dataset structure and statistics, focusing on "
            f"aspects relevant to: {question}"
        ),
        detective_prompt=(
            "Investigate patterns and relationships in the data that could "
            f"help answer: {question}"
        ),
        storyteller_prompt=(
            "Create a narrative that synthesizes the analysis findings to "
            f"address: {question}"
        ),
    )


class _SynthesisedPrompts(CamelModel):
    profiler_prompt: str = Field(min_length=1)
    detective_prompt: str = Field(min_length=1)
    storyteller_prompt: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ChatAnswer:
    answer: str
    reanalyzed: bool
    evaluation: AnswerEvaluation


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ChatRefinementService:
    def __init__(
        self,
        invoker: ModelInvoker,
        store: SessionStore,
        pipeline: AnalysisPipeline,
        *,
        history_window: int | None = None,
    ) -> None:
        self.invoker = invoker
        self.store = store
        self.pipeline = pipeline
        self.history_window = history_window

    async def answer_question(self, session_id: str, question: str) -> ChatAnswer:
        validate_session_id(session_id)
        question = (question or "").strip()
        if not question:
            raise InputError("Question is required")

        state = await self.store.get_analysis_state(session_id)
        if state is None:
            raise StateError("No analysis available. Please run an analysis first.")

        history = await self.store.append_message(
            session_id, ConversationMessage(role=MessageRole.USER, content=question),
        )
        # Window over the history BEFORE this question
        recent = conversation_window(history[:-1], self.history_window).messages

        answer = await self._generate_answer(state, state.original_data, question, recent)
        evaluation = await self._evaluate(question, answer)

        reanalyzed = False
        if evaluation.needs_reanalysis:
            logger.info(
                "Answer needs reanalysis: %s (focus: %s)",
                evaluation.reason, evaluation.focus_areas,
            )
            prompts = await self._synthesise_prompts(question, evaluation)
            result = await self.pipeline.run(
                state.original_data, session_id, prompts, conversation=recent,
            )
            answer = await self._generate_answer(result, state.original_data, question, recent)
            reanalyzed = True
            logger.info("Targeted reanalysis completed for %s", session_id)

        answer = sanitize_text(answer)
        if not answer:
            raise ValidationError("The model produced an empty answer")

        await self.store.append_message(
            session_id, ConversationMessage(role=MessageRole.ASSISTANT, content=answer),
        )
        return ChatAnswer(answer=answer, reanalyzed=reanalyzed, evaluation=evaluation)

    # --- Steps -------------------------------------------------------------

    async def _generate_answer(
        self,
        analysis: AnalysisResult,
        records: Sequence[dict[str, Any]],
        question: str,
        recent: list[ConversationMessage],
    ) -> str:
        parts = [
            f"Context of the analysis:\n{to_prompt_json(analysis_context(analysis, 'all'))}",
            f"Original data:\n{to_prompt_json(dataset_view(records, 'summary'))}",
        ]
        if recent:
            parts.append(
                "Recent conversation:\n"
                + "\n".join(f"{m.role.value}: {m.content}" for m in recent)
            )
        parts.append(f"Question: {question}")

        return await self.invoker.invoke(
            _ANSWER_SYSTEM, "\n\n".join(parts), label="Chat answer",
        )

    async def _evaluate(self, question: str, answer: str) -> AnswerEvaluation:
        try:
            return await self.invoker.invoke(
                _EVALUATION_SYSTEM,
                f"Question: {question}\nAnswer: {answer}\n\n"
                "Evaluate whether this answer needs reanalysis with a different approach.",
                AnswerEvaluation,
                label="Answer evaluation",
            )
        except Exception as e:
            logger.warning(
                "Answer evaluation failed: %s. Treating as no reanalysis needed.", e,
            )
            return AnswerEvaluation(needs_reanalysis=False, reason="evaluation unavailable")

    async def _synthesise_prompts(
        self,
        question: str,
        evaluation: AnswerEvaluation,
    ) -> StagePrompts:
        try:
            prompts = await self.invoker.invoke(
                _SYNTHESIS_SYSTEM,
                f"Question: {question}\nEvaluation: {to_prompt_json(evaluation)}\n\n"
                "Generate improved instructions for each agent.",
                _SynthesisedPrompts,
                label="Prompt synthesis",
            )
        except Exception as e:
            logger.warning("Prompt synthesis failed: %s. Using template prompts.", e)
            return template_prompts(question)

        return StagePrompts(
            profiler_prompt=prompts.profiler_prompt,
            detective_prompt=prompts.detective_prompt,
            storyteller_prompt=prompts.storyteller_prompt,
        )


# ---------------------------------------------------------------------------
# Text Sanitisation
# ---------------------------------------------------------------------------

_MARKDOWN_CHARS = re.compile(r"[#*_`]")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_BLANK_LINES = re.compile(r"\n\s*\n")


def sanitize_text(text: str) -> str:
    """Strip markdown markers and normalise blank lines."""
    text = _MARKDOWN_CHARS.sub("", text)
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    text = text.strip()
    return _BLANK_LINES.sub("\n\n", text)
