# =============================================================================
# Context Views - Typed Payloads for Prompt Assembly
# =============================================================================
#
# Agents that answer questions need slices of the session: a section of
# the analysis, a view of the dataset, recent conversation. Each slice is
# built as a typed model (models/domain.py) and rendered to JSON for the
# prompt.
#
#   analysis_context(state, section)   section ∈ profile|insights|narrative|all
#   dataset_view(records, format)      format  ∈ full|sample|summary
#   conversation_window(history, ...)  last `count` messages, role filter
# =============================================================================

from __future__ import annotations

from typing import Any, Literal, Sequence

from csv_analyst.config import settings
from csv_analyst.errors import InputError
from csv_analyst.models.domain import (
    AnalysisContextView,
    AnalysisResult,
    CompleteAnalysisSection,
    ConversationMessage,
    ConversationWindow,
    DatasetSummary,
    DatasetView,
    FullDataset,
    InsightsSection,
    NarrativeSection,
    ProfileSection,
    SampleDataset,
)

_SAMPLE_ROWS = 10
_SUMMARY_ROWS = 3


def analysis_context(
    result: AnalysisResult,
    section: Literal["profile", "insights", "narrative", "all"],
) -> AnalysisContextView:
    if section == "profile":
        return ProfileSection(profile=result.profile)
    if section == "insights":
        return InsightsSection(insights=result.insights, count=len(result.insights))
    if section == "narrative":
        return NarrativeSection(narrative=result.narrative)
    if section == "all":
        return CompleteAnalysisSection(
            complete_analysis=AnalysisResult(
                profile=result.profile,
                insights=result.insights,
                narrative=result.narrative,
                additional_contexts=result.additional_contexts,
            ),
        )
    raise InputError(f"Invalid section: {section}")


def dataset_view(
    records: Sequence[dict[str, Any]],
    format: Literal["full", "sample", "summary"],
) -> DatasetView:
    if format == "full":
        return FullDataset(data=list(records), count=len(records))
    if format == "sample":
        return SampleDataset(data=list(records[:_SAMPLE_ROWS]), total_count=len(records))
    if format == "summary":
        return DatasetSummary(
            columns=list(records[0].keys()) if records else [],
            row_count=len(records),
            sample_data=list(records[:_SUMMARY_ROWS]),
        )
    raise InputError(f"Invalid format: {format}")


def conversation_window(
    history: Sequence[ConversationMessage],
    count: int | None = None,
    message_type: Literal["all", "user", "assistant"] = "all",
) -> ConversationWindow:
    count = count or settings.chat_history_window
    filtered = [
        m for m in history
        if message_type == "all" or m.role.value == message_type
    ]
    recent = filtered[-count:] if count > 0 else []
    return ConversationWindow(
        messages=recent,
        total_count=len(history),
        retrieved_count=len(recent),
        filter=message_type,
    )

