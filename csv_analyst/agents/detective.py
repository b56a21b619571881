# =============================================================================
# Detective Agent - Insight Discovery
# =============================================================================
#
# Finds correlations, trends, anomalies and patterns, given the profile and
# a sample of the records.
#
# PIPELINE (per window):
# 1. Sample the window to sample_size rows. Time-ordered data (first row
#    has a date-like string) is sampled systematically to keep the cadence;
#    everything else is stratified.
# 2. Send profile + sample + sampling metadata (totalRows, sampledRows,
#    samplingMethod) so the model doesn't read sampling gaps as data gaps.
# 3. Parse {"insights": [...]} and keep each entry that validates as an
#    Insight. Invalid entries are dropped one by one.
#
# WINDOWING: above detective_chunk_threshold rows, records are split into
# non-overlapping windows sized by a tiktoken budget, analysed
# concurrently, and merged (see merge_insights).
#
# RESILIENCE POLICY: a window whose reply is not parseable contributes
# nothing. If no window yields a valid insight, the stage returns one
# default insight describing the dataset size. UpstreamError is NOT
# covered by this policy and propagates.
# =============================================================================

from __future__ import annotations

import json
import logging
import math
import time
from typing import Any, Sequence

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from csv_analyst.agents.base import StageAgent, run_windows, to_prompt_json
from csv_analyst.config import settings
from csv_analyst.errors import InputError, ValidationError
from csv_analyst.models.domain import (
    AgentName,
    CamelModel,
    DatasetProfile,
    Insight,
    InsightType,
    SupportingData,
)
from csv_analyst.services.chunker import partition_records, rows_for_token_budget
from csv_analyst.services.sampler import looks_time_ordered, sample

logger = logging.getLogger(__name__)

DETECTIVE_INSTRUCTIONS = """You are a data detective. Analyze the dataset \
profile and sample data to generate meaningful insights.

You MUST respond with ONLY a valid JSON object in this exact format:
{
  "insights": [
    {
      "type": "correlation" | "trend" | "anomaly" | "pattern",
      "description": "string",
      "confidence": number between 0 and 1,
      "supportingData": {
        "evidence": "specific data points or patterns",
        "statistics": "relevant numbers from the profile, as text"
      }
    }
  ]
}

Guidelines:
1. Use the profile statistics to identify significant patterns
2. Look for correlations between columns based on their types and distributions
3. Identify anomalies by comparing data points to profile statistics
4. Include specific evidence from the sample for every insight
5. Provide between 4 and 7 insights, each actionable and backed by data

The rows you see are a SAMPLE. Check the sampling information before \
inferring gaps: with systematic sampling, missing dates between sampled \
rows are expected."""


class DetectiveOutput(CamelModel):
    """Loose envelope: entries are validated one at a time afterwards."""

    insights: list[Any] = Field(default_factory=list)


class DetectiveAgent(StageAgent):
    name = AgentName.DETECTIVE
    instructions = DETECTIVE_INSTRUCTIONS

    async def analyze(
        self,
        records: Sequence[dict[str, Any]],
        profile: DatasetProfile | None,
        custom_prompt: str | None = None,
    ) -> list[Insight]:
        if not records:
            raise InputError("Empty dataset provided")
        if profile is None:
            raise InputError("Dataset profile is required")

        started = time.perf_counter()
        windows, sample_rows = self.plan_windows(records)

        if len(windows) == 1:
            batches = [
                await self._investigate(windows[0], profile, sample_rows, custom_prompt)
            ]
        else:
            logger.info(
                "Investigating %d rows in %d windows (%d sampled rows each)",
                len(records), len(windows), sample_rows,
            )
            batches = await run_windows(
                self._investigate(w, profile, sample_rows, custom_prompt)
                for w in windows
            )

        insights = merge_insights(batches)
        if not insights:
            logger.warning(
                "No valid insights from %d window(s); using default insight",
                len(windows),
            )
            insights = [default_insight(len(records), len(profile.columns))]

        logger.info(
            "Detective complete: %d insights (%.2fs)",
            len(insights), time.perf_counter() - started,
        )
        return insights

    def plan_windows(
        self,
        records: Sequence[dict[str, Any]],
    ) -> tuple[list[list[dict[str, Any]]], int]:
        """
        Split records into windows and pick the per-window sample size.

        Below detective_chunk_threshold: one window, sample_size rows.
        Above it: the token budget gives how many rows fit one prompt.
        Windows are min(detective_window_rows, budget rows), grown so
        there are at most max_parallel_windows of them. Each window is
        sampled to min(sample_size, budget rows).
        """
        if len(records) <= settings.detective_chunk_threshold:
            return [list(records)], settings.sample_size

        budget_rows = rows_for_token_budget(records, settings.detective_token_budget)
        size = max(
            min(settings.detective_window_rows, budget_rows),
            math.ceil(len(records) / settings.max_parallel_windows),
        )
        return partition_records(records, size), min(settings.sample_size, budget_rows)

    async def _investigate(
        self,
        records: Sequence[dict[str, Any]],
        profile: DatasetProfile,
        sample_rows: int,
        custom_prompt: str | None,
    ) -> list[Insight]:
        method = "systematic" if looks_time_ordered(records) else "stratified"
        rows = sample(records, sample_rows, method)
        sampling_info = {
            "totalRows": len(records),
            "sampledRows": len(rows),
            "samplingMethod": method if len(rows) < len(records) else "none",
        }
        user_content = (
            "Please analyze this dataset and provide detailed insights.\n\n"
            f"Dataset profile:\n{to_prompt_json(profile)}\n\n"
            f"Sampling information:\n{json.dumps(sampling_info, indent=2)}\n\n"
            f"Sample rows:\n{to_prompt_json(rows)}"
        )

        try:
            output = await self.invoker.invoke(
                self.system_prompt(custom_prompt),
                user_content,
                DetectiveOutput,
                label=self.label,
            )
        except ValidationError as e:
            logger.warning("Detective window discarded: %s", e.message)
            return []

        return filter_insights(output.insights)


# ---------------------------------------------------------------------------
# Insight Helpers
# ---------------------------------------------------------------------------


def filter_insights(entries: Sequence[Any]) -> list[Insight]:
    """Validate entries one by one; drop (and count) the invalid ones."""
    valid: list[Insight] = []
    dropped = 0
    for entry in entries:
        try:
            valid.append(Insight.model_validate(entry))
        except PydanticValidationError:
            dropped += 1
    if dropped:
        logger.warning("Dropped %d invalid insight(s), kept %d", dropped, len(valid))
    return valid


def merge_insights(batches: Sequence[Sequence[Insight]]) -> list[Insight]:
    """
    Concatenate, de-duplicate by exact description, sort by confidence desc.

    Deterministic for a given SET of batches: duplicates are resolved by a
    canonical order (highest confidence, then serialised content) rather
    than by arrival order, and ties in confidence sort by description.
    """
    by_description: dict[str, Insight] = {}
    for insight in (i for batch in batches for i in batch):
        current = by_description.get(insight.description)
        if current is None or _canonical_key(insight) > _canonical_key(current):
            by_description[insight.description] = insight

    return sorted(
        by_description.values(),
        key=lambda i: (-i.confidence, i.description),
    )


def _canonical_key(insight: Insight) -> tuple[float, str]:
    return insight.confidence, insight.model_dump_json(by_alias=True)


def default_insight(row_count: int, column_count: int) -> Insight:
    return Insight(
        type=InsightType.PATTERN,
        description="Initial analysis of the dataset structure and content",
        confidence=0.8,
        supporting_data=SupportingData(
            evidence=f"Dataset contains {row_count} rows with {column_count} columns",
            statistics=f"rows: {row_count}, columns: {column_count}",
        ),
    )
