# =============================================================================
# Profiler Agent - Dataset Structure & Statistics
# =============================================================================
#
# Produces the DatasetProfile every later stage builds on.
#
# Two sources of truth, combined:
#   - Local facts (exact): column names, missing counts, unique counts,
#     a first-guess type. Computed over every row of the window.
#   - Model judgement: semantic column types, a prose summary, anomalies.
#     Computed from a stratified sample of the window.
#
# WINDOWING: datasets above profiler_window_rows are split into fixed-size
# windows, profiled concurrently, then merged:
#   - rowCount      = true total of the dataset
#   - columns       = union by name (first-appearance order),
#                     missingValues summed, uniqueValues max,
#                     type from the first window that saw the column
#   - summary       = first window's summary
#   - anomalies     = union, de-duplicated, first-seen order
#
# Datasets above max_dataset_rows are rejected BEFORE any model call.
# =============================================================================

from __future__ import annotations

import logging
import time
from typing import Any, Sequence

from pydantic import Field, field_validator

from csv_analyst.agents.base import StageAgent, run_windows, to_prompt_json
from csv_analyst.config import settings
from csv_analyst.errors import DatasetTooLargeError, InputError, ValidationError
from csv_analyst.models.domain import (
    AgentName,
    CamelModel,
    ColumnInfo,
    ColumnType,
    DatasetProfile,
    coerce_column_type,
)
from csv_analyst.services.chunker import partition_records
from csv_analyst.services.sampler import parse_date, sample

logger = logging.getLogger(__name__)

_CATEGORICAL_MAX_UNIQUE = 50
_CATEGORICAL_MAX_RATIO = 0.5

PROFILER_INSTRUCTIONS = """You are a data profiling assistant. Analyze the \
provided CSV data and produce a profile of its structure.

You receive exact per-column facts computed over the rows (missing and \
unique counts, a guessed type) plus a sample of the rows. The data may be \
one window of a larger file.

You MUST respond with ONLY a valid JSON object in this exact format:
{
  "columns": [
    {"name": "string", "type": "numeric" | "categorical" | "datetime" | "text" | "other"}
  ],
  "summary": "string describing what the dataset contains",
  "anomalies": ["string"]
}

Guidelines:
- Use the column names exactly as given
- Correct the guessed type when the values say otherwise (e.g. numeric codes \
that are really categories)
- Anomalies: data quality issues worth flagging (heavy missingness, mixed \
formats, implausible values)"""


class _ModelColumn(CamelModel):
    """Only name and type are taken from the model; its counts are ignored."""

    name: str
    type: ColumnType

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        return coerce_column_type(value)


class ProfilerOutput(CamelModel):
    columns: list[_ModelColumn] = Field(default_factory=list)
    summary: str
    anomalies: list[str] | None = None


class ProfilerAgent(StageAgent):
    name = AgentName.PROFILER
    instructions = PROFILER_INSTRUCTIONS

    async def analyze(
        self,
        records: Sequence[dict[str, Any]],
        custom_prompt: str | None = None,
    ) -> DatasetProfile:
        if not records:
            raise InputError("Empty dataset provided")
        if len(records) > settings.max_dataset_rows:
            raise DatasetTooLargeError(
                f"Dataset has {len(records)} rows; the limit is "
                f"{settings.max_dataset_rows}"
            )

        started = time.perf_counter()
        window_rows = settings.profiler_window_rows

        if len(records) <= window_rows:
            profile = await self._profile_window(records, custom_prompt)
        else:
            windows = partition_records(records, window_rows)
            logger.info(
                "Profiling %d rows in %d windows of %d",
                len(records), len(windows), window_rows,
            )
            profiles = await run_windows(
                self._profile_window(w, custom_prompt) for w in windows
            )
            profile = merge_profiles(profiles, total_rows=len(records))

        logger.info(
            "Profile complete: %d rows, %d columns (%.2fs)",
            profile.row_count, len(profile.columns), time.perf_counter() - started,
        )
        return profile

    async def _profile_window(
        self,
        records: Sequence[dict[str, Any]],
        custom_prompt: str | None,
    ) -> DatasetProfile:
        facts = column_facts(records)
        rows = sample(records, settings.sample_size)
        user_content = (
            "Please profile this dataset.\n\n"
            f"Column facts (over all {len(records)} rows):\n"
            f"{to_prompt_json(facts)}\n\n"
            f"Sample ({len(rows)} of {len(records)} rows, stratified):\n"
            f"{to_prompt_json(rows)}"
        )

        output = await self.invoker.invoke(
            self.system_prompt(custom_prompt),
            user_content,
            ProfilerOutput,
            label=self.label,
        )
        if not output.summary.strip():
            raise ValidationError(f"{self.label} returned an empty summary")

        model_types = {c.name: c.type for c in output.columns}
        columns = [
            fact.model_copy(update={"type": model_types.get(fact.name, fact.type)})
            for fact in facts
        ]
        return DatasetProfile(
            columns=columns,
            row_count=len(records),
            summary=output.summary.strip(),
            anomalies=output.anomalies or None,
        )


# ---------------------------------------------------------------------------
# Local Column Facts
# ---------------------------------------------------------------------------


def column_facts(records: Sequence[dict[str, Any]]) -> list[ColumnInfo]:
    """Exact missing / unique counts and a guessed type per column."""
    names: list[str] = []
    for record in records:
        for key in record:
            if key not in names:
                names.append(key)

    facts = []
    for name in names:
        present = [
            record.get(name) for record in records
            if not _is_missing(record.get(name))
        ]
        unique = {str(v) for v in present}
        facts.append(ColumnInfo(
            name=name,
            type=_guess_type(present, len(unique)),
            unique_values=len(unique),
            missing_values=len(records) - len(present),
        ))
    return facts


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    try:
        float(str(value).replace(",", ""))
    except ValueError:
        return False
    return True


def _guess_type(values: list[Any], unique_count: int) -> ColumnType:
    if not values:
        return ColumnType.OTHER
    if all(_is_number(v) for v in values):
        return ColumnType.NUMERIC
    if all(isinstance(v, str) and parse_date(v) is not None for v in values):
        return ColumnType.DATETIME
    if (
        unique_count <= _CATEGORICAL_MAX_UNIQUE
        and unique_count <= len(values) * _CATEGORICAL_MAX_RATIO
    ):
        return ColumnType.CATEGORICAL
    return ColumnType.TEXT


# ---------------------------------------------------------------------------
# Window Merge
# ---------------------------------------------------------------------------


def merge_profiles(profiles: Sequence[DatasetProfile], total_rows: int) -> DatasetProfile:
    if not profiles:
        raise ValueError("merge_profiles needs at least one profile")

    merged: dict[str, ColumnInfo] = {}
    anomalies: list[str] = []

    for profile in profiles:
        for column in profile.columns:
            existing = merged.get(column.name)
            if existing is None:
                merged[column.name] = column
                continue
            merged[column.name] = existing.model_copy(update={
                "missing_values": existing.missing_values + column.missing_values,
                "unique_values": _max_optional(existing.unique_values, column.unique_values),
            })
        for anomaly in profile.anomalies or []:
            if anomaly not in anomalies:
                anomalies.append(anomaly)

    return DatasetProfile(
        columns=list(merged.values()),
        row_count=total_rows,
        summary=profiles[0].summary,
        anomalies=anomalies or None,
    )


def _max_optional(a: int | None, b: int | None) -> int | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)
