# =============================================================================
# Domain Models - Analysis State, Conversation, Agent Status
# =============================================================================
#
# Every value that crosses a stage boundary, gets persisted to the session
# store, or leaves through the API is one of these models.
#
# DESIGN DECISION: camelCase aliases on the wire, snake_case in Python.
# The persisted session record ({analysisState, chatHistory, agentStatus})
# and the JSON the frontend reads use camelCase. `populate_by_name=True`
# lets code construct models with snake_case kwargs while model_validate
# still accepts the camelCase payloads coming back from Redis or the LLM.
#
# Context views are tagged unions: analysis-context views carry `section`,
# dataset views carry `format`, and the tag is serialised with the view so
# the prompt states which slice of the session it holds.
# =============================================================================

from __future__ import annotations

import enum
import json
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model: snake_case attributes, camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class ColumnType(str, enum.Enum):
    NUMERIC = "numeric"
    CATEGORICAL = "categorical"
    DATETIME = "datetime"
    TEXT = "text"
    OTHER = "other"


class ColumnInfo(CamelModel):
    name: str
    type: ColumnType
    unique_values: int | None = Field(default=None, ge=0)
    missing_values: int = Field(default=0, ge=0)

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_unknown_type(cls, value: Any) -> Any:
        return coerce_column_type(value)


_TYPE_SYNONYMS = {
    "integer": "numeric",
    "int": "numeric",
    "float": "numeric",
    "number": "numeric",
    "decimal": "numeric",
    "date": "datetime",
    "time": "datetime",
    "timestamp": "datetime",
    "string": "text",
    "str": "text",
    "category": "categorical",
    "boolean": "categorical",
    "bool": "categorical",
}


def coerce_column_type(value: Any) -> Any:
    """Map the type names models occasionally answer ("string", "integer",
    "date") onto ColumnType values; unknown names become "other"."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {t.value for t in ColumnType}:
            return lowered
        return _TYPE_SYNONYMS.get(lowered, ColumnType.OTHER.value)
    return value


class DatasetProfile(CamelModel):
    """Immutable once produced. A reanalysis replaces it wholesale."""

    model_config = ConfigDict(frozen=True)

    columns: list[ColumnInfo]
    row_count: int = Field(ge=0)
    summary: str
    anomalies: list[str] | None = None

    @field_validator("columns")
    @classmethod
    def _unique_column_names(cls, columns: list[ColumnInfo]) -> list[ColumnInfo]:
        seen: set[str] = set()
        for column in columns:
            if column.name in seen:
                raise ValueError(f"duplicate column name: {column.name}")
            seen.add(column.name)
        return columns


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------


class InsightType(str, enum.Enum):
    CORRELATION = "correlation"
    TREND = "trend"
    ANOMALY = "anomaly"
    PATTERN = "pattern"


class SupportingData(CamelModel):
    evidence: str
    statistics: str

    @field_validator("statistics", mode="before")
    @classmethod
    def _statistics_as_text(cls, value: Any) -> Any:
        # Models sometimes return a {name: value} object or a list of figures
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class Insight(CamelModel):
    type: InsightType
    description: str = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    supporting_data: SupportingData


# ---------------------------------------------------------------------------
# Additional context
# ---------------------------------------------------------------------------


class AgencyTag(str, enum.Enum):
    FDA = "FDA"
    USDA = "USDA"
    OTHER = "OTHER"


class AdditionalContext(CamelModel):
    type: AgencyTag = AgencyTag.OTHER
    date: str
    event: str
    relevance_to_data: str

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_agency(cls, value: Any) -> Any:
        if isinstance(value, str) and value.upper() not in AgencyTag.__members__:
            return AgencyTag.OTHER.value
        return value.upper() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Analysis result / state
# ---------------------------------------------------------------------------


class AnalysisResult(CamelModel):
    profile: DatasetProfile
    insights: list[Insight]
    narrative: str
    additional_contexts: list[AdditionalContext] = Field(default_factory=list)


class AnalysisState(AnalysisResult):
    """AnalysisResult plus the raw records it was computed from."""

    original_data: list[dict[str, Any]] = Field(default_factory=list)

    def result(self) -> AnalysisResult:
        return AnalysisResult(
            profile=self.profile,
            insights=self.insights,
            narrative=self.narrative,
            additional_contexts=self.additional_contexts,
        )


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationMessage(CamelModel):
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
    message_id: str = ""

    def model_post_init(self, context: Any) -> None:
        if not self.message_id:
            millis = int(self.timestamp.timestamp() * 1000)
            self.message_id = f"msg_{millis}_{self.role.value}"


# ---------------------------------------------------------------------------
# Agent status
# ---------------------------------------------------------------------------


class AgentName(str, enum.Enum):
    PROFILER = "Profiler Agent"
    DETECTIVE = "Detective Agent"
    STORYTELLER = "Storyteller Agent"
    ADDITIONAL_CONTEXT = "Additional Context Agent"
    PIPELINE = "Analysis Pipeline"


class StageStatus(str, enum.Enum):
    PENDING = "pending"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (StageStatus.COMPLETED, StageStatus.ERROR)


class AgentStatus(CamelModel):
    agent: AgentName
    status: StageStatus
    message: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Refinement
# ---------------------------------------------------------------------------


class AnswerEvaluation(CamelModel):
    needs_reanalysis: bool = False
    reason: str | None = None
    focus_areas: list[str] | None = None


class StagePrompts(CamelModel):
    """Per-stage instructions appended to each stage's defaults."""

    profiler_prompt: str | None = None
    detective_prompt: str | None = None
    storyteller_prompt: str | None = None


# ---------------------------------------------------------------------------
# Tool payloads - analysis-context views (tag: section)
# ---------------------------------------------------------------------------


class ProfileSection(CamelModel):
    section: Literal["profile"] = "profile"
    profile: DatasetProfile


class InsightsSection(CamelModel):
    section: Literal["insights"] = "insights"
    insights: list[Insight]
    count: int


class NarrativeSection(CamelModel):
    section: Literal["narrative"] = "narrative"
    narrative: str


class CompleteAnalysisSection(CamelModel):
    section: Literal["all"] = "all"
    complete_analysis: AnalysisResult


AnalysisContextView = Annotated[
    Union[ProfileSection, InsightsSection, NarrativeSection, CompleteAnalysisSection],
    Field(discriminator="section"),
]


# ---------------------------------------------------------------------------
# Tool payloads - dataset views (tag: format)
# ---------------------------------------------------------------------------


class FullDataset(CamelModel):
    format: Literal["full"] = "full"
    data: list[dict[str, Any]]
    count: int


class SampleDataset(CamelModel):
    format: Literal["sample"] = "sample"
    data: list[dict[str, Any]]
    total_count: int


class DatasetSummary(CamelModel):
    format: Literal["summary"] = "summary"
    columns: list[str]
    row_count: int
    sample_data: list[dict[str, Any]]


DatasetView = Annotated[
    Union[FullDataset, SampleDataset, DatasetSummary],
    Field(discriminator="format"),
]


# ---------------------------------------------------------------------------
# Tool payloads - conversation window
# ---------------------------------------------------------------------------


class ConversationWindow(CamelModel):
    messages: list[ConversationMessage]
    total_count: int
    retrieved_count: int
    filter: Literal["all", "user", "assistant"] = "all"
