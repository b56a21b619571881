# =============================================================================
# API Response Models - Pydantic V2 Schemas
# =============================================================================
#
# Every endpoint answers with an envelope:
#   success: {"success": true, "data": ..., ...}
#   failure: {"success": false, "error": {"code": "...", "message": "..."}}
#
# Envelopes use the same camelCase aliases as the domain models, so the
# analysis payload looks identical in the store and on the wire. Routes
# return them with response_model_by_alias (FastAPI's default).
# =============================================================================

from __future__ import annotations

from pydantic import Field

from csv_analyst.models.domain import (
    AgentStatus,
    AnalysisResult,
    AnalysisState,
    AnswerEvaluation,
    CamelModel,
    ConversationMessage,
)


class HealthResponse(CamelModel):
    """Response for GET /health - confirms the API is running."""

    status: str = "ok"
    version: str
    service: str
    session_backend: str


class ErrorBody(CamelModel):
    code: str
    message: str


class ErrorResponse(CamelModel):
    success: bool = False
    error: ErrorBody


class AnalyzeResponse(CamelModel):
    """POST /api/analyze and /api/analyze-default."""

    success: bool = True
    data: AnalysisResult
    session_id: str = Field(description="Session the analysis was stored under")


class AnswerData(CamelModel):
    answer: str
    reanalyzed: bool = False
    evaluation: AnswerEvaluation | None = None


class AskResponse(CamelModel):
    success: bool = True
    data: AnswerData


class ExistingAnalysisResponse(CamelModel):
    """
    GET /api/existing-analysis. A session without analysis is not an
    error: success=false with a message and whatever history exists.
    """

    success: bool
    data: AnalysisState | None = None
    conversation_history: list[ConversationMessage] = Field(default_factory=list)
    message: str | None = None


class ClearSessionResponse(CamelModel):
    success: bool = True
    message: str = "Session cleared successfully"


class StatusResponse(CamelModel):
    """GET /api/analyze/status/current - one-shot poll."""

    success: bool = True
    data: AgentStatus | None = None
