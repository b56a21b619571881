# =============================================================================
# Session API - Existing Analysis + Clear Session
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from csv_analyst.api.deps import get_store, resolve_session_id
from csv_analyst.models.responses import ClearSessionResponse, ExistingAnalysisResponse
from csv_analyst.services.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Session"])


# ---------------------------------------------------------------------------
# GET /existing-analysis
# ---------------------------------------------------------------------------


@router.get(
    "/existing-analysis",
    response_model=ExistingAnalysisResponse,
    summary="Return the session's stored analysis and conversation",
    description=(
        "success=false with a message when the session has no analysis yet; "
        "the conversation history is returned either way."
    ),
)
async def existing_analysis(
    session_id: str = Depends(resolve_session_id),
    store: SessionStore = Depends(get_store),
) -> ExistingAnalysisResponse:
    state = await store.get_analysis_state(session_id)
    history = await store.get_conversation_history(session_id)

    if state is None:
        return ExistingAnalysisResponse(
            success=False,
            conversation_history=history,
            message="No existing analysis found",
        )
    return ExistingAnalysisResponse(success=True, data=state, conversation_history=history)


# ---------------------------------------------------------------------------
# DELETE /clear-session
# ---------------------------------------------------------------------------


@router.delete(
    "/clear-session",
    response_model=ClearSessionResponse,
    summary="Erase the session's analysis, conversation and status",
)
async def clear_session(
    session_id: str = Depends(resolve_session_id),
    store: SessionStore = Depends(get_store),
) -> ClearSessionResponse:
    await store.clear_session(session_id)
    logger.info("Clear-session request: session=%s", session_id)
    return ClearSessionResponse()
