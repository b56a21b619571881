# =============================================================================
# Ask API - Follow-up Questions with Refinement
# =============================================================================
#
# POST /ask answers a question about the session's stored analysis. The
# chat service may re-run the pipeline once (see agents/chat.py); the
# response says whether it did.
#
# Thin endpoint: session resolution, service call, response mapping.
# Errors propagate to the AnalysisError handler in main.py.
# =============================================================================

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends

from csv_analyst.agents.chat import ChatRefinementService
from csv_analyst.api.deps import get_chat_service, resolve_session_id
from csv_analyst.models.requests import AskRequest
from csv_analyst.models.responses import AnswerData, AskResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Question Answering"])


# ---------------------------------------------------------------------------
# POST /ask - Ask a question about the analysis
# ---------------------------------------------------------------------------


@router.post(
    "/ask",
    response_model=AskResponse,
    summary="Ask a question about the current analysis",
    description=(
        "Answers from the stored analysis and recent conversation. If the "
        "answer is judged inadequate, the analysis is re-run once with "
        "question-specific instructions and the question answered again."
    ),
)
async def ask_endpoint(
    request: AskRequest,
    session_id: str = Depends(resolve_session_id),
    chat: ChatRefinementService = Depends(get_chat_service),
) -> AskResponse:
    logger.info("Ask request: session=%s, question='%s'", session_id, request.question[:100])
    started = time.perf_counter()

    result = await chat.answer_question(session_id, request.question)

    logger.info(
        "Ask complete: session=%s, reanalyzed=%s (%.2fs)",
        session_id, result.reanalyzed, time.perf_counter() - started,
    )
    return AskResponse(
        data=AnswerData(
            answer=result.answer,
            reanalyzed=result.reanalyzed,
            evaluation=result.evaluation,
        ),
    )
