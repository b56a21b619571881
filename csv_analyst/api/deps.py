# =============================================================================
# API Dependencies - Session Resolution + Service Factories
# =============================================================================
#
# FastAPI dependencies shared by the route modules:
#
# 1. resolve_session_id() - X-Session-ID header, else session cookie,
#                           else a freshly minted UUID4 (set as cookie)
# 2. get_store() / get_pipeline() / get_invoker() / get_chat_service()
#                         - process-wide services
#
# DESIGN DECISION: FastAPI dependencies (not module globals in handlers).
# Tests swap any of these through app.dependency_overrides, e.g. an
# in-memory store and a pipeline built on a fake provider.
#
# A session id that is present but malformed is rejected with
# invalid_session_id. It is never silently replaced by a new one, because
# that would hide the caller's previous analysis.
# =============================================================================

from __future__ import annotations

import logging
import uuid

from fastapi import Depends, Header, Request, Response

from csv_analyst.agents.chat import ChatRefinementService
from csv_analyst.agents.orchestrator import AnalysisPipeline, get_analysis_pipeline
from csv_analyst.config import settings
from csv_analyst.services.llm import ModelInvoker
from csv_analyst.services.session_store import (
    SessionStore,
    get_session_store,
    validate_session_id,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Session id
# ---------------------------------------------------------------------------


async def resolve_session_id(
    request: Request,
    response: Response,
    x_session_id: str | None = Header(default=None, alias="X-Session-ID"),
) -> str:
    """
    Resolve the caller's session id.

    Header wins over cookie. When neither is present a new UUID4 is
    minted and returned in the session cookie.

    Raises:
        SessionFormatError: the supplied id is not a UUID
    """
    supplied = x_session_id or request.cookies.get(settings.session_cookie_name)
    if supplied:
        return validate_session_id(supplied)

    session_id = str(uuid.uuid4())
    response.set_cookie(
        settings.session_cookie_name,
        session_id,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        samesite="lax",
    )
    logger.info("Minted new session %s", session_id)
    return session_id


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def get_store() -> SessionStore:
    return get_session_store()


def get_pipeline() -> AnalysisPipeline:
    return get_analysis_pipeline()


def get_invoker() -> ModelInvoker:
    return ModelInvoker()


def get_chat_service(
    invoker: ModelInvoker = Depends(get_invoker),
    store: SessionStore = Depends(get_store),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
) -> ChatRefinementService:
    return ChatRefinementService(
        invoker, store, pipeline, history_window=settings.chat_history_window,
    )
