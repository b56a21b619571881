# =============================================================================
# FastAPI Application - Entry Point
# =============================================================================
#
# Run with:  uvicorn csv_analyst.main:app --reload
#
#   /health   liveness + configured session backend
#   /api/*    analyze, ask, session routers
#
# Every AnalysisError leaves through one handler as the envelope
#   {"success": false, "error": {"code": "...", "message": "..."}}
# with the status code the error class carries. Request validation
# failures use the same envelope with code invalid_input (400).
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from csv_analyst.api import analyze, ask, session
from csv_analyst.config import settings
from csv_analyst.errors import AnalysisError, InputError
from csv_analyst.models.responses import ErrorBody, ErrorResponse, HealthResponse
from csv_analyst.services.session_store import get_session_store

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Starting %s v%s (session backend: %s, provider: %s)",
        settings.app_name, settings.app_version,
        settings.session_backend, settings.llm_provider,
    )
    yield
    await get_session_store().close()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Multi-agent CSV analysis with conversational follow-up",
    version=settings.app_version,
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analyze.router, prefix="/api")
app.include_router(ask.router, prefix="/api")
app.include_router(session.router, prefix="/api")


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorBody(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.to_wire())


@app.exception_handler(AnalysisError)
async def handle_analysis_error(request: Request, exc: AnalysisError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: [%s] %s", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.info("%s %s rejected: [%s] %s", request.method, request.url.path, exc.code, exc.message)
    return _error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return _error_response(InputError.status_code, InputError.code, message)


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(
        version=settings.app_version,
        service=settings.app_name,
        session_backend=settings.session_backend,
    )
