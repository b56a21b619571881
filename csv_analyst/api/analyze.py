# =============================================================================
# Analyze API - Dataset Upload, Default Dataset, Status Stream
# =============================================================================
#
# Endpoints:
#   POST /analyze                 multipart CSV upload → full pipeline run
#   POST /analyze-default         run the pipeline over the bundled CSV
#   GET  /analyze/status          SSE stream of AgentStatus updates
#   GET  /analyze/status/current  one-shot poll of the latest AgentStatus
#
# FLOW (POST /analyze):
#   1. Validate file type (.csv name or text/csv content type)
#   2. Read at most max_upload_bytes + 1 bytes (oversize → 413)
#   3. Parse with csv.DictReader (header row → keys, values stay strings)
#   4. Run the pipeline; it persists the AnalysisState on success
#
# The run happens inside the request. A browser that wants progress opens
# GET /analyze/status with the same session id in parallel.
# =============================================================================

from __future__ import annotations

import asyncio
import csv
import io
import logging
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import StreamingResponse

from csv_analyst.agents.orchestrator import AnalysisPipeline
from csv_analyst.api.deps import get_pipeline, get_store, resolve_session_id
from csv_analyst.config import settings
from csv_analyst.errors import AnalysisError, DatasetTooLargeError, InputError
from csv_analyst.models.responses import AnalyzeResponse, StatusResponse
from csv_analyst.services.session_store import SessionStore
from csv_analyst.services.status import stream_status

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Analysis"])

_CSV_CONTENT_TYPES = {"text/csv", "application/csv", "application/vnd.ms-excel"}


# ---------------------------------------------------------------------------
# CSV Parsing
# ---------------------------------------------------------------------------


def parse_csv_bytes(content: bytes) -> list[dict[str, Any]]:
    """
    Decode and parse CSV bytes into records keyed by the header row.

    Blank lines are skipped. Short rows are padded with "", and fields
    beyond the header are dropped.

    Raises:
        InputError: undecodable bytes, malformed CSV, or no data rows
    """
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InputError("CSV file must be UTF-8 encoded") from e

    try:
        reader = csv.DictReader(io.StringIO(text))
        records = [
            {key: (value if value is not None else "") for key, value in row.items() if key is not None}
            for row in reader
            if any((value or "").strip() for value in row.values() if isinstance(value, str))
        ]
    except csv.Error as e:
        raise InputError(f"Malformed CSV: {e}") from e

    if not records:
        raise InputError("No data found in CSV file")
    return records


async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read(settings.max_upload_bytes + 1)
    if len(content) > settings.max_upload_bytes:
        raise DatasetTooLargeError(
            f"File exceeds the {settings.max_upload_bytes // (1024 * 1024)} MB upload limit"
        )
    return content


# ---------------------------------------------------------------------------
# POST /analyze - Upload and analyse a CSV
# ---------------------------------------------------------------------------


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    summary="Analyse an uploaded CSV dataset",
    description=(
        "Runs the Profiler, Detective, Storyteller and Additional-Context "
        "agents over the uploaded CSV and stores the result under the "
        "caller's session. Replaces any previous analysis for the session."
    ),
)
async def analyze_endpoint(
    file: UploadFile = File(..., description="CSV file with a header row"),
    session_id: str = Depends(resolve_session_id),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
) -> AnalyzeResponse:
    filename = file.filename or ""
    if not filename.lower().endswith(".csv") and file.content_type not in _CSV_CONTENT_TYPES:
        raise InputError("Only CSV files are accepted. Please upload a .csv file.")

    content = await _read_upload(file)
    records = parse_csv_bytes(content)
    logger.info(
        "Analyze request: session=%s, file=%s, %d bytes, %d rows",
        session_id, filename, len(content), len(records),
    )

    result = await pipeline.run(records, session_id)
    return AnalyzeResponse(data=result, session_id=session_id)


# ---------------------------------------------------------------------------
# POST /analyze-default - Analyse the bundled dataset
# ---------------------------------------------------------------------------


@router.post(
    "/analyze-default",
    response_model=AnalyzeResponse,
    summary="Analyse the bundled sample dataset",
    description=(
        "Same as POST /analyze, using the CSV at DEFAULT_DATASET_PATH. "
        "Generate one with scripts/generate_sample_csv.py."
    ),
)
async def analyze_default_endpoint(
    session_id: str = Depends(resolve_session_id),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
) -> AnalyzeResponse:
    path = Path(settings.default_dataset_path)
    try:
        content = await asyncio.to_thread(path.read_bytes)
    except FileNotFoundError as e:
        raise AnalysisError(
            f"Default dataset not found at {path}",
            code="default_dataset_missing",
            status_code=404,
        ) from e

    records = parse_csv_bytes(content)
    logger.info(
        "Analyze-default request: session=%s, path=%s, %d rows",
        session_id, path, len(records),
    )

    result = await pipeline.run(records, session_id)
    return AnalyzeResponse(data=result, session_id=session_id)


# ---------------------------------------------------------------------------
# GET /analyze/status - Server-Sent Events
# ---------------------------------------------------------------------------


async def _status_events(store: SessionStore, session_id: str) -> AsyncIterator[str]:
    async for status in stream_status(
        store,
        session_id,
        poll_interval=settings.status_poll_interval_seconds,
        timeout=settings.status_stream_timeout_seconds,
    ):
        yield f"data: {status.model_dump_json(by_alias=True)}\n\n"


@router.get(
    "/analyze/status",
    summary="Stream agent status updates",
    description=(
        "Server-Sent Events stream of AgentStatus records for the session. "
        "Closes after the Analysis Pipeline reports completed or error."
    ),
)
async def analyze_status_stream(
    session_id: str = Depends(resolve_session_id),
    store: SessionStore = Depends(get_store),
) -> StreamingResponse:
    logger.info("Status stream opened: session=%s", session_id)
    return StreamingResponse(
        _status_events(store, session_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",  # nginx
        },
    )


# ---------------------------------------------------------------------------
# GET /analyze/status/current - Poll
# ---------------------------------------------------------------------------


@router.get(
    "/analyze/status/current",
    response_model=StatusResponse,
    summary="Latest agent status",
)
async def analyze_status_current(
    session_id: str = Depends(resolve_session_id),
    store: SessionStore = Depends(get_store),
) -> StatusResponse:
    return StatusResponse(data=await store.get_agent_status(session_id))
