# =============================================================================
# Session Store - One Record per Session in Redis
# =============================================================================
#
# Each session id maps to a single JSON record:
#
#   {
#     "analysisState": {...AnalysisState...} | null,
#     "chatHistory":   [...ConversationMessage...],
#     "agentStatus":   {...AgentStatus...} | null
#   }
#
# An absent record is a fresh session. Every write replaces the record and
# refreshes its TTL (last-write-wins).
#
# DESIGN DECISION: Backend Protocol with two implementations.
#   - RedisSessionBackend: shared across workers, survives restarts
#   - InMemorySessionBackend: single process, for local dev and tests
# Selected by SESSION_BACKEND. Same pattern as the provider factory in
# services/llm.py.
#
# DESIGN DECISION: No locking. appendMessage and setAgentStatus are
# read-modify-write; two concurrent writers on the same session can lose
# an update. Acceptable for one browser tab per session, documented in
# DESIGN.md.
#
# Every public operation validates the session id FIRST, before touching
# the backend. A malformed id never produces store I/O.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Protocol

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from csv_analyst.config import settings
from csv_analyst.errors import SessionFormatError, StoreError
from csv_analyst.models.domain import (
    AgentStatus,
    AnalysisResult,
    AnalysisState,
    CamelModel,
    ConversationMessage,
)

logger = logging.getLogger(__name__)

_SESSION_ID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def validate_session_id(session_id: Any) -> str:
    """Return `session_id` if it is a UUID string, else raise SessionFormatError."""
    if not isinstance(session_id, str) or not _SESSION_ID_RE.match(session_id):
        raise SessionFormatError("Invalid session ID format")
    return session_id


class SessionRecord(CamelModel):
    analysis_state: AnalysisState | None = None
    chat_history: list[ConversationMessage] = Field(default_factory=list)
    agent_status: AgentStatus | None = None


# ---------------------------------------------------------------------------
# Backend Protocol
# ---------------------------------------------------------------------------


class SessionBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# Implementation 1: Redis
# ---------------------------------------------------------------------------


class RedisSessionBackend:
    """
    redis.asyncio backend. The client is created on first use so importing
    this module (and building the app) never opens a connection.
    """

    def __init__(self, url: str | None = None, client: Any = None) -> None:
        self._url = url or settings.redis_url
        self._client = client

    def _get_client(self):
        if self._client is None:
            import redis.asyncio as aioredis
            self._client = aioredis.from_url(self._url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> str | None:
        from redis.exceptions import RedisError

        try:
            return await self._get_client().get(key)
        except RedisError as e:
            logger.error("Session store read failed: %s", e)
            raise StoreError("Session store unavailable") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        from redis.exceptions import RedisError

        try:
            await self._get_client().set(key, value, ex=ttl_seconds)
        except RedisError as e:
            logger.error("Session store write failed: %s", e)
            raise StoreError("Session store unavailable") from e

    async def delete(self, key: str) -> None:
        from redis.exceptions import RedisError

        try:
            await self._get_client().delete(key)
        except RedisError as e:
            logger.error("Session store delete failed: %s", e)
            raise StoreError("Session store unavailable") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# Implementation 2: In-Memory
# ---------------------------------------------------------------------------


class InMemorySessionBackend:
    """Process-local dict with lazy TTL expiry."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.monotonic():
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = (value, time.monotonic() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def close(self) -> None:
        self._data.clear()


# ---------------------------------------------------------------------------
# Session Store
# ---------------------------------------------------------------------------


class SessionStore:
    """Typed operations over the per-session record."""

    def __init__(
        self,
        backend: SessionBackend,
        *,
        key_prefix: str | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        self.backend = backend
        self._prefix = settings.session_key_prefix if key_prefix is None else key_prefix
        self._ttl = ttl_seconds or settings.session_ttl_seconds

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}"

    async def _load(self, session_id: str) -> SessionRecord:
        raw = await self.backend.get(self._key(session_id))
        if raw is None:
            return SessionRecord()
        try:
            return SessionRecord.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.error(
                "Unreadable session record for %s (%d errors)",
                session_id, e.error_count(),
            )
            raise StoreError("Stored session data is corrupt; clear the session") from e

    async def _save(self, session_id: str, record: SessionRecord) -> None:
        payload = record.model_dump_json(by_alias=True)
        await self.backend.set(self._key(session_id), payload, self._ttl)

    async def _patch(self, session_id: str, field: str, value: Any) -> None:
        """
        Replace one top-level field of the raw record.

        Status updates arrive about fifteen times per run while the record
        may hold tens of thousands of originalData rows; this path skips
        model validation of the rest of the record.
        """
        key = self._key(session_id)
        raw = await self.backend.get(key)
        if raw is None:
            record: Any = SessionRecord().model_dump(mode="json", by_alias=True)
        else:
            try:
                record = json.loads(raw)
            except json.JSONDecodeError as e:
                raise StoreError("Stored session data is corrupt; clear the session") from e
            if not isinstance(record, dict):
                raise StoreError("Stored session data is corrupt; clear the session")
        record[field] = value
        await self.backend.set(key, json.dumps(record), self._ttl)

    # --- Analysis state ----------------------------------------------------

    async def get_analysis_state(self, session_id: str) -> AnalysisState | None:
        validate_session_id(session_id)
        return (await self._load(session_id)).analysis_state

    async def save_analysis_state(
        self,
        session_id: str,
        result: AnalysisResult,
        original_data: list[dict[str, Any]],
    ) -> AnalysisState:
        """Replace the session's analysis state wholesale. No merge."""
        validate_session_id(session_id)
        state = AnalysisState(
            profile=result.profile,
            insights=list(result.insights),
            narrative=result.narrative,
            additional_contexts=list(result.additional_contexts),
            original_data=list(original_data),
        )
        record = await self._load(session_id)
        record.analysis_state = state
        await self._save(session_id, record)
        logger.info(
            "Saved analysis state for %s (%d rows, %d insights)",
            session_id, len(original_data), len(state.insights),
        )
        return state

    # --- Conversation ------------------------------------------------------

    async def get_conversation_history(self, session_id: str) -> list[ConversationMessage]:
        validate_session_id(session_id)
        return (await self._load(session_id)).chat_history

    async def append_message(
        self,
        session_id: str,
        message: ConversationMessage,
    ) -> list[ConversationMessage]:
        validate_session_id(session_id)
        record = await self._load(session_id)
        record.chat_history.append(message)
        await self._save(session_id, record)
        return record.chat_history

    # --- Agent status ------------------------------------------------------

    async def get_agent_status(self, session_id: str) -> AgentStatus | None:
        validate_session_id(session_id)
        return (await self._load(session_id)).agent_status

    async def set_agent_status(self, session_id: str, status: AgentStatus) -> None:
        validate_session_id(session_id)
        await self._patch(session_id, "agentStatus", status.to_wire())

    async def clear_agent_status(self, session_id: str) -> None:
        validate_session_id(session_id)
        record = await self._load(session_id)
        if record.agent_status is None:
            return
        record.agent_status = None
        await self._save(session_id, record)

    # --- Session -----------------------------------------------------------

    async def clear_session(self, session_id: str) -> None:
        """Erase state, history and status in one backend call."""
        validate_session_id(session_id)
        await self.backend.delete(self._key(session_id))
        logger.info("Cleared session %s", session_id)

    async def close(self) -> None:
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """
    Return the process-wide SessionStore for the configured backend.

    The store holds no per-user data itself; it is a handle on the backend.
    """
    global _store
    if _store is None:
        if settings.session_backend == "redis":
            logger.info("Using Redis session store (%s)", settings.redis_url)
            _store = SessionStore(RedisSessionBackend())
        else:
            logger.info("Using in-memory session store")
            _store = SessionStore(InMemorySessionBackend())
    return _store
