# =============================================================================
# Agent Status - Ordered Publisher + Polling Stream
# =============================================================================
#
# The orchestrator reports progress as AgentStatus records written to the
# session store. The status endpoint streams them to the browser over SSE.
#
# Per-agent state machine (enforced by StatusPublisher):
#
#   pending ──▶ starting ──▶ running ──▶ completed
#                  │            │
#                  └────────────┴──────▶ error
#
# A finished agent (completed / error) may start again, which is how a
# reanalysis pass reuses the same publisher semantics.
#
# DESIGN DECISION: Poll the store, don't push.
# The status lives in the same shared record as everything else, so any
# worker can serve the stream regardless of which worker runs the
# pipeline. A disconnected stream never affects the run.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator

from csv_analyst.models.domain import AgentName, AgentStatus, StageStatus
from csv_analyst.services.session_store import SessionStore, validate_session_id

logger = logging.getLogger(__name__)

_ALLOWED: dict[StageStatus, set[StageStatus]] = {
    StageStatus.PENDING: {StageStatus.STARTING},
    StageStatus.STARTING: {StageStatus.RUNNING, StageStatus.ERROR},
    StageStatus.RUNNING: {StageStatus.COMPLETED, StageStatus.ERROR},
    StageStatus.COMPLETED: {StageStatus.STARTING},
    StageStatus.ERROR: {StageStatus.STARTING},
}


class StatusPublisher:
    """Writes AgentStatus for one session, refusing out-of-order transitions."""

    def __init__(self, store: SessionStore, session_id: str) -> None:
        self._store = store
        self.session_id = validate_session_id(session_id)
        self._current: dict[AgentName, StageStatus] = {}

    def current(self, agent: AgentName) -> StageStatus:
        return self._current.get(agent, StageStatus.PENDING)

    async def publish(self, agent: AgentName, status: StageStatus, message: str = "") -> AgentStatus:
        previous = self.current(agent)
        if status not in _ALLOWED[previous]:
            raise ValueError(
                f"invalid status transition for {agent.value}: "
                f"{previous.value} -> {status.value}"
            )
        record = AgentStatus(agent=agent, status=status, message=message)
        await self._store.set_agent_status(self.session_id, record)
        self._current[agent] = status
        logger.debug("[%s] %s: %s %s", self.session_id, agent.value, status.value, message)
        return record

    async def reset(self) -> None:
        await self._store.clear_agent_status(self.session_id)
        self._current.clear()


async def stream_status(
    store: SessionStore,
    session_id: str,
    *,
    poll_interval: float,
    timeout: float,
) -> AsyncIterator[AgentStatus]:
    """
    Yield each new AgentStatus for the session until the pipeline finishes.

    Stops after a terminal status from the Analysis Pipeline, or when
    `timeout` seconds pass without one.
    """
    validate_session_id(session_id)
    deadline = time.monotonic() + timeout
    last_seen: str | None = None

    while True:
        status = await store.get_agent_status(session_id)
        if status is not None:
            fingerprint = status.model_dump_json()
            if fingerprint != last_seen:
                last_seen = fingerprint
                yield status
            if status.agent == AgentName.PIPELINE and status.status.terminal:
                return

        if time.monotonic() >= deadline:
            logger.info("Status stream for %s timed out", session_id)
            return
        await asyncio.sleep(poll_interval)
