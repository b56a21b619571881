# =============================================================================
# Stage Agent Base - Shared Prompting + Bounded Fan-Out
# =============================================================================
#
# Every stage (Profiler, Detective, Storyteller, Additional-Context) is a
# StageAgent: default instructions, an AgentName for status reporting, and
# a ModelInvoker for the actual call.
#
# Custom instructions (from a reanalysis pass) are APPENDED to the stage's
# defaults, never substituted. The output schema stays fixed no matter what
# the override says.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Iterable, TypeVar

from csv_analyst.config import settings
from csv_analyst.models.domain import AgentName
from csv_analyst.services.llm import ModelInvoker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StageAgent:
    name: AgentName
    instructions: str = ""

    def __init__(self, invoker: ModelInvoker) -> None:
        self.invoker = invoker

    def system_prompt(self, custom_prompt: str | None = None) -> str:
        if custom_prompt and custom_prompt.strip():
            return f"{self.instructions}\n\nAdditional instructions:\n{custom_prompt.strip()}"
        return self.instructions

    @property
    def label(self) -> str:
        return self.name.value


async def run_windows(
    coros: Iterable[Awaitable[T]],
    limit: int | None = None,
) -> list[T]:
    """
    Await window coroutines concurrently, at most `limit` in flight.

    Results come back in submission order. All windows run to completion;
    then the exception of the earliest failed window (if any) is raised.
    """
    semaphore = asyncio.Semaphore(max(1, limit or settings.max_concurrent_model_calls))

    async def bounded(coro: Awaitable[T]) -> T:
        async with semaphore:
            return await coro

    results = await asyncio.gather(*(bounded(c) for c in coros), return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


def to_prompt_json(value: Any) -> str:
    """Serialise records / models for a prompt (indent 2, non-JSON types as str)."""
    if hasattr(value, "to_wire"):
        value = value.to_wire()
    elif isinstance(value, list):
        value = [v.to_wire() if hasattr(v, "to_wire") else v for v in value]
    return json.dumps(value, indent=2, default=str)
