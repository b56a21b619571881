# =============================================================================
# Additional-Context Agent - Real-World Events Relevant to the Data
# =============================================================================
#
# 1. Build a query from text values, column names, then the summary
# 2. Ask the lookup for candidate events (openFDA enforcement reports)
# 3. Let the model pick the relevant ones and justify each
# 4. Keep at most max_additional_contexts
#
# Without a configured lookup the stage returns [] and makes no model call.
# A failing lookup degrades to [] with a warning; a failing model call
# propagates (the orchestrator decides how much that matters).
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Sequence

from pydantic import Field

from csv_analyst.agents.base import StageAgent, to_prompt_json
from csv_analyst.config import settings
from csv_analyst.models.domain import (
    AdditionalContext,
    AgentName,
    CamelModel,
    ColumnType,
    DatasetProfile,
    Insight,
)
from csv_analyst.services.context_lookup import ContextLookup
from csv_analyst.services.llm import ModelInvoker

logger = logging.getLogger(__name__)

ADDITIONAL_CONTEXT_INSTRUCTIONS = """You are an additional context agent. \
You receive a dataset profile, its key insights, and candidate regulatory \
events (recalls, advisories) from public agencies.

Select the events that help explain or frame the data, between 3 and 7 of \
them when enough are relevant, fewer when not. Never invent events that are \
not in the candidate list.

You MUST respond with ONLY a valid JSON object in this exact format:
{
  "contexts": [
    {
      "type": "FDA" | "USDA" | "OTHER",
      "date": "YYYY-MM-DD",
      "event": "short description of the event",
      "relevanceToData": "why this event matters for this dataset"
    }
  ]
}"""


class AdditionalContextOutput(CamelModel):
    contexts: list[AdditionalContext] = Field(default_factory=list)


class AdditionalContextAgent(StageAgent):
    name = AgentName.ADDITIONAL_CONTEXT
    instructions = ADDITIONAL_CONTEXT_INSTRUCTIONS

    def __init__(self, invoker: ModelInvoker, lookup: ContextLookup | None = None) -> None:
        super().__init__(invoker)
        self.lookup = lookup

    async def analyze(
        self,
        profile: DatasetProfile,
        insights: Sequence[Insight],
        custom_prompt: str | None = None,
        *,
        records: Sequence[dict[str, Any]] = (),
    ) -> list[AdditionalContext]:
        if self.lookup is None:
            logger.info("No context lookup configured; skipping additional context")
            return []

        query = build_query(profile, records)
        try:
            candidates = await self.lookup.search(query)
        except Exception as e:
            logger.warning("Context lookup failed: %s", e)
            return []

        if not candidates:
            logger.info("Context lookup found no candidate events")
            return []

        user_content = (
            f"Dataset profile:\n{to_prompt_json(profile)}\n\n"
            f"Key insights:\n{to_prompt_json(list(insights))}\n\n"
            "Candidate events:\n"
            + "\n".join(
                f"- [{c.source.value}] {c.date}: {c.title} ({c.detail})"
                for c in candidates
            )
        )

        output = await self.invoker.invoke(
            self.system_prompt(custom_prompt),
            user_content,
            AdditionalContextOutput,
            label=self.label,
        )
        contexts = output.contexts[: settings.max_additional_contexts]
        logger.info(
            "Selected %d of %d candidate events", len(contexts), len(candidates),
        )
        return contexts


_QUERY_SCAN_ROWS = 50


def build_query(profile: DatasetProfile, records: Sequence[dict[str, Any]] = ()) -> str:
    """
    Lookup query: distinct values of text-like columns first (product and
    pathogen names live there), then column names, then the summary.
    """
    text_columns = [
        c.name for c in profile.columns
        if c.type in (ColumnType.CATEGORICAL, ColumnType.TEXT)
    ]
    values: list[str] = []
    for record in records[:_QUERY_SCAN_ROWS]:
        for name in text_columns:
            value = str(record.get(name) or "").strip()
            if value and value not in values:
                values.append(value)
    names = [c.name for c in profile.columns]
    return " ".join([*values, *names, profile.summary]).strip()
