# =============================================================================
# Storyteller Agent - Narrative Synthesis
# =============================================================================
#
# Turns profile + insights (and optionally recent conversation) into one
# narrative string. The model returns {narrative, keyPoints?, conclusion?};
# the stage output is the narrative with the conclusion appended.
# =============================================================================

from __future__ import annotations

import logging
from typing import Sequence

from pydantic import Field

from csv_analyst.agents.base import StageAgent, to_prompt_json
from csv_analyst.errors import InputError, ValidationError
from csv_analyst.models.domain import (
    AgentName,
    CamelModel,
    ConversationMessage,
    DatasetProfile,
    Insight,
)

logger = logging.getLogger(__name__)

STORYTELLER_INSTRUCTIONS = """You are a data storyteller. Create a compelling \
narrative based on the dataset analysis.

You MUST respond with ONLY a valid JSON object in this exact format:
{
  "narrative": "string",
  "keyPoints": ["string"],
  "conclusion": "string"
}

Guidelines for the narrative:
1. Tell a coherent story about the data
2. Incorporate the key insights
3. Highlight the most important findings
4. Provide context and implications"""


class StorytellerOutput(CamelModel):
    narrative: str
    key_points: list[str] = Field(default_factory=list)
    conclusion: str | None = None


class StorytellerAgent(StageAgent):
    name = AgentName.STORYTELLER
    instructions = STORYTELLER_INSTRUCTIONS

    async def analyze(
        self,
        profile: DatasetProfile | None,
        insights: Sequence[Insight],
        custom_prompt: str | None = None,
        conversation: Sequence[ConversationMessage] | None = None,
    ) -> str:
        if profile is None:
            raise InputError("Dataset profile is required")
        if not insights:
            raise InputError("At least one insight is required")

        parts = [
            f"Dataset Profile:\n{to_prompt_json(profile)}",
            f"Key Insights:\n{to_prompt_json(list(insights))}",
        ]
        if conversation:
            turns = "\n".join(f"{m.role.value}: {m.content}" for m in conversation)
            parts.append(f"Recent conversation:\n{turns}")

        output = await self.invoker.invoke(
            self.system_prompt(custom_prompt),
            "\n\n".join(parts),
            StorytellerOutput,
            label=self.label,
        )

        narrative = output.narrative.strip()
        if not narrative:
            raise ValidationError(f"{self.label} returned an empty narrative")
        if output.conclusion and output.conclusion.strip():
            narrative = f"{narrative}\n\n{output.conclusion.strip()}"

        logger.info(
            "Narrative complete: %d chars, %d key points",
            len(narrative), len(output.key_points),
        )
        return narrative
