# =============================================================================
# API Request Models - Pydantic V2 Schemas
# =============================================================================
#
# Only JSON bodies are modelled here. The dataset upload is multipart
# (UploadFile) and the session id travels in a header or cookie, so
# neither needs a body schema.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class AskRequest(BaseModel):
    """
    Request body for POST /api/ask - a follow-up question about the
    session's current analysis.

    Example:
        {"question": "Which month had the most outbreaks?"}
    """

    # Blank questions are rejected by the chat service (invalid_input).
    question: str = Field(
        ...,
        max_length=2000,
        description="The question to ask about the analysed dataset",
        examples=["Which columns have the most missing values?"],
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"question": "What trends do you see over time?"},
                {"question": "Are there any outliers in the numeric columns?"},
            ]
        }
    )
