# =============================================================================
# CSV Analyst Agent
# =============================================================================
# A multi-agent service that turns an uploaded CSV into a dataset profile,
# ranked insights, a narrative and supplementary context, then answers
# follow-up questions against that analysis with a bounded refine loop.
#
# Package structure:
#   csv_analyst/
#   ├── api/          → FastAPI route handlers (analyze, ask, session)
#   ├── agents/       → Stage agents, LangGraph pipeline, chat/refinement
#   ├── models/       → Pydantic V2 domain models and request/response schemas
#   ├── services/     → LLM providers, retry, sampling, windowing, session
#   │                    store, status publishing, external context lookup
#   ├── config.py     → pydantic-settings configuration
#   ├── errors.py     → Error taxonomy shared by the core and the API
#   └── main.py       → FastAPI application, error handlers, routers
# =============================================================================
