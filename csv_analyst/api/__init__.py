# =============================================================================
# API Package - FastAPI Route Handlers
# =============================================================================
#   - deps.py: session id resolution + service factories (overridable)
#   - analyze.py: dataset upload, default dataset, status stream / poll
#   - ask.py: follow-up questions with refinement
#   - session.py: existing analysis + clear session
# =============================================================================
