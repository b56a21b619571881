# =============================================================================
# Models Package - Pydantic V2 Schemas
# =============================================================================
#   - domain.py: analysis data model (profile, insights, contexts, session
#     state, conversation, agent status) plus the typed tool payloads
#   - requests.py: request bodies accepted by the API
#   - responses.py: success / error envelopes returned by the API
#
# Domain models serialise with camelCase aliases so the persisted session
# record and the HTTP payloads share one wire shape.
# =============================================================================
