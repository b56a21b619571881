# =============================================================================
# Services Package - Infrastructure Used by the Agents
# =============================================================================
#   - llm.py: multi-provider LLM abstraction + ModelInvoker (retry, JSON
#     extraction, schema validation, provider error mapping)
#   - retry.py: bounded exponential-backoff combinator
#   - sampler.py: identity / stratified / systematic / random sampling
#   - chunker.py: row windows and tiktoken-based window sizing
#   - session_store.py: per-session record in Redis (or memory)
#   - status.py: ordered AgentStatus publisher + SSE status stream
#   - context_lookup.py: optional external event lookup (openFDA)
# =============================================================================
