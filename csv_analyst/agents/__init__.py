# =============================================================================
# Agents Package - Multi-Stage Analysis Pipeline
# =============================================================================
#   - base.py: StageAgent base class + bounded window fan-out
#   - profiler.py: column profile (windowed for large datasets)
#   - detective.py: insights (sampled, token-budgeted windows, merged)
#   - storyteller.py: narrative from profile + insights
#   - additional_context.py: external events relevant to the data
#   - context.py: typed analysis-context / dataset / conversation views
#   - orchestrator.py: LangGraph pipeline with status publication
#   - chat.py: question answering with one evaluate → reanalyse pass
#
# Stage order: profile ──▶ detect ──▶ narrate ──▶ contextualise
# =============================================================================
