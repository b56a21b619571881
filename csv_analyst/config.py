# =============================================================================
# Application Configuration - Pydantic Settings
# =============================================================================
#
# All tunables live here: provider selection, session storage, sampling and
# windowing thresholds, retry policy, and the optional context lookup.
#
# Pydantic Settings loads values in this priority order (highest first):
#   1. Environment variables (e.g., `REDIS_URL=...`)
#   2. Values from the .env file
#   3. Default values defined below
#
# USAGE:
#   from csv_analyst.config import settings
#   print(settings.sample_size)
# =============================================================================

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Defaults are suitable for local development with an in-memory session
    store. Production deployments set SESSION_BACKEND=redis.
    """

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "CSV Analyst Agent"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    # JSON list in the environment, e.g. CORS_ORIGINS='["https://app.example"]'
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # -------------------------------------------------------------------------
    # Session Storage
    # -------------------------------------------------------------------------
    # One JSON record per session id holds analysisState, chatHistory and
    # agentStatus. Records expire after session_ttl_seconds (24h, matching
    # the session cookie lifetime).
    #
    # Options:
    #   - "redis": shared store, survives restarts, safe across workers
    #   - "memory": single-process dict, for local dev and tests
    # -------------------------------------------------------------------------
    session_backend: str = "memory"  # "redis" or "memory"
    redis_url: str = "redis://localhost:6379/0"
    session_key_prefix: str = "csv-analyst:session:"
    session_ttl_seconds: int = 86_400
    session_cookie_name: str = "session_id"

    # -------------------------------------------------------------------------
    # API Keys - External Services
    # -------------------------------------------------------------------------
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # -------------------------------------------------------------------------
    # LLM Configuration - Multi-Provider
    # -------------------------------------------------------------------------
    # Switching providers is a single .env change:
    #   Claude:      provider=anthropic, model=claude-sonnet-4-6
    #   OpenAI:      provider=openai_compatible, model=gpt-4.1-mini
    #   DeepSeek V3: provider=openai_compatible,
    #                base_url=https://api.deepseek.com/v1, model=deepseek-chat
    # -------------------------------------------------------------------------
    llm_provider: str = "anthropic"  # "anthropic" or "openai_compatible"
    llm_base_url: str | None = None  # Only needed for openai_compatible
    llm_api_key: str | None = None   # Overrides provider-specific key if set
    llm_model: str = "claude-sonnet-4-6"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 4096

    # -------------------------------------------------------------------------
    # Retry Policy
    # -------------------------------------------------------------------------
    # Applied to every model call. Delays grow 1s, 2s, 4s... capped at
    # retry_max_delay_seconds. Only transient failures (empty response,
    # connection drops, 5xx) are retried; schema failures never are.
    # -------------------------------------------------------------------------
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 8.0

    # -------------------------------------------------------------------------
    # Sampling & Windowing
    # -------------------------------------------------------------------------
    # sample_size: rows sent to the model per window.
    # max_dataset_rows: hard ceiling - larger datasets are rejected before
    #   any model call.
    # profiler_window_rows: Profiler windows (and its chunking threshold).
    # detective_chunk_threshold: above this row count the Detective fans out.
    # detective_window_rows: base Detective window size.
    # detective_token_budget: max prompt tokens of sample data per window,
    #   measured with tiktoken.
    # max_parallel_windows: upper bound on Detective windows per run.
    # max_concurrent_model_calls: semaphore for window fan-out.
    # -------------------------------------------------------------------------
    sample_size: int = 100
    max_dataset_rows: int = 50_000
    profiler_window_rows: int = 1_000
    detective_chunk_threshold: int = 1_000
    detective_window_rows: int = 500
    detective_token_budget: int = 12_000
    max_parallel_windows: int = 8
    max_concurrent_model_calls: int = 4

    # -------------------------------------------------------------------------
    # Chat / Refinement
    # -------------------------------------------------------------------------
    chat_history_window: int = 5

    # -------------------------------------------------------------------------
    # Additional Context Lookup (optional)
    # -------------------------------------------------------------------------
    # When unset the Additional-Context stage yields zero contexts.
    # Example: https://api.fda.gov/food/enforcement.json
    # -------------------------------------------------------------------------
    context_lookup_url: str | None = None
    context_lookup_timeout_seconds: float = 10.0
    context_lookup_limit: int = 20
    max_additional_contexts: int = 7

    # -------------------------------------------------------------------------
    # Status Stream
    # -------------------------------------------------------------------------
    status_poll_interval_seconds: float = 0.5
    status_stream_timeout_seconds: float = 600.0

    # -------------------------------------------------------------------------
    # Upload
    # -------------------------------------------------------------------------
    max_upload_bytes: int = 5 * 1024 * 1024
    default_dataset_path: str = "data/sample_dataset.csv"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Create and cache a Settings instance.

    In tests, override with FastAPI's dependency_overrides:
        app.dependency_overrides[get_settings] = lambda: Settings(debug=True)
    """
    return Settings()


# ---------------------------------------------------------------------------
# Module-level convenience instance
# ---------------------------------------------------------------------------
settings = get_settings()
