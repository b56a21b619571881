# =============================================================================
# Error Taxonomy
# =============================================================================
#
# Every failure the core can surface is one of four categories (plus
# StoreError for session storage outages). Each carries
# a stable machine-checkable `code` and an HTTP `status_code`, so the API
# layer renders them without inspecting messages.
#
#   InputError       400-class  bad dataset, missing question, bad session id
#   StateError       400        operation needs an analysis that isn't there
#   UpstreamError    401/429/5xx model call failed (auth, quota, rate, empty,
#                               transient, or the provider rejected the request)
#   ValidationError  500        model payload failed the stage schema
#
# Only UpstreamError kinds marked retryable are retried by
# services.retry.with_retry. Everything else surfaces immediately.
# =============================================================================

from __future__ import annotations

import enum


class AnalysisError(Exception):
    """Base class for all errors raised by the analysis core."""

    code: str = "internal_error"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Input / State
# ---------------------------------------------------------------------------


class InputError(AnalysisError):
    """Client supplied something unusable. Never retried."""

    code = "invalid_input"
    status_code = 400


class SessionFormatError(InputError):
    """Session identifier failed format validation."""

    code = "invalid_session_id"


class DatasetTooLargeError(InputError):
    """Dataset row count exceeds the configured ceiling."""

    code = "dataset_too_large"
    status_code = 413


class StateError(AnalysisError):
    """Operation requires a prior analysis that the session doesn't have."""

    code = "no_analysis"
    status_code = 400


# ---------------------------------------------------------------------------
# Upstream (model provider)
# ---------------------------------------------------------------------------


class UpstreamErrorKind(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    EMPTY_RESPONSE = "empty_response"
    TRANSIENT = "transient"
    REJECTED = "upstream_rejected"


_UPSTREAM_STATUS: dict[UpstreamErrorKind, int] = {
    UpstreamErrorKind.UNAUTHENTICATED: 401,
    UpstreamErrorKind.QUOTA_EXCEEDED: 429,
    UpstreamErrorKind.RATE_LIMITED: 429,
    UpstreamErrorKind.EMPTY_RESPONSE: 502,
    UpstreamErrorKind.TRANSIENT: 502,
    UpstreamErrorKind.REJECTED: 502,
}

_RETRYABLE_KINDS = {UpstreamErrorKind.EMPTY_RESPONSE, UpstreamErrorKind.TRANSIENT}


class UpstreamError(AnalysisError):
    """The model call itself failed."""

    def __init__(self, message: str, kind: UpstreamErrorKind) -> None:
        super().__init__(
            message,
            code=kind.value,
            status_code=_UPSTREAM_STATUS[kind],
        )
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE_KINDS


# ---------------------------------------------------------------------------
# Validation (model output)
# ---------------------------------------------------------------------------


class ValidationError(AnalysisError):
    """
    Model returned a payload that doesn't match the stage schema.

    Not retried. Stages with a resilience policy (Detective) catch this and
    substitute a fallback; all others let it propagate.
    """

    code = "invalid_model_output"
    status_code = 500


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------


class StoreError(AnalysisError):
    """Session store unreachable or holding an unreadable record."""

    code = "store_unavailable"
    status_code = 503
