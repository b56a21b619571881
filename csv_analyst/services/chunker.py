# =============================================================================
# Record Windows - Row Partitioning + tiktoken Budgeting
# =============================================================================
#
# Large datasets are analysed in windows: contiguous, non-overlapping slices
# of the records, each analysed independently and merged afterwards.
#
# Two sizing strategies:
#   - Fixed rows (Profiler): partition_records(records, window_rows)
#   - Token budget (Detective): rows_for_token_budget() estimates how many
#     rows fit into a prompt budget by tokenising a few serialised rows
#     with tiktoken, then the caller partitions with that size.
#
# DESIGN DECISION: Token-based sizing, not character-based.
# What overflows a context window is tokens. Wide rows with long text cells
# cost far more than narrow numeric rows; a char heuristic misjudges both.
#
# ALGORITHM (rows_for_token_budget):
# 1. Serialise up to _SIZING_ROWS rows to JSON (as they appear in prompts)
# 2. Count tokens with cl100k_base, average per row
# 3. rows = floor(budget / avg_tokens), at least 1
# =============================================================================

from __future__ import annotations

import json
import logging
import math
from typing import Any, Callable, Sequence

import tiktoken

logger = logging.getLogger(__name__)

_SIZING_ROWS = 20


# ---------------------------------------------------------------------------
# Tiktoken Encoder - Cached Singleton
# ---------------------------------------------------------------------------
# Loading the encoder reads the BPE file from disk (downloaded on first
# use). Cached at module level so windows across requests share it.
# ---------------------------------------------------------------------------

_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Lazily initialize and cache the tiktoken encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def count_tokens(text: str) -> int:
    return len(_get_encoder().encode(text))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def partition_records(
    records: Sequence[dict[str, Any]],
    window_rows: int,
) -> list[list[dict[str, Any]]]:
    """
    Split records into contiguous windows of `window_rows` (last may be short).

    Every record lands in exactly one window, in original order.
    """
    if window_rows < 1:
        raise ValueError(f"window_rows must be >= 1, got {window_rows}")
    return [
        list(records[i:i + window_rows])
        for i in range(0, len(records), window_rows)
    ]


def rows_for_token_budget(
    records: Sequence[dict[str, Any]],
    budget: int,
    counter: Callable[[str], int] | None = None,
) -> int:
    """
    Estimate how many rows fit into `budget` prompt tokens.

    Args:
        records: Records to measure (only the first few are tokenised).
        budget: Token budget for one window's sample data.
        counter: Token counter, defaults to tiktoken cl100k_base.

    Returns:
        Row count >= 1 (a single row is always sent, even if over budget).
    """
    if not records:
        return 1
    counter = counter or count_tokens

    head = records[:_SIZING_ROWS]
    tokens = sum(counter(json.dumps(row, default=str)) for row in head)
    per_row = max(1.0, tokens / len(head))
    rows = max(1, math.floor(budget / per_row))

    logger.debug(
        "Token budget %d: ~%.1f tokens/row → %d rows per window",
        budget, per_row, rows,
    )
    return rows
