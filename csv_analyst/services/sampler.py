# =============================================================================
# Record Sampler
# =============================================================================
#
# Reduces a list of records to at most `n` before it goes into a prompt.
#
#   identity    |records| <= n → a copy of the records, unchanged
#   stratified  head 20% + evenly spaced middle + tail 20%
#   systematic  every floor(|records| / n)-th record
#   random      uniform sample without replacement
#
# Stratified and systematic keep the original relative order and return
# exactly n records when |records| > n. The source list is never mutated.
#
# DESIGN DECISION: Stratified keeps explicit head/tail boundaries.
# CSV exports are often sorted (by date, by id, by value). The first and
# last rows carry the range of the data; evenly spaced middle picks carry
# the shape between them.
# =============================================================================

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Any, Literal, Sequence

logger = logging.getLogger(__name__)

SamplingMethod = Literal["stratified", "systematic", "random"]

_BOUNDARY_FRACTION = 0.2

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%b %d, %Y",
    "%d %b %Y",
)


def sample(
    records: Sequence[dict[str, Any]],
    n: int,
    method: SamplingMethod = "stratified",
    rng: random.Random | None = None,
) -> list[dict[str, Any]]:
    """
    Return at most `n` records chosen by `method`.

    Args:
        records: Source records. Not modified.
        n: Target size. Must be >= 0.
        method: "stratified", "systematic" or "random".
        rng: Random source for "random" (seed it for reproducible tests).
    """
    if n < 0:
        raise ValueError(f"sample size must be >= 0, got {n}")

    total = len(records)
    if total <= n:
        return list(records)
    if n == 0:
        return []

    if method == "stratified":
        return [records[i] for i in _stratified_indices(total, n)]
    if method == "systematic":
        step = total // n
        return list(records[::step][:n])
    if method == "random":
        return (rng or random).sample(list(records), n)

    raise ValueError(f"unknown sampling method: {method!r}")


def _stratified_indices(total: int, n: int) -> list[int]:
    """Strictly increasing indices into range(total), exactly n of them."""
    boundary = int(n * _BOUNDARY_FRACTION)
    middle = n - 2 * boundary

    head = list(range(boundary))
    tail = list(range(total - boundary, total))

    start = boundary
    span = total - 2 * boundary
    # span >= middle because total > n; floor(i*span/middle) is strictly
    # increasing for span >= middle, so the picks never collide.
    mid = [start + (i * span) // middle for i in range(middle)] if middle else []

    return head + mid + tail


def looks_time_ordered(records: Sequence[dict[str, Any]]) -> bool:
    """True when the first record has a string field that parses as a date."""
    if not records:
        return False
    for value in records[0].values():
        if isinstance(value, str) and parse_date(value) is not None:
            return True
    return False


def parse_date(value: str) -> datetime | None:
    text = value.strip()
    # Plain numbers ("42", "3.14") are not dates
    if not text or text.replace(".", "", 1).lstrip("-").isdigit():
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None
