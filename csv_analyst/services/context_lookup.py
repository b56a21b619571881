# =============================================================================
# External Context Lookup - openFDA Enforcement Reports
# =============================================================================
#
# The Additional-Context stage asks a lookup for candidate real-world events
# (recalls, advisories) and lets the model pick the relevant ones. The
# lookup is optional: with CONTEXT_LOOKUP_URL unset, get_context_lookup()
# returns None and the stage yields zero contexts.
#
# Default target is the openFDA food enforcement endpoint:
#   https://api.fda.gov/food/enforcement.json?search=...&limit=20
# The response shape is {"results": [{report_date, reason_for_recall,
# product_description, recalling_firm, ...}]}. A 404 means "no matches".
#
# DESIGN DECISION: httpx.AsyncClient per call, with a hard timeout.
# Lookups happen once per analysis; pooling buys nothing and a fresh
# client can't leak connections across event loops in tests.
# =============================================================================

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

import httpx

from csv_analyst.config import settings
from csv_analyst.models.domain import AgencyTag

logger = logging.getLogger(__name__)

_TERM_RE = re.compile(r"[A-Za-z][A-Za-z\-]{3,}")
_MAX_TERMS = 5

# Words that show up in summaries and generic column names but never narrow
# a product_description search.
_STOPWORDS = frozenset({
    "about", "across", "also", "among", "amount", "average", "between",
    "column", "columns", "contains", "count", "data", "dataset", "date",
    "dates", "each", "entries", "entry", "field", "fields", "from", "have",
    "includes", "including", "information", "into", "month", "name", "number",
    "over", "period", "record", "records", "reported", "rows", "several",
    "shows", "that", "their", "there", "these", "this", "those", "total",
    "type", "value", "values", "various", "which", "with", "year", "years",
})


@dataclass
class CandidateEvent:
    """One event returned by a lookup, before the model judges relevance."""

    source: AgencyTag
    date: str  # ISO 8601 (YYYY-MM-DD)
    title: str
    detail: str = ""


class ContextLookup(Protocol):
    async def search(self, query: str) -> list[CandidateEvent]:
        """search(queryContext) → candidate events."""
        ...


class OpenFDALookup:
    """openFDA enforcement-report search over httpx."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float | None = None,
        limit: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout or settings.context_lookup_timeout_seconds
        self._limit = limit or settings.context_lookup_limit
        self._transport = transport

    async def search(self, query: str) -> list[CandidateEvent]:
        params: dict[str, str | int] = {"limit": self._limit}
        terms = _query_terms(query)
        if terms:
            params["search"] = " ".join(
                f'product_description:"{term}"' for term in terms
            )

        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport,
        ) as client:
            response = await client.get(self._url, params=params)

        if response.status_code == 404:
            return []
        response.raise_for_status()

        body = response.json()
        results = body.get("results") if isinstance(body, dict) else None
        if not isinstance(results, list):
            logger.warning("Context lookup returned an unexpected body; ignoring it")
            return []
        events = [_to_event(item) for item in results if isinstance(item, dict)]
        logger.info("Context lookup returned %d candidate events", len(events))
        return events


def _query_terms(query: str) -> list[str]:
    seen: list[str] = []
    for match in _TERM_RE.findall(query):
        term = match.lower()
        if term not in _STOPWORDS and term not in seen:
            seen.append(term)
        if len(seen) == _MAX_TERMS:
            break
    return seen


def _to_event(item: dict) -> CandidateEvent:
    raw_date = str(item.get("report_date") or item.get("recall_initiation_date") or "")
    if len(raw_date) == 8 and raw_date.isdigit():
        raw_date = f"{raw_date[:4]}-{raw_date[4:6]}-{raw_date[6:]}"
    return CandidateEvent(
        source=AgencyTag.FDA,
        date=raw_date,
        title=str(item.get("reason_for_recall") or "").strip(),
        detail=str(item.get("product_description") or "").strip(),
    )


def get_context_lookup() -> ContextLookup | None:
    """Configured lookup, or None when no endpoint is set."""
    if not settings.context_lookup_url:
        return None
    return OpenFDALookup(settings.context_lookup_url)
