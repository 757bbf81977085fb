"""
Thin async client for the public RxNav REST API (National Library of Medicine).

Base URL : https://rxnav.nlm.nih.gov/REST
Auth     : none (public service, JSON responses)

The client exposes exactly the five lookups the resolution pipeline needs:

    find_exact(name)          /rxcui.json?name=&search=1
    approximate_term(term)    /approximateTerm.json?term=&maxEntries=
    get_properties(id)        /rxcui/{id}/properties.json  (+ status.json)
    get_status(id)            /rxcui/{id}/status.json
    get_ndc_count(id)         /rxcui/{id}/ndcs.json

Every method raises ``TerminologyServiceError`` on network errors, non-2xx
responses or payloads that cannot be read.  Recovery is the caller's job.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from rxresolve.core.config import Settings, get_settings
from rxresolve.core.exceptions import TerminologyServiceError
from rxresolve.models.medication import ConceptStatus
from rxresolve.models.terminology import ApproximateMatch, ConceptProperties, StatusInfo

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _as_list(value: Any) -> list[Any]:
    """RxNav returns a bare object instead of a one-element list in some payloads."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _parse_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def split_synonyms(raw: Any) -> list[str]:
    """Split a pipe-delimited synonym string: "A | B||C" → ["A", "B", "C"]."""
    if not raw:
        return []
    return [part.strip() for part in str(raw).split("|") if part.strip()]


def _successor_id(status_block: dict[str, Any]) -> Optional[str]:
    # Two shapes are seen in the wild:
    #   {"minConceptGroup": {"minConcept": [{"rxcui": "..."}]}}
    #   {"minConcept": {"rxcui": "..."}}
    group = status_block.get("minConceptGroup") or {}
    concepts = _as_list(group.get("minConcept")) or _as_list(status_block.get("minConcept"))
    for concept in concepts:
        if isinstance(concept, dict) and concept.get("rxcui"):
            return str(concept["rxcui"])
    return None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RxNavClient:
    """
    Async RxNav lookups over a shared ``aiohttp.ClientSession``.

    The session is injected so that one resolution (or one batch) reuses a
    single connection pool; the client never closes it.
    """

    def __init__(
        self,
        http_session: aiohttp.ClientSession,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self._session = http_session
        self._base_url = settings.rxnav_base_url.rstrip("/")
        self._max_entries = settings.rxnav_max_entries

    async def _get_json(self, path: str, params: Optional[dict[str, str]] = None) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            async with self._session.get(url, params=params) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)
        except aiohttp.ClientResponseError as exc:
            raise TerminologyServiceError(
                f"RxNav {path} returned HTTP {exc.status}", status=exc.status
            ) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise TerminologyServiceError(f"RxNav {path} failed: {exc}") from exc

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise TerminologyServiceError(f"RxNav {path} returned an unexpected payload")
        return data

    # ---- (a) exact-name lookup -------------------------------------------

    async def find_exact(self, name: str) -> list[str]:
        data = await self._get_json("/rxcui.json", params={"name": name, "search": "1"})
        ids = (data.get("idGroup") or {}).get("rxnormId")
        return [str(rxcui) for rxcui in _as_list(ids) if rxcui]

    # ---- (b) approximate-term lookup -------------------------------------

    async def approximate_term(self, term: str) -> list[ApproximateMatch]:
        data = await self._get_json(
            "/approximateTerm.json",
            params={"term": term, "maxEntries": str(self._max_entries)},
        )
        rows = (data.get("approximateGroup") or {}).get("candidate")
        matches: list[ApproximateMatch] = []
        for row in _as_list(rows):
            if not isinstance(row, dict) or not row.get("rxcui"):
                continue
            matches.append(
                ApproximateMatch(
                    id=str(row["rxcui"]),
                    name=row.get("name") or None,
                    alt_id=str(row["rxaui"]) if row.get("rxaui") else None,
                    source=row.get("source") or None,
                    score=_parse_float(row.get("score")),
                )
            )
        return matches

    # ---- (c) properties ---------------------------------------------------

    async def get_properties(self, rxcui: str) -> ConceptProperties:
        """
        Name, type and synonyms from properties.json, plus the concept status.

        properties.json carries no status field, so the status comes from a
        second status.json call.
        """
        data = await self._get_json(f"/rxcui/{rxcui}/properties.json")
        props = data.get("properties")
        if not isinstance(props, dict):
            raise TerminologyServiceError(f"RxNav has no properties for {rxcui}", status=404)

        status = await self.get_status(rxcui)
        return ConceptProperties(
            id=str(props.get("rxcui") or rxcui),
            name=props.get("name") or "",
            type=props.get("tty") or None,
            status=status.status,
            synonyms=split_synonyms(props.get("synonym")),
        )

    # ---- (d) status -------------------------------------------------------

    async def get_status(self, rxcui: str) -> StatusInfo:
        data = await self._get_json(f"/rxcui/{rxcui}/status.json")
        block = data.get("rxcuiStatus") or {}
        status = block.get("status") or ConceptStatus.NOT_FOUND.value
        successor = _successor_id(block) if status == ConceptStatus.REMAPPED.value else None
        return StatusInfo(status=status, successor_id=successor)

    # ---- (e) market presence ---------------------------------------------

    async def get_ndc_count(self, rxcui: str) -> int:
        data = await self._get_json(f"/rxcui/{rxcui}/ndcs.json")
        group = data.get("ndcGroup") or {}
        ndc_list = group.get("ndcList") or {}
        ndcs = ndc_list.get("ndc") if isinstance(ndc_list, dict) else None
        if ndcs is None:
            ndcs = group.get("ndc")
        return len(_as_list(ndcs))
