"""
Candidate collection and hydration.

Stage Summary
-------------
    collect(client, terms)
        For each term, in order: exact-name lookup, then approximate-term
        lookup.  Every returned id is remap-resolved and hydrated once.  IN/MIN
        concepts become the ingredient group anchor; every other hydrated
        concept is keyed by its resolved id (first occurrence wins).

    hydrate(client, rxcui, approx=None)
        Properties + status + NDC count for one id.  Returns ``None`` when
        properties cannot be fetched or the concept is not Active.

Both stages are pure with respect to logging: they return a
``StageResult(value, log)`` and the coordinator owns the attempts log.
Lookup failures are recovered here and never raised to the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar

from rxresolve.core.exceptions import TerminologyServiceError
from rxresolve.core.vocabulary import INGREDIENT_TYPES
from rxresolve.models.medication import Candidate, ConceptStatus, IngredientGroup
from rxresolve.models.terminology import ApproximateMatch
from rxresolve.services.rxnav_client import RxNavClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StageResult(Generic[T]):
    """A stage's output paired with the attempts-log lines it produced."""

    value: T
    log: list[str] = field(default_factory=list)


@dataclass
class CollectionResult:
    candidates: dict[str, Candidate] = field(default_factory=dict)
    group: IngredientGroup = field(default_factory=IngredientGroup)
    seen: set[str] = field(default_factory=set)


# ---------------------------------------------------------------------------
# Remap
# ---------------------------------------------------------------------------


async def resolve_remap(client: RxNavClient, rxcui: str) -> StageResult[str]:
    """Replace a Remapped id with its successor; any failure keeps the id."""
    try:
        status = await client.get_status(rxcui)
    except TerminologyServiceError as exc:
        return StageResult(rxcui, [f"[{rxcui}] Status check failed: {exc}"])

    if status.status == ConceptStatus.REMAPPED.value and status.successor_id:
        return StageResult(status.successor_id, [f"[{rxcui}] Remapped: {rxcui} -> {status.successor_id}"])
    return StageResult(rxcui)


# ---------------------------------------------------------------------------
# Hydrate
# ---------------------------------------------------------------------------


async def hydrate(
    client: RxNavClient,
    rxcui: str,
    approx: Optional[ApproximateMatch] = None,
) -> StageResult[Optional[Candidate]]:
    log: list[str] = []

    try:
        props = await client.get_properties(rxcui)
    except TerminologyServiceError as exc:
        log.append(f"[{rxcui}] Properties error: {exc}")
        return StageResult(None, log)

    log.append(f'[{rxcui}] Properties: name="{props.name}", tty={props.type}, status={props.status}')
    if props.status != ConceptStatus.ACTIVE.value:
        log.append(f"[{rxcui}] Status not Active: {props.status}")
        return StageResult(None, log)

    try:
        ndc_count = await client.get_ndc_count(rxcui)
    except TerminologyServiceError as exc:
        logger.debug("NDC lookup failed for %s: %s", rxcui, exc)
        ndc_count = 0
    if ndc_count > 0:
        log.append(f"[{rxcui}] NDCs found: {ndc_count}")

    candidate = Candidate(
        id=rxcui,
        alt_id=approx.alt_id if approx else None,
        name=props.name or (approx.name if approx and approx.name else ""),
        source=approx.source if approx else None,
        type=props.type,
        approx_score=approx.score if approx else None,
        market_presence_count=ndc_count,
        status=ConceptStatus.ACTIVE,
        synonyms=props.synonyms,
    )
    return StageResult(candidate, log)


# ---------------------------------------------------------------------------
# Collect
# ---------------------------------------------------------------------------


async def _admit(
    client: RxNavClient,
    rxcui: str,
    approx: Optional[ApproximateMatch],
    result: CollectionResult,
    log: list[str],
) -> None:
    # Every id is looked up once per collection; the first occurrence wins.
    if rxcui in result.seen:
        return
    result.seen.add(rxcui)

    remap = await resolve_remap(client, rxcui)
    log.extend(remap.log)
    resolved = remap.value
    if resolved != rxcui:
        if resolved in result.seen:
            return
        result.seen.add(resolved)

    hydrated = await hydrate(client, resolved, approx)
    log.extend(hydrated.log)
    candidate = hydrated.value
    if candidate is None:
        return

    if candidate.type in INGREDIENT_TYPES:
        if result.group.ingredient_id is None:
            result.group = IngredientGroup(ingredient_id=candidate.id, ingredient_name=candidate.name)
            log.append(f"[{candidate.id}] Ingredient group anchor: {candidate.name}")
        return

    result.candidates[candidate.id] = candidate


async def collect(client: RxNavClient, terms: list[str]) -> StageResult[CollectionResult]:
    """Run every term through exact and approximate lookup; never raises."""
    result = CollectionResult()
    log: list[str] = []

    for term in terms:
        log.append(f'Searching term: "{term}"')

        try:
            exact_ids = await client.find_exact(term)
        except TerminologyServiceError as exc:
            log.append(f"Exact search error: {exc}")
            exact_ids = []
        for rxcui in exact_ids:
            await _admit(client, rxcui, None, result, log)

        try:
            approx_matches = await client.approximate_term(term)
        except TerminologyServiceError as exc:
            log.append(f"Approximate search error: {exc}")
            approx_matches = []
        for match in approx_matches:
            await _admit(client, match.id, match, result, log)

    log.append(f"Collected {len(result.candidates)} candidates")
    logger.info(
        "Collected %d candidates from %d terms (group anchor: %s)",
        len(result.candidates), len(terms), result.group.ingredient_id,
    )
    return StageResult(result, log)
