"""Deterministic filter → score → verify → explain stages.

Stage Summary
-------------
    A   Hard filter: dispensable type (SCD, SBD, GPCK, BPCK) and Active status
    B   Strength / concentration must appear in the concept name (substring
        after normalization, or equal mg/ml ratio within RATIO_TOLERANCE).
        Dose form is a soft filter with one hard case: a "chewable" tablet
        is rejected when the input never asked for one.
    S   Composite score (approx score + source, type, brand, route and
        market-presence bonuses), stable descending sort
    V   Verification: fresh status check must say Active and the type must
        still be dispensable; first passing candidate wins
    D   Human-readable differences between input and winner (advisory)

Usage
-----
    kept    = filter_candidates(candidates, parsed)
    ranked  = rank_candidates(kept, parsed)
    winner  = await select_winner(client, ranked)
    diffs   = generate_differences(parsed, winner.value)
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from rxresolve.core.exceptions import TerminologyServiceError
from rxresolve.core.vocabulary import (
    DEFAULT_SCORING_WEIGHTS,
    DISPENSABLE_TYPES,
    FORM_CANONICAL,
    FORM_NAME_VARIANTS,
    PRIMARY_SOURCE,
    SECONDARY_SOURCES,
    ScoringWeights,
)
from rxresolve.models.medication import Candidate, ConceptStatus, ParsedMedication
from rxresolve.services.candidates import StageResult
from rxresolve.services.normalizer import normalize_strength
from rxresolve.services.rxnav_client import RxNavClient

logger = logging.getLogger(__name__)

#: Two concentrations are equal when their mg/ml ratios differ by less than this.
RATIO_TOLERANCE: float = 0.01

NO_DIFFERENCES = "—"
NO_MATCH = "No match found"

_RATIO_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s*MG\s*/\s*(\d+(?:\.\d+)?)?\s*ML",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Attribute predicates
# ---------------------------------------------------------------------------

def _ratios(text: str) -> list[float]:
    ratios: list[float] = []
    for numerator, denominator in _RATIO_RE.findall(text):
        den = float(denominator) if denominator else 1.0
        if den:
            ratios.append(float(numerator) / den)
    return ratios


def name_has_strength(name: str, required: str) -> bool:
    """
    True when *name* carries the strength or concentration *required*.

    The substring must not continue a larger number ("500 MG" is not found in
    "1500 MG").  Concentrations also match by ratio: "125 MG/5 ML" == "25 MG/ML".
    """
    normalized_name = normalize_strength(name)
    normalized_required = normalize_strength(required)
    if not normalized_required:
        return True

    if re.search(r"(?<![\d.])" + re.escape(normalized_required), normalized_name):
        return True

    required_ratios = _ratios(normalized_required)
    if not required_ratios:
        return False
    target = required_ratios[0]
    return any(abs(target - ratio) < RATIO_TOLERANCE for ratio in _ratios(normalized_name))


def canonical_form(form: str) -> str:
    return FORM_CANONICAL.get(form.lower(), form.lower())


def name_has_form(name: str, form: str) -> bool:
    lowered = name.lower()
    canonical = canonical_form(form)
    variants = FORM_NAME_VARIANTS.get(canonical, (canonical,))
    return any(variant in lowered for variant in variants)


def _is_unrequested_chewable(name: str, parsed: ParsedMedication) -> bool:
    return (
        parsed.dose_form == "tablet"
        and "chewable" in name.lower()
        and "chewable" not in parsed.original.lower()
    )


# ---------------------------------------------------------------------------
# Stage A + B — filter
# ---------------------------------------------------------------------------

def filter_candidates(candidates: Iterable[Candidate], parsed: ParsedMedication) -> list[Candidate]:
    """Apply the hard type/status filter, then the strength and form filters."""
    dispensable = [
        c for c in candidates
        if c.type in DISPENSABLE_TYPES and c.status == ConceptStatus.ACTIVE.value
    ]

    required_strength = parsed.strength_or_concentration
    kept: list[Candidate] = []
    for candidate in dispensable:
        if required_strength and not name_has_strength(candidate.name, required_strength):
            logger.debug("Strength mismatch, dropped %s %r", candidate.id, candidate.name)
            continue
        # Form stays soft; only the unrequested chewable variant is excluded.
        if parsed.dose_form and not name_has_form(candidate.name, parsed.dose_form):
            if _is_unrequested_chewable(candidate.name, parsed):
                logger.debug("Chewable variant not requested, dropped %s %r", candidate.id, candidate.name)
                continue
        kept.append(candidate)
    return kept


# ---------------------------------------------------------------------------
# Stage S — composite score
# ---------------------------------------------------------------------------

def score_candidate(
    candidate: Candidate,
    parsed: ParsedMedication,
    weights: ScoringWeights = DEFAULT_SCORING_WEIGHTS,
) -> float:
    score = candidate.approx_score or 0.0

    if candidate.source == PRIMARY_SOURCE:
        score += weights.primary_source
    elif candidate.source in SECONDARY_SOURCES:
        score += weights.secondary_source

    if candidate.type:
        score += weights.type_bonus.get(candidate.type, 0.0)

    name = candidate.name.lower()
    if parsed.brand and parsed.brand.lower() in name:
        score += weights.brand_match
    if parsed.route and parsed.route.lower() in name:
        score += weights.route_match
    if candidate.market_presence_count > 0:
        score += weights.market_presence

    return score


def rank_candidates(
    candidates: list[Candidate],
    parsed: ParsedMedication,
    weights: ScoringWeights = DEFAULT_SCORING_WEIGHTS,
) -> list[Candidate]:
    """Annotate ``composite_score`` in place; stable sort, best first."""
    for candidate in candidates:
        candidate.composite_score = score_candidate(candidate, parsed, weights)
    return sorted(candidates, key=lambda c: c.composite_score or 0.0, reverse=True)


# ---------------------------------------------------------------------------
# Stage V — verification
# ---------------------------------------------------------------------------

async def verify_candidate(client: RxNavClient, candidate: Candidate) -> StageResult[bool]:
    """Fresh status check plus dispensable-type check; lookup errors fail verification."""
    try:
        status = await client.get_status(candidate.id)
    except TerminologyServiceError as exc:
        return StageResult(False, [f"[{candidate.id}] Verification status error: {exc}"])

    if status.status != ConceptStatus.ACTIVE.value:
        return StageResult(False, [f"[{candidate.id}] Verification status: {status.status}"])
    if candidate.type not in DISPENSABLE_TYPES:
        return StageResult(False, [f"[{candidate.id}] Verification type not dispensable: {candidate.type}"])
    return StageResult(True)


async def select_winner(client: RxNavClient, ranked: list[Candidate]) -> StageResult[Optional[Candidate]]:
    log: list[str] = []
    for candidate in ranked:
        verdict = await verify_candidate(client, candidate)
        log.extend(verdict.log)
        if verdict.value:
            log.append(f"Selected winner: {candidate.id} ({candidate.type}) - {candidate.name}")
            return StageResult(candidate, log)
        log.append(f"Candidate {candidate.id} failed verification")
    return StageResult(None, log)


# ---------------------------------------------------------------------------
# Stage D — differences
# ---------------------------------------------------------------------------

def generate_differences(parsed: ParsedMedication, winner: Optional[Candidate]) -> list[str]:
    if winner is None:
        return [NO_MATCH]

    diffs: list[str] = []
    winner_name = winner.name.lower()

    if parsed.ingredient and parsed.ingredient.lower() not in winner_name:
        diffs.append(f'Ingredient differs: input "{parsed.ingredient}" vs resolved "{winner.name}"')

    strength = parsed.strength_or_concentration
    if strength and not name_has_strength(winner.name, strength):
        diffs.append(f'Strength/concentration differs: input "{strength}" not found in resolved name')

    if parsed.dose_form and not name_has_form(winner.name, parsed.dose_form):
        diffs.append(f'Form differs: input "{parsed.dose_form}" vs resolved form in "{winner.name}"')

    if parsed.brand and parsed.brand.lower() not in winner_name:
        diffs.append(
            f'Brand not found: input brand "{parsed.brand}" not in resolved name; '
            f"returning generic {winner.type}"
        )

    if _is_unrequested_chewable(winner.name, parsed):
        diffs.append('Form differs: input "tablet" vs resolved "tablet, chewable"')

    return diffs or [NO_DIFFERENCES]
