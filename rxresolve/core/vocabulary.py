"""Heuristic vocabulary tables for the RxCUI resolution pipeline.

Everything the parser, term generator, filter engine, scorer and hybrid
matcher treat as "domain knowledge" lives here as plain data, so the tables
can be tuned and tested without touching control flow.

Tables
------
    DOSE_FORM_PATTERNS      ordered keyword → canonical dose form (first match wins)
    ROUTE_PATTERNS          ordered keyword → canonical route
    FORM_LABELS             canonical form → RxNorm display label
    FORM_SHORT_LABELS       canonical form → RxNorm abbreviation (Tab, Cap, Susp)
    FORM_NAME_VARIANTS      canonical form → substrings accepted in a concept name
    ScoringWeights          composite-score bonuses / penalties
    SimilarityHeuristics    hybrid-matcher substitutions and bonus tokens
"""
from __future__ import annotations

import re

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Dose forms and routes
# ---------------------------------------------------------------------------

# Order matters: the first pattern that matches the input decides the form.
DOSE_FORM_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(?:tablet|tab)\b", re.IGNORECASE), "tablet"),
    (re.compile(r"\b(?:capsule|cap)\b", re.IGNORECASE), "capsule"),
    (re.compile(r"\b(?:suspension|susp|oral\s+suspension)\b", re.IGNORECASE), "suspension"),
    (re.compile(r"\b(?:solution|oral\s+solution)\b", re.IGNORECASE), "solution"),
    (re.compile(r"\b(?:injection|inject)\b", re.IGNORECASE), "injection"),
    (re.compile(r"\bpatch\b", re.IGNORECASE), "patch"),
    (re.compile(r"\b(?:inhalation|inhaler)\b", re.IGNORECASE), "inhalation"),
]

ROUTE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\boral\b", re.IGNORECASE), "oral"),
    (re.compile(r"\btopical\b", re.IGNORECASE), "topical"),
    (re.compile(r"\b(?:injection|injectable)\b", re.IGNORECASE), "injection"),
]

#: Forms that imply oral administration when no route keyword is present.
ORAL_IMPLIED_FORMS: frozenset[str] = frozenset({"tablet", "capsule", "suspension", "solution"})

#: Tokens stripped from the pre-digit text before the ingredient is read.
INGREDIENT_NOISE_RE = re.compile(
    r"\b(?:MG/ML|MG|ML|tablet|tab|capsule|cap|suspension|susp|solution|"
    r"injection|injectable|inject|oral|topical|patch|inhalation|inhaler)\b",
    re.IGNORECASE,
)

FORM_LABELS: dict[str, str] = {
    "tablet":     "Tablet",
    "capsule":    "Capsule",
    "suspension": "Suspension",
    "solution":   "Solution",
    "injection":  "Injection",
    "patch":      "Patch",
    "inhalation": "Inhalation",
}

#: Route prefix RxNorm puts in front of the form label ("Oral Tablet").
ROUTE_FORM_PREFIX: dict[str, str] = {
    "oral":      "Oral",
    "topical":   "Topical",
    "injection": "Injectable",
}

#: Forms that accept a route prefix in RxNorm naming.
ROUTE_PREFIXABLE_FORMS: dict[str, frozenset[str]] = {
    "oral":      frozenset({"tablet", "capsule", "suspension", "solution"}),
    "topical":   frozenset({"solution", "suspension", "patch"}),
    "injection": frozenset({"solution", "suspension"}),
}

FORM_SHORT_LABELS: dict[str, str] = {
    "tablet":     "Tab",
    "capsule":    "Cap",
    "suspension": "Susp",
}

FORM_CANONICAL: dict[str, str] = {
    "tablet":     "tablet",
    "tab":        "tablet",
    "capsule":    "capsule",
    "cap":        "capsule",
    "suspension": "suspension",
    "susp":       "suspension",
    "solution":   "solution",
    "injection":  "injection",
    "inject":     "injection",
}

FORM_NAME_VARIANTS: dict[str, tuple[str, ...]] = {
    "tablet":     ("tablet", "tab"),
    "capsule":    ("capsule", "cap"),
    "suspension": ("suspension", "susp", "oral suspension"),
    "solution":   ("solution", "oral solution"),
    "injection":  ("injection", "inject"),
    "inhalation": ("inhalation", "inhaler"),
}

# ---------------------------------------------------------------------------
# Concept types and sources
# ---------------------------------------------------------------------------

#: Clinically dispensable concept types (drugs and packs).
DISPENSABLE_TYPES: frozenset[str] = frozenset({"SCD", "SBD", "GPCK", "BPCK"})

#: Ingredient-level types recorded as the grouping anchor.
INGREDIENT_TYPES: frozenset[str] = frozenset({"IN", "MIN"})

PRIMARY_SOURCE = "RXNORM"
SECONDARY_SOURCES: frozenset[str] = frozenset({"MTHSPL", "NDDF", "MMSL", "VANDF"})


class ScoringWeights(BaseModel):
    """Additive bonuses used by the composite scorer."""

    primary_source: float = 10.0
    secondary_source: float = -10.0
    type_bonus: dict[str, float] = Field(
        default_factory=lambda: {"SBD": 8.0, "SCD": 7.0, "GPCK": 5.0, "BPCK": 4.0}
    )
    brand_match: float = 8.0
    route_match: float = 6.0
    market_presence: float = 6.0

    model_config = {"frozen": True}


DEFAULT_SCORING_WEIGHTS = ScoringWeights()

# ---------------------------------------------------------------------------
# Hybrid similarity heuristics
# ---------------------------------------------------------------------------


class SimilarityHeuristics(BaseModel):
    """Preprocessing substitutions and tie-break bonuses for the hybrid matcher."""

    substitutions: list[tuple[str, str]] = Field(
        default_factory=lambda: [
            (r"actuat(?:e|ion|ions)?", "inhal"),
            (r"aerosol", "inhaler"),
        ]
    )
    brand_tokens: tuple[str, ...] = ("ventolin",)
    clinical_tokens: tuple[str, ...] = ("ventolin", "albuterol", "hfa", "inhal", "inhaler")
    brand_bonus: float = 0.05
    clinical_bonus: float = 0.02
    strength_bonus: float = 0.03

    model_config = {"frozen": True}


DEFAULT_SIMILARITY_HEURISTICS = SimilarityHeuristics()

DEFAULT_SEMANTIC_WEIGHT = 0.85
DEFAULT_LEXICAL_WEIGHT = 0.15
