"""Pydantic models shared by the resolution pipeline and the hybrid matcher."""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class DoseForm(str, Enum):
    TABLET     = "tablet"
    CAPSULE    = "capsule"
    SUSPENSION = "suspension"
    SOLUTION   = "solution"
    INJECTION  = "injection"
    PATCH      = "patch"
    INHALATION = "inhalation"


class Route(str, Enum):
    ORAL      = "oral"
    TOPICAL   = "topical"
    INJECTION = "injection"


class ConceptStatus(str, Enum):
    ACTIVE    = "Active"
    REMAPPED  = "Remapped"
    NOT_FOUND = "NotFound"


# ---------------------------------------------------------------------------
# Parser output
# ---------------------------------------------------------------------------

class ParsedMedication(BaseModel):
    """
    Structured attributes extracted from one free-text medication string.

    Design invariant
    ----------------
    ``is_concentration`` is True iff ``concentration`` is set, and
    ``strength`` / ``concentration`` are never both present.
    """

    ingredient: str
    strength: Optional[str] = None
    concentration: Optional[str] = None
    is_concentration: bool = False
    dose_form: Optional[DoseForm] = None
    route: Optional[Route] = None
    brand: Optional[str] = None
    original: str

    model_config = {"frozen": True, "use_enum_values": True}

    @model_validator(mode="after")
    def check_strength_invariant(self) -> "ParsedMedication":
        if self.is_concentration != (self.concentration is not None):
            raise ValueError("is_concentration must be True exactly when concentration is set")
        if self.strength is not None and self.concentration is not None:
            raise ValueError("strength and concentration are mutually exclusive")
        return self

    @property
    def strength_or_concentration(self) -> Optional[str]:
        return self.concentration or self.strength


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------

class Candidate(BaseModel):
    """A terminology concept under consideration; annotated in place by each stage."""

    id: str
    alt_id: Optional[str] = None
    name: str
    source: Optional[str] = None
    type: Optional[str] = None
    approx_score: Optional[float] = None
    market_presence_count: int = 0
    status: Optional[ConceptStatus] = None
    composite_score: Optional[float] = None
    synonyms: list[str] = Field(default_factory=list)

    model_config = {"use_enum_values": True}


class Verification(BaseModel):
    status_checked: bool
    properties_checked: bool
    market_found: bool


class FinalConcept(BaseModel):
    id: str
    type: str
    name: str
    status: str
    verification: Verification


class IngredientGroup(BaseModel):
    ingredient_id: Optional[str] = None
    ingredient_name: Optional[str] = None


class Resolution(BaseModel):
    """
    Final output of ``resolve_medication``.

    Always returned, even on partial failure: a null ``final`` is a valid
    "no resolution" outcome, not an error.
    """

    input: str
    normalized: str
    final: Optional[FinalConcept] = None
    group_id: IngredientGroup = Field(default_factory=IngredientGroup)
    differences: list[str] = Field(default_factory=list)
    candidates: list[Candidate] = Field(default_factory=list)
    attempts_log: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Hybrid similarity
# ---------------------------------------------------------------------------

class SimilarityEvaluation(BaseModel):
    """
    Per-candidate score breakdown.

    ``adjusted_score`` includes additive tie-break bonuses and may exceed 1;
    it is a ranking value, never a probability.
    """

    candidate: str
    semantic_score: float
    lexical_score: float
    blended_score: float
    adjusted_score: float


class BestMatchResult(BaseModel):
    candidate: Optional[str] = None
    semantic_score: float = 0.0
    lexical_score: float = 0.0
    similarity_score: float = 0.0
    reason: str
    evaluated: list[SimilarityEvaluation] = Field(default_factory=list)
    overridden_by_llm: bool = False


class LlmRankedCandidate(BaseModel):
    name: str
    similarity: float


class LlmMatchResult(BaseModel):
    best_match: Optional[str] = None
    reason: Optional[str] = None
    ranked: list[LlmRankedCandidate] = Field(default_factory=list)
    raw: Any = None

    def similarity_for(self, name: str) -> Optional[float]:
        for entry in self.ranked:
            if entry.name == name:
                return entry.similarity
        return None
