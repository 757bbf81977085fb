"""Free-text medication parser for RxCUI resolution.

Turns strings such as ``"amoxicillin 250 mg/5 ml oral suspension [Amoxil]"``
into a frozen :class:`ParsedMedication`.  ``parse`` is total: it never
raises and degrades to best-effort extraction.

Public API
----------
    parsed: ParsedMedication = parse("metformin 500 MG oral tablet")

Layer summary
-------------
    Layer 0  Brand extraction ([Brand] blocks removed from the working text)
    Layer 1  Unit normalization (normalizer.normalize_units)
    Layer 2  Strength / concentration (concentration pattern tried first)
    Layer 3  Dose form and route (ordered keyword tables, oral default)
    Layer 4  Ingredient (primary extraction, then documented fallbacks)
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from rxresolve.core.vocabulary import (
    DOSE_FORM_PATTERNS,
    INGREDIENT_NOISE_RE,
    ORAL_IMPLIED_FORMS,
    ROUTE_PATTERNS,
)
from rxresolve.models.medication import ParsedMedication
from rxresolve.services.normalizer import normalize_units

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Compiled regex patterns
# ---------------------------------------------------------------------------

_BRACKET_RE = re.compile(r"\[([^\]]+)\]")

# Concentration must be tried BEFORE bare strength.  The denominator number is
# optional so that "2 MG/ML" is a concentration too.
_CONCENTRATION_RE = re.compile(
    r"(?P<num>\d+(?:\.\d+)?)\s*MG\s*/\s*(?P<den>\d+(?:\.\d+)?)?\s*ML\b",
    re.IGNORECASE,
)
_STRENGTH_RE = re.compile(r"(?P<num>\d+(?:\.\d+)?)\s*MG\b", re.IGNORECASE)

# Leading package quantity such as "10 ML morphine ..." (not part of the name)
_LEADING_QUANTITY_RE = re.compile(r"^\s*\d+(?:\.\d+)?\s*(?:ML|MG)\b\s*", re.IGNORECASE)
_FIRST_DIGIT_RE = re.compile(r"\d")
_TOKEN_EDGE_CHARS = ",;:()[]{}-"

#: Reconstituted-powder convention: a concentration with no form is a suspension.
DEFAULT_CONCENTRATION_FORM = "suspension"


# ---------------------------------------------------------------------------
# Layer 0 — brand
# ---------------------------------------------------------------------------

def _extract_brand(text: str) -> tuple[str, Optional[str]]:
    """Return (text without bracket blocks, first bracket content or None)."""
    match = _BRACKET_RE.search(text)
    brand = match.group(1).strip() if match else None
    remainder = _BRACKET_RE.sub(" ", text)
    return re.sub(r"\s+", " ", remainder).strip(), brand or None


# ---------------------------------------------------------------------------
# Layer 2 — strength / concentration
# ---------------------------------------------------------------------------

def _extract_strength(text: str) -> tuple[Optional[str], Optional[str]]:
    """Return (strength, concentration); at most one of them is set."""
    conc = _CONCENTRATION_RE.search(text)
    if conc:
        den = conc.group("den")
        if den:
            return None, f"{conc.group('num')} MG/{den} ML"
        return None, f"{conc.group('num')} MG/ML"

    strength = _STRENGTH_RE.search(text)
    if strength:
        return f"{strength.group('num')} MG", None
    return None, None


# ---------------------------------------------------------------------------
# Layer 3 — dose form and route
# ---------------------------------------------------------------------------

def _match_first(text: str, table: list[tuple[re.Pattern[str], str]]) -> Optional[str]:
    """First table entry whose pattern occurs in *text*; table order breaks ties."""
    for pattern, canonical in table:
        if pattern.search(text):
            return canonical
    return None


# ---------------------------------------------------------------------------
# Layer 4 — ingredient
# ---------------------------------------------------------------------------

def _first_token(text: str) -> str:
    for token in text.split():
        cleaned = token.strip(_TOKEN_EDGE_CHARS)
        if cleaned:
            return cleaned
    return ""


def _before_first_digit(text: str) -> str:
    return _FIRST_DIGIT_RE.split(text, maxsplit=1)[0].strip()


def _extract_ingredient(text: str) -> str:
    """
    Two-tier ingredient extraction.

    Primary:  drop a leading package quantity ("10 ML"), take the text before
              the first digit, strip unit/form/route words, first token.
    Fallback: first token of the raw text before the first digit, then the
              whole pre-digit text.
    """
    primary_source = _before_first_digit(_LEADING_QUANTITY_RE.sub("", text))
    primary = _first_token(INGREDIENT_NOISE_RE.sub(" ", primary_source))
    if primary:
        return primary

    before = _before_first_digit(text)
    fallback = _first_token(before) or before
    if fallback:
        logger.debug("Ingredient fallback used for %r -> %r", text, fallback)
    return fallback


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def parse(text: str) -> ParsedMedication:
    """
    Parse one free-text medication string.

    Never raises: empty or unparseable input yields a ParsedMedication with
    an empty ingredient and no attributes.
    """
    original = (text or "").strip()
    without_brand, brand = _extract_brand(original)
    normalized = normalize_units(without_brand)

    strength, concentration = _extract_strength(normalized)
    is_concentration = concentration is not None

    dose_form = _match_first(normalized, DOSE_FORM_PATTERNS)
    if is_concentration and dose_form is None:
        dose_form = DEFAULT_CONCENTRATION_FORM

    route = _match_first(normalized, ROUTE_PATTERNS)
    if route is None and dose_form in ORAL_IMPLIED_FORMS:
        route = "oral"

    ingredient = _extract_ingredient(normalized)

    parsed = ParsedMedication(
        ingredient=ingredient,
        strength=strength,
        concentration=concentration,
        is_concentration=is_concentration,
        dose_form=dose_form,
        route=route,
        brand=brand,
        original=original,
    )
    logger.debug(
        "parse(%r): ingredient=%r strength=%r concentration=%r form=%r route=%r brand=%r",
        original, parsed.ingredient, parsed.strength, parsed.concentration,
        parsed.dose_form, parsed.route, parsed.brand,
    )
    return parsed


def normalized_text(text: str) -> str:
    """Canonical text form reported on a Resolution (brand block kept)."""
    return normalize_units((text or "").strip())
