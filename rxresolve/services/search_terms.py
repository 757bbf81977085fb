"""Search term generation: ParsedMedication → ordered lookup strings.

Terms are emitted most-specific first so the collector records narrow,
exact phrasings before broader terms that risk false positives:

    1. ingredient + strength + form label + [brand]
    2. same without brand
    3. concentration phrasings "X/Y" and "X per Y"
    4. route-qualified phrasing ("Oral" dropped when the route is oral)
    5. short form synonym (Tab, Cap, Susp)
    6. ingredient + strength, no form
    7. brand-first phrasing
    8. ingredient alone
"""
from __future__ import annotations

import logging
from typing import Optional

from rxresolve.core.vocabulary import (
    FORM_LABELS,
    FORM_SHORT_LABELS,
    ROUTE_FORM_PREFIX,
    ROUTE_PREFIXABLE_FORMS,
)
from rxresolve.models.medication import ParsedMedication

logger = logging.getLogger(__name__)


def form_label(dose_form: Optional[str], route: Optional[str]) -> str:
    """
    RxNorm-style dose form label.

    >>> form_label("tablet", "oral")
    'Oral Tablet'
    >>> form_label("solution", "injection")
    'Injectable Solution'
    >>> form_label("patch", None)
    'Patch'
    """
    if not dose_form:
        return ""
    base = FORM_LABELS.get(dose_form, dose_form)
    if route and dose_form in ROUTE_PREFIXABLE_FORMS.get(route, frozenset()):
        return f"{ROUTE_FORM_PREFIX[route]} {base}"
    return base


def _concentration_variants(ingredient: str, concentration: str) -> list[str]:
    numerator, _, denominator = concentration.partition("/")
    numerator, denominator = numerator.strip(), denominator.strip()
    return [
        f"{ingredient} {numerator}/{denominator}",
        f"{ingredient} {numerator} per {denominator}",
    ]


def build_terms(parsed: ParsedMedication) -> list[str]:
    """Ordered, duplicate-free, non-empty search terms for *parsed*."""
    ingredient = parsed.ingredient
    strength = parsed.strength_or_concentration or ""
    brand = parsed.brand
    label = form_label(parsed.dose_form, parsed.route)
    base_label = FORM_LABELS.get(parsed.dose_form, "") if parsed.dose_form else ""

    terms: list[str] = []

    if brand and strength and label:
        terms.append(f"{ingredient} {strength} {label} [{brand}]")

    if strength and label:
        terms.append(f"{ingredient} {strength} {label}")

    if parsed.is_concentration and parsed.concentration:
        terms.extend(_concentration_variants(ingredient, parsed.concentration))

    if strength and label:
        if parsed.route == "oral":
            terms.append(f"{ingredient} {strength} {base_label}")
        elif parsed.route:
            terms.append(f"{ingredient} {strength} {parsed.route} {base_label}")

    short = FORM_SHORT_LABELS.get(parsed.dose_form or "")
    if strength and short:
        terms.append(f"{ingredient} {strength} {short}")

    if strength:
        terms.append(f"{ingredient} {strength}")

    if brand and strength and label:
        terms.append(f"{brand} {ingredient} {strength} {label}")

    terms.append(ingredient)

    unique: list[str] = []
    seen: set[str] = set()
    for term in terms:
        cleaned = " ".join(term.split())
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            unique.append(cleaned)

    logger.debug("build_terms(%r) -> %d terms", parsed.original, len(unique))
    return unique
