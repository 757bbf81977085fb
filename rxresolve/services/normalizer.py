"""Polars-friendly medication text normalization.

Free-text medication strings arrive in many spellings of the same thing:
  - "500mg" vs "500 MG" vs "500 mg"
  - "125 mg per 5 ml" vs "125 MG/5 ML" vs "125mg in 5mL"
  - irregular spacing and casing

This module exposes ``normalize_units`` for single strings (the canonical
form consumed by the parser), ``normalize_strength`` for strength
comparisons in the filter engine, and ``normalize_series`` for Polars
Series so whole batch files can be normalized before resolution.
"""
from __future__ import annotations

import re
import unicodedata

import polars as pl

# ---------------------------------------------------------------------------
# Compiled regex patterns – evaluated once at import time
# ---------------------------------------------------------------------------

# "500mg" → "500 mg", "2mg/ml" → "2 mg/ml"  (units only; "D3" is left alone)
_DIGIT_UNIT = re.compile(r"(\d)(mg|ml|mcg)\b", re.IGNORECASE)

_MG_PER_ML = re.compile(r"\bmg\s*/\s*ml\b", re.IGNORECASE)
_PER_SEPARATOR = re.compile(r"\s+per\s+", re.IGNORECASE)
_IN_SEPARATOR = re.compile(r"\s+in\s+", re.IGNORECASE)
_ML_TOKEN = re.compile(r"\bml\b", re.IGNORECASE)
_MG_TOKEN = re.compile(r"\bmg\b", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_SLASH_SPACING = re.compile(r"\s*/\s*")


def normalize_units(text: str) -> str:
    """
    Canonicalize unit spelling and ratio separators.

    Pipeline:
      1. Unicode NFKC (full-width digits, µ variants)
      2. Split digit/unit boundaries ("500mg" → "500 mg")
      3. "mg / ml" → "MG/ML"
      4. " per " and " in " → "/"
      5. ml → ML, mg → MG
      6. Collapse whitespace

    Returns ``""`` for empty input.  Casing of every non-unit word is kept.
    """
    if not text or not text.strip():
        return ""

    normalized = unicodedata.normalize("NFKC", text)
    normalized = _DIGIT_UNIT.sub(r"\1 \2", normalized)
    normalized = _MG_PER_ML.sub("MG/ML", normalized)
    normalized = _PER_SEPARATOR.sub("/", normalized)
    normalized = _IN_SEPARATOR.sub("/", normalized)
    normalized = _ML_TOKEN.sub("ML", normalized)
    normalized = _MG_TOKEN.sub("MG", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def normalize_strength(text: str) -> str:
    """Uppercase form used to compare strengths: "125 mg / 5 ml" → "125 MG/5 ML"."""
    if not text:
        return ""
    normalized = _WHITESPACE.sub(" ", text.upper())
    normalized = _PER_SEPARATOR.sub("/", normalized)
    normalized = _IN_SEPARATOR.sub("/", normalized)
    normalized = _SLASH_SPACING.sub("/", normalized)
    return normalized.strip()


def normalize_series(series: pl.Series) -> pl.Series:
    """
    Apply ``normalize_units`` to a Polars :class:`~polars.Series` of strings.

    Returns a new ``Utf8`` Series (``None`` → ``""``).
    """
    filled = series.fill_null("")
    return filled.map_elements(
        normalize_units,
        return_dtype=pl.Utf8,
    )


def normalize_dataframe_column(df: pl.DataFrame, col: str) -> pl.DataFrame:
    """Return *df* with an extra ``<col>_normalized`` column."""
    normalized = normalize_series(df[col])
    return df.with_columns(normalized.alias(f"{col}_normalized"))
