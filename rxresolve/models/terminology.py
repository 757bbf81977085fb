"""Typed views of the RxNav payloads the pipeline consumes."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class ApproximateMatch:
    """One row of an approximate-term lookup."""

    id: str
    name: Optional[str] = None
    alt_id: Optional[str] = None
    source: Optional[str] = None
    score: Optional[float] = None


@dataclass(frozen=True)
class ConceptProperties:
    id: str
    name: str
    type: Optional[str]
    status: str
    synonyms: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class StatusInfo:
    status: str
    successor_id: Optional[str] = None
