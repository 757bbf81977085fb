"""Exception hierarchy for rxresolve.

Only configuration problems and embedding-service failures escape the
public entry points.  Terminology lookup errors are raised by the client
and recovered by the pipeline (the term or candidate is skipped and the
failure is written to the attempts log).
"""
from __future__ import annotations


class RxResolveError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(RxResolveError):
    """A required credential or setting is missing or invalid."""


class TerminologyServiceError(RxResolveError):
    """An RxNav request failed (network error, non-2xx status or malformed payload)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class EmbeddingServiceError(RxResolveError):
    """The embedding provider failed; no similarity scoring can proceed."""


class JudgeServiceError(RxResolveError):
    """The LLM judge could not be reached; callers keep the hybrid pick."""
