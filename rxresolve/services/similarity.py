"""Hybrid semantic + lexical string matcher for medication names.

Given free text and a pool of candidate names (search hits, RxNorm concept
names), ``HybridMatcher.best_match`` picks the closest name.

Pipeline
--------
    1. Preprocess input and candidates identically: lowercase, trim, domain
       substitutions ("actuation" → "inhal", "aerosol" → "inhaler"),
       collapse whitespace.  Candidates are deduplicated by preprocessed
       form; the first original spelling is the one reported.
    2. Semantic score: cosine similarity of cached embedding vectors.
    3. Lexical score: |A ∩ B| / max(|A|, |B|) over word tokens.
    4. Blended score: weights renormalized to sum to 1.
    5. Adjusted score: additive brand / clinical / strength bonuses.  This is
       a ranking value and may exceed 1.

Embeddings are fetched through an ``EmbeddingCache``: content-addressed,
write-once, one in-flight fetch per key.  The cache is unbounded unless
``max_entries`` is given, in which case least-recently-used entries go first.
"""
from __future__ import annotations

import asyncio
import logging
import math
import re
from collections import OrderedDict
from functools import lru_cache
from typing import Optional, Protocol, Sequence

import google.generativeai as genai
from google.api_core.exceptions import GoogleAPIError

from rxresolve.core.config import Settings, get_settings
from rxresolve.core.exceptions import EmbeddingServiceError
from rxresolve.core.vocabulary import (
    DEFAULT_LEXICAL_WEIGHT,
    DEFAULT_SEMANTIC_WEIGHT,
    DEFAULT_SIMILARITY_HEURISTICS,
    SimilarityHeuristics,
)
from rxresolve.models.medication import BestMatchResult, SimilarityEvaluation

logger = logging.getLogger(__name__)

NO_CANDIDATES_REASON = "No candidates available for comparison."
NO_POSITIVE_SCORE_REASON = "No candidate produced a similarity score above zero."

_TOKEN_SEPARATORS = re.compile(r"[,\[\]()/]")
_WHITESPACE = re.compile(r"\s+")
_NUMBER = re.compile(r"\b\d+(?:\.\d+)?\b")
_HAS_DIGIT = re.compile(r"\d")


# ---------------------------------------------------------------------------
# Embedding providers
# ---------------------------------------------------------------------------


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class GeminiEmbedder:
    """Google Generative AI embeddings (``models/text-embedding-004`` by default)."""

    def __init__(self, settings: Optional[Settings] = None, model: Optional[str] = None) -> None:
        settings = settings or get_settings()
        genai.configure(api_key=settings.require_google_api_key())
        self.model = model or settings.embedding_model

    async def embed(self, text: str) -> list[float]:
        try:
            response = await asyncio.to_thread(
                genai.embed_content,
                model=self.model,
                content=text,
                task_type="semantic_similarity",
            )
            embedding = response["embedding"]
        except (GoogleAPIError, ConnectionError, TimeoutError, KeyError, TypeError, ValueError) as exc:
            raise EmbeddingServiceError(f"Embedding request failed: {exc}") from exc

        if not embedding:
            raise EmbeddingServiceError("Embedding response missing data.")
        return list(embedding)


class EmbeddingCache:
    """
    Content-addressed embedding memo shared by every matcher that holds it.

    ``get`` returns the same list object for the same key, and the provider is
    called at most once per key while the entry lives.  Concurrent callers of
    a key that is still being fetched await the same task.  A failed fetch
    is not cached.
    """

    def __init__(self, embedder: Embedder, max_entries: Optional[int] = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive or None")
        self._embedder = embedder
        self._max_entries = max_entries
        self._vectors: OrderedDict[str, list[float]] = OrderedDict()
        self._pending: dict[str, asyncio.Task[list[float]]] = {}

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, key: str) -> bool:
        return key in self._vectors

    async def _fetch(self, key: str) -> list[float]:
        try:
            vector = await self._embedder.embed(key)
            self._vectors[key] = vector
            if self._max_entries is not None:
                while len(self._vectors) > self._max_entries:
                    evicted, _ = self._vectors.popitem(last=False)
                    logger.debug("Embedding cache evicted %r", evicted)
            return vector
        finally:
            self._pending.pop(key, None)

    async def get(self, key: str) -> list[float]:
        if not key:
            raise ValueError("Cannot create embedding for empty text.")

        vector = self._vectors.get(key)
        if vector is not None:
            self._vectors.move_to_end(key)
            return vector

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(key))
            self._pending[key] = task
        return await task


@lru_cache(maxsize=1)
def get_default_cache() -> EmbeddingCache:
    """Process-wide cache backed by Gemini embeddings."""
    settings = get_settings()
    return EmbeddingCache(GeminiEmbedder(settings), max_entries=settings.embedding_cache_max_entries)


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError("Embedding vectors must be the same length.")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def tokenize(processed: str) -> set[str]:
    return set(_TOKEN_SEPARATORS.sub(" ", processed).split())


def lexical_overlap(a: str, b: str) -> float:
    tokens_a, tokens_b = tokenize(a), tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / max(len(tokens_a), len(tokens_b))


def normalize_weights(semantic: float, lexical: float) -> tuple[float, float]:
    total = semantic + lexical
    if total == 0:
        return 0.0, 0.0
    return semantic / total, lexical / total


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------


class HybridMatcher:
    def __init__(
        self,
        cache: EmbeddingCache,
        heuristics: SimilarityHeuristics = DEFAULT_SIMILARITY_HEURISTICS,
    ) -> None:
        self.cache = cache
        self.heuristics = heuristics
        self._substitutions = [
            (re.compile(pattern, re.IGNORECASE), replacement)
            for pattern, replacement in heuristics.substitutions
        ]

    @classmethod
    def default(cls) -> "HybridMatcher":
        return cls(get_default_cache())

    def preprocess(self, text: str) -> str:
        processed = (text or "").lower().strip()
        for pattern, replacement in self._substitutions:
            processed = pattern.sub(replacement, processed)
        return _WHITESPACE.sub(" ", processed).strip()

    def _adjust(self, processed_input: str, processed_candidate: str, blended: float) -> float:
        h = self.heuristics
        adjusted = blended
        if any(t in processed_input and t in processed_candidate for t in h.brand_tokens):
            adjusted += h.brand_bonus
        if any(t in processed_input and t in processed_candidate for t in h.clinical_tokens):
            adjusted += h.clinical_bonus
        input_numbers = set(_NUMBER.findall(processed_input))
        if input_numbers & set(_NUMBER.findall(processed_candidate)):
            adjusted += h.strength_bonus
        return adjusted

    def _reason(self, processed_input: str, processed_candidate: str, semantic: float, lexical: float) -> str:
        candidate_tokens = tokenize(processed_candidate)
        shared = [t for t in _ordered_tokens(processed_input) if t in candidate_tokens]
        highlighted = [t for t in shared if _HAS_DIGIT.search(t) or len(t) > 3][:5]

        pieces: list[str] = []
        if highlighted:
            pieces.append(f"Shares key tokens: {', '.join(highlighted)}")
        elif shared:
            pieces.append(f"Shares {len(shared)} tokens with the input")
        pieces.append(f"semantic score {semantic:.2f}")
        pieces.append(f"lexical score {lexical:.2f}")
        return "; ".join(pieces)

    async def best_match(
        self,
        input_text: str,
        candidate_names: Sequence[str],
        semantic_weight: float = DEFAULT_SEMANTIC_WEIGHT,
        lexical_weight: float = DEFAULT_LEXICAL_WEIGHT,
    ) -> BestMatchResult:
        """
        Highest adjusted score wins; ties keep the first candidate.

        Empty input or an empty pool returns a null candidate without calling
        the embedding service.  Embedding failures propagate.
        """
        originals: dict[str, str] = {}
        for name in candidate_names:
            processed = self.preprocess(name)
            if processed and processed not in originals:
                originals[processed] = name

        processed_input = self.preprocess(input_text)
        if not processed_input or not originals:
            return BestMatchResult(reason=NO_CANDIDATES_REASON)

        w_semantic, w_lexical = normalize_weights(semantic_weight, lexical_weight)
        unique = list(originals)
        vectors = await asyncio.gather(
            self.cache.get(processed_input),
            *(self.cache.get(processed) for processed in unique),
        )
        input_vector, candidate_vectors = vectors[0], vectors[1:]

        evaluated: list[SimilarityEvaluation] = []
        best: Optional[tuple[str, SimilarityEvaluation]] = None
        for processed, vector in zip(unique, candidate_vectors):
            semantic = cosine_similarity(input_vector, vector)
            lexical = lexical_overlap(processed_input, processed)
            blended = w_semantic * semantic + w_lexical * lexical
            evaluation = SimilarityEvaluation(
                candidate=originals[processed],
                semantic_score=semantic,
                lexical_score=lexical,
                blended_score=blended,
                adjusted_score=self._adjust(processed_input, processed, blended),
            )
            evaluated.append(evaluation)
            if evaluation.adjusted_score > (best[1].adjusted_score if best else 0.0):
                best = (processed, evaluation)

        if best is None:
            return BestMatchResult(reason=NO_POSITIVE_SCORE_REASON, evaluated=evaluated)

        processed_best, winner = best
        logger.debug(
            "best_match(%r) -> %r (adjusted %.3f of %d)",
            input_text, winner.candidate, winner.adjusted_score, len(evaluated),
        )
        return BestMatchResult(
            candidate=winner.candidate,
            semantic_score=winner.semantic_score,
            lexical_score=winner.lexical_score,
            similarity_score=winner.adjusted_score,
            reason=self._reason(processed_input, processed_best, winner.semantic_score, winner.lexical_score),
            evaluated=evaluated,
        )


def _ordered_tokens(processed: str) -> list[str]:
    seen: dict[str, None] = {}
    for token in _TOKEN_SEPARATORS.sub(" ", processed).split():
        seen.setdefault(token, None)
    return list(seen)
