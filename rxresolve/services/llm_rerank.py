"""LLM re-ranking of the hybrid matcher's top candidates.

Only the top-N evaluations (default 5) are sent to the judge, together with
their numeric scores.  The judge must answer with JSON::

    {
      "best_match": {"name": "<exact candidate text>", "reason": "..."},
      "ranked": [{"name": "<candidate>", "similarity": 0.93}, ...]
    }

Anything that cannot be read as that shape means "no override available".
An override is accepted only when the judge's own similarity for its pick
exceeds the configured threshold (0.9) and the pick is one of the offered
candidates.
"""
from __future__ import annotations

import json
import logging
import math
from typing import Any, Optional, Protocol, Sequence

import google.generativeai as genai
from google.api_core.exceptions import GoogleAPIError

from rxresolve.core.config import Settings, get_settings
from rxresolve.core.exceptions import JudgeServiceError
from rxresolve.models.medication import (
    BestMatchResult,
    LlmMatchResult,
    LlmRankedCandidate,
    SimilarityEvaluation,
)
from rxresolve.services.similarity import HybridMatcher

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = "You are a precise RxNorm drug name matcher."
DEFAULT_TOP_N = 5
DEFAULT_OVERRIDE_THRESHOLD = 0.9

_PROMPT_TEMPLATE = """\
You align free-text U.S. medication descriptions to RxNorm-style product names.

Input medication:
"{input}"

Candidates (ranked by hybrid similarity):
{lines}

Pick the candidate that names the same physical product as the input, or the
closest U.S.-marketed equivalent. Weigh ingredient, strength, unit, route,
dose form, salt form and brand/generic equivalence. Never mix dose forms
(tablet is not suspension). Powder for oral suspension counts as oral
suspension. Use the numeric scores as evidence.

Answer with strict JSON only:
{{
  "best_match": {{"name": "<exact candidate text>", "reason": "<brief clinical reasoning>"}},
  "ranked": [{{"name": "<candidate>", "similarity": 0.00}}]
}}
"""


class LlmJudge(Protocol):
    async def complete(self, prompt: str) -> str: ...


class GeminiJudge:
    """Gemini JSON-mode judge."""

    def __init__(self, settings: Optional[Settings] = None, model: Optional[str] = None) -> None:
        settings = settings or get_settings()
        genai.configure(api_key=settings.require_google_api_key())
        self._model = genai.GenerativeModel(
            model or settings.llm_model,
            system_instruction=SYSTEM_INSTRUCTION,
        )

    async def complete(self, prompt: str) -> str:
        try:
            response = await self._model.generate_content_async(
                prompt,
                generation_config=genai.GenerationConfig(
                    temperature=0.2,
                    response_mime_type="application/json",
                ),
            )
            return response.text
        except (GoogleAPIError, ConnectionError, TimeoutError, ValueError) as exc:
            raise JudgeServiceError(f"LLM re-rank failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Prompt / response handling
# ---------------------------------------------------------------------------


def build_prompt(input_text: str, top: Sequence[SimilarityEvaluation]) -> str:
    lines = "\n".join(
        f"{index}. {ev.candidate} (adjustedScore={ev.adjusted_score:.3f}, "
        f"semanticScore={ev.semantic_score:.3f}, lexicalScore={ev.lexical_score:.3f})"
        for index, ev in enumerate(top, start=1)
    )
    return _PROMPT_TEMPLATE.format(input=input_text, lines=lines)


def parse_judge_output(raw: str) -> Optional[LlmMatchResult]:
    try:
        data: Any = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    best = data.get("best_match") if isinstance(data.get("best_match"), dict) else {}
    name = best.get("name") if isinstance(best.get("name"), str) else None
    reason = best.get("reason") if isinstance(best.get("reason"), str) else None
    if reason is None and isinstance(data.get("reason"), str):
        reason = data["reason"]

    entries = data.get("ranked")
    if not isinstance(entries, list):
        entries = []

    ranked: list[LlmRankedCandidate] = []
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            continue
        similarity = entry.get("similarity", entry.get("score"))
        if isinstance(similarity, bool) or not isinstance(similarity, (int, float)):
            continue
        try:
            value = float(similarity)
        except OverflowError:
            continue
        if not math.isfinite(value):
            continue
        ranked.append(LlmRankedCandidate(name=entry["name"], similarity=value))

    if name is None and not ranked:
        return None
    return LlmMatchResult(best_match=name, reason=reason, ranked=ranked, raw=data)


async def llm_rerank(
    input_text: str,
    top: Sequence[SimilarityEvaluation],
    judge: LlmJudge,
) -> Optional[LlmMatchResult]:
    """Ask the judge to re-rank *top*; ``None`` when it returns nothing usable."""
    if not top:
        return None
    raw = await judge.complete(build_prompt(input_text, top))
    result = parse_judge_output(raw)
    if result is None:
        logger.warning("LLM re-rank returned unparsable output for %r", input_text)
    return result


def accepted_override(
    result: Optional[LlmMatchResult],
    offered: Sequence[str],
    threshold: float = DEFAULT_OVERRIDE_THRESHOLD,
) -> Optional[str]:
    """The judge's pick when it is offered and its similarity exceeds *threshold*."""
    if result is None or not result.best_match or result.best_match not in offered:
        return None
    similarity = result.similarity_for(result.best_match)
    if similarity is None or not similarity > threshold:
        return None
    return result.best_match


# ---------------------------------------------------------------------------
# Hybrid pick + judge
# ---------------------------------------------------------------------------


async def best_match_with_rerank(
    input_text: str,
    candidate_names: Sequence[str],
    matcher: HybridMatcher,
    judge: Optional[LlmJudge],
    top_n: int = DEFAULT_TOP_N,
    threshold: float = DEFAULT_OVERRIDE_THRESHOLD,
    **weights: float,
) -> BestMatchResult:
    hybrid = await matcher.best_match(input_text, candidate_names, **weights)
    if judge is None or hybrid.candidate is None:
        return hybrid

    top = sorted(hybrid.evaluated, key=lambda ev: ev.adjusted_score, reverse=True)[:top_n]
    try:
        verdict = await llm_rerank(input_text, top, judge)
    except JudgeServiceError as exc:
        logger.warning("Keeping hybrid pick for %r: %s", input_text, exc)
        return hybrid

    pick = accepted_override(verdict, [ev.candidate for ev in top], threshold)
    if pick is None or pick == hybrid.candidate:
        return hybrid

    chosen = next(ev for ev in top if ev.candidate == pick)
    logger.info("LLM judge overrode %r with %r for %r", hybrid.candidate, pick, input_text)
    return BestMatchResult(
        candidate=pick,
        semantic_score=chosen.semantic_score,
        lexical_score=chosen.lexical_score,
        similarity_score=chosen.adjusted_score,
        reason=f"LLM re-rank: {verdict.reason}" if verdict.reason else "LLM re-rank override",
        evaluated=hybrid.evaluated,
        overridden_by_llm=True,
    )
