"""
Pipeline coordinator: free text → Resolution.

    parse → build_terms → collect/hydrate → filter → rank
          → (optional hybrid reorder) → verify → differences

Every stage hands back its own log lines; this module is the only place the
attempts log is assembled, so concurrent resolutions never share one.

Usage
-----
    async with get_http_session() as http:
        client = RxNavClient(http)
        resolution = await resolve_medication("metformin 500 MG oral tablet", client)
"""
from __future__ import annotations

import logging
from typing import Optional

from rxresolve.core.exceptions import EmbeddingServiceError
from rxresolve.models.medication import (
    Candidate,
    FinalConcept,
    Resolution,
    Verification,
)
from rxresolve.services.candidates import collect
from rxresolve.services.drug_parser import normalized_text, parse
from rxresolve.services.llm_rerank import DEFAULT_TOP_N, LlmJudge, best_match_with_rerank
from rxresolve.services.matching_engine import (
    filter_candidates,
    generate_differences,
    rank_candidates,
    select_winner,
)
from rxresolve.services.rxnav_client import RxNavClient
from rxresolve.services.search_terms import build_terms
from rxresolve.services.similarity import HybridMatcher

logger = logging.getLogger(__name__)


class _AttemptsLog(list):
    """Append-only trail for one resolution; mirrored to the DEBUG log."""

    def add(self, message: str) -> None:
        self.append(message)
        logger.debug("%s", message)

    def extend_from(self, lines: list[str]) -> None:
        for line in lines:
            self.add(line)


async def _hybrid_reorder(
    text: str,
    ranked: list[Candidate],
    matcher: HybridMatcher,
    judge: Optional[LlmJudge],
    top_n: int,
    log: _AttemptsLog,
) -> list[Candidate]:
    """Move the matcher's pick among the top-N names to the front of *ranked*."""
    top = ranked[:top_n]
    try:
        match = await best_match_with_rerank(text, [c.name for c in top], matcher, judge, top_n=top_n)
    except (EmbeddingServiceError, ValueError) as exc:
        log.add(f"Hybrid match unavailable, keeping score order: {exc}")
        return ranked

    if match.candidate is None:
        return ranked
    pick = next((c for c in top if c.name == match.candidate), None)
    if pick is None or pick is ranked[0]:
        return ranked

    source = "LLM re-rank" if match.overridden_by_llm else "hybrid match"
    log.add(f"Verification order: {pick.id} promoted by {source} ({match.similarity_score:.3f})")
    return [pick] + [c for c in ranked if c is not pick]


async def resolve_medication(
    text: str,
    client: RxNavClient,
    matcher: Optional[HybridMatcher] = None,
    judge: Optional[LlmJudge] = None,
    top_n: int = DEFAULT_TOP_N,
) -> Resolution:
    """
    Resolve *text* to a verified RxCUI.

    Always returns a Resolution; ``final`` is ``None`` when no candidate
    survives verification.  With a *matcher*, its pick among the top-N
    ranked names is verified first.
    """
    log = _AttemptsLog()
    log.add(f'Starting resolution for: "{text}"')

    parsed = parse(text)
    log.add(
        f"Parsed: ingredient={parsed.ingredient!r}, strength={parsed.strength!r}, "
        f"concentration={parsed.concentration!r}, form={parsed.dose_form!r}, "
        f"route={parsed.route!r}, brand={parsed.brand!r}"
    )

    terms = build_terms(parsed)
    log.add(f"Generated {len(terms)} search terms")

    collected = await collect(client, terms)
    log.extend_from(collected.log)
    pool = list(collected.value.candidates.values())

    kept = filter_candidates(pool, parsed)
    log.add(f"Filtered to {len(kept)} of {len(pool)} candidates")

    ranked = rank_candidates(kept, parsed)
    if matcher is not None and len(ranked) > 1:
        ranked = await _hybrid_reorder(text, ranked, matcher, judge, top_n, log)

    selection = await select_winner(client, ranked)
    log.extend_from(selection.log)
    winner = selection.value

    final: Optional[FinalConcept] = None
    if winner is not None:
        final = FinalConcept(
            id=winner.id,
            type=winner.type or "",
            name=winner.name,
            status=winner.status or "Active",
            verification=Verification(
                status_checked=True,
                properties_checked=True,
                market_found=winner.market_presence_count > 0,
            ),
        )

    logger.info(
        "Resolved %r -> %s (%d candidates)",
        text, final.id if final else None, len(pool),
    )
    return Resolution(
        input=parsed.original,
        normalized=normalized_text(text),
        final=final,
        group_id=collected.value.group,
        differences=generate_differences(parsed, winner),
        candidates=pool,
        attempts_log=list(log),
    )
