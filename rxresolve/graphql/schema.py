from __future__ import annotations

import re
from pathlib import Path
from typing import Optional
from uuid import uuid4

import strawberry
from strawberry.file_uploads import Upload

from rxresolve.core.config import get_settings
from rxresolve.core.http import get_http_session
from rxresolve.models.medication import BestMatchResult, Candidate, Resolution
from rxresolve.services.batch_service import load_report, save_report
from rxresolve.services.llm_rerank import GeminiJudge, best_match_with_rerank
from rxresolve.services.resolution import resolve_medication
from rxresolve.services.rxnav_client import RxNavClient
from rxresolve.services.similarity import HybridMatcher
from rxresolve.worker.tasks import JOB_PENDING, task_resolve_batch

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


@strawberry.type
class VerificationNode:
    status_checked: bool
    properties_checked: bool
    market_found: bool


@strawberry.type
class FinalConceptNode:
    rxcui: str
    tty: str
    name: str
    status: str
    verification: VerificationNode


@strawberry.type
class CandidateNode:
    rxcui: str
    name: str
    tty: Optional[str]
    source: Optional[str]
    approx_score: Optional[float]
    composite_score: Optional[float]
    market_presence_count: int
    synonyms: list[str]


@strawberry.type
class ResolutionNode:
    input: str
    normalized: str
    final: Optional[FinalConceptNode]
    ingredient_rxcui: Optional[str]
    ingredient_name: Optional[str]
    differences: list[str]
    candidates: list[CandidateNode]
    attempts_log: list[str]


@strawberry.type
class SimilarityEvaluationNode:
    candidate: str
    semantic_score: float
    lexical_score: float
    blended_score: float
    adjusted_score: float


@strawberry.type
class BestMatchNode:
    candidate: Optional[str]
    semantic_score: float
    lexical_score: float
    similarity_score: float
    reason: str
    overridden_by_llm: bool
    evaluated: list[SimilarityEvaluationNode]


@strawberry.type
class BatchJobNode:
    id: strawberry.ID
    status: str
    total: Optional[int] = None
    resolved: Optional[int] = None
    unresolved: Optional[int] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------

def _candidate_to_node(c: Candidate) -> CandidateNode:
    return CandidateNode(
        rxcui=c.id,
        name=c.name,
        tty=c.type,
        source=c.source,
        approx_score=c.approx_score,
        composite_score=c.composite_score,
        market_presence_count=c.market_presence_count,
        synonyms=list(c.synonyms),
    )


def _resolution_to_node(r: Resolution) -> ResolutionNode:
    final = None
    if r.final is not None:
        final = FinalConceptNode(
            rxcui=r.final.id,
            tty=r.final.type,
            name=r.final.name,
            status=r.final.status,
            verification=VerificationNode(
                status_checked=r.final.verification.status_checked,
                properties_checked=r.final.verification.properties_checked,
                market_found=r.final.verification.market_found,
            ),
        )
    return ResolutionNode(
        input=r.input,
        normalized=r.normalized,
        final=final,
        ingredient_rxcui=r.group_id.ingredient_id,
        ingredient_name=r.group_id.ingredient_name,
        differences=list(r.differences),
        candidates=[_candidate_to_node(c) for c in r.candidates],
        attempts_log=list(r.attempts_log),
    )


def _best_match_to_node(m: BestMatchResult) -> BestMatchNode:
    return BestMatchNode(
        candidate=m.candidate,
        semantic_score=m.semantic_score,
        lexical_score=m.lexical_score,
        similarity_score=m.similarity_score,
        reason=m.reason,
        overridden_by_llm=m.overridden_by_llm,
        evaluated=[
            SimilarityEvaluationNode(
                candidate=ev.candidate,
                semantic_score=ev.semantic_score,
                lexical_score=ev.lexical_score,
                blended_score=ev.blended_score,
                adjusted_score=ev.adjusted_score,
            )
            for ev in m.evaluated
        ],
    )


def _job_to_node(job_id: str, report: dict) -> BatchJobNode:
    summary = report.get("summary") or {}
    return BatchJobNode(
        id=strawberry.ID(job_id),
        status=report.get("status", JOB_PENDING),
        total=summary.get("total"),
        resolved=summary.get("resolved"),
        unresolved=summary.get("unresolved"),
        error=report.get("error"),
    )


def _safe_filename(raw: Optional[str]) -> str:
    incoming_name = (raw or "").replace("\0", "").strip()
    base_name = incoming_name.split("/")[-1].split("\\")[-1] or "medications.csv"
    stem, dot, extension = base_name.rpartition(".")
    if not dot:
        stem, extension = base_name, ""
    safe_stem = re.sub(r"[^a-zA-Z0-9_-]", "_", stem) or "medications"
    safe_ext  = re.sub(r"[^a-zA-Z0-9]", "", extension)
    return f"{safe_stem}.{safe_ext}" if safe_ext else safe_stem


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

@strawberry.type
class Query:
    @strawberry.field
    async def resolve_medication(self, text: str, hybrid: bool = False) -> ResolutionNode:
        """Resolve one free-text medication to a verified RxCUI."""
        matcher = HybridMatcher.default() if hybrid else None
        async with get_http_session() as http_session:
            resolution = await resolve_medication(text, RxNavClient(http_session), matcher=matcher)
        return _resolution_to_node(resolution)

    @strawberry.field
    async def best_match(
        self,
        input: str,
        candidates: list[str],
        semantic_weight: float = 0.85,
        lexical_weight: float = 0.15,
        rerank: bool = False,
    ) -> BestMatchNode:
        """Hybrid semantic + lexical pick among *candidates*, optionally LLM re-ranked."""
        settings = get_settings()
        judge = GeminiJudge(settings) if rerank else None
        result = await best_match_with_rerank(
            input,
            candidates,
            HybridMatcher.default(),
            judge,
            top_n=settings.llm_rerank_top_n,
            threshold=settings.llm_override_threshold,
            semantic_weight=semantic_weight,
            lexical_weight=lexical_weight,
        )
        return _best_match_to_node(result)

    @strawberry.field
    async def batch_job(self, id: strawberry.ID) -> Optional[BatchJobNode]:
        try:
            report = load_report(str(id), get_settings().report_dir)
        except ValueError:
            return None
        return _job_to_node(str(id), report) if report else None


@strawberry.type
class Mutation:
    @strawberry.mutation
    async def resolve_batch(self, file: Upload) -> BatchJobNode:
        """
        Start a batch resolution job for a medication list (CSV/TSV/Excel).

        Poll ``batchJob(id)`` until status == 'COMPLETED', then call
        ``GET /batch/{id}/export?format=csv`` to download the report.
        """
        current_offset = file.file.tell()
        file.file.seek(0, 2)
        if file.file.tell() > MAX_UPLOAD_BYTES:
            file.file.seek(current_offset)
            raise ValueError("File exceeds the maximum allowed size (10MB).")

        settings = get_settings()
        job_id = str(uuid4())
        uploads_dir: Path = settings.upload_dir
        uploads_dir.mkdir(parents=True, exist_ok=True)

        stored_path = uploads_dir / f"{job_id}_{_safe_filename(file.filename)}"
        file.file.seek(0)
        with stored_path.open("wb") as out:
            out.write(file.file.read())

        save_report(job_id, {"status": JOB_PENDING}, settings.report_dir)
        task_resolve_batch.delay(job_id, str(stored_path))
        return BatchJobNode(id=strawberry.ID(job_id), status=JOB_PENDING)


schema = strawberry.Schema(query=Query, mutation=Mutation)
