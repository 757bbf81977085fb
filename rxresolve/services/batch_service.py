"""Batch resolution — medication list file → RxCUI report.

Given a CSV/TSV/Excel file with one free-text medication per row, this
service:

1. Reads the names column with Polars (first recognised header, else the
   first column; blank rows skipped).
2. Resolves every name sequentially through ``resolve_medication`` over one
   shared RxNav client.
3. Summarises resolved / unresolved counts.
4. Exports the flat report as CSV or Excel bytes.

Reports are stored as JSON under ``REPORT_DIR/<job_id>.json`` so the API can
serve exports for jobs the worker finished.
"""
from __future__ import annotations

import io
import json
import logging
from pathlib import Path
from typing import Any, Optional

import polars as pl

from rxresolve.services.llm_rerank import LlmJudge
from rxresolve.services.normalizer import normalize_dataframe_column
from rxresolve.services.resolution import resolve_medication
from rxresolve.services.rxnav_client import RxNavClient
from rxresolve.services.similarity import HybridMatcher

logger = logging.getLogger(__name__)

# Column name candidates for the medication column, tried in order.
_NAME_COLUMNS = [
    "medication", "Medication", "MEDICATION",
    "name", "Name", "NAME",
    "drug", "Drug", "DRUG",
    "description", "Description",
]

EXPORT_FORMATS = ("csv", "excel")


# ---------------------------------------------------------------------------
# File reading
# ---------------------------------------------------------------------------

def read_medication_names(file_path: str | Path) -> list[str]:
    path = Path(file_path)
    suffix = path.suffix.lower()

    if suffix in {".xlsx", ".xls"}:
        df = pl.read_excel(path)
    elif suffix in {".tsv", ".txt"}:
        df = pl.read_csv(path, separator="\t", infer_schema_length=0)
    else:
        df = pl.read_csv(path, infer_schema_length=0)

    if not df.columns:
        return []
    name_col = next((c for c in _NAME_COLUMNS if c in df.columns), df.columns[0])

    return [
        v.strip()
        for v in df[name_col].cast(pl.Utf8).to_list()
        if v is not None and str(v).strip()
    ]


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _error_row(name: str, exc: Exception) -> dict[str, Any]:
    return {
        "input":          name,
        "normalized":     "",
        "rxcui":          None,
        "type":           None,
        "resolved_name":  None,
        "status":         "ERROR",
        "market_found":   False,
        "ingredient_id":  None,
        "differences":    [str(exc)],
        "candidates":     0,
    }


async def resolve_names(
    names: list[str],
    client: RxNavClient,
    matcher: Optional[HybridMatcher] = None,
    judge: Optional[LlmJudge] = None,
) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for name in names:
        try:
            resolution = await resolve_medication(name, client, matcher=matcher, judge=judge)
        except Exception as exc:  # noqa: BLE001
            logger.error("resolve_names: error on %r: %s", name, exc, exc_info=True)
            rows.append(_error_row(name, exc))
            continue

        final = resolution.final
        rows.append({
            "input":          resolution.input,
            "normalized":     resolution.normalized,
            "rxcui":          final.id if final else None,
            "type":           final.type if final else None,
            "resolved_name":  final.name if final else None,
            "status":         final.status if final else "UNRESOLVED",
            "market_found":   final.verification.market_found if final else False,
            "ingredient_id":  resolution.group_id.ingredient_id,
            "differences":    resolution.differences,
            "candidates":     len(resolution.candidates),
        })
    return rows


def summarize(rows: list[dict[str, Any]]) -> dict[str, Any]:
    total    = len(rows)
    resolved = sum(1 for r in rows if r["rxcui"])
    errors   = sum(1 for r in rows if r["status"] == "ERROR")
    return {
        "total":         total,
        "resolved":      resolved,
        "unresolved":    total - resolved,
        "errors":        errors,
        "resolved_rate": round(resolved / total, 4) if total > 0 else 0.0,
    }


async def resolve_file(
    file_path: str | Path,
    client: RxNavClient,
    matcher: Optional[HybridMatcher] = None,
    judge: Optional[LlmJudge] = None,
) -> dict[str, Any]:
    """Full pipeline: read file → resolve each row → summary."""
    names = read_medication_names(file_path)
    logger.info("resolve_file: %d medications from %s", len(names), file_path)

    rows = await resolve_names(names, client, matcher=matcher, judge=judge)
    summary = summarize(rows)
    logger.info("resolve_file: %s done  summary=%s", file_path, summary)
    return {"rows": rows, "summary": summary}


# ---------------------------------------------------------------------------
# Report storage and export
# ---------------------------------------------------------------------------

def report_path(job_id: str, report_dir: Path) -> Path:
    if not job_id or Path(job_id).name != job_id:
        raise ValueError(f"Invalid job id: {job_id!r}")
    return report_dir / f"{job_id}.json"


def save_report(job_id: str, report: dict[str, Any], report_dir: Path) -> Path:
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_path(job_id, report_dir)
    path.write_text(json.dumps(report, ensure_ascii=False), encoding="utf-8")
    return path


def load_report(job_id: str, report_dir: Path) -> Optional[dict[str, Any]]:
    path = report_path(job_id, report_dir)
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def export_rows(rows: list[dict[str, Any]], fmt: str = "csv") -> bytes:
    """
    Flatten report rows to CSV (default) or Excel bytes.

    ``differences`` is joined with " | "; an ``input_normalized`` column is
    added from the unit normalizer.
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {fmt!r}")

    flat = [
        {
            "input":         r["input"],
            "rxcui":         r.get("rxcui") or "",
            "type":          r.get("type") or "",
            "resolved_name": r.get("resolved_name") or "",
            "status":        r["status"],
            "market_found":  "YES" if r.get("market_found") else "NO",
            "ingredient_id": r.get("ingredient_id") or "",
            "differences":   " | ".join(r.get("differences") or []),
            "candidates":    r.get("candidates", 0),
        }
        for r in rows
    ]
    df = pl.DataFrame(flat, infer_schema_length=len(flat) or 1)
    if df.height:
        df = normalize_dataframe_column(df, "input")

    if fmt == "excel":
        buffer = io.BytesIO()
        df.write_excel(buffer)
        return buffer.getvalue()

    return df.write_csv().encode("utf-8")
