import asyncio
import logging
import threading
from pathlib import Path
from typing import Any, Optional

from celery import Celery

from rxresolve.core.config import get_settings
from rxresolve.core.http import get_http_session
from rxresolve.services.batch_service import resolve_file, save_report
from rxresolve.services.llm_rerank import GeminiJudge
from rxresolve.services.rxnav_client import RxNavClient
from rxresolve.services.similarity import HybridMatcher

settings = get_settings()

celery_app = Celery(
    "rxresolve_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

JOB_PENDING   = "PENDING"
JOB_RUNNING   = "RUNNING"
JOB_COMPLETED = "COMPLETED"
JOB_FAILED    = "FAILED"


def _cleanup_upload(file_path: str) -> None:
    path = Path(file_path)
    if not path.exists() or path.parent != get_settings().upload_dir:
        return
    try:
        path.unlink()
    except OSError:
        logger.exception("Could not remove uploaded file %s", file_path)


def _run_async_safely(coro: Any) -> Any:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        result: dict[str, Any] = {}
        error: dict[str, Exception] = {}

        def _run_in_thread() -> None:
            local_loop = asyncio.new_event_loop()
            try:
                result["value"] = local_loop.run_until_complete(coro)
            except Exception as exc:  # noqa: BLE001
                error["value"] = exc
            finally:
                local_loop.close()

        thread = threading.Thread(target=_run_in_thread)
        thread.start()
        thread.join()
        if "value" in error:
            raise error["value"]
        return result.get("value")

    new_loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(new_loop)
        return new_loop.run_until_complete(coro)
    finally:
        new_loop.close()
        asyncio.set_event_loop(None)


def _hybrid_components() -> tuple[Optional[HybridMatcher], Optional[GeminiJudge]]:
    """Hybrid ordering is used only when Google credentials are configured."""
    current = get_settings()
    if not current.google_api_key:
        return None, None
    return HybridMatcher.default(), GeminiJudge(current)


async def _resolve_batch(job_id: str, file_path: str) -> dict[str, Any]:
    current = get_settings()
    save_report(job_id, {"status": JOB_RUNNING}, current.report_dir)

    matcher, judge = _hybrid_components()
    async with get_http_session(current) as http_session:
        client = RxNavClient(http_session, current)
        report = await resolve_file(file_path, client, matcher=matcher, judge=judge)

    save_report(job_id, {"status": JOB_COMPLETED, **report}, current.report_dir)
    return report["summary"]


def _mark_failed(job_id: str, exc: Exception) -> None:
    try:
        save_report(
            job_id,
            {"status": JOB_FAILED, "error": f"{type(exc).__name__}: {exc}"},
            get_settings().report_dir,
        )
    except Exception:  # noqa: BLE001
        logger.exception("Could not mark batch job %s as FAILED", job_id)


@celery_app.task(name="task_resolve_batch")
def task_resolve_batch(job_id: str, file_path: str) -> dict[str, Any]:
    """
    Resolve every medication in an uploaded list and store the report.

    Flow
    ----
    1. Report marked RUNNING under REPORT_DIR/<job_id>.json
    2. Names read with Polars and resolved one by one against RxNav
    3. Report rewritten as COMPLETED with rows + summary (FAILED on error)
    4. The uploaded file is removed
    """
    try:
        return _run_async_safely(_resolve_batch(job_id, file_path))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Batch job %s failed: %s", job_id, exc)
        _mark_failed(job_id, exc)
        raise
    finally:
        _cleanup_upload(file_path)
