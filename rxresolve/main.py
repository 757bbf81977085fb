import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from strawberry.fastapi import GraphQLRouter

from rxresolve.core.config import get_settings
from rxresolve.graphql.schema import schema
from rxresolve.services.batch_service import EXPORT_FORMATS, export_rows, load_report
from rxresolve.worker.tasks import JOB_COMPLETED

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(title="RxCUI Resolution Service")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(GraphQLRouter(schema, multipart_uploads_enabled=True), prefix="/graphql")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/batch/{job_id}/export")
async def export_batch(job_id: str, format: str = "csv") -> Response:
    """
    Download the report of a completed batch resolution job.

    Parameters
    ----------
    job_id : id returned by the ``resolveBatch`` mutation.
    format : "csv" (default) or "excel".
    """
    fmt = format.lower()
    if fmt not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported format '{format}'")

    try:
        report = load_report(job_id, get_settings().report_dir)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid job_id")

    if report is None:
        raise HTTPException(status_code=404, detail="Batch job not found")
    status = report.get("status")
    if status != JOB_COMPLETED:
        raise HTTPException(status_code=409, detail=f"Batch job is '{status}', report not available yet")

    data = export_rows(report.get("rows") or [], fmt)

    if fmt == "excel":
        media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        extension  = "xlsx"
    else:
        media_type = "text/csv; charset=utf-8"
        extension  = "csv"

    filename = f"rxcui_batch_{job_id[:8]}.{extension}"
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
