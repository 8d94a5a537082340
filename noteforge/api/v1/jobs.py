"""Job management API: submit notes, poll status, download outputs, bundle."""

import json
import logging
import os
from typing import List, Optional, Set

from fastapi import APIRouter, BackgroundTasks, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel

from noteforge.errors import NotFoundError, ValidationError
from noteforge.jobs.models import JobState, JobStatusView, OutputFormat, UploadedInput
from noteforge.storage.bundle import BUNDLE_FILENAME, build_bundle, output_filename
from noteforge.storage.temp_results import remove_file

logger = logging.getLogger(__name__)

router = APIRouter()

# These will be set by main.py during lifespan
_dispatcher = None
_temp_store = None
_max_upload_bytes = 50 * 1024 * 1024

_MEDIA_TYPES = {
    OutputFormat.DOCX: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    OutputFormat.PDF: "application/pdf",
}

_CHUNK = 1024 * 1024


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


def set_temp_store(store, max_upload_mb: int = 50):
    global _temp_store, _max_upload_bytes
    _temp_store = store
    _max_upload_bytes = max_upload_mb * 1024 * 1024


def get_dispatcher():
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Job dispatcher not initialized")
    return _dispatcher


class JobSubmitResponse(BaseModel):
    job_id: str
    status: str
    message: str


class BundleRequest(BaseModel):
    job_ids: List[str]


# ---------------------------------------------------------------------------
# Helpers shared with the browser-facing router
# ---------------------------------------------------------------------------

async def save_upload(file: Optional[UploadFile]) -> UploadedInput:
    """Stream an upload to the staging area, enforcing the size limit."""
    if _temp_store is None:
        raise HTTPException(status_code=503, detail="Result store not initialized")
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")

    original_name = os.path.basename(file.filename)
    upload_path = _temp_store.new_upload_path(original_name)
    total = 0
    try:
        with open(upload_path, "wb") as dst:
            while True:
                chunk = await file.read(_CHUNK)
                if not chunk:
                    break
                total += len(chunk)
                if total > _max_upload_bytes:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File too large (max {_max_upload_bytes // (1024 * 1024)} MB)",
                    )
                dst.write(chunk)
    except HTTPException:
        os.remove(upload_path)
        raise
    except OSError as exc:
        if os.path.exists(upload_path):
            os.remove(upload_path)
        raise HTTPException(status_code=500, detail=f"Failed to save upload: {exc}")

    return UploadedInput(path=upload_path, original_name=original_name, size_bytes=total)


def parse_export_options(raw: Optional[str]) -> Set[OutputFormat]:
    """``{"docx": true, "pdf": false}`` -> formats. Unparsable input falls
    back to docx only."""
    default = {OutputFormat.DOCX}
    if not raw:
        return default
    try:
        options = json.loads(raw)
    except ValueError:
        logger.warning("Failed to parse export options")
        return default
    if not isinstance(options, dict):
        logger.warning("Failed to parse export options")
        return default
    return {fmt for fmt in OutputFormat if options.get(fmt.value)}


def parse_formats(raw: Optional[str]) -> Set[OutputFormat]:
    """Comma separated list, e.g. ``docx,pdf``."""
    if not raw:
        return {OutputFormat.DOCX}
    formats = set()
    for part in raw.split(","):
        part = part.strip().lower()
        if not part:
            continue
        try:
            formats.add(OutputFormat(part))
        except ValueError:
            raise ValidationError(f"Unknown format '{part}'. Valid: {[f.value for f in OutputFormat]}")
    return formats


async def artifact_response(job_id: str, file_format: str) -> FileResponse:
    dispatcher = get_dispatcher()
    job = await dispatcher.get_status(job_id)
    if job.state != JobState.COMPLETED:
        raise NotFoundError("File not ready or expired")

    try:
        fmt = OutputFormat(file_format.lower())
    except ValueError:
        raise NotFoundError(f"Format {file_format} not generated for this job")

    path = job.outputs.get(fmt)
    if not path:
        raise NotFoundError(f"Format {fmt.value} not generated for this job")
    if not os.path.isfile(path):
        raise NotFoundError("File not ready or expired")

    return FileResponse(
        path,
        media_type=_MEDIA_TYPES[fmt],
        filename=output_filename(job.original_name, fmt),
    )


async def bundle_response(job_ids: List[str], background_tasks: BackgroundTasks) -> FileResponse:
    """Stream the zip from a scratch file that is deleted once sent."""
    if _temp_store is None:
        raise HTTPException(status_code=503, detail="Result store not initialized")
    path = await build_bundle(get_dispatcher(), job_ids, _temp_store.new_bundle_path())
    background_tasks.add_task(remove_file, path)
    return FileResponse(path, media_type="application/zip", filename=BUNDLE_FILENAME)


# ---------------------------------------------------------------------------
# /api/v1/jobs
# ---------------------------------------------------------------------------

@router.post("/jobs", response_model=JobSubmitResponse)
async def submit_job(
    file: Optional[UploadFile] = File(None),
    formats: Optional[str] = Form(None),
):
    """Submit a note for conversion. ``formats`` is e.g. ``docx,pdf``."""
    dispatcher = get_dispatcher()
    requested = parse_formats(formats)
    upload = await save_upload(file)
    job_id = await dispatcher.submit(upload, requested)
    return JobSubmitResponse(
        job_id=job_id,
        status=JobState.QUEUED.value,
        message="Job submitted successfully. Poll GET /api/v1/jobs/{id} for status.",
    )


@router.get("/jobs/{job_id}")
async def get_job_status(job_id: str):
    """Current status plus job metadata."""
    dispatcher = get_dispatcher()
    view: JobStatusView = await dispatcher.status_view(job_id)
    job = await dispatcher.get_status(job_id)

    response = {
        "job_id": job.id,
        **view.model_dump(by_alias=True, mode="json"),
        "original_name": job.original_name,
        "file_size_bytes": job.file_size_bytes,
        "requested_formats": sorted(f.value for f in job.requested_formats),
        "created_at": job.created_at.isoformat(),
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }
    return response


@router.get("/jobs/{job_id}/outputs/{file_format}")
async def get_job_output(job_id: str, file_format: str):
    """Download a produced document (docx or pdf)."""
    return await artifact_response(job_id, file_format)


@router.delete("/jobs/{job_id}")
async def cancel_job(job_id: str):
    """Forget a job and delete its outputs. A running conversion is not interrupted."""
    await get_dispatcher().cancel(job_id)
    return {"job_id": job_id, "cancelled": True}


@router.post("/bundles")
async def create_bundle(request: BundleRequest, background_tasks: BackgroundTasks):
    """ZIP of all outputs of the completed jobs among ``job_ids``."""
    return await bundle_response(request.job_ids, background_tasks)
