"""Browser-facing upload/status/download/zip API.

Provides the paths the note converter frontend uses:
  POST /upload                    — receive a note file, start a job
  GET  /status/{job_id}           — poll job progress
  GET  /download/{job_id}/{format} — stream a converted document
  POST /zip                       — bundle several jobs' outputs

This is a thin layer over the /api/v1/jobs system.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, File, Form, UploadFile

from noteforge.api.v1.jobs import (
    artifact_response,
    bundle_response,
    get_dispatcher,
    parse_export_options,
    save_upload,
)
from noteforge.errors import ValidationError
from noteforge.jobs.models import JobStatusView

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /upload
# ---------------------------------------------------------------------------

@router.post("/upload")
async def upload_note(
    file: Optional[UploadFile] = File(None),
    exportOptions: Optional[str] = Form(None),
):
    """Accept a note upload and queue it for conversion.

    ``exportOptions`` is a JSON object such as ``{"docx": true, "pdf": true}``.

    Returns:
        {jobId}
    """
    dispatcher = get_dispatcher()
    upload = await save_upload(file)
    job_id = await dispatcher.submit(upload, parse_export_options(exportOptions))
    return {"jobId": job_id}


# ---------------------------------------------------------------------------
# GET /status/{job_id}
# ---------------------------------------------------------------------------

@router.get("/status/{job_id}", response_model=JobStatusView)
async def get_status(job_id: str):
    """Return {state, progress, timeLeft, outputs, error}."""
    return await get_dispatcher().status_view(job_id)


# ---------------------------------------------------------------------------
# GET /download/{job_id}/{file_format}
# ---------------------------------------------------------------------------

@router.get("/download/{job_id}/{file_format}")
async def download_result(job_id: str, file_format: str):
    """file_format is one of: docx | pdf"""
    return await artifact_response(job_id, file_format)


# ---------------------------------------------------------------------------
# POST /zip
# ---------------------------------------------------------------------------

@router.post("/zip")
async def download_zip(background_tasks: BackgroundTasks, payload: dict = Body(...)):
    """Body: {"jobIds": [...]}. Jobs that are not completed are left out."""
    job_ids = payload.get("jobIds")
    if not isinstance(job_ids, list) or not all(isinstance(i, str) for i in job_ids):
        raise ValidationError("No job IDs provided")
    return await bundle_response(job_ids, background_tasks)
