from __future__ import annotations

import io
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from questions_hub.importing import ImportJobRecord, PackageImportService, ValidationError
from questions_hub.importing.job_queue import RQJobQueue

from api.dependencies import get_job_queue, get_service, get_worker_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/imports", tags=["imports"])


def job_to_dict(job: ImportJobRecord, include_warnings: bool = False) -> dict:
    payload = {
        "id": job.id,
        "owner_id": job.owner_id,
        "file_name": job.input_file_name,
        "file_size_bytes": job.input_file_size_bytes,
        "status": job.status.value,
        "current_step": job.current_step.value if job.current_step else None,
        "progress": job.progress,
        "attempts": job.attempts,
        "package_id": job.package_id,
        "error_message": job.error_message,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "finished_at": job.finished_at.isoformat() if job.finished_at else None,
        "next_retry_at": job.next_retry_at.isoformat() if job.next_retry_at else None,
    }
    if include_warnings:
        payload["warnings"] = json.loads(job.warnings_json) if job.warnings_json else []
    return payload


@router.post("")
async def upload_package(
    file: UploadFile = File(...),
    owner_id: str = Form("anonymous"),
    service: PackageImportService = Depends(get_service),
    queue: Optional[RQJobQueue] = Depends(get_job_queue),
):
    payload = await file.read()
    try:
        job = service.enqueue(owner_id, file.filename or "", io.BytesIO(payload), len(payload))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.user_message)

    if queue is not None:
        queue.enqueue_import_job(job.id, get_worker_config())
        logger.info("Dispatched job %s to RQ", job.id)
    return job_to_dict(job)


@router.get("")
def list_imports(
    owner_id: Optional[str] = None,
    limit: int = 10,
    service: PackageImportService = Depends(get_service),
):
    jobs = service.get_jobs_for_user(owner_id, limit=limit) if owner_id else service.get_all_jobs(limit=limit)
    return [job_to_dict(job) for job in jobs]


@router.get("/{job_id}")
def get_import(job_id: str, service: PackageImportService = Depends(get_service)):
    job = service.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return job_to_dict(job, include_warnings=True)
