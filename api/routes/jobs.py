from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from questions_hub.importing import PackageImportService, ValidationError
from questions_hub.importing.job_queue import RQJobQueue

from api.dependencies import get_job_queue, get_service, get_worker_config
from api.routes.imports import job_to_dict

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("/{job_id}")
def get_job_status(job_id: str, service: PackageImportService = Depends(get_service)):
    job = service.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return {
        "id": job.id,
        "status": job.status.value,
        "current_step": job.current_step.value if job.current_step else None,
        "progress": job.progress,
        "package_id": job.package_id,
        "error_message": job.error_message,
    }


@router.post("/{job_id}/retry")
def retry_job(
    job_id: str,
    service: PackageImportService = Depends(get_service),
    queue: Optional[RQJobQueue] = Depends(get_job_queue),
):
    try:
        job = service.retry(job_id)
    except ValidationError as exc:
        raise HTTPException(status_code=409, detail=exc.user_message)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")

    if queue is not None:
        queue.enqueue_import_job(job.id, get_worker_config())
    return job_to_dict(job)
