from __future__ import annotations

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, List, Optional

from .config import PackageImportOptions, format_file_size
from .errors import ValidationError
from .models import ImportJobRecord, ImportJobStatus
from .repository import ImportJobRepository
from .storage import LocalImportStorage

logger = logging.getLogger(__name__)


class PackageImportService:
    """Entry point for uploads: validates the file and creates a Queued job."""

    def __init__(
        self,
        repository: ImportJobRepository,
        storage: LocalImportStorage,
        options: Optional[PackageImportOptions] = None,
    ):
        self.repo = repository
        self.storage = storage
        self.options = options or PackageImportOptions()

    def enqueue(self, owner_id: str, file_name: str, stream: BinaryIO, file_size: int) -> ImportJobRecord:
        self.validate_upload(file_name, file_size)

        job_id = str(uuid.uuid4())
        safe_name = Path(file_name).name
        input_path = self.storage.save_upload(job_id, safe_name, stream)

        job = ImportJobRecord(
            id=job_id,
            owner_id=owner_id,
            input_file_name=safe_name,
            input_file_path=str(input_path),
            input_file_size_bytes=file_size,
            status=ImportJobStatus.QUEUED,
            created_at=datetime.utcnow(),
        )
        self.repo.save_job(job)
        logger.info("Created import job: %s for file: %s", job_id, safe_name)
        return job

    def validate_upload(self, file_name: str, file_size: int) -> None:
        if not self.options.is_extension_allowed(file_name):
            allowed = ", ".join(self.options.allowed_extensions)
            raise ValidationError(f"Непідтримуваний формат файлу. Дозволені: {allowed}")
        if file_size > self.options.max_file_size_bytes:
            raise ValidationError(
                f"Файл занадто великий. Максимальний розмір: {format_file_size(self.options.max_file_size_bytes)}"
            )
        if file_size == 0:
            raise ValidationError("Файл порожній")

    def retry(self, job_id: str) -> Optional[ImportJobRecord]:
        """
        Puts a failed job back in the queue. Returns None for unknown jobs and
        raises `ValidationError` when the job has not failed.
        """
        job = self.repo.get_job(job_id)
        if not job:
            return None
        if job.status != ImportJobStatus.FAILED:
            raise ValidationError("Повторити можна лише невдалу обробку")

        self.repo.update_job(
            job_id,
            status=ImportJobStatus.QUEUED,
            current_step=None,
            progress=0,
            error_message=None,
            error_details=None,
            next_retry_at=None,
            finished_at=None,
        )
        logger.info("Job %s re-queued manually after %s attempts", job_id, job.attempts)
        return self.repo.get_job(job_id)

    def get_job(self, job_id: str) -> Optional[ImportJobRecord]:
        return self.repo.get_job(job_id)

    def get_jobs_for_user(self, owner_id: str, limit: int = 10) -> List[ImportJobRecord]:
        return self.repo.list_jobs(owner_id=owner_id, limit=limit)

    def get_all_jobs(self, limit: int = 50) -> List[ImportJobRecord]:
        return self.repo.list_jobs(limit=limit)
