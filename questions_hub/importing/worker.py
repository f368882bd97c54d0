from __future__ import annotations

import json
import logging
import threading
import traceback
from dataclasses import asdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .config import PackageImportOptions
from .errors import JobCancelledError, PackageImportError, ParsingError
from .importer import PackageDbImporter
from .models import ImportJobRecord, ImportJobStatus, ImportStep, ParseResult
from .parser import PackageParser
from .qhub import QhubExtractor
from .repository import ImportJobRepository
from .storage import LocalImportStorage

if TYPE_CHECKING:
    from .extractor import DocumentExtractor

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = "Неочікувана помилка при обробці"
NO_STRUCTURE_MESSAGE = "Не вдалося визначити структуру пакету. Перевірте формат документа."


class CancellationToken:
    """
    Cooperative cancellation flag shared between the orchestrator and a
    running job. An optional deadline turns it into a timeout.
    """

    def __init__(self, deadline: Optional[datetime] = None):
        self.deadline = deadline
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def timed_out(self) -> bool:
        return self.deadline is not None and datetime.utcnow() >= self.deadline

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set() or self.timed_out

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise JobCancelledError(timed_out=self.timed_out)


def retry_delay(attempt: int) -> timedelta:
    if attempt <= 1:
        return timedelta(seconds=30)
    if attempt == 2:
        return timedelta(minutes=2)
    return timedelta(minutes=5)


def timeout_message(minutes: int) -> str:
    return f"Перевищено час очікування обробки ({minutes} хвилин)"


class ImportWorker:
    """
    Drives a claimed import job through Extracting -> Parsing -> Importing ->
    Finalizing. The worker is stateless and relies on the repository for job
    state and on the storage adapter for filesystem operations. Failures are
    written to the job record (with a retry time when the error is retriable)
    and never propagate to the caller.
    """

    def __init__(
        self,
        repository: ImportJobRepository,
        storage: LocalImportStorage,
        docx_extractor: DocumentExtractor,
        qhub_extractor: QhubExtractor,
        parser: PackageParser,
        importer: PackageDbImporter,
        options: Optional[PackageImportOptions] = None,
    ):
        self.repo = repository
        self.storage = storage
        self.docx_extractor = docx_extractor
        self.qhub_extractor = qhub_extractor
        self.parser = parser
        self.importer = importer
        self.options = options or PackageImportOptions()

    def run_job(self, job_id: str, token: Optional[CancellationToken] = None) -> None:
        token = token or CancellationToken()
        job = self.repo.get_job(job_id)
        if not job:
            logger.error("Job not found: %s", job_id)
            return

        try:
            self._process(job, token)
        except JobCancelledError as exc:
            message = timeout_message(self.options.job_timeout_minutes) if exc.timed_out else exc.user_message
            if exc.timed_out:
                logger.warning("Job %s timed out after %s minutes", job_id, self.options.job_timeout_minutes)
            self._handle_error(job_id, message, None, False)
        except PackageImportError as exc:
            details = exc.details or "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            self._handle_error(job_id, exc.user_message, details, exc.is_retriable)
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error processing job: %s", job_id)
            self._handle_error(job_id, UNEXPECTED_ERROR_MESSAGE, traceback.format_exc(), False)

    def _process(self, job: ImportJobRecord, token: CancellationToken) -> None:
        self.storage.ensure_job_dirs(job.id)
        input_path = Path(job.input_file_path)
        assets_dir = self.storage.paths.assets_dir(job.id)

        token.raise_if_cancelled()
        self._update_progress(job.id, ImportStep.EXTRACTING, 20)
        if input_path.suffix.lower() == ".qhub":
            # the manifest is already structured, parsing is just the mapping
            result = self.qhub_extractor.extract(input_path, assets_dir)
            token.raise_if_cancelled()
            self._update_progress(job.id, ImportStep.PARSING, 50)
        else:
            extraction = self.docx_extractor.extract(input_path, assets_dir)
            self.storage.write_extracted_output(job.id, asdict(extraction))
            token.raise_if_cancelled()
            self._update_progress(job.id, ImportStep.PARSING, 50)
            result = self.parser.parse(extraction.blocks, extraction.assets)
            result.warnings = extraction.warnings + result.warnings

        self.storage.write_package_output(job.id, asdict(result))
        if not result.tours or result.total_questions == 0:
            raise ParsingError(NO_STRUCTURE_MESSAGE)

        token.raise_if_cancelled()
        self._update_progress(job.id, ImportStep.IMPORTING, 70)
        package_id = self.importer.import_package(result, job.owner_id, job.id, assets_dir)

        self._update_progress(job.id, ImportStep.FINALIZING, 90)
        self._save_original(input_path, package_id)

        token.raise_if_cancelled()
        finished = self.repo.update_running_job(
            job.id,
            status=ImportJobStatus.SUCCEEDED,
            package_id=package_id,
            warnings_json=json.dumps(result.warnings, ensure_ascii=False) if result.warnings else None,
            finished_at=datetime.utcnow(),
            current_step=None,
            progress=100,
            next_retry_at=None,
        )
        if not finished:
            logger.warning("Job %s was finished elsewhere, package %s left as draft", job.id, package_id)
            return
        logger.info("Job completed successfully: %s, package: %s", job.id, package_id)

    def _update_progress(self, job_id: str, step: ImportStep, progress: int) -> None:
        self.repo.update_running_job(job_id, current_step=step, progress=progress)
        logger.debug("Job %s: %s (%s%%)", job_id, step.value, progress)

    def _save_original(self, input_path: Path, package_id: int) -> None:
        try:
            self.storage.save_original(package_id, input_path)
        except OSError:
            logger.warning("Failed to save original package file", exc_info=True)

    def _handle_error(self, job_id: str, message: str, details: Optional[str], is_retriable: bool) -> None:
        job = self.repo.get_job(job_id)
        attempts = job.attempts if job else 0
        now = datetime.utcnow()

        if is_retriable and attempts < self.options.max_retry_attempts:
            delay = retry_delay(attempts)
            applied = self.repo.update_running_job(
                job_id,
                status=ImportJobStatus.FAILED,
                error_message=message,
                error_details=details,
                next_retry_at=now + delay,
            )
            if applied:
                logger.warning(
                    "Job %s failed (attempt %s/%s), will retry in %s",
                    job_id,
                    attempts,
                    self.options.max_retry_attempts,
                    delay,
                )
        else:
            applied = self.repo.update_running_job(
                job_id,
                status=ImportJobStatus.FAILED,
                error_message=message,
                error_details=details,
                finished_at=now,
                next_retry_at=None,
            )
            if applied:
                logger.error("Job %s failed permanently: %s", job_id, message)

        if not applied:
            logger.info("Job %s was already finished elsewhere, dropping error: %s", job_id, message)
