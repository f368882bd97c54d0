"""
In-process job orchestration: a polling loop that claims import jobs from
the repository and runs them on worker threads, at most
`max_concurrent_jobs` at a time, each under its own timeout.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .config import PackageImportOptions
from .models import ImportJobRecord, ImportJobStatus
from .repository import ImportJobRepository
from .worker import UNEXPECTED_ERROR_MESSAGE, CancellationToken, ImportWorker, timeout_message

logger = logging.getLogger(__name__)


def recover_stale_jobs(repository: ImportJobRepository) -> int:
    """
    Fails jobs left Running by a previous process; their worker is gone.
    Call once on startup, before the background service starts claiming.
    """
    count = repository.recover_stale_jobs(datetime.utcnow())
    if count:
        logger.warning("Marked %s stale import jobs as failed", count)
    else:
        logger.info("No stale import jobs found")
    return count


class ImportBackgroundService:
    def __init__(
        self,
        repository: ImportJobRepository,
        worker: ImportWorker,
        options: Optional[PackageImportOptions] = None,
    ):
        self.repo = repository
        self.worker = worker
        self.options = options or PackageImportOptions()
        self._semaphore = asyncio.Semaphore(self.options.max_concurrent_jobs)
        self._stop_event = asyncio.Event()
        self._tokens: Dict[str, CancellationToken] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    async def run(self) -> None:
        logger.info(
            "Package import background service started (max concurrent: %s)",
            self.options.max_concurrent_jobs,
        )
        while not self._stop_event.is_set():
            await self._semaphore.acquire()
            try:
                job = await asyncio.to_thread(
                    self.repo.claim_next_job, datetime.utcnow(), self.options.max_retry_attempts
                )
            except Exception:  # noqa: BLE001
                logger.exception("Error in import worker loop")
                job = None

            if job is None:
                self._semaphore.release()
                await self._sleep(self.options.poll_interval_seconds)
                continue

            logger.info("Dequeued import job: %s, attempt %s", job.id, job.attempts)
            task = asyncio.create_task(self._process_with_timeout(job))
            self._tasks[job.id] = task
            task.add_done_callback(lambda _t, job_id=job.id: self._on_job_done(job_id))

        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        logger.info("Package import background service stopped")

    def stop(self) -> None:
        """Stops claiming new jobs and cancels the running ones."""
        self._stop_event.set()
        for token in self._tokens.values():
            token.cancel()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _on_job_done(self, job_id: str) -> None:
        self._tasks.pop(job_id, None)
        self._tokens.pop(job_id, None)
        self._semaphore.release()

    async def _process_with_timeout(self, job: ImportJobRecord) -> None:
        timeout_seconds = self.options.job_timeout_minutes * 60
        token = CancellationToken(deadline=datetime.utcnow() + timedelta(seconds=timeout_seconds))
        self._tokens[job.id] = token
        run = asyncio.ensure_future(asyncio.to_thread(self.worker.run_job, job.id, token))
        try:
            await asyncio.wait_for(asyncio.shield(run), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            token.cancel()
            logger.warning("Job %s timed out after %s minutes", job.id, self.options.job_timeout_minutes)
            await asyncio.to_thread(self._mark_job_failed, job.id, timeout_message(self.options.job_timeout_minutes))
            # the slot stays taken until the worker thread notices the token
            await asyncio.gather(run, return_exceptions=True)
        except Exception:  # noqa: BLE001
            logger.exception("Error processing job %s", job.id)
            await asyncio.to_thread(self._mark_job_failed, job.id, UNEXPECTED_ERROR_MESSAGE)

    def _mark_job_failed(self, job_id: str, message: str) -> None:
        try:
            self.repo.update_running_job(
                job_id,
                status=ImportJobStatus.FAILED,
                error_message=message,
                finished_at=datetime.utcnow(),
                next_retry_at=None,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to mark job %s as failed", job_id)


class RetryDispatcher:
    """
    Companion of the RQ queue. RQ runs every enqueued job once, so failed jobs
    whose retry time has come are flipped back to Queued and enqueued again.
    On start it also re-enqueues Queued jobs that never reached Redis.
    """

    def __init__(
        self,
        repository: ImportJobRepository,
        enqueue: Callable[[str], None],
        options: Optional[PackageImportOptions] = None,
    ):
        self.repo = repository
        self.enqueue = enqueue
        self.options = options or PackageImportOptions()
        self._stop_event = asyncio.Event()

    async def run(self) -> None:
        await asyncio.to_thread(self._dispatch_queued)
        while not self._stop_event.is_set():
            await asyncio.to_thread(self.dispatch_due_retries)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.options.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stop_event.set()

    def dispatch_due_retries(self) -> List[str]:
        try:
            job_ids = self.repo.requeue_due_retries(datetime.utcnow(), self.options.max_retry_attempts)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to look up import jobs due for retry")
            return []
        for job_id in job_ids:
            self._enqueue(job_id)
        if job_ids:
            logger.info("Re-enqueued %s import jobs for retry", len(job_ids))
        return job_ids

    def _dispatch_queued(self) -> None:
        try:
            jobs = self.repo.list_jobs(limit=1000, status=ImportJobStatus.QUEUED)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to list queued import jobs")
            return
        for job in jobs:
            self._enqueue(job.id)

    def _enqueue(self, job_id: str) -> None:
        try:
            self.enqueue(job_id)
        except Exception:  # noqa: BLE001
            # stays Queued; picked up again on the next start
            logger.exception("Failed to enqueue import job %s", job_id)
