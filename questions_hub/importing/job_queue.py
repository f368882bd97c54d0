from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from redis import Redis
from rq import Queue, Worker

from .config import PackageImportOptions
from .extractor import DoclingDocxExtractor
from .importer import PackageDbImporter
from .parser import PackageParser
from .qhub import QhubExtractor
from .repository import SqlAlchemyImportJobRepository
from .storage import ImportStoragePaths, LocalImportStorage
from .worker import CancellationToken, ImportWorker

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    database_url: str
    storage_root: str
    jobs_folder: str = "jobs"
    job_timeout_minutes: int = 10
    max_retry_attempts: int = 3


def build_worker(config: WorkerConfig) -> ImportWorker:
    options = PackageImportOptions(
        jobs_folder=config.jobs_folder,
        job_timeout_minutes=config.job_timeout_minutes,
        max_retry_attempts=config.max_retry_attempts,
    )
    storage = LocalImportStorage(ImportStoragePaths(Path(config.storage_root), jobs_folder=config.jobs_folder))
    return ImportWorker(
        repository=SqlAlchemyImportJobRepository(config.database_url),
        storage=storage,
        docx_extractor=DoclingDocxExtractor(),
        qhub_extractor=QhubExtractor(),
        parser=PackageParser(),
        importer=PackageDbImporter(config.database_url, storage),
        options=options,
    )


def run_import_job(job_id: str, config: WorkerConfig) -> bool:
    """
    RQ task entrypoint. Claims the job atomically and runs it; returns False
    when another worker got there first or the job is no longer claimable.
    """
    worker = build_worker(config)
    claimed = worker.repo.claim_job(job_id, datetime.utcnow(), config.max_retry_attempts)
    if claimed is None:
        logger.info("Job %s is not claimable, skipping", job_id)
        return False
    token = CancellationToken(deadline=claimed.started_at + timedelta(minutes=config.job_timeout_minutes))
    worker.run_job(job_id, token)
    return True


class RQJobQueue:
    """
    Redis-backed job queue using RQ. The queue pushes job ids to Redis and
    workers can be started by calling `work()` in a dedicated process.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", queue_name: str = "package-imports"):
        self.redis = Redis.from_url(redis_url)
        self.queue = Queue(queue_name, connection=self.redis)

    def enqueue_import_job(self, job_id: str, config: WorkerConfig):
        """
        Enqueue an import job. The RQ job id is the import job id for idempotency.
        """
        return self.queue.enqueue(
            run_import_job,
            job_id,
            config,
            job_id=job_id,
            job_timeout=config.job_timeout_minutes * 60 + 60,
            retry=None,
        )

    def work(self):
        worker = Worker([self.queue], connection=self.redis)
        worker.work(with_scheduler=True)
