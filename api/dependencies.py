from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from questions_hub.importing import (
    ImportJobRepository,
    ImportStoragePaths,
    ImportWorker,
    LocalImportStorage,
    PackageDbImporter,
    PackageImportOptions,
    PackageImportService,
    PackageParser,
    QhubExtractor,
    SqlAlchemyImportJobRepository,
)
from questions_hub.importing.extractor import DoclingDocxExtractor
from questions_hub.importing.job_queue import RQJobQueue, WorkerConfig


def get_database_url() -> str:
    return os.getenv("DATABASE_URL", "sqlite+pysqlite:///./data/questions_hub.db")


def get_storage_root() -> Path:
    return Path(os.getenv("IMPORT_STORAGE_ROOT", "./data")).resolve()


@lru_cache(maxsize=1)
def get_options() -> PackageImportOptions:
    return PackageImportOptions.from_env()


@lru_cache(maxsize=1)
def get_repo() -> ImportJobRepository:
    return SqlAlchemyImportJobRepository(get_database_url())


@lru_cache(maxsize=1)
def get_storage() -> LocalImportStorage:
    return LocalImportStorage(ImportStoragePaths(get_storage_root(), jobs_folder=get_options().jobs_folder))


@lru_cache(maxsize=1)
def get_service() -> PackageImportService:
    return PackageImportService(get_repo(), get_storage(), get_options())


@lru_cache(maxsize=1)
def get_job_queue() -> Optional[RQJobQueue]:
    """RQ dispatch is used only when REDIS_URL is set; otherwise jobs run in-process."""
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        return None
    return RQJobQueue(redis_url, queue_name=os.getenv("IMPORT_QUEUE_NAME", "package-imports"))


def get_worker_config() -> WorkerConfig:
    options = get_options()
    return WorkerConfig(
        database_url=get_database_url(),
        storage_root=str(get_storage_root()),
        jobs_folder=options.jobs_folder,
        job_timeout_minutes=options.job_timeout_minutes,
        max_retry_attempts=options.max_retry_attempts,
    )


def build_worker() -> ImportWorker:
    storage = get_storage()
    return ImportWorker(
        repository=get_repo(),
        storage=storage,
        docx_extractor=DoclingDocxExtractor(),
        qhub_extractor=QhubExtractor(),
        parser=PackageParser(),
        importer=PackageDbImporter(get_database_url(), storage),
        options=get_options(),
    )
