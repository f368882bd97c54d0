from __future__ import annotations

import threading
from copy import deepcopy
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, DateTime, Enum, Integer, String, Text, and_, create_engine, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from .models import ImportJobRecord, ImportJobStatus, ImportStep
from .schema import Base

STALE_JOB_MESSAGE = "Обробку було перервано через перезапуск сервера"


class ImportJobModel(Base):
    __tablename__ = "package_import_jobs"
    id = Column(String, primary_key=True)
    owner_id = Column(String, index=True)
    created_at = Column(DateTime, index=True)
    started_at = Column(DateTime)
    finished_at = Column(DateTime)
    status = Column(Enum(ImportJobStatus), index=True)
    current_step = Column(Enum(ImportStep))
    progress = Column(Integer, default=0)
    attempts = Column(Integer, default=0)
    next_retry_at = Column(DateTime)
    input_file_name = Column(String)
    input_file_path = Column(String)
    input_file_size_bytes = Column(Integer)
    converted_file_path = Column(String)
    package_id = Column(Integer)
    error_message = Column(String)
    error_details = Column(Text)
    warnings_json = Column(Text)


_JOB_FIELDS = [c.name for c in ImportJobModel.__table__.columns]


def _claim_values(job: ImportJobRecord, now: datetime) -> Dict[str, Any]:
    return {
        "status": ImportJobStatus.RUNNING,
        "started_at": now,
        "attempts": job.attempts + 1,
        "current_step": ImportStep.VALIDATING,
        "progress": 0,
        "error_message": None,
        "error_details": None,
        "next_retry_at": None,
    }


def is_claimable(job: ImportJobRecord, now: datetime, max_attempts: int) -> bool:
    """Queued jobs, and failed jobs whose retry time has come and attempts are left."""
    if job.status == ImportJobStatus.QUEUED:
        return True
    return (
        job.status == ImportJobStatus.FAILED
        and job.attempts < max_attempts
        and job.next_retry_at is not None
        and job.next_retry_at <= now
    )


class ImportJobRepository:
    """
    Persistence boundary for import jobs. Claiming must be atomic: two
    workers racing for the same job may never both get it.
    """

    def get_job(self, job_id: str) -> Optional[ImportJobRecord]:
        raise NotImplementedError

    def save_job(self, job: ImportJobRecord) -> None:
        raise NotImplementedError

    def update_job(self, job_id: str, **values: Any) -> None:
        """Sets the given fields; None values are written as None."""
        raise NotImplementedError

    def update_running_job(self, job_id: str, **values: Any) -> bool:
        """
        Like `update_job`, but only while the job is still Running. Returns
        False when someone else (a timeout, a stale-job sweep) already moved it.
        """
        raise NotImplementedError

    def list_jobs(
        self, owner_id: Optional[str] = None, limit: int = 50, status: Optional[ImportJobStatus] = None
    ) -> List[ImportJobRecord]:
        """Newest first."""
        raise NotImplementedError

    def requeue_due_retries(self, now: datetime, max_attempts: int) -> List[str]:
        """Flips failed jobs whose retry time has come back to Queued; returns their ids."""
        raise NotImplementedError

    def claim_next_job(self, now: datetime, max_attempts: int) -> Optional[ImportJobRecord]:
        """Flips the oldest claimable job to Running and returns it."""
        raise NotImplementedError

    def claim_job(self, job_id: str, now: datetime, max_attempts: int) -> Optional[ImportJobRecord]:
        """Same as `claim_next_job` for one specific job; None if it is not claimable."""
        raise NotImplementedError

    def recover_stale_jobs(self, now: datetime) -> int:
        """Fails every Running job without a retry; returns how many were touched."""
        raise NotImplementedError


class InMemoryImportJobRepository(ImportJobRepository):
    """
    In-memory store for local runs and tests. Keeps copies of the records
    to avoid cross-mutation between calls; a lock makes claims atomic.
    """

    def __init__(self):
        self.jobs: Dict[str, ImportJobRecord] = {}
        self._lock = threading.Lock()

    def _clone(self, obj):
        return deepcopy(obj)

    def get_job(self, job_id: str) -> Optional[ImportJobRecord]:
        job = self.jobs.get(job_id)
        return self._clone(job) if job else None

    def save_job(self, job: ImportJobRecord) -> None:
        with self._lock:
            self.jobs[job.id] = self._clone(job)

    def update_job(self, job_id: str, **values: Any) -> None:
        with self._lock:
            job = self.jobs.get(job_id)
            if not job:
                return
            for key, value in values.items():
                setattr(job, key, value)

    def update_running_job(self, job_id: str, **values: Any) -> bool:
        with self._lock:
            job = self.jobs.get(job_id)
            if not job or job.status != ImportJobStatus.RUNNING:
                return False
            for key, value in values.items():
                setattr(job, key, value)
            return True

    def list_jobs(
        self, owner_id: Optional[str] = None, limit: int = 50, status: Optional[ImportJobStatus] = None
    ) -> List[ImportJobRecord]:
        jobs = [
            j
            for j in self.jobs.values()
            if (owner_id is None or j.owner_id == owner_id) and (status is None or j.status == status)
        ]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [self._clone(j) for j in jobs[:limit]]

    def requeue_due_retries(self, now: datetime, max_attempts: int) -> List[str]:
        with self._lock:
            due = [
                j
                for j in self.jobs.values()
                if j.status == ImportJobStatus.FAILED and is_claimable(j, now, max_attempts)
            ]
            due.sort(key=lambda j: j.created_at)
            for job in due:
                job.status = ImportJobStatus.QUEUED
                job.next_retry_at = None
            return [j.id for j in due]

    def claim_next_job(self, now: datetime, max_attempts: int) -> Optional[ImportJobRecord]:
        with self._lock:
            candidates = [j for j in self.jobs.values() if is_claimable(j, now, max_attempts)]
            if not candidates:
                return None
            job = min(candidates, key=lambda j: j.created_at)
            return self._claim(job, now)

    def claim_job(self, job_id: str, now: datetime, max_attempts: int) -> Optional[ImportJobRecord]:
        with self._lock:
            job = self.jobs.get(job_id)
            if not job or not is_claimable(job, now, max_attempts):
                return None
            return self._claim(job, now)

    def _claim(self, job: ImportJobRecord, now: datetime) -> ImportJobRecord:
        for key, value in _claim_values(job, now).items():
            setattr(job, key, value)
        return self._clone(job)

    def recover_stale_jobs(self, now: datetime) -> int:
        with self._lock:
            stale = [j for j in self.jobs.values() if j.status == ImportJobStatus.RUNNING]
            for job in stale:
                job.status = ImportJobStatus.FAILED
                job.error_message = STALE_JOB_MESSAGE
                job.finished_at = now
                job.next_retry_at = None
            return len(stale)


class SqlAlchemyImportJobRepository(ImportJobRepository):
    """
    SQL-backed repository using SQLAlchemy. Works with SQLite/Postgres URLs.
    Claims use a conditional UPDATE on the status and attempts the claimer saw,
    so a concurrent claimer matches zero rows and moves on.
    """

    def __init__(self, database_url: str):
        self.engine = create_engine(database_url, future=True)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def _session(self) -> Session:
        return self.SessionLocal()

    def _to_record(self, model: ImportJobModel) -> ImportJobRecord:
        return ImportJobRecord(**{name: getattr(model, name) for name in _JOB_FIELDS})

    # region Job operations
    def get_job(self, job_id: str) -> Optional[ImportJobRecord]:
        with self._session() as session:
            model = session.get(ImportJobModel, job_id)
            if not model:
                return None
            return self._to_record(model)

    def save_job(self, job: ImportJobRecord) -> None:
        with self._session() as session:
            session.merge(ImportJobModel(**{name: getattr(job, name) for name in _JOB_FIELDS}))
            session.commit()

    def update_job(self, job_id: str, **values: Any) -> None:
        unknown = set(values) - set(_JOB_FIELDS)
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")
        if not values:
            return
        with self._session() as session:
            session.execute(update(ImportJobModel).where(ImportJobModel.id == job_id).values(**values))
            session.commit()

    def update_running_job(self, job_id: str, **values: Any) -> bool:
        unknown = set(values) - set(_JOB_FIELDS)
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")
        with self._session() as session:
            stmt = (
                update(ImportJobModel)
                .where(ImportJobModel.id == job_id, ImportJobModel.status == ImportJobStatus.RUNNING)
                .values(**values)
            )
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    def list_jobs(
        self, owner_id: Optional[str] = None, limit: int = 50, status: Optional[ImportJobStatus] = None
    ) -> List[ImportJobRecord]:
        with self._session() as session:
            stmt = select(ImportJobModel)
            if owner_id is not None:
                stmt = stmt.where(ImportJobModel.owner_id == owner_id)
            if status is not None:
                stmt = stmt.where(ImportJobModel.status == status)
            stmt = stmt.order_by(ImportJobModel.created_at.desc()).limit(limit)
            return [self._to_record(m) for m in session.execute(stmt).scalars().all()]

    # endregion

    # region Claiming
    def _claimable_clause(self, now: datetime, max_attempts: int):
        return or_(
            ImportJobModel.status == ImportJobStatus.QUEUED,
            and_(
                ImportJobModel.status == ImportJobStatus.FAILED,
                ImportJobModel.attempts < max_attempts,
                ImportJobModel.next_retry_at.is_not(None),
                ImportJobModel.next_retry_at <= now,
            ),
        )

    def claim_next_job(self, now: datetime, max_attempts: int) -> Optional[ImportJobRecord]:
        with self._session() as session:
            stmt = (
                select(ImportJobModel.id)
                .where(self._claimable_clause(now, max_attempts))
                .order_by(ImportJobModel.created_at)
                .limit(5)
            )
            candidate_ids = session.execute(stmt).scalars().all()
        for job_id in candidate_ids:
            claimed = self.claim_job(job_id, now, max_attempts)
            if claimed:
                return claimed
        return None

    def claim_job(self, job_id: str, now: datetime, max_attempts: int) -> Optional[ImportJobRecord]:
        with self._session() as session:
            model = session.get(ImportJobModel, job_id)
            if not model:
                return None
            seen = self._to_record(model)
            if not is_claimable(seen, now, max_attempts):
                return None
            stmt = (
                update(ImportJobModel)
                .where(
                    ImportJobModel.id == job_id,
                    ImportJobModel.status == seen.status,
                    ImportJobModel.attempts == seen.attempts,
                )
                .values(**_claim_values(seen, now))
                .execution_options(synchronize_session=False)
            )
            result = session.execute(stmt)
            session.commit()
            if result.rowcount != 1:
                return None
        return self.get_job(job_id)

    def requeue_due_retries(self, now: datetime, max_attempts: int) -> List[str]:
        with self._session() as session:
            stmt = (
                select(ImportJobModel.id, ImportJobModel.attempts)
                .where(
                    ImportJobModel.status == ImportJobStatus.FAILED,
                    ImportJobModel.attempts < max_attempts,
                    ImportJobModel.next_retry_at.is_not(None),
                    ImportJobModel.next_retry_at <= now,
                )
                .order_by(ImportJobModel.created_at)
            )
            due = session.execute(stmt).all()

            requeued: List[str] = []
            for job_id, attempts in due:
                result = session.execute(
                    update(ImportJobModel)
                    .where(
                        ImportJobModel.id == job_id,
                        ImportJobModel.status == ImportJobStatus.FAILED,
                        ImportJobModel.attempts == attempts,
                    )
                    .values(status=ImportJobStatus.QUEUED, next_retry_at=None)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    requeued.append(job_id)
            session.commit()
            return requeued

    def recover_stale_jobs(self, now: datetime) -> int:
        with self._session() as session:
            stmt = (
                update(ImportJobModel)
                .where(ImportJobModel.status == ImportJobStatus.RUNNING)
                .values(
                    status=ImportJobStatus.FAILED,
                    error_message=STALE_JOB_MESSAGE,
                    finished_at=now,
                    next_retry_at=None,
                )
            )
            result = session.execute(stmt)
            session.commit()
            return result.rowcount or 0

    # endregion
