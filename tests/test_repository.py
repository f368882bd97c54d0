import threading
from datetime import datetime, timedelta

import pytest

from questions_hub.importing import (
    ImportJobRecord,
    ImportJobStatus,
    ImportStep,
    InMemoryImportJobRepository,
    SqlAlchemyImportJobRepository,
    recover_stale_jobs,
)
from questions_hub.importing.repository import STALE_JOB_MESSAGE

NOW = datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture(params=["memory", "sql"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryImportJobRepository()
    return SqlAlchemyImportJobRepository(f"sqlite+pysqlite:///{tmp_path / 'jobs.db'}")


def _job(job_id, minutes_ago=0, owner_id="owner", **values):
    job = ImportJobRecord(
        id=job_id,
        owner_id=owner_id,
        input_file_name="package.docx",
        input_file_path=f"/tmp/{job_id}/package.docx",
        input_file_size_bytes=100,
        created_at=NOW - timedelta(minutes=minutes_ago),
    )
    for key, value in values.items():
        setattr(job, key, value)
    return job


def test_claim_next_job_takes_oldest_queued(repo):
    repo.save_job(_job("newer", minutes_ago=1))
    repo.save_job(_job("older", minutes_ago=5))

    claimed = repo.claim_next_job(NOW, max_attempts=3)

    assert claimed.id == "older"
    assert claimed.status == ImportJobStatus.RUNNING
    assert claimed.attempts == 1
    assert claimed.current_step == ImportStep.VALIDATING
    assert claimed.started_at == NOW
    assert repo.get_job("older").status == ImportJobStatus.RUNNING
    assert repo.get_job("newer").status == ImportJobStatus.QUEUED


def test_claimed_job_is_not_claimed_twice(repo):
    repo.save_job(_job("only"))

    assert repo.claim_next_job(NOW, 3) is not None
    assert repo.claim_next_job(NOW, 3) is None
    assert repo.claim_job("only", NOW, 3) is None


def test_failed_job_is_claimable_once_retry_time_has_come(repo):
    repo.save_job(
        _job("due", status=ImportJobStatus.FAILED, attempts=1, next_retry_at=NOW - timedelta(seconds=1))
    )
    repo.save_job(
        _job("later", status=ImportJobStatus.FAILED, attempts=1, next_retry_at=NOW + timedelta(minutes=1))
    )
    repo.save_job(
        _job("exhausted", status=ImportJobStatus.FAILED, attempts=3, next_retry_at=NOW - timedelta(minutes=1))
    )
    repo.save_job(_job("terminal", status=ImportJobStatus.FAILED, attempts=1, next_retry_at=None))

    claimed = repo.claim_next_job(NOW, max_attempts=3)

    assert claimed.id == "due"
    assert claimed.attempts == 2
    assert repo.claim_next_job(NOW, max_attempts=3) is None


def test_claim_job_by_id(repo):
    repo.save_job(_job("a"))

    assert repo.claim_job("missing", NOW, 3) is None
    claimed = repo.claim_job("a", NOW, 3)
    assert claimed.status == ImportJobStatus.RUNNING
    assert claimed.attempts == 1


def test_update_and_list_jobs(repo):
    repo.save_job(_job("a", minutes_ago=3, owner_id="alice"))
    repo.save_job(_job("b", minutes_ago=2, owner_id="bob"))
    repo.save_job(_job("c", minutes_ago=1, owner_id="alice"))

    repo.update_job("a", progress=50, current_step=ImportStep.PARSING, error_message=None)

    job = repo.get_job("a")
    assert job.progress == 50
    assert job.current_step == ImportStep.PARSING
    assert [j.id for j in repo.list_jobs()] == ["c", "b", "a"]
    assert [j.id for j in repo.list_jobs(owner_id="alice")] == ["c", "a"]
    assert [j.id for j in repo.list_jobs(limit=1)] == ["c"]
    assert repo.get_job("missing") is None


def test_recover_stale_jobs(repo):
    repo.save_job(_job("running", status=ImportJobStatus.RUNNING, next_retry_at=NOW))
    repo.save_job(_job("queued"))

    assert recover_stale_jobs(repo) == 1

    job = repo.get_job("running")
    assert job.status == ImportJobStatus.FAILED
    assert job.error_message == STALE_JOB_MESSAGE
    assert job.next_retry_at is None
    assert job.finished_at is not None
    assert repo.get_job("queued").status == ImportJobStatus.QUEUED
    assert recover_stale_jobs(repo) == 0


def test_in_memory_repository_returns_copies():
    repo = InMemoryImportJobRepository()
    repo.save_job(_job("a"))

    job = repo.get_job("a")
    job.progress = 99

    assert repo.get_job("a").progress == 0


def test_sql_update_rejects_unknown_fields(tmp_path):
    repo = SqlAlchemyImportJobRepository(f"sqlite+pysqlite:///{tmp_path / 'jobs.db'}")
    repo.save_job(_job("a"))

    with pytest.raises(ValueError):
        repo.update_job("a", colour="blue")


def test_claim_clears_retry_time(repo):
    repo.save_job(_job("due", status=ImportJobStatus.FAILED, attempts=1, next_retry_at=NOW - timedelta(seconds=1)))

    claimed = repo.claim_next_job(NOW, max_attempts=3)

    assert claimed.next_retry_at is None
    assert repo.get_job("due").next_retry_at is None


def test_update_running_job_only_touches_running_jobs(repo):
    repo.save_job(_job("running", status=ImportJobStatus.RUNNING))
    repo.save_job(_job("failed", status=ImportJobStatus.FAILED, error_message="Перевищено час очікування обробки"))

    assert repo.update_running_job("running", status=ImportJobStatus.SUCCEEDED, progress=100) is True
    assert repo.update_running_job("failed", status=ImportJobStatus.SUCCEEDED, progress=100) is False
    assert repo.update_running_job("missing", progress=10) is False

    assert repo.get_job("running").status == ImportJobStatus.SUCCEEDED
    failed = repo.get_job("failed")
    assert failed.status == ImportJobStatus.FAILED
    assert failed.progress == 0


def test_list_jobs_filters_by_status(repo):
    repo.save_job(_job("queued", minutes_ago=2))
    repo.save_job(_job("failed", minutes_ago=1, status=ImportJobStatus.FAILED))

    assert [j.id for j in repo.list_jobs(status=ImportJobStatus.QUEUED)] == ["queued"]
    assert [j.id for j in repo.list_jobs(status=ImportJobStatus.FAILED)] == ["failed"]


def test_requeue_due_retries(repo):
    repo.save_job(
        _job("due", minutes_ago=2, status=ImportJobStatus.FAILED, attempts=1, next_retry_at=NOW - timedelta(seconds=1))
    )
    repo.save_job(
        _job("later", minutes_ago=1, status=ImportJobStatus.FAILED, attempts=1, next_retry_at=NOW + timedelta(minutes=1))
    )
    repo.save_job(_job("terminal", status=ImportJobStatus.FAILED, attempts=1, next_retry_at=None))

    assert repo.requeue_due_retries(NOW, max_attempts=3) == ["due"]

    due = repo.get_job("due")
    assert due.status == ImportJobStatus.QUEUED
    assert due.next_retry_at is None
    assert due.attempts == 1
    assert repo.get_job("later").status == ImportJobStatus.FAILED
    assert repo.requeue_due_retries(NOW, max_attempts=3) == []


def test_concurrent_claimers_get_the_job_once(tmp_path):
    repo = SqlAlchemyImportJobRepository(f"sqlite+pysqlite:///{tmp_path / 'jobs.db'}")
    repo.save_job(_job("contested"))
    claimers = 8
    barrier = threading.Barrier(claimers)
    results = []
    errors = []
    lock = threading.Lock()

    def claim():
        barrier.wait()
        try:
            claimed = repo.claim_job("contested", NOW, 3)
        except Exception as exc:  # noqa: BLE001
            with lock:
                errors.append(exc)
            return
        with lock:
            results.append(claimed)

    threads = [threading.Thread(target=claim) for _ in range(claimers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    winners = [claimed for claimed in results if claimed is not None]
    assert len(winners) == 1
    assert winners[0].attempts == 1
    assert repo.get_job("contested").attempts == 1
