import time
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from questions_hub.importing import (
    ImportJobRecord,
    ImportJobStatus,
    ImportStoragePaths,
    InMemoryImportJobRepository,
    LocalImportStorage,
    PackageImportOptions,
    PackageImportService,
)
from questions_hub.importing.repository import STALE_JOB_MESSAGE

import api.app as app_module
from api.app import app
from api.dependencies import get_job_queue, get_service, get_storage

DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class _FakeQueue:
    def __init__(self):
        self.enqueued = []

    def enqueue_import_job(self, job_id, config):
        self.enqueued.append((job_id, config))


@pytest.fixture()
def storage(tmp_path):
    return LocalImportStorage(ImportStoragePaths(tmp_path / "storage"))


@pytest.fixture()
def service(storage):
    return PackageImportService(InMemoryImportJobRepository(), storage)


@pytest.fixture()
def queue():
    return _FakeQueue()


@pytest.fixture()
def client(service, storage, queue):
    app.dependency_overrides[get_service] = lambda: service
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_job_queue] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(client, name="package.docx", content=b"docx-bytes", owner_id="alice"):
    return client.post("/imports", files={"file": (name, content, DOCX_TYPE)}, data={"owner_id": owner_id})


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_upload_creates_queued_job(client, service):
    response = _upload(client)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "queued"
    assert body["owner_id"] == "alice"
    assert body["file_name"] == "package.docx"
    assert body["file_size_bytes"] == len(b"docx-bytes")
    assert body["progress"] == 0
    assert service.get_job(body["id"]) is not None


def test_upload_is_dispatched_to_queue_when_configured(client, queue):
    app.dependency_overrides[get_job_queue] = lambda: queue

    body = _upload(client).json()

    assert [job_id for job_id, _ in queue.enqueued] == [body["id"]]


@pytest.mark.parametrize(
    "name, content, message",
    [
        ("package.pdf", b"pdf", "Непідтримуваний формат файлу. Дозволені: .docx, .qhub"),
        ("package.docx", b"", "Файл порожній"),
    ],
)
def test_invalid_upload_is_rejected(client, name, content, message):
    response = _upload(client, name=name, content=content)

    assert response.status_code == 400
    assert response.json()["detail"] == message


def test_list_imports_filters_by_owner(client):
    _upload(client, owner_id="alice")
    _upload(client, owner_id="bob")

    assert len(client.get("/imports").json()) == 2
    owned = client.get("/imports", params={"owner_id": "bob"}).json()
    assert [job["owner_id"] for job in owned] == ["bob"]


def test_get_import_includes_warnings(client, service):
    job_id = _upload(client).json()["id"]
    service.repo.update_job(job_id, warnings_json='["Питання 3: відповідь не знайдено"]')

    body = client.get(f"/imports/{job_id}").json()

    assert body["warnings"] == ["Питання 3: відповідь не знайдено"]


def test_unknown_job_is_404(client):
    assert client.get("/imports/missing").status_code == 404
    assert client.get("/jobs/missing").status_code == 404
    assert client.post("/jobs/missing/retry").status_code == 404


def test_job_status(client, service):
    job_id = _upload(client).json()["id"]

    body = client.get(f"/jobs/{job_id}").json()

    assert body == {
        "id": job_id,
        "status": "queued",
        "current_step": None,
        "progress": 0,
        "package_id": None,
        "error_message": None,
    }


def test_retry_only_failed_jobs(client, service):
    job_id = _upload(client).json()["id"]

    conflict = client.post(f"/jobs/{job_id}/retry")
    assert conflict.status_code == 409
    assert conflict.json()["detail"] == "Повторити можна лише невдалу обробку"

    service.repo.update_job(job_id, status=ImportJobStatus.FAILED, error_message="Неочікувана помилка при обробці")
    response = client.post(f"/jobs/{job_id}/retry")

    assert response.status_code == 200
    assert response.json()["status"] == "queued"
    assert response.json()["error_message"] is None


def test_media_is_served_from_handouts(client, storage):
    handouts = storage.paths.handouts_dir()
    handouts.mkdir(parents=True)
    (handouts / "map.png").write_bytes(b"png-bytes")

    response = client.get("/media/map.png")

    assert response.status_code == 200
    assert response.content == b"png-bytes"
    assert client.get("/media/missing.png").status_code == 404


def _stored_job(job_id, **values):
    job = ImportJobRecord(
        id=job_id,
        owner_id="alice",
        input_file_name="package.docx",
        input_file_path=f"/tmp/{job_id}/package.docx",
        input_file_size_bytes=10,
    )
    for key, value in values.items():
        setattr(job, key, value)
    return job


def test_lifespan_with_queue_recovers_and_dispatches_retries(monkeypatch):
    repo = InMemoryImportJobRepository()
    repo.save_job(_stored_job("interrupted", status=ImportJobStatus.RUNNING, attempts=1))
    repo.save_job(
        _stored_job(
            "due",
            status=ImportJobStatus.FAILED,
            attempts=1,
            next_retry_at=datetime.utcnow() - timedelta(seconds=1),
        )
    )
    queue = _FakeQueue()
    monkeypatch.setenv("IMPORT_BACKGROUND_ENABLED", "1")
    monkeypatch.setattr(app_module, "get_repo", lambda: repo)
    monkeypatch.setattr(app_module, "get_job_queue", lambda: queue)
    monkeypatch.setattr(app_module, "get_worker_config", lambda: "config")
    monkeypatch.setattr(app_module, "get_options", lambda: PackageImportOptions(poll_interval_seconds=0.01))

    with TestClient(app):
        deadline = time.monotonic() + 5
        while not queue.enqueued and time.monotonic() < deadline:
            time.sleep(0.01)

    assert queue.enqueued == [("due", "config")]
    interrupted = repo.get_job("interrupted")
    assert interrupted.status == ImportJobStatus.FAILED
    assert interrupted.error_message == STALE_JOB_MESSAGE
    assert interrupted.next_retry_at is None
    assert repo.get_job("due").status == ImportJobStatus.QUEUED
