import io
import json
import zipfile
from datetime import datetime, timedelta

import pytest

from questions_hub.importing import (
    CancellationToken,
    DocBlock,
    ExtractionResult,
    ImportJobStatus,
    ImportStoragePaths,
    ImportWorker,
    InMemoryImportJobRepository,
    LocalImportStorage,
    PackageDbImporter,
    PackageImportOptions,
    PackageImportService,
    PackageParser,
    QhubExtractor,
    TransientImportError,
    ValidationError,
)
from questions_hub.importing.worker import NO_STRUCTURE_MESSAGE, UNEXPECTED_ERROR_MESSAGE, retry_delay, timeout_message

PACKAGE_LINES = [
    "Кубок Києва",
    "Тур 1",
    "1. Хто написав Гамлета?",
    "Відповідь: Шекспір",
    "2. Назвіть столицю України.",
    "Відповідь: Київ",
]


class _StaticExtractor:
    def __init__(self, lines=None, warnings=None, error=None):
        self.lines = lines or []
        self.warnings = warnings or []
        self.error = error
        self.calls = 0

    def extract(self, path, assets_dir):
        self.calls += 1
        if self.error is not None:
            raise self.error
        blocks = [DocBlock(index=i, text=line) for i, line in enumerate(self.lines)]
        return ExtractionResult(blocks=blocks, warnings=list(self.warnings))


class _Pipeline:
    def __init__(self, tmp_path, extractor, options=None):
        self.options = options or PackageImportOptions()
        self.repo = InMemoryImportJobRepository()
        self.storage = LocalImportStorage(ImportStoragePaths(tmp_path / "storage"))
        self.service = PackageImportService(self.repo, self.storage, self.options)
        self.worker = ImportWorker(
            repository=self.repo,
            storage=self.storage,
            docx_extractor=extractor,
            qhub_extractor=QhubExtractor(),
            parser=PackageParser(),
            importer=PackageDbImporter(f"sqlite+pysqlite:///{tmp_path / 'packages.db'}", self.storage),
            options=self.options,
        )

    def submit(self, file_name="package.docx", payload=b"docx-bytes"):
        job = self.service.enqueue("owner-1", file_name, io.BytesIO(payload), len(payload))
        claimed = self.repo.claim_job(job.id, datetime.utcnow(), self.options.max_retry_attempts)
        assert claimed is not None
        return job.id

    def run(self, job_id, token=None):
        self.worker.run_job(job_id, token or CancellationToken())
        return self.repo.get_job(job_id)


def test_docx_job_succeeds(tmp_path):
    pipeline = _Pipeline(tmp_path, _StaticExtractor(PACKAGE_LINES, warnings=["Зображення пропущено"]))
    job_id = pipeline.submit()

    job = pipeline.run(job_id)

    assert job.status == ImportJobStatus.SUCCEEDED
    assert job.progress == 100
    assert job.current_step is None
    assert job.package_id is not None
    assert job.finished_at is not None
    assert json.loads(job.warnings_json) == ["Зображення пропущено"]

    paths = pipeline.storage.paths
    assert paths.extracted_output_path(job_id).exists()
    output = json.loads(paths.package_output_path(job_id).read_text(encoding="utf-8"))
    assert output["title"] == "Кубок Києва"
    assert len(output["tours"][0]["questions"]) == 2
    assert (paths.package_dir(job.package_id) / "original.docx").read_bytes() == b"docx-bytes"


def test_qhub_job_succeeds(tmp_path):
    manifest = {
        "formatVersion": "1.0",
        "title": "Архівний пакет",
        "tours": [{"number": "1", "questions": [{"number": "1", "text": "Хто це?", "answer": "Шевченко"}]}],
    }
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("package.json", json.dumps(manifest, ensure_ascii=False))
    extractor = _StaticExtractor()
    pipeline = _Pipeline(tmp_path, extractor)
    job_id = pipeline.submit("package.qhub", buffer.getvalue())

    job = pipeline.run(job_id)

    assert job.status == ImportJobStatus.SUCCEEDED
    assert job.warnings_json is None
    assert extractor.calls == 0
    assert not pipeline.storage.paths.extracted_output_path(job_id).exists()
    assert (pipeline.storage.paths.package_dir(job.package_id) / "original.qhub").exists()


def test_document_without_questions_fails(tmp_path):
    pipeline = _Pipeline(tmp_path, _StaticExtractor(["Просто текст без структури"]))
    job_id = pipeline.submit()

    job = pipeline.run(job_id)

    assert job.status == ImportJobStatus.FAILED
    assert job.error_message == NO_STRUCTURE_MESSAGE
    assert job.finished_at is not None
    assert job.next_retry_at is None
    assert job.package_id is None
    assert pipeline.storage.paths.package_output_path(job_id).exists()


def test_transient_error_schedules_retry(tmp_path):
    pipeline = _Pipeline(tmp_path, _StaticExtractor(error=TransientImportError("Сховище тимчасово недоступне")))
    job_id = pipeline.submit()
    before = datetime.utcnow()

    job = pipeline.run(job_id)

    assert job.status == ImportJobStatus.FAILED
    assert job.error_message == "Сховище тимчасово недоступне"
    assert job.finished_at is None
    assert before + timedelta(seconds=29) <= job.next_retry_at <= datetime.utcnow() + timedelta(seconds=30)
    assert "TransientImportError" in job.error_details


def test_transient_error_is_terminal_when_attempts_run_out(tmp_path):
    pipeline = _Pipeline(tmp_path, _StaticExtractor(error=TransientImportError("Сховище тимчасово недоступне")))
    job_id = pipeline.submit()
    pipeline.repo.update_job(job_id, attempts=3)

    job = pipeline.run(job_id)

    assert job.status == ImportJobStatus.FAILED
    assert job.next_retry_at is None
    assert job.finished_at is not None


def test_cancelled_job_fails_without_retry(tmp_path):
    extractor = _StaticExtractor(PACKAGE_LINES)
    pipeline = _Pipeline(tmp_path, extractor)
    job_id = pipeline.submit()
    token = CancellationToken()
    token.cancel()

    job = pipeline.run(job_id, token)

    assert job.status == ImportJobStatus.FAILED
    assert job.error_message == "Обробку було скасовано"
    assert job.next_retry_at is None
    assert extractor.calls == 0


def test_expired_deadline_reports_timeout(tmp_path):
    pipeline = _Pipeline(tmp_path, _StaticExtractor(PACKAGE_LINES), PackageImportOptions(job_timeout_minutes=7))
    job_id = pipeline.submit()

    job = pipeline.run(job_id, CancellationToken(deadline=datetime.utcnow() - timedelta(seconds=1)))

    assert job.status == ImportJobStatus.FAILED
    assert job.error_message == "Перевищено час очікування обробки (7 хвилин)"
    assert job.error_message == timeout_message(7)
    assert job.finished_at is not None


def test_unexpected_error_is_reported_generically(tmp_path):
    pipeline = _Pipeline(tmp_path, _StaticExtractor(error=RuntimeError("boom")))
    job_id = pipeline.submit()

    job = pipeline.run(job_id)

    assert job.status == ImportJobStatus.FAILED
    assert job.error_message == UNEXPECTED_ERROR_MESSAGE
    assert "RuntimeError: boom" in job.error_details
    assert job.next_retry_at is None


def test_unknown_job_is_ignored(tmp_path):
    pipeline = _Pipeline(tmp_path, _StaticExtractor(PACKAGE_LINES))
    pipeline.worker.run_job("missing")
    assert pipeline.repo.list_jobs() == []


def test_retry_delay_backs_off():
    assert retry_delay(1) == timedelta(seconds=30)
    assert retry_delay(2) == timedelta(minutes=2)
    assert retry_delay(3) == timedelta(minutes=5)
    assert retry_delay(7) == timedelta(minutes=5)


@pytest.mark.parametrize(
    "file_name, size, message",
    [
        ("package.pdf", 10, "Непідтримуваний формат файлу. Дозволені: .docx, .qhub"),
        ("package", 10, "Непідтримуваний формат файлу. Дозволені: .docx, .qhub"),
        ("package.docx", 60 * 1024 * 1024, "Файл занадто великий. Максимальний розмір: 50 МБ"),
        ("package.docx", 0, "Файл порожній"),
    ],
)
def test_upload_validation(tmp_path, file_name, size, message):
    pipeline = _Pipeline(tmp_path, _StaticExtractor())
    with pytest.raises(ValidationError) as exc:
        pipeline.service.validate_upload(file_name, size)
    assert exc.value.user_message == message


def test_enqueue_stores_upload_under_job_input(tmp_path):
    pipeline = _Pipeline(tmp_path, _StaticExtractor())

    job = pipeline.service.enqueue("owner-1", "../nested/Пакет.DOCX", io.BytesIO(b"abc"), 3)

    assert job.status == ImportJobStatus.QUEUED
    assert job.input_file_name == "Пакет.DOCX"
    assert job.input_file_path == str(pipeline.storage.paths.input_path(job.id, "Пакет.DOCX"))
    assert pipeline.storage.paths.input_path(job.id, "Пакет.DOCX").read_bytes() == b"abc"
    assert pipeline.service.get_jobs_for_user("owner-1")[0].id == job.id
    assert pipeline.service.get_jobs_for_user("someone-else") == []


def test_manual_retry_requeues_failed_job(tmp_path):
    pipeline = _Pipeline(tmp_path, _StaticExtractor(error=RuntimeError("boom")))
    job_id = pipeline.submit()
    pipeline.run(job_id)

    job = pipeline.service.retry(job_id)

    assert job.status == ImportJobStatus.QUEUED
    assert job.error_message is None
    assert job.finished_at is None
    assert job.progress == 0
    assert job.attempts == 1
    assert pipeline.service.retry("missing") is None


def test_manual_retry_rejects_jobs_that_did_not_fail(tmp_path):
    pipeline = _Pipeline(tmp_path, _StaticExtractor())
    job = pipeline.service.enqueue("owner-1", "package.docx", io.BytesIO(b"abc"), 3)

    with pytest.raises(ValidationError):
        pipeline.service.retry(job.id)


class _SweptExtractor(_StaticExtractor):
    """Runs `on_extract` first, to fail the job while extraction is in flight."""

    def __init__(self, lines):
        super().__init__(lines)
        self.on_extract = None

    def extract(self, path, assets_dir):
        self.on_extract()
        return super().extract(path, assets_dir)


def test_job_failed_elsewhere_is_not_overwritten(tmp_path):
    extractor = _SweptExtractor(PACKAGE_LINES)
    pipeline = _Pipeline(tmp_path, extractor)
    job_id = pipeline.submit()
    extractor.on_extract = lambda: pipeline.repo.update_job(
        job_id, status=ImportJobStatus.FAILED, error_message=timeout_message(10)
    )

    job = pipeline.run(job_id)

    assert job.status == ImportJobStatus.FAILED
    assert job.error_message == timeout_message(10)
    assert job.package_id is None
    assert job.progress != 100
