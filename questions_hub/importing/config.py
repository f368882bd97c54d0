from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

_SIZE_UNITS = ["Б", "КБ", "МБ", "ГБ"]


@dataclass
class PackageImportOptions:
    max_file_size_bytes: int = 50 * 1024 * 1024
    allowed_extensions: List[str] = field(default_factory=lambda: [".docx", ".qhub"])
    job_timeout_minutes: int = 10
    max_concurrent_jobs: int = 2
    jobs_folder: str = "jobs"
    max_retry_attempts: int = 3
    poll_interval_seconds: float = 5.0

    def is_extension_allowed(self, file_name: str) -> bool:
        ext = Path(file_name).suffix.lower()
        return bool(ext) and ext in [e.lower() for e in self.allowed_extensions]

    @classmethod
    def from_env(cls) -> "PackageImportOptions":
        defaults = cls()
        extensions = os.getenv("IMPORT_ALLOWED_EXTENSIONS")
        return cls(
            max_file_size_bytes=int(os.getenv("IMPORT_MAX_FILE_SIZE_BYTES", str(defaults.max_file_size_bytes))),
            allowed_extensions=[e.strip() for e in extensions.split(",") if e.strip()]
            if extensions
            else defaults.allowed_extensions,
            job_timeout_minutes=int(os.getenv("IMPORT_JOB_TIMEOUT_MINUTES", str(defaults.job_timeout_minutes))),
            max_concurrent_jobs=int(os.getenv("IMPORT_MAX_CONCURRENT_JOBS", str(defaults.max_concurrent_jobs))),
            jobs_folder=os.getenv("IMPORT_JOBS_FOLDER", defaults.jobs_folder),
            max_retry_attempts=int(os.getenv("IMPORT_MAX_RETRY_ATTEMPTS", str(defaults.max_retry_attempts))),
            poll_interval_seconds=float(os.getenv("IMPORT_POLL_INTERVAL_SECONDS", str(defaults.poll_interval_seconds))),
        )


def format_file_size(size_bytes: int) -> str:
    """Human readable size with Ukrainian units, e.g. ``50 МБ`` or ``1.5 КБ``."""
    size = float(size_bytes)
    order = 0
    while size >= 1024 and order < len(_SIZE_UNITS) - 1:
        order += 1
        size /= 1024
    rendered = f"{size:.2f}".rstrip("0").rstrip(".")
    return f"{rendered} {_SIZE_UNITS[order]}"
