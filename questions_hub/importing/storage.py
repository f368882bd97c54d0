from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Optional

logger = logging.getLogger(__name__)


@dataclass
class ImportStoragePaths:
    root: Path
    jobs_folder: str = "jobs"
    uploads_folder: str = "uploads"
    handouts_folder: str = "handouts"

    def job_dir(self, job_id: str) -> Path:
        return self.root / self.jobs_folder / str(job_id)

    def input_dir(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "input"

    def input_path(self, job_id: str, file_name: str) -> Path:
        return self.input_dir(job_id) / file_name

    def working_dir(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "working"

    def assets_dir(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "assets"

    def output_dir(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "output"

    def extracted_output_path(self, job_id: str) -> Path:
        return self.working_dir(job_id) / "extracted.json"

    def package_output_path(self, job_id: str) -> Path:
        return self.output_dir(job_id) / "package_import.json"

    def package_dir(self, package_id: int) -> Path:
        return self.root / "packages" / str(package_id)

    def handouts_dir(self) -> Path:
        return self.root / self.uploads_folder / self.handouts_folder


class LocalImportStorage:
    """
    Filesystem layout for import jobs. Every job owns an isolated
    `jobs/{id}/` tree (input, working, assets, output); imported packages keep
    their original file under `packages/{package_id}/` and promoted media
    lands in the shared handouts folder.
    """

    def __init__(self, storage_paths: ImportStoragePaths):
        self.paths = storage_paths

    def ensure_job_dirs(self, job_id: str) -> None:
        for directory in (
            self.paths.input_dir(job_id),
            self.paths.working_dir(job_id),
            self.paths.assets_dir(job_id),
            self.paths.output_dir(job_id),
        ):
            directory.mkdir(parents=True, exist_ok=True)

    def save_upload(self, job_id: str, file_name: str, stream: BinaryIO) -> Path:
        self.paths.input_dir(job_id).mkdir(parents=True, exist_ok=True)
        target = self.paths.input_path(job_id, file_name)
        with target.open("wb") as f:
            shutil.copyfileobj(stream, f)
        return target

    def write_json(self, target: Path, payload: dict) -> Path:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2, default=str)
        return target

    def write_extracted_output(self, job_id: str, payload: dict) -> Path:
        return self.write_json(self.paths.extracted_output_path(job_id), payload)

    def write_package_output(self, job_id: str, payload: dict) -> Path:
        return self.write_json(self.paths.package_output_path(job_id), payload)

    def save_original(self, package_id: int, source: Path) -> Path:
        target_dir = self.paths.package_dir(package_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"original{source.suffix.lower()}"
        shutil.copy2(source, target)
        return target

    def promote_asset(self, assets_dir: Path, file_name: str, job_id: str) -> Optional[str]:
        """
        Copies a job asset into the shared handouts folder under a job-scoped
        name and returns its public URL, or None when the name is not a plain
        file name or the file is missing. The job copy stays so retries work.
        """
        if not is_plain_file_name(file_name):
            logger.warning("Rejected asset file name outside the job folder: %r", file_name)
            return None
        source = Path(assets_dir) / file_name
        if not source.is_file():
            logger.warning("Asset file not found: %s", source)
            return None

        public_name = handout_file_name(job_id, file_name)
        target_dir = self.paths.handouts_dir()
        target_dir.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copyfile(source, target_dir / public_name)
        except OSError:
            logger.warning("Failed to copy asset: %s", file_name, exc_info=True)
            return None
        return f"/media/{public_name}"


def is_plain_file_name(file_name: Optional[str]) -> bool:
    """True for a bare file name: no directories, no drive, no `.`/`..`."""
    if not file_name or file_name in (".", ".."):
        return False
    if "\\" in file_name or ":" in file_name:
        return False
    return PurePosixPath(file_name).name == file_name


def handout_file_name(job_id: str, file_name: str) -> str:
    """Handouts of every package share one folder, so names carry the job id."""
    return f"{str(job_id).replace('-', '')}_{file_name}"
