"""
Example: parse a quiz package (.docx or .qhub) and optionally import it into SQLite.

Usage:
    python3 import_demo.py --file /path/to/package.docx --out package.json
    python3 import_demo.py --file /path/to/package.qhub --db ./data/questions_hub.db --owner local-user
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from questions_hub.importing import (
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
from questions_hub.importing.worker import CancellationToken


def configure_logging(log_file: Path, verbose: bool) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout), logging.FileHandler(log_file, encoding="utf-8")],
    )


def parse_only(path: Path, assets_dir: Path) -> dict:
    if path.suffix.lower() == ".qhub":
        result = QhubExtractor().extract(path, assets_dir)
    else:
        extraction = DoclingDocxExtractor().extract(path, assets_dir)
        result = PackageParser().parse(extraction.blocks, extraction.assets)
        result.warnings = extraction.warnings + result.warnings
    return asdict(result)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--file", required=True, type=Path, help="Path to input .docx or .qhub")
    parser.add_argument("--out", default=None, type=Path, help="Write the parse result JSON here")
    parser.add_argument("--db", default=None, type=Path, help="SQLite DB path; when set the package is imported")
    parser.add_argument("--storage-root", default=Path("./data"), type=Path, help="Storage root for jobs/media")
    parser.add_argument("--owner", default="local-user", help="Owner id for the import job")
    parser.add_argument("--log-file", default=Path("./data/import_demo.log"), type=Path, help="Log file path")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    configure_logging(args.log_file, args.verbose)
    if not args.file.exists():
        raise FileNotFoundError(f"Package file not found: {args.file}")

    storage_root = args.storage_root.resolve()
    if args.db is None:
        payload = parse_only(args.file, storage_root / "demo_assets")
        rendered = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
        if args.out:
            args.out.write_text(rendered, encoding="utf-8")
            print(f"Parse result written to {args.out}")
        else:
            print(rendered)
        return

    database_url = f"sqlite+pysqlite:///{args.db}"
    options = PackageImportOptions()
    storage = LocalImportStorage(ImportStoragePaths(storage_root))
    repo = SqlAlchemyImportJobRepository(database_url)
    service = PackageImportService(repo, storage, options)
    worker = ImportWorker(
        repository=repo,
        storage=storage,
        docx_extractor=DoclingDocxExtractor(),
        qhub_extractor=QhubExtractor(),
        parser=PackageParser(),
        importer=PackageDbImporter(database_url, storage),
        options=options,
    )

    with args.file.open("rb") as f:
        job = service.enqueue(args.owner, args.file.name, f, args.file.stat().st_size)
    repo.claim_job(job.id, datetime.utcnow(), options.max_retry_attempts)

    print(f"Starting import job {job.id} for {args.file}")
    worker.run_job(job.id, CancellationToken())
    final_job = repo.get_job(job.id)
    print(f"Job finished with status={final_job.status.value}, package={final_job.package_id}, error={final_job.error_message}")
    if args.out:
        output = storage.paths.package_output_path(job.id)
        if output.exists():
            args.out.write_text(output.read_text(encoding="utf-8"), encoding="utf-8")
            print(f"Parse result written to {args.out}")


if __name__ == "__main__":
    main()
