"""
Package import subsystem exports.

The Docling extractor (`.extractor`) and the RQ queue (`.job_queue`) are not
re-exported here so that parsing can be used without loading those backends.
"""

from .config import PackageImportOptions
from .errors import (
    DatabaseImportError,
    ExtractionError,
    ImportErrorKind,
    JobCancelledError,
    PackageImportError,
    ParsingError,
    TransientImportError,
    ValidationError,
)
from .importer import PackageDbImporter
from .models import (
    AssetReference,
    BlockDto,
    DocBlock,
    ExtractionResult,
    ImportJobRecord,
    ImportJobStatus,
    ImportStep,
    PackageStatus,
    ParseResult,
    QuestionDto,
    QuestionNumberingMode,
    TourDto,
    TourType,
)
from .orchestrator import ImportBackgroundService, RetryDispatcher, recover_stale_jobs
from .parser import PackageParser
from .qhub import QhubExtractor
from .repository import ImportJobRepository, InMemoryImportJobRepository, SqlAlchemyImportJobRepository
from .service import PackageImportService
from .storage import ImportStoragePaths, LocalImportStorage
from .worker import CancellationToken, ImportWorker

__all__ = [
    "AssetReference",
    "BlockDto",
    "CancellationToken",
    "DatabaseImportError",
    "DocBlock",
    "ExtractionError",
    "ExtractionResult",
    "ImportBackgroundService",
    "ImportErrorKind",
    "ImportJobRecord",
    "ImportJobRepository",
    "ImportJobStatus",
    "ImportStep",
    "ImportStoragePaths",
    "ImportWorker",
    "InMemoryImportJobRepository",
    "JobCancelledError",
    "LocalImportStorage",
    "PackageDbImporter",
    "PackageImportError",
    "PackageImportOptions",
    "PackageImportService",
    "PackageParser",
    "PackageStatus",
    "ParseResult",
    "ParsingError",
    "QhubExtractor",
    "QuestionDto",
    "QuestionNumberingMode",
    "RetryDispatcher",
    "SqlAlchemyImportJobRepository",
    "TourDto",
    "TourType",
    "TransientImportError",
    "ValidationError",
    "recover_stale_jobs",
]
