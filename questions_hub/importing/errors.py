"""
Error taxonomy for the import pipeline.

Every error carries a user-facing message (shown on the job record) and a
retriable flag that the worker uses to decide between scheduling a retry and
failing the job for good. Parser imperfections are never raised; they end up
as warnings on the parse result instead.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ImportErrorKind(str, Enum):
    VALIDATION = "validation"
    EXTRACTION = "extraction"
    PARSING = "parsing"
    TRANSIENT = "transient"
    DATABASE = "database"
    CANCELLED = "cancelled"


class PackageImportError(Exception):
    kind: ImportErrorKind = ImportErrorKind.VALIDATION
    default_retriable: bool = False

    def __init__(self, user_message: str, details: Optional[str] = None, is_retriable: Optional[bool] = None):
        super().__init__(user_message)
        self.user_message = user_message
        self.details = details
        self.is_retriable = self.default_retriable if is_retriable is None else is_retriable


class ValidationError(PackageImportError):
    kind = ImportErrorKind.VALIDATION


class ExtractionError(PackageImportError):
    kind = ImportErrorKind.EXTRACTION


class ParsingError(PackageImportError):
    kind = ImportErrorKind.PARSING


class TransientImportError(PackageImportError):
    kind = ImportErrorKind.TRANSIENT
    default_retriable = True


class DatabaseImportError(PackageImportError):
    kind = ImportErrorKind.DATABASE


class JobCancelledError(PackageImportError):
    kind = ImportErrorKind.CANCELLED

    def __init__(self, user_message: str = "Обробку було скасовано", timed_out: bool = False):
        super().__init__(user_message)
        self.timed_out = timed_out
