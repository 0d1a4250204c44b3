"""Streaming import of personal health exports into a per-day JSON store."""
from .config import ImportCfg
from .errors import (
    ArchiveReadError,
    DayMergeError,
    HealthImportError,
    ImportCancelled,
    PayloadValidationError,
    StorageWriteError,
)
from .pipeline import ImportJob, ImportSummary, import_archive
from .store import DayStore

__version__ = "0.1.0"

__all__ = [
    "ArchiveReadError",
    "DayMergeError",
    "DayStore",
    "HealthImportError",
    "ImportCancelled",
    "ImportCfg",
    "ImportJob",
    "ImportSummary",
    "PayloadValidationError",
    "StorageWriteError",
    "import_archive",
]
