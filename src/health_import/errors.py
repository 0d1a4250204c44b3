"""Exceptions raised by the import pipeline.

Callers that need to tell a bad input file apart from a storage problem
should catch ``ArchiveReadError`` and ``StorageWriteError``/``DayMergeError``
separately; the CLI maps them to different exit codes.
"""
from __future__ import annotations

from typing import Sequence


class HealthImportError(RuntimeError): ...


class ArchiveReadError(HealthImportError): ...


class PayloadValidationError(HealthImportError): ...


class StorageWriteError(HealthImportError):
    def __init__(self, date_key: str, cause: BaseException):
        super().__init__(f"failed to write day record {date_key}: {cause}")
        self.date_key = date_key
        self.cause = cause


class DayMergeError(HealthImportError):
    def __init__(self, failed_dates: Sequence[str], days_written: int, records: int):
        shown = ", ".join(list(failed_dates)[:5])
        more = "" if len(failed_dates) <= 5 else f" (+{len(failed_dates) - 5} more)"
        super().__init__(f"{len(failed_dates)} day record(s) could not be written: {shown}{more}")
        self.failed_dates = list(failed_dates)
        self.days_written = days_written
        self.records = records


class ImportCancelled(HealthImportError):
    def __init__(self, days_written: int):
        super().__init__(f"import cancelled after {days_written} day record(s)")
        self.days_written = days_written
