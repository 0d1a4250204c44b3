"""Streaming import of a health export into the day store.

    archive -> ElementStream -> normalize_record -> DayBuckets
            (stream end) -> drain -> aggregate_day -> merge_day -> complete

Everything an import mutates while running (buckets, counters, reporter)
lives on one ``ImportJob``; nothing is shared between jobs.
"""
from __future__ import annotations

import logging
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .accumulator import DayBuckets
from .aggregate import aggregate_day
from .common.progress import Timer
from .config import ImportCfg
from .errors import ArchiveReadError, DayMergeError, ImportCancelled, StorageWriteError
from .merge import merge_day
from .normalize import normalize_record
from .parser import ElementOpened, ElementStream, MalformedFragment, ParseEvent
from .reporter import EventSink, ProgressReporter
from .source import open_archive
from .store import DayStore

logger = logging.getLogger("etl.health")

# errors a truncated or corrupt archive raises mid-read
_STREAM_ERRORS = (OSError, EOFError, zipfile.BadZipFile, zlib.error)


@dataclass
class ImportSummary:
    days: int = 0
    records: int = 0
    points: int = 0
    skipped: int = 0
    malformed: int = 0
    dates: list[str] = field(default_factory=list)
    failed_dates: list[str] = field(default_factory=list)


class ImportJob:
    def __init__(
        self,
        store: DayStore,
        cfg: Optional[ImportCfg] = None,
        on_event: Optional[EventSink] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ):
        self.store = store
        self.cfg = cfg or ImportCfg()
        self.buckets = DayBuckets()
        self.reporter = ProgressReporter(on_event, every=self.cfg.progress_every)
        self.summary = ImportSummary()
        self._should_cancel = should_cancel

    def run(self, path: str | Path, *, remove_source: bool = False) -> ImportSummary:
        with Timer(f"health import: parse {Path(path).name}"):
            self._parse(path, remove_source)
        logger.info("XML parsing done: %d records (%d skipped, %d malformed fragments) across %d days",
                    self.summary.records, self.summary.skipped, self.summary.malformed, len(self.buckets))
        with Timer("health import: aggregate + merge"):
            self._drain()
        if self.summary.failed_dates:
            raise DayMergeError(self.summary.failed_dates, self.summary.days, self.summary.records)
        self.reporter.complete(self.summary.days, self.summary.records)
        return self.summary

    def _parse(self, path: str | Path, remove_source: bool) -> None:
        with open_archive(path, remove_after=remove_source) as stream:
            events = ElementStream(stream, chunk_bytes=self.cfg.chunk_bytes)
            try:
                for ev in events:
                    self.handle(ev)
            except _STREAM_ERRORS as e:
                raise ArchiveReadError(f"failed reading {path} after {self.summary.records} records: {e}") from e

    def handle(self, ev: ParseEvent) -> None:
        if isinstance(ev, MalformedFragment):
            self.summary.malformed += 1
            return
        if not isinstance(ev, ElementOpened) or ev.tag != "record":
            return

        self.summary.records += 1
        normalized = normalize_record(ev.tag, ev.attrs, negative_duration=self.cfg.negative_duration)
        if normalized is None:
            self.summary.skipped += 1
            logger.debug("skipped record near line %s: type=%r", ev.line, ev.attrs.get("type"))
        else:
            self.buckets.ingest(*normalized)
            self.summary.points += 1
        self.reporter.tick()
        if self.summary.records % self.cfg.progress_every == 0:
            self._check_cancel()

    def _drain(self) -> None:
        for date_key, metrics in self.buckets.drain():
            self._check_cancel()
            try:
                merge_day(self.store, date_key, aggregate_day(metrics),
                          retries=self.cfg.write_retries, backoff_s=self.cfg.retry_backoff_s)
            except StorageWriteError as e:
                logger.error("%s", e)
                self.summary.failed_dates.append(date_key)
                continue
            self.summary.days += 1
            self.summary.dates.append(date_key)

    def _check_cancel(self) -> None:
        if self._should_cancel is not None and self._should_cancel():
            logger.warning("import cancelled after %d day record(s)", self.summary.days)
            raise ImportCancelled(self.summary.days)


def import_archive(
    path: str | Path,
    store_dir: str | Path | None = None,
    *,
    cfg: Optional[ImportCfg] = None,
    on_event: Optional[EventSink] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    remove_source: bool = False,
) -> ImportSummary:
    """Import one export file into the day store and return the job summary.

    ``store_dir`` defaults to ``cfg.store_dir``. Raises ``ArchiveReadError``
    for unreadable input, ``DayMergeError`` when some dates could not be
    written (after every other date was merged) and ``ImportCancelled`` when
    ``should_cancel()`` turned true; ``complete`` is only emitted on success.
    """
    cfg = cfg or ImportCfg.from_env()
    store = DayStore(store_dir if store_dir is not None else cfg.store_dir)
    job = ImportJob(store, cfg, on_event=on_event, should_cancel=should_cancel)
    return job.run(path, remove_source=remove_source)
