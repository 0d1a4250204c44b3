"""Progress and completion events of an import job.

The only events leaving the pipeline are::

    progress  {"processed": <int>}                 every ``every`` scanned records
    complete  {"days": <int>, "records": <int>}    once, after all day files are written

They go to a sink, any callable ``sink(event_name, payload)``. Every event is
also logged.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

logger = logging.getLogger("etl.health")

PROGRESS = "progress"
COMPLETE = "complete"
DEFAULT_PROGRESS_EVERY = 10_000

EventSink = Callable[[str, dict[str, Any]], None]


class ProgressReporter:
    def __init__(self, sink: Optional[EventSink] = None, every: int = DEFAULT_PROGRESS_EVERY):
        if every < 1:
            raise ValueError("progress cadence must be >= 1")
        self._sink = sink
        self.every = every
        self.processed = 0
        self.completed = False

    def tick(self, n: int = 1) -> None:
        """Count ``n`` scanned records, emitting ``progress`` at each cadence boundary crossed."""
        before = self.processed
        self.processed += n
        for mark in range((before // self.every + 1) * self.every, self.processed + 1, self.every):
            logger.info("import progress: %d records", mark)
            self._emit(PROGRESS, {"processed": mark})

    def complete(self, days: int, records: int) -> None:
        if self.completed:
            raise RuntimeError("complete() already emitted for this job")
        self.completed = True
        logger.info("import complete: %d records across %d days", records, days)
        self._emit(COMPLETE, {"days": days, "records": records})

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        if self._sink is not None:
            self._sink(event, payload)
