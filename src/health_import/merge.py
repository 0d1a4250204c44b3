"""Read-merge-write of one day record.

Non-aggregated metrics are merged point by point: a new point is kept only
if no stored point (and no earlier point of the same batch) has the same
``date`` timestamp. Aggregated metrics (step count, sleep) carry one summary
per import batch, so the new summary replaces the stored one; re-importing
the same file therefore leaves the record unchanged.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from .aggregate import is_aggregated
from .errors import StorageWriteError
from .store import DayRecord, DayStore

logger = logging.getLogger("etl.health.store")


@dataclass
class MergeResult:
    date: str
    added: dict[str, int] = field(default_factory=dict)
    replaced: list[str] = field(default_factory=list)

    @property
    def points_added(self) -> int:
        return sum(self.added.values())


def unseen_points(existing: list[dict[str, Any]], new_points: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Points of ``new_points`` whose timestamp is neither stored nor repeated earlier in the batch."""
    seen = {p.get("date") for p in existing}
    unique = []
    for p in new_points:
        ts = p.get("date")
        if ts in seen:
            continue
        seen.add(ts)
        unique.append(p)
    return unique


def merge_metrics(record: DayRecord, metrics: dict[str, list[dict[str, Any]]]) -> MergeResult:
    """Merge ``metrics`` into ``record`` in place."""
    result = MergeResult(date=record["date"])
    stored = record["metrics"]
    for name, new_points in metrics.items():
        if not new_points:
            continue
        if is_aggregated(name):
            if stored.get(name) != new_points:
                result.replaced.append(name)
            stored[name] = list(new_points)
            continue

        existing = stored.get(name) or []
        unique = unseen_points(existing, new_points)
        if unique:
            stored[name] = existing + unique
            result.added[name] = len(unique)
    return result


def merge_day(
    store: DayStore,
    date_key: str,
    metrics: dict[str, list[dict[str, Any]]],
    *,
    retries: int = 2,
    backoff_s: float = 0.2,
) -> MergeResult:
    """Merge one day's (already aggregated) metrics into the store.

    The whole read-merge-write is retried on ``OSError``; a record that is
    unreadable or still cannot be written after ``retries`` extra attempts
    raises ``StorageWriteError``. The stored file is replaced atomically, so
    readers see either the old or the new record.
    """
    attempt = 0
    while True:
        try:
            record = store.read_day(date_key)
            result = merge_metrics(record, metrics)
            store.write_day(date_key, record)
            return result
        except ValueError as e:
            # corrupt JSON on disk: retrying will not help
            raise StorageWriteError(date_key, e) from e
        except OSError as e:
            if attempt >= retries:
                raise StorageWriteError(date_key, e) from e
            attempt += 1
            logger.warning("write of %s failed (%s); retry %d/%d", date_key, e, attempt, retries)
            time.sleep(backoff_s * attempt)
