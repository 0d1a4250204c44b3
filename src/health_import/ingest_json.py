"""Ingest of Health Auto Export JSON payloads into the same day store.

Payload shape::

    {"data": {"metrics": [{"name": "step_count", "units": "count",
                           "data": [{"date": "2024-01-15 08:30:00 -0800", "qty": 120}, ...]}],
              "workouts": [...]}}

Points are grouped by the calendar day of their ``date`` and merged with the
same exact-timestamp dedup as the XML import. Payload points are stored as
sent (no aggregation): the exporting app already reports daily summaries for
step count and sleep.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, List, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import PayloadValidationError, StorageWriteError
from .merge import unseen_points
from .normalize import extract_date_key
from .store import DayStore

logger = logging.getLogger("etl.health")


class HealthDataPoint(BaseModel):
    date: str = Field(min_length=1)
    qty: Optional[float] = None
    # heart rate
    Min: Optional[float] = None
    Avg: Optional[float] = None
    Max: Optional[float] = None
    # sleep analysis
    totalSleep: Optional[float] = None
    deep: Optional[float] = None
    rem: Optional[float] = None
    core: Optional[float] = None
    awake: Optional[float] = None

    # app updates add fields; keep them
    model_config = {"extra": "allow"}


class HealthMetric(BaseModel):
    name: str = Field(min_length=1)
    units: Optional[str] = None
    data: List[HealthDataPoint]


class HealthPayloadData(BaseModel):
    metrics: List[HealthMetric] = Field(default_factory=list)
    workouts: List[Any] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class HealthPayload(BaseModel):
    data: HealthPayloadData


def validate_payload(raw: Any) -> HealthPayload:
    try:
        return HealthPayload.model_validate(raw)
    except ValidationError as e:
        raise PayloadValidationError(f"invalid health payload: {e.error_count()} error(s)\n{e}") from e


def ingest_payload(raw: Any, store: DayStore) -> dict[str, int]:
    """Validate ``raw`` and merge its points into ``store``.

    Returns ``{metricsProcessed, recordsIngested, recordsSkipped, daysAffected}``;
    skipped counts points with an unusable date plus duplicates.
    """
    payload = validate_payload(raw)
    metrics_processed = 0
    ingested = 0
    skipped = 0
    affected: set[str] = set()

    for metric in payload.data.metrics:
        metrics_processed += 1
        by_day: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for point in metric.data:
            date_key = extract_date_key(point.date)
            if date_key is None:
                skipped += 1
                continue
            by_day[date_key].append(point.model_dump(exclude_none=True))

        for date_key, points in by_day.items():
            # point-wise even for step_count/sleep_analysis: these are the app's own summaries
            try:
                record = store.read_day(date_key)
                existing = record["metrics"].get(metric.name) or []
                unique = unseen_points(existing, points)
                if unique:
                    record["metrics"][metric.name] = existing + unique
                    store.write_day(date_key, record)
            except (ValueError, OSError) as e:
                raise StorageWriteError(date_key, e) from e
            if unique:
                affected.add(date_key)
            ingested += len(unique)
            skipped += len(points) - len(unique)

    logger.info("health ingest: %d records across %d days (%d skipped)", ingested, len(affected), skipped)
    return {
        "metricsProcessed": metrics_processed,
        "recordsIngested": ingested,
        "recordsSkipped": skipped,
        "daysAffected": len(affected),
    }
