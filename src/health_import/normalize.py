"""Map one ``<Record>`` element onto a canonical data point.

``normalize_record`` is pure: the same tag and attributes always give the
same result, and the lookup tables below are read-only mappings so they can
be shared by any number of import jobs.
"""
from __future__ import annotations

import logging
import math
import re
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping, NamedTuple, Optional

from dateutil import parser as dt_parser

logger = logging.getLogger("etl.health")

STEP_COUNT = "step_count"
HEART_RATE = "heart_rate"
HRV_SDNN = "heart_rate_variability_sdnn"
SLEEP_ANALYSIS = "sleep_analysis"

TYPE_TO_METRIC: Mapping[str, str] = MappingProxyType({
    "hkquantitytypeidentifierstepcount": STEP_COUNT,
    "hkquantitytypeidentifierheartrate": HEART_RATE,
    "hkquantitytypeidentifierheartratevariabilitysdnn": HRV_SDNN,
    "hkcategorytypeidentifiersleepanalysis": SLEEP_ANALYSIS,
})

# stages a sleep summary reports; anything else is kept on the point only
SLEEP_STAGES = ("deep", "rem", "core", "awake", "inBed", "asleep")

SLEEP_STAGE_MAP: Mapping[str, str] = MappingProxyType({
    "hkcategoryvaluesleepanalysisasleepdeep": "deep",
    "hkcategoryvaluesleepanalysisasleeprem": "rem",
    "hkcategoryvaluesleepanalysisasleepcore": "core",
    "hkcategoryvaluesleepanalysisawake": "awake",
    "hkcategoryvaluesleepanalysisinbed": "inBed",
    # pre-iOS 16 exports only know "asleep"
    "hkcategoryvaluesleepanalysisasleep": "asleep",
    "hkcategoryvaluesleepanalysisasleepunspecified": "asleep",
})

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class NormalizedRecord(NamedTuple):
    metric_name: str
    date_key: str
    data_point: dict[str, Any]


def metric_name_for(type_id: str) -> str:
    type_lower = type_id.lower()
    return TYPE_TO_METRIC.get(type_lower, type_lower)


def extract_date_key(timestamp: Optional[str]) -> Optional[str]:
    """Return ``YYYY-MM-DD`` from a health timestamp such as ``2024-01-15 08:30:00 -0800``.

    Plain substring, no timezone conversion: the calendar day is the one the
    device recorded in its own offset.
    """
    if not timestamp or not isinstance(timestamp, str):
        return None
    candidate = timestamp[:10]
    if not _DATE_KEY_RE.match(candidate):
        return None
    return candidate


def dedup_key(metric_name: str, timestamp: str) -> str:
    return f"{metric_name}::{timestamp}"


def _parse_ts(ts: str) -> Optional[datetime]:
    try:
        return dt_parser.parse(ts)
    except (ValueError, OverflowError):
        return None


def duration_hours(start: str, end: Optional[str]) -> float:
    """Hours between two timestamps; 0.0 when ``end`` is missing or unparseable.

    May be negative when ``end`` precedes ``start``.
    """
    if not end:
        return 0.0
    sdt = _parse_ts(start)
    edt = _parse_ts(end)
    if sdt is None or edt is None:
        return 0.0
    try:
        return (edt - sdt).total_seconds() / 3600.0
    except TypeError:
        # one side carries an offset, the other does not
        return 0.0


def _finite_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(parsed):
        return None
    return parsed


def normalize_record(
    tag: str,
    attrs: Mapping[str, str],
    *,
    negative_duration: str = "clamp",
) -> Optional[NormalizedRecord]:
    """Normalize one element, or return None if it is not a usable sample record.

    ``attrs`` must have lower-cased keys (``type``, ``value``, ``startdate``,
    ``enddate``, ``unit``, ``sourcename``). ``negative_duration`` decides what
    happens to a sleep interval that ends before it starts: ``"clamp"`` keeps
    it with a duration of 0, ``"drop"`` rejects the record.
    """
    if tag != "record":
        return None
    type_id = attrs.get("type")
    start = attrs.get("startdate")
    if not type_id or not start:
        return None

    metric_name = metric_name_for(type_id)
    date_key = extract_date_key(start)
    if date_key is None:
        return None

    end = attrs.get("enddate")
    value = attrs.get("value")

    if metric_name == SLEEP_ANALYSIS:
        hours = duration_hours(start, end)
        if hours < 0:
            if negative_duration == "drop":
                logger.debug("dropping sleep record with end before start: %s -> %s", start, end)
                return None
            logger.debug("clamping negative sleep duration to 0: %s -> %s", start, end)
            hours = 0.0
        if value:
            stage = SLEEP_STAGE_MAP.get(value.lower(), value)
        else:
            stage = "unknown"
        return NormalizedRecord(metric_name, date_key, {
            "date": start,
            "stage": stage,
            "durationHours": hours,
        })

    qty = _finite_float(value)
    if qty is None:
        return None
    point: dict[str, Any] = {
        "date": start,
        "qty": qty,
        "unit": attrs.get("unit"),
        "src": attrs.get("sourcename"),
    }
    if metric_name == HEART_RATE:
        point["end"] = end
    return NormalizedRecord(metric_name, date_key, point)
