"""Per-day reducers for metrics whose raw samples are not useful on their own.

The Health app writes one step record per activity burst and one sleep
record per stage interval; the store keeps a single daily total for each.
Every other metric keeps its raw samples.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Any, Callable, Mapping

from .normalize import SLEEP_ANALYSIS, SLEEP_STAGES, STEP_COUNT

Points = list[dict[str, Any]]

# stages that count towards totalSleep; awake/inBed/asleep are informational
_SLEEP_TOTAL_STAGES = ("deep", "rem", "core")


def aggregate_step_count(points: Points) -> Points:
    """Sum step counts into one point dated like the first contributing sample."""
    if not points:
        return points
    total = sum(p.get("qty") or 0 for p in points)
    return [{"date": points[0]["date"], "qty": total, "unit": points[0].get("unit")}]


def aggregate_sleep_analysis(points: Points) -> Points:
    """Sum stage durations into a single ``{date, totalSleep, deep, rem, ...}`` summary.

    Stages outside the known set (raw passthrough values, ``unknown``) do not
    contribute to any field.
    """
    if not points:
        return points
    summary: dict[str, Any] = {"date": points[0]["date"], "totalSleep": 0.0}
    for stage in SLEEP_STAGES:
        summary[stage] = 0.0
    for p in points:
        stage = p.get("stage")
        if stage in SLEEP_STAGES:
            summary[stage] += p.get("durationHours") or 0.0
    summary["totalSleep"] = sum(summary[s] for s in _SLEEP_TOTAL_STAGES)
    return [summary]


AGGREGATORS: Mapping[str, Callable[[Points], Points]] = MappingProxyType({
    STEP_COUNT: aggregate_step_count,
    SLEEP_ANALYSIS: aggregate_sleep_analysis,
})


def is_aggregated(metric_name: str) -> bool:
    return metric_name in AGGREGATORS


def aggregate_day(metrics: dict[str, Points]) -> dict[str, Points]:
    """Apply the registered aggregator to each metric of one day; others pass through."""
    out: dict[str, Points] = {}
    for name, points in metrics.items():
        fn = AGGREGATORS.get(name)
        out[name] = fn(points) if fn is not None else points
    return out
