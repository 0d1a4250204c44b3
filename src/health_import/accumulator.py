from __future__ import annotations

from typing import Any, Iterator

Metrics = dict[str, list[dict[str, Any]]]


class DayBuckets:
    """Per-import map of ``date -> metric -> [data points]``.

    One instance belongs to one import job. Points are kept in arrival order
    and are not deduplicated here; ``drain()`` hands each date over exactly
    once and forgets it.
    """

    def __init__(self) -> None:
        self._days: dict[str, Metrics] = {}
        self.points = 0

    def ingest(self, metric_name: str, date_key: str, data_point: dict[str, Any]) -> None:
        day = self._days.get(date_key)
        if day is None:
            day = self._days[date_key] = {}
        series = day.get(metric_name)
        if series is None:
            series = day[metric_name] = []
        series.append(data_point)
        self.points += 1

    def drain(self) -> Iterator[tuple[str, Metrics]]:
        """Yield ``(date_key, metrics)`` in date order, removing each entry first."""
        for date_key in sorted(self._days):
            metrics = self._days.pop(date_key)
            self.points -= sum(len(v) for v in metrics.values())
            yield date_key, metrics

    def __len__(self) -> int:
        return len(self._days)

    def dates(self) -> list[str]:
        return sorted(self._days)
