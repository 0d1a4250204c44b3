import pytest

from health_import.accumulator import DayBuckets
from health_import.aggregate import (
    aggregate_day,
    aggregate_sleep_analysis,
    aggregate_step_count,
    is_aggregated,
)


def test_step_sum_single_point():
    points = [
        {"date": "2024-01-15 08:00:00 -0800", "qty": 100.0, "unit": "count", "src": "iPhone"},
        {"date": "2024-01-15 09:00:00 -0800", "qty": 250.0, "unit": "count", "src": "Watch"},
        {"date": "2024-01-15 10:00:00 -0800", "qty": None, "unit": "count"},
    ]
    assert aggregate_step_count(points) == [{"date": "2024-01-15 08:00:00 -0800", "qty": 350.0, "unit": "count"}]


def test_sleep_summary():
    # deep 3.5h + rem 1.2h on one night
    points = [
        {"date": "2024-01-15 23:00:00 -0800", "stage": "deep", "durationHours": 3.5},
        {"date": "2024-01-16 02:30:00 -0800", "stage": "rem", "durationHours": 1.2},
    ]
    [summary] = aggregate_sleep_analysis(points)
    assert summary["date"] == "2024-01-15 23:00:00 -0800"
    assert summary["deep"] == 3.5
    assert summary["rem"] == 1.2
    assert summary["core"] == 0
    assert summary["totalSleep"] == pytest.approx(4.7)


def test_sleep_total_excludes_awake_and_in_bed():
    points = [
        {"date": "d", "stage": "core", "durationHours": 2.0},
        {"date": "d", "stage": "awake", "durationHours": 0.5},
        {"date": "d", "stage": "inBed", "durationHours": 8.0},
        {"date": "d", "stage": "asleep", "durationHours": 1.0},
        {"date": "d", "stage": "unknown", "durationHours": 4.0},
        {"date": "d", "stage": "SomethingNew", "durationHours": 4.0},
    ]
    [s] = aggregate_sleep_analysis(points)
    assert s["totalSleep"] == 2.0
    assert (s["awake"], s["inBed"], s["asleep"]) == (0.5, 8.0, 1.0)
    assert s["totalSleep"] == s["deep"] + s["rem"] + s["core"]


def test_empty_input_stays_empty():
    assert aggregate_step_count([]) == []
    assert aggregate_sleep_analysis([]) == []


def test_aggregate_day_passes_other_metrics_through():
    hr = [{"date": "a", "qty": 60.0}, {"date": "b", "qty": 70.0}]
    out = aggregate_day({
        "heart_rate": hr,
        "step_count": [{"date": "a", "qty": 1.0, "unit": "count"}, {"date": "b", "qty": 2.0, "unit": "count"}],
    })
    assert out["heart_rate"] == hr
    assert out["step_count"] == [{"date": "a", "qty": 3.0, "unit": "count"}]
    assert is_aggregated("sleep_analysis")
    assert not is_aggregated("heart_rate")


def test_buckets_group_by_date_and_metric():
    b = DayBuckets()
    b.ingest("heart_rate", "2024-01-16", {"date": "x2"})
    b.ingest("heart_rate", "2024-01-15", {"date": "x1"})
    b.ingest("step_count", "2024-01-15", {"date": "s1"})
    b.ingest("heart_rate", "2024-01-15", {"date": "x3"})
    assert len(b) == 2
    assert b.points == 4
    assert b.dates() == ["2024-01-15", "2024-01-16"]

    drained = list(b.drain())
    assert [d for d, _ in drained] == ["2024-01-15", "2024-01-16"]
    assert drained[0][1] == {"heart_rate": [{"date": "x1"}, {"date": "x3"}], "step_count": [{"date": "s1"}]}
    assert len(b) == 0
    assert b.points == 0
    assert list(b.drain()) == []


def test_buckets_are_per_instance():
    a, b = DayBuckets(), DayBuckets()
    a.ingest("heart_rate", "2024-01-15", {"date": "x"})
    assert len(b) == 0
