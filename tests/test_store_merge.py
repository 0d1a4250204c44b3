import json

import pytest

from health_import.errors import StorageWriteError
from health_import.lib.io_guards import atomic_write_json, read_json
from health_import.merge import merge_day, merge_metrics, unseen_points
from health_import.store import DayStore


def test_read_missing_day_gives_empty_record(tmp_path):
    store = DayStore(tmp_path / "health")
    assert store.read_day("2024-01-15") == {"date": "2024-01-15", "metrics": {}}
    assert not store.exists("2024-01-15")
    assert store.dates() == []


def test_write_then_read(tmp_path):
    store = DayStore(tmp_path)
    path = store.write_day("2024-01-15", {"date": "2024-01-15", "metrics": {"heart_rate": [{"date": "t", "qty": 1.0}]}})
    assert path == tmp_path / "2024-01-15.json"
    rec = store.read_day("2024-01-15")
    assert rec["metrics"]["heart_rate"] == [{"date": "t", "qty": 1.0}]
    assert "updated" in rec
    assert store.dates() == ["2024-01-15"]


def test_invalid_date_key_rejected(tmp_path):
    store = DayStore(tmp_path)
    with pytest.raises(ValueError):
        store.path_for("../etc/passwd")
    with pytest.raises(ValueError):
        store.path_for("2024-01-15T00")


def test_atomic_write_leaves_no_temp_files(tmp_path):
    target = tmp_path / "sub" / "x.json"
    atomic_write_json({"a": 1}, target)
    atomic_write_json({"a": 2}, target)
    assert read_json(target) == {"a": 2}
    assert [p.name for p in target.parent.iterdir()] == ["x.json"]


def test_atomic_write_keeps_old_file_on_failure(tmp_path):
    target = tmp_path / "x.json"
    atomic_write_json({"a": 1}, target)
    with pytest.raises(TypeError):
        atomic_write_json({"a": object()}, target)
    assert read_json(target) == {"a": 1}
    assert [p.name for p in tmp_path.iterdir()] == ["x.json"]


def test_read_json_default_and_corrupt(tmp_path):
    assert read_json(tmp_path / "nope.json", default={}) == {}
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError):
        read_json(bad)


def test_unseen_points_dedups_store_and_batch():
    existing = [{"date": "t1"}]
    new = [{"date": "t1"}, {"date": "t2", "qty": 1}, {"date": "t2", "qty": 2}, {"date": "t3"}]
    assert unseen_points(existing, new) == [{"date": "t2", "qty": 1}, {"date": "t3"}]


def test_merge_metrics_appends_and_replaces():
    record = {"date": "2024-01-15", "metrics": {
        "heart_rate": [{"date": "t1", "qty": 60.0}],
        "step_count": [{"date": "t0", "qty": 100.0, "unit": "count"}],
    }}
    result = merge_metrics(record, {
        "heart_rate": [{"date": "t1", "qty": 60.0}, {"date": "t2", "qty": 65.0}],
        "step_count": [{"date": "t0", "qty": 900.0, "unit": "count"}],
        "body_mass": [],
    })
    assert result.added == {"heart_rate": 1}
    assert result.points_added == 1
    assert result.replaced == ["step_count"]
    assert record["metrics"]["heart_rate"] == [{"date": "t1", "qty": 60.0}, {"date": "t2", "qty": 65.0}]
    assert record["metrics"]["step_count"] == [{"date": "t0", "qty": 900.0, "unit": "count"}]
    assert "body_mass" not in record["metrics"]


def test_merge_day_is_idempotent(tmp_path):
    store = DayStore(tmp_path)
    metrics = {"heart_rate": [{"date": "t1", "qty": 60.0}],
               "step_count": [{"date": "t1", "qty": 10.0, "unit": "count"}]}
    merge_day(store, "2024-01-15", metrics)
    first = store.read_day("2024-01-15")["metrics"]
    again = merge_day(store, "2024-01-15", metrics)
    assert again.points_added == 0
    assert again.replaced == []
    assert store.read_day("2024-01-15")["metrics"] == first


def test_merge_day_retries_then_succeeds(tmp_path, monkeypatch):
    store = DayStore(tmp_path)
    real_write = DayStore.write_day
    calls = {"n": 0}

    def flaky(self, date_key, record):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OSError("disk hiccup")
        return real_write(self, date_key, record)

    monkeypatch.setattr(DayStore, "write_day", flaky)
    merge_day(store, "2024-01-15", {"heart_rate": [{"date": "t", "qty": 1.0}]}, retries=2, backoff_s=0)
    assert calls["n"] == 2
    assert store.exists("2024-01-15")


def test_merge_day_gives_up_after_retries(tmp_path, monkeypatch):
    store = DayStore(tmp_path)
    calls = {"n": 0}

    def broken(self, date_key, record):
        calls["n"] += 1
        raise OSError("read-only file system")

    monkeypatch.setattr(DayStore, "write_day", broken)
    with pytest.raises(StorageWriteError) as ei:
        merge_day(store, "2024-01-15", {"heart_rate": [{"date": "t", "qty": 1.0}]}, retries=2, backoff_s=0)
    assert calls["n"] == 3
    assert ei.value.date_key == "2024-01-15"
    assert isinstance(ei.value.cause, OSError)


def test_merge_day_corrupt_record_not_retried(tmp_path):
    store = DayStore(tmp_path)
    (tmp_path / "2024-01-15.json").write_text("{oops", encoding="utf-8")
    with pytest.raises(StorageWriteError):
        merge_day(store, "2024-01-15", {"heart_rate": [{"date": "t", "qty": 1.0}]}, backoff_s=0)
    # the corrupt file is left for inspection
    assert (tmp_path / "2024-01-15.json").read_text(encoding="utf-8") == "{oops"


@pytest.mark.parametrize("content", ["[]", '"x"', "42", '{"date": "2024-01-15", "metrics": []}'])
def test_non_record_json_is_a_storage_error(tmp_path, content):
    store = DayStore(tmp_path)
    (tmp_path / "2024-01-15.json").write_text(content, encoding="utf-8")
    with pytest.raises(ValueError):
        store.read_day("2024-01-15")
    with pytest.raises(StorageWriteError):
        merge_day(store, "2024-01-15", {"heart_rate": [{"date": "t", "qty": 1.0}]}, backoff_s=0)


def test_day_file_is_plain_json(tmp_path):
    store = DayStore(tmp_path)
    merge_day(store, "2024-01-15", {"heart_rate": [{"date": "t", "qty": 1.0}]})
    data = json.loads((tmp_path / "2024-01-15.json").read_text(encoding="utf-8"))
    assert data["date"] == "2024-01-15"
    assert data["metrics"]["heart_rate"] == [{"date": "t", "qty": 1.0}]
