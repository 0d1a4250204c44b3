import sys
from pathlib import Path
from xml.sax.saxutils import quoteattr

import pytest

# Make the src/ layout importable without an editable install
SRC = Path(__file__).resolve().parents[1] / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

STEPS = "HKQuantityTypeIdentifierStepCount"
HR = "HKQuantityTypeIdentifierHeartRate"
HRV = "HKQuantityTypeIdentifierHeartRateVariabilitySDNN"
SLEEP = "HKCategoryTypeIdentifierSleepAnalysis"

HEADER = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE HealthData [
<!ELEMENT HealthData (ExportDate,Me,(Record|Correlation|Workout|ActivitySummary)*)>
<!ATTLIST HealthData locale CDATA #REQUIRED>
]>
<HealthData locale="en_US">
 <ExportDate value="2024-02-01 10:00:00 -0800"/>
 <Me HKCharacteristicTypeIdentifierBiologicalSex="HKBiologicalSexNotSet"/>
"""
FOOTER = "</HealthData>\n"


def record_xml(type_id, start, end=None, value=None, unit=None, source="Apple Watch"):
    attrs = [("type", type_id)]
    if source is not None:
        attrs.append(("sourceName", source))
    if unit is not None:
        attrs.append(("unit", unit))
    attrs.append(("startDate", start))
    if end is not None:
        attrs.append(("endDate", end))
    if value is not None:
        attrs.append(("value", str(value)))
    return " <Record " + " ".join(f"{k}={quoteattr(v)}" for k, v in attrs) + "/>\n"


def export_xml(records):
    return HEADER + "".join(records) + FOOTER


@pytest.fixture(autouse=True)
def _quiet_env(monkeypatch):
    # no progress bars or stray env config during tests
    monkeypatch.setenv("ETL_TQDM", "0")
    for name in ("ETL_HEALTH_DIR", "ETL_PROGRESS_EVERY", "ETL_CHUNK_BYTES",
                 "ETL_WRITE_RETRIES", "ETL_NEGATIVE_DURATION"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def write_export(tmp_path):
    def _write(records, name="export.xml"):
        p = tmp_path / name
        p.write_text(export_xml(records), encoding="utf-8")
        return p
    return _write


@pytest.fixture
def events():
    collected = []

    def sink(name, payload):
        collected.append((name, dict(payload)))

    sink.collected = collected
    return sink
