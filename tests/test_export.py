"""Tests for JSON and CSV export."""

import csv
import json

from helpers import build_session

from wificomp.compare.engine import ComparisonEngine
from wificomp.data.export import (
    COMPARISON_FIELDNAMES,
    SESSION_FIELDNAMES,
    export_comparison_csv,
    export_csv,
    export_json,
)


def _read_csv(path) -> list[dict[str, str]]:
    with open(path, newline="", encoding="utf-8") as fh:
        return list(csv.DictReader(fh))


def test_export_json(tmp_path):
    session = build_session([[("AA:BB:CC:DD:EE:01", "Home", -45)]])
    path = export_json(session, tmp_path / "out.json")
    assert json.loads(path.read_text())["scans"][0]["access_points"][0]["signal_dbm"] == -45


def test_export_csv_one_row_per_sample_and_ap(tmp_path):
    session = build_session(
        [
            [("AA:BB:CC:DD:EE:01", "Home", -45), ("AA:BB:CC:DD:EE:02", "", -80)],
            [("AA:BB:CC:DD:EE:01", "Home", -47)],
        ]
    )
    rows = _read_csv(export_csv(session, tmp_path / "out.csv"))
    assert len(rows) == 3
    assert list(rows[0]) == SESSION_FIELDNAMES
    assert rows[0]["bssid"] == "AA:BB:CC:DD:EE:01"
    assert rows[0]["band"] == "2G"
    assert rows[2]["signal_dbm"] == "-47"
    assert rows[0]["timestamp"] == "2024-05-01T12:00:00+00:00"


def test_export_csv_empty_session(tmp_path):
    rows = _read_csv(export_csv(build_session([]), tmp_path / "out.csv"))
    assert rows == []


def test_export_comparison_csv_marks_absent_sessions(tmp_path):
    engine = ComparisonEngine()
    engine.add_session(build_session([[("AA:BB:CC:DD:EE:01", "Home", -45)]], label="A"))
    engine.add_session(
        build_session(
            [[("AA:BB:CC:DD:EE:01", "Home", -52), ("AA:BB:CC:DD:EE:02", "Other", -70)]],
            label="B",
        )
    )
    rows = _read_csv(export_comparison_csv(engine.compare(), tmp_path / "cmp.csv"))

    assert list(rows[0]) == COMPARISON_FIELDNAMES
    assert len(rows) == 4  # 2 APs x 2 sessions
    by_key = {(r["bssids"], r["session"]): r for r in rows}
    assert by_key[("AA:BB:CC:DD:EE:01", "A")]["winner"] == "yes"
    assert by_key[("AA:BB:CC:DD:EE:01", "B")]["winner"] == ""
    assert by_key[("AA:BB:CC:DD:EE:01", "A")]["average_dbm"] == "-45.0"
    absent = by_key[("AA:BB:CC:DD:EE:02", "A")]
    assert absent["average_dbm"] == "N/A"
    assert absent["count"] == "0"
