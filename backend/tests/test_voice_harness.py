from __future__ import annotations

import csv
import json
from datetime import timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

from episode_extraction.harness import (
    compare_field,
    compute_expected_start,
    load_test_cases,
    parse_test_cases,
    run_suite,
    summary_lines,
    write_reports,
)

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"
REFERENCE_TZ = ZoneInfo("Asia/Kolkata")


def test_parse_test_cases_reads_expectations_and_aliases():
    cases = parse_test_cases(
        [
            "intro text is ignored",
            "1. Pain 6 out of 10 since 7 am",
            "=> intensity: 6",
            "=> trigger: Caffeine, Emotional_Stress",
            "=> paint_location: Left Temple",
            "=> aura: true",
            "2. nothing to see",
            "=> start_time: [Yesterday 9pm]",
        ]
    )
    assert [case.case_id for case in cases] == [1, 2]
    first = cases[0].expected
    assert first["intensity"] == 6
    assert first["triggers"] == ["Caffeine", "Emotional_Stress"]
    assert first["pain_location"] == "left temple"
    assert first["aura"] == 1
    assert cases[1].expected["start_time"] == "[Yesterday 9pm]"
    assert cases[1].expected["intensity"] is None


def test_compute_expected_start_tags(fixed_now):
    assert compute_expected_start("-2 hours", fixed_now) == fixed_now - timedelta(hours=2)
    assert compute_expected_start("-45 min", fixed_now) == fixed_now - timedelta(minutes=45)
    assert compute_expected_start("timestamp_now", fixed_now) == fixed_now
    assert compute_expected_start("Today", fixed_now).hour == 9
    assert compute_expected_start("[Yesterday 9pm]", fixed_now).isoformat() == "2026-03-13T21:00:00+05:30"
    assert compute_expected_start("Yesterday afternoon", fixed_now).hour == 14
    assert compute_expected_start("null", fixed_now) is None


def test_compare_field_start_time_tolerance(fixed_now):
    assert compare_field("start_time", "-2 hours", "2026-03-14T16:27:00+05:30", fixed_now)
    assert not compare_field("start_time", "-2 hours", "2026-03-14T16:20:00+05:30", fixed_now)
    assert compare_field("start_time", "Today", "2026-03-14T08:00:00+05:30", fixed_now)
    assert not compare_field("start_time", None, "2026-03-14T08:00:00+05:30", fixed_now)


def test_compare_field_allows_extra_list_tags(fixed_now):
    assert compare_field("triggers", ["Caffeine"], ["Caffeine", "Dehydration"], fixed_now)
    assert not compare_field("symptoms", ["Nausea"], ["Vomiting"], fixed_now)
    assert compare_field("pain_location", "Left Temple", "left temple", fixed_now)


def test_fixture_suite_passes(fixed_now):
    cases = load_test_cases(FIXTURES_DIR / "voice_cases.md")
    assert len(cases) == 14

    result = run_suite(cases, now=fixed_now, tz=REFERENCE_TZ, mode="after")

    assert [case["id"] for case in result.failures] == []
    assert result.field_accuracy("start_time") == 100.0
    assert all(case["model_calls"] == 0 for case in result.cases)


def test_write_reports(tmp_path, fixed_now):
    cases = parse_test_cases(["1. pain 4 out of 10", "=> intensity: 9"])
    result = run_suite(cases, now=fixed_now, tz=REFERENCE_TZ, timer=iter([0.0, 0.002]).__next__)

    paths = write_reports(result, tmp_path / "reports")

    report = json.loads(paths["report"].read_text(encoding="utf-8"))
    assert report[0]["actual"]["intensity"] == 4
    assert report[0]["time_to_parse_ms"] == 2
    assert paths["report"].name == "report_before_changes.json"
    with paths["failures"].open(encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert rows[1] == ["1", "pain 4 out of 10", "intensity"]
    summary = paths["summary"].read_text(encoding="utf-8")
    assert "tests run: 1" in summary
    assert "- intensity: 0.00%" in summary
    assert summary_lines(result)[1] == "passes: 0"
