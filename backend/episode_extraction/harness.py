from __future__ import annotations

import csv
import json
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from pathlib import Path
from typing import Any, Callable, Iterable

from .episode_mapper import StructuredEpisodeMapper
from .models import AnalysisResult
from .time_utils import at_clock, parse_iso, reference_now, resolve_timezone

HARNESS_FIELDS: tuple[str, ...] = ("start_time", "intensity", "pain_location", "triggers", "symptoms", "aura")
_KEY_ALIASES = {
    "trigger": "triggers",
    "symptom": "symptoms",
    "paint_location": "pain_location",
}

_CASE_RE = re.compile(r"^(\d{1,3})\.\s*(.+)$")
_LIST_SPLIT_RE = re.compile(r"[,\s]+")
_AURA_TRUE_RE = re.compile(r"1|true|yes", re.IGNORECASE)
_BRACKETED_RE = re.compile(r"\[(.+)\]")
_RELATIVE_TAG_RE = re.compile(r"(-?\d+)\s*(hour|hours|hr|hrs|minute|minutes|min|mins)")
_CLOCK_TAG_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)", re.IGNORECASE)

TODAY_TAG_HOUR = 9
YESTERDAY_TAG_HOUR = 21
YESTERDAY_DAYPART_HOURS = (("morning", 9), ("afternoon", 14), ("evening", 21), ("night", 21))
SLOW_PARSE_MS = 3000


def _empty_expected() -> dict[str, Any]:
    return {
        "start_time": None,
        "triggers": [],
        "intensity": None,
        "pain_location": None,
        "symptoms": [],
        "aura": None,
    }


@dataclass(frozen=True)
class VoiceTestCase:
    case_id: int
    sentence: str
    expected: dict[str, Any] = field(default_factory=_empty_expected)


def _parse_intensity(value: str) -> int | None:
    try:
        return int(float(value))
    except (OverflowError, ValueError):
        return None


def _apply_expectation(expected: dict[str, Any], key: str, value: str) -> None:
    key = _KEY_ALIASES.get(key, key)
    if key == "intensity":
        expected["intensity"] = _parse_intensity(value)
    elif key == "aura":
        expected["aura"] = 1 if _AURA_TRUE_RE.search(value) else 0
    elif key == "pain_location":
        expected["pain_location"] = value.lower() or None
    elif key in ("symptoms", "triggers"):
        expected[key] = [token for token in _LIST_SPLIT_RE.split(value) if token.strip()]
    elif key == "start_time":
        expected["start_time"] = value


def parse_test_cases(lines: Iterable[str]) -> list[VoiceTestCase]:
    """Parse ``N. sentence`` blocks followed by ``=> field: expected`` lines."""
    cases: list[VoiceTestCase] = []
    current: VoiceTestCase | None = None
    for raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue
        match = _CASE_RE.match(line)
        if match:
            if current is not None:
                cases.append(current)
            current = VoiceTestCase(case_id=int(match.group(1)), sentence=match.group(2).strip())
            continue
        if current is None or not line.startswith("=>"):
            continue
        parts = re.split(r"\s*:\s*", line[2:].strip(), maxsplit=1)
        if len(parts) < 2:
            continue
        _apply_expectation(current.expected, parts[0].strip().lower(), parts[1].strip())
    if current is not None:
        cases.append(current)
    return cases


def load_test_cases(path: str | Path) -> list[VoiceTestCase]:
    return parse_test_cases(Path(path).read_text(encoding="utf-8").splitlines())


def _tag_clock(text: str) -> tuple[int, int] | None:
    match = _CLOCK_TAG_RE.search(text)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2)) if match.group(2) else 0
    meridiem = match.group(3).lower()
    if meridiem == "am" and hour == 12:
        hour = 0
    elif meridiem == "pm" and hour < 12:
        hour += 12
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def compute_expected_start(raw: str | None, now: datetime) -> datetime | None:
    """Resolve an expected start tag such as ``-2 hours`` or ``Yesterday 9pm`` against ``now``."""
    if not raw:
        return None
    bracketed = _BRACKETED_RE.search(raw)
    if bracketed:
        raw = bracketed.group(1)
    text = raw.strip().lower()
    if not text or text == "null":
        return None

    if "timestamp_now" in text or "currenttime" in text:
        return now

    relative = _RELATIVE_TAG_RE.search(text)
    if relative:
        amount = abs(int(relative.group(1)))
        unit = relative.group(2)
        if "hour" in unit or "hr" in unit:
            return now - timedelta(hours=amount)
        return now - timedelta(minutes=amount)

    if text.startswith("today"):
        clock = _tag_clock(text.replace("today", "").strip())
        return at_clock(now, *clock) if clock else at_clock(now, TODAY_TAG_HOUR)

    if text.startswith("yesterday"):
        rest = text.replace("yesterday", "").strip()
        clock = _tag_clock(rest)
        if clock:
            return at_clock(now, *clock, day_offset=-1)
        for keyword, hour in YESTERDAY_DAYPART_HOURS:
            if keyword in rest:
                return at_clock(now, hour, day_offset=-1)
        return at_clock(now, YESTERDAY_TAG_HOUR, day_offset=-1)

    clock = _tag_clock(text)
    return at_clock(now, *clock) if clock else None


def normalize_actual(payload: dict[str, Any]) -> dict[str, Any]:
    aura = payload.get("aura")
    return {
        "start_time": payload.get("start_time"),
        "triggers": list(payload.get("triggers") or []),
        "intensity": payload.get("intensity"),
        "pain_location": payload.get("pain_location"),
        "symptoms": list(payload.get("symptoms") or []),
        "aura": None if aura is None else int(bool(aura)),
    }


def start_time_tolerance_minutes(expected: str) -> int:
    text = expected.lower()
    return 5 if ("hour" in text or "min" in text) else 60


def compare_field(name: str, expected: Any, actual: Any, now: datetime) -> bool:
    if name == "start_time":
        if expected is None:
            return actual is None
        if not isinstance(actual, str):
            return False
        expected_at = compute_expected_start(str(expected), now)
        if expected_at is None:
            return actual is None
        actual_at = parse_iso(actual)
        if actual_at is None:
            return False
        minutes = int(abs((expected_at - actual_at).total_seconds()) // 60)
        return minutes <= start_time_tolerance_minutes(str(expected))

    if name in ("intensity", "aura"):
        if expected is None:
            return actual is None
        return actual is not None and int(expected) == int(actual)

    if name == "pain_location":
        if expected is None:
            return actual is None
        return actual is not None and str(expected).lower() == str(actual).lower()

    if name in ("triggers", "symptoms"):
        actual_tokens = {str(item) for item in actual or []}
        # Extra actual tags are allowed.
        return all(str(token) in actual_tokens for token in expected or [] if token)

    return False


@dataclass
class SuiteResult:
    mode: str
    cases: list[dict[str, Any]] = field(default_factory=list)
    field_totals: dict[str, dict[str, int]] = field(
        default_factory=lambda: {name: {"pass": 0, "total": 0} for name in HARNESS_FIELDS}
    )

    @property
    def passes(self) -> int:
        return sum(1 for case in self.cases if case["overall"] == "PASS")

    @property
    def failures(self) -> list[dict[str, Any]]:
        return [case for case in self.cases if case["overall"] != "PASS"]

    def field_accuracy(self, name: str) -> float:
        totals = self.field_totals[name]
        if not totals["total"]:
            return 0.0
        return round(totals["pass"] / totals["total"] * 100, 2)


def run_suite(
    cases: Iterable[VoiceTestCase],
    mapper: StructuredEpisodeMapper | None = None,
    *,
    now: datetime | None = None,
    tz: tzinfo | str | None = None,
    mode: str = "before",
    timer: Callable[[], float] = time.perf_counter,
) -> SuiteResult:
    """Map every sentence with an empty analysis, so only the heuristics are measured."""
    zone = tz if isinstance(tz, tzinfo) else resolve_timezone(tz)
    mapper = mapper or StructuredEpisodeMapper(zone)
    current = reference_now(zone, now)
    result = SuiteResult(mode="after" if mode == "after" else "before")

    for case in cases:
        started = timer()
        payload = mapper.map(AnalysisResult(), case.sentence, now=current).as_payload()
        actual = normalize_actual(payload)
        elapsed_ms = int(round((timer() - started) * 1000))

        per_field: dict[str, str] = {}
        for name in HARNESS_FIELDS:
            ok = compare_field(name, case.expected[name], actual[name], current)
            result.field_totals[name]["total"] += 1
            if ok:
                result.field_totals[name]["pass"] += 1
            per_field[name] = "PASS" if ok else "FAIL"

        result.cases.append(
            {
                "id": case.case_id,
                "sentence": case.sentence,
                "expected": case.expected,
                "actual": actual,
                "per_field": per_field,
                "overall": "PASS" if all(value == "PASS" for value in per_field.values()) else "FAIL",
                "time_to_parse_ms": elapsed_ms,
                "model_calls": 0,
                "simulated": True,
            }
        )
    return result


def summary_lines(result: SuiteResult) -> list[str]:
    total = len(result.cases)
    lines = [
        f"tests run: {total}",
        f"passes: {result.passes}",
        f"fails: {total - result.passes}",
        "per-field accuracy:",
    ]
    lines.extend(f"- {name}: {result.field_accuracy(name):0.2f}%" for name in HARNESS_FIELDS)

    times = sorted(case["time_to_parse_ms"] for case in result.cases)
    average = sum(times) / max(1, len(times))
    median = times[len(times) // 2] if times else 0
    p95 = times[int(len(times) * 0.95)] if times else 0
    lines.extend(
        [
            f"avg time_to_parse_ms: {round(average, 2)}",
            f"median time_to_parse_ms: {median}",
            f"p95 time_to_parse_ms: {p95}",
            "avg model_calls: 0",
        ]
    )
    slow = [case for case in result.cases if case["time_to_parse_ms"] > SLOW_PARSE_MS]
    if slow:
        lines.append("slow tests:")
        lines.extend(f"- id {case['id']}" for case in slow)
    return lines


def write_reports(result: SuiteResult, out_dir: str | Path) -> dict[str, Path]:
    """Write the JSON report, the text summary and the failures CSV."""
    directory = Path(out_dir)
    directory.mkdir(parents=True, exist_ok=True)
    paths = {
        "report": directory / f"report_{result.mode}_changes.json",
        "summary": directory / f"summary_{result.mode}.txt",
        "failures": directory / f"failures_{result.mode}.csv",
    }
    paths["report"].write_text(json.dumps(result.cases, indent=2, ensure_ascii=False), encoding="utf-8")
    paths["summary"].write_text("\n".join(summary_lines(result)), encoding="utf-8")
    with paths["failures"].open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(["id", "sentence", "reason"])
        for case in result.failures:
            reasons = [name for name, outcome in case["per_field"].items() if outcome == "FAIL"]
            writer.writerow([case["id"], case["sentence"], "|".join(reasons)])
    return paths
