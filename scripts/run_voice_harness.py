#!/usr/bin/env python3
from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from episode_extraction.harness import load_test_cases, run_suite, summary_lines, write_reports
from logging_conf import setup_logging

DEFAULT_CASES_PATH = BACKEND_DIR / "tests" / "fixtures" / "voice_cases.md"
DEFAULT_OUT_DIR = ROOT / "voice_harness_reports"


def main() -> int:
    args = sys.argv[1:]
    mode = "after" if "--after" in args else "before"
    positional = [arg for arg in args if not arg.startswith("--")]
    cases_path = Path(positional[0]) if positional else DEFAULT_CASES_PATH
    out_dir = Path(positional[1]) if len(positional) > 1 else DEFAULT_OUT_DIR

    setup_logging()
    if not cases_path.exists():
        print(f"Test cases not found: {cases_path}", file=sys.stderr)
        return 2
    cases = load_test_cases(cases_path)
    if not cases:
        print(f"No test cases parsed from {cases_path}", file=sys.stderr)
        return 2

    result = run_suite(cases, tz=os.getenv("MIGRAINELOG_REFERENCE_TIMEZONE"), mode=mode)
    paths = write_reports(result, out_dir)
    for line in summary_lines(result):
        print(line)
    for path in paths.values():
        print(f"Wrote: {path}")
    return 0 if not result.failures else 1


if __name__ == "__main__":
    raise SystemExit(main())
