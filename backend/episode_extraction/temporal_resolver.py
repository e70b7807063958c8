from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Callable

from .time_utils import at_clock, reference_now, resolve_timezone, to_iso

_NUMBER_WORDS = {
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "eleven": 11,
    "twelve": 12,
}

# Checked in order with a substring test; midnight must precede night and
# afternoon must precede noon.
DAYPART_CLOCK: tuple[tuple[str, int, int], ...] = (
    ("midnight", 0, 0),
    ("morning", 8, 0),
    ("afternoon", 15, 0),
    ("noon", 12, 0),
    ("evening", 19, 0),
    ("night", 22, 0),
    ("dawn", 5, 0),
    ("sunrise", 6, 0),
    ("sunset", 18, 0),
)

WOKE_UP_HOUR = 8
TODAY_DEFAULT_HOUR = 8
YESTERDAY_DEFAULT_HOUR = 9

_CAUSE_VERB_RE = re.compile(r"\b(triggered|caused|brought on|started|sparked)\b")
_STARTED_DAYPART_RE = re.compile(
    r"\bstarted\b[^,.]{0,30}\b(in|at)\b[^,.]{0,15}\b(morning|noon|afternoon|evening|night|midnight|dawn|sunrise|sunset)\b"
)
_LAST_NIGHT_RE = re.compile(r"\blast\s+night\b")
_JUST_NOW_RE = re.compile(r"\bjust now\b")
_SUDDEN_ONSET_RE = re.compile(r"\bsudden\s+onset\b")
_CAUSED_ONSET_RE = re.compile(r"\b(triggered|caused|brought on|started|sparked)[^,.]{0,50}\bonset\b")
_WOKE_UP_RE = re.compile(r"\bwoke up\b")
_RELATIVE_OFFSET_RE = re.compile(
    r"(\d+|one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve)\s*"
    r"(hour|hours|hr|hrs|h|minute|minutes|min|mins|m|legal)\s*(?:ago|before)\b"
)
# "legal" is a frequent ASR mishearing of "minutes".
_MINUTE_UNITS = frozenset({"minute", "minutes", "min", "mins", "m", "legal"})
_SINCE_RE = re.compile(r"\bsince\s+([^,.]+)\b")
_MERIDIEM_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b")
_BARE_HOUR_RE = re.compile(r"\b(\d{1,2})\b")
_CLOCK_24H_RE = re.compile(r"(\d{1,2}):(\d{2})\b")


@dataclass(frozen=True)
class TemporalCues:
    text: str
    now: datetime
    day_offset: int
    cause_governs_dayparts: bool

    @classmethod
    def from_transcript(cls, transcript: str, now: datetime) -> "TemporalCues":
        text = transcript.strip().lower()
        day_offset = -1 if ("yesterday" in text or _LAST_NIGHT_RE.search(text)) else 0
        has_cause_verb = bool(_CAUSE_VERB_RE.search(text))
        has_started_daypart = bool(_STARTED_DAYPART_RE.search(text))
        return cls(
            text=text,
            now=now,
            day_offset=day_offset,
            cause_governs_dayparts=has_cause_verb and not has_started_daypart,
        )


@dataclass(frozen=True)
class TemporalRule:
    name: str
    applies: Callable[[TemporalCues], bool]
    resolve: Callable[[TemporalCues], datetime | None]


def _meridiem_clock(match: re.Match[str]) -> tuple[int, int] | None:
    hour = int(match.group(1))
    minute = int(match.group(2)) if match.group(2) else 0
    meridiem = match.group(3)
    if meridiem == "am" and hour == 12:
        hour = 0
    elif meridiem == "pm" and hour < 12:
        hour += 12
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def _relative_offset(cues: TemporalCues) -> datetime | None:
    match = _RELATIVE_OFFSET_RE.search(cues.text)
    if not match:
        return None
    raw = match.group(1)
    try:
        amount = int(raw) if raw.isdigit() else _NUMBER_WORDS.get(raw, 1)
        delta = timedelta(minutes=amount) if match.group(2) in _MINUTE_UNITS else timedelta(hours=amount)
        return cues.now - delta
    except (OverflowError, ValueError):
        return None


def _since_phrase(cues: TemporalCues) -> datetime | None:
    match = _SINCE_RE.search(cues.text)
    if not match:
        return None
    phrase = match.group(1).strip()
    clock_match = _MERIDIEM_RE.search(phrase)
    if clock_match:
        clock = _meridiem_clock(clock_match)
        return at_clock(cues.now, *clock) if clock else None
    hour_match = _BARE_HOUR_RE.search(phrase)
    if hour_match and int(hour_match.group(1)) <= 23:
        return at_clock(cues.now, int(hour_match.group(1)))
    return None


def _explicit_meridiem(cues: TemporalCues) -> datetime | None:
    match = _MERIDIEM_RE.search(cues.text)
    if not match:
        return None
    clock = _meridiem_clock(match)
    if clock is None:
        return None
    return at_clock(cues.now, *clock, day_offset=cues.day_offset)


def _daypart(cues: TemporalCues) -> datetime | None:
    for keyword, hour, minute in DAYPART_CLOCK:
        if keyword in cues.text:
            return at_clock(cues.now, hour, minute, day_offset=cues.day_offset)
    return None


def _clock_24h(cues: TemporalCues) -> datetime | None:
    match = _CLOCK_24H_RE.search(cues.text)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return at_clock(cues.now, hour, minute, day_offset=cues.day_offset)


def _always(_: TemporalCues) -> bool:
    return True


# Earlier rules are narrower cues and must win over the broader ones below them.
START_TIME_RULES: tuple[TemporalRule, ...] = (
    # Explicit "it is happening now" phrasing beats any clock mention.
    TemporalRule(
        "immediate_onset",
        lambda c: bool(
            _JUST_NOW_RE.search(c.text) or _SUDDEN_ONSET_RE.search(c.text) or _CAUSED_ONSET_RE.search(c.text)
        ),
        lambda c: c.now,
    ),
    TemporalRule(
        "woke_up",
        lambda c: bool(_WOKE_UP_RE.search(c.text)),
        lambda c: at_clock(c.now, WOKE_UP_HOUR),
    ),
    TemporalRule("relative_offset", _always, _relative_offset),
    # "since" without a resolvable clock falls through instead of guessing.
    TemporalRule("since_phrase", _always, _since_phrase),
    TemporalRule("explicit_meridiem", _always, _explicit_meridiem),
    # "triggered by evening light" names a cause, not an onset.
    TemporalRule("daypart", lambda c: not c.cause_governs_dayparts, _daypart),
    TemporalRule("clock_24h", _always, _clock_24h),
    TemporalRule(
        "bare_today",
        lambda c: "today" in c.text and not c.cause_governs_dayparts,
        lambda c: at_clock(c.now, TODAY_DEFAULT_HOUR),
    ),
    TemporalRule(
        "bare_yesterday",
        lambda c: c.day_offset == -1,
        lambda c: at_clock(c.now, YESTERDAY_DEFAULT_HOUR, day_offset=-1),
    ),
)


class StartTimeResolver:
    def __init__(self, tz: tzinfo | str | None = None, rules: tuple[TemporalRule, ...] = START_TIME_RULES) -> None:
        self.tz = tz if isinstance(tz, tzinfo) else resolve_timezone(tz)
        self.rules = rules

    def resolve_datetime(self, transcript: str | None, now: datetime | None = None) -> datetime | None:
        if not isinstance(transcript, str) or not transcript.strip():
            return None
        cues = TemporalCues.from_transcript(transcript, reference_now(self.tz, now))
        for rule in self.rules:
            if not rule.applies(cues):
                continue
            resolved = rule.resolve(cues)
            if resolved is not None:
                return resolved
        return None

    def resolve(self, transcript: str | None, now: datetime | None = None) -> str | None:
        resolved = self.resolve_datetime(transcript, now)
        return to_iso(resolved) if resolved is not None else None

    def matching_rule(self, transcript: str, now: datetime | None = None) -> str | None:
        if not transcript.strip():
            return None
        cues = TemporalCues.from_transcript(transcript, reference_now(self.tz, now))
        for rule in self.rules:
            if rule.applies(cues) and rule.resolve(cues) is not None:
                return rule.name
        return None
