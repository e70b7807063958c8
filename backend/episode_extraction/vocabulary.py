from __future__ import annotations

import re
from types import MappingProxyType
from typing import Any, Iterable, Mapping

SYMPTOM_SYNONYMS: Mapping[str, str] = MappingProxyType(
    {
        "nausea": "Nausea",
        "nauseous": "Nausea",
        "feel sick": "Nausea",
        "queasy": "Nausea",
        "vomiting": "Vomiting",
        "puking": "Vomiting",
        "throwing up": "Vomiting",
        "throw up": "Vomiting",
        "aura": "Aura",
        "visuals": "Visual",
        "visual": "Visual",
        "zigzag": "Visual",
        "spots": "Visual",
        "flashes": "Photopsia",
        "stars": "Photopsia",
        "blurriness": "Blurred_Vision",
        "blurry": "Blurred_Vision",
        "blind spot": "Scotoma",
        "tunnel vision": "Tunnel_Vision",
        "light sensitivity": "Photophobia",
        "sensitivity to light": "Photophobia",
        "sensitive to light": "Photophobia",
        "photophobia": "Photophobia",
        "sound sensitivity": "Phonophobia",
        "noise sensitivity": "Phonophobia",
        "sensitivity to sound": "Phonophobia",
        "sensitive to sound": "Phonophobia",
        "phonophobia": "Phonophobia",
        "smell sensitivity": "Osmophobia",
        "sensitivity to smell": "Osmophobia",
        "sensitive to smell": "Osmophobia",
        "osmophobia": "Osmophobia",
        "dizziness": "Dizziness",
        "dizzy": "Dizziness",
        "vertigo": "Vertigo",
        "brain fog": "Cognitive_Dysfunction",
        "confusion": "Cognitive_Dysfunction",
        "cognitive": "Cognitive_Dysfunction",
        "dysfunction": "Cognitive_Dysfunction",
        "fatigue": "Fatigue",
        "exhaustion": "Fatigue",
        "weakness": "Weakness",
        "weak": "Weakness",
        "numbness": "Paresthesia",
        "tingling": "Paresthesia",
        "pins and needles": "Paresthesia",
        "stiff neck": "Neck_Stiffness",
        "neck is stiff": "Neck_Stiffness",
        "yawning": "Yawning",
        "chills": "Chills",
        "sweating": "Diaphoresis",
        "pale": "Pallor",
        "speech": "Dysphasia",
        "slurring": "Dysphasia",
        "ringing": "Tinnitus",
        "tinnitus": "Tinnitus",
    }
)

TRIGGER_SYNONYMS: Mapping[str, str] = MappingProxyType(
    {
        "stress": "Emotional_Stress",
        "anxiety": "Emotional_Stress",
        "crying": "Emotional_Stress",
        "tension": "Emotional_Stress",
        "sleep": "Sleep_Issue",
        "slept poorly": "Sleep_Issue",
        "haven't slept well": "Sleep_Issue",
        "poor sleep": "Sleep_Issue",
        "insomnia": "Sleep_Deprivation",
        "sleep deprivation": "Sleep_Deprivation",
        "lack of sleep": "Sleep_Deprivation",
        "oversleeping": "Oversleeping",
        "napping": "Irregular_Sleep",
        "hunger": "Hunger",
        "fasting": "Hunger",
        "skipped meal": "Hunger",
        "skipped a meal": "Hunger",
        "dehydration": "Dehydration",
        "thirst": "Dehydration",
        "food": "Dietary",
        "chocolate": "Dietary_Chocolate",
        "cheese": "Dietary_Tyramine",
        "sugar": "Dietary_Sugar",
        "caffeine": "Caffeine",
        "coffee": "Caffeine",
        "tea": "Caffeine",
        "alcohol": "Alcohol",
        "hangover": "Alcohol",
        "hangover style": "Alcohol",
        "wine": "Alcohol_Wine",
        "beer": "Alcohol_Beer",
        "weather": "Weather_Change",
        "rain": "Weather_Barometric",
        "storm": "Weather_Barometric",
        "pressure": "Weather_Barometric",
        "heat": "Weather_Heat",
        "humidity": "Weather_Humidity",
        "sun": "Weather_Sun",
        "glare": "Light_Glare",
        "bright light": "Light_Bright",
        "loud noise": "Phonophobia",
        "phonophobia": "Phonophobia",
        "photophobia": "Photophobia",
        "screen": "Screen_Exposure",
        "computer": "Screen_Exposure",
        "phone": "Screen_Exposure",
        "smells": "Olfactory_Trigger",
        "perfume": "Olfactory_Perfume",
        "smoke": "Olfactory_Smoke",
        "hormones": "Hormonal",
        "period": "Menstruation",
        "menstruation": "Menstruation",
        "cycle": "Menstruation",
        "ovulation": "Hormonal_Ovulation",
        "exercise": "Physical_Exertion",
        "gym": "Physical_Exertion",
        "travel": "Travel",
        "jet lag": "Circadian_Disruption",
        "other": "other",
    }
)

# Canonical tags map onto themselves so already-mapped lists survive a second pass.
_CANONICAL_TRIGGERS: Mapping[str, str] = MappingProxyType(
    {tag.lower(): tag for tag in TRIGGER_SYNONYMS.values()}
)

OTHER_TRIGGER = "other"

INVALID_TRIGGERS: frozenset[str] = frozenset(
    {
        "attack",
        "migraine",
        "headache",
        "pain",
        "head",
        "last night",
        "yesterday",
        "today",
        "morning",
        "evening",
        "night",
        "afternoon",
        "time",
        "started",
        "began",
    }
)

_DURATION_UNIT_RE = re.compile(r"\b(?:second|seconds|sec|secs|minute|minutes|min|mins|hour|hours|hr|hrs)\b")
_RECENT_TIMING_RE = re.compile(
    r"\b(just now|moments ago|a few minutes|minutes ago|hours ago|before (now|today)|after (some time|that))\b"
)
_AGO_BEFORE_RE = re.compile(r"\b(ago|before)\b")
_DAY_WORD_RE = re.compile(r"\b(?:today|yesterday|this|last)\b")


def filter_array_values(value: Any) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        return None
    items = [item.strip() for item in value if isinstance(item, str) and item.strip()]
    return items or None


def looks_like_time_reference(value: str) -> bool:
    normalized = value.strip().lower()
    if not normalized:
        return True
    if any(char.isdigit() for char in normalized) and _DURATION_UNIT_RE.search(normalized):
        return True
    if _RECENT_TIMING_RE.search(normalized):
        return True
    return bool(_AGO_BEFORE_RE.search(normalized) and _DAY_WORD_RE.search(normalized))


def filter_trigger_values(value: Any) -> list[str] | None:
    """Drop trigger entries that are time references or describe the attack itself."""
    items = filter_array_values(value)
    if items is None:
        return None
    kept = [
        item
        for item in items
        if not looks_like_time_reference(item) and item.lower() not in INVALID_TRIGGERS
    ]
    return kept or None


def _unique(values: Iterable[str]) -> list[str] | None:
    out: list[str] = []
    for value in values:
        if value and value.strip() and value not in out:
            out.append(value)
    return out or None


def map_symptoms(items: Iterable[Any] | None) -> list[str] | None:
    if items is None:
        return None
    mapped = [
        SYMPTOM_SYNONYMS.get(item.strip().lower(), item)
        for item in items
        if isinstance(item, str)
    ]
    return _unique(mapped)


def map_triggers(items: Iterable[Any] | None) -> list[str] | None:
    if items is None:
        return None
    mapped: list[str] = []
    for item in items:
        if not isinstance(item, str):
            continue
        key = item.strip().lower()
        mapped.append(TRIGGER_SYNONYMS.get(key) or _CANONICAL_TRIGGERS.get(key) or OTHER_TRIGGER)
    return _unique(mapped)
