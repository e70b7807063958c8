from __future__ import annotations

import math
import re
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

EPISODE_FIELDS: tuple[str, ...] = (
    "start_time",
    "end_time",
    "intensity",
    "pain_location",
    "aura",
    "symptoms",
    "triggers",
    "what_you_tried",
    "notes",
)


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict, set, frozenset)):
        return len(value) > 0
    return True


_TIME_EXPRESSION_RE = re.compile(
    r"\bhours?\s+(?:ago|before)|before\s+\d+\s+hours?|ago\b|(?:since|from|till|until)\s+\d|\d+\s*(?:am|pm)"
    r"|last\s+(?:night|evening|morning|afternoon)|tonight|this\s+(?:morning|afternoon|evening)"
)


def coerce_intensity(value: Any) -> int | None:
    """Round a numeric value (or numeric string) onto the 0-10 scale, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip().lower()
        if not text or _TIME_EXPRESSION_RE.search(text):
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    # Half away from zero, not banker's rounding.
    rounded = math.floor(value + 0.5) if value >= 0 else -math.floor(-value + 0.5)
    return int(rounded) if 0 <= rounded <= 10 else None


@dataclass(frozen=True)
class AnalysisResult:
    """Raw structured values as returned by the extraction model.

    Nothing here is validated; the mapper decides what survives.
    """

    start_time: Any = None
    end_time: Any = None
    intensity: Any = None
    pain_location: Any = None
    aura: Any = None
    symptoms: Any = None
    triggers: Any = None
    what_you_tried: Any = None
    notes: Any = None
    confidence_breakdown: Any = None

    @classmethod
    def from_mapping(cls, obj: Any) -> "AnalysisResult":
        if not isinstance(obj, Mapping):
            return cls()
        values = {name: obj.get(name) for name in EPISODE_FIELDS}
        return cls(confidence_breakdown=obj.get("confidence_breakdown"), **values)

    def is_empty(self) -> bool:
        return not any(is_present(getattr(self, name)) for name in EPISODE_FIELDS)


@dataclass(frozen=True)
class StructuredEpisodePayload:
    start_time: str | None = None
    end_time: str | None = None
    intensity: int | None = None
    pain_location: str | None = None
    aura: bool | None = None
    symptoms: tuple[str, ...] | None = None
    triggers: tuple[str, ...] | None = None
    what_you_tried: str | None = None
    notes: str | None = None
    confidence_breakdown: dict[str, float] = field(default_factory=dict)

    def value(self, name: str) -> Any:
        return getattr(self, name, None) if name in EPISODE_FIELDS else None

    def has(self, name: str) -> bool:
        return is_present(self.value(name))

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for name in EPISODE_FIELDS:
            value = getattr(self, name)
            if not is_present(value):
                continue
            payload[name] = list(value) if isinstance(value, tuple) else value
        if self.confidence_breakdown:
            payload["confidence_breakdown"] = dict(self.confidence_breakdown)
        return payload

    def to_analysis(self) -> AnalysisResult:
        return AnalysisResult.from_mapping(self.as_payload())

    def merged_with(self, other: "StructuredEpisodePayload") -> "StructuredEpisodePayload":
        """Fields present in ``other`` win; confidence maps merge key by key."""
        updates: dict[str, Any] = {name: getattr(other, name) for name in EPISODE_FIELDS if other.has(name)}
        confidence = {**self.confidence_breakdown, **other.confidence_breakdown}
        return replace(self, confidence_breakdown=confidence, **updates)

    def with_values(self, **values: Any) -> "StructuredEpisodePayload":
        return replace(self, **values)

    def missing_fields(self, required: tuple[str, ...]) -> list[str]:
        return [name for name in required if not self.has(name)]

    def confidence(self, name: str) -> float | None:
        return self.confidence_breakdown.get(name)
