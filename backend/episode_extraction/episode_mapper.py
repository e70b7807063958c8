from __future__ import annotations

import logging
import math
from datetime import datetime, timezone, tzinfo
from types import MappingProxyType
from typing import Any, Mapping

from .local_extractor import LocalHeuristicExtractor
from .models import AnalysisResult, StructuredEpisodePayload, coerce_intensity
from .temporal_resolver import StartTimeResolver
from .time_utils import parse_iso, resolve_timezone, to_iso
from .vocabulary import filter_array_values, filter_trigger_values, map_symptoms, map_triggers

_log = logging.getLogger("migrainelog.extraction")

# Minimum confidence recorded for a field filled from the transcript heuristics.
HEURISTIC_CONFIDENCE_FLOORS: Mapping[str, float] = MappingProxyType(
    {
        "start_time": 0.85,
        "intensity": 0.85,
        "symptoms": 0.8,
        "triggers": 0.75,
    }
)
# Below the confirmation threshold so the user is always asked to confirm it.
HEURISTIC_PAIN_LOCATION_CONFIDENCE = 0.6

_AURA_TRUE = frozenset({"yes", "y", "true", "present"})
_AURA_FALSE = frozenset({"no", "n", "false", "absent"})


def canonical_datetime(value: Any, tz: tzinfo) -> str | None:
    if isinstance(value, datetime):
        parsed = value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    else:
        parsed = parse_iso(value) if isinstance(value, str) else None
    if parsed is None:
        return None
    try:
        return to_iso(parsed.astimezone(tz))
    except (OverflowError, ValueError):
        return None


def canonical_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def canonical_aura(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _AURA_TRUE:
            return True
        if normalized in _AURA_FALSE:
            return False
    return None


def canonical_confidence(value: Any) -> dict[str, float]:
    if not isinstance(value, Mapping):
        return {}
    out: dict[str, float] = {}
    for key, raw in value.items():
        if not isinstance(key, str) or isinstance(raw, bool) or not isinstance(raw, (int, float)):
            continue
        if not math.isfinite(raw):
            continue
        out[key] = max(0.0, min(1.0, float(raw)))
    return out


def _as_tuple(items: list[str] | None) -> tuple[str, ...] | None:
    return tuple(items) if items else None


class StructuredEpisodeMapper:
    """Turns a raw model analysis plus the transcript into a validated payload.

    Values from the analysis always win. The transcript heuristics only fill
    fields that are still empty after canonicalization, and every field they
    fill records a confidence floor. A pain location is only taken from the
    transcript when it was named outright, and then with a confidence that
    keeps it provisional.
    """

    def __init__(
        self,
        tz: tzinfo | str | None = None,
        resolver: StartTimeResolver | None = None,
        extractor: LocalHeuristicExtractor | None = None,
    ) -> None:
        self.tz = tz if isinstance(tz, tzinfo) else resolve_timezone(tz)
        self.resolver = resolver or StartTimeResolver(self.tz)
        self.extractor = extractor or LocalHeuristicExtractor()

    def canonicalize(self, analysis: AnalysisResult | Mapping[str, Any] | None) -> StructuredEpisodePayload:
        if not isinstance(analysis, AnalysisResult):
            analysis = AnalysisResult.from_mapping(analysis)
        return StructuredEpisodePayload(
            start_time=canonical_datetime(analysis.start_time, self.tz),
            end_time=canonical_datetime(analysis.end_time, self.tz),
            intensity=coerce_intensity(analysis.intensity),
            pain_location=canonical_text(analysis.pain_location),
            aura=canonical_aura(analysis.aura),
            symptoms=_as_tuple(map_symptoms(filter_array_values(analysis.symptoms))),
            triggers=_as_tuple(map_triggers(filter_trigger_values(analysis.triggers))),
            what_you_tried=canonical_text(analysis.what_you_tried),
            notes=canonical_text(analysis.notes),
            confidence_breakdown=canonical_confidence(analysis.confidence_breakdown),
        )

    def map(
        self,
        analysis: AnalysisResult | Mapping[str, Any] | None,
        transcript: str | None = None,
        *,
        now: datetime | None = None,
    ) -> StructuredEpisodePayload:
        payload = self.canonicalize(analysis)
        if isinstance(transcript, str) and transcript.strip():
            payload = self._fill_from_transcript(payload, transcript, now)

        if payload.aura is None and payload.symptoms:
            if any("aura" in symptom.lower() for symptom in payload.symptoms):
                payload = payload.with_values(aura=True)
        return payload

    def _fill_from_transcript(
        self,
        payload: StructuredEpisodePayload,
        transcript: str,
        now: datetime | None,
    ) -> StructuredEpisodePayload:
        local = self.extractor.extract(transcript)
        candidates: dict[str, Any] = {
            "start_time": self.resolver.resolve(transcript, now) if payload.start_time is None else None,
            "intensity": local.intensity,
            "symptoms": local.symptoms,
            "triggers": local.triggers,
        }
        updates: dict[str, Any] = {}
        confidence = dict(payload.confidence_breakdown)
        for name, value in candidates.items():
            if value is None or payload.has(name):
                continue
            updates[name] = value
            confidence[name] = max(confidence.get(name, 0.0), HEURISTIC_CONFIDENCE_FLOORS[name])

        if payload.pain_location is None and local.pain_location and local.pain_location_explicit:
            updates["pain_location"] = local.pain_location
            confidence["pain_location"] = HEURISTIC_PAIN_LOCATION_CONFIDENCE
        if payload.aura is None and local.aura is not None:
            updates["aura"] = local.aura

        if updates:
            _log.debug("Filled %s from transcript heuristics", ", ".join(sorted(updates)))
        return payload.with_values(confidence_breakdown=confidence, **updates)
