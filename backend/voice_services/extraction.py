from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from episode_extraction import (
    AnalysisResult,
    ExtractionSettings,
    StructuredEpisodeMapper,
    StructuredEpisodePayload,
    TranscriptAnalysisCache,
    TranscriptGuard,
)
from episode_extraction.time_utils import at_clock, reference_now, resolve_timezone, to_iso
from episode_extraction.vocabulary import filter_trigger_values

from .prompts import EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt
from .providers import ChatCompletionClient

_log = logging.getLogger("migrainelog.extraction")

RELATIVE_START_SENTINEL = "relative"
_RELATIVE_HINT_RE = re.compile(
    r"(\d+|one|two|three|four|five|six|seven|eight|nine|ten)\s+(minutes?|mins?|hours?|hrs?|legal)\s+(ago|before)"
)
_CLOCK_TIME_RE = re.compile(r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm)\b|\b\d{1,2}:\d{2}\b")
_MORNING_HINT_HOUR = 8


class EpisodeExtractionService:
    """Model-backed extraction with the heuristic mapper as the safety net."""

    def __init__(
        self,
        chat: ChatCompletionClient | None = None,
        *,
        settings: ExtractionSettings | None = None,
        guard: TranscriptGuard | None = None,
        mapper: StructuredEpisodeMapper | None = None,
        cache: TranscriptAnalysisCache | None = None,
    ) -> None:
        self.settings = settings or ExtractionSettings.from_env()
        self.tz = resolve_timezone(self.settings.reference_timezone)
        self.chat = chat or ChatCompletionClient()
        self.guard = guard or TranscriptGuard()
        self.mapper = mapper or StructuredEpisodeMapper(self.tz)
        self.cache = cache or TranscriptAnalysisCache(self.settings.cache_ttl_seconds)

    def extract(self, transcript: str | None, now: datetime | None = None) -> AnalysisResult:
        accepted = self.guard.sanitize(transcript)
        if accepted is None:
            return AnalysisResult()
        analysis = self.cache.get_or_compute(accepted, lambda text: self._request_analysis(text, now))
        return analysis or AnalysisResult()

    def analyze(self, transcript: str | None, now: datetime | None = None) -> StructuredEpisodePayload:
        if self.guard.sanitize(transcript) is None:
            return StructuredEpisodePayload()
        analysis = self.extract(transcript, now)
        return self.mapper.map(analysis, transcript, now=now)

    def _request_analysis(self, transcript: str, now: datetime | None) -> AnalysisResult | None:
        current = reference_now(self.tz, now)
        decoded = self.chat.complete_json(
            EXTRACTION_SYSTEM_PROMPT,
            build_extraction_prompt(transcript, current),
            temperature=0.0,
        )
        if decoded is None:
            _log.warning("extraction model unavailable; relying on transcript heuristics")
            return None
        decoded = self._with_start_time_hint(decoded, transcript, current)
        decoded = self._without_invalid_triggers(decoded)
        return AnalysisResult.from_mapping(decoded)

    def _with_start_time_hint(self, decoded: dict[str, Any], transcript: str, now: datetime) -> dict[str, Any]:
        if decoded.get("start_time"):
            return decoded
        lowered = transcript.lower()
        hint: str | None = None
        # A spoken clock time is left to the temporal rules.
        if ("this morning" in lowered or "woke up" in lowered) and not _CLOCK_TIME_RE.search(lowered):
            hint = to_iso(at_clock(now, _MORNING_HINT_HOUR))
        elif _RELATIVE_HINT_RE.search(lowered):
            # Resolved against the clock by the mapper's temporal rules.
            hint = RELATIVE_START_SENTINEL
        elif "right now" in lowered or "just now" in lowered or lowered.strip() == "now":
            hint = to_iso(now)
        if hint is None:
            return decoded
        return {**decoded, "start_time": hint}

    def _without_invalid_triggers(self, decoded: dict[str, Any]) -> dict[str, Any]:
        triggers = decoded.get("triggers")
        if not isinstance(triggers, list) or not triggers:
            return decoded
        kept = filter_trigger_values(triggers)
        if kept:
            return {**decoded, "triggers": kept}
        _log.debug("pruned all triggers: %s", triggers)
        pruned = {key: value for key, value in decoded.items() if key != "triggers"}
        confidence = pruned.get("confidence_breakdown")
        if isinstance(confidence, dict):
            pruned["confidence_breakdown"] = {key: value for key, value in confidence.items() if key != "triggers"}
        return pruned
