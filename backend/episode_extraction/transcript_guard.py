from __future__ import annotations

import logging
import re
from dataclasses import dataclass

_log = logging.getLogger("migrainelog.guard")


@dataclass(frozen=True)
class GuardResult:
    accepted: bool
    reason: str | None = None
    transcript: str | None = None


class TranscriptGuard:
    """Rejects transcripts that should never reach extraction.

    The product is English-only and the ASR model is known to hallucinate
    broadcast and captioning boilerplate on silence, so either condition
    discards the whole transcript.
    """

    _HALLUCINATION_PATTERNS = [
        re.compile(re.escape("MBC News"), re.IGNORECASE),
        re.compile(re.escape("MBC 뉴스"), re.IGNORECASE),
        re.compile(re.escape("Thank you for watching"), re.IGNORECASE),
        re.compile(re.escape("Thanks for watching"), re.IGNORECASE),
        re.compile(re.escape("subtitles"), re.IGNORECASE),
        re.compile(re.escape("captioned"), re.IGNORECASE),
        re.compile(re.escape("Amara.org"), re.IGNORECASE),
        re.compile(r"\bTED\b"),
        re.compile(re.escape("I am a transcription system"), re.IGNORECASE),
        re.compile(re.escape("Only transcribe user speech"), re.IGNORECASE),
    ]

    # Devanagari, Cyrillic, Arabic, CJK unified ideographs, Hangul syllables.
    _DISALLOWED_SCRIPT_RE = re.compile(r"[\u0900-\u097F\u0400-\u04FF\u0600-\u06FF\u4E00-\u9FFF\uAC00-\uD7AF]")

    def check(self, transcript: str | None) -> GuardResult:
        if not isinstance(transcript, str) or not transcript.strip():
            return GuardResult(accepted=False, reason="empty_transcript")
        for pattern in self._HALLUCINATION_PATTERNS:
            if pattern.search(transcript):
                _log.warning("Rejected hallucinated transcript: %s", transcript)
                return GuardResult(accepted=False, reason="hallucination")
        if self._DISALLOWED_SCRIPT_RE.search(transcript):
            _log.warning("Rejected non-English transcript: %s", transcript)
            return GuardResult(accepted=False, reason="non_english_script")
        return GuardResult(accepted=True, transcript=transcript)

    def sanitize(self, transcript: str | None) -> str | None:
        return self.check(transcript).transcript
