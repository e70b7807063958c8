from __future__ import annotations

import hashlib
import threading
import time
from typing import Callable

from .models import AnalysisResult


def transcript_cache_key(transcript: str) -> str:
    return "voice_extract_" + hashlib.md5(transcript.encode("utf-8")).hexdigest()


class TranscriptAnalysisCache:
    """Read-through cache of model analyses keyed by transcript text.

    Only analyses are cached; mapped payloads depend on the clock and are
    always rebuilt. A ttl of zero disables caching entirely.
    """

    def __init__(self, ttl_seconds: float = 120.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, AnalysisResult]] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, transcript: str) -> AnalysisResult | None:
        if not self.enabled:
            return None
        key = transcript_cache_key(transcript)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, analysis = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return analysis

    def put(self, transcript: str, analysis: AnalysisResult) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._entries[transcript_cache_key(transcript)] = (self._clock() + self.ttl_seconds, analysis)

    def get_or_compute(
        self,
        transcript: str,
        compute: Callable[[str], AnalysisResult | None],
    ) -> AnalysisResult | None:
        cached = self.get(transcript)
        if cached is not None:
            return cached
        analysis = compute(transcript)
        if analysis is not None:
            self.put(transcript, analysis)
        return analysis

    def invalidate(self, transcript: str) -> bool:
        with self._lock:
            return self._entries.pop(transcript_cache_key(transcript), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
