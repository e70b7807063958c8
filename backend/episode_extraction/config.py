from __future__ import annotations

import os
from dataclasses import dataclass

from .time_utils import DEFAULT_REFERENCE_TIMEZONE

REQUIRED_FIELDS: tuple[str, ...] = ("start_time", "triggers", "intensity", "pain_location", "symptoms")


def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class ExtractionSettings:
    reference_timezone: str = DEFAULT_REFERENCE_TIMEZONE
    provisional_threshold: float = 0.7
    cache_ttl_seconds: float = 120.0
    required_fields: tuple[str, ...] = REQUIRED_FIELDS

    @classmethod
    def from_env(cls) -> "ExtractionSettings":
        threshold = _float_env("MIGRAINELOG_PROVISIONAL_THRESHOLD", 0.7)
        return cls(
            reference_timezone=(os.getenv("MIGRAINELOG_REFERENCE_TIMEZONE") or DEFAULT_REFERENCE_TIMEZONE).strip(),
            provisional_threshold=max(0.0, min(1.0, threshold)),
            cache_ttl_seconds=max(0.0, _float_env("MIGRAINELOG_ANALYSIS_CACHE_TTL_SECONDS", 120.0)),
        )
