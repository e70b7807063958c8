from __future__ import annotations

import json
import logging
import math
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from .providers import DEFAULT_OPENAI_API_BASE, ProviderError, provider_error_message

_log = logging.getLogger("migrainelog.providers")

ASR_PROVIDER = "openai_whisper"
DEFAULT_LANGUAGE = "en"
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    confidence: float | None
    provider: str = ASR_PROVIDER
    segments: list[dict[str, Any]] = field(default_factory=list)


def transcription_confidence(segments: Any) -> float | None:
    """Mean of ``exp(avg_logprob)`` over the segments, rounded to 4 places."""
    if not isinstance(segments, list):
        return None
    probabilities = [
        math.exp(float(segment["avg_logprob"]))
        for segment in segments
        if isinstance(segment, dict)
        and isinstance(segment.get("avg_logprob"), (int, float))
        and not isinstance(segment.get("avg_logprob"), bool)
    ]
    if not probabilities:
        return None
    return round(sum(probabilities) / len(probabilities), 4)


def _require_openai_api_key() -> str:
    api_key = (os.getenv("OPENAI_API_KEY") or "").strip()
    if not api_key:
        raise ProviderError(503, "OpenAI API key is not configured.")
    return api_key


def _post_once(
    url: str,
    headers: dict[str, str],
    data: dict[str, Any],
    files: dict[str, Any],
    timeout_seconds: float,
    transport: httpx.BaseTransport | None,
) -> httpx.Response:
    try:
        with httpx.Client(timeout=httpx.Timeout(timeout_seconds, connect=10.0), transport=transport) as client:
            return client.post(url, headers=headers, data=data, files=files)
    except httpx.TimeoutException as exc:
        raise ProviderError(504, "Transcription provider timed out.") from exc
    except httpx.HTTPError as exc:
        raise ProviderError(502, "Failed to reach transcription provider.") from exc


def transcribe_audio(
    *,
    file_name: str,
    mime_type: str,
    audio_bytes: bytes,
    language_hint: str | None = None,
    prompt: str | None = None,
    transport: httpx.BaseTransport | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> TranscriptionResult:
    api_key = _require_openai_api_key()
    base_url = (os.getenv("OPENAI_API_BASE_URL") or DEFAULT_OPENAI_API_BASE).strip().rstrip("/")
    timeout_seconds = float(os.getenv("MIGRAINELOG_ASR_TIMEOUT_SECONDS", "120"))
    attempts = max(1, int(os.getenv("MIGRAINELOG_ASR_RETRIES", "3")))

    data: dict[str, Any] = {
        "model": (os.getenv("MIGRAINELOG_WHISPER_MODEL") or "whisper-1").strip(),
        "response_format": "verbose_json",
        "language": (language_hint or DEFAULT_LANGUAGE).strip(),
    }
    if prompt and prompt.strip():
        data["prompt"] = prompt.strip()
    files = {"file": (file_name, audio_bytes, mime_type or "application/octet-stream")}
    headers = {"Authorization": f"Bearer {api_key}"}

    attempt = 1
    while True:
        try:
            response = _post_once(f"{base_url}/audio/transcriptions", headers, data, files, timeout_seconds, transport)
        except ProviderError as exc:
            if attempt >= attempts:
                raise
            _log.warning("transcription attempt %d failed: %s", attempt, exc.detail)
        else:
            if response.status_code not in _RETRYABLE_STATUS or attempt >= attempts:
                break
            _log.warning("transcription attempt %d returned HTTP %d", attempt, response.status_code)
        attempt += 1
        sleep(1.0)

    if response.status_code >= 400:
        if response.status_code == 401:
            raise ProviderError(503, "OpenAI API key was rejected by provider.")
        if response.status_code == 429:
            raise ProviderError(429, "Transcription provider is rate-limited. Retry shortly.")
        raise ProviderError(502, f"Transcription failed: {provider_error_message(response)}")

    try:
        payload_json = response.json()
    except json.JSONDecodeError as exc:
        raise ProviderError(502, "Transcription provider returned invalid JSON.") from exc
    if not isinstance(payload_json, dict):
        raise ProviderError(502, "Transcription provider returned invalid JSON.")

    text = str(payload_json.get("text") or "").strip()
    if not text:
        raise ProviderError(502, "Transcription provider returned empty text.")
    raw_segments = payload_json.get("segments")
    segments = [item for item in raw_segments if isinstance(item, dict)] if isinstance(raw_segments, list) else []
    return TranscriptionResult(
        text=text,
        confidence=transcription_confidence(segments),
        provider=ASR_PROVIDER,
        segments=segments,
    )
