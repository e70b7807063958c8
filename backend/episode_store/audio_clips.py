from __future__ import annotations

import json
import sqlite3
import uuid
from typing import Any

from episode_extraction.time_utils import to_iso, utc_now

from .database import SQLiteEpisodeDB

CLIP_STATUSES = ("queued", "processing", "transcribed", "failed")

_CLIP_COLUMNS = """
id, user_id, file_name, mime_type, size_bytes, duration_sec, status, transcript_text,
asr_confidence, asr_provider, structured_payload_json, analysis_error, processed_at,
created_at, updated_at
"""


class AudioClipNotFoundError(LookupError):
    pass


def _json_dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _clip_from_row(row: sqlite3.Row) -> dict[str, Any]:
    clip = dict(row)
    raw_payload = clip.pop("structured_payload_json", None)
    clip["structured_payload"] = json.loads(raw_payload) if raw_payload else None
    return clip


class AudioClipStore:
    def __init__(self, db: SQLiteEpisodeDB) -> None:
        self._db = db

    def create(
        self,
        *,
        user_id: str,
        file_name: str,
        mime_type: str,
        size_bytes: int = 0,
        duration_sec: float | None = None,
    ) -> dict[str, Any]:
        now = to_iso(utc_now())
        clip_id = uuid.uuid4().hex
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO audio_clips (id, user_id, file_name, mime_type, size_bytes, duration_sec, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, 'queued', ?, ?)
                """,
                (clip_id, user_id, file_name, mime_type, size_bytes, duration_sec, now, now),
            )
        return self.get(user_id, clip_id)

    def get(self, user_id: str, clip_id: str) -> dict[str, Any]:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {_CLIP_COLUMNS} FROM audio_clips WHERE id = ? AND user_id = ?",
                (clip_id, user_id),
            ).fetchone()
        if row is None:
            raise AudioClipNotFoundError(clip_id)
        return _clip_from_row(row)

    def _update(self, user_id: str, clip_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        fields = fields | {"updated_at": to_iso(utc_now())}
        assignments = ", ".join(f"{column} = ?" for column in fields)
        with self._db.connection() as conn:
            cursor = conn.execute(
                f"UPDATE audio_clips SET {assignments} WHERE id = ? AND user_id = ?",
                (*fields.values(), clip_id, user_id),
            )
            if cursor.rowcount == 0:
                raise AudioClipNotFoundError(clip_id)
        return self.get(user_id, clip_id)

    def mark_processing(self, user_id: str, clip_id: str) -> dict[str, Any]:
        return self._update(user_id, clip_id, {"status": "processing", "analysis_error": None})

    def mark_transcribed(
        self,
        user_id: str,
        clip_id: str,
        *,
        transcript_text: str,
        asr_confidence: float | None,
        asr_provider: str,
        structured_payload: dict[str, Any] | None,
    ) -> dict[str, Any]:
        return self._update(
            user_id,
            clip_id,
            {
                "status": "transcribed",
                "transcript_text": transcript_text,
                "asr_confidence": asr_confidence,
                "asr_provider": asr_provider,
                "structured_payload_json": _json_dumps(structured_payload) if structured_payload else None,
                "analysis_error": None,
                "processed_at": to_iso(utc_now()),
            },
        )

    def mark_failed(self, user_id: str, clip_id: str, analysis_error: str) -> dict[str, Any]:
        return self._update(
            user_id,
            clip_id,
            {
                "status": "failed",
                "analysis_error": analysis_error[:1000],
                "processed_at": to_iso(utc_now()),
            },
        )
