from __future__ import annotations

import json
import sqlite3
import uuid
from typing import Any, Mapping

from episode_extraction.models import coerce_intensity
from episode_extraction.time_utils import to_iso, utc_now

from .database import SQLiteEpisodeDB

EPISODE_VALUE_FIELDS: tuple[str, ...] = (
    "start_time",
    "end_time",
    "intensity",
    "pain_location",
    "aura",
    "symptoms",
    "triggers",
    "what_you_tried",
    "notes",
    "transcript_text",
    "extraction_confidences",
)
_JSON_COLUMNS = {
    "symptoms": "symptoms_json",
    "triggers": "triggers_json",
    "extraction_confidences": "extraction_confidences_json",
}
_EPISODE_COLUMNS = """
id, user_id, audio_clip_id, start_time, end_time, intensity, pain_location, aura,
symptoms_json, triggers_json, what_you_tried, notes, transcript_text,
extraction_confidences_json, created_at, updated_at
"""


class EpisodeNotFoundError(LookupError):
    pass


def _json_dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def normalize_string_list(value: Any) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        return None
    items = [item.strip().lower() for item in value if isinstance(item, str)]
    normalized = [item for item in items if item]
    return normalized or None


def normalize_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def normalize_episode_values(values: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce whichever episode fields are present; absent keys stay absent."""
    normalized: dict[str, Any] = {}
    for name in EPISODE_VALUE_FIELDS:
        if name not in values:
            continue
        value = values[name]
        if name == "intensity":
            value = coerce_intensity(value)
        elif name == "pain_location":
            value = normalize_text(value)
        elif name in {"symptoms", "triggers"}:
            value = normalize_string_list(value)
        elif name == "aura":
            value = bool(value) if value is not None else None
        elif name == "extraction_confidences":
            value = dict(value) if isinstance(value, Mapping) and value else None
        normalized[name] = value
    return normalized


def _column_values(values: Mapping[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for name, value in values.items():
        if name in _JSON_COLUMNS:
            columns[_JSON_COLUMNS[name]] = _json_dumps(value) if value is not None else None
        elif name == "aura":
            columns["aura"] = int(value) if value is not None else None
        else:
            columns[name] = value
    return columns


def _episode_from_row(row: sqlite3.Row) -> dict[str, Any]:
    episode = dict(row)
    for name, column in _JSON_COLUMNS.items():
        raw = episode.pop(column, None)
        episode[name] = json.loads(raw) if raw else None
    if episode.get("aura") is not None:
        episode["aura"] = bool(episode["aura"])
    return episode


def values_from_clip(values: Mapping[str, Any], clip: Mapping[str, Any] | None) -> dict[str, Any]:
    """Fill fields the request left out (or null) from the clip's structured payload.

    Notes fall back to the clip transcript when neither side has them.
    """
    merged = {name: values.get(name) for name in EPISODE_VALUE_FIELDS}
    if clip is None:
        return merged
    structured = clip.get("structured_payload") or {}
    for name in EPISODE_VALUE_FIELDS:
        if merged[name] is not None:
            continue
        if name == "extraction_confidences":
            merged[name] = structured.get("confidence_breakdown")
        elif name == "transcript_text":
            merged[name] = clip.get("transcript_text")
        else:
            merged[name] = structured.get(name)
    if merged["notes"] is None:
        merged["notes"] = clip.get("transcript_text")
    return merged


class EpisodeStore:
    def __init__(self, db: SQLiteEpisodeDB) -> None:
        self._db = db

    def create(
        self,
        user_id: str,
        values: Mapping[str, Any],
        *,
        audio_clip: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Insert an episode, or replace the one already saved for ``audio_clip``."""
        payload = normalize_episode_values(values_from_clip(values, audio_clip))
        columns = _column_values(payload)
        now = to_iso(utc_now())
        clip_id = audio_clip.get("id") if audio_clip else None

        with self._db.connection() as conn:
            existing = None
            if clip_id:
                existing = conn.execute(
                    "SELECT id FROM episodes WHERE audio_clip_id = ? AND user_id = ?",
                    (clip_id, user_id),
                ).fetchone()
            if existing is not None:
                episode_id = existing["id"]
                assignments = ", ".join(f"{column} = ?" for column in columns)
                conn.execute(
                    f"UPDATE episodes SET {assignments}, updated_at = ? WHERE id = ?",
                    (*columns.values(), now, episode_id),
                )
            else:
                episode_id = uuid.uuid4().hex
                names = ["id", "user_id", "audio_clip_id", *columns, "created_at", "updated_at"]
                placeholders = ", ".join("?" for _ in names)
                conn.execute(
                    f"INSERT INTO episodes ({', '.join(names)}) VALUES ({placeholders})",
                    (episode_id, user_id, clip_id, *columns.values(), now, now),
                )
        return self.get(user_id, episode_id)

    def get(self, user_id: str, episode_id: str) -> dict[str, Any]:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {_EPISODE_COLUMNS} FROM episodes WHERE id = ? AND user_id = ?",
                (episode_id, user_id),
            ).fetchone()
        if row is None:
            raise EpisodeNotFoundError(episode_id)
        return _episode_from_row(row)

    def list_episodes(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_EPISODE_COLUMNS}
                FROM episodes
                WHERE user_id = ?
                ORDER BY COALESCE(start_time, created_at) DESC, created_at DESC
                LIMIT ?
                """,
                (user_id, max(1, limit)),
            ).fetchall()
        return [_episode_from_row(row) for row in rows]

    def update(self, user_id: str, episode_id: str, values: Mapping[str, Any]) -> dict[str, Any]:
        """Merge by presence: only keys present in ``values`` are written."""
        columns = _column_values(normalize_episode_values(values))
        if not columns:
            return self.get(user_id, episode_id)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        with self._db.connection() as conn:
            cursor = conn.execute(
                f"UPDATE episodes SET {assignments}, updated_at = ? WHERE id = ? AND user_id = ?",
                (*columns.values(), to_iso(utc_now()), episode_id, user_id),
            )
            if cursor.rowcount == 0:
                raise EpisodeNotFoundError(episode_id)
        return self.get(user_id, episode_id)

    def delete(self, user_id: str, episode_id: str) -> None:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM episodes WHERE id = ? AND user_id = ?",
                (episode_id, user_id),
            )
            if cursor.rowcount == 0:
                raise EpisodeNotFoundError(episode_id)
