from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class SQLiteEpisodeDB:
    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS audio_clips (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  file_name TEXT NOT NULL,
                  mime_type TEXT NOT NULL,
                  size_bytes INTEGER NOT NULL DEFAULT 0,
                  duration_sec REAL,
                  status TEXT NOT NULL DEFAULT 'queued',
                  transcript_text TEXT,
                  asr_confidence REAL,
                  asr_provider TEXT,
                  structured_payload_json TEXT,
                  analysis_error TEXT,
                  processed_at TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS episodes (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  audio_clip_id TEXT UNIQUE REFERENCES audio_clips(id) ON DELETE SET NULL,
                  start_time TEXT,
                  end_time TEXT,
                  intensity INTEGER,
                  pain_location TEXT,
                  aura INTEGER,
                  symptoms_json TEXT,
                  triggers_json TEXT,
                  what_you_tried TEXT,
                  notes TEXT,
                  transcript_text TEXT,
                  extraction_confidences_json TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_audio_clips_user ON audio_clips(user_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_episodes_user_start ON episodes(user_id, start_time);
                """
            )
