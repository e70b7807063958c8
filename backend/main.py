from __future__ import annotations

import hashlib
import logging
import os
import re
from pathlib import Path
from typing import Any

from fastapi import FastAPI, File, Form, Header, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator, model_validator

from episode_extraction import (
    ExtractionSettings,
    StructuredEpisodePayload,
    apply_ask_once_defaults,
    build_conversation_context,
)
from episode_extraction.time_utils import parse_iso, to_iso, utc_now
from episode_store import (
    AudioClipNotFoundError,
    AudioClipStore,
    EpisodeNotFoundError,
    EpisodeStore,
    SQLiteEpisodeDB,
)
from logging_conf import setup_logging
from voice_services import (
    ChatCompletionClient,
    EpisodeExtractionService,
    ProviderError,
    TranscriptionResult,
    VoiceAssistantService,
    transcribe_audio,
)

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    candidates = [
        repo_root / ".env",
        repo_root / "backend/.env",
    ]
    for candidate in candidates:
        if candidate.exists():
            _load_local_env_file(candidate)


_bootstrap_local_env()
setup_logging()

_log = logging.getLogger("migrainelog.api")


def _parse_timestamp(value: str | None) -> str | None:
    if value is None:
        return None
    parsed = parse_iso(value)
    if parsed is None:
        raise ValueError("must be an ISO 8601 timestamp")
    return to_iso(parsed)


class VoiceAnalyzeRequest(BaseModel):
    transcript: str = Field(min_length=1, max_length=8000)
    structured_payload: dict[str, Any] = Field(default_factory=dict)
    asked_fields: list[str] = Field(default_factory=list)

    @field_validator("transcript")
    @classmethod
    def _transcript_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("transcript must not be blank")
        return value


class EpisodeFields(BaseModel):
    start_time: str | None = None
    end_time: str | None = None
    intensity: int | float | str | None = None
    pain_location: str | None = Field(default=None, max_length=255)
    aura: bool | None = None
    symptoms: list[str] | None = None
    triggers: list[str] | None = None
    what_you_tried: str | None = None
    notes: str | None = None
    transcript_text: str | None = None
    extraction_confidences: dict[str, float] | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _timestamp(cls, value: str | None) -> str | None:
        return _parse_timestamp(value)

    @model_validator(mode="after")
    def _end_not_before_start(self) -> "EpisodeFields":
        start = parse_iso(self.start_time)
        end = parse_iso(self.end_time)
        if start is not None and end is not None and end < start:
            raise ValueError("end_time must be after or equal to start_time")
        return self


class EpisodeCreateRequest(EpisodeFields):
    audio_clip_id: str | None = None


class EpisodeUpdateRequest(EpisodeFields):
    pass


class MigraineLogApp:
    def __init__(self) -> None:
        db_path = os.getenv(
            "MIGRAINELOG_DB_PATH",
            str((Path(__file__).resolve().parent / "migrainelog.sqlite")),
        )
        self.settings = ExtractionSettings.from_env()
        self.db = SQLiteEpisodeDB(db_path)
        self.audio_clips = AudioClipStore(self.db)
        self.episodes = EpisodeStore(self.db)
        self.chat = ChatCompletionClient()
        self.extraction = EpisodeExtractionService(self.chat, settings=self.settings)
        self.assistant = VoiceAssistantService(self.chat)

    def previous_payload(self, structured_payload: dict[str, Any]) -> StructuredEpisodePayload:
        return self.extraction.mapper.canonicalize(structured_payload)


container = MigraineLogApp()
app = FastAPI(title="MigraineLog Backend")

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_TRUSTED_USER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]{1,63}$")


def _validated_trusted_user_id(x_user_id: str) -> str:
    candidate = x_user_id.strip()
    if not candidate or not _TRUSTED_USER_ID_RE.fullmatch(candidate):
        raise HTTPException(status_code=400, detail="Invalid X-User-Id")
    return candidate


def get_user_id(auth_header: str | None) -> str:
    raw = (auth_header or "").replace("Bearer", "", 1).strip()
    if not raw:
        if os.getenv("ALLOW_ANON", "false").lower() == "true":
            return "demo-user"
        raise HTTPException(status_code=401, detail="Missing Authorization")
    # Treat bearer token as opaque unless verified by a trusted upstream.
    if len(raw) > 96:
        return f"token_{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:24]}"
    return raw


def resolve_user_id(authorization: str | None, x_user_id: str | None) -> str:
    if x_user_id is not None:
        return _validated_trusted_user_id(x_user_id)
    return get_user_id(authorization)


_MAX_AUDIO_BYTES = int(os.getenv("MIGRAINELOG_MAX_AUDIO_BYTES", str(20 * 1024 * 1024)))
_ALLOWED_AUDIO_MIME_TYPES = {
    "audio/mpeg",
    "audio/mp3",
    "audio/mp4",
    "audio/m4a",
    "audio/wav",
    "audio/x-wav",
    "audio/webm",
    "audio/ogg",
}
_ALLOWED_AUDIO_EXTENSIONS = {".mp3", ".mp4", ".m4a", ".wav", ".webm", ".ogg", ".flac"}


def _normalize_upload_filename(upload: UploadFile | None, fallback_name: str) -> str:
    file_name = (upload.filename or "").strip() if upload else ""
    return file_name or fallback_name


def _extension_from_filename(file_name: str) -> str:
    return Path(file_name).suffix.lower().strip()


async def _read_upload_bytes(upload: UploadFile, *, max_bytes: int, too_large_detail: str) -> bytes:
    raw = await upload.read(max_bytes + 1)
    if len(raw) > max_bytes:
        raise HTTPException(status_code=413, detail=too_large_detail)
    if not raw:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    return raw


def _select_upload(primary: UploadFile | None, fallback: UploadFile | None, *, field_hint: str) -> UploadFile:
    upload = primary or fallback
    if upload is None:
        raise HTTPException(status_code=400, detail=f"Missing multipart file field '{field_hint}'.")
    return upload


def _validate_audio_upload(file_name: str, mime_type: str) -> None:
    ext = _extension_from_filename(file_name)
    if mime_type not in _ALLOWED_AUDIO_MIME_TYPES and ext not in _ALLOWED_AUDIO_EXTENSIONS:
        raise HTTPException(status_code=415, detail="Unsupported audio format.")


def _transcribe_audio(
    *,
    file_name: str,
    mime_type: str,
    audio_bytes: bytes,
    language_hint: str | None,
    prompt: str | None,
) -> TranscriptionResult:
    return transcribe_audio(
        file_name=file_name,
        mime_type=mime_type,
        audio_bytes=audio_bytes,
        language_hint=language_hint,
        prompt=prompt,
    )


def _get_audio_clip(user_id: str, clip_id: str) -> dict[str, Any]:
    try:
        return container.audio_clips.get(user_id, clip_id)
    except AudioClipNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Audio clip not found.") from exc


@app.get("/health")
def health():
    return {
        "status": "ok",
        "time": to_iso(utc_now()),
        "chat_available": container.chat.available,
    }


@app.post("/voice/transcribe")
async def voice_transcribe(
    audio: UploadFile | None = File(default=None),
    file: UploadFile | None = File(default=None),
    duration_sec: float | None = Form(default=None),
    language_hint: str | None = Form(default=None),
    prompt: str | None = Form(default=None),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)

    upload = _select_upload(audio, file, field_hint="audio")
    file_name = _normalize_upload_filename(upload, "audio-upload")
    mime_type = (upload.content_type or "").lower().strip()
    _validate_audio_upload(file_name, mime_type)

    audio_bytes = await _read_upload_bytes(
        upload,
        max_bytes=_MAX_AUDIO_BYTES,
        too_large_detail=f"Audio file exceeds {_MAX_AUDIO_BYTES // (1024 * 1024)}MB limit.",
    )
    clip = container.audio_clips.create(
        user_id=user_id,
        file_name=file_name,
        mime_type=mime_type or "application/octet-stream",
        size_bytes=len(audio_bytes),
        duration_sec=duration_sec,
    )
    container.audio_clips.mark_processing(user_id, clip["id"])
    try:
        transcription = _transcribe_audio(
            file_name=file_name,
            mime_type=mime_type,
            audio_bytes=audio_bytes,
            language_hint=language_hint,
            prompt=prompt,
        )
    except ProviderError as exc:
        _log.warning("transcription failed for clip %s: %s", clip["id"], exc.detail)
        container.audio_clips.mark_failed(user_id, clip["id"], exc.detail)
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    payload = container.extraction.analyze(transcription.text)
    clip = container.audio_clips.mark_transcribed(
        user_id,
        clip["id"],
        transcript_text=transcription.text,
        asr_confidence=transcription.confidence,
        asr_provider=transcription.provider,
        structured_payload=payload.as_payload(),
    )
    return {
        "audio_clip": clip,
        "audio_clip_id": clip["id"],
        "transcript_text": transcription.text,
        "confidence": transcription.confidence,
        "provider": transcription.provider,
        "structured_payload": payload.as_payload(),
        "missing_fields": payload.missing_fields(container.settings.required_fields),
    }


@app.get("/audio-clips/{clip_id}")
def get_audio_clip(
    clip_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    return {"audio_clip": _get_audio_clip(user_id, clip_id)}


@app.post("/voice/analyze")
def voice_analyze(
    body: VoiceAnalyzeRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    settings = container.settings
    answered = container.extraction.guard.check(body.transcript).accepted

    previous = container.previous_payload(body.structured_payload)
    current = container.extraction.analyze(body.transcript)
    merged = previous.merged_with(current)
    merged = apply_ask_once_defaults(
        merged,
        body.asked_fields,
        transcript_answered=answered,
        tz=container.extraction.tz,
    )

    context = build_conversation_context(merged, settings.required_fields, settings.provisional_threshold)
    turn = container.assistant.respond(body.transcript, context, merged)
    return {
        "structured_payload": merged.as_payload(),
        "missing_fields": list(context.missing),
        "provisional_values": {name: item.as_dict() for name, item in context.provisional.items()},
        **turn.as_dict(),
    }


@app.post("/episodes", status_code=201)
def create_episode(
    body: EpisodeCreateRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    clip = _get_audio_clip(user_id, body.audio_clip_id) if body.audio_clip_id else None
    values = body.model_dump(exclude={"audio_clip_id"})
    episode = container.episodes.create(user_id, values, audio_clip=clip)
    _log.info("episode saved id=%s audio_clip_id=%s", episode["id"], episode["audio_clip_id"])
    return {"episode": episode}


@app.get("/episodes")
def list_episodes(
    limit: int = Query(default=50, ge=1, le=500),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    return {"episodes": container.episodes.list_episodes(user_id, limit=limit)}


@app.get("/episodes/{episode_id}")
def get_episode(
    episode_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    try:
        return {"episode": container.episodes.get(user_id, episode_id)}
    except EpisodeNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Episode not found.") from exc


@app.patch("/episodes/{episode_id}")
def update_episode(
    episode_id: str,
    body: EpisodeUpdateRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    try:
        episode = container.episodes.update(user_id, episode_id, body.model_dump(exclude_unset=True))
    except EpisodeNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Episode not found.") from exc
    return {"episode": episode}


@app.delete("/episodes/{episode_id}")
def delete_episode(
    episode_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    try:
        container.episodes.delete(user_id, episode_id)
    except EpisodeNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Episode not found.") from exc
    return {"status": "deleted"}
