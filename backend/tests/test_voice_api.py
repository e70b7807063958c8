from __future__ import annotations

from voice_services import ProviderError, TranscriptionResult

TRANSCRIPT = "Pain 7 out of 10 in my left temple since 7 am"


def _fake_transcriber(text: str = TRANSCRIPT, calls: list | None = None):
    def fake_transcribe(**kwargs):
        if calls is not None:
            calls.append(kwargs)
        return TranscriptionResult(text=text, confidence=0.92)

    return fake_transcribe


def _upload_clip(client, headers, name="note.webm", body=b"RIFF-audio", mime="audio/webm"):
    return client.post(
        "/voice/transcribe",
        headers=headers,
        data={"duration_sec": "4.2", "language_hint": "en"},
        files={"audio": (name, body, mime)},
    )


def test_health_reports_chat_availability(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["chat_available"] is False


def test_voice_transcribe_stores_clip_and_structured_payload(client, auth_headers, backend_module, monkeypatch):
    calls: list[dict] = []
    monkeypatch.setattr(backend_module, "_transcribe_audio", _fake_transcriber(calls=calls))

    response = _upload_clip(client, auth_headers("user-a"))
    assert response.status_code == 200
    payload = response.json()
    assert payload["transcript_text"] == TRANSCRIPT
    assert payload["confidence"] == 0.92
    assert payload["provider"] == "openai_whisper"
    assert payload["structured_payload"]["intensity"] == 7
    assert payload["structured_payload"]["pain_location"] == "left temple"
    assert payload["structured_payload"]["start_time"].endswith("T07:00:00+05:30")
    assert payload["missing_fields"] == ["triggers", "symptoms"]
    assert calls[0]["language_hint"] == "en"

    clip = payload["audio_clip"]
    assert clip["status"] == "transcribed"
    assert clip["duration_sec"] == 4.2
    fetched = client.get(f"/audio-clips/{clip['id']}", headers=auth_headers("user-a"))
    assert fetched.status_code == 200
    assert fetched.json()["audio_clip"]["structured_payload"]["intensity"] == 7
    assert client.get(f"/audio-clips/{clip['id']}", headers=auth_headers("user-b")).status_code == 404


def test_voice_transcribe_provider_failure_marks_clip_failed(client, auth_headers, backend_module, monkeypatch):
    def failing_transcribe(**kwargs):
        raise ProviderError(504, "Transcription provider timed out.")

    monkeypatch.setattr(backend_module, "_transcribe_audio", failing_transcribe)
    response = _upload_clip(client, auth_headers("user-a"))
    assert response.status_code == 504
    assert response.json()["detail"] == "Transcription provider timed out."

    with backend_module.container.db.connection() as conn:
        row = conn.execute("SELECT status, analysis_error FROM audio_clips WHERE user_id = ?", ("user-a",)).fetchone()
    assert row["status"] == "failed"
    assert row["analysis_error"] == "Transcription provider timed out."


def test_voice_transcribe_rejects_bad_uploads(client, auth_headers, backend_module, monkeypatch):
    monkeypatch.setattr(backend_module, "_transcribe_audio", _fake_transcriber())
    headers = auth_headers("user-a")
    assert _upload_clip(client, headers, name="notes.txt", mime="text/plain").status_code == 415
    assert _upload_clip(client, headers, body=b"").status_code == 400
    assert client.post("/voice/transcribe", headers=headers).status_code == 400


def test_requests_without_identity_are_rejected(client):
    assert client.post("/voice/analyze", json={"transcript": "pain 5"}).status_code == 401
    assert client.get("/episodes", headers={"X-User-Id": "bad id!"}).status_code == 400


def test_anonymous_access_when_allowed(client, monkeypatch):
    monkeypatch.setenv("ALLOW_ANON", "true")
    response = client.get("/episodes")
    assert response.status_code == 200
    assert response.json() == {"episodes": []}


def test_voice_analyze_completes_with_ask_once_default(client, auth_headers):
    response = client.post(
        "/voice/analyze",
        headers=auth_headers("user-a"),
        json={
            "transcript": "It started 2 hours ago, 8 out of 10, triggered by stress",
            "structured_payload": {"pain_location": "forehead", "confidence_breakdown": {"pain_location": 0.9}},
            "asked_fields": ["symptoms"],
        },
    )
    assert response.status_code == 200
    payload = response.json()
    structured = payload["structured_payload"]
    assert structured["pain_location"] == "forehead"
    assert structured["intensity"] == 8
    assert structured["triggers"] == ["Emotional_Stress"]
    assert structured["symptoms"] == ["other"]
    assert "start_time" in structured
    assert payload["missing_fields"] == []
    assert payload["is_followup_required"] is False
    assert payload["next_question_field"] is None
    assert payload["assistant_response"] == "Thank you. I have all the information I need."


def test_voice_analyze_asks_for_next_missing_field(client, auth_headers):
    response = client.post(
        "/voice/analyze",
        headers=auth_headers("user-a"),
        json={"transcript": "the pain is behind my right eye, 6 out of 10"},
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["missing_fields"] == ["start_time", "triggers", "symptoms"]
    assert payload["next_question_field"] == "start_time"
    assert payload["assistant_response"] == "When did this migraine start?"
    assert payload["provisional_fields"] == ["pain_location"]
    assert payload["provisional_values"] == {"pain_location": {"value": "behind my right eye", "confidence": 0.6}}


def test_voice_analyze_rejects_blank_transcript(client, auth_headers):
    response = client.post("/voice/analyze", headers=auth_headers("user-a"), json={"transcript": "   "})
    assert response.status_code == 422


def test_episode_crud_from_audio_clip(client, auth_headers, backend_module, monkeypatch):
    monkeypatch.setattr(backend_module, "_transcribe_audio", _fake_transcriber())
    headers = auth_headers("user-a")
    clip_id = _upload_clip(client, headers).json()["audio_clip_id"]

    created = client.post("/episodes", headers=headers, json={"audio_clip_id": clip_id, "triggers": ["Stress"]})
    assert created.status_code == 201
    episode = created.json()["episode"]
    assert episode["intensity"] == 7
    assert episode["pain_location"] == "left temple"
    assert episode["triggers"] == ["stress"]
    assert episode["notes"] == TRANSCRIPT

    patched = client.patch(f"/episodes/{episode['id']}", headers=headers, json={"intensity": 5})
    assert patched.status_code == 200
    assert patched.json()["episode"]["intensity"] == 5
    assert patched.json()["episode"]["pain_location"] == "left temple"

    listed = client.get("/episodes", headers=headers).json()["episodes"]
    assert [item["id"] for item in listed] == [episode["id"]]
    assert client.get(f"/episodes/{episode['id']}", headers=auth_headers("user-b")).status_code == 404

    deleted = client.delete(f"/episodes/{episode['id']}", headers=headers)
    assert deleted.json() == {"status": "deleted"}
    assert client.get(f"/episodes/{episode['id']}", headers=headers).status_code == 404


def test_episode_validation_errors(client, auth_headers):
    headers = auth_headers("user-a")
    backwards = {"start_time": "2026-03-14T10:00:00+05:30", "end_time": "2026-03-14T09:00:00+05:30"}
    assert client.post("/episodes", headers=headers, json=backwards).status_code == 422
    assert client.post("/episodes", headers=headers, json={"start_time": "yesterday-ish"}).status_code == 422
    assert client.post("/episodes", headers=headers, json={"audio_clip_id": "missing"}).status_code == 404
    assert client.patch("/episodes/missing", headers=headers, json={"intensity": 3}).status_code == 404
