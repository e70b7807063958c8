from __future__ import annotations

import json
import math

import httpx
import pytest

from episode_extraction import (
    ExtractionSettings,
    StructuredEpisodePayload,
    TranscriptAnalysisCache,
    build_conversation_context,
)
from episode_extraction.conversation_state import FALLBACK_QUESTIONS
from voice_services import (
    ChatCompletionClient,
    ChatProvider,
    EpisodeExtractionService,
    ProviderError,
    VoiceAssistantService,
    extract_json_object,
    transcribe_audio,
    transcription_confidence,
)
from voice_services.providers import chat_provider_candidates


class FakeChat:
    def __init__(self, reply=None) -> None:
        self.reply = reply
        self.calls: list[dict] = []

    def complete_json(self, system_prompt, user_prompt, temperature=0.0, max_tokens=None):
        self.calls.append({"system": system_prompt, "user": user_prompt, "temperature": temperature})
        return self.reply


def _service(chat: FakeChat) -> EpisodeExtractionService:
    return EpisodeExtractionService(chat, settings=ExtractionSettings(), cache=TranscriptAnalysisCache(120))


def _transcribe(**overrides):
    kwargs = {"file_name": "clip.webm", "mime_type": "audio/webm", "audio_bytes": b"voice-bytes"}
    kwargs.update(overrides)
    return transcribe_audio(**kwargs)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('{"intensity": 7}', {"intensity": 7}),
        ('```json\n{"intensity": 7}\n```', {"intensity": 7}),
        ('Here you go: {"a": {"b": 2}} thanks', {"a": {"b": 2}}),
        ("[1, 2]", None),
        ("no json at all", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_json_object(raw, expected):
    assert extract_json_object(raw) == expected


def test_transcription_confidence_is_mean_probability():
    segments = [{"avg_logprob": 0.0}, {"avg_logprob": math.log(0.5)}, {"avg_logprob": True}, "junk"]
    assert transcription_confidence(segments) == 0.75
    assert transcription_confidence([]) is None
    assert transcription_confidence("segments") is None


def test_transcribe_audio_posts_verbose_json(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"text": "  pain since 7 am  ", "segments": [{"avg_logprob": 0.0}]})

    result = _transcribe(transport=httpx.MockTransport(handler), language_hint="en")
    assert result.text == "pain since 7 am"
    assert result.confidence == 1.0
    assert result.provider == "openai_whisper"
    assert len(seen) == 1
    assert seen[0].url.path.endswith("/audio/transcriptions")
    assert seen[0].headers["Authorization"] == "Bearer test-key"
    assert b"verbose_json" in seen[0].content


def test_transcribe_audio_retries_server_errors(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    responses = [httpx.Response(503, json={"error": {"message": "busy"}}), httpx.Response(200, json={"text": "ok"})]
    sleeps: list[float] = []

    result = _transcribe(transport=httpx.MockTransport(lambda request: responses.pop(0)), sleep=sleeps.append)
    assert result.text == "ok"
    assert result.confidence is None
    assert sleeps == [1.0]


@pytest.mark.parametrize(
    ("status", "expected_status"),
    [(401, 503), (429, 429), (400, 502), (500, 502)],
)
def test_transcribe_audio_maps_provider_statuses(monkeypatch, status, expected_status):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("MIGRAINELOG_ASR_RETRIES", "2")
    sleeps: list[float] = []
    transport = httpx.MockTransport(lambda request: httpx.Response(status, json={"error": {"message": "nope"}}))

    with pytest.raises(ProviderError) as excinfo:
        _transcribe(transport=transport, sleep=sleeps.append)
    assert excinfo.value.status_code == expected_status


def test_transcribe_audio_timeout_maps_to_504(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("MIGRAINELOG_ASR_RETRIES", "1")

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(ProviderError) as excinfo:
        _transcribe(transport=httpx.MockTransport(handler))
    assert excinfo.value.status_code == 504


def test_transcribe_audio_rejects_empty_text(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"text": "   "}))
    with pytest.raises(ProviderError) as excinfo:
        _transcribe(transport=transport)
    assert excinfo.value.status_code == 502


def test_transcribe_audio_requires_api_key():
    with pytest.raises(ProviderError) as excinfo:
        _transcribe()
    assert excinfo.value.status_code == 503


def test_chat_client_recovers_json_from_chatty_reply():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["response_format"] == {"type": "json_object"}
        return httpx.Response(200, json={"choices": [{"message": {"content": 'Sure: {"intensity": 7}'}}]})

    client = ChatCompletionClient(
        providers=[ChatProvider("openai", "https://llm.test/v1", "k", "m")],
        transport=httpx.MockTransport(handler),
    )
    assert client.complete_json("system", "user") == {"intensity": 7}


def test_chat_client_falls_through_failing_provider():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/messages"):
            return httpx.Response(500, json={"error": {"message": "overloaded"}})
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"ok": true}'}}]})

    client = ChatCompletionClient(
        providers=[
            ChatProvider("anthropic", "https://anthropic.test/v1", "k", "claude"),
            ChatProvider("openrouter", "https://router.test/v1", "k", "gpt"),
        ],
        transport=httpx.MockTransport(handler),
    )
    assert client.complete_json("system", "user") == {"ok": True}


def test_chat_client_without_providers_returns_none():
    client = ChatCompletionClient(providers=[])
    assert client.available is False
    assert client.complete_json("system", "user") is None


def test_chat_provider_preference_orders_candidates(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "a")
    monkeypatch.setenv("OPENROUTER_API_KEY", "b")
    monkeypatch.setenv("OPENAI_API_KEY", "c")
    assert [p.provider for p in chat_provider_candidates()] == ["anthropic", "openrouter", "openai"]
    monkeypatch.setenv("MIGRAINELOG_CHAT_PROVIDER", "openai")
    assert [p.provider for p in chat_provider_candidates()] == ["openai", "anthropic", "openrouter"]


def test_extraction_prunes_pseudo_triggers_and_their_confidence():
    chat = FakeChat({"intensity": 8, "triggers": ["attack"], "confidence_breakdown": {"intensity": 0.9, "triggers": 0.5}})
    analysis = _service(chat).extract("pain 8 out of 10")
    assert analysis.intensity == 8
    assert analysis.triggers is None
    assert analysis.confidence_breakdown == {"intensity": 0.9}


def test_extraction_adds_morning_hint(fixed_now):
    chat = FakeChat({"intensity": 5})
    payload = _service(chat).analyze("This morning it was a 5 out of 10", now=fixed_now)
    assert payload.start_time == "2026-03-14T08:00:00+05:30"
    assert payload.intensity == 5


@pytest.mark.parametrize(
    ("transcript", "expected"),
    [
        ("This morning around 7am I got a migraine", "2026-03-14T07:00:00+05:30"),
        ("this morning at 6:45 am the pain began", "2026-03-14T06:45:00+05:30"),
    ],
)
def test_spoken_clock_time_beats_morning_hint(fixed_now, transcript, expected):
    chat = FakeChat({"intensity": 5})
    payload = _service(chat).analyze(transcript, now=fixed_now)
    assert payload.start_time == expected
    assert payload.confidence("start_time") == 0.85


def test_relative_hint_is_resolved_from_transcript(fixed_now):
    payload = _service(FakeChat({})).analyze("It started 2 hours ago", now=fixed_now)
    assert payload.start_time == "2026-03-14T16:30:00+05:30"


def test_guard_rejection_skips_model_and_heuristics(fixed_now):
    chat = FakeChat({"intensity": 9})
    service = _service(chat)
    assert service.analyze("MBC News, pain 9 out of 10", now=fixed_now) == StructuredEpisodePayload()
    assert service.analyze("मुझे 9 out of 10 दर्द है", now=fixed_now) == StructuredEpisodePayload()
    assert chat.calls == []


def test_extraction_caches_successful_analyses_only():
    chat = FakeChat({"intensity": 4})
    service = _service(chat)
    service.extract("pain 4")
    service.extract("pain 4")
    assert len(chat.calls) == 1

    failing = FakeChat(None)
    service = _service(failing)
    assert service.extract("pain 4").is_empty()
    service.extract("pain 4")
    assert len(failing.calls) == 2


def test_unavailable_model_falls_back_to_heuristics(fixed_now):
    payload = _service(FakeChat(None)).analyze("pain 6 out of 10", now=fixed_now)
    assert payload.intensity == 6
    assert payload.confidence("intensity") == 0.85


def _context_payload() -> StructuredEpisodePayload:
    return StructuredEpisodePayload(
        intensity=7,
        pain_location="left temple",
        confidence_breakdown={"pain_location": 0.6},
    )


def test_assistant_falls_back_to_question_table():
    payload = _context_payload()
    context = build_conversation_context(payload)
    turn = VoiceAssistantService(FakeChat(None)).respond("it hurts", context, payload)
    assert turn.assistant_response == FALLBACK_QUESTIONS["start_time"]
    assert turn.next_question_field == "start_time"
    assert turn.is_followup_required is True
    assert turn.provisional_fields == ("pain_location",)


def test_assistant_uses_model_reply_and_prompt_context():
    payload = _context_payload()
    context = build_conversation_context(payload)
    chat = FakeChat(
        {
            "assistant_response": "  Is the pain in your left temple? When did it start?  ",
            "is_followup_required": True,
            "next_question_field": "pain_location",
        }
    )
    turn = VoiceAssistantService(chat).respond("it hurts", context, payload)
    assert turn.assistant_response == "Is the pain in your left temple? When did it start?"
    assert turn.next_question_field == "pain_location"
    assert "Still missing:" in chat.calls[0]["user"]
    assert chat.calls[0]["temperature"] == 0.6


def test_assistant_validates_model_fields():
    payload = _context_payload()
    context = build_conversation_context(payload)
    chat = FakeChat({"assistant_response": "Thanks!", "is_followup_required": "yes", "next_question_field": "intensity"})
    turn = VoiceAssistantService(chat).respond("ok", context, payload)
    assert turn.is_followup_required is True
    assert turn.next_question_field == "start_time"


def test_assistant_blank_reply_uses_fallback():
    payload = _context_payload()
    context = build_conversation_context(payload)
    turn = VoiceAssistantService(FakeChat({"assistant_response": "   "})).respond("ok", context, payload)
    assert turn.assistant_response == FALLBACK_QUESTIONS["start_time"]
