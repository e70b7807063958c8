from __future__ import annotations

from episode_extraction import (
    StructuredEpisodePayload,
    apply_ask_once_defaults,
    build_conversation_context,
    describe_context,
    fallback_turn,
)
from episode_extraction.conversation_state import COMPLETION_MESSAGE, FALLBACK_QUESTIONS


def _payload(**values) -> StructuredEpisodePayload:
    return StructuredEpisodePayload(**values)


def test_context_splits_collected_and_missing_in_required_order():
    payload = _payload(intensity=7, symptoms=("Nausea",))
    context = build_conversation_context(payload)
    assert context.collected == ("intensity", "symptoms")
    assert context.missing == ("start_time", "triggers", "pain_location")
    assert context.next_field == "start_time"
    assert context.is_complete is False


def test_low_confidence_fields_are_provisional():
    payload = _payload(
        intensity=7,
        pain_location="left temple",
        confidence_breakdown={"intensity": 0.9, "pain_location": 0.6, "start_time": 0.1},
    )
    context = build_conversation_context(payload)
    assert set(context.provisional) == {"pain_location"}
    assert context.provisional["pain_location"].as_dict() == {"value": "left temple", "confidence": 0.6}


def test_threshold_is_configurable():
    payload = _payload(intensity=7, confidence_breakdown={"intensity": 0.8})
    assert build_conversation_context(payload, provisional_threshold=0.85).provisional
    assert not build_conversation_context(payload, provisional_threshold=0.7).provisional


def test_fallback_turn_asks_first_missing_field():
    context = build_conversation_context(_payload(start_time="2026-03-14T07:00:00+05:30"))
    turn = fallback_turn(context)
    assert turn.next_question_field == "triggers"
    assert turn.assistant_response == FALLBACK_QUESTIONS["triggers"]
    assert turn.is_followup_required is True


def test_fallback_turn_completes_when_nothing_missing():
    payload = _payload(
        start_time="2026-03-14T07:00:00+05:30",
        triggers=("Caffeine",),
        intensity=6,
        pain_location="forehead",
        symptoms=("Nausea",),
    )
    turn = fallback_turn(build_conversation_context(payload))
    assert turn.as_dict() == {
        "assistant_response": COMPLETION_MESSAGE,
        "is_followup_required": False,
        "next_question_field": None,
        "provisional_fields": [],
    }


def test_describe_context_renders_all_sections():
    payload = _payload(
        intensity=7,
        aura=True,
        symptoms=("Nausea", "Photophobia"),
        pain_location="left temple",
        notes="started at work",
        confidence_breakdown={"pain_location": 0.6},
    )
    block = describe_context(build_conversation_context(payload), payload)
    assert block == (
        "Collected so far:\n"
        "- pain intensity: 7\n"
        "- pain location: left temple\n"
        "- symptoms: Nausea, Photophobia\n"
        "\n"
        "Still missing:\n"
        "- start time\n"
        "- triggers\n"
        "\n"
        "Provisional (needs confirmation):\n"
        "- pain location: left temple (confidence 0.60)\n"
        "\n"
        "Notes:\n"
        "- started at work"
    )


def test_describe_context_placeholders_for_empty_sections():
    empty = _payload()
    block = describe_context(build_conversation_context(empty), empty)
    assert "Collected so far:\n- None yet" in block
    assert "Provisional (needs confirmation):\n- None" in block
    assert "Notes" not in block


def test_ask_once_defaults_fill_only_asked_fields(fixed_now):
    payload = _payload(intensity=5)
    filled = apply_ask_once_defaults(payload, ["start_time", "triggers", "intensity"], now=fixed_now, tz="Asia/Kolkata")
    assert filled.start_time == "2026-03-14T18:30:00+05:30"
    assert filled.triggers == ("other",)
    assert filled.symptoms is None
    assert filled.intensity == 5


def test_ask_once_defaults_keep_existing_values(fixed_now):
    payload = _payload(triggers=("Caffeine",))
    filled = apply_ask_once_defaults(payload, ["triggers", "symptoms"], now=fixed_now)
    assert filled.triggers == ("Caffeine",)
    assert filled.symptoms == ("other",)


def test_ask_once_defaults_skip_unanswered_turns(fixed_now):
    payload = _payload()
    assert apply_ask_once_defaults(payload, ["symptoms"], transcript_answered=False, now=fixed_now) == payload
