from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from .config import REQUIRED_FIELDS
from .models import StructuredEpisodePayload
from .time_utils import reference_now, resolve_timezone, to_iso

FIELD_LABELS: Mapping[str, str] = MappingProxyType(
    {
        "start_time": "start time",
        "triggers": "triggers",
        "pain_location": "pain location",
        "intensity": "pain intensity",
        "symptoms": "symptoms",
    }
)

FALLBACK_QUESTIONS: Mapping[str, str] = MappingProxyType(
    {
        "start_time": "When did this migraine start?",
        "triggers": "What do you think triggered this migraine?",
        "intensity": "On a scale of 1 to 10, how intense is the pain?",
        "pain_location": "Where exactly do you feel the pain?",
        "symptoms": "What other symptoms are you experiencing?",
    }
)
GENERIC_QUESTION = "Can you tell me more about your migraine?"
COMPLETION_MESSAGE = "Thank you. I have all the information I need."

# Asked at most once; an answer without a usable value falls back to a default.
ASK_ONCE_FIELDS: tuple[str, ...] = ("start_time", "triggers", "symptoms")
DEFAULT_TAG = "other"


@dataclass(frozen=True)
class ProvisionalField:
    value: Any
    confidence: float

    def as_dict(self) -> dict[str, Any]:
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {"value": value, "confidence": self.confidence}


@dataclass(frozen=True)
class ConversationContext:
    collected: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()
    provisional: Mapping[str, ProvisionalField] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return not self.missing

    @property
    def next_field(self) -> str | None:
        return self.missing[0] if self.missing else None


@dataclass(frozen=True)
class AssistantTurn:
    assistant_response: str
    is_followup_required: bool
    next_question_field: str | None = None
    provisional_fields: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "assistant_response": self.assistant_response,
            "is_followup_required": self.is_followup_required,
            "next_question_field": self.next_question_field,
            "provisional_fields": list(self.provisional_fields),
        }


def build_conversation_context(
    payload: StructuredEpisodePayload,
    required_fields: tuple[str, ...] = REQUIRED_FIELDS,
    provisional_threshold: float = 0.7,
) -> ConversationContext:
    collected = tuple(name for name in required_fields if payload.has(name))
    missing = tuple(name for name in required_fields if not payload.has(name))
    provisional: dict[str, ProvisionalField] = {}
    for name in collected:
        confidence = payload.confidence(name)
        if confidence is not None and confidence < provisional_threshold:
            provisional[name] = ProvisionalField(value=payload.value(name), confidence=confidence)
    return ConversationContext(collected=collected, missing=missing, provisional=provisional)


def fallback_turn(context: ConversationContext) -> AssistantTurn:
    next_field = context.next_field
    if next_field is None:
        return AssistantTurn(assistant_response=COMPLETION_MESSAGE, is_followup_required=False)
    return AssistantTurn(
        assistant_response=FALLBACK_QUESTIONS.get(next_field, GENERIC_QUESTION),
        is_followup_required=True,
        next_question_field=next_field,
    )


def stringify_field_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


def describe_context(context: ConversationContext, payload: StructuredEpisodePayload) -> str:
    """Render the context block handed to the dialogue model."""
    collected_lines = [
        f"{FIELD_LABELS.get(name, name)}: {stringify_field_value(payload.value(name))}"
        for name in context.collected
        if payload.has(name)
    ] or ["None yet"]
    missing_lines = [FIELD_LABELS.get(name, name) for name in context.missing] or ["None - ready to save"]
    provisional_lines = [
        f"{FIELD_LABELS.get(name, name)}: {stringify_field_value(item.value)} (confidence {item.confidence:.2f})"
        for name, item in context.provisional.items()
    ] or ["None"]

    block = (
        "Collected so far:\n- "
        + "\n- ".join(collected_lines)
        + "\n\nStill missing:\n- "
        + "\n- ".join(missing_lines)
        + "\n\nProvisional (needs confirmation):\n- "
        + "\n- ".join(provisional_lines)
    )
    if payload.notes:
        block += f"\n\nNotes:\n- {payload.notes}"
    return block


def apply_ask_once_defaults(
    payload: StructuredEpisodePayload,
    asked_fields: Iterable[str],
    transcript_answered: bool = True,
    now: datetime | None = None,
    tz: tzinfo | str | None = None,
) -> StructuredEpisodePayload:
    if not transcript_answered:
        return payload
    asked = set(asked_fields)
    updates: dict[str, Any] = {}
    for name in ASK_ONCE_FIELDS:
        if name not in asked or payload.has(name):
            continue
        if name == "start_time":
            zone = tz if isinstance(tz, tzinfo) else resolve_timezone(tz)
            updates[name] = to_iso(reference_now(zone, now))
        else:
            updates[name] = (DEFAULT_TAG,)
    return payload.with_values(**updates) if updates else payload
