from __future__ import annotations

import logging
from dataclasses import replace

from episode_extraction import (
    REQUIRED_FIELDS,
    AssistantTurn,
    ConversationContext,
    StructuredEpisodePayload,
    describe_context,
    fallback_turn,
)

from .prompts import VOICE_ASSISTANT_PROMPT, build_assistant_prompt
from .providers import ChatCompletionClient

_log = logging.getLogger("migrainelog.assistant")


class VoiceAssistantService:
    def __init__(self, chat: ChatCompletionClient | None = None, *, max_tokens: int = 180) -> None:
        self.chat = chat or ChatCompletionClient()
        self.max_tokens = max_tokens

    def respond(
        self,
        transcript: str,
        context: ConversationContext,
        payload: StructuredEpisodePayload,
    ) -> AssistantTurn:
        """Ask the dialogue model for the next turn; any unusable reply falls back to the question table."""
        provisional = tuple(context.provisional)
        fallback = replace(fallback_turn(context), provisional_fields=provisional)
        decoded = self.chat.complete_json(
            VOICE_ASSISTANT_PROMPT,
            build_assistant_prompt(describe_context(context, payload), transcript),
            temperature=0.6,
            max_tokens=self.max_tokens,
        )
        if decoded is None:
            _log.warning("assistant model unavailable; using the question table")
            return fallback

        response = decoded.get("assistant_response")
        if not isinstance(response, str) or not response.strip():
            _log.warning("assistant reply missing assistant_response: %s", decoded)
            return fallback

        followup = decoded.get("is_followup_required")
        if not isinstance(followup, bool):
            followup = not context.is_complete
        next_field = decoded.get("next_question_field")
        if next_field not in REQUIRED_FIELDS or (next_field not in context.missing and next_field not in provisional):
            next_field = context.next_field
        return AssistantTurn(
            assistant_response=response.strip(),
            is_followup_required=followup,
            next_question_field=next_field,
            provisional_fields=provisional,
        )
