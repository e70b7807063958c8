from .analysis_cache import TranscriptAnalysisCache
from .config import REQUIRED_FIELDS, ExtractionSettings
from .conversation_state import (
    AssistantTurn,
    ConversationContext,
    ProvisionalField,
    apply_ask_once_defaults,
    build_conversation_context,
    describe_context,
    fallback_turn,
)
from .episode_mapper import StructuredEpisodeMapper
from .local_extractor import LocalExtraction, LocalHeuristicExtractor
from .models import AnalysisResult, StructuredEpisodePayload
from .temporal_resolver import StartTimeResolver
from .transcript_guard import GuardResult, TranscriptGuard
from .vocabulary import map_symptoms, map_triggers

__all__ = [
    "REQUIRED_FIELDS",
    "AnalysisResult",
    "AssistantTurn",
    "ConversationContext",
    "ExtractionSettings",
    "GuardResult",
    "LocalExtraction",
    "LocalHeuristicExtractor",
    "ProvisionalField",
    "StartTimeResolver",
    "StructuredEpisodeMapper",
    "StructuredEpisodePayload",
    "TranscriptAnalysisCache",
    "TranscriptGuard",
    "apply_ask_once_defaults",
    "build_conversation_context",
    "describe_context",
    "fallback_turn",
    "map_symptoms",
    "map_triggers",
]
