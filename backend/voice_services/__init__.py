from .assistant import VoiceAssistantService
from .extraction import EpisodeExtractionService
from .providers import ChatCompletionClient, ChatProvider, ProviderError, extract_json_object
from .transcription import TranscriptionResult, transcribe_audio, transcription_confidence

__all__ = [
    "ChatCompletionClient",
    "ChatProvider",
    "EpisodeExtractionService",
    "ProviderError",
    "TranscriptionResult",
    "VoiceAssistantService",
    "extract_json_object",
    "transcribe_audio",
    "transcription_confidence",
]
