from .audio_clips import CLIP_STATUSES, AudioClipNotFoundError, AudioClipStore
from .database import SQLiteEpisodeDB
from .episodes import EpisodeNotFoundError, EpisodeStore

__all__ = [
    "CLIP_STATUSES",
    "AudioClipNotFoundError",
    "AudioClipStore",
    "EpisodeNotFoundError",
    "EpisodeStore",
    "SQLiteEpisodeDB",
]
