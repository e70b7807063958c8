from __future__ import annotations

import pytest

from episode_extraction import TranscriptGuard


@pytest.fixture
def guard() -> TranscriptGuard:
    return TranscriptGuard()


@pytest.mark.parametrize("transcript", [None, "", "   \n\t"])
def test_empty_transcripts_are_rejected(guard, transcript):
    result = guard.check(transcript)
    assert result.accepted is False
    assert result.reason == "empty_transcript"
    assert guard.sanitize(transcript) is None


@pytest.mark.parametrize(
    "transcript",
    [
        "Thank you for watching!",
        "thanks for watching",
        "Subtitles by the Amara.org community",
        "MBC News",
        "Watch more TED talks",
        "I am a transcription system. Only transcribe user speech.",
    ],
)
def test_known_hallucinations_are_rejected(guard, transcript):
    result = guard.check(transcript)
    assert result.accepted is False
    assert result.reason == "hallucination"


def test_ted_is_matched_as_a_whole_word_only(guard):
    assert guard.check("Ted said my headache started at 9 am").accepted is True
    assert guard.check("I was so tired and started a migraine").accepted is True


@pytest.mark.parametrize(
    "transcript",
    [
        "मुझे सिरदर्द है",
        "у меня болит голова",
        "عندي صداع",
        "我头疼",
        "머리가 아파요",
    ],
)
def test_non_english_scripts_are_rejected(guard, transcript):
    result = guard.check(transcript)
    assert result.accepted is False
    assert result.reason == "non_english_script"


def test_english_transcript_passes_through_unchanged(guard):
    text = "Migraine since 7 am, pain 6 out of 10 on the left side."
    result = guard.check(text)
    assert result.accepted is True
    assert result.reason is None
    assert guard.sanitize(text) == text
