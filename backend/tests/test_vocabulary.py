from __future__ import annotations

import pytest

from episode_extraction.vocabulary import (
    SYMPTOM_SYNONYMS,
    TRIGGER_SYNONYMS,
    filter_array_values,
    filter_trigger_values,
    looks_like_time_reference,
    map_symptoms,
    map_triggers,
)


def test_map_symptoms_uses_synonyms_and_passes_unknown_through():
    mapped = map_symptoms(["nauseous", "Sensitive to light", "weird feeling"])
    assert mapped == ["Nausea", "Photophobia", "weird feeling"]


def test_map_symptoms_deduplicates_preserving_first_occurrence():
    assert map_symptoms(["nausea", "queasy", "dizzy", "dizziness"]) == ["Nausea", "Dizziness"]


def test_map_symptoms_empty_inputs_return_none():
    assert map_symptoms(None) is None
    assert map_symptoms([]) is None
    assert map_symptoms(["   "]) is None


def test_map_triggers_maps_unknown_to_other():
    assert map_triggers(["coffee", "skipped a meal", "mystery thing"]) == ["Caffeine", "Hunger", "other"]


def test_map_triggers_collapses_duplicate_tags():
    assert map_triggers(["coffee", "tea", "caffeine"]) == ["Caffeine"]


def test_map_triggers_is_idempotent_on_canonical_tags():
    first = map_triggers(["stress", "red wine", "period", "storm"])
    assert first == ["Emotional_Stress", "other", "Menstruation", "Weather_Barometric"]
    assert map_triggers(first) == first


def test_map_triggers_prefers_synonyms_over_exact_case():
    first = map_triggers(["Weather", "heat", "PERIOD"])
    assert first == ["Weather_Change", "Weather_Heat", "Menstruation"]
    assert map_triggers(first) == first


def test_every_trigger_tag_maps_to_itself():
    for tag in set(TRIGGER_SYNONYMS.values()):
        assert map_triggers([tag]) == [tag]


def test_synonym_tables_are_read_only():
    with pytest.raises(TypeError):
        SYMPTOM_SYNONYMS["headache"] = "Headache"  # type: ignore[index]


def test_filter_array_values_keeps_trimmed_strings_only():
    assert filter_array_values(["  nausea ", "", 3, None, "aura"]) == ["nausea", "aura"]
    assert filter_array_values("nausea") is None
    assert filter_array_values([""]) is None


@pytest.mark.parametrize(
    "value",
    ["3 hours", "30 mins", "just now", "two hours ago", "before today", "last night ago"],
)
def test_time_references_are_detected(value):
    assert looks_like_time_reference(value) is True


@pytest.mark.parametrize("value", ["coffee", "bright light", "skipped a meal", "period"])
def test_triggers_are_not_time_references(value):
    assert looks_like_time_reference(value) is False


def test_filter_trigger_values_drops_condition_words_and_times():
    assert filter_trigger_values(["migraine", "3 hours ago", "stress", "Last Night"]) == ["stress"]
    assert filter_trigger_values(["headache", "attack"]) is None
    assert filter_trigger_values(None) is None
