from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable

from .models import coerce_intensity
from .vocabulary import filter_array_values, filter_trigger_values, map_symptoms, map_triggers

INTENSITY_ADJECTIVES: tuple[tuple[str, int], ...] = (
    ("mild", 2),
    ("light ache", 2),
    ("manageable", 3),
    ("manageable ache", 6),
    ("sharp ache", 7),
    ("moderate", 5),
    ("severe", 8),
    ("intense", 8),
    ("pounding", 7),
    ("piercing", 8),
    ("throbbing", 6),
    ("pulsing", 6),
    ("splitting", 9),
    ("stabbing", 8),
    ("shooting", 8),
    ("heavy", 5),
    ("crushing", 9),
    ("unbearable", 10),
    ("worst", 9),
    ("violent", 9),
    ("killer", 9),
    ("killing", 9),
    ("exploding", 10),
    ("excruciating", 10),
    ("nagging", 3),
    ("pressure", 5),
    ("dull", 3),
)

MILD_TO_MODERATE_SCORE = 6
TIGHT_BAND_SCORE = 5

# First whole-word match wins, so longer and more specific phrases come first.
LOCATION_CANDIDATES: tuple[str, ...] = (
    "behind my right eye",
    "behind my left eye",
    "right eye",
    "left eye",
    "eye socket",
    "socket",
    "behind my eye",
    "behind my eyes",
    "behind the eyes",
    "around my eyes",
    "around the eyes",
    "around eye",
    "around the eye",
    "between eyes",
    "between my eyes",
    "left temple",
    "right temple",
    "temples",
    "temple",
    "front/forehead",
    "front / forehead",
    "forehead",
    "front",
    "frontal",
    "brow",
    "eyebrow",
    "nose bridge",
    "bridge of nose",
    "face",
    "left side",
    "right side",
    "jaw",
    "jawline",
    "teeth",
    "cheek",
    "cheekbone",
    "sinus",
    "sinus cavity",
    "scalp",
    "both sides",
    "both side",
    "both",
    "whole head",
    "bilateral",
    "back of head",
    "back of my head",
    "back of the head",
    "back of head/neck",
    "back of head or neck",
    "back of my head or neck",
    "back of head/ neck",
    "back of neck",
    "base of neck",
    "at the base of my neck",
    "upper neck",
    "lower neck",
    "nape",
    "nape of neck",
    "neck",
    "neck area",
    "neck region",
    "occipital",
    "crown",
    "top",
    "base of my skull",
    "base of skull",
    "back of skull",
    "back of my skull",
    "base of the skull",
    "head",
    "of my head",
    "of the head",
    "left",
    "right",
)
SIDE_ONLY_LOCATIONS = frozenset({"left", "right"})
OTHER_LOCATION = "other"

SYMPTOM_CANDIDATES: tuple[str, ...] = (
    "nausea", "nauseous", "vomiting", "puking", "throwing up", "throw up", "feel sick", "queasy",
    "aura", "visuals", "visual", "zigzag", "spots", "flashes", "stars", "blurriness", "blurry",
    "blind spot", "tunnel vision", "light sensitivity", "sensitivity to light", "photophobia",
    "sound sensitivity", "sensitivity to sound", "phonophobia", "smell sensitivity", "osmophobia",
    "dizziness", "dizzy", "vertigo", "brain fog", "confusion", "cognitive", "dysfunction",
    "fatigue", "exhaustion", "weakness", "weak", "numbness", "tingling", "pins and needles",
    "stiff neck", "neck is stiff", "yawning", "chills", "sweating", "pale", "speech", "slurring",
    "ringing", "tinnitus",
)

TRIGGER_CANDIDATES: tuple[str, ...] = (
    "stress", "anxiety", "crying", "tension",
    "sleep", "insomnia", "oversleeping", "napping", "sleep deprivation", "lack of sleep",
    "slept poorly", "haven't slept well", "poor sleep",
    "hunger", "fasting", "skipped meal", "skipped a meal",
    "dehydration", "thirst",
    "food", "chocolate", "cheese", "sugar",
    "caffeine", "coffee", "tea",
    "alcohol", "wine", "beer",
    "weather", "rain", "storm", "pressure", "heat", "humidity", "sun",
    "glare", "bright light", "loud noise",
    "screen", "computer", "phone",
    "smells", "perfume", "smoke",
    "hormones", "period", "menstruation", "cycle", "ovulation",
    "exercise", "gym",
    "travel", "jet lag",
)
WEATHER_TRIGGER_KEYS = frozenset({"weather", "rain", "storm", "pressure", "heat", "humidity", "sun"})
_TRIGGER_CAUSE_PHRASES = ("triggered", "caused", "due to", "because of", "made", "making", "from")
_FALLBACK_CAUSE_PHRASES = _TRIGGER_CAUSE_PHRASES + ("after",)

_SENSITIVITY_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"sensitivity\s+to\s+light"), "sensitivity to light"),
    (re.compile(r"sensitivity\s+to\b[^.]*\b(sound|noise)\b"), "sensitivity to sound"),
    (re.compile(r"sensitive\s+to\s+light"), "sensitive to light"),
    (re.compile(r"sensitive\s+to\s+(sound|noise)"), "sensitive to sound"),
    (re.compile(r"sensitivity\s+to\s+smell"), "sensitivity to smell"),
    (re.compile(r"sensitive\s+to\s+smell"), "sensitive to smell"),
)

_NON_PRINTABLE_RE = re.compile(r"[^\x20-\x7E]")
_OUT_OF_TEN_RE = re.compile(r"(\d{1,2})\s*(?:/10|out of 10|out of ten)")
_LABELLED_SCORE_RE = re.compile(
    r"(?:intensity|pain level|level|score|about)[^\d]{0,30}(\d{1,2})\b"
    r"(?!\s*(?:hours?|hrs?|h|minutes?|mins?|m|am|pm)\b|:\d)"
)
_PAIN_CONTEXT_RE = re.compile(r"\b(pain|hurts|ache|aching|stabbing|splitting|shooting|piercing|pounding)\b")
_PAIN_OR_PULSE_RE = re.compile(
    r"\b(pain|hurts|ache|aching|stabbing|splitting|shooting|piercing|pounding|throbbing|pulsing)\b"
)
_EYE_PAIN_RE = re.compile(r"\b(pain|hurts|ache|aching|stabbing|splitting|pulsing|throbbing|shooting)\b")
_FALLBACK_PAIN_RE = re.compile(
    r"\b(pain|hurts|ache|aching|stabbing|splitting|pulsing|throbbing|shooting|piercing|pounding|drill)\b"
)
_INTENSITY_CAUSE_RE = re.compile(r"\b(triggered|caused|due to|because of|made|making|after)\b")
_ANATOMY_RE = re.compile(
    r"\b(temple|eye|eyes|forehead|brow|eyebrow|nose|jaw|jawline|teeth|cheek|cheekbone|sinus|neck|head|skull"
    r"|occipital|crown|face|left|right)\b"
)
_ANATOMY_NO_SIDE_RE = re.compile(
    r"\b(temple|eye|eyes|forehead|brow|eyebrow|nose|jaw|jawline|teeth|cheek|cheekbone|sinus|neck|head|skull"
    r"|occipital|crown|face)\b"
)
_PULSE_ADJECTIVE_RE = re.compile(r"\b(pulsing|throbbing)\b")
_PULSE_SENSATION_RE = re.compile(r"\b(pulsing\s+sensation|throbbing\s+sensation)\b")
_CRUSHING_RE = re.compile(r"\bcrushing\b")
_WEIGHT_RE = re.compile(r"\bweight\b")
_HEAVY_EYES_RE = re.compile(r"\bheavy\s+eyes\b|\beyes\s+heavy\b")
_MILD_TO_MODERATE_RE = re.compile(r"mild\s*(?:to|-)\s*moderate")
_MANAGEABLE_ACHE_RE = re.compile(r"\bmanageable\s+ache\b")
_TIGHT_BAND_RE = re.compile(r"tight\s+band")
_PARESTHESIA_RE = re.compile(r"\b(pins\s+and\s+needles|tingling|numbness)\b")
_MAIN_TRIGGER_RE = re.compile(r"\bmain\s+trigger\b")
_SCALP_RE = re.compile(r"\bscalp\b")
_BROW_RE = re.compile(r"\b(eyebrow|brow)\b")
_BASE_OF_SKULL_RE = re.compile(r"\bbase\s+of\s+(the\s+)?skull\b")
_EYE_RE = re.compile(r"\beye\b")
_EYES_RE = re.compile(r"\b(eye|eyes)\b")
_BRIEF_RE = re.compile(r"\bbrief\b")
_NOISE_RE = re.compile(r"\b(loud\s+noise|noise)\b")
_AURA_RE = re.compile(r"\b(aura|visual|zigzag|spots)")
_HEAVY_HEAD_RE = re.compile(r"\bheavy\b[^.]{0,40}\b(head|head\s+pain|headache)\b")
_SEVERE_HEAD_RE = re.compile(r"\b(bad|severe|intense|worst)\b[^.]{0,80}\b(headache|head\s+pain|migraine|head)\b")
_VISION_RE = re.compile(r"\b(vision|blurry vision|dizzy|dizziness|vertigo)\b")
_WORST_YET_RE = re.compile(r"\bworst\b[^.]*\byet\b")
_SORENESS_RE = re.compile(r"\bsoreness\b")


@lru_cache(maxsize=None)
def _word_pattern(phrase: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(phrase)}\b")


def _has_word(text: str, phrase: str) -> bool:
    return bool(_word_pattern(phrase).search(text))


def _phrase_present(text: str, phrase: str) -> bool:
    # Short single words need boundaries ("weak" vs "week", "rain" vs "morning").
    if len(phrase) < 15 and " " not in phrase:
        return _has_word(text, phrase)
    return phrase in text


def normalize_transcript(transcript: str) -> str:
    return _NON_PRINTABLE_RE.sub("", transcript).lower()


@dataclass(frozen=True)
class LocalExtraction:
    intensity: int | None = None
    pain_location: str | None = None
    pain_location_explicit: bool = False
    symptoms: tuple[str, ...] | None = None
    triggers: tuple[str, ...] | None = None
    aura: bool | None = None


@dataclass(frozen=True)
class _LocationCues:
    text: str
    intensity: int | None
    symptoms: frozenset[str]
    triggers: frozenset[str]


def _trigger_symptom_combo(c: _LocationCues) -> bool:
    if not c.symptoms or not c.triggers:
        return False
    return (
        ("Weather_Heat" in c.triggers and "Vomiting" in c.symptoms)
        or ("Screen_Exposure" in c.triggers and "Fatigue" in c.symptoms)
        or (bool(c.triggers & {"Olfactory_Smoke", "Olfactory_Perfume"}) and "Vomiting" in c.symptoms)
        or "Travel" in c.triggers
    )


def _pain_with_trigger(c: _LocationCues) -> bool:
    if not c.triggers or not _FALLBACK_PAIN_RE.search(c.text):
        return False
    has_weather = any(tag.startswith("Weather") for tag in c.triggers)
    return has_weather or bool(
        c.triggers & {"Screen_Exposure", "Light_Bright", "Light_Glare", "Emotional_Stress", "Dietary_Chocolate"}
    )


def _chocolate_cause(c: _LocationCues) -> bool:
    return (
        "Dietary_Chocolate" in c.triggers
        and not _FALLBACK_PAIN_RE.search(c.text)
        and any(phrase in c.text for phrase in _FALLBACK_CAUSE_PHRASES)
    )


def _strong_intensity_with_anatomy(c: _LocationCues) -> bool:
    if c.intensity is None or c.intensity < 7:
        return False
    return bool(_ANATOMY_RE.search(c.text)) or (bool(_WORST_YET_RE.search(c.text)) and c.intensity >= 9)


# Each rule implies the user described a real location without naming it.
OTHER_LOCATION_RULES: tuple[tuple[str, Callable[[_LocationCues], bool]], ...] = (
    ("yawning_with_eyes", lambda c: "Yawning" in c.symptoms and bool(_EYES_RE.search(c.text))),
    ("heavy_head", lambda c: bool(_HEAVY_HEAD_RE.search(c.text))),
    ("trigger_symptom_combo", _trigger_symptom_combo),
    ("pain_with_trigger", _pain_with_trigger),
    ("chocolate_cause", _chocolate_cause),
    ("severe_head", lambda c: bool(_SEVERE_HEAD_RE.search(c.text))),
    ("intensity_with_vision", lambda c: c.intensity is not None and bool(_VISION_RE.search(c.text))),
    ("tinnitus_with_vertigo", lambda c: {"Tinnitus", "Vertigo"} <= c.symptoms),
    ("strong_intensity_with_anatomy", _strong_intensity_with_anatomy),
    ("soreness", lambda c: bool(_SORENESS_RE.search(c.text))),
    (
        "intensity_with_light_or_sound_sensitivity",
        lambda c: c.intensity is not None and bool(c.symptoms & {"Photophobia", "Phonophobia"}),
    ),
)


class LocalHeuristicExtractor:
    """Regex and keyword extraction straight from a transcript, without any model call."""

    def extract(self, transcript: str | None) -> LocalExtraction:
        if not isinstance(transcript, str) or not transcript.strip():
            return LocalExtraction()
        text = normalize_transcript(transcript)

        intensity = self.score_intensity(text)
        if intensity is not None and _PARESTHESIA_RE.search(text) and not _PAIN_OR_PULSE_RE.search(text):
            intensity = None

        symptoms = self.detect_symptoms(text)
        triggers = self.detect_triggers(text, symptoms)
        aura = True if _AURA_RE.search(text) else None

        symptom_set = frozenset(symptoms or ())
        trigger_set = frozenset(triggers or ())
        if intensity is None and {"Weakness", "Pallor"} <= symptom_set:
            intensity = 1
        if trigger_set & {"Menstruation", "Hormonal"} and _MAIN_TRIGGER_RE.search(text):
            intensity = max(intensity or 0, 9)

        location, explicit = self.named_location(text)
        if location is None:
            cues = _LocationCues(text=text, intensity=intensity, symptoms=symptom_set, triggers=trigger_set)
            if self.inferred_location_rule(cues) is not None:
                location = OTHER_LOCATION
        if location in SIDE_ONLY_LOCATIONS and not (
            _PAIN_CONTEXT_RE.search(text) or _ANATOMY_NO_SIDE_RE.search(text)
        ):
            location, explicit = OTHER_LOCATION, False
        if _BRIEF_RE.search(text):
            location, explicit = None, False

        return LocalExtraction(
            intensity=intensity,
            pain_location=location,
            pain_location_explicit=explicit and location is not None,
            symptoms=tuple(symptoms) if symptoms else None,
            triggers=tuple(triggers) if triggers else None,
            aura=aura,
        )

    def score_intensity(self, text: str) -> int | None:
        match = _OUT_OF_TEN_RE.search(text) or _LABELLED_SCORE_RE.search(text)
        if match:
            value = int(match.group(1))
            return value if 0 <= value <= 10 else None
        return self._adjective_intensity(text)

    def _adjective_intensity(self, text: str) -> int | None:
        scores = dict(INTENSITY_ADJECTIVES)
        has_pain_context = bool(_PAIN_CONTEXT_RE.search(text))
        if not has_pain_context:
            has_anatomy = bool(_ANATOMY_RE.search(text))
            has_pulse = bool(_PULSE_ADJECTIVE_RE.search(text))
            if has_pulse and (has_anatomy or _INTENSITY_CAUSE_RE.search(text)):
                has_pain_context = True
            if not has_anatomy:
                scores.pop("heavy", None)
        if _PULSE_SENSATION_RE.search(text):
            scores.pop("pulsing", None)
            scores.pop("throbbing", None)
        if not has_pain_context and _CRUSHING_RE.search(text) and _WEIGHT_RE.search(text):
            scores.pop("crushing", None)
        if _HEAVY_EYES_RE.search(text):
            scores.pop("heavy", None)
        if not has_pain_context:
            scores.pop("throbbing", None)
            scores.pop("pulsing", None)

        mild_to_moderate = bool(_MILD_TO_MODERATE_RE.search(text))
        manageable_ache = bool(_MANAGEABLE_ACHE_RE.search(text))
        matched: list[int] = []
        for word, score in scores.items():
            if mild_to_moderate and word in {"mild", "moderate"}:
                continue
            if manageable_ache and word == "manageable":
                continue
            if _has_word(text, word):
                matched.append(score)
        if mild_to_moderate:
            matched.append(MILD_TO_MODERATE_SCORE)
        if _TIGHT_BAND_RE.search(text):
            matched.append(TIGHT_BAND_SCORE)
        if not matched:
            # A bare numeric reply such as "7" to the intensity question.
            return coerce_intensity(text)

        intensity = sum(matched) // len(matched)
        if _has_word(text, "unbearable"):
            intensity = 10
        if _has_word(text, "worst") and _has_word(text, "ever"):
            intensity = 10
        elif intensity < 9 and _has_word(text, "worst"):
            intensity = 9
        if _has_word(text, "heavy") and _has_word(text, "crushing"):
            intensity = max(intensity, 9)
        if _has_word(text, "severe") and _has_word(text, "throbbing"):
            intensity = max(intensity, 8)
        return intensity

    def named_location(self, text: str) -> tuple[str | None, bool]:
        """Location from an explicitly named body part, with whether it was explicit."""
        if _SCALP_RE.search(text) and _BROW_RE.search(text):
            return OTHER_LOCATION, False
        if _BASE_OF_SKULL_RE.search(text):
            return "frontal", True
        for phrase in LOCATION_CANDIDATES:
            # Whole words only: "browsing" is not a brow, "bothering" is not both sides.
            if not _has_word(text, phrase):
                continue
            if phrase == "socket" and _BRIEF_RE.search(text):
                continue
            return phrase, True
        if _EYE_RE.search(text) and _EYE_PAIN_RE.search(text):
            return "frontal", True
        return None, False

    def inferred_location_rule(self, cues: _LocationCues) -> str | None:
        for name, rule in OTHER_LOCATION_RULES:
            if rule(cues):
                return name
        return None

    def detect_symptoms(self, text: str) -> list[str] | None:
        raw = [phrase for phrase in SYMPTOM_CANDIDATES if _phrase_present(text, phrase)]
        raw.extend(label for pattern, label in _SENSITIVITY_PATTERNS if pattern.search(text))
        return map_symptoms(filter_array_values(raw))

    def detect_triggers(self, text: str, symptoms: list[str] | None = None) -> list[str] | None:
        raw = [phrase for phrase in TRIGGER_CANDIDATES if _phrase_present(text, phrase)]
        has_cause = any(phrase in text for phrase in _TRIGGER_CAUSE_PHRASES)
        if has_cause:
            if "bright light" in text:
                raw.append("photophobia")
            if _NOISE_RE.search(text):
                raw.append("phonophobia")
        # Incidental weather talk is not a trigger without pain, causal or vomiting context.
        keep_weather = has_cause or bool(_PAIN_OR_PULSE_RE.search(text)) or "Vomiting" in (symptoms or [])
        raw = [phrase for phrase in raw if keep_weather or phrase not in WEATHER_TRIGGER_KEYS]
        return map_triggers(filter_trigger_values(raw))
