"""
Negative-intensity scoring and the immediate-warning rule.

The intensity function is selected by name (NEGATIVE_INTENSITY_METHOD):

  max     the strongest of anger / contempt / disgust
  mean    (anger + contempt + disgust) / 3, the dashboard formula

The warning rule is inclusive: intensity >= threshold alerts.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from emopulse.models.emotion_event import NEGATIVE_EMOTIONS
from emopulse.schemas.pipeline import EmotionScores

IntensityFn = Callable[[EmotionScores], float]

WARNING_MESSAGES = {
    "anger": "This message reads as angry. Take a breath before the next one?",
    "contempt": "This message reads as contemptuous. Consider how it will land.",
    "disgust": "This message reads as disgusted. Is there a kinder way to say it?",
}


def max_negative(scores: EmotionScores) -> float:
    return max(getattr(scores, name) for name in NEGATIVE_EMOTIONS)


def mean_negative(scores: EmotionScores) -> float:
    return sum(getattr(scores, name) for name in NEGATIVE_EMOTIONS) / len(NEGATIVE_EMOTIONS)


INTENSITY_METHODS: dict[str, IntensityFn] = {
    "max": max_negative,
    "mean": mean_negative,
}


def get_intensity_fn(method: str) -> IntensityFn:
    try:
        return INTENSITY_METHODS[method]
    except KeyError:
        raise ValueError(
            f"Unknown negative intensity method {method!r}; "
            f"expected one of {sorted(INTENSITY_METHODS)}"
        ) from None


def dominant_negative(scores: EmotionScores) -> str:
    """Name of the highest negative emotion (ties resolve in NEGATIVE_EMOTIONS order)."""
    return max(NEGATIVE_EMOTIONS, key=lambda name: getattr(scores, name))


@dataclass(frozen=True)
class Assessment:
    intensity: float
    dominant: str
    should_alert: bool


def assess(scores: EmotionScores, threshold: float, intensity_fn: IntensityFn) -> Assessment:
    intensity = intensity_fn(scores)
    return Assessment(
        intensity=intensity,
        dominant=dominant_negative(scores),
        should_alert=intensity >= threshold,
    )
