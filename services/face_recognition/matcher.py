# services/face_recognition/matcher.py
import enum
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from shared import config
from shared.errors import InvalidDescriptor, LengthMismatch

# Confidence reported exactly at the threshold
PIVOT_CONFIDENCE = 60.0


class MatchSensitivity(float, enum.Enum):
    """Distance thresholds, strictest first."""
    STRICT = 0.10
    EXCELLENT = 0.15
    GOOD = 0.25
    ACCEPTABLE = 0.35


@dataclass(frozen=True)
class MatchResult:
    distance: float
    threshold: float
    is_match: bool
    confidence: float


def default_threshold() -> float:
    if config.FACE_MATCH_SENSITIVITY:
        return MatchSensitivity[config.FACE_MATCH_SENSITIVITY.upper()].value
    return config.FACE_MATCH_THRESHOLD


def resolve_threshold(sensitivity=None, threshold: Optional[float] = None) -> float:
    """Explicit threshold wins, then a tier (member or name), then the configured default."""
    if threshold is not None:
        return threshold
    if isinstance(sensitivity, MatchSensitivity):
        return sensitivity.value
    if sensitivity is not None:
        return MatchSensitivity[str(sensitivity).upper()].value
    return default_threshold()


def validate_descriptor(values) -> list:
    """Return the descriptor as a list of floats, or raise InvalidDescriptor."""
    if not isinstance(values, (list, tuple)) or len(values) == 0:
        raise InvalidDescriptor("Descriptor must be a non-empty array")
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v) for v in values):
        raise InvalidDescriptor("Descriptor must contain valid numbers only")
    return [float(v) for v in values]


def distance(descriptor_a: Sequence[float], descriptor_b: Sequence[float]) -> float:
    """Euclidean distance between two descriptors of equal length."""
    if len(descriptor_a) != len(descriptor_b):
        raise LengthMismatch(
            f"Descriptor lengths do not match: {len(descriptor_a)} vs {len(descriptor_b)}",
            expected=len(descriptor_b),
            received=len(descriptor_a),
        )
    a = np.asarray(descriptor_a, dtype=np.float64)
    b = np.asarray(descriptor_b, dtype=np.float64)
    return float(np.linalg.norm(a - b))


def confidence_for(distance_value: float, threshold: float) -> float:
    """
    Piecewise-linear, continuous and decreasing in distance:
    [0, threshold) -> (60, 100], threshold and beyond -> 60 down to 0.
    """
    if distance_value <= 0:
        return 100.0
    if distance_value >= threshold:
        return max(0.0, PIVOT_CONFIDENCE - (distance_value - threshold) * 100)
    return 100.0 - (distance_value / threshold) * (100.0 - PIVOT_CONFIDENCE)


def classify(distance_value: float, threshold: Optional[float] = None) -> MatchResult:
    if threshold is None:
        threshold = default_threshold()
    return MatchResult(
        distance=distance_value,
        threshold=threshold,
        is_match=distance_value < threshold,
        confidence=confidence_for(distance_value, threshold),
    )


def match(candidate: Sequence[float], template: Sequence[float], threshold: Optional[float] = None) -> MatchResult:
    return classify(distance(candidate, template), threshold)
