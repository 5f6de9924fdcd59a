import math

import pytest

from shared import config
from shared.errors import InvalidDescriptor, LengthMismatch
from services.face_recognition.matcher import (
    MatchSensitivity,
    PIVOT_CONFIDENCE,
    classify,
    confidence_for,
    default_threshold,
    distance,
    match,
    resolve_threshold,
    validate_descriptor,
)


def test_distance_is_euclidean():
    assert distance([0.0, 0.0], [3.0, 4.0]) == pytest.approx(5.0)


def test_distance_rejects_different_lengths():
    with pytest.raises(LengthMismatch) as exc:
        distance([0.1, 0.2, 0.3], [0.1, 0.2])
    assert exc.value.details == {"expected": 2, "received": 3}


def test_confidence_anchors():
    assert confidence_for(0, 0.25) == 100
    assert confidence_for(0.25, 0.25) == pytest.approx(PIVOT_CONFIDENCE)
    assert confidence_for(10, 0.25) == 0


def test_confidence_decreases_with_distance():
    samples = [confidence_for(d / 100, 0.25) for d in range(0, 120, 5)]
    assert all(a >= b for a, b in zip(samples, samples[1:]))
    assert all(0 <= c <= 100 for c in samples)


def test_confidence_continuous_at_threshold():
    below = confidence_for(0.25 - 1e-9, 0.25)
    above = confidence_for(0.25 + 1e-9, 0.25)
    assert below == pytest.approx(above, abs=1e-5)


def test_classify_threshold_is_exclusive():
    assert classify(0.2499, 0.25).is_match
    assert not classify(0.25, 0.25).is_match


def test_identical_descriptors_match_fully():
    result = match([0.1] * 128, [0.1] * 128, 0.25)
    assert result.is_match
    assert result.distance == 0
    assert result.confidence == 100


def test_resolve_threshold_order(monkeypatch):
    monkeypatch.setattr(config, "FACE_MATCH_SENSITIVITY", None)
    monkeypatch.setattr(config, "FACE_MATCH_THRESHOLD", 0.3)
    assert resolve_threshold(threshold=0.42, sensitivity="STRICT") == 0.42
    assert resolve_threshold(sensitivity="strict") == pytest.approx(0.10)
    assert resolve_threshold(sensitivity=MatchSensitivity.ACCEPTABLE) == pytest.approx(0.35)
    assert resolve_threshold() == 0.3


def test_configured_sensitivity_overrides_threshold(monkeypatch):
    monkeypatch.setattr(config, "FACE_MATCH_SENSITIVITY", "excellent")
    assert default_threshold() == pytest.approx(0.15)


def test_sensitivity_tiers_are_ordered():
    values = [tier.value for tier in MatchSensitivity]
    assert values == sorted(values)


@pytest.mark.parametrize("bad", [[], None, "0.1,0.2", [0.1, math.nan], [0.1, math.inf], [0.1, "x"], [True, False]])
def test_validate_descriptor_rejects(bad):
    with pytest.raises(InvalidDescriptor):
        validate_descriptor(bad)


def test_validate_descriptor_returns_floats():
    assert validate_descriptor([1, 0.5]) == [1.0, 0.5]
