"""Tests for landmark-based anchor resolution."""

from __future__ import annotations

import random

import pytest

from emojiface.geometry import Point2D
from emojiface.ml.face_detector import LandmarkRegion
from emojiface.render.anchor import AnchorResult, resolve_anchor

# Power-of-two size keeps normalized coordinates exact in binary floating point.
IMAGE_SIZE = (256, 256)


def _normalized(px: float, py: float, size: tuple[int, int] = IMAGE_SIZE) -> Point2D:
    """Normalized bottom-left-origin point for a top-left pixel position."""
    width, height = size
    return Point2D(px / width, 1.0 - py / height)


def _random_group(rng: random.Random, count: int) -> list[Point2D]:
    return [Point2D(rng.random(), rng.random()) for _ in range(count)]


class TestTriad:
    def test_upright_face_has_zero_angle(self) -> None:
        landmarks = {
            LandmarkRegion.LEFT_PUPIL: [_normalized(80, 80)],
            LandmarkRegion.RIGHT_PUPIL: [_normalized(120, 80)],
            LandmarkRegion.INNER_LIPS: [_normalized(95, 140), _normalized(105, 140)],
        }
        result = resolve_anchor(landmarks, IMAGE_SIZE)
        assert result.center is not None
        assert result.center.x == pytest.approx(100.0)
        assert result.center.y == pytest.approx(80.0)
        assert result.angle_degrees == pytest.approx(0.0)

    def test_face_lying_on_its_side(self) -> None:
        # Mouth to the right of the eyes: the face's "down" points right.
        landmarks = {
            LandmarkRegion.LEFT_EYE: [_normalized(100, 80)],
            LandmarkRegion.RIGHT_EYE: [_normalized(100, 120)],
            LandmarkRegion.OUTER_LIPS: [_normalized(140, 100)],
        }
        result = resolve_anchor(landmarks, IMAGE_SIZE)
        assert result.center is not None
        assert result.center.x == pytest.approx(100.0)
        assert result.center.y == pytest.approx(100.0)
        assert result.angle_degrees == pytest.approx(270.0)

    def test_angle_in_range_with_all_groups(self) -> None:
        rng = random.Random(1234)
        for _ in range(200):
            landmarks = {region: _random_group(rng, rng.randint(1, 8)) for region in LandmarkRegion}
            angle = resolve_anchor(landmarks, (rng.randint(1, 4000), rng.randint(1, 4000))).angle_degrees
            assert angle is not None
            assert 0.0 <= angle < 360.0


class TestPreferenceOrder:
    def test_pupil_preferred_over_eye_and_eyebrow(self) -> None:
        landmarks = {
            LandmarkRegion.LEFT_PUPIL: [_normalized(80, 80)],
            LandmarkRegion.LEFT_EYE: [_normalized(10, 10)],
            LandmarkRegion.LEFT_EYEBROW: [_normalized(20, 20)],
            LandmarkRegion.RIGHT_PUPIL: [_normalized(120, 80)],
            LandmarkRegion.OUTER_LIPS: [_normalized(100, 140)],
        }
        center = resolve_anchor(landmarks, IMAGE_SIZE).center
        assert center == Point2D(pytest.approx(100.0), pytest.approx(80.0))

    def test_eyebrow_used_when_eyes_missing(self) -> None:
        landmarks = {
            LandmarkRegion.LEFT_EYEBROW: [_normalized(80, 60)],
            LandmarkRegion.RIGHT_EYEBROW: [_normalized(120, 60)],
            LandmarkRegion.INNER_LIPS: [_normalized(100, 140)],
        }
        center = resolve_anchor(landmarks, IMAGE_SIZE).center
        assert center == Point2D(pytest.approx(100.0), pytest.approx(60.0))

    def test_inner_lips_preferred_over_outer_lips(self) -> None:
        base = {
            LandmarkRegion.LEFT_PUPIL: [_normalized(80, 80)],
            LandmarkRegion.RIGHT_PUPIL: [_normalized(120, 80)],
        }
        with_inner = {
            **base,
            LandmarkRegion.INNER_LIPS: [_normalized(100, 140)],
            LandmarkRegion.OUTER_LIPS: [_normalized(180, 80)],
        }
        assert resolve_anchor(with_inner, IMAGE_SIZE).angle_degrees == pytest.approx(0.0)

        outer_only = {**base, LandmarkRegion.OUTER_LIPS: [_normalized(180, 80)]}
        assert resolve_anchor(outer_only, IMAGE_SIZE).angle_degrees == pytest.approx(270.0)


class TestFallback:
    def test_only_all_points_gives_centroid_and_zero(self) -> None:
        points = [_normalized(10, 20), _normalized(30, 40), _normalized(50, 90)]
        result = resolve_anchor({LandmarkRegion.ALL_POINTS: points}, IMAGE_SIZE)
        assert result.center == Point2D(pytest.approx(30.0), pytest.approx(50.0))
        assert result.angle_degrees == 0.0

    def test_missing_mouth_falls_back_to_all_points(self) -> None:
        landmarks = {
            LandmarkRegion.ALL_POINTS: [_normalized(60, 60), _normalized(140, 140)],
            LandmarkRegion.LEFT_PUPIL: [_normalized(80, 80)],
            LandmarkRegion.RIGHT_PUPIL: [_normalized(120, 80)],
        }
        result = resolve_anchor(landmarks, IMAGE_SIZE)
        assert result.center == Point2D(pytest.approx(100.0), pytest.approx(100.0))
        assert result.angle_degrees == 0.0

    def test_partial_groups_without_all_points_have_no_center(self) -> None:
        result = resolve_anchor({LandmarkRegion.LEFT_EYE: [_normalized(80, 80)]}, IMAGE_SIZE)
        assert result == AnchorResult(center=None, angle_degrees=0.0)


class TestNoLandmarks:
    def test_no_groups(self) -> None:
        assert resolve_anchor({}, IMAGE_SIZE) == AnchorResult(center=None, angle_degrees=None)

    def test_landmarks_missing_entirely(self) -> None:
        assert resolve_anchor(None, IMAGE_SIZE) == AnchorResult(center=None, angle_degrees=None)

    def test_empty_and_absent_groups_count_as_missing(self) -> None:
        landmarks = {
            LandmarkRegion.ALL_POINTS: [],
            LandmarkRegion.LEFT_PUPIL: None,
            LandmarkRegion.INNER_LIPS: [],
        }
        assert resolve_anchor(landmarks, IMAGE_SIZE) == AnchorResult(center=None, angle_degrees=None)
