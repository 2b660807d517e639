"""Tests for the RetinaFace detector and its decoding helpers."""

from __future__ import annotations

from unittest.mock import MagicMock

import numpy as np
import pytest
from onnxruntime.capi.onnxruntime_pybind11_state import Fail

from emojiface.config import Settings
from emojiface.ml.face_detector import (
    LandmarkRegion,
    RetinaFaceDetector,
    decode_boxes,
    decode_landmarks,
    nms,
    prior_boxes,
)

# 64x64 input: 8x8 + 4x4 + 2x2 cells, two priors per cell.
PRIOR_COUNT_64 = (64 + 16 + 4) * 2

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "face_detection_model": "retinaface_mobilenetv2",
        "detection_confidence": 0.5,
        "detection_nms_threshold": 0.4,
        "detection_max_side": 1280,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def _raw_outputs(face_priors: dict[int, float], count: int = PRIOR_COUNT_64) -> tuple[np.ndarray, ...]:
    """Zero regressions with background everywhere except ``face_priors`` (index -> score)."""
    loc = np.zeros((1, count, 4), dtype=np.float32)
    conf = np.tile(np.array([1.0, 0.0], dtype=np.float32), (1, count, 1))
    for index, score in face_priors.items():
        conf[0, index] = (1.0 - score, score)
    landms = np.zeros((1, count, 10), dtype=np.float32)
    return loc, conf, landms


def _detector_with_session(outputs: list[np.ndarray] | Exception) -> tuple[RetinaFaceDetector, MagicMock]:
    session = MagicMock()
    session.get_inputs.return_value = [MagicMock(name="input")]
    session.get_inputs.return_value[0].name = "input"
    if isinstance(outputs, Exception):
        session.run.side_effect = outputs
    else:
        session.run.return_value = outputs
    manager = MagicMock()
    manager.get_session.return_value = session
    return RetinaFaceDetector(_make_settings(), manager), session


# ---------------------------------------------------------------------------
# Decoding helpers
# ---------------------------------------------------------------------------


class TestPriorBoxes:
    def test_count_matches_feature_maps(self) -> None:
        assert prior_boxes(64, 64).shape == (PRIOR_COUNT_64, 4)

    def test_first_cell_has_both_min_sizes(self) -> None:
        priors = prior_boxes(64, 64)
        np.testing.assert_allclose(priors[0], [4 / 64, 4 / 64, 16 / 64, 16 / 64])
        np.testing.assert_allclose(priors[1], [4 / 64, 4 / 64, 32 / 64, 32 / 64])
        np.testing.assert_allclose(priors[2], [12 / 64, 4 / 64, 16 / 64, 16 / 64])

    def test_non_square_input(self) -> None:
        priors = prior_boxes(32, 64)
        # 4x8 + 2x4 + 1x2 cells
        assert priors.shape == ((32 + 8 + 2) * 2, 4)
        np.testing.assert_allclose(priors[0], [4 / 64, 4 / 32, 16 / 64, 16 / 32])


class TestDecode:
    def test_zero_regression_returns_prior_box(self) -> None:
        priors = np.array([[0.5, 0.5, 0.2, 0.4]], dtype=np.float32)
        boxes = decode_boxes(np.zeros((1, 4), dtype=np.float32), priors)
        np.testing.assert_allclose(boxes[0], [0.4, 0.3, 0.6, 0.7], rtol=1e-6)

    def test_landmarks_offset_from_prior_center(self) -> None:
        priors = np.array([[0.5, 0.5, 0.2, 0.4]], dtype=np.float32)
        offsets = np.zeros((1, 10), dtype=np.float32)
        offsets[0, 0:2] = (1.0, -1.0)
        points = decode_landmarks(offsets, priors)
        assert points.shape == (1, 5, 2)
        np.testing.assert_allclose(points[0, 0], [0.52, 0.46], rtol=1e-6)
        np.testing.assert_allclose(points[0, 1], [0.5, 0.5], rtol=1e-6)


class TestNms:
    def test_suppresses_overlapping_boxes(self) -> None:
        boxes = np.array(
            [[0.0, 0.0, 1.0, 1.0], [0.05, 0.05, 1.0, 1.0], [2.0, 2.0, 3.0, 3.0]],
            dtype=np.float32,
        )
        scores = np.array([0.8, 0.9, 0.7], dtype=np.float32)
        assert nms(boxes, scores, 0.4) == [1, 2]

    def test_keeps_disjoint_boxes(self) -> None:
        boxes = np.array([[0.0, 0.0, 0.1, 0.1], [0.5, 0.5, 0.6, 0.6]], dtype=np.float32)
        scores = np.array([0.6, 0.9], dtype=np.float32)
        assert nms(boxes, scores, 0.4) == [1, 0]


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


class TestRetinaFaceDetector:
    def test_postprocess_builds_flipped_observation(self) -> None:
        detector = RetinaFaceDetector(_make_settings(), MagicMock())
        # Prior 1: cell (0, 0), min size 32 -> box (-0.1875, -0.1875)..(0.3125, 0.3125), top-left origin.
        observations = detector.postprocess(*_raw_outputs({1: 0.9}), height=64, width=64)

        assert len(observations) == 1
        face = observations[0]
        assert face.confidence == pytest.approx(0.9)
        box = face.bounding_box
        assert box.x == pytest.approx(0.0)
        assert box.width == pytest.approx(0.3125)
        assert box.height == pytest.approx(0.3125)
        assert box.y == pytest.approx(1.0 - 0.3125)

        assert face.landmarks is not None
        assert set(face.landmarks) == {
            LandmarkRegion.ALL_POINTS,
            LandmarkRegion.LEFT_PUPIL,
            LandmarkRegion.RIGHT_PUPIL,
            LandmarkRegion.OUTER_LIPS,
        }
        assert len(face.landmarks[LandmarkRegion.ALL_POINTS]) == 5
        assert len(face.landmarks[LandmarkRegion.OUTER_LIPS]) == 2
        pupil = face.landmarks[LandmarkRegion.LEFT_PUPIL][0]
        assert pupil.x == pytest.approx(4 / 64)
        assert pupil.y == pytest.approx(1.0 - 4 / 64)

    def test_postprocess_applies_threshold(self) -> None:
        detector = RetinaFaceDetector(_make_settings(detection_confidence=0.95), MagicMock())
        assert detector.postprocess(*_raw_outputs({1: 0.9}), height=64, width=64) == []

    def test_postprocess_accepts_logits(self) -> None:
        detector = RetinaFaceDetector(_make_settings(), MagicMock())
        loc, _, landms = _raw_outputs({})
        logits = np.tile(np.array([4.0, -4.0], dtype=np.float32), (1, PRIOR_COUNT_64, 1))
        logits[0, 100] = (-4.0, 4.0)
        observations = detector.postprocess(loc, logits, landms, height=64, width=64)
        assert len(observations) == 1
        assert observations[0].confidence > 0.99

    def test_detect_identifies_outputs_by_shape(self) -> None:
        loc, conf, landms = _raw_outputs({1: 0.9, 140: 0.8})
        detector, session = _detector_with_session([conf, landms, loc])

        observations = detector.detect(np.zeros((64, 64, 3), dtype=np.uint8))

        assert observations is not None
        assert len(observations) == 2
        assert observations[0].confidence > observations[1].confidence
        feed = session.run.call_args.args[1]
        assert feed["input"].shape == (1, 3, 64, 64)
        assert feed["input"].dtype == np.float32

    def test_detect_returns_none_when_session_fails(self) -> None:
        detector, _ = _detector_with_session(Fail("boom"))
        assert detector.detect(np.zeros((64, 64, 3), dtype=np.uint8)) is None

    def test_unexpected_outputs_raise(self) -> None:
        detector, _ = _detector_with_session([np.zeros((1, 10, 3), dtype=np.float32)])
        with pytest.raises(ValueError, match="Unexpected RetinaFace output"):
            detector.detect(np.zeros((64, 64, 3), dtype=np.uint8))

    def test_model_name(self) -> None:
        detector = RetinaFaceDetector(_make_settings(face_detection_model="retinaface_resnet34"), MagicMock())
        assert detector.model_name == "retinaface_resnet34"
