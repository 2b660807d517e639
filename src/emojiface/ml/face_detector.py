"""Face detection: observation types, detector protocol, and the RetinaFace backend.

Observations use normalized coordinates with a bottom-left origin; see
``emojiface.geometry`` for the conversion to pixel space.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import numpy as np
from onnxruntime.capi.onnxruntime_pybind11_state import Fail, InvalidArgument, RuntimeException

from emojiface.geometry import BoundingBox, Point2D
from emojiface.ml.preprocessing import preprocess_for_detection

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from emojiface.config import Settings
    from emojiface.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


class LandmarkRegion(StrEnum):
    ALL_POINTS = "all_points"
    LEFT_PUPIL = "left_pupil"
    LEFT_EYE = "left_eye"
    LEFT_EYEBROW = "left_eyebrow"
    RIGHT_PUPIL = "right_pupil"
    RIGHT_EYE = "right_eye"
    RIGHT_EYEBROW = "right_eyebrow"
    OUTER_LIPS = "outer_lips"
    INNER_LIPS = "inner_lips"


FaceLandmarks = Mapping[LandmarkRegion, Sequence[Point2D] | None]


@dataclass(frozen=True)
class FaceObservation:
    """One detected face: normalized bounding box plus optional landmark groups."""

    bounding_box: BoundingBox
    landmarks: FaceLandmarks | None = None
    confidence: float = 1.0


class FaceDetector(Protocol):
    """Protocol for face detection engines."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, image: NDArray[np.uint8]) -> list[FaceObservation] | None:
        """Detect faces in an image.

        Args:
            image: HxWx3 RGB uint8 array, upright.

        Returns:
            Observations for every detected face, or None if detection is
            unavailable for this image.
        """
        ...


# ---------------------------------------------------------------------------
# RetinaFace
# ---------------------------------------------------------------------------

_MIN_SIZES: tuple[tuple[int, int], ...] = ((16, 32), (64, 128), (256, 512))
_STEPS: tuple[int, ...] = (8, 16, 32)
_VARIANCES: tuple[float, float] = (0.1, 0.2)
_PRE_NMS_TOP_K = 5000
_KEEP_TOP_K = 750


def prior_boxes(height: int, width: int) -> NDArray[np.float32]:
    """Anchor priors as (cx, cy, w, h), normalized to the input size."""
    priors: list[NDArray[np.float32]] = []
    for step, min_sizes in zip(_STEPS, _MIN_SIZES, strict=True):
        rows = math.ceil(height / step)
        cols = math.ceil(width / step)
        cy, cx = np.meshgrid(
            (np.arange(rows, dtype=np.float32) + 0.5) * step / height,
            (np.arange(cols, dtype=np.float32) + 0.5) * step / width,
            indexing="ij",
        )
        # Row-major over cells, min sizes innermost.
        cells = np.stack([cx.ravel(), cy.ravel()], axis=1)
        for_cell = []
        for min_size in min_sizes:
            sizes = np.tile(np.array([min_size / width, min_size / height], dtype=np.float32), (len(cells), 1))
            for_cell.append(np.concatenate([cells, sizes], axis=1))
        priors.append(np.stack(for_cell, axis=1).reshape(-1, 4))
    return np.concatenate(priors, axis=0).astype(np.float32)


def decode_boxes(loc: NDArray[np.float32], priors: NDArray[np.float32]) -> NDArray[np.float32]:
    """Decode regression output into normalized (x1, y1, x2, y2) boxes."""
    centers = priors[:, :2] + loc[:, :2] * _VARIANCES[0] * priors[:, 2:]
    sizes = priors[:, 2:] * np.exp(loc[:, 2:] * _VARIANCES[1])
    top_left = centers - sizes / 2.0
    return np.concatenate([top_left, top_left + sizes], axis=1)


def decode_landmarks(landms: NDArray[np.float32], priors: NDArray[np.float32]) -> NDArray[np.float32]:
    """Decode landmark output into normalized (N, 5, 2) points."""
    offsets = landms.reshape(-1, 5, 2)
    return priors[:, np.newaxis, :2] + offsets * _VARIANCES[0] * priors[:, np.newaxis, 2:]


def nms(boxes: NDArray[np.float32], scores: NDArray[np.float32], threshold: float) -> list[int]:
    """Greedy non-maximum suppression; returns kept indices by descending score."""
    x1, y1, x2, y2 = boxes.T
    areas = np.maximum(x2 - x1, 0.0) * np.maximum(y2 - y1, 0.0)
    order = scores.argsort()[::-1]

    keep: list[int] = []
    while order.size > 0:
        best = int(order[0])
        keep.append(best)
        rest = order[1:]
        inter_w = np.maximum(0.0, np.minimum(x2[best], x2[rest]) - np.maximum(x1[best], x1[rest]))
        inter_h = np.maximum(0.0, np.minimum(y2[best], y2[rest]) - np.maximum(y1[best], y1[rest]))
        inter = inter_w * inter_h
        union = areas[best] + areas[rest] - inter
        iou = np.divide(inter, union, out=np.zeros_like(inter), where=union > 0)
        order = rest[iou <= threshold]
    return keep


def _to_observation(box: NDArray[np.float32], points: NDArray[np.float32], score: float) -> FaceObservation:
    """Build an observation from a top-left-origin box and 5 landmarks.

    RetinaFace landmark order is: image-left eye, image-right eye, nose,
    image-left mouth corner, image-right mouth corner. The image-left eye is
    the subject's right eye.
    """
    x1, y1, x2, y2 = (float(v) for v in np.clip(box, 0.0, 1.0))
    bounding_box = BoundingBox(x=x1, y=1.0 - y2, width=x2 - x1, height=y2 - y1)

    flipped = [Point2D(float(px), 1.0 - float(py)) for px, py in np.clip(points, 0.0, 1.0)]
    landmarks: dict[LandmarkRegion, Sequence[Point2D] | None] = {
        LandmarkRegion.ALL_POINTS: flipped,
        LandmarkRegion.RIGHT_PUPIL: [flipped[0]],
        LandmarkRegion.LEFT_PUPIL: [flipped[1]],
        LandmarkRegion.OUTER_LIPS: [flipped[3], flipped[4]],
    }
    return FaceObservation(bounding_box=bounding_box, landmarks=landmarks, confidence=score)


class RetinaFaceDetector:
    """RetinaFace ONNX detector producing five-point landmarks per face."""

    def __init__(self, settings: Settings, model_manager: ModelManager) -> None:
        self._model_name = settings.face_detection_model
        self._model_manager = model_manager
        self._confidence = settings.detection_confidence
        self._nms_threshold = settings.detection_nms_threshold
        self._max_side = settings.detection_max_side

    @property
    def model_name(self) -> str:
        return self._model_name

    def detect(self, image: NDArray[np.uint8]) -> list[FaceObservation] | None:
        tensor = preprocess_for_detection(image, self._max_side)
        session = self._model_manager.get_session(self._model_name)
        input_name = session.get_inputs()[0].name

        try:
            outputs = session.run(None, {input_name: tensor})
        except (Fail, InvalidArgument, RuntimeException):
            logger.exception("Detection failed with %s", self._model_name)
            return None

        loc, conf, landms = _split_outputs(outputs)
        _, _, height, width = tensor.shape
        observations = self.postprocess(loc, conf, landms, height, width)
        logger.info("Detected %d face(s) with %s", len(observations), self._model_name)
        return observations

    def postprocess(
        self,
        loc: NDArray[np.float32],
        conf: NDArray[np.float32],
        landms: NDArray[np.float32],
        height: int,
        width: int,
    ) -> list[FaceObservation]:
        """Turn raw model outputs (batch of one) into observations."""
        priors = prior_boxes(height, width)
        scores = _face_scores(conf[0])
        boxes = decode_boxes(loc[0], priors)
        points = decode_landmarks(landms[0], priors)

        candidates = np.where(scores > self._confidence)[0]
        candidates = candidates[scores[candidates].argsort()[::-1]][:_PRE_NMS_TOP_K]
        keep = nms(boxes[candidates], scores[candidates], self._nms_threshold)[:_KEEP_TOP_K]
        return [_to_observation(boxes[i], points[i], float(scores[i])) for i in candidates[keep]]


def _split_outputs(outputs: Sequence[NDArray[np.float32]]) -> tuple[NDArray[np.float32], ...]:
    """Identify loc / conf / landmark outputs by their last dimension."""
    by_width = {int(output.shape[-1]): np.asarray(output, dtype=np.float32) for output in outputs}
    try:
        return by_width[4], by_width[2], by_width[10]
    except KeyError:
        shapes = [tuple(output.shape) for output in outputs]
        raise ValueError(f"Unexpected RetinaFace output shapes: {shapes}") from None


def _face_scores(conf: NDArray[np.float32]) -> NDArray[np.float32]:
    """Face probability per prior; applies softmax if the model exports logits."""
    if conf.min() < 0.0 or conf.max() > 1.0:
        shifted = np.exp(conf - conf.max(axis=1, keepdims=True))
        conf = shifted / shifted.sum(axis=1, keepdims=True)
    return conf[:, 1]
