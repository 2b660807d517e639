"""Anchor resolution: where to center an overlay on a face and how far to rotate it."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from emojiface.geometry import Point2D, centroid, rotation_to, to_pixel_point
from emojiface.ml.face_detector import LandmarkRegion

if TYPE_CHECKING:
    from emojiface.geometry import ImageSize
    from emojiface.ml.face_detector import FaceLandmarks

_LEFT_EYE_PREFERENCE = (LandmarkRegion.LEFT_PUPIL, LandmarkRegion.LEFT_EYE, LandmarkRegion.LEFT_EYEBROW)
_RIGHT_EYE_PREFERENCE = (LandmarkRegion.RIGHT_PUPIL, LandmarkRegion.RIGHT_EYE, LandmarkRegion.RIGHT_EYEBROW)
_MOUTH_PREFERENCE = (LandmarkRegion.INNER_LIPS, LandmarkRegion.OUTER_LIPS)


@dataclass(frozen=True)
class AnchorResult:
    """Pixel-space overlay anchor for one face.

    ``center`` is None when the face has no usable landmark points; the
    overlay must then be skipped.
    """

    center: Point2D | None
    angle_degrees: float | None


def resolve_anchor(landmarks: FaceLandmarks | None, image_size: ImageSize) -> AnchorResult:
    """Compute the overlay anchor from a face's landmark groups.

    With both eyes and the mouth available, the anchor is the midpoint
    between the eyes and the angle points from there toward the centroid
    of eyes and mouth (0 = upright). Otherwise the anchor falls back to the
    centroid of all landmark points with no rotation.
    """
    centers = _group_centers(landmarks or {}, image_size)
    if not centers:
        return AnchorResult(center=None, angle_degrees=None)

    left_eye = _first_present(centers, _LEFT_EYE_PREFERENCE)
    right_eye = _first_present(centers, _RIGHT_EYE_PREFERENCE)
    mouth = _first_present(centers, _MOUTH_PREFERENCE)

    if left_eye is not None and right_eye is not None and mouth is not None:
        triad_center = centroid([left_eye, right_eye, mouth])
        eyes_center = centroid([left_eye, right_eye])
        return AnchorResult(center=eyes_center, angle_degrees=rotation_to(eyes_center, triad_center))

    return AnchorResult(center=centers.get(LandmarkRegion.ALL_POINTS), angle_degrees=0.0)


def _group_centers(landmarks: FaceLandmarks, image_size: ImageSize) -> dict[LandmarkRegion, Point2D]:
    centers: dict[LandmarkRegion, Point2D] = {}
    for region in LandmarkRegion:
        points = landmarks.get(region)
        if not points:
            continue
        centers[region] = centroid([to_pixel_point(p, image_size) for p in points])
    return centers


def _first_present(centers: dict[LandmarkRegion, Point2D], preference: tuple[LandmarkRegion, ...]) -> Point2D | None:
    for region in preference:
        if region in centers:
            return centers[region]
    return None
