"""Overlay compositing: draw one glyph per face onto a copy of the photo."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

from emojiface.geometry import rotated_size
from emojiface.ml.preprocessing import validate_image
from emojiface.render.anchor import resolve_anchor

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from emojiface.geometry import ImageSize, Rect
    from emojiface.ml.face_detector import FaceObservation
    from emojiface.render.glyphs import GlyphProvider

logger = logging.getLogger(__name__)

DEFAULT_PADDING: float = 0.3
_ANGLE_EPSILON = 1e-6


def overlay_footprint(
    face: FaceObservation,
    image_size: ImageSize,
    padding: float = DEFAULT_PADDING,
) -> tuple[Rect, float | None] | None:
    """Pixel rectangle and rotation for a face's overlay, or None if it has no anchor.

    The detection box is moved so its center sits on the landmark anchor and
    is then grown by ``padding`` of its own size on every side.
    """
    anchor = resolve_anchor(face.landmarks, image_size)
    if anchor.center is None:
        return None

    rect = face.bounding_box.to_pixel_rect(image_size).centered_on(anchor.center)
    return rect.inset_by(-rect.width * padding, -rect.height * padding), anchor.angle_degrees


def rotate_glyph(glyph: Image.Image, angle_degrees: float) -> Image.Image:
    """Rotate ``glyph`` clockwise onto a transparent canvas large enough to keep its corners."""
    size = rotated_size(glyph.width, glyph.height, angle_degrees)
    # Pillow rotates counterclockwise.
    rotated = glyph.rotate(-angle_degrees, resample=Image.Resampling.BICUBIC, expand=True)
    canvas = Image.new("RGBA", size, (0, 0, 0, 0))
    canvas.paste(rotated, ((size[0] - rotated.width) // 2, (size[1] - rotated.height) // 2))
    return canvas


def _is_trivial(angle_degrees: float | None) -> bool:
    if angle_degrees is None:
        return True
    remainder = angle_degrees % 360.0
    return min(remainder, 360.0 - remainder) < _ANGLE_EPSILON


def composite(
    base_image: NDArray[np.uint8],
    faces: Sequence[FaceObservation],
    glyph_provider: GlyphProvider,
    padding: float = DEFAULT_PADDING,
) -> NDArray[np.uint8]:
    """Draw a glyph over every face with a resolvable anchor.

    Args:
        base_image: HxWx3 RGB or HxWx4 RGBA uint8 array. Never modified.
        faces: Detected faces; faces without landmarks are skipped.
        glyph_provider: Source of one glyph per drawn face.
        padding: Fraction of the face box added on each side of the overlay.

    Returns:
        A new array with the same shape as ``base_image``.

    Raises:
        DecodeError: If ``base_image`` is not a usable image array.
    """
    image = validate_image(base_image)
    has_alpha = image.shape[2] == 4
    canvas = Image.fromarray(image).convert("RGBA")
    image_size = canvas.size

    drawn = 0
    for index, face in enumerate(faces):
        placement = overlay_footprint(face, image_size, padding)
        if placement is None:
            logger.debug("Face %d has no resolvable anchor, skipping", index)
            continue
        footprint, angle = placement

        size = (max(1, round(footprint.width)), max(1, round(footprint.height)))
        glyph = glyph_provider(size)
        if not _is_trivial(angle):
            glyph = rotate_glyph(glyph, angle).resize(size, Image.Resampling.LANCZOS)

        layer = Image.new("RGBA", image_size, (0, 0, 0, 0))
        layer.paste(glyph, (math.floor(footprint.x + 0.5), math.floor(footprint.y + 0.5)))
        canvas = Image.alpha_composite(canvas, layer)
        drawn += 1

    logger.debug("Composited %d of %d face(s)", drawn, len(faces))
    result = canvas if has_alpha else canvas.convert("RGB")
    return np.array(result, dtype=np.uint8)
