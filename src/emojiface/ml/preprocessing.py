"""Image preprocessing: upload decoding and detector input preparation."""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# RetinaFace was trained on BGR input with these channel means subtracted.
DETECTION_MEAN_BGR: tuple[float, float, float] = (104.0, 117.0, 123.0)


class DecodeError(ValueError):
    """The input image cannot be decoded or used."""


def decode_image(image_bytes: bytes, max_pixels: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into an upright RGB uint8 numpy array.

    EXIF orientation is applied so callers always receive the image the way
    it is meant to be displayed.

    Args:
        image_bytes: Raw file bytes (any format Pillow supports).
        max_pixels: Upper bound on width * height.

    Returns:
        HxWx3 RGB uint8 numpy array.

    Raises:
        DecodeError: If the image cannot be decoded or exceeds ``max_pixels``.
    """
    if not image_bytes:
        raise DecodeError("Empty image payload")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height > max_pixels:
                raise DecodeError(f"Image has {width * height} pixels, limit is {max_pixels}")
            upright = ImageOps.exif_transpose(img)
            rgb = upright.convert("RGB")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Cannot decode image: {exc}") from exc

    logger.debug("Decoded %sx%s image", rgb.width, rgb.height)
    return np.array(rgb, dtype=np.uint8)


def validate_image(image: object) -> NDArray[np.uint8]:
    """Check that ``image`` is a usable HxWx3 or HxWx4 uint8 array.

    Raises:
        DecodeError: If the array has the wrong type, dtype or shape.
    """
    if not isinstance(image, np.ndarray):
        raise DecodeError(f"Expected a numpy array, got {type(image).__name__}")
    if image.dtype != np.uint8:
        raise DecodeError(f"Expected uint8 pixels, got {image.dtype}")
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise DecodeError(f"Expected an HxWx3 or HxWx4 array, got shape {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise DecodeError("Image has no pixels")
    return image


def preprocess_for_detection(image: NDArray[np.uint8], max_side: int) -> NDArray[np.float32]:
    """Prepare an RGB image for the RetinaFace model.

    The image is downscaled so its longer side is at most ``max_side``.
    Detector output is normalized, so the scale factor is not needed later.

    Returns:
        Float32 tensor of shape (1, 3, H, W), BGR, mean-subtracted.
    """
    rgb = image[:, :, :3]
    height, width = rgb.shape[:2]
    longest = max(height, width)
    if longest > max_side:
        scale = max_side / longest
        resized = Image.fromarray(rgb).resize(
            (max(1, round(width * scale)), max(1, round(height * scale))),
            Image.Resampling.BILINEAR,
        )
        rgb = np.asarray(resized)

    bgr = rgb[:, :, ::-1].astype(np.float32)
    bgr -= np.array(DETECTION_MEAN_BGR, dtype=np.float32)
    return np.ascontiguousarray(bgr.transpose(2, 0, 1)[np.newaxis, ...])
