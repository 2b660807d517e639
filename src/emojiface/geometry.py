"""Geometry primitives shared by detection and rendering.

Coordinate convention:
    Normalized coordinates (detector output, ``BoundingBox`` and landmark
    points) have their origin at the bottom-left of the image with y
    increasing upward. Pixel coordinates (``Rect`` and anything drawn) have
    their origin at the top-left with y increasing downward. All conversions
    between the two go through ``to_pixel_point`` and ``BoundingBox.to_pixel_rect``,
    which apply the vertical flip.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

ImageSize = tuple[int, int]
"""(width, height) in pixels."""


@dataclass(frozen=True)
class Point2D:
    """A 2D point, normalized or in pixels depending on context."""

    x: float
    y: float


@dataclass(frozen=True)
class BoundingBox:
    """Normalized rectangle with a bottom-left origin."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ValueError(f"Bounding box size must be non-negative, got {self.width}x{self.height}")

    def to_pixel_rect(self, image_size: ImageSize) -> Rect:
        """Convert to a top-left-origin pixel rectangle."""
        width, height = image_size
        return Rect(
            x=self.x * width,
            y=(1.0 - (self.y + self.height)) * height,
            width=self.width * width,
            height=self.height * height,
        )


@dataclass(frozen=True)
class Rect:
    """Pixel-space rectangle with a top-left origin."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Point2D:
        return Point2D(self.x + self.width / 2.0, self.y + self.height / 2.0)

    def centered_on(self, point: Point2D) -> Rect:
        """Return a rectangle of the same size whose center is ``point``."""
        return Rect(
            x=point.x - self.width / 2.0,
            y=point.y - self.height / 2.0,
            width=self.width,
            height=self.height,
        )

    def inset_by(self, dx: float, dy: float) -> Rect:
        """Shrink by ``dx``/``dy`` on each side; negative values grow the rectangle."""
        return Rect(
            x=self.x + dx,
            y=self.y + dy,
            width=self.width - 2.0 * dx,
            height=self.height - 2.0 * dy,
        )


def to_pixel_point(point: Point2D, image_size: ImageSize) -> Point2D:
    """Convert a normalized bottom-left-origin point to top-left pixel space."""
    width, height = image_size
    return Point2D(point.x * width, (1.0 - point.y) * height)


def centroid(points: Sequence[Point2D]) -> Point2D:
    """Arithmetic mean of ``points``.

    Raises:
        ValueError: If ``points`` is empty.
    """
    if not points:
        raise ValueError("Cannot take the centroid of zero points")
    count = len(points)
    return Point2D(
        sum(p.x for p in points) / count,
        sum(p.y for p in points) / count,
    )


def rotation_to(origin: Point2D, target: Point2D) -> float:
    """Angle in degrees of the direction ``origin -> target`` in pixel space.

    Angles grow clockwise on screen: down 0, left 90, up 180, right 270. The result is
    normalized to [0, 360).
    """
    degrees_from_x = math.degrees(math.atan2(target.y - origin.y, target.x - origin.x))
    normalized = ((degrees_from_x - 90.0) + 360.0) % 360.0
    # -1e-15 % 360 rounds to 360.0
    return 0.0 if normalized >= 360.0 else normalized


def rotated_size(width: float, height: float, angle_degrees: float) -> tuple[int, int]:
    """Floored bounding size of a ``width`` x ``height`` rectangle rotated by ``angle_degrees``."""
    radians = math.radians(angle_degrees)
    cos_a = abs(math.cos(radians))
    sin_a = abs(math.sin(radians))
    new_width = width * cos_a + height * sin_a
    new_height = width * sin_a + height * cos_a
    # Tolerate float noise such as 19.999999999 for exact right angles.
    return max(1, math.floor(new_width + 1e-9)), max(1, math.floor(new_height + 1e-9))
