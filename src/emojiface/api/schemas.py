"""Pydantic request/response schemas for the EmojiFace API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Point(BaseModel):
    x: float
    y: float


class Anchor(BaseModel):
    """Resolved overlay anchor in pixel space (top-left origin)."""

    x: float
    y: float
    angle: float = Field(description="Clockwise rotation in degrees, 0 = upright")


class DetectedFace(BaseModel):
    """A single detected face with bounding box, landmarks, and overlay anchor."""

    x: float = Field(description="Relative bounding box x position (0.0-1.0), bottom-left origin")
    y: float = Field(description="Relative bounding box y position (0.0-1.0), bottom-left origin")
    width: float = Field(description="Relative bounding box width (0.0-1.0)")
    height: float = Field(description="Relative bounding box height (0.0-1.0)")
    score: float = Field(description="Detection confidence (0.0-1.0)")
    landmarks: dict[str, list[Point]] = Field(description="Normalized landmark groups by region name")
    anchor: Anchor | None = Field(description="Overlay anchor, null when no landmarks are usable")


class DetectFacesResponse(BaseModel):
    """Response for the face detection endpoint."""

    face_count: int
    label: str
    image_width: int
    image_height: int
    faces: list[DetectedFace]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available detection model."""

    name: str
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
