"""API route definitions."""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Header, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response
from PIL import Image

from emojiface.api.middleware import get_settings_from_request, read_upload, verify_api_key
from emojiface.api.schemas import (
    Anchor,
    DetectedFace,
    DetectFacesResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    Point,
)
from emojiface.ml.model_manager import MODEL_REGISTRY
from emojiface.ml.preprocessing import DecodeError, decode_image
from emojiface.pipeline import PhotoSuperseded, face_count_label
from emojiface.render.anchor import resolve_anchor

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from emojiface.ml.face_detector import FaceObservation
    from emojiface.ml.inference import InferencePool
    from emojiface.ml.model_manager import ModelManager
    from emojiface.pipeline import PhotoPipeline, PhotoResult, SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_IMAGE_ERRORS = {
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_422_UNPROCESSABLE_CONTENT: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_pipeline(request: Request) -> PhotoPipeline:
    pipeline: PhotoPipeline = request.app.state.pipeline
    return pipeline


def _get_sessions(request: Request) -> SessionRegistry:
    sessions: SessionRegistry = request.app.state.sessions
    return sessions


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def _decode_upload(request: Request, file: UploadFile) -> NDArray[np.uint8]:
    settings = get_settings_from_request(request)
    payload = await read_upload(file, settings.max_file_size)
    return decode_image(payload, settings.max_image_pixels)


def _face_to_schema(face: FaceObservation, image_size: tuple[int, int]) -> DetectedFace:
    box = face.bounding_box
    landmarks = {
        str(region): [Point(x=p.x, y=p.y) for p in points]
        for region, points in (face.landmarks or {}).items()
        if points
    }
    resolved = resolve_anchor(face.landmarks, image_size)
    anchor = None
    if resolved.center is not None:
        anchor = Anchor(x=resolved.center.x, y=resolved.center.y, angle=resolved.angle_degrees or 0.0)
    return DetectedFace(
        x=box.x,
        y=box.y,
        width=box.width,
        height=box.height,
        score=face.confidence,
        landmarks=landmarks,
        anchor=anchor,
    )


def _encode_png(result: PhotoResult) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(result.image).save(buffer, format="PNG")
    return buffer.getvalue()


@router.post(
    "/detect-faces",
    response_model=DetectFacesResponse,
    responses=_IMAGE_ERRORS,
    summary="Detect faces in an image",
)
async def detect_faces(request: Request, file: UploadFile) -> DetectFacesResponse | JSONResponse:
    """Detect faces and return their boxes, landmarks, and overlay anchors."""
    try:
        image = await _decode_upload(request, file)
        faces = await _get_pipeline(request).detect(image)
    except DecodeError as exc:
        return _error(status.HTTP_422_UNPROCESSABLE_CONTENT, str(exc))
    except TimeoutError:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Server busy, try again later")

    height, width = image.shape[:2]
    return DetectFacesResponse(
        face_count=len(faces),
        label=face_count_label(len(faces)),
        image_width=width,
        image_height=height,
        faces=[_face_to_schema(face, (width, height)) for face in faces],
    )


@router.post(
    "/emojify",
    response_class=Response,
    responses={
        status.HTTP_200_OK: {"content": {"image/png": {}}},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        **_IMAGE_ERRORS,
    },
    summary="Cover every detected face with an emoji",
)
async def emojify(
    request: Request,
    file: UploadFile,
    x_session_id: Annotated[str | None, Header()] = None,
) -> Response:
    """Return the photo as PNG with a glyph over each face.

    With an X-Session-Id header, a newer upload for the same session makes
    this request fail with 409 instead of returning a stale photo.
    """
    try:
        image = await _decode_upload(request, file)
        if x_session_id is None:
            result = await _get_pipeline(request).process(image)
        else:
            result = await _get_sessions(request).get(x_session_id).select(image)
    except DecodeError as exc:
        return _error(status.HTTP_422_UNPROCESSABLE_CONTENT, str(exc))
    except TimeoutError:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Server busy, try again later")
    except PhotoSuperseded as exc:
        return _error(status.HTTP_409_CONFLICT, str(exc))

    return Response(
        content=_encode_png(result),
        media_type="image/png",
        headers={"X-Face-Count": str(result.face_count), "X-Face-Label": result.label},
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings_from_request(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=_get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available detection models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the known detection models and which one is active."""
    active = get_settings_from_request(request).face_detection_model
    return ModelsResponse(
        models=[
            ModelInfo(name=spec.name, status="active" if spec.name == active else "available", license=spec.license)
            for spec in MODEL_REGISTRY.values()
        ]
    )
