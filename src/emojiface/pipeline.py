"""Photo pipeline: detect faces, then composite overlays.

``PhotoSession`` adds the one ordering guarantee of the pipeline: when a new
photo is selected, a result still in flight for an older photo is dropped.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from emojiface.ml.preprocessing import validate_image
from emojiface.render.compositor import DEFAULT_PADDING, composite

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from emojiface.ml.face_detector import FaceDetector, FaceObservation
    from emojiface.ml.inference import InferencePool
    from emojiface.render.glyphs import GlyphProvider

logger = logging.getLogger(__name__)


class PhotoSuperseded(Exception):
    """A newer photo was selected before this result was ready."""


def face_count_label(count: int) -> str:
    return f"{count} face{'' if count == 1 else 's'}"


@dataclass(frozen=True)
class PhotoResult:
    """Composited photo plus the faces found in it."""

    image: NDArray[np.uint8]
    faces: tuple[FaceObservation, ...]

    @property
    def face_count(self) -> int:
        return len(self.faces)

    @property
    def label(self) -> str:
        return face_count_label(self.face_count)


class PhotoPipeline:
    """Runs detection and compositing for one photo at a time on the worker pool."""

    def __init__(
        self,
        detector: FaceDetector,
        glyph_provider: GlyphProvider,
        pool: InferencePool,
        padding: float = DEFAULT_PADDING,
    ) -> None:
        self._detector = detector
        self._glyph_provider = glyph_provider
        self._pool = pool
        self._padding = padding

    @property
    def detector(self) -> FaceDetector:
        return self._detector

    async def detect(self, image: NDArray[np.uint8]) -> list[FaceObservation]:
        """Detect faces; an unavailable detector counts as zero faces."""
        faces = await self._pool.run(self._detector.detect, validate_image(image))
        if faces is None:
            logger.warning("Detection unavailable (%s); treating as zero faces", self._detector.model_name)
            return []
        return faces

    async def render(self, image: NDArray[np.uint8], faces: list[FaceObservation]) -> NDArray[np.uint8]:
        return await self._pool.run(composite, image, faces, self._glyph_provider, self._padding)

    async def process(self, image: NDArray[np.uint8]) -> PhotoResult:
        """Detect faces in ``image`` and draw a glyph over each of them."""
        faces = await self.detect(image)
        rendered = await self.render(image, faces)
        logger.info("Processed photo: %s", face_count_label(len(faces)))
        return PhotoResult(image=rendered, faces=tuple(faces))


class PhotoSession:
    """Tracks the most recently selected photo; older results are discarded."""

    def __init__(self, pipeline: PhotoPipeline) -> None:
        self._pipeline = pipeline
        self._generation = 0
        self._latest: PhotoResult | None = None

    @property
    def latest(self) -> PhotoResult | None:
        """Result for the most recently selected photo, once it is ready."""
        return self._latest

    async def select(self, image: NDArray[np.uint8]) -> PhotoResult:
        """Process a newly selected photo.

        Raises:
            PhotoSuperseded: If another photo was selected while this one was processing.
        """
        self._generation += 1
        generation = self._generation
        self._latest = None

        result = await self._pipeline.process(image)
        if generation != self._generation:
            logger.info("Discarding result for superseded photo (generation %d < %d)", generation, self._generation)
            raise PhotoSuperseded(f"Photo {generation} was superseded by photo {self._generation}")

        self._latest = result
        return result


class SessionRegistry:
    """Least-recently-used map from client session ids to ``PhotoSession``s."""

    def __init__(self, pipeline: PhotoPipeline, max_sessions: int) -> None:
        self._pipeline = pipeline
        self._max_sessions = max_sessions
        self._sessions: OrderedDict[str, PhotoSession] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, session_id: str) -> PhotoSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = PhotoSession(self._pipeline)
                self._sessions[session_id] = session
            self._sessions.move_to_end(session_id)
            while len(self._sessions) > self._max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.debug("Evicted photo session %s", evicted)
            return session

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
