"""Glyph providers: transparent RGBA images drawn over each face."""

from __future__ import annotations

import logging
import random
import threading
from functools import lru_cache
from typing import TYPE_CHECKING, Protocol

from PIL import Image, ImageDraw, ImageFont

if TYPE_CHECKING:
    from collections.abc import Sequence

    from emojiface.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_EMOJI: tuple[str, ...] = ("🙂", "😀", "😊", "😉", "😍", "😎", "🤓", "🧐", "🤩")

# Bitmap emoji fonts such as Noto Color Emoji only ship a 109px strike.
EMOJI_RENDER_SIZE = 109

_TRANSPARENT = (0, 0, 0, 0)


class GlyphProvider(Protocol):
    """Protocol for glyph sources."""

    def __call__(self, size: tuple[int, int]) -> Image.Image:
        """Return an RGBA glyph of exactly ``size`` (width, height) on a transparent background."""
        ...


def _fit_centered(glyph: Image.Image, size: tuple[int, int]) -> Image.Image:
    """Scale a square glyph to the largest square that fits ``size`` and center it."""
    width, height = size
    side = max(1, min(width, height))
    scaled = glyph.resize((side, side), Image.Resampling.LANCZOS)
    canvas = Image.new("RGBA", size, _TRANSPARENT)
    canvas.paste(scaled, ((width - side) // 2, (height - side) // 2))
    return canvas


class EmojiGlyphProvider:
    """Renders a randomly chosen emoji with a color emoji font.

    The emoji fills ``scale`` of the glyph height, leaving a thin margin.
    """

    def __init__(
        self,
        font_path: str,
        symbols: Sequence[str] = DEFAULT_EMOJI,
        scale: float = 0.94,
        rng: random.Random | None = None,
    ) -> None:
        if not symbols:
            raise ValueError("At least one glyph symbol is required")
        self._font = ImageFont.truetype(font_path, EMOJI_RENDER_SIZE)
        self._symbols = tuple(symbols)
        self._scale = scale
        self._rng = rng or random.Random()  # noqa: S311
        # FreeType faces are not thread-safe; workers share this one.
        self._font_lock = threading.Lock()
        self._render = lru_cache(maxsize=len(self._symbols))(self._render_symbol)

    def __call__(self, size: tuple[int, int]) -> Image.Image:
        symbol = self._rng.choice(self._symbols)
        logger.debug("Rendering %r at %sx%s", symbol, *size)
        return _fit_centered(self._render(symbol), size)

    def _render_symbol(self, symbol: str) -> Image.Image:
        side = round(EMOJI_RENDER_SIZE / self._scale)
        canvas = Image.new("RGBA", (side, side), _TRANSPARENT)
        draw = ImageDraw.Draw(canvas)
        with self._font_lock:
            draw.text((side / 2, side / 2), symbol, font=self._font, anchor="mm", embedded_color=True)
        return canvas


class SmileyGlyphProvider:
    """Draws a simple smiley face with Pillow primitives; needs no fonts."""

    VARIANTS: tuple[str, ...] = ("smile", "grin", "wink")

    def __init__(self, scale: float = 0.94, rng: random.Random | None = None) -> None:
        self._scale = scale
        self._rng = rng or random.Random()  # noqa: S311

    def __call__(self, size: tuple[int, int]) -> Image.Image:
        variant = self._rng.choice(self.VARIANTS)
        return _fit_centered(_draw_smiley(variant, self._scale), size)


@lru_cache(maxsize=16)
def _draw_smiley(variant: str, scale: float, side: int = 256) -> Image.Image:
    canvas = Image.new("RGBA", (side, side), _TRANSPARENT)
    draw = ImageDraw.Draw(canvas)

    margin = side * (1.0 - scale) / 2.0
    outline = max(2, side // 40)
    draw.ellipse(
        (margin, margin, side - margin, side - margin),
        fill=(255, 204, 77, 255),
        outline=(0, 0, 0, 255),
        width=outline,
    )

    eye_y = side * 0.38
    eye_r = side * 0.06
    for eye_x in (side * 0.36, side * 0.64):
        if variant == "wink" and eye_x > side / 2:
            draw.line((eye_x - eye_r, eye_y, eye_x + eye_r, eye_y), fill=(0, 0, 0, 255), width=outline)
        else:
            draw.ellipse((eye_x - eye_r, eye_y - eye_r, eye_x + eye_r, eye_y + eye_r), fill=(0, 0, 0, 255))

    mouth = (side * 0.28, side * 0.40, side * 0.72, side * 0.76)
    if variant == "grin":
        draw.chord(mouth, start=0, end=180, fill=(255, 255, 255, 255), outline=(0, 0, 0, 255), width=outline)
    else:
        draw.arc(mouth, start=20, end=160, fill=(0, 0, 0, 255), width=outline * 2)
    return canvas


def build_glyph_provider(settings: Settings, rng: random.Random | None = None) -> GlyphProvider:
    """Emoji glyphs when a font is configured, drawn smileys otherwise."""
    if settings.glyph_font_path:
        logger.info("Using emoji font %s", settings.glyph_font_path)
        return EmojiGlyphProvider(
            settings.glyph_font_path,
            symbols=settings.glyph_symbols,
            scale=settings.glyph_scale,
            rng=rng,
        )
    logger.info("No emoji font configured (EMOJIFACE_GLYPH_FONT_PATH); drawing smileys")
    return SmileyGlyphProvider(scale=settings.glyph_scale, rng=rng)
