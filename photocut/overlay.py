from __future__ import annotations

from functools import lru_cache
from typing import Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from .composite import OpaqueBounds, expand_and_clamp, require_rgba, to_pil
from .config import (
    OVERLAY_EXPAND_DIVISOR,
    OVERLAY_FONT_CANDIDATES,
    OVERLAY_FONT_DIVISOR,
    OVERLAY_MASK_FLOOR,
    OVERLAY_MIN_EXPAND,
    OVERLAY_MIN_FONT_SIZE,
    OVERLAY_MIN_STEP_X,
    OVERLAY_MIN_STEP_Y,
    OVERLAY_OUTLINE_OFFSET,
    OVERLAY_STEP_X_FACTOR,
    OVERLAY_STEP_Y_FACTOR,
)


@lru_cache(maxsize=32)
def load_overlay_font(size: int) -> ImageFont.ImageFont:
    """First bold TrueType face found on the system, else Pillow's scalable default."""
    for name in OVERLAY_FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, size=size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def measure_text(draw: ImageDraw.ImageDraw, text: str, font) -> Tuple[int, int]:
    bb = draw.textbbox((0, 0), text, font=font)
    return int(bb[2] - bb[0]), int(bb[3] - bb[1])


def _tile_text(overlay: Image.Image, bounds: OpaqueBounds, text: str, alpha: int) -> None:
    """
    Brick pattern over `bounds` (one step of overscan on every side). Odd rows are
    shifted by half a step. Each instance is a dark copy offset by 2px under a light one.
    """
    font_size = max(OVERLAY_MIN_FONT_SIZE, min(bounds.width, bounds.height) / OVERLAY_FONT_DIVISOR)
    font = load_overlay_font(int(round(font_size)))

    draw = ImageDraw.Draw(overlay)
    text_w, text_h = measure_text(draw, text, font)
    step_x = max(text_w * OVERLAY_STEP_X_FACTOR, OVERLAY_MIN_STEP_X)
    step_y = max(text_h * OVERLAY_STEP_Y_FACTOR, OVERLAY_MIN_STEP_Y)

    dark = (0, 0, 0, alpha)
    light = (255, 255, 255, alpha)
    off = OVERLAY_OUTLINE_OFFSET

    row = 0
    y = bounds.y - step_y
    while y <= bounds.bottom + step_y:
        x_offset = 0.0 if row % 2 == 0 else step_x / 2.0
        x = bounds.x - step_x
        while x <= bounds.right + step_x:
            px = x + x_offset
            draw.text((px + off, y + off), text, font=font, fill=dark)
            draw.text((px, y), text, font=font, fill=light)
            x += step_x
        y += step_y
        row += 1


def build_masked_overlay(
    shape: Tuple[int, int],
    alpha_mask: np.ndarray,
    bounds: OpaqueBounds,
    text: str,
    opacity_percent: int,
) -> np.ndarray:
    """
    Tiled text overlay (RGBA uint8, same size as the target) clipped to the subject:
      - outside the expanded bounds -> alpha 0
      - mask < 10                   -> alpha 0
      - elsewhere                   -> alpha * mask / 255
    """
    h, w = shape
    if alpha_mask.shape != (h, w):
        raise ValueError(f"Mask shape {alpha_mask.shape} does not match image {(h, w)}")

    pct = min(max(int(opacity_percent), 1), 100)
    alpha = int(round(255 * (pct / 100.0)))

    if bounds.is_empty:
        bounds = OpaqueBounds(0, 0, w, h)
    bounds = expand_and_clamp(bounds, w, h, max(OVERLAY_MIN_EXPAND, w // OVERLAY_EXPAND_DIVISOR))

    overlay = Image.new("RGBA", (w, h), (0, 0, 0, 0))
    _tile_text(overlay, bounds, text, alpha)
    out = np.array(overlay, dtype=np.uint8)

    inside = np.zeros((h, w), dtype=bool)
    inside[bounds.y : bounds.bottom, bounds.x : bounds.right] = True
    keep = inside & (alpha_mask >= OVERLAY_MASK_FLOOR)

    a = out[..., 3].astype(np.uint16) * alpha_mask.astype(np.uint16) // 255
    a[~keep] = 0
    out[..., 3] = a.astype(np.uint8)
    return out


def apply_masked_overlay(
    image: np.ndarray,
    alpha_mask: np.ndarray,
    bounds: OpaqueBounds,
    text: str,
    opacity_percent: int,
) -> None:
    """
    Composite a subject-constrained text watermark onto `image`, in place.
    Blank text is a no-op.
    """
    require_rgba(image)
    if not text or not text.strip():
        return

    overlay = build_masked_overlay(image.shape[:2], alpha_mask, bounds, text, opacity_percent)
    image[...] = np.array(Image.alpha_composite(to_pil(image), to_pil(overlay)), dtype=np.uint8)
