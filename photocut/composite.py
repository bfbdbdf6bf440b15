from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image

from .config import (
    DEHALO_MIN_ALPHA,
    DEHALO_STRENGTH,
    MAX_PADDING_PERCENT,
    MIN_INNER_SIZE,
    OPAQUE_ALPHA_FLOOR,
)

logger = logging.getLogger(__name__)

WHITE = (255, 255, 255, 255)


@dataclass(frozen=True)
class OpaqueBounds:
    """Axis-aligned pixel rectangle. width == 0 is the "nothing found" sentinel."""

    x: int
    y: int
    width: int
    height: int

    @classmethod
    def empty(cls) -> "OpaqueBounds":
        return cls(0, 0, 0, 0)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height


def require_rgba(image: np.ndarray) -> None:
    if image.ndim != 3 or image.shape[2] != 4:
        raise ValueError(f"Expected RGBA image (H,W,4), got shape={image.shape}")
    if image.dtype != np.uint8:
        raise ValueError(f"Expected uint8 image, got dtype={image.dtype}")


def to_pil(arr: np.ndarray) -> Image.Image:
    return Image.fromarray(np.ascontiguousarray(arr))


def find_opaque_bounds(image: np.ndarray, floor: int = OPAQUE_ALPHA_FLOOR) -> OpaqueBounds:
    """
    Tightest rectangle containing every pixel with alpha > floor.
    """
    require_rgba(image)
    opaque = image[..., 3] > floor
    rows = np.flatnonzero(opaque.any(axis=1))
    if rows.size == 0:
        return OpaqueBounds.empty()
    cols = np.flatnonzero(opaque.any(axis=0))
    y0, y1 = int(rows[0]), int(rows[-1])
    x0, x1 = int(cols[0]), int(cols[-1])
    return OpaqueBounds(x=x0, y=y0, width=x1 - x0 + 1, height=y1 - y0 + 1)


def apply_alpha_mask(image: np.ndarray, mask: np.ndarray, dehalo: bool = False) -> None:
    """
    Multiply the image alpha by a full-resolution mask, in place.

    With dehalo, semi-transparent pixels get their colour un-blended from the white
    backdrop they were shot on: c' = (c - (1 - a) * 255) / a, mixed 85/15 with the
    original colour. Fully opaque and fully transparent pixels keep their colour.
    """
    require_rgba(image)
    if mask.shape != image.shape[:2]:
        raise ValueError(f"Mask shape {mask.shape} does not match image {image.shape[:2]}")

    existing = image[..., 3].astype(np.float64)
    new_alpha = np.clip(np.round(existing * mask.astype(np.float64) / 255.0), 0, 255).astype(np.uint8)

    if dehalo:
        semi = (new_alpha > 0) & (new_alpha < 255)
        if semi.any():
            a = new_alpha[semi].astype(np.float32)[:, None] / 255.0
            rgb = image[..., :3][semi].astype(np.float32)
            inv = (1.0 - a) * 255.0
            unblended = np.clip((rgb - inv) / np.maximum(DEHALO_MIN_ALPHA, a), 0.0, 255.0)
            mixed = rgb * (1.0 - DEHALO_STRENGTH) + unblended * DEHALO_STRENGTH
            image[..., :3][semi] = np.clip(np.round(mixed), 0, 255).astype(np.uint8)

    image[..., 3] = new_alpha


def make_square_centered(image: np.ndarray, square_size: int, padding_percent: float) -> np.ndarray:
    """
    Crop to the opaque bounds, fit into the padded inner box and centre on a
    transparent square canvas. Returns a new array.

    An image with no opaque pixels yields an opaque white square.
    """
    require_rgba(image)
    size = int(square_size)
    if size <= 0:
        raise ValueError(f"Invalid square size: {square_size}")

    bounds = find_opaque_bounds(image)
    if bounds.is_empty:
        logger.warning("No opaque pixels found; substituting a white %dx%d canvas", size, size)
        return np.full((size, size, 4), 255, dtype=np.uint8)

    cropped = image[bounds.y : bounds.bottom, bounds.x : bounds.right]

    pad = min(max(float(padding_percent), 0.0), MAX_PADDING_PERCENT)
    target = int(size * (1.0 - pad))
    if target < MIN_INNER_SIZE:
        target = MIN_INNER_SIZE

    scale = min(target / bounds.width, target / bounds.height)
    new_w = max(1, int(bounds.width * scale))
    new_h = max(1, int(bounds.height * scale))
    resized = to_pil(cropped).resize((new_w, new_h), Image.Resampling.BICUBIC)

    canvas = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    # paste clips when the minimum inner size exceeds a tiny canvas
    canvas.paste(resized, ((size - new_w) // 2, (size - new_h) // 2))
    return np.array(canvas, dtype=np.uint8)


def composite_on_white(image: np.ndarray) -> np.ndarray:
    """Straight-alpha "over" onto an opaque white canvas of the same size."""
    require_rgba(image)
    h, w = image.shape[:2]
    white = Image.new("RGBA", (w, h), WHITE)
    return np.array(Image.alpha_composite(white, to_pil(image)), dtype=np.uint8)


def force_pure_white_outside_bounds(image: np.ndarray, bounds: OpaqueBounds) -> None:
    """Every pixel outside `bounds` becomes opaque #FFFFFF, in place."""
    require_rgba(image)
    if bounds.is_empty:
        image[...] = 255
        return

    inside = np.zeros(image.shape[:2], dtype=bool)
    inside[bounds.y : bounds.bottom, bounds.x : bounds.right] = True
    image[~inside] = 255


def scale_bounds(bounds: OpaqueBounds, src_w: int, src_h: int, dst_w: int, dst_h: int) -> OpaqueBounds:
    if bounds.is_empty:
        return OpaqueBounds.empty()

    sx = dst_w / float(src_w)
    sy = dst_h / float(src_h)
    return OpaqueBounds(
        x=int(round(bounds.x * sx)),
        y=int(round(bounds.y * sy)),
        width=max(1, int(round(bounds.width * sx))),
        height=max(1, int(round(bounds.height * sy))),
    )


def expand_and_clamp(bounds: OpaqueBounds, max_w: int, max_h: int, expand_px: int) -> OpaqueBounds:
    x = max(0, bounds.x - expand_px)
    y = max(0, bounds.y - expand_px)
    right = min(max_w, bounds.right + expand_px)
    bottom = min(max_h, bounds.bottom + expand_px)
    return OpaqueBounds(x=x, y=y, width=max(1, right - x), height=max(1, bottom - y))


def resize_to_fit(arr: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Uniformly scale an RGBA image or single-channel mask to fit inside (width, height).
    Upscales when the box is larger.
    """
    h, w = arr.shape[:2]
    scale = min(width / float(w), height / float(h))
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    if (new_w, new_h) == (w, h):
        return arr.copy()
    return np.array(to_pil(arr).resize((new_w, new_h), Image.Resampling.BICUBIC), dtype=np.uint8)
