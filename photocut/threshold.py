from __future__ import annotations

import numpy as np

from .composite import find_opaque_bounds, require_rgba
from .config import MAX_FEATHER, SHADOW_BOTTOM_PERCENT_RANGE


def remove_near_white(image: np.ndarray, threshold: int, feather: int) -> None:
    """
    Rule-based near-white keying, in place.

    Per pixel w = min(R, G, B):
      - w >= T          -> alpha = 0
      - w >= T - F      -> alpha *= clamp((T - w) / F, 0, 1)   (only when F > 0)
      - otherwise       -> alpha unchanged
    """
    require_rgba(image)
    t = int(threshold)
    f = min(max(int(feather), 0), MAX_FEATHER)

    w = image[..., :3].min(axis=2).astype(np.int32)
    alpha = image[..., 3]

    if f > 0:
        soft = (w < t) & (w >= t - f)
        if soft.any():
            factor = np.clip((t - w[soft]) / float(f), 0.0, 1.0)
            alpha[soft] = np.round(alpha[soft] * factor).astype(np.uint8)

    alpha[w >= t] = 0


def suppress_bottom_white_shadow(
    image: np.ndarray,
    white_threshold: int,
    max_alpha: int,
    bottom_percent: int,
) -> None:
    """
    Drop faint near-white pixels (ground shadow / reflection residue) from the
    bottom band of the subject, in place.
    """
    require_rgba(image)
    bounds = find_opaque_bounds(image)
    if bounds.is_empty:
        return

    lo, hi = SHADOW_BOTTOM_PERCENT_RANGE
    percent = min(max(int(bottom_percent), lo), hi)
    top = max(bounds.y, bounds.bottom - (bounds.height * percent) // 100)

    band = image[top : bounds.bottom, bounds.x : bounds.right]
    a = band[..., 3]
    faint = (a > 0) & (a <= int(max_alpha))
    white = (band[..., :3] >= int(white_threshold)).all(axis=2)
    a[faint & white] = 0
