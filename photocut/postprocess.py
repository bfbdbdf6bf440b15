from __future__ import annotations

import logging
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, ImageFilter

from .config import (
    BINARIZE_THRESHOLD,
    CORNER_INVERT_THRESHOLD,
    EDGE_SNAP_GAMMA,
    EDGE_SNAP_HI,
    EDGE_SNAP_LO,
    ERODE_ITERATIONS,
    FEATHER_NOOP_RADIUS,
    MatteFamily,
)

logger = logging.getLogger(__name__)


def _require_2d(arr: np.ndarray, what: str = "mask") -> None:
    if arr.ndim != 2:
        raise ValueError(f"Expected 2D {what}, got shape={arr.shape}")


def binarize(matte: np.ndarray, threshold: int = BINARIZE_THRESHOLD) -> np.ndarray:
    _require_2d(matte, "matte")
    return matte >= threshold


def auto_invert(matte: np.ndarray, binary: np.ndarray) -> bool:
    """
    Invert matte and binary mask in place when the corners look like foreground.

    Approximation: some estimators emit inverted polarity, and a subject that fills
    all four corners is indistinguishable from that case. Returns True if inverted.
    """
    _require_2d(matte, "matte")
    h, w = matte.shape
    corners = int(matte[0, 0]) + int(matte[0, w - 1]) + int(matte[h - 1, 0]) + int(matte[h - 1, w - 1])
    if corners // 4 <= CORNER_INVERT_THRESHOLD:
        return False

    logger.debug("Corner average %d > %d; inverting matte polarity", corners // 4, CORNER_INVERT_THRESHOLD)
    np.logical_not(binary, out=binary)
    np.subtract(255, matte, out=matte)
    return True


def keep_largest_component(binary: np.ndarray) -> np.ndarray:
    """
    Keep only the largest 4-connected foreground component; empty input stays empty.
    """
    _require_2d(binary)
    num_labels, labels, stats, _centroids = cv2.connectedComponentsWithStats(
        binary.astype(np.uint8), connectivity=4
    )
    if num_labels <= 1:
        return np.zeros(binary.shape, dtype=bool)

    # label 0 is background
    areas = stats[1:, cv2.CC_STAT_AREA]
    keep_label = int(np.argmax(areas) + 1)
    return labels == keep_label


def fill_holes(binary: np.ndarray) -> np.ndarray:
    """
    Promote background regions that cannot be reached from the image border
    (4-connected, through background only) to foreground.
    """
    _require_2d(binary)
    background = ~binary
    _num, labels = cv2.connectedComponents(background.astype(np.uint8), connectivity=4)

    border = np.concatenate([labels[0, :], labels[-1, :], labels[:, 0], labels[:, -1]])
    border_bg = np.concatenate([background[0, :], background[-1, :], background[:, 0], background[:, -1]])
    reachable = np.unique(border[border_bg])

    holes = background & ~np.isin(labels, reachable)
    return binary | holes


def erode(binary: np.ndarray, iterations: int = ERODE_ITERATIONS) -> np.ndarray:
    """
    8-neighbour erosion of the interior. A pixel survives only if it and all eight
    neighbours were set before the pass. The outermost 1px ring is left as-is.
    """
    _require_2d(binary)
    out = binary.copy()
    h, w = out.shape
    if h < 3 or w < 3:
        return out

    for _ in range(int(iterations)):
        src = out.copy()
        core = src[1:-1, 1:-1].copy()
        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                if dy == 0 and dx == 0:
                    continue
                core &= src[1 + dy : h - 1 + dy, 1 + dx : w - 1 + dx]
        out[1:-1, 1:-1] = core
    return out


def refine_matte_in_place(matte: np.ndarray, erode_iterations: int = ERODE_ITERATIONS) -> np.ndarray:
    """
    Binary cleanup of a model-resolution byte matte:
      1) binarize at 30
      2) auto-invert on bright corners
      3) keep largest component
      4) fill enclosed holes
      5) erode
      6) zero every matte pixel outside the final foreground

    Surviving pixels keep their continuous value. Returns the final binary mask.
    """
    if matte.dtype != np.uint8:
        raise ValueError(f"Expected uint8 matte, got dtype={matte.dtype}")

    binary = binarize(matte)
    auto_invert(matte, binary)
    binary = keep_largest_component(binary)
    binary = fill_holes(binary)
    binary = erode(binary, erode_iterations)

    matte[~binary] = 0
    return binary


def edge_snap(
    alpha: np.ndarray,
    lo: int = EDGE_SNAP_LO,
    hi: int = EDGE_SNAP_HI,
    gamma: float = EDGE_SNAP_GAMMA,
) -> np.ndarray:
    """
    Levels + gamma: below lo -> 0, above hi -> 255, a^gamma in between.
    gamma < 1 thickens the edge, gamma > 1 softens it.
    """
    _require_2d(alpha, "alpha")
    if hi <= lo:
        hi = min(255, lo + 1)

    a = np.clip((alpha.astype(np.float64) - lo) / float(hi - lo), 0.0, 1.0)
    if gamma != 1.0:
        a = np.power(a, gamma)
    return np.round(a * 255.0).astype(np.uint8)


def feather_radius(feather: float, family: MatteFamily) -> float:
    return min(max(float(feather) / family.feather_divisor, 0.0), family.feather_cap)


def feather_and_upsample(matte: np.ndarray, radius: float, size: Tuple[int, int]) -> np.ndarray:
    """
    Gaussian-soften the model-resolution matte, then resample it to `size` (w, h).
    """
    _require_2d(matte, "matte")
    img = Image.fromarray(np.ascontiguousarray(matte.astype(np.uint8, copy=False)))
    if radius > FEATHER_NOOP_RADIUS:
        img = img.filter(ImageFilter.GaussianBlur(radius))
    if img.size != tuple(size):
        img = img.resize(tuple(size), Image.Resampling.BICUBIC)
    return np.array(img, dtype=np.uint8)
