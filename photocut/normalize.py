from __future__ import annotations

import logging

import numpy as np

from .config import LOGIT_HIGH, LOGIT_LOW, RANGE_FLOOR, SNAP_HIGH, SNAP_LOW, MatteFamily

logger = logging.getLogger(__name__)


def sigmoid(v: np.ndarray) -> np.ndarray:
    # float64 keeps exp() from overflowing on large negative logits
    return 1.0 / (1.0 + np.exp(-v.astype(np.float64)))


def smoothstep(edge0: float, edge1: float, x):
    """Hermite t^2 (3 - 2t) with t = clamp((x - edge0) / (edge1 - edge0), 0, 1)."""
    t = np.clip((np.asarray(x, dtype=np.float64) - edge0) / max(RANGE_FLOOR, edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def normalize_raw_matte(raw: np.ndarray, family: MatteFamily) -> np.ndarray:
    """
    Turn a 2D raw estimator output into a byte matte.

    Steps:
      1) logits -> probabilities when the value range escapes [-0.05, 1.05]
      2) min-max normalize (range floored at 1e-6)
      3) family contrast curve (smoothstep lo..hi)
      4) snap < 0.02 to 0 and > 0.98 to 1
      5) quantize to uint8
    """
    if raw.ndim != 2:
        raise ValueError(f"Expected 2D matte, got shape={raw.shape}")

    v = raw.astype(np.float64)
    lo, hi = float(v.min()), float(v.max())
    if lo < LOGIT_LOW or hi > LOGIT_HIGH:
        logger.debug("Raw matte range [%.3f, %.3f] looks like logits; applying sigmoid", lo, hi)
        v = sigmoid(v)
        lo, hi = float(v.min()), float(v.max())

    v = (v - lo) / max(RANGE_FLOOR, hi - lo)

    a = smoothstep(family.contrast_lo, family.contrast_hi, v)
    a[a < SNAP_LOW] = 0.0
    a[a > SNAP_HIGH] = 1.0
    return np.round(a * 255.0).astype(np.uint8)
