"""
Centralized configuration constants for the cutout pipeline.

Ground rules:
- Images are straight-alpha RGBA uint8 (H, W, 4)
- Masks are uint8 (H, W) in [0, 255]
- Every stage is a full sequential pass; nothing is cached between frames
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Tuple

Normalization = Literal["symmetric", "mean_std"]

IMAGENET_MEAN = [0.485, 0.456, 0.406]
IMAGENET_STD = [0.229, 0.224, 0.225]

# Estimator metadata below this size is treated as bogus (dynamic axes exported as 1, etc).
MIN_INPUT_SIZE = 64

# Raw matte values outside this band are treated as logits.
LOGIT_LOW = -0.05
LOGIT_HIGH = 1.05
RANGE_FLOOR = 1e-6

SNAP_LOW = 0.02
SNAP_HIGH = 0.98

# Binary refinement
BINARIZE_THRESHOLD = 30
CORNER_INVERT_THRESHOLD = 128
ERODE_ITERATIONS = 1

# Levels + gamma applied after upsampling.
EDGE_SNAP_LO = 55
EDGE_SNAP_HI = 205
EDGE_SNAP_GAMMA = 0.75

FEATHER_NOOP_RADIUS = 0.01

# Dehalo assumes the product was shot on a white backdrop.
DEHALO_STRENGTH = 0.85
DEHALO_MIN_ALPHA = 0.001

# Threshold keying
MAX_FEATHER = 80
AGGRESSIVE_THRESHOLD_DELTA = 10
AGGRESSIVE_FEATHER_DELTA = 6

# Canvas composition
OPAQUE_ALPHA_FLOOR = 10
MAX_PADDING_PERCENT = 0.45
MIN_INNER_SIZE = 200

# Ground shadow suppression
SHADOW_BOTTOM_PERCENT_RANGE = (5, 60)

# Watermark overlay
OVERLAY_MASK_FLOOR = 10
OVERLAY_OUTLINE_OFFSET = 2
OVERLAY_MIN_FONT_SIZE = 26
OVERLAY_FONT_DIVISOR = 6.5
OVERLAY_STEP_X_FACTOR = 1.25
OVERLAY_STEP_Y_FACTOR = 1.65
OVERLAY_MIN_STEP_X = 140
OVERLAY_MIN_STEP_Y = 90
OVERLAY_MIN_EXPAND = 6
OVERLAY_EXPAND_DIVISOR = 80
OVERLAY_FONT_CANDIDATES = (
    "segoeuib.ttf",
    "DejaVuSans-Bold.ttf",
    "Arial Bold.ttf",
    "arialbd.ttf",
    "LiberationSans-Bold.ttf",
)

TRIAL_WATERMARK_TEXT = "TRIAL VERSION"
TRIAL_WATERMARK_OPACITY_PERCENT = 4

MODELS_DIR_ENV = "PHOTOCUT_MODELS_DIR"
DEFAULT_MODELS_DIR = Path.home() / ".photocut" / "models"


@dataclass(frozen=True)
class MatteFamily:
    """Post-processing constants for one estimator family."""

    name: str
    model_filename: str
    default_input_size: int
    normalization: Normalization
    contrast_lo: float
    contrast_hi: float
    feather_divisor: float
    feather_cap: float
    dehalo: bool
    exact_output_names: Tuple[str, ...] = ()
    preferred_output_tokens: Tuple[str, ...] = ()


# NOTE: the contrast and feather constants differ between the two families on purpose;
# both were tuned against their own model outputs. Do not unify them.
MODNET = MatteFamily(
    name="modnet",
    model_filename="modnet.onnx",
    default_input_size=512,
    normalization="symmetric",
    contrast_lo=0.20,
    contrast_hi=0.90,
    feather_divisor=8.0,
    feather_cap=6.0,
    dehalo=False,
    preferred_output_tokens=("pha", "alpha", "mask"),
)

# Many U2Net exports emit side outputs d0..d6; d0 is the fused map.
U2NET = MatteFamily(
    name="u2net",
    model_filename="u2net.onnx",
    default_input_size=320,
    normalization="mean_std",
    contrast_lo=0.18,
    contrast_hi=0.90,
    feather_divisor=10.0,
    feather_cap=8.0,
    dehalo=True,
    exact_output_names=("d0",),
    preferred_output_tokens=("mask", "alpha", "output"),
)

FAMILIES = {MODNET.name: MODNET, U2NET.name: U2NET}


def models_dir() -> Path:
    env = os.environ.get(MODELS_DIR_ENV)
    if env:
        return Path(env).expanduser()
    return DEFAULT_MODELS_DIR
