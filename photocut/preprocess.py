from __future__ import annotations

import cv2
import numpy as np

from .config import IMAGENET_MEAN, IMAGENET_STD, Normalization


def resize_exact(rgb: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Stretch to the estimator's fixed input size (no letterboxing; the matte is
    stretched back the same way).
    """
    h, w = rgb.shape[:2]
    if (w, h) == (width, height):
        return rgb
    shrinking = width * height < w * h
    return cv2.resize(rgb, (width, height), interpolation=cv2.INTER_AREA if shrinking else cv2.INTER_CUBIC)


def normalize(rgb: np.ndarray, normalization: Normalization) -> np.ndarray:
    """
    uint8 RGB (H, W, 3) -> float32 NCHW (1, 3, H, W).

    - symmetric: (v / 255 - 0.5) / 0.5, range [-1, 1]
    - mean_std:  ImageNet mean/std per channel
    """
    x = rgb.astype(np.float32) / 255.0
    if normalization == "symmetric":
        x = (x - 0.5) / 0.5
    elif normalization == "mean_std":
        mean = np.array(IMAGENET_MEAN, dtype=np.float32).reshape(1, 1, 3)
        std = np.array(IMAGENET_STD, dtype=np.float32).reshape(1, 1, 3)
        x = (x - mean) / std
    else:
        raise ValueError(f"Unknown normalization: {normalization!r}")
    x = np.transpose(x, (2, 0, 1))  # CHW
    return np.ascontiguousarray(x[None, ...], dtype=np.float32)  # NCHW


def prepare_input(image: np.ndarray, width: int, height: int, normalization: Normalization) -> np.ndarray:
    """
    RGB or RGBA uint8 image -> estimator input tensor. Alpha is ignored.
    """
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ValueError(f"Expected RGB/RGBA image (H,W,3|4), got shape={image.shape}")
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid input size: {(width, height)}")
    rgb = np.ascontiguousarray(image[..., :3])
    return normalize(resize_exact(rgb, width, height), normalization)
