from __future__ import annotations

import logging

import numpy as np

from .composite import apply_alpha_mask, require_rgba
from .config import ERODE_ITERATIONS, MatteFamily
from .errors import InferenceError, MatteOutcome
from .model import MatteEstimator
from .normalize import normalize_raw_matte
from .postprocess import edge_snap, feather_and_upsample, feather_radius, refine_matte_in_place

logger = logging.getLogger(__name__)


def apply_neural_matte(
    image: np.ndarray,
    estimator: MatteEstimator,
    family: MatteFamily,
    feather: int,
) -> MatteOutcome:
    """
    Neural matte path, mutating the image alpha in place:
      1) estimate at model resolution
      2) normalize raw output to a byte matte
      3) binary refinement (largest component, holes, erosion)
      4) feather + upsample to full resolution
      5) edge snap
      6) apply alpha (+ dehalo for families that need it)

    Estimator failures leave the image untouched and come back as a failed outcome.
    """
    require_rgba(image)
    h, w = image.shape[:2]

    try:
        raw = estimator.estimate(image, estimator.input_width, estimator.input_height, family.normalization)
        plane = estimator.read_matte(raw)
    except InferenceError as e:
        logger.warning("%s estimator failed: %s", family.name, e)
        return MatteOutcome.failure(family.name, str(e))

    matte = normalize_raw_matte(plane, family)
    refine_matte_in_place(matte, ERODE_ITERATIONS)

    radius = feather_radius(feather, family)
    mask = feather_and_upsample(matte, radius, (w, h))
    mask = edge_snap(mask)

    apply_alpha_mask(image, mask, dehalo=family.dehalo)
    logger.debug("Applied %s matte (feather radius %.2f) to %dx%d image", family.name, radius, w, h)
    return MatteOutcome.success(family.name)
