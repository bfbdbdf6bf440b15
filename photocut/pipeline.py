from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from .composite import (
    OpaqueBounds,
    composite_on_white,
    find_opaque_bounds,
    force_pure_white_outside_bounds,
    make_square_centered,
    require_rgba,
    resize_to_fit,
    scale_bounds,
)
from .config import (
    AGGRESSIVE_FEATHER_DELTA,
    AGGRESSIVE_THRESHOLD_DELTA,
    MAX_FEATHER,
    MODNET,
    TRIAL_WATERMARK_OPACITY_PERCENT,
    TRIAL_WATERMARK_TEXT,
    U2NET,
    MatteFamily,
)
from .contracts import Entitlements, ExportPreset, MatteMethod, ProcessingOptions
from .errors import ConfigurationError, MatteOutcome, ProcessingCancelled
from .matting import apply_neural_matte
from .model import EstimatorHandle
from .overlay import apply_masked_overlay
from .threshold import remove_near_white, suppress_bottom_white_shadow

logger = logging.getLogger(__name__)

THRESHOLD_METHOD = "threshold"

METHOD_FAMILIES: Dict[MatteMethod, MatteFamily] = {
    MatteMethod.AI_MODNET_FAST: MODNET,
    MatteMethod.AI_U2NET_QUALITY: U2NET,
}


@dataclass(frozen=True)
class StageTimings:
    matte_s: float
    compose_s: float
    export_s: float
    total_s: float


@dataclass
class RenderedExport:
    preset: ExportPreset
    image: np.ndarray
    watermarked: bool


@dataclass
class ProcessedFrame:
    master: np.ndarray
    outcome: MatteOutcome
    bounds: OpaqueBounds
    timings: StageTimings
    exports: List[RenderedExport] = field(default_factory=list)


def threshold_params(options: ProcessingOptions) -> Tuple[int, int]:
    """(threshold, feather) for near-white keying; the aggressive method widens both."""
    threshold = int(options.white_threshold)
    feather = int(options.feather)
    if options.method == MatteMethod.AGGRESSIVE:
        threshold = max(0, threshold - AGGRESSIVE_THRESHOLD_DELTA)
        feather = min(MAX_FEATHER, feather + AGGRESSIVE_FEATHER_DELTA)
    return threshold, feather


def _try_neural(
    image: np.ndarray,
    family: MatteFamily,
    feather: int,
    handles: Mapping[str, EstimatorHandle],
) -> MatteOutcome:
    handle = handles.get(family.name)
    if handle is None:
        return MatteOutcome.failure(family.name, f"No {family.name} estimator configured")

    try:
        estimator = handle.acquire()
    except ConfigurationError as e:
        return MatteOutcome.failure(family.name, str(e))
    try:
        return apply_neural_matte(image, estimator, family, feather)
    finally:
        handle.release()


def apply_background(
    image: np.ndarray,
    options: ProcessingOptions,
    ai_allowed: bool,
    handles: Optional[Mapping[str, EstimatorHandle]] = None,
) -> MatteOutcome:
    """
    Remove the background of `image` in place with the configured method.

    AI methods fall back to threshold keying when AI is not allowed, no estimator is
    available, or inference fails. Estimator problems never reach the caller.
    """
    require_rgba(image)
    threshold, feather = threshold_params(options)

    if options.method.is_ai:
        family = METHOD_FAMILIES[options.method]
        if not ai_allowed:
            attempt = MatteOutcome.failure(family.name, "AI background removal is not allowed")
        else:
            attempt = _try_neural(image, family, feather, handles or {})
            if attempt.ok:
                return attempt
        logger.warning("Falling back to threshold keying (%s): %s", family.name, attempt.reason)
        remove_near_white(image, threshold, feather)
        return MatteOutcome.fallback(THRESHOLD_METHOD, attempt)

    remove_near_white(image, threshold, feather)
    return MatteOutcome.success(THRESHOLD_METHOD)


def _check_cancel(cancel) -> None:
    if cancel is not None and cancel.is_set():
        raise ProcessingCancelled("Processing cancelled")


class FrameProcessor:
    """
    Stateless per-frame transform. The only state is the injected estimator
    handles, which the processor owns and closes.
    """

    def __init__(self, handles: Optional[Mapping[str, EstimatorHandle]] = None):
        self._handles: Dict[str, EstimatorHandle] = dict(handles or {})

    def __enter__(self) -> "FrameProcessor":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        for handle in self._handles.values():
            handle.close()

    def process(
        self,
        image: np.ndarray,
        options: ProcessingOptions,
        entitlements: Optional[Entitlements] = None,
        cancel=None,
    ) -> ProcessedFrame:
        """
        Deterministic, linear pipeline on a copy of `image`:
          1) Background removal (with fallback)
          2) Ground shadow suppression (AI methods)
          3) Square canvas
          4) Master (white or transparent)
          5) Exports (+ watermark when required)

        `cancel` is anything with `is_set()`; it is checked before the matte and
        before each export.
        """
        require_rgba(image)
        entitlements = entitlements or Entitlements()
        t0 = time.perf_counter()

        _check_cancel(cancel)
        work = image.copy()

        t_mat0 = time.perf_counter()
        outcome = apply_background(work, options, entitlements.ai_allowed, self._handles)
        if options.method.is_ai and options.suppress_ground_shadow:
            suppress_bottom_white_shadow(
                work,
                options.shadow_white_threshold,
                options.shadow_max_alpha,
                options.shadow_bottom_percent,
            )
        t_mat1 = time.perf_counter()

        t_comp0 = time.perf_counter()
        squared = make_square_centered(work, options.square_size, options.padding_percent)
        bounds = find_opaque_bounds(squared)
        # the watermark mask always comes from the transparent square
        object_mask = squared[..., 3].copy()

        if options.white_background:
            master = composite_on_white(squared)
            if options.force_pure_white_background:
                force_pure_white_outside_bounds(master, bounds)
        else:
            master = squared
        t_comp1 = time.perf_counter()

        t_exp0 = time.perf_counter()
        exports = []
        for preset in options.exports:
            _check_cancel(cancel)
            exports.append(self._render_export(master, object_mask, bounds, preset, entitlements.watermark_required))
        t_exp1 = time.perf_counter()

        logger.debug(
            "Processed %dx%d frame via %s (%d exports)",
            image.shape[1],
            image.shape[0],
            outcome.method,
            len(exports),
        )
        return ProcessedFrame(
            master=master,
            outcome=outcome,
            bounds=bounds,
            exports=exports,
            timings=StageTimings(
                matte_s=t_mat1 - t_mat0,
                compose_s=t_comp1 - t_comp0,
                export_s=t_exp1 - t_exp0,
                total_s=time.perf_counter() - t0,
            ),
        )

    @staticmethod
    def _render_export(
        master: np.ndarray,
        object_mask: np.ndarray,
        bounds: OpaqueBounds,
        preset: ExportPreset,
        watermark: bool,
    ) -> RenderedExport:
        resized = resize_to_fit(master, preset.width, preset.height)
        if watermark:
            mask = resize_to_fit(object_mask, preset.width, preset.height)
            scaled = scale_bounds(bounds, master.shape[1], master.shape[0], resized.shape[1], resized.shape[0])
            apply_masked_overlay(resized, mask, scaled, TRIAL_WATERMARK_TEXT, TRIAL_WATERMARK_OPACITY_PERCENT)
        return RenderedExport(preset=preset, image=resized, watermarked=watermark)
