from __future__ import annotations

from typing import Callable, Optional, Sequence

import numpy as np

from .config import MatteFamily
from .errors import InferenceError

MatteReader = Callable[[np.ndarray], np.ndarray]


def _read_rank4(t: np.ndarray) -> np.ndarray:
    return t[0, 0]


def _read_rank3(t: np.ndarray) -> np.ndarray:
    return t[0]


def _read_rank2(t: np.ndarray) -> np.ndarray:
    return t


_READERS = {4: _read_rank4, 3: _read_rank3, 2: _read_rank2}


def resolve_matte_reader(rank: int) -> MatteReader:
    """
    Pick the accessor for an estimator's declared output rank:
      - (1, 1, H, W) -> batch 0, channel 0
      - (1, H, W)    -> batch 0
      - (H, W)       -> as-is
    Resolved once per estimator so the per-frame path never branches on shape.
    """
    reader = _READERS.get(int(rank))
    if reader is None:
        raise InferenceError(f"Unsupported matte output rank: {rank}")
    return reader


def pick_matte_output(names: Sequence[str], ranks: Sequence[Optional[int]], family: MatteFamily) -> int:
    """
    Index of the most plausible matte among an estimator's outputs.

    Preference order:
      1) an exact family name (U2Net "d0")
      2) a name containing one of the family tokens ("pha"/"alpha"/"mask"/...)
      3) the first rank-4 output
      4) the first output
    """
    if not names:
        raise InferenceError("Estimator declares no outputs")

    lowered = [n.lower() for n in names]
    for exact in family.exact_output_names:
        if exact.lower() in lowered:
            return lowered.index(exact.lower())

    for i, name in enumerate(lowered):
        if any(tok in name for tok in family.preferred_output_tokens):
            return i

    for i, rank in enumerate(ranks):
        if rank == 4:
            return i
    return 0


def extract_primary_output(y):
    """
    TorchScript matting models may return:
      - a single tensor
      - (tensor, ...) tuple/list with side outputs
      - dict with tensor fields

    For tuple/list outputs we take the first tensor-like payload (U2Net d0 / MODNet matte).
    """
    import torch

    if isinstance(y, torch.Tensor):
        return y
    if isinstance(y, (list, tuple)) and len(y) > 0:
        for item in y:
            if isinstance(item, torch.Tensor):
                return item
        return y[0]
    if isinstance(y, dict):
        for k in ("d0", "pha", "alpha", "mask", "logits", "pred"):
            v = y.get(k, None)
            if isinstance(v, torch.Tensor):
                return v
        for v in y.values():
            if isinstance(v, torch.Tensor):
                return v
        return next(iter(y.values()))
    return y
