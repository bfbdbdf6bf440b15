from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import cv2
import numpy as np

from .config import MIN_INPUT_SIZE, MODNET, U2NET, MatteFamily, Normalization, models_dir
from .errors import EstimatorUnavailableError, InferenceError
from .inference import extract_primary_output, pick_matte_output, resolve_matte_reader
from .preprocess import prepare_input

logger = logging.getLogger(__name__)


def _input_dim(value, default: int) -> int:
    # dynamic axes come back as strings / None / -1
    if isinstance(value, (int, np.integer)) and value > 0:
        dim = int(value)
    else:
        dim = default
    return dim if dim >= MIN_INPUT_SIZE else default


class MatteEstimator(ABC):
    """
    Neural matte estimator bound to one family.

    Subclasses implement `_run(x)` on an NCHW float32 input. `output_rank` is the
    declared rank of the matte output and is turned into a fixed reader once.
    Anything `_run` raises reaches callers as `InferenceError`.
    """

    def __init__(self, family: MatteFamily, input_width: int, input_height: int, output_rank: int):
        self.family = family
        self.input_width = _input_dim(input_width, family.default_input_size)
        self.input_height = _input_dim(input_height, family.default_input_size)
        self.output_rank = int(output_rank)
        self._reader = resolve_matte_reader(self.output_rank)

    def estimate(self, image: np.ndarray, width: int, height: int, normalization: Normalization) -> np.ndarray:
        """Raw matte tensor at model resolution (rank 2, 3 or 4; probabilities or logits)."""
        x = prepare_input(image, width, height, normalization)
        try:
            return self._run(x)
        except InferenceError:
            raise
        except Exception as e:  # noqa: BLE001 - any backend failure is recoverable
            raise InferenceError(f"{self.family.name} inference failed: {e}") from e

    def read_matte(self, raw: np.ndarray) -> np.ndarray:
        """Batch 0 / channel 0 of a raw output as a float32 (input_height, input_width) plane."""
        raw = np.asarray(raw)
        if raw.ndim != self.output_rank:
            raise InferenceError(f"Expected rank-{self.output_rank} output, got shape={raw.shape}")
        plane = np.asarray(self._reader(raw), dtype=np.float32)
        if plane.size == 0:
            raise InferenceError(f"Empty matte output, shape={raw.shape}")
        if not np.isfinite(plane).all():
            raise InferenceError("Non-finite values detected in raw matte.")

        target = (self.input_height, self.input_width)
        if plane.shape != target:
            # Some exports emit a different scale; bring it back to the input grid.
            plane = cv2.resize(plane, (self.input_width, self.input_height), interpolation=cv2.INTER_LINEAR)
        return plane

    @abstractmethod
    def _run(self, x: np.ndarray) -> np.ndarray:
        ...

    def close(self) -> None:
        pass


class OnnxMatteEstimator(MatteEstimator):
    """ONNX Runtime session for a MODNet / U2Net export."""

    def __init__(self, model_path: str, family: MatteFamily, providers: Optional[Sequence[str]] = None):
        if not model_path or not os.path.exists(model_path):
            raise EstimatorUnavailableError(family.name, f"Model not found: {model_path}")

        try:
            import onnxruntime as ort

            opts = ort.SessionOptions()
            opts.inter_op_num_threads = 1
            opts.intra_op_num_threads = max(1, (os.cpu_count() or 2) // 2)
            opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
            self._session = ort.InferenceSession(
                str(model_path),
                sess_options=opts,
                providers=list(providers) if providers else ["CPUExecutionProvider"],
            )
        except Exception as e:  # noqa: BLE001 - any loader failure means "unavailable"
            raise EstimatorUnavailableError(family.name, f"Failed to load {family.name} model: {e}") from e

        inp = self._session.get_inputs()[0]
        self._input_name = inp.name
        # expected NCHW
        shape = list(inp.shape or [])
        in_h = shape[2] if len(shape) >= 4 else None
        in_w = shape[3] if len(shape) >= 4 else None

        outputs = self._session.get_outputs()
        names = [o.name for o in outputs]
        ranks: List[Optional[int]] = [len(o.shape) if o.shape is not None else None for o in outputs]
        idx = pick_matte_output(names, ranks, family)
        self._output_name = names[idx]

        try:
            super().__init__(family, in_w, in_h, ranks[idx] if ranks[idx] is not None else 4)
        except InferenceError as e:
            raise EstimatorUnavailableError(family.name, str(e)) from e

        logger.info(
            "Loaded %s model from %s (input %dx%d, output %r rank %d, providers %s)",
            family.name,
            model_path,
            self.input_width,
            self.input_height,
            self._output_name,
            self.output_rank,
            self._session.get_providers(),
        )

    def _run(self, x: np.ndarray) -> np.ndarray:
        out = self._session.run([self._output_name], {self._input_name: x})[0]
        return np.asarray(out, dtype=np.float32)

    def close(self) -> None:
        self._session = None


def get_device():
    import torch

    if torch.backends.mps.is_available():
        return torch.device("mps")
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


class TorchScriptMatteEstimator(MatteEstimator):
    """
    TorchScript matting model (saved via torch.jit.save).

    TorchScript carries no shape metadata, so the input size defaults to the family
    size and the output rank must be declared.
    """

    def __init__(
        self,
        model_path: str,
        family: MatteFamily,
        device=None,
        input_size: Optional[int] = None,
        output_rank: int = 4,
    ):
        if not model_path or not os.path.exists(model_path):
            raise EstimatorUnavailableError(family.name, f"Model not found: {model_path}")

        try:
            import torch

            self._device = device if device is not None else get_device()
            # Load on CPU first, then cast; some archives carry float64 attributes.
            model = torch.jit.load(model_path, map_location="cpu")
            model.eval()
            for p in model.parameters():
                p.requires_grad_(False)
            model = model.to(dtype=torch.float32)
            model.to(self._device)
        except Exception as e:  # noqa: BLE001 - surface a helpful error
            raise EstimatorUnavailableError(
                family.name,
                "Failed to load model. Expected a TorchScript module saved with torch.jit.save().",
            ) from e

        self._model = model
        # TorchScript modules are not guaranteed reentrant.
        self._lock = threading.Lock()
        size = input_size or family.default_input_size
        super().__init__(family, size, size, output_rank)

    def _run(self, x: np.ndarray) -> np.ndarray:
        import torch

        with self._lock, torch.no_grad():
            t = torch.from_numpy(x).to(self._device)
            y = extract_primary_output(self._model(t))
        if not isinstance(y, torch.Tensor):
            raise InferenceError(f"Model output is not a tensor: {type(y)}")
        return y.float().detach().to("cpu").numpy()

    def close(self) -> None:
        self._model = None


class EstimatorHandle:
    """
    Lazily created, reference-counted estimator owned by a processor.

    - created on the first `acquire()`, under a lock
    - a failed creation is remembered; later acquires fail fast with the same reason
    - `close()` disposes the estimator once the last lease is released
    """

    def __init__(self, name: str, factory: Callable[[], MatteEstimator]):
        self.name = name
        self._factory = factory
        self._lock = threading.Lock()
        self._estimator: Optional[MatteEstimator] = None
        self._failure: Optional[str] = None
        self._refs = 0
        self._closed = False

    @property
    def loaded(self) -> bool:
        return self._estimator is not None

    @property
    def refcount(self) -> int:
        return self._refs

    def acquire(self) -> MatteEstimator:
        with self._lock:
            if self._closed:
                raise EstimatorUnavailableError(self.name, f"Estimator handle {self.name!r} is closed")
            if self._failure is not None:
                raise EstimatorUnavailableError(self.name, self._failure)
            if self._estimator is None:
                try:
                    self._estimator = self._factory()
                except EstimatorUnavailableError as e:
                    self._failure = str(e)
                    raise
                except Exception as e:  # noqa: BLE001 - external loader
                    self._failure = f"Failed to create {self.name} estimator: {e}"
                    raise EstimatorUnavailableError(self.name, self._failure) from e
            self._refs += 1
            return self._estimator

    def release(self) -> None:
        with self._lock:
            if self._refs > 0:
                self._refs -= 1
            if self._closed and self._refs == 0:
                self._dispose()

    @contextmanager
    def lease(self) -> Iterator[MatteEstimator]:
        estimator = self.acquire()
        try:
            yield estimator
        finally:
            self.release()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._refs == 0:
                self._dispose()

    def _dispose(self) -> None:
        if self._estimator is not None:
            logger.debug("Disposing %s estimator", self.name)
            self._estimator.close()
            self._estimator = None


def load_estimator(family: MatteFamily, model_dir: Optional[Path] = None) -> MatteEstimator:
    """`<family>.onnx` from the models directory, else a TorchScript `<family>.pt` beside it."""
    onnx_path = Path(model_dir or models_dir()) / family.model_filename
    torchscript_path = onnx_path.with_suffix(".pt")
    if not onnx_path.exists() and torchscript_path.exists():
        logger.info("Using TorchScript %s model: %s", family.name, torchscript_path)
        return TorchScriptMatteEstimator(str(torchscript_path), family)
    return OnnxMatteEstimator(str(onnx_path), family)


def estimator_handle(family: MatteFamily, model_dir: Optional[Path] = None) -> EstimatorHandle:
    return EstimatorHandle(family.name, lambda: load_estimator(family, model_dir))


def default_handles(model_dir: Optional[Path] = None) -> Dict[str, EstimatorHandle]:
    """Handles for the MODNet and U2Net models in the models directory."""
    return {family.name: estimator_handle(family, model_dir) for family in (MODNET, U2NET)}
