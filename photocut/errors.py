from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class PhotocutError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(PhotocutError):
    pass


class EstimatorUnavailableError(ConfigurationError):
    """The estimator for a family could not be located or loaded."""

    def __init__(self, family: str, message: str):
        super().__init__(message)
        self.family = family


class InferenceError(PhotocutError):
    """The estimator loaded but a forward pass failed or produced an unusable tensor."""


class ProcessingCancelled(PhotocutError):
    pass


@dataclass(frozen=True)
class MatteOutcome:
    """
    Result of one background-removal attempt.

    `ok` is False only when the neural path could not run; the dispatcher reads it
    to decide on the threshold fallback instead of catching exceptions.
    """

    ok: bool
    method: str
    reason: Optional[str] = None
    fallback_from: Optional[str] = None

    @classmethod
    def success(cls, method: str) -> "MatteOutcome":
        return cls(ok=True, method=method)

    @classmethod
    def failure(cls, method: str, reason: str) -> "MatteOutcome":
        return cls(ok=False, method=method, reason=reason)

    @classmethod
    def fallback(cls, method: str, failed: "MatteOutcome") -> "MatteOutcome":
        """A successful `method` run that replaced the `failed` attempt."""
        return cls(ok=True, method=method, reason=failed.reason, fallback_from=failed.method)
