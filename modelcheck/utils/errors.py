# modelcheck/utils/errors.py
from __future__ import annotations

from typing import Any, Optional


class HarnessError(RuntimeError):
    """
    Root of every error raised by the harness.

    All of them abort the current TestSession only.
    """


class ConfigurationError(HarnessError):
    """
    Invalid session / dataset configuration.
    Raised BEFORE any training starts.
    """


class DatasetIOError(ConfigurationError, OSError):
    """
    Dataset cannot be read, or the temp directory cannot be written.
    """


class TrainingError(HarnessError):
    """
    Trainer failed, or cancellation was not observed within the grace period.
    No partial checks are attempted after it.
    """


class EquivalenceError(HarnessError, AssertionError):
    """
    First row-level divergence between the reference path and another path.
    """

    def __init__(
        self,
        message: str,
        *,
        path: str,
        row: Optional[int] = None,
        expected: Any = None,
        actual: Any = None,
        begin: Optional[int] = None,
        end: Optional[int] = None,
    ):
        super().__init__(message)
        self.path = path
        self.row = row
        self.expected = expected
        self.actual = actual
        self.begin = begin
        self.end = end


class SerializationError(EquivalenceError):
    """
    Round-trip (bytes or directory) failed to reproduce the model.
    """

    def __init__(self, message: str, *, path: str = "round-trip", **kwargs):
        super().__init__(message, path=path, **kwargs)


class MetricError(HarnessError, AssertionError):
    """
    Metric outside [center-margin, center+margin], or golden mismatch.
    Only raised in ASSERT mode.
    """


class GoldenModelError(HarnessError, AssertionError):
    """
    Trained model structure differs from the stored golden model.
    """


class SweepError(HarnessError, AssertionError):
    """
    Predefined hyper-parameter sweep mismatch (count or accuracy floor).
    """
