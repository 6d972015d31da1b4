"""
errors.py — Exception taxonomy for the VPD chart engine.

  InvalidMeasurement  non-finite or missing numeric input      (fatal, no retry)
  UnknownStage        stage key not defined by the crop profile
  FontLoadFailure     font fetch / parse failed
  EncodingError       raster backend could not produce image bytes
"""

from typing import Iterable, Optional


class VPDChartError(Exception):
    """Base class for every error raised by the chart engine."""


class InvalidMeasurement(VPDChartError, ValueError):
    """A required reading is missing, NaN or infinite."""

    def __init__(self, field: str, value=None):
        self.field = field
        self.value = value
        if value is None:
            msg = f"{field} is required and must be a number"
        else:
            msg = f"{field} must be a finite number, got {value!r}"
        super().__init__(msg)


class UnknownStage(VPDChartError, KeyError):
    """Requested stage is not part of the resolved crop profile."""

    def __init__(self, stage: str, crop: str, available: Iterable[str]):
        self.stage = stage
        self.crop = crop
        self.available = list(available)
        super().__init__(f"Invalid stage '{stage}' for crop '{crop}'")

    def __str__(self):
        # KeyError would repr() the message otherwise
        return self.args[0]


class FontLoadFailure(VPDChartError, RuntimeError):
    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to load font from {source}: {reason}")


class EncodingError(VPDChartError, RuntimeError):
    def __init__(self, fmt: str, reason: Optional[str] = None):
        self.format = fmt
        msg = f"Could not encode chart as {fmt}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
