"""
Exception taxonomy for the formwork pipeline.

Per-face and per-element errors are caught where they occur and recorded in
the run report; only TransactionNotCommitted is meant to reach the caller.
"""

from typing import Optional


class FormworkError(Exception):
    """Base class for all formwork pipeline errors."""


class GeometryExtractionError(FormworkError):
    """No usable volume or face could be obtained from an element."""


class ContourValidationError(FormworkError):
    """Boundary contour is not closed, not planar, degenerate or zero-area."""

    def __init__(self, reason: str, deviation: Optional[float] = None):
        super().__init__(reason)
        self.reason = reason
        self.deviation = deviation


class ClassificationAmbiguous(FormworkError):
    """No significant faces; orientation resolved to horizontal."""


class BooleanOperationFailure(FormworkError):
    """Kernel boolean raised or returned an invalid or zero volume."""


class PanelSynthesisError(FormworkError):
    """Panel volume could not be built or did not pass the validity gate."""


class SynthesisStrategyFailure(FormworkError):
    """Preconditions of one synthesis strategy were not met."""


class ConversionRecordMissing(FormworkError):
    """Temporary entity carries no usable back-reference tag."""


class TransactionNotCommitted(FormworkError):
    """Host transaction did not durably apply the destructive phase."""

    def __init__(self, status: str):
        super().__init__(f"Transaction finished with status '{status}'")
        self.status = status
