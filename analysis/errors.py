"""
Analytics Errors

Exception types shared by every analytics component.

Two policies are used throughout the package:
- Fail fast: precondition violations (too little data, ragged datasets,
  bad parameters) raise one of the errors below.
- Degenerate but continue: zero variance, empty clusters and missing
  optional values return a neutral value instead of raising.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Which precondition a call violated."""
    INSUFFICIENT_DATA = "insufficient_data"
    DIMENSION_MISMATCH = "dimension_mismatch"
    INVALID_PARAMETER = "invalid_parameter"
    NOT_FITTED = "not_fitted"


class AnalyticsError(ValueError):
    """
    Base class for analytics errors.

    Attributes:
        kind: ErrorKind naming the failed precondition
        component: Name of the component that raised (e.g. 'kmeans', 'pca')
    """

    kind: ErrorKind = ErrorKind.INVALID_PARAMETER

    def __init__(self, message: str, component: Optional[str] = None):
        self.component = component
        if component:
            message = f"[{component}] {message}"
        super().__init__(message)


class InsufficientDataError(AnalyticsError):
    """Dataset or series is smaller than the algorithm requires."""
    kind = ErrorKind.INSUFFICIENT_DATA


class DimensionMismatchError(AnalyticsError):
    """Vectors within one dataset (or one call) have different lengths."""
    kind = ErrorKind.DIMENSION_MISMATCH


class InvalidParameterError(AnalyticsError):
    """A configuration value is out of its valid range."""
    kind = ErrorKind.INVALID_PARAMETER


class NotFittedError(AnalyticsError):
    """A model was used before fit()."""
    kind = ErrorKind.NOT_FITTED
