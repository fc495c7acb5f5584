"""
Input Validation

Converts caller input into float arrays and checks the fail-fast
preconditions. Every algorithm copies its input here, so caller-owned
data is never mutated.
"""

from typing import Sequence, Union, Optional
import numpy as np
import pandas as pd

from .errors import (
    InsufficientDataError,
    DimensionMismatchError,
    InvalidParameterError,
)

ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]
DatasetLike = Union[Sequence[Sequence[float]], np.ndarray, pd.DataFrame]


def as_vector(values: ArrayLike, component: Optional[str] = None, allow_empty: bool = False) -> np.ndarray:
    """
    Convert values to a 1D float array (copy).

    Args:
        values: Sequence of numbers
        component: Component name used in error messages
        allow_empty: Whether an empty input is accepted

    Returns:
        1D float64 array
    """
    if isinstance(values, pd.Series):
        values = values.to_numpy()
    arr = np.array(values, dtype=float)
    if arr.ndim != 1:
        arr = arr.reshape(-1)
    if arr.size == 0 and not allow_empty:
        raise InsufficientDataError("Cannot operate on an empty vector", component)
    return arr


def as_dataset(data: DatasetLike, component: Optional[str] = None) -> np.ndarray:
    """
    Convert a dataset to a 2D float array (copy).

    DataFrames contribute their numeric columns only.

    Args:
        data: Rows of equal-length numeric vectors
        component: Component name used in error messages

    Returns:
        Array of shape (n_samples, n_features)

    Raises:
        InsufficientDataError: If the dataset has no rows
        DimensionMismatchError: If rows have different lengths
    """
    if isinstance(data, pd.DataFrame):
        data = data.select_dtypes(include=[np.number]).to_numpy()

    if isinstance(data, np.ndarray):
        arr = np.array(data, dtype=float)
    else:
        rows = list(data)
        if len(rows) == 0:
            raise InsufficientDataError("Dataset is empty", component)
        sized = [hasattr(row, '__len__') for row in rows]
        if any(sized) and not all(sized):
            raise DimensionMismatchError("Dataset mixes scalars and vectors", component)
        if all(sized):
            lengths = {len(row) for row in rows}
            if len(lengths) > 1:
                raise DimensionMismatchError(
                    f"All vectors must share one length, found lengths {sorted(lengths)}",
                    component
                )
        # plain numbers are one-feature rows
        arr = np.array(rows, dtype=float)

    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        raise DimensionMismatchError(f"Expected a 2D dataset, got {arr.ndim} dimensions", component)
    if arr.shape[0] == 0:
        raise InsufficientDataError("Dataset is empty", component)
    return arr


def check_same_length(a: np.ndarray, b: np.ndarray, component: Optional[str] = None) -> None:
    """Raise DimensionMismatchError if two vectors differ in length."""
    if a.shape[-1] != b.shape[-1]:
        raise DimensionMismatchError(
            f"Vector lengths differ: {a.shape[-1]} vs {b.shape[-1]}", component
        )


def check_min_samples(n: int, minimum: int, what: str, component: Optional[str] = None) -> None:
    """Raise InsufficientDataError if n < minimum."""
    if n < minimum:
        raise InsufficientDataError(f"Need at least {minimum} {what}, got {n}", component)


def check_positive_int(value: int, name: str, component: Optional[str] = None) -> int:
    """Validate a strictly positive integer parameter."""
    if int(value) != value or value < 1:
        raise InvalidParameterError(f"{name} must be a positive integer, got {value}", component)
    return int(value)


def check_probability(value: float, name: str, component: Optional[str] = None,
                      allow_zero: bool = False) -> float:
    """Validate a smoothing/rate parameter in (0, 1] (or [0, 1] with allow_zero)."""
    lower_ok = value >= 0 if allow_zero else value > 0
    if not (lower_ok and value <= 1):
        bounds = "[0, 1]" if allow_zero else "(0, 1]"
        raise InvalidParameterError(f"{name} must be in {bounds}, got {value}", component)
    return float(value)
