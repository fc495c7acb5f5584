"""
Statistical Primitives

Descriptive statistics and correlation used by every other analytics
component.

Features:
- Mean, population variance and standard deviation
- Index-based quartiles (not interpolated) and summary statistics
- Pearson correlation with a neutral result for zero-variance input
- Z-scores, min-max normalization and standardization
- Correlation analysis across the metric columns of a DataFrame

Degenerate input never raises here: zero variance gives a correlation
of 0 and a z-score of 0. Empty input is a precondition failure.
"""

from typing import List, Optional, Tuple
from dataclasses import dataclass
import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

from .errors import InsufficientDataError
from .validation import as_vector, check_same_length, ArrayLike


@dataclass
class StatisticalSummary:
    """
    Summary statistics of one numeric series.

    Quartiles follow the index rule q1 = sorted[floor(n*0.25)],
    q3 = sorted[floor(n*0.75)]; q2 is the median.
    """
    mean: float
    median: float
    mode: List[float]
    min: float
    max: float
    range: float
    variance: float
    standard_deviation: float
    q1: float
    q2: float
    q3: float
    iqr: float
    n: int = 0

    def to_dict(self) -> dict:
        return {
            'mean': self.mean,
            'median': self.median,
            'mode': list(self.mode),
            'min': self.min,
            'max': self.max,
            'range': self.range,
            'variance': self.variance,
            'standard_deviation': self.standard_deviation,
            'q1': self.q1,
            'q2': self.q2,
            'q3': self.q3,
            'iqr': self.iqr,
            'n': self.n,
        }


def mean(values: ArrayLike) -> float:
    """Arithmetic mean."""
    arr = as_vector(values, 'statistics')
    return float(np.sum(arr) / arr.size)


def variance(values: ArrayLike) -> float:
    """Population variance (divides by n)."""
    arr = as_vector(values, 'statistics')
    mu = np.sum(arr) / arr.size
    return float(np.sum((arr - mu) ** 2) / arr.size)


def standard_deviation(values: ArrayLike) -> float:
    """Population standard deviation, sqrt(variance)."""
    return float(np.sqrt(variance(values)))


def median(values: ArrayLike) -> float:
    """Median (mean of the two middle values for even n)."""
    arr = np.sort(as_vector(values, 'statistics'))
    n = arr.size
    if n % 2 == 0:
        return float((arr[n // 2 - 1] + arr[n // 2]) / 2)
    return float(arr[n // 2])


def mode(values: ArrayLike) -> List[float]:
    """All most-frequent values, ascending."""
    arr = as_vector(values, 'statistics')
    uniques, counts = np.unique(arr, return_counts=True)
    return [float(v) for v in uniques[counts == counts.max()]]


def quartiles(values: ArrayLike) -> Tuple[float, float, float]:
    """
    Index-based quartiles.

    Args:
        values: Numeric series

    Returns:
        Tuple of (q1, median, q3)
    """
    arr = np.sort(as_vector(values, 'statistics'))
    n = arr.size
    q1 = arr[int(np.floor(n * 0.25))]
    q3 = arr[int(np.floor(n * 0.75))]
    return float(q1), median(arr), float(q3)


def calculate_statistics(values: ArrayLike) -> StatisticalSummary:
    """
    Compute a full statistical summary.

    Args:
        values: Numeric series (at least one value)

    Returns:
        StatisticalSummary

    Raises:
        InsufficientDataError: If values is empty
    """
    arr = as_vector(values, 'statistics')
    sorted_arr = np.sort(arr)
    var = variance(arr)
    q1, q2, q3 = quartiles(sorted_arr)

    return StatisticalSummary(
        mean=mean(arr),
        median=q2,
        mode=mode(arr),
        min=float(sorted_arr[0]),
        max=float(sorted_arr[-1]),
        range=float(sorted_arr[-1] - sorted_arr[0]),
        variance=var,
        standard_deviation=float(np.sqrt(var)),
        q1=q1,
        q2=q2,
        q3=q3,
        iqr=q3 - q1,
        n=int(arr.size),
    )


def correlation(x: ArrayLike, y: ArrayLike) -> float:
    """
    Pearson correlation coefficient.

    Returns 0 when either series has zero variance. The result is
    clipped to [-1, 1] to absorb floating point overshoot.

    Raises:
        DimensionMismatchError: If x and y differ in length
    """
    x_arr = as_vector(x, 'correlation')
    y_arr = as_vector(y, 'correlation')
    check_same_length(x_arr, y_arr, 'correlation')

    dx = x_arr - x_arr.mean()
    dy = y_arr - y_arr.mean()
    denominator = np.sqrt(np.sum(dx * dx) * np.sum(dy * dy))
    if denominator == 0:
        return 0.0
    return float(np.clip(np.sum(dx * dy) / denominator, -1.0, 1.0))


def z_score(value: float, mean_value: float, std: float) -> float:
    """Standard score; 0 when std is 0."""
    if std == 0:
        return 0.0
    return (value - mean_value) / std


def normalize(values: ArrayLike) -> np.ndarray:
    """
    Min-max scale to [0, 1].

    A constant series maps to 0.5 everywhere.
    """
    arr = as_vector(values, 'statistics')
    lo, hi = arr.min(), arr.max()
    if hi == lo:
        return np.full_like(arr, 0.5)
    return (arr - lo) / (hi - lo)


def standardize(values: ArrayLike) -> np.ndarray:
    """Z-score every value using population mean/std (constant → zeros)."""
    arr = as_vector(values, 'statistics')
    std = standard_deviation(arr)
    if std == 0:
        return np.zeros_like(arr)
    return (arr - arr.mean()) / std


def percentile_rank(value: float, values: ArrayLike) -> float:
    """Percentage of values less than or equal to value."""
    arr = as_vector(values, 'statistics')
    return float(np.count_nonzero(arr <= value) / arr.size * 100)


def coefficient_of_variation(values: ArrayLike) -> float:
    """Std as a percentage of |mean|; 0 when the mean is 0."""
    arr = as_vector(values, 'statistics')
    mu = arr.mean()
    if mu == 0:
        return 0.0
    return float(standard_deviation(arr) / abs(mu) * 100)


@dataclass
class CorrelationPair:
    """One pair of metrics and their Pearson statistics."""
    metric_a: str
    metric_b: str
    correlation: float
    p_value: float
    n: int = 0
    adjusted_p_value: float = 1.0


class CorrelationAnalyzer:
    """
    Analyze pairwise correlations between metric columns.

    Zero-variance columns get correlation 0 and p-value 1 instead of NaN.
    """

    def __init__(self, min_samples: int = 3):
        """
        Args:
            min_samples: Minimum paired, non-missing samples per pair
        """
        self.min_samples = min_samples

    def _pair(self, x: np.ndarray, y: np.ndarray) -> Tuple[float, float, int]:
        valid = ~(np.isnan(x) | np.isnan(y))
        x, y = x[valid], y[valid]
        n = int(valid.sum())
        if n < self.min_samples:
            return np.nan, np.nan, n
        if np.std(x) == 0 or np.std(y) == 0:
            return 0.0, 1.0, n
        r, p = stats.pearsonr(x, y)
        return float(r), float(p), n

    def correlation_matrix(self, frame: pd.DataFrame) -> pd.DataFrame:
        """
        Pearson correlation matrix over numeric columns.

        Args:
            frame: DataFrame of metrics (one row per day)

        Returns:
            Symmetric DataFrame indexed and labelled by metric name
        """
        numeric = frame.select_dtypes(include=[np.number])
        names = numeric.columns.tolist()
        matrix = np.eye(len(names))
        for i in range(len(names)):
            for j in range(i + 1, len(names)):
                r, _, _ = self._pair(numeric.iloc[:, i].to_numpy(dtype=float),
                                     numeric.iloc[:, j].to_numpy(dtype=float))
                matrix[i, j] = matrix[j, i] = r
        return pd.DataFrame(matrix, index=names, columns=names)

    def significant_pairs(
        self,
        frame: pd.DataFrame,
        alpha: float = 0.05,
        min_abs_correlation: float = 0.0,
        correction: Optional[str] = 'fdr_bh'
    ) -> List[CorrelationPair]:
        """
        Find metric pairs with a significant correlation.

        Args:
            frame: DataFrame of metrics
            alpha: Significance threshold on the (corrected) p-value
            min_abs_correlation: Ignore pairs weaker than this
            correction: Multiple comparison correction method passed to
                statsmodels multipletests ('fdr_bh', 'bonferroni', ...),
                or None for raw p-values

        Returns:
            Pairs sorted by |correlation|, strongest first
        """
        numeric = frame.select_dtypes(include=[np.number])
        names = numeric.columns.tolist()
        candidates = []
        for i in range(len(names)):
            for j in range(i + 1, len(names)):
                r, p, n = self._pair(numeric.iloc[:, i].to_numpy(dtype=float),
                                     numeric.iloc[:, j].to_numpy(dtype=float))
                if not np.isnan(r):
                    candidates.append(CorrelationPair(names[i], names[j], r, p, n, p))

        if correction and candidates:
            _, corrected, _, _ = multipletests([c.p_value for c in candidates], method=correction)
            for pair, adjusted in zip(candidates, corrected):
                pair.adjusted_p_value = float(adjusted)

        pairs = [
            c for c in candidates
            if c.adjusted_p_value < alpha and abs(c.correlation) >= min_abs_correlation
        ]
        pairs.sort(key=lambda pair: abs(pair.correlation), reverse=True)
        return pairs


def summarize_frame(frame: pd.DataFrame, columns: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Summary statistics for each numeric column, NaNs dropped.

    Columns with no values are skipped.

    Returns:
        DataFrame with one row per metric
    """
    numeric = frame.select_dtypes(include=[np.number])
    if columns is not None:
        numeric = numeric[columns]

    rows = []
    for name in numeric.columns:
        values = numeric[name].dropna().to_numpy(dtype=float)
        if values.size == 0:
            continue
        summary = calculate_statistics(values).to_dict()
        summary.pop('mode')
        summary['metric'] = name
        rows.append(summary)

    if not rows:
        raise InsufficientDataError("No numeric values to summarize", 'statistics')
    return pd.DataFrame(rows).set_index('metric')
