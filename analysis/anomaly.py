"""
Anomaly and Outlier Detection

Flags unusual values in biometric series.

Methods:
- Z-score against the full series (severity tiers by threshold multiples)
- Z-score against a trailing window baseline
- Modified z-score (median absolute deviation)
- IQR fences
- Local Outlier Factor and Isolation Forest (scikit-learn)
- Multivariate per-feature z-score detector

Missing values (NaN) are treated as absent: they are excluded from the
baseline and never flagged. Zero spread gives z-scores of 0, so a
constant series has no anomalies.
"""

from typing import List, Optional, Sequence, Tuple, Any
from dataclasses import dataclass, field
from enum import Enum
import numpy as np
from sklearn.ensemble import IsolationForest
from sklearn.neighbors import LocalOutlierFactor

from .errors import InvalidParameterError, NotFittedError, DimensionMismatchError
from .validation import (
    as_vector, as_dataset, check_min_samples, check_positive_int, ArrayLike, DatasetLike,
)
from .statistical import quartiles


class Severity(Enum):
    """Severity tier of an anomaly relative to the detection threshold."""
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


def classify_severity(abs_z: float, threshold: float) -> Severity:
    """Severe above 2x the threshold, moderate above 1.5x, mild otherwise."""
    if abs_z > threshold * 2:
        return Severity.SEVERE
    if abs_z > threshold * 1.5:
        return Severity.MODERATE
    return Severity.MILD


@dataclass
class Anomaly:
    """
    One flagged observation.

    Attributes:
        index: Position in the series
        value: Observed value
        expected: Baseline mean the value was compared with
        deviation: Signed distance from the baseline in standard deviations
        severity: Severity tier
        timestamp: Timestamp of the observation, when known
    """
    index: int
    value: float
    expected: float
    deviation: float
    severity: Severity
    timestamp: Optional[Any] = None

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'timestamp': self.timestamp,
            'value': self.value,
            'expected': self.expected,
            'deviation': self.deviation,
            'severity': self.severity.value,
        }


@dataclass
class OutlierResult:
    """
    Output of a univariate outlier method.

    Attributes:
        outliers: Indices of flagged values
        scores: Score per value (NaN for missing values)
        threshold: Threshold the scores were compared with
        method: Method name
    """
    outliers: List[int]
    scores: np.ndarray
    threshold: float
    method: str


def _check_threshold(threshold: float, component: str) -> None:
    if threshold <= 0:
        raise InvalidParameterError(f"threshold must be positive, got {threshold}", component)


def detect_anomalies(
    values: ArrayLike,
    threshold: float = 2.5,
    timestamps: Optional[Sequence[Any]] = None
) -> List[Anomaly]:
    """
    Z-score anomalies against the whole series.

    Args:
        values: Numeric series (NaN = missing)
        threshold: |z| above which a value is anomalous
        timestamps: Optional timestamps aligned with values

    Returns:
        Anomalies in series order
    """
    _check_threshold(threshold, 'anomaly')
    arr = as_vector(values, 'anomaly', allow_empty=True)
    if timestamps is not None and len(timestamps) != len(arr):
        raise DimensionMismatchError(
            f"timestamps ({len(timestamps)}) must align with values ({len(arr)})", 'anomaly'
        )

    present = ~np.isnan(arr)
    if not present.any():
        return []
    baseline = arr[present]
    mean = float(baseline.mean())
    std = float(baseline.std())

    anomalies = []
    for index in np.flatnonzero(present):
        z = 0.0 if std == 0 else (arr[index] - mean) / std
        if abs(z) > threshold:
            anomalies.append(Anomaly(
                index=int(index),
                value=float(arr[index]),
                expected=mean,
                deviation=float(z),
                severity=classify_severity(abs(z), threshold),
                timestamp=timestamps[index] if timestamps is not None else None,
            ))
    return anomalies


def detect_rolling_anomalies(
    values: ArrayLike,
    window: int = 7,
    threshold: float = 2.0,
    timestamps: Optional[Sequence[Any]] = None
) -> List[Anomaly]:
    """
    Z-score anomalies against the trailing `window` values.

    Each point from index `window` on is compared with the mean/std of the
    `window` values before it (missing values excluded).
    """
    _check_threshold(threshold, 'anomaly')
    if window < 2:
        raise InvalidParameterError(f"window must be >= 2, got {window}", 'anomaly')
    arr = as_vector(values, 'anomaly', allow_empty=True)

    anomalies = []
    for i in range(window, len(arr)):
        if np.isnan(arr[i]):
            continue
        history = arr[i - window:i]
        history = history[~np.isnan(history)]
        if history.size < 2:
            continue
        mean, std = float(history.mean()), float(history.std())
        z = 0.0 if std == 0 else (arr[i] - mean) / std
        if abs(z) > threshold:
            anomalies.append(Anomaly(
                index=i,
                value=float(arr[i]),
                expected=mean,
                deviation=float(z),
                severity=classify_severity(abs(z), threshold),
                timestamp=timestamps[i] if timestamps is not None else None,
            ))
    return anomalies


def zscore_outliers(values: ArrayLike, threshold: float = 3.0) -> OutlierResult:
    """|z| > threshold outliers."""
    _check_threshold(threshold, 'outlier')
    arr = as_vector(values, 'outlier')
    present = ~np.isnan(arr)
    mean, std = arr[present].mean(), arr[present].std()
    scores = np.zeros_like(arr) if std == 0 else np.abs(arr - mean) / std
    scores[~present] = np.nan
    outliers = [int(i) for i in np.flatnonzero(present & (np.nan_to_num(scores) > threshold))]
    return OutlierResult(outliers, scores, threshold, 'Z-Score')


def modified_zscore_outliers(values: ArrayLike, threshold: float = 3.5) -> OutlierResult:
    """
    Outliers by modified z-score 0.6745 * |x - median| / MAD.

    A MAD of 0 gives scores of 0.
    """
    _check_threshold(threshold, 'outlier')
    arr = as_vector(values, 'outlier')
    present = ~np.isnan(arr)
    med = np.median(arr[present])
    mad = np.median(np.abs(arr[present] - med))
    scores = np.zeros_like(arr) if mad == 0 else np.abs(0.6745 * (arr - med) / mad)
    scores[~present] = np.nan
    outliers = [int(i) for i in np.flatnonzero(present & (np.nan_to_num(scores) > threshold))]
    return OutlierResult(outliers, scores, threshold, 'Modified Z-Score (MAD)')


def iqr_outliers(values: ArrayLike, multiplier: float = 1.5) -> OutlierResult:
    """
    Outliers outside [q1 - m*IQR, q3 + m*IQR].

    Scores are the distance beyond the nearer fence in IQR units.
    """
    _check_threshold(multiplier, 'outlier')
    arr = as_vector(values, 'outlier')
    present = ~np.isnan(arr)
    q1, _, q3 = quartiles(arr[present])
    spread = q3 - q1
    lower, upper = q1 - multiplier * spread, q3 + multiplier * spread

    scores = np.zeros_like(arr)
    if spread > 0:
        scores = np.where(arr < lower, (lower - arr) / spread,
                          np.where(arr > upper, (arr - upper) / spread, 0.0))
    scores[~present] = np.nan
    flagged = present & ((arr < lower) | (arr > upper))
    return OutlierResult([int(i) for i in np.flatnonzero(flagged)], scores, multiplier, 'IQR')


def _present_column(arr: np.ndarray, minimum: int, what: str) -> Tuple[np.ndarray, np.ndarray]:
    present = ~np.isnan(arr)
    check_min_samples(int(present.sum()), minimum, what, 'outlier')
    return present, arr[present].reshape(-1, 1)


def lof_outliers(values: ArrayLike, n_neighbors: int = 5, threshold: float = 1.5) -> OutlierResult:
    """
    Local Outlier Factor outliers.

    Scores are LOF values: about 1 inside a region of uniform density,
    larger for points sparser than their neighbors. n_neighbors is capped at
    the number of present values minus one.

    Args:
        values: Numeric series (NaN = missing)
        n_neighbors: Neighborhood size k
        threshold: LOF above which a value is an outlier
    """
    _check_threshold(threshold, 'outlier')
    n_neighbors = check_positive_int(n_neighbors, 'n_neighbors', 'outlier')
    arr = as_vector(values, 'outlier')
    present, column = _present_column(arr, 2, 'present values for LOF')

    model = LocalOutlierFactor(n_neighbors=min(n_neighbors, column.shape[0] - 1))
    model.fit(column)

    scores = np.full(arr.shape, np.nan)
    scores[present] = -model.negative_outlier_factor_
    outliers = [int(i) for i in np.flatnonzero(present & (np.nan_to_num(scores) > threshold))]
    return OutlierResult(outliers, scores, threshold, 'Local Outlier Factor')


def isolation_forest_outliers(
    values: ArrayLike,
    n_estimators: int = 100,
    contamination: float = 0.1,
    random_state: Optional[int] = None
) -> OutlierResult:
    """
    Isolation Forest outliers.

    Scores are anomaly scores in (0, 1): values isolated by shorter random
    partition paths score higher. The threshold is the score cut that flags
    roughly `contamination` of the present values.

    Args:
        values: Numeric series (NaN = missing)
        n_estimators: Number of isolation trees
        contamination: Expected outlier share, in (0, 0.5]
        random_state: Seed for tree construction
    """
    n_estimators = check_positive_int(n_estimators, 'n_estimators', 'outlier')
    if not 0 < contamination <= 0.5:
        raise InvalidParameterError(f"contamination must be in (0, 0.5], got {contamination}", 'outlier')
    arr = as_vector(values, 'outlier')
    present, column = _present_column(arr, 2, 'present values for isolation forest')

    model = IsolationForest(n_estimators=n_estimators, contamination=contamination,
                            random_state=random_state)
    flagged = model.fit(column).predict(column) == -1

    scores = np.full(arr.shape, np.nan)
    scores[present] = -model.score_samples(column)
    outliers = [int(i) for i in np.flatnonzero(present)[flagged]]
    return OutlierResult(outliers, scores, float(-model.offset_), 'Isolation Forest')


@dataclass
class MultivariateAnomalyDetector:
    """
    Per-feature z-score detector for feature vectors.

    A vector is anomalous when any present feature deviates more than
    `threshold` standard deviations from its fitted mean. Features with
    zero spread use a std of 1.
    """
    threshold: float = 3.0
    mean_: Optional[np.ndarray] = field(default=None, repr=False)
    std_: Optional[np.ndarray] = field(default=None, repr=False)

    def fit(self, data: DatasetLike) -> 'MultivariateAnomalyDetector':
        """Learn per-feature mean and std, ignoring missing values."""
        _check_threshold(self.threshold, 'anomaly')
        X = as_dataset(data, 'anomaly')
        self.mean_ = np.nanmean(X, axis=0)
        std = np.nanstd(X, axis=0)
        self.std_ = np.where((std == 0) | np.isnan(std), 1.0, std)
        return self

    def _z(self, point: ArrayLike) -> np.ndarray:
        if self.mean_ is None:
            raise NotFittedError("MultivariateAnomalyDetector must be fitted first", 'anomaly')
        arr = as_vector(point, 'anomaly')
        if arr.size != self.mean_.size:
            raise DimensionMismatchError(
                f"Expected {self.mean_.size} features, got {arr.size}", 'anomaly'
            )
        return np.abs((arr - self.mean_) / self.std_)

    def score(self, point: ArrayLike) -> float:
        """Largest per-feature |z| (missing features ignored; 0 if all missing)."""
        z = self._z(point)
        z = z[~np.isnan(z)]
        return float(z.max()) if z.size else 0.0

    def is_anomaly(self, point: ArrayLike) -> bool:
        return self.score(point) > self.threshold
