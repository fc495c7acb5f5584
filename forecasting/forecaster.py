"""
Time-Series Forecasting

Smoothing, trend, seasonality and forecasting for daily biometric series.

Methods:
- Moving average and exponential moving average
- Least-squares linear trend and forecast
- Additive seasonal decomposition (centered moving-average trend)
- Holt-Winters triple exponential smoothing
- Simple and double (Holt) exponential smoothing
- Autocorrelation and seasonality detection

The module-level functions work on plain value arrays; TimeSeriesForecaster
binds them to one TimeSeries and a seasonal period.
"""

from typing import List, Optional, Iterable, Any
from dataclasses import dataclass, field
import numpy as np

from analysis.errors import InsufficientDataError, InvalidParameterError
from analysis.validation import (
    as_vector,
    check_min_samples,
    check_positive_int,
    check_probability,
    ArrayLike,
)
from analysis.statistical import coefficient_of_variation
from analysis.anomaly import Anomaly, detect_anomalies
from .series import TimeSeries, PointLike

STABLE_SLOPE = 0.01
MIN_CONFIDENCE = 0.4
SEASONALITY_PEAK = 0.3
FORECAST_METHODS = ('linear', 'holt_winters', 'exponential', 'holt')


@dataclass
class TrendAnalysis:
    """
    Least-squares line over index vs. value.

    Attributes:
        slope: Change per step
        intercept: Fitted value at index 0
        r_squared: Goodness of fit (0 for a constant series)
        direction: 'increasing', 'decreasing' or 'stable' (|slope| < 0.01)
        strength: 'weak' (r2 < 0.3), 'moderate' (r2 < 0.7) or 'strong'
    """
    slope: float
    intercept: float
    r_squared: float
    direction: str
    strength: str

    def to_dict(self) -> dict:
        return {
            'slope': self.slope,
            'intercept': self.intercept,
            'r_squared': self.r_squared,
            'direction': self.direction,
            'strength': self.strength,
        }


@dataclass
class SeasonalDecomposition:
    """Additive decomposition: value = trend + seasonal + residual."""
    trend: np.ndarray
    seasonal: np.ndarray
    residual: np.ndarray
    period: int

    @property
    def seasonal_indices(self) -> np.ndarray:
        """One seasonal index per phase 0..period-1."""
        return self.seasonal[:self.period].copy()


@dataclass
class SmoothingResult:
    """
    Exponential smoothing output.

    Attributes:
        forecast: Forecast values for each future step
        lower: Lower 95% bound per step
        upper: Upper 95% bound per step
        fitted: Smoothed in-sample values
        residuals: value - fitted
    """
    forecast: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    fitted: np.ndarray
    residuals: np.ndarray


@dataclass
class SeasonalityResult:
    has_season: bool
    period: Optional[int] = None
    strength: Optional[float] = None


@dataclass
class ForecastPoint:
    """
    Forecast for one future step.

    Attributes:
        offset: Steps beyond the last observation (1-based)
        predicted: Point forecast
        lower: Lower interval bound
        upper: Upper interval bound
        confidence: Confidence in [0.4, 0.95], decreasing with offset
    """
    offset: int
    predicted: float
    lower: float
    upper: float
    confidence: float
    timestamp: Optional[Any] = None

    def to_dict(self) -> dict:
        return {
            'offset': self.offset,
            'timestamp': None if self.timestamp is None else str(self.timestamp),
            'predicted': self.predicted,
            'lower': self.lower,
            'upper': self.upper,
            'confidence': self.confidence,
        }


@dataclass
class ForecastResult:
    """
    Forecast sequence with context.

    Attributes:
        method: Forecasting method used
        points: One ForecastPoint per step
        trend_direction: Direction of the historical trend
        volatility: Coefficient of variation of the history (fraction)
        residual_std: Std of in-sample residuals used for the intervals
    """
    method: str
    points: List[ForecastPoint] = field(default_factory=list)
    trend_direction: str = 'stable'
    volatility: float = 0.0
    residual_std: float = 0.0

    @property
    def predictions(self) -> np.ndarray:
        return np.array([p.predicted for p in self.points])

    def to_dict(self) -> dict:
        return {
            'method': self.method,
            'trend_direction': self.trend_direction,
            'volatility': self.volatility,
            'residual_std': self.residual_std,
            'points': [p.to_dict() for p in self.points],
        }


# --- smoothing ---

def moving_average(values: ArrayLike, window: int) -> np.ndarray:
    """
    Trailing moving average.

    Returns:
        Array of length n - window + 1; element i averages values[i:i+window]

    Raises:
        InsufficientDataError: If the series is shorter than the window
    """
    window = check_positive_int(window, 'window', 'forecast')
    arr = as_vector(values, 'forecast')
    check_min_samples(arr.size, window, 'values for the moving-average window', 'forecast')
    cumsum = np.cumsum(np.insert(arr, 0, 0.0))
    return (cumsum[window:] - cumsum[:-window]) / window


def exponential_moving_average(values: ArrayLike, alpha: float) -> np.ndarray:
    """ema[0] = value[0]; ema[i] = alpha * value[i] + (1 - alpha) * ema[i-1]."""
    alpha = check_probability(alpha, 'alpha', 'forecast')
    arr = as_vector(values, 'forecast')
    ema = np.empty_like(arr)
    ema[0] = arr[0]
    for i in range(1, arr.size):
        ema[i] = alpha * arr[i] + (1 - alpha) * ema[i - 1]
    return ema


# --- trend ---

def analyze_trend(values: ArrayLike) -> TrendAnalysis:
    """
    Closed-form least-squares fit of value against index.

    Raises:
        InsufficientDataError: Fewer than 2 points
    """
    y = as_vector(values, 'forecast')
    check_min_samples(y.size, 2, 'points for a regression', 'forecast')

    x = np.arange(y.size, dtype=float)
    x_mean, y_mean = x.mean(), y.mean()
    slope = float(np.sum((x - x_mean) * (y - y_mean)) / np.sum((x - x_mean) ** 2))
    intercept = float(y_mean - slope * x_mean)

    ss_tot = float(np.sum((y - y_mean) ** 2))
    ss_res = float(np.sum((y - (slope * x + intercept)) ** 2))
    r_squared = 0.0 if ss_tot == 0 else 1 - ss_res / ss_tot

    if abs(slope) < STABLE_SLOPE:
        direction = 'stable'
    elif slope > 0:
        direction = 'increasing'
    else:
        direction = 'decreasing'

    if r_squared < 0.3:
        strength = 'weak'
    elif r_squared < 0.7:
        strength = 'moderate'
    else:
        strength = 'strong'

    return TrendAnalysis(slope, intercept, r_squared, direction, strength)


def linear_forecast(values: ArrayLike, steps: int) -> np.ndarray:
    """Extrapolate the least-squares line `steps` points beyond the series."""
    steps = check_positive_int(steps, 'steps', 'forecast')
    trend = analyze_trend(values)
    n = len(as_vector(values, 'forecast'))
    future = np.arange(n, n + steps, dtype=float)
    return trend.slope * future + trend.intercept


# --- seasonality ---

def decompose(values: ArrayLike, period: int) -> SeasonalDecomposition:
    """
    Additive seasonal decomposition.

    Trend is the moving average of window `period` centered on each point;
    the first and last floor(period/2) points copy the raw value. Seasonal
    index per phase is the mean of (value - trend) over i mod period.

    Raises:
        InsufficientDataError: Fewer than 2 * period points
    """
    period = _check_period(period)
    arr = as_vector(values, 'forecast')
    check_min_samples(arr.size, 2 * period, f'points for seasonal period {period}', 'forecast')

    n = arr.size
    ma = moving_average(arr, period)
    offset = period // 2
    trend = arr.copy()
    for i in range(offset, n - offset):
        trend[i] = ma[i - offset]

    detrended = arr - trend
    phases = np.arange(n) % period
    indices = np.array([detrended[phases == p].mean() for p in range(period)])
    seasonal = indices[phases]
    residual = arr - trend - seasonal
    return SeasonalDecomposition(trend, seasonal, residual, period)


def holt_winters(
    values: ArrayLike,
    period: int,
    steps: int,
    alpha: float = 0.3,
    beta: float = 0.1,
    gamma: float = 0.1
) -> np.ndarray:
    """
    Holt-Winters additive forecast.

    Level starts at value[0], trend at 0, and seasonal components at the
    decomposition's seasonal indices. Each later observation updates level,
    trend and the seasonal component of its phase; the forecast for step h
    is level + h * trend + seasonal[(n + h - 1) mod period].
    """
    alpha = check_probability(alpha, 'alpha', 'forecast')
    beta = check_probability(beta, 'beta', 'forecast', allow_zero=True)
    gamma = check_probability(gamma, 'gamma', 'forecast', allow_zero=True)
    steps = check_positive_int(steps, 'steps', 'forecast')
    arr = as_vector(values, 'forecast')
    seasonal = decompose(arr, period).seasonal_indices

    level = arr[0]
    trend = 0.0
    for i in range(1, arr.size):
        phase = i % period
        prev_level = level
        level = alpha * (arr[i] - seasonal[phase]) + (1 - alpha) * (prev_level + trend)
        trend = beta * (level - prev_level) + (1 - beta) * trend
        seasonal[phase] = gamma * (arr[i] - level) + (1 - gamma) * seasonal[phase]

    n = arr.size
    return np.array([
        level + (h + 1) * trend + seasonal[(n + h) % period] for h in range(steps)
    ])


def _check_period(period: int) -> int:
    period = check_positive_int(period, 'period', 'forecast')
    if period < 2:
        raise InvalidParameterError(f"Seasonal period must be >= 2, got {period}", 'forecast')
    return period


# --- exponential smoothing ---

def _smoothing_result(arr: np.ndarray, fitted: np.ndarray, forecast: np.ndarray) -> SmoothingResult:
    residuals = arr - fitted
    margin = 1.96 * float(residuals.std())
    return SmoothingResult(forecast, forecast - margin, forecast + margin, fitted, residuals)


def simple_exponential_smoothing(values: ArrayLike, steps: int = 10, alpha: float = 0.3) -> SmoothingResult:
    """Flat forecast at the last smoothed level."""
    steps = check_positive_int(steps, 'steps', 'forecast')
    arr = as_vector(values, 'forecast')
    fitted = exponential_moving_average(arr, alpha)
    return _smoothing_result(arr, fitted, np.full(steps, fitted[-1]))


def double_exponential_smoothing(
    values: ArrayLike,
    steps: int = 10,
    alpha: float = 0.3,
    beta: float = 0.1
) -> SmoothingResult:
    """
    Holt's linear method.

    Level starts at value[0] and trend at value[1] - value[0].
    """
    alpha = check_probability(alpha, 'alpha', 'forecast')
    beta = check_probability(beta, 'beta', 'forecast', allow_zero=True)
    steps = check_positive_int(steps, 'steps', 'forecast')
    arr = as_vector(values, 'forecast')
    check_min_samples(arr.size, 2, 'points for double exponential smoothing', 'forecast')

    level, trend = arr[0], arr[1] - arr[0]
    fitted = [level]
    for value in arr[1:]:
        prev_level = level
        level = alpha * value + (1 - alpha) * (level + trend)
        trend = beta * (level - prev_level) + (1 - beta) * trend
        fitted.append(level)

    forecast = level + trend * np.arange(1, steps + 1)
    return _smoothing_result(arr, np.array(fitted), forecast)


# --- autocorrelation ---

def autocorrelation(values: ArrayLike, max_lag: int = 20) -> np.ndarray:
    """
    Sample autocorrelation for lags 0..max_lag (capped at n - 1).

    A constant series has ACF 1 at lag 0 and 0 elsewhere.
    """
    max_lag = check_positive_int(max_lag, 'max_lag', 'forecast')
    arr = as_vector(values, 'forecast')
    n = arr.size
    max_lag = min(max_lag, n - 1)
    centered = arr - arr.mean()
    denominator = float(centered @ centered)

    acf = np.zeros(max_lag + 1)
    acf[0] = 1.0
    if denominator == 0:
        return acf
    for lag in range(1, max_lag + 1):
        acf[lag] = float(centered[:n - lag] @ centered[lag:]) / denominator
    return acf


def detect_seasonality(values: ArrayLike, max_period: int = 30) -> SeasonalityResult:
    """Strongest local ACF peak above 0.3, if any."""
    acf = autocorrelation(values, max_period)
    peaks = [
        (lag, acf[lag]) for lag in range(1, acf.size - 1)
        if acf[lag] > acf[lag - 1] and acf[lag] > acf[lag + 1] and acf[lag] > SEASONALITY_PEAK
    ]
    if not peaks:
        return SeasonalityResult(has_season=False)
    lag, strength = max(peaks, key=lambda peak: peak[1])
    return SeasonalityResult(has_season=True, period=int(lag), strength=float(strength))


class TimeSeriesForecaster:
    """
    Forecaster bound to one series and a seasonal period.

    Usage:
        forecaster = TimeSeriesForecaster(seasonality=7)
        forecaster.add_data(zip(frame['date'], frame['hrv']))
        result = forecaster.forecast(steps=7, method='holt_winters')
    """

    def __init__(self, seasonality: int = 7, data: Optional[Iterable[PointLike]] = None, name: str = 'value'):
        """
        Args:
            seasonality: Seasonal period in observations (7 = weekly for daily data)
            data: Initial (timestamp, value) points
            name: Metric name
        """
        self.seasonality = _check_period(seasonality)
        self.series = TimeSeries(data, name=name)

    @classmethod
    def from_series(cls, series: TimeSeries, seasonality: int = 7) -> 'TimeSeriesForecaster':
        return cls(seasonality=seasonality, data=list(series), name=series.name)

    def add_data(self, points: Iterable[PointLike]) -> 'TimeSeriesForecaster':
        """Merge points into the series (kept chronological)."""
        self.series.add_data(points)
        return self

    @property
    def values(self) -> np.ndarray:
        return self.series.values

    def __len__(self) -> int:
        return len(self.series)

    def moving_average(self, window: int) -> np.ndarray:
        return moving_average(self.values, window)

    def exponential_moving_average(self, alpha: float = 0.3) -> np.ndarray:
        return exponential_moving_average(self.values, alpha)

    def analyze_trend(self) -> TrendAnalysis:
        return analyze_trend(self.values)

    def linear_forecast(self, steps: int) -> np.ndarray:
        return linear_forecast(self.values, steps)

    def decompose(self) -> SeasonalDecomposition:
        return decompose(self.values, self.seasonality)

    def holt_winters(self, steps: int, alpha: float = 0.3, beta: float = 0.1, gamma: float = 0.1) -> np.ndarray:
        return holt_winters(self.values, self.seasonality, steps, alpha, beta, gamma)

    def simple_exponential_smoothing(self, steps: int = 10, alpha: float = 0.3) -> SmoothingResult:
        return simple_exponential_smoothing(self.values, steps, alpha)

    def double_exponential_smoothing(self, steps: int = 10, alpha: float = 0.3, beta: float = 0.1) -> SmoothingResult:
        return double_exponential_smoothing(self.values, steps, alpha, beta)

    def autocorrelation(self, max_lag: int = 20) -> np.ndarray:
        return autocorrelation(self.values, max_lag)

    def detect_seasonality(self, max_period: int = 30) -> SeasonalityResult:
        return detect_seasonality(self.values, max_period)

    def detect_anomalies(self, threshold: float = 2.5) -> List[Anomaly]:
        """Z-score anomalies against the full series, with timestamps."""
        return detect_anomalies(self.values, threshold, timestamps=self.series.timestamps)

    def _fit(self, method: str, steps: int, alpha: float, beta: float, gamma: float):
        """Forecast values and in-sample residuals for a method."""
        values = self.values
        if method == 'linear':
            trend = analyze_trend(values)
            fitted = trend.slope * np.arange(values.size) + trend.intercept
            return linear_forecast(values, steps), values - fitted
        if method == 'holt_winters':
            residuals = decompose(values, self.seasonality).residual
            return holt_winters(values, self.seasonality, steps, alpha, beta, gamma), residuals
        if method == 'exponential':
            result = simple_exponential_smoothing(values, steps, alpha)
            return result.forecast, result.residuals
        if method == 'holt':
            result = double_exponential_smoothing(values, steps, alpha, beta)
            return result.forecast, result.residuals
        raise InvalidParameterError(
            f"method must be one of {FORECAST_METHODS}, got '{method}'", 'forecast'
        )

    def forecast(
        self,
        steps: int = 7,
        method: str = 'linear',
        alpha: float = 0.3,
        beta: float = 0.1,
        gamma: float = 0.1
    ) -> ForecastResult:
        """
        Forecast with widening intervals.

        The interval for step h is predicted +/- 1.96 * residual_std *
        (1 + 0.15 h); confidence is max(0.4, 0.95 - 0.05 h).

        Args:
            steps: Forecast horizon
            method: 'linear', 'holt_winters', 'exponential' or 'holt'
            alpha, beta, gamma: Smoothing parameters where the method uses them

        Returns:
            ForecastResult
        """
        if len(self.series) < 2:
            raise InsufficientDataError(f"Need at least 2 points to forecast, got {len(self.series)}", 'forecast')
        predicted, residuals = self._fit(method, steps, alpha, beta, gamma)
        residual_std = float(np.std(residuals))

        timestamps = self.series.timestamps
        step_size = timestamps[-1] - timestamps[-2]

        points = []
        for h, value in enumerate(predicted, start=1):
            margin = 1.96 * residual_std * (1 + 0.15 * h)
            points.append(ForecastPoint(
                offset=h,
                predicted=float(value),
                lower=float(value - margin),
                upper=float(value + margin),
                confidence=max(MIN_CONFIDENCE, 0.95 - 0.05 * h),
                timestamp=timestamps[-1] + h * step_size,
            ))

        return ForecastResult(
            method=method,
            points=points,
            trend_direction=analyze_trend(self.values).direction,
            volatility=coefficient_of_variation(self.values) / 100,
            residual_std=residual_std,
        )

    def __repr__(self) -> str:
        return f"TimeSeriesForecaster(seasonality={self.seasonality}, n_points={len(self)})"
