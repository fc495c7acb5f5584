"""
Forecasting Layer

Chronological series container and forecasting methods for daily metrics.
"""

from .series import TimeSeries, TimeSeriesPoint
from .forecaster import (
    TimeSeriesForecaster,
    TrendAnalysis,
    SeasonalDecomposition,
    SmoothingResult,
    SeasonalityResult,
    ForecastPoint,
    ForecastResult,
    moving_average,
    exponential_moving_average,
    analyze_trend,
    linear_forecast,
    decompose,
    holt_winters,
    autocorrelation,
    detect_seasonality,
)

__all__ = [
    'TimeSeries',
    'TimeSeriesPoint',
    'TimeSeriesForecaster',
    'TrendAnalysis',
    'SeasonalDecomposition',
    'SmoothingResult',
    'SeasonalityResult',
    'ForecastPoint',
    'ForecastResult',
    'moving_average',
    'exponential_moving_average',
    'analyze_trend',
    'linear_forecast',
    'decompose',
    'holt_winters',
    'autocorrelation',
    'detect_seasonality',
]
