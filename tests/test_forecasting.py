import unittest
import numpy as np
import pandas as pd

from analysis.errors import InsufficientDataError, InvalidParameterError
from forecasting.series import TimeSeries, TimeSeriesPoint
from forecasting.forecaster import (
    TimeSeriesForecaster,
    moving_average,
    exponential_moving_average,
    analyze_trend,
    linear_forecast,
    decompose,
    holt_winters,
    simple_exponential_smoothing,
    double_exponential_smoothing,
    autocorrelation,
    detect_seasonality,
)


def daily(values, start='2024-01-01'):
    dates = pd.date_range(start, periods=len(values), freq='D')
    return list(zip(dates, values))


class TestTimeSeries(unittest.TestCase):

    def test_add_data_keeps_chronological_order(self):
        series = TimeSeries(daily([1.0, 2.0, 3.0], start='2024-01-05'))
        series.add_data(daily([10.0, 20.0], start='2024-01-01'))
        self.assertEqual(series.values.tolist(), [10.0, 20.0, 1.0, 2.0, 3.0])
        self.assertEqual(series.timestamps[0], pd.Timestamp('2024-01-01'))
        self.assertIsInstance(series[0], TimeSeriesPoint)

    def test_pandas_round_trip(self):
        frame = pd.DataFrame({
            'date': pd.date_range('2024-01-01', periods=4, freq='D'),
            'hrv': [50.0, np.nan, 52.0, 53.0],
        })
        series = TimeSeries.from_pandas(frame, value_column='hrv')
        self.assertEqual(len(series), 3)
        self.assertEqual(series.name, 'hrv')

        as_pandas = series.to_pandas()
        self.assertEqual(as_pandas.tolist(), [50.0, 52.0, 53.0])
        self.assertEqual(as_pandas.index[1], pd.Timestamp('2024-01-03'))

    def test_from_pandas_needs_value_column(self):
        frame = pd.DataFrame({'date': pd.date_range('2024-01-01', periods=2, freq='D'), 'hrv': [1.0, 2.0]})
        with self.assertRaises(InvalidParameterError) as ctx:
            TimeSeries.from_pandas(frame)
        self.assertEqual(ctx.exception.component, 'forecast')


class TestSmoothing(unittest.TestCase):

    def test_moving_average_constant(self):
        np.testing.assert_allclose(moving_average([5, 5, 5, 5, 5], 3), [5, 5, 5])

    def test_moving_average_values(self):
        np.testing.assert_allclose(moving_average([1, 2, 3, 4], 2), [1.5, 2.5, 3.5])

    def test_moving_average_short_series(self):
        with self.assertRaises(InsufficientDataError):
            moving_average([1, 2], 3)

    def test_ema_constant_for_any_alpha(self):
        for alpha in (0.1, 0.5, 1.0):
            np.testing.assert_allclose(exponential_moving_average([5] * 5, alpha), [5] * 5)

    def test_ema_recursion(self):
        np.testing.assert_allclose(exponential_moving_average([0, 10], 0.3), [0, 3])

    def test_ema_invalid_alpha(self):
        with self.assertRaises(InvalidParameterError):
            exponential_moving_average([1, 2, 3], 0.0)

    def test_simple_exponential_smoothing_is_flat(self):
        result = simple_exponential_smoothing([1, 2, 3, 4], steps=3, alpha=0.5)
        self.assertEqual(len(set(result.forecast.tolist())), 1)
        np.testing.assert_allclose(result.upper - result.forecast, result.forecast - result.lower)

    def test_double_exponential_smoothing_follows_line(self):
        result = double_exponential_smoothing([1, 2, 3, 4, 5], steps=2)
        np.testing.assert_allclose(result.forecast, [6, 7])
        np.testing.assert_allclose(result.residuals, 0, atol=1e-12)


class TestTrend(unittest.TestCase):

    def test_linear_forecast_exact(self):
        np.testing.assert_allclose(linear_forecast([1, 2, 3, 4, 5], 2), [6, 7])

    def test_regression_needs_two_points(self):
        with self.assertRaises(InsufficientDataError):
            linear_forecast([1.0], 3)

    def test_analyze_trend(self):
        rising = analyze_trend([1, 2, 3, 4, 5])
        self.assertAlmostEqual(rising.slope, 1.0)
        self.assertAlmostEqual(rising.r_squared, 1.0)
        self.assertEqual(rising.direction, 'increasing')
        self.assertEqual(rising.strength, 'strong')

        flat = analyze_trend([3, 3, 3, 3])
        self.assertEqual(flat.direction, 'stable')
        self.assertEqual(flat.r_squared, 0.0)
        self.assertEqual(flat.strength, 'weak')

        self.assertEqual(analyze_trend([5, 4, 3]).direction, 'decreasing')


class TestSeasonality(unittest.TestCase):

    def setUp(self):
        pattern = np.array([0.0, 1.0, 2.0, 3.0, 2.0, 1.0, 0.0])
        self.values = np.tile(pattern, 6) + 50.0

    def test_decomposition_is_additive(self):
        result = decompose(self.values, 7)
        np.testing.assert_allclose(result.trend + result.seasonal + result.residual, self.values)
        self.assertEqual(result.seasonal_indices.shape, (7,))
        # phases repeat
        np.testing.assert_allclose(result.seasonal[:7], result.seasonal[7:14])

    def test_decomposition_edges_copy_raw(self):
        result = decompose(self.values, 7)
        np.testing.assert_allclose(result.trend[:3], self.values[:3])
        np.testing.assert_allclose(result.trend[-3:], self.values[-3:])

    def test_short_series_rejected(self):
        with self.assertRaises(InsufficientDataError):
            decompose(self.values[:13], 7)
        with self.assertRaises(InsufficientDataError):
            holt_winters(self.values[:13], 7, steps=3)

    def test_holt_winters_constant(self):
        np.testing.assert_allclose(holt_winters([4.0] * 21, 7, steps=5), [4.0] * 5)

    def test_holt_winters_hand_computed(self):
        """Period 2 over [1, 3, 1, 3]: seasonal indices start at [-0.5, 0.5].

        After the updates level=2.078125, trend=0.2421875 and the seasonal
        components are [-0.65625, 0.8984375]. Step 1 follows index 3, so it
        takes phase 0.
        """
        forecast = holt_winters([1.0, 3.0, 1.0, 3.0], 2, steps=2, alpha=0.5, beta=0.5, gamma=0.5)
        np.testing.assert_allclose(forecast, [1.6640625, 3.4609375])

    def test_holt_winters_horizon(self):
        forecast = holt_winters(self.values, 7, steps=10)
        self.assertEqual(forecast.shape, (10,))
        self.assertTrue(np.all(np.isfinite(forecast)))

    def test_autocorrelation(self):
        acf = autocorrelation(self.values, max_lag=10)
        self.assertEqual(acf[0], 1.0)
        self.assertEqual(acf.size, 11)
        np.testing.assert_array_equal(autocorrelation([2.0] * 10, 5), [1, 0, 0, 0, 0, 0])

    def test_detect_weekly_seasonality(self):
        t = np.arange(70)
        result = detect_seasonality(np.sin(2 * np.pi * t / 7), max_period=20)
        self.assertTrue(result.has_season)
        self.assertEqual(result.period, 7)

    def test_no_seasonality_in_line(self):
        self.assertFalse(detect_seasonality(np.arange(40.0), max_period=10).has_season)


class TestForecaster(unittest.TestCase):

    def setUp(self):
        self.forecaster = TimeSeriesForecaster(seasonality=7, data=daily(np.arange(1.0, 22.0)), name='readiness')

    def test_linear_forecast_result(self):
        result = self.forecaster.forecast(steps=3, method='linear')
        np.testing.assert_allclose(result.predictions, [22, 23, 24])
        self.assertEqual(result.trend_direction, 'increasing')
        self.assertAlmostEqual(result.residual_std, 0.0, places=10)

        first = result.points[0]
        self.assertEqual(first.offset, 1)
        self.assertAlmostEqual(first.confidence, 0.9)
        self.assertAlmostEqual(first.lower, first.predicted, places=6)
        self.assertEqual(first.timestamp, pd.Timestamp('2024-01-22'))

    def test_interval_widens_and_confidence_floors(self):
        rng = np.random.default_rng(0)
        noisy = TimeSeriesForecaster(data=daily(50 + rng.normal(0, 2, 30)))
        result = noisy.forecast(steps=20, method='holt')
        widths = [p.upper - p.lower for p in result.points]
        self.assertTrue(all(a < b for a, b in zip(widths, widths[1:])))
        self.assertEqual(result.points[-1].confidence, 0.4)
        self.assertGreater(result.volatility, 0.0)

    def test_methods_available(self):
        for method in ('linear', 'holt_winters', 'exponential', 'holt'):
            result = self.forecaster.forecast(steps=4, method=method)
            self.assertEqual(len(result.points), 4)
            self.assertEqual(result.method, method)

    def test_unknown_method(self):
        with self.assertRaises(InvalidParameterError):
            self.forecaster.forecast(steps=3, method='arima')

    def test_add_data_sorts(self):
        forecaster = TimeSeriesForecaster()
        forecaster.add_data(daily([3.0], start='2024-01-03'))
        forecaster.add_data(daily([1.0, 2.0], start='2024-01-01'))
        self.assertEqual(forecaster.values.tolist(), [1.0, 2.0, 3.0])

    def test_too_little_history(self):
        forecaster = TimeSeriesForecaster(data=daily([1.0]))
        with self.assertRaises(InsufficientDataError):
            forecaster.forecast(steps=3)

    def test_detect_anomalies_carries_dates(self):
        values = [10.0] * 30 + [60.0]
        forecaster = TimeSeriesForecaster(data=daily(values))
        anomalies = forecaster.detect_anomalies(threshold=2.5)
        self.assertEqual([a.index for a in anomalies], [30])
        self.assertEqual(anomalies[0].timestamp, pd.Timestamp('2024-01-31'))

    def test_invalid_seasonality(self):
        with self.assertRaises(InvalidParameterError):
            TimeSeriesForecaster(seasonality=1)


if __name__ == '__main__':
    unittest.main()
