"""
Biometric Analysis Pipeline

Runs every analysis stage over a table of daily records.

Steps:
1. Prepare data (parse dates, sort, pick metric columns)
2. Per-metric statistics and metric correlations
3. Per-metric anomaly detection
4. Per-metric forecasts
5. Cluster days by their standardized metric vectors
6. PCA over the same vectors
7. Optional next-day prediction network for one target metric
8. Export a JSON summary
"""

from pathlib import Path
from typing import Dict, Any, List, Optional, Union
import json
import warnings
import numpy as np
import pandas as pd
from tqdm import tqdm
from sklearn.preprocessing import StandardScaler, MinMaxScaler

from analysis.errors import InsufficientDataError, InvalidParameterError
from analysis.validation import check_min_samples
from analysis.statistical import calculate_statistics, CorrelationAnalyzer
from analysis.anomaly import detect_anomalies, detect_rolling_anomalies
from analysis.clustering import (
    KMeansClustering, DBSCAN, find_optimal_k, silhouette_score, NOISE,
)
from analysis.dimensionality import PCAReducer
from forecasting.series import TimeSeries
from forecasting.forecaster import TimeSeriesForecaster
from models.neural_network import NetworkConfig, NeuralNetwork
from .config import AnalysisConfig


def _json_default(obj):
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.generic):
        return obj.item()
    return str(obj)


class BiometricAnalysisPipeline:
    """
    Main analysis pipeline over daily biometric records.

    Usage:
        pipeline = BiometricAnalysisPipeline(AnalysisConfig.from_yaml('config.yaml'))
        results = pipeline.run(pd.read_csv('daily.csv'))
        pipeline.save_results(results)
    """

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or AnalysisConfig()
        self.config.validate()

    def _log(self, message: str) -> None:
        if self.config.verbose:
            print(message)

    # --- data ---

    def prepare(self, frame: pd.DataFrame) -> pd.DataFrame:
        """
        Parse dates, sort chronologically and keep the metric columns.

        Raises:
            InvalidParameterError: Date column or a configured metric is missing
            InsufficientDataError: No rows
        """
        date_col = self.config.date_column
        if date_col not in frame.columns:
            raise InvalidParameterError(f"Date column '{date_col}' not found", 'pipeline')
        if frame.empty:
            raise InsufficientDataError("No daily records to analyze", 'pipeline')

        if self.config.metrics:
            missing = [m for m in self.config.metrics if m not in frame.columns]
            if missing:
                raise InvalidParameterError(f"Metric columns not found: {missing}", 'pipeline')
            metrics = list(self.config.metrics)
        else:
            metrics = [c for c in frame.select_dtypes(include=[np.number]).columns if c != date_col]

        data = frame[[date_col] + metrics].copy()
        data[date_col] = pd.to_datetime(data[date_col])
        data = data.sort_values(date_col).reset_index(drop=True)
        data[metrics] = data[metrics].apply(pd.to_numeric, errors='coerce')
        return data

    def metric_columns(self, data: pd.DataFrame) -> List[str]:
        return [c for c in data.columns if c != self.config.date_column]

    def feature_matrix(self, data: pd.DataFrame) -> pd.DataFrame:
        """Days with every metric present."""
        features = data[self.metric_columns(data)].dropna()
        dropped = len(data) - len(features)
        if dropped:
            warnings.warn(f"Dropped {dropped} days with missing metrics from multivariate analysis")
        return features

    # --- per-metric stages ---

    def compute_statistics(self, data: pd.DataFrame) -> Dict[str, Dict[str, Any]]:
        stats = {}
        for metric in tqdm(self.metric_columns(data), desc="Statistics", disable=not self.config.verbose):
            values = data[metric].dropna()
            if values.empty:
                warnings.warn(f"Metric '{metric}' has no values, skipping statistics")
                continue
            stats[metric] = calculate_statistics(values).to_dict()
        return stats

    def compute_correlations(self, data: pd.DataFrame) -> List[Dict[str, Any]]:
        pairs = CorrelationAnalyzer().significant_pairs(data[self.metric_columns(data)])
        return [
            {'metric_a': p.metric_a, 'metric_b': p.metric_b,
             'correlation': p.correlation, 'p_value': p.p_value,
             'adjusted_p_value': p.adjusted_p_value, 'n': p.n}
            for p in pairs
        ]

    def detect_anomalies(self, data: pd.DataFrame) -> Dict[str, Dict[str, list]]:
        cfg = self.config.anomaly
        dates = data[self.config.date_column].tolist()
        found = {}
        for metric in tqdm(self.metric_columns(data), desc="Anomalies", disable=not self.config.verbose):
            values = data[metric].to_numpy(dtype=float)
            entry = {
                'global': [a.to_dict() for a in detect_anomalies(values, cfg.threshold, timestamps=dates)],
            }
            if cfg.rolling_window:
                entry['rolling'] = [
                    a.to_dict() for a in detect_rolling_anomalies(
                        values, cfg.rolling_window, cfg.rolling_threshold, timestamps=dates
                    )
                ]
            found[metric] = entry
        return found

    def forecast_metrics(self, data: pd.DataFrame) -> Dict[str, Dict[str, Any]]:
        cfg = self.config.forecast
        forecasts = {}
        for metric in tqdm(self.metric_columns(data), desc="Forecasting", disable=not self.config.verbose):
            series = TimeSeries.from_pandas(data, value_column=metric, date_column=self.config.date_column)
            forecaster = TimeSeriesForecaster.from_series(series, seasonality=cfg.seasonality)
            try:
                result = forecaster.forecast(cfg.steps, cfg.method, cfg.alpha, cfg.beta, cfg.gamma)
            except InsufficientDataError as e:
                warnings.warn(f"Skipping forecast for '{metric}': {e}")
                continue
            entry = result.to_dict()
            entry['trend'] = forecaster.analyze_trend().to_dict()
            forecasts[metric] = entry
        return forecasts

    # --- multivariate stages ---

    def cluster_days(self, features: pd.DataFrame) -> Dict[str, Any]:
        """K-means (k from the elbow method when 'auto') over standardized days."""
        cfg = self.config.clustering
        check_min_samples(len(features), 2, 'complete days for clustering', 'pipeline')
        X = StandardScaler().fit_transform(features.to_numpy(dtype=float))

        elbow = None
        if cfg.k == 'auto':
            elbow = find_optimal_k(X, max_k=min(cfg.max_k, len(X)), max_iter=cfg.max_iter,
                                   tol=cfg.tol, random_state=self.config.random_state)
            k = elbow.k
            self._log(f"    Elbow method selected k={k}")
        else:
            k = cfg.k

        result = KMeansClustering(k, cfg.max_iter, cfg.tol, self.config.random_state).fit(X)
        summary = {
            'k': k,
            'labels': result.labels,
            'sizes': result.sizes,
            'inertia': result.inertia,
            'converged': result.converged,
            'silhouette': silhouette_score(X, result.labels) if k > 1 else 0.0,
            'centroids': pd.DataFrame(
                result.centroids, columns=features.columns
            ).to_dict(orient='records'),
        }
        if elbow is not None:
            summary['elbow'] = {'k_values': elbow.k_values, 'inertias': elbow.inertias}

        if cfg.dbscan_eps is not None:
            density = DBSCAN(cfg.dbscan_eps, cfg.dbscan_min_points).fit(X)
            summary['dbscan'] = {
                'labels': density.labels,
                'n_clusters': density.n_clusters,
                'n_noise': int(np.sum(density.labels == NOISE)),
            }
        return summary

    def reduce_dimensions(self, features: pd.DataFrame) -> Dict[str, Any]:
        cfg = self.config.pca
        check_min_samples(len(features), 2, 'complete days for PCA', 'pipeline')
        n_components = min(cfg.n_components, features.shape[1])
        reducer = PCAReducer(n_components, scale_data=cfg.scale_data, random_state=self.config.random_state)
        result = reducer.fit_result(features)
        return {
            'explained_variance': result.explained_variance,
            'explained_variance_ratio': result.explained_variance_ratio,
            'loadings': reducer.get_loadings().to_dict(),
            'transformed': result.transformed,
        }

    def train_network(self, data: pd.DataFrame) -> Dict[str, Any]:
        """
        Predict the target metric on day t+1 from all metrics on day t.

        Features and target are min-max scaled to [0, 1]; the prediction is
        mapped back to the target's units.
        """
        cfg = self.config.network
        metrics = self.metric_columns(data)
        if cfg.target not in metrics:
            raise InvalidParameterError(f"Network target '{cfg.target}' is not a metric column", 'pipeline')

        pairs = data[metrics].copy()
        pairs['_next'] = data[cfg.target].shift(-1)
        pairs = pairs.dropna()
        check_min_samples(len(pairs), cfg.min_examples, 'consecutive complete days', 'pipeline')
        latest = data[metrics].dropna().iloc[-1:]

        x_scaler, y_scaler = MinMaxScaler(), MinMaxScaler()
        X = x_scaler.fit_transform(pairs[metrics].to_numpy(dtype=float))
        y = y_scaler.fit_transform(pairs[['_next']].to_numpy(dtype=float))

        net_config = NetworkConfig(
            input_size=len(metrics),
            hidden_layers=tuple(cfg.hidden_layers),
            output_size=1,
            learning_rate=cfg.learning_rate,
            activation=cfg.activation,
            derivative_mode=cfg.derivative_mode,
            dropout_rate=cfg.dropout_rate,
            min_examples=cfg.min_examples,
        )
        network = NeuralNetwork(net_config, random_state=self.config.random_state)
        history = network.train(list(zip(X, y)), epochs=cfg.epochs, batch_size=cfg.batch_size)

        x_latest = np.clip(x_scaler.transform(latest.to_numpy(dtype=float))[0], 0.0, 1.0)
        prediction = network.predict(x_latest, num_samples=cfg.num_samples)
        value = float(y_scaler.inverse_transform(prediction.prediction.reshape(1, -1))[0, 0])
        self._log(f"    Network error {history.final_error:.6f} after {history.epochs_run} epochs")

        return {
            'target': cfg.target,
            'n_examples': len(X),
            'final_error': history.final_error,
            'epochs_run': history.epochs_run,
            'converged': history.converged,
            'next_value': value,
            'confidence': prediction.confidence,
            'uncertainty': prediction.uncertainty,
        }

    # --- orchestration ---

    def run(self, frame: pd.DataFrame) -> Dict[str, Any]:
        """
        Run the complete analysis.

        Returns:
            Dictionary with statistics, correlations, anomalies, forecasts,
            clustering, pca and network results (disabled or skipped
            stages are absent)
        """
        self._log("🚀 Starting Biometric Analysis...")
        data = self.prepare(frame)
        metrics = self.metric_columns(data)
        results: Dict[str, Any] = {
            'n_days': len(data),
            'start': data[self.config.date_column].iloc[0],
            'end': data[self.config.date_column].iloc[-1],
            'metrics': metrics,
        }

        self._log("\n[PHASE 1] Statistics")
        results['statistics'] = self.compute_statistics(data)
        results['correlations'] = self.compute_correlations(data)

        if self.config.anomaly.enabled:
            self._log("\n[PHASE 2] Anomalies")
            results['anomalies'] = self.detect_anomalies(data)

        if self.config.forecast.enabled:
            self._log("\n[PHASE 3] Forecasts")
            results['forecasts'] = self.forecast_metrics(data)

        features = self.feature_matrix(data)
        stages = [
            ('clustering', self.config.clustering.enabled, lambda: self.cluster_days(features)),
            ('pca', self.config.pca.enabled, lambda: self.reduce_dimensions(features)),
            ('network', self.config.network.enabled, lambda: self.train_network(data)),
        ]
        for phase, (name, enabled, stage) in enumerate(stages, start=4):
            if not enabled:
                continue
            self._log(f"\n[PHASE {phase}] {name.upper()}")
            try:
                results[name] = stage()
            except InsufficientDataError as e:
                warnings.warn(f"Skipping {name}: {e}")

        self._log("\n✅ Analysis Finished.")
        return results

    def save_results(self, results: Dict[str, Any], output_dir: Optional[Union[str, Path]] = None) -> Path:
        """Write results as JSON to <output_dir>/summary.json."""
        out_dir = Path(output_dir or self.config.output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / "summary.json"
        with open(path, 'w') as f:
            json.dump(results, f, indent=2, default=_json_default)
        self._log(f"    Results saved to {path}")
        return path
