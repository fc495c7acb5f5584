import json
import os
import tempfile
import unittest
import warnings
import numpy as np
import pandas as pd

from analysis.errors import InvalidParameterError
from pipeline.config import AnalysisConfig, load_config
from pipeline.runner import BiometricAnalysisPipeline
from pipeline.main import main


def make_daily_frame(n_days=60, seed=0):
    """Synthetic daily records with a weekly rhythm and correlated metrics."""
    rng = np.random.default_rng(seed)
    t = np.arange(n_days)
    hrv = 55 + 5 * np.sin(2 * np.pi * t / 7) + rng.normal(0, 1.5, n_days)
    return pd.DataFrame({
        'date': pd.date_range('2024-01-01', periods=n_days, freq='D').strftime('%Y-%m-%d'),
        'hrv': hrv,
        'resting_hr': 90 - 0.5 * hrv + rng.normal(0, 0.5, n_days),
        'sleep_score': 75 + rng.normal(0, 4, n_days),
    })


class TestConfig(unittest.TestCase):

    def test_defaults_validate(self):
        config = AnalysisConfig()
        config.validate()
        self.assertEqual(config.clustering.k, 'auto')
        self.assertFalse(config.network.enabled)

    def test_yaml_round_trip(self):
        config = AnalysisConfig.from_dict({
            'random_state': 7,
            'clustering': {'k': 3},
            'network': {'enabled': True, 'target': 'hrv', 'hidden_layers': [6, 3]},
        })
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'config.yaml')
            config.to_yaml(path)
            loaded = AnalysisConfig.from_yaml(path)
        self.assertEqual(loaded, config)
        self.assertEqual(loaded.network.hidden_layers, [6, 3])

    def test_unknown_keys_rejected(self):
        with self.assertRaises(InvalidParameterError):
            AnalysisConfig.from_dict({'clusterin': {}})
        with self.assertRaises(InvalidParameterError):
            AnalysisConfig.from_dict({'pca': {'components': 3}})

    def test_invalid_values_rejected(self):
        with self.assertRaises(InvalidParameterError):
            AnalysisConfig.from_dict({'clustering': {'k': 'many'}})
        with self.assertRaises(InvalidParameterError):
            AnalysisConfig.from_dict({'network': {'enabled': True}})
        with self.assertRaises(InvalidParameterError):
            AnalysisConfig.from_dict({'forecast': {'method': 'holtwinters'}})

    def test_project_config_loads(self):
        config = load_config(os.path.join(os.path.dirname(__file__), '..', 'config.yaml'))
        self.assertEqual(config.forecast.seasonality, 7)
        self.assertEqual(config.anomaly.threshold, 2.5)


class TestPipeline(unittest.TestCase):

    def setUp(self):
        self.frame = make_daily_frame()
        self.config = AnalysisConfig.from_dict({
            'verbose': False,
            'random_state': 0,
            'network': {'enabled': True, 'target': 'hrv', 'epochs': 50},
            'clustering': {'dbscan_eps': 1.0, 'dbscan_min_points': 3},
        })

    def test_full_run(self):
        results = BiometricAnalysisPipeline(self.config).run(self.frame)

        self.assertEqual(results['n_days'], 60)
        self.assertEqual(results['metrics'], ['hrv', 'resting_hr', 'sleep_score'])
        self.assertAlmostEqual(results['statistics']['hrv']['mean'], self.frame['hrv'].mean())

        pairs = {(p['metric_a'], p['metric_b']) for p in results['correlations']}
        self.assertIn(('hrv', 'resting_hr'), pairs)

        self.assertEqual(set(results['anomalies']), {'hrv', 'resting_hr', 'sleep_score'})
        self.assertEqual(len(results['forecasts']['hrv']['points']), 7)

        clustering = results['clustering']
        self.assertEqual(sum(clustering['sizes']), 60)
        self.assertEqual(len(clustering['labels']), 60)
        self.assertIn('elbow', clustering)
        self.assertIn('dbscan', clustering)

        self.assertEqual(len(results['pca']['explained_variance']), 2)

        network = results['network']
        self.assertEqual(network['n_examples'], 59)
        self.assertTrue(np.isfinite(network['next_value']))
        self.assertTrue(0.0 <= network['confidence'] <= 1.0)

    def test_disabled_stages_absent(self):
        config = AnalysisConfig.from_dict({
            'verbose': False,
            'clustering': {'enabled': False},
            'pca': {'enabled': False},
            'forecast': {'enabled': False},
        })
        results = BiometricAnalysisPipeline(config).run(self.frame)
        for key in ('clustering', 'pca', 'forecasts', 'network'):
            self.assertNotIn(key, results)
        self.assertIn('anomalies', results)

    def test_missing_values_are_dropped_for_multivariate(self):
        frame = self.frame.copy()
        frame.loc[5, 'sleep_score'] = np.nan
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            results = BiometricAnalysisPipeline(self.config).run(frame)
        self.assertEqual(sum(results['clustering']['sizes']), 59)
        self.assertTrue(any("missing metrics" in str(w.message) for w in caught))

    def test_selected_metrics(self):
        config = AnalysisConfig.from_dict({'verbose': False, 'metrics': ['hrv', 'sleep_score']})
        results = BiometricAnalysisPipeline(config).run(self.frame)
        self.assertEqual(results['metrics'], ['hrv', 'sleep_score'])

    def test_missing_columns(self):
        with self.assertRaises(InvalidParameterError):
            BiometricAnalysisPipeline(self.config).run(self.frame.drop(columns=['date']))
        config = AnalysisConfig.from_dict({'verbose': False, 'metrics': ['steps']})
        with self.assertRaises(InvalidParameterError):
            BiometricAnalysisPipeline(config).run(self.frame)

    def test_save_results(self):
        pipeline = BiometricAnalysisPipeline(self.config)
        results = pipeline.run(self.frame)
        with tempfile.TemporaryDirectory() as tmp:
            path = pipeline.save_results(results, tmp)
            with open(path) as f:
                saved = json.load(f)
        self.assertEqual(saved['n_days'], 60)
        self.assertEqual(saved['clustering']['k'], results['clustering']['k'])

    def test_cli(self):
        with tempfile.TemporaryDirectory() as tmp:
            data_path = os.path.join(tmp, 'daily.csv')
            self.frame.to_csv(data_path, index=False)
            out_dir = os.path.join(tmp, 'results')
            code = main([
                '--config', os.path.join(tmp, 'missing.yaml'),
                '--data', data_path,
                '--output', out_dir,
                '--quiet',
            ])
            self.assertEqual(code, 0)
            self.assertTrue(os.path.exists(os.path.join(out_dir, 'summary.json')))

    def test_cli_missing_data(self):
        with tempfile.TemporaryDirectory() as tmp:
            code = main(['--config', os.path.join(tmp, 'missing.yaml'),
                         '--data', os.path.join(tmp, 'nope.csv'), '--quiet'])
        self.assertEqual(code, 1)


if __name__ == '__main__':
    unittest.main()
