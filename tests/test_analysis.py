import unittest
import warnings
import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist
from sklearn.decomposition import PCA as SklearnPCA
from sklearn.metrics import silhouette_score as sklearn_silhouette

from analysis.errors import (
    ErrorKind,
    InsufficientDataError,
    DimensionMismatchError,
    InvalidParameterError,
    NotFittedError,
)
from analysis.validation import as_dataset
from analysis.statistical import (
    calculate_statistics,
    correlation,
    z_score,
    normalize,
    standardize,
    percentile_rank,
    CorrelationAnalyzer,
    summarize_frame,
)
from analysis.distance import (
    euclidean_distance,
    manhattan_distance,
    cosine_similarity,
    pairwise_distances,
)
from analysis.clustering import (
    KMeansClustering,
    DBSCAN,
    NOISE,
    kmeans,
    find_optimal_k,
    silhouette_score,
)
from analysis.dimensionality import (
    PCAReducer,
    pca,
    covariance_matrix,
    power_iteration,
    extract_components,
)
from analysis.anomaly import (
    Severity,
    classify_severity,
    detect_anomalies,
    detect_rolling_anomalies,
    modified_zscore_outliers,
    iqr_outliers,
    lof_outliers,
    isolation_forest_outliers,
    MultivariateAnomalyDetector,
)


def make_blobs(centers, n_per_blob=30, std=0.5, seed=0):
    rng = np.random.default_rng(seed)
    X = np.vstack([rng.normal(c, std, (n_per_blob, len(c))) for c in centers])
    y = np.repeat(np.arange(len(centers)), n_per_blob)
    return X, y


class TestValidation(unittest.TestCase):

    def test_ragged_dataset_rejected(self):
        with self.assertRaises(DimensionMismatchError) as ctx:
            as_dataset([[1, 2], [3]])
        self.assertEqual(ctx.exception.kind, ErrorKind.DIMENSION_MISMATCH)

    def test_empty_dataset_rejected(self):
        with self.assertRaises(InsufficientDataError):
            as_dataset([])

    def test_errors_are_value_errors(self):
        """Bad input keeps the ValueError contract."""
        with self.assertRaises(ValueError):
            as_dataset([])

    def test_flat_list_is_one_feature(self):
        """A list of plain numbers becomes a single-column dataset, like a 1D array."""
        self.assertEqual(as_dataset([1.0, 2.0, 3.0]).shape, (3, 1))
        np.testing.assert_array_equal(as_dataset([1.0, 2.0, 3.0]), as_dataset(np.array([1.0, 2.0, 3.0])))

        labels = kmeans([1.0, 2.0, 10.0, 11.0], k=2, random_state=0).labels
        self.assertEqual(labels[0], labels[1])
        self.assertEqual(labels[2], labels[3])
        self.assertNotEqual(labels[0], labels[2])

    def test_mixed_scalars_and_vectors_rejected(self):
        with self.assertRaises(DimensionMismatchError):
            as_dataset([1.0, [2.0, 3.0]])

    def test_input_not_mutated(self):
        data = np.array([[1.0, 2.0], [3.0, 4.0]])
        out = as_dataset(data)
        out[0, 0] = 99.0
        self.assertEqual(data[0, 0], 1.0)


class TestStatistics(unittest.TestCase):

    def test_calculate_statistics(self):
        """Summary of [1..5]."""
        s = calculate_statistics([1, 2, 3, 4, 5])
        self.assertAlmostEqual(s.mean, 3.0)
        self.assertAlmostEqual(s.median, 3.0)
        self.assertAlmostEqual(s.standard_deviation, np.sqrt(2), places=6)
        self.assertAlmostEqual(s.q1, 2.0)
        self.assertAlmostEqual(s.q3, 4.0)
        self.assertEqual(s.range, 4.0)
        self.assertEqual(s.n, 5)

    def test_statistics_even_length_median(self):
        s = calculate_statistics([4, 1, 3, 2])
        self.assertAlmostEqual(s.median, 2.5)
        self.assertEqual(s.min, 1.0)
        self.assertEqual(s.max, 4.0)

    def test_statistics_empty_raises(self):
        with self.assertRaises(InsufficientDataError):
            calculate_statistics([])

    def test_mode_returns_all_ties(self):
        s = calculate_statistics([1, 1, 2, 2, 3])
        self.assertEqual(s.mode, [1.0, 2.0])

    def test_correlation_symmetric_and_bounded(self):
        rng = np.random.default_rng(3)
        for _ in range(20):
            x = rng.normal(size=30)
            y = 0.5 * x + rng.normal(size=30)
            r_xy, r_yx = correlation(x, y), correlation(y, x)
            self.assertAlmostEqual(r_xy, r_yx, places=12)
            self.assertTrue(-1.0 <= r_xy <= 1.0)

    def test_correlation_perfect_and_degenerate(self):
        self.assertAlmostEqual(correlation([1, 2, 3], [2, 4, 6]), 1.0)
        self.assertAlmostEqual(correlation([1, 2, 3], [3, 2, 1]), -1.0)
        self.assertEqual(correlation([1, 1, 1], [1, 2, 3]), 0.0)

    def test_correlation_length_mismatch(self):
        with self.assertRaises(DimensionMismatchError):
            correlation([1, 2, 3], [1, 2])

    def test_zero_spread_is_neutral(self):
        self.assertEqual(z_score(10.0, 5.0, 0.0), 0.0)
        np.testing.assert_array_equal(normalize([7, 7, 7]), [0.5, 0.5, 0.5])
        np.testing.assert_array_equal(standardize([7, 7, 7]), [0.0, 0.0, 0.0])

    def test_normalize_range(self):
        np.testing.assert_allclose(normalize([2, 4, 6]), [0.0, 0.5, 1.0])

    def test_percentile_rank(self):
        self.assertAlmostEqual(percentile_rank(3, [1, 2, 3, 4]), 75.0)

    def test_correlation_analyzer(self):
        """Strongly related metrics are reported as a significant pair."""
        rng = np.random.default_rng(0)
        hrv = rng.normal(60, 10, 60)
        frame = pd.DataFrame({
            'hrv': hrv,
            'readiness': hrv * 0.8 + rng.normal(0, 2, 60),
            'steps': rng.normal(8000, 1500, 60),
            'constant': np.ones(60),
        })
        analyzer = CorrelationAnalyzer()
        pairs = analyzer.significant_pairs(frame, alpha=0.01)
        self.assertGreaterEqual(len(pairs), 1)
        self.assertEqual({pairs[0].metric_a, pairs[0].metric_b}, {'hrv', 'readiness'})

        raw = analyzer.significant_pairs(frame, alpha=0.01, correction=None)
        self.assertEqual(raw[0].adjusted_p_value, raw[0].p_value)
        strict = analyzer.significant_pairs(frame, alpha=0.01, correction='bonferroni')
        self.assertGreaterEqual(strict[0].adjusted_p_value, strict[0].p_value)

        matrix = analyzer.correlation_matrix(frame)
        self.assertEqual(matrix.loc['constant', 'hrv'], 0.0)
        self.assertAlmostEqual(matrix.loc['hrv', 'readiness'], matrix.loc['readiness', 'hrv'])

    def test_summarize_frame(self):
        frame = pd.DataFrame({'a': [1, 2, 3, np.nan], 'b': [2.0, 2.0, 2.0, 2.0]})
        summary = summarize_frame(frame)
        self.assertIn('a', summary.index)
        self.assertAlmostEqual(summary.loc['a', 'mean'], 2.0)
        self.assertAlmostEqual(summary.loc['b', 'standard_deviation'], 0.0)


class TestDistance(unittest.TestCase):

    def test_basic_metrics(self):
        self.assertAlmostEqual(euclidean_distance([0, 0], [3, 4]), 5.0)
        self.assertAlmostEqual(manhattan_distance([0, 0], [3, 4]), 7.0)
        self.assertAlmostEqual(cosine_similarity([1, 0], [0, 1]), 0.0)
        self.assertAlmostEqual(cosine_similarity([1, 1], [2, 2]), 1.0)

    def test_cosine_zero_vector(self):
        self.assertEqual(cosine_similarity([0, 0], [1, 2]), 0.0)

    def test_dimension_mismatch(self):
        with self.assertRaises(DimensionMismatchError):
            euclidean_distance([1, 2, 3], [1, 2])

    def test_pairwise_matches_scipy(self):
        rng = np.random.default_rng(1)
        X, Y = rng.normal(size=(6, 3)), rng.normal(size=(4, 3))
        np.testing.assert_allclose(pairwise_distances(X, Y), cdist(X, Y), atol=1e-10)
        np.testing.assert_allclose(
            pairwise_distances(X, metric='manhattan'), cdist(X, X, 'cityblock'), atol=1e-10
        )


class TestClustering(unittest.TestCase):

    def setUp(self):
        self.X, self.y = make_blobs([[0, 0], [10, 0], [5, 8.66]], n_per_blob=30)

    def test_two_pairs_partition(self):
        """Two obvious pairs end up in separate clusters."""
        data = [[0, 0], [0, 1], [10, 10], [10, 11]]
        result = kmeans(data, k=2, random_state=0)

        labels = result.labels
        self.assertEqual(labels[0], labels[1])
        self.assertEqual(labels[2], labels[3])
        self.assertNotEqual(labels[0], labels[2])

        centroids = sorted(result.centroids.tolist())
        np.testing.assert_allclose(centroids[0], [0, 0.5])
        np.testing.assert_allclose(centroids[1], [10, 10.5])
        self.assertTrue(result.converged)

    def test_every_point_assigned_once(self):
        for k in (1, 2, 3, 5):
            result = KMeansClustering(n_clusters=k, random_state=k).fit(self.X)
            self.assertEqual(len(result.labels), len(self.X))
            self.assertEqual(sum(result.sizes), len(self.X))
            self.assertTrue(set(result.labels.tolist()) <= set(range(k)))

    def test_blobs_recovered(self):
        result = KMeansClustering(n_clusters=3, random_state=42).fit(self.X)
        # each true blob maps onto exactly one cluster
        for blob in range(3):
            self.assertEqual(len(set(result.labels[self.y == blob].tolist())), 1)
        self.assertEqual(len(set(result.labels.tolist())), 3)

    def test_seeded_runs_identical(self):
        a = KMeansClustering(n_clusters=3, random_state=7).fit(self.X)
        b = KMeansClustering(n_clusters=3, random_state=7).fit(self.X)
        np.testing.assert_array_equal(a.labels, b.labels)
        np.testing.assert_array_equal(a.centroids, b.centroids)

    def test_empty_clusters_reseeded_from_data(self):
        """Clusters left empty take a data point as centroid instead of NaN."""
        result = kmeans([[0, 0]] * 5, k=3, random_state=0)
        self.assertEqual(result.sizes, [5, 0, 0])
        np.testing.assert_array_equal(result.centroids, np.zeros((3, 2)))
        self.assertTrue(result.converged)

    def test_iteration_cap(self):
        result = KMeansClustering(n_clusters=3, max_iter=1, tol=0.0, random_state=0).fit(self.X)
        self.assertEqual(result.n_iter, 1)
        self.assertFalse(result.converged)
        self.assertEqual(sum(result.sizes), len(self.X))

    def test_more_clusters_than_points(self):
        with self.assertRaises(InsufficientDataError):
            kmeans([[0, 0], [1, 1]], k=3)

    def test_predict(self):
        model = KMeansClustering(n_clusters=3, random_state=0)
        with self.assertRaises(NotFittedError):
            model.predict([0, 0])
        result = model.fit(self.X)
        self.assertEqual(model.predict([0.1, -0.1])[0], result.labels[0])
        with self.assertRaises(DimensionMismatchError):
            model.predict([[1, 2, 3]])

    def test_elbow_finds_three_blobs(self):
        elbow = find_optimal_k(self.X, max_k=6, random_state=0)
        self.assertEqual(elbow.k, 3)
        self.assertEqual(elbow.k_values, [1, 2, 3, 4, 5, 6])
        self.assertEqual(len(elbow.scores), 4)
        self.assertTrue(all(a >= b for a, b in zip(elbow.inertias, elbow.inertias[1:3])))

    def test_elbow_needs_three_candidates(self):
        with self.assertRaises(InsufficientDataError):
            find_optimal_k([[0, 0], [1, 1]], max_k=5)

    def test_silhouette_matches_sklearn(self):
        labels = KMeansClustering(n_clusters=3, random_state=0).fit(self.X).labels
        self.assertAlmostEqual(silhouette_score(self.X, labels), sklearn_silhouette(self.X, labels), places=8)

    def test_silhouette_degenerate(self):
        self.assertEqual(silhouette_score(self.X, np.zeros(len(self.X), dtype=int)), 0.0)

    def test_dbscan_clusters_and_noise(self):
        data = [
            [0, 0], [0, 0.1], [0.1, 0], [0.1, 0.1],
            [5, 5], [5, 5.1], [5.1, 5], [5.1, 5.1],
            [20, 20],
        ]
        result = DBSCAN(eps=0.5, min_points=2).fit(data)
        self.assertEqual(result.n_clusters, 2)
        self.assertEqual(result.noise_indices, [8])
        self.assertEqual(result.labels[8], NOISE)
        self.assertEqual(len(result.clusters()), 2)
        self.assertEqual(result.labels[0], result.labels[3])
        self.assertNotEqual(result.labels[0], result.labels[4])

    def test_dbscan_noise_becomes_border(self):
        """An endpoint first seen as noise joins the cluster of its core neighbour."""
        data = [[0, 0], [0.3, 0], [0.6, 0]]
        result = DBSCAN(eps=0.35, min_points=2).fit(data)
        np.testing.assert_array_equal(result.labels, [0, 0, 0])
        self.assertEqual(result.core_indices, [1])
        self.assertEqual(result.noise_indices, [])

    def test_dbscan_invalid_eps(self):
        with self.assertRaises(InvalidParameterError):
            DBSCAN(eps=0)


class TestDimensionality(unittest.TestCase):

    def setUp(self):
        rng = np.random.default_rng(42)
        self.X = rng.normal(size=(200, 3)) * np.array([10.0, 1.0, 0.5])
        self.df = pd.DataFrame(self.X, columns=['hrv', 'rhr', 'sleep'])

    def test_variance_concentrated_on_one_axis(self):
        result = pca(self.X, n_components=2, random_state=0)
        self.assertGreater(result.explained_variance[0], 10 * result.explained_variance[1])
        self.assertAlmostEqual(abs(result.components[0].vector[0]), 1.0, places=2)

    def test_matches_sklearn(self):
        reducer = PCAReducer(n_components=3, random_state=0).fit(self.X)
        reference = SklearnPCA(n_components=3).fit(self.X)
        np.testing.assert_allclose(reducer.get_explained_variance(), reference.explained_variance_, rtol=1e-3)
        np.testing.assert_allclose(
            reducer.get_explained_variance_ratio(), reference.explained_variance_ratio_, rtol=1e-3
        )

    def test_covariance_matrix(self):
        centered = self.X - self.X.mean(axis=0)
        np.testing.assert_allclose(covariance_matrix(centered), np.cov(self.X, rowvar=False), atol=1e-10)

    def test_transform_and_inverse(self):
        reducer = PCAReducer(n_components=3, random_state=0)
        reduced = reducer.fit_transform(self.df)
        self.assertEqual(reduced.shape, (200, 3))
        np.testing.assert_allclose(reducer.inverse_transform(reduced), self.X, atol=1e-2)

        mean_vector = reducer.result_.mean_vector
        np.testing.assert_allclose(mean_vector, self.X.mean(axis=0))

    def test_loadings_and_names(self):
        reducer = PCAReducer(n_components=2, random_state=0).fit(self.df)
        loadings = reducer.get_loadings()
        self.assertEqual(list(loadings.index), ['hrv', 'rhr', 'sleep'])
        self.assertEqual(list(loadings.columns), ['PC1', 'PC2'])

    def test_select_n_components(self):
        reducer = PCAReducer(n_components=1, random_state=0)
        n_needed = reducer.select_n_components(self.X, variance_threshold=0.9)
        self.assertTrue(isinstance(n_needed, (int, np.integer)))
        self.assertEqual(n_needed, 1)

    def test_power_iteration_cap(self):
        matrix = np.diag([3.0, 2.0, 1.0])
        _, vector, converged, n_iter = power_iteration(matrix, np.random.default_rng(0), 1e-12, 3)
        self.assertFalse(converged)
        self.assertEqual(n_iter, 3)
        self.assertAlmostEqual(np.linalg.norm(vector), 1.0)

        with self.assertWarns(UserWarning):
            components = extract_components(matrix, 1, np.random.default_rng(0), tol=1e-12, max_iter=1)
        self.assertFalse(components[0].converged)
        self.assertEqual(components[0].n_iter, 1)

    def test_too_many_components(self):
        with self.assertRaises(InvalidParameterError):
            PCAReducer(n_components=4).fit(self.X)

    def test_not_fitted(self):
        with self.assertRaises(NotFittedError):
            PCAReducer().transform(self.X)

    def test_nan_rows_dropped_with_warning(self):
        X = self.X.copy()
        X[0, 1] = np.nan
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            result = pca(X, n_components=2, random_state=0)
        self.assertEqual(result.transformed.shape, (199, 2))
        self.assertTrue(any("NaN" in str(w.message) for w in caught))


class TestAnomalies(unittest.TestCase):

    def setUp(self):
        rng = np.random.default_rng(5)
        self.values = rng.normal(50, 2, 100)

    def test_injected_spike_flagged(self):
        values = self.values.copy()
        values[50] = values.mean() + 5 * values.std()
        anomalies = detect_anomalies(values, threshold=2.5)
        self.assertIn(50, [a.index for a in anomalies])
        spike = [a for a in anomalies if a.index == 50][0]
        self.assertGreater(spike.deviation, 2.5)

    def test_constant_series_has_none(self):
        self.assertEqual(detect_anomalies([5.0] * 30), [])
        self.assertEqual(detect_rolling_anomalies([5.0] * 30), [])

    def test_missing_values_not_flagged(self):
        values = self.values.copy()
        values[10] = np.nan
        anomalies = detect_anomalies(values, threshold=2.5)
        self.assertNotIn(10, [a.index for a in anomalies])

    def test_severity_tiers(self):
        self.assertEqual(classify_severity(2.6, 2.5), Severity.MILD)
        self.assertEqual(classify_severity(4.0, 2.5), Severity.MODERATE)
        self.assertEqual(classify_severity(5.1, 2.5), Severity.SEVERE)

    def test_timestamps_attached(self):
        values = [1.0] * 30 + [100.0]
        dates = pd.date_range('2024-01-01', periods=31, freq='D')
        anomalies = detect_anomalies(values, threshold=2.5, timestamps=list(dates))
        self.assertEqual(len(anomalies), 1)
        self.assertEqual(anomalies[0].timestamp, dates[-1])
        self.assertEqual(anomalies[0].to_dict()['severity'], 'severe')

    def test_rolling_detects_level_shift(self):
        values = list(self.values[:30]) + [80.0]
        anomalies = detect_rolling_anomalies(values, window=7, threshold=2.0)
        self.assertIn(30, [a.index for a in anomalies])

    def test_robust_outlier_methods(self):
        values = list(self.values[:40]) + [120.0]
        self.assertIn(40, modified_zscore_outliers(values).outliers)
        self.assertIn(40, iqr_outliers(values).outliers)

    def test_lof_outliers(self):
        values = list(np.linspace(40, 60, 30)) + [120.0, np.nan]
        result = lof_outliers(values, n_neighbors=5)
        self.assertEqual(result.outliers, [30])
        self.assertEqual(result.method, 'Local Outlier Factor')
        self.assertGreater(result.scores[30], 1.5)
        self.assertTrue(np.isnan(result.scores[31]))
        with self.assertRaises(InsufficientDataError):
            lof_outliers([1.0])

    def test_isolation_forest_outliers(self):
        values = list(self.values[:40]) + [120.0]
        result = isolation_forest_outliers(values, contamination=0.05, random_state=0)
        self.assertIn(40, result.outliers)
        self.assertEqual(int(np.argmax(result.scores)), 40)
        self.assertTrue(np.all((result.scores > 0) & (result.scores < 1)))

        again = isolation_forest_outliers(values, contamination=0.05, random_state=0)
        np.testing.assert_array_equal(result.scores, again.scores)
        with self.assertRaises(InvalidParameterError):
            isolation_forest_outliers(values, contamination=0.9)

    def test_multivariate_detector(self):
        detector = MultivariateAnomalyDetector(threshold=3.0).fit(
            np.column_stack([self.values, self.values * 0 + 1.0])
        )
        self.assertFalse(detector.is_anomaly([50.0, 1.0]))
        self.assertTrue(detector.is_anomaly([80.0, 1.0]))
        self.assertEqual(detector.score([np.nan, 1.0]), 0.0)
        with self.assertRaises(DimensionMismatchError):
            detector.score([1.0])


if __name__ == '__main__':
    unittest.main()
