"""
Analysis Layer

Statistics, distances, clustering, dimensionality reduction and anomaly
detection over biometric feature vectors.
"""

from .errors import (
    ErrorKind,
    AnalyticsError,
    InsufficientDataError,
    DimensionMismatchError,
    InvalidParameterError,
    NotFittedError,
)
from .statistical import (
    StatisticalSummary,
    CorrelationAnalyzer,
    calculate_statistics,
    correlation,
    z_score,
    normalize,
    standardize,
)
from .distance import (
    euclidean_distance,
    manhattan_distance,
    cosine_similarity,
    pairwise_distances,
)
from .clustering import (
    Cluster,
    KMeansClustering,
    KMeansResult,
    DBSCAN,
    DBSCANResult,
    ElbowResult,
    find_optimal_k,
    silhouette_score,
)
from .dimensionality import (
    DimensionalityReducer,
    PCAReducer,
    PCAResult,
    PrincipalComponent,
    pca,
)
from .anomaly import (
    Anomaly,
    Severity,
    OutlierResult,
    MultivariateAnomalyDetector,
    detect_anomalies,
    detect_rolling_anomalies,
)

__all__ = [
    # Errors
    'ErrorKind',
    'AnalyticsError',
    'InsufficientDataError',
    'DimensionMismatchError',
    'InvalidParameterError',
    'NotFittedError',

    # Statistics
    'StatisticalSummary',
    'CorrelationAnalyzer',
    'calculate_statistics',
    'correlation',
    'z_score',
    'normalize',
    'standardize',

    # Distance
    'euclidean_distance',
    'manhattan_distance',
    'cosine_similarity',
    'pairwise_distances',

    # Clustering
    'Cluster',
    'KMeansClustering',
    'KMeansResult',
    'DBSCAN',
    'DBSCANResult',
    'ElbowResult',
    'find_optimal_k',
    'silhouette_score',

    # Dimensionality Reduction
    'DimensionalityReducer',
    'PCAReducer',
    'PCAResult',
    'PrincipalComponent',
    'pca',

    # Anomalies
    'Anomaly',
    'Severity',
    'OutlierResult',
    'MultivariateAnomalyDetector',
    'detect_anomalies',
    'detect_rolling_anomalies',
]
