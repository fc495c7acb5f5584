"""
Clustering

Unsupervised grouping of daily biometric feature vectors.

Supports:
- K-Means with k-means++ seeding (Lloyd iterations, inertia)
- DBSCAN density clustering with noise labelling
- Model selection: elbow method over k and silhouette score

All randomness (k-means++ seeding, empty-cluster reseeding) comes from
one numpy Generator built from `random_state`, so a fixed seed gives a
fixed result.
"""

from typing import List, Optional, Union, Dict
from dataclasses import dataclass, field
import numpy as np

from .errors import (
    InsufficientDataError,
    InvalidParameterError,
    NotFittedError,
    DimensionMismatchError,
)
from .validation import as_dataset, check_positive_int, DatasetLike
from .distance import pairwise_distances

RandomState = Union[int, np.random.Generator, None]

NOISE = -1


@dataclass
class Cluster:
    """
    One k-means cluster.

    Attributes:
        id: Cluster index (0..k-1)
        centroid: Mean position of the members
        member_indices: Indices into the fitted dataset
        variance: Sum of squared member distances to the centroid / member count
    """
    id: int
    centroid: np.ndarray
    member_indices: np.ndarray
    variance: float

    @property
    def size(self) -> int:
        return int(len(self.member_indices))

    def __repr__(self) -> str:
        return f"Cluster(id={self.id}, size={self.size}, variance={self.variance:.4f})"


@dataclass
class KMeansResult:
    """
    Output of one k-means fit.

    Attributes:
        labels: Cluster index for each point, shape (n,)
        centroids: Final centroids, shape (k, d)
        inertia: Sum of squared distances of points to their centroid
        n_iter: Lloyd iterations actually run
        converged: Whether centroid movement fell below tolerance
        clusters: Per-cluster records
    """
    labels: np.ndarray
    centroids: np.ndarray
    inertia: float
    n_iter: int
    converged: bool
    clusters: List[Cluster] = field(default_factory=list)

    @property
    def sizes(self) -> List[int]:
        return [c.size for c in self.clusters]


@dataclass
class ElbowResult:
    """
    Elbow-method model selection.

    Attributes:
        k: Selected number of clusters
        k_values: Candidate k values (1..max_k)
        inertias: Mean inertia per candidate k
        scores: Second-difference elbow score per interior k (k_values[1:-1])
    """
    k: int
    k_values: List[int]
    inertias: List[float]
    scores: List[float]


@dataclass
class DBSCANResult:
    """
    Output of one DBSCAN fit.

    Attributes:
        labels: Cluster id per point, -1 for noise
        core_indices: Indices of core points
        n_clusters: Number of distinct clusters
        noise_indices: Indices labelled as noise
    """
    labels: np.ndarray
    core_indices: List[int]
    n_clusters: int
    noise_indices: List[int] = field(default_factory=list)

    def clusters(self) -> Dict[int, List[int]]:
        """Member indices grouped by cluster id (noise excluded)."""
        groups: Dict[int, List[int]] = {}
        for idx, label in enumerate(self.labels):
            if label != NOISE:
                groups.setdefault(int(label), []).append(idx)
        return groups


def _squared_distances(X: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    diff = X[:, None, :] - centroids[None, :, :]
    return np.einsum('ijk,ijk->ij', diff, diff)


class KMeansClustering:
    """
    K-Means clustering with k-means++ initialization.

    Usage:
        model = KMeansClustering(n_clusters=2, random_state=7)
        result = model.fit(features)
        labels = model.predict(new_points)
    """

    def __init__(
        self,
        n_clusters: int = 3,
        max_iter: int = 100,
        tol: float = 1e-4,
        random_state: RandomState = None
    ):
        """
        Initialize k-means.

        Args:
            n_clusters: Number of clusters k
            max_iter: Cap on Lloyd iterations
            tol: Stop when the largest centroid displacement is below this
            random_state: Seed or numpy Generator
        """
        self.n_clusters = check_positive_int(n_clusters, 'n_clusters', 'kmeans')
        self.max_iter = check_positive_int(max_iter, 'max_iter', 'kmeans')
        if tol < 0:
            raise InvalidParameterError(f"tol must be non-negative, got {tol}", 'kmeans')
        self.tol = tol
        self._rng = np.random.default_rng(random_state)
        self.centroids_: Optional[np.ndarray] = None

    def _init_centroids(self, X: np.ndarray) -> np.ndarray:
        """
        k-means++ seeding.

        The first centroid is a uniformly random point. Each next centroid
        is drawn with probability proportional to its squared distance from
        the nearest centroid already chosen.
        """
        n = X.shape[0]
        centroids = [X[self._rng.integers(n)].copy()]

        for _ in range(1, self.n_clusters):
            nearest_sq = _squared_distances(X, np.array(centroids)).min(axis=1)
            total = nearest_sq.sum()
            if total == 0:
                # every point coincides with a centroid
                idx = int(self._rng.integers(n))
            else:
                draw = self._rng.random() * total
                idx = int(np.searchsorted(np.cumsum(nearest_sq), draw, side='right'))
                idx = min(idx, n - 1)
            centroids.append(X[idx].copy())

        return np.array(centroids)

    def fit(self, data: DatasetLike) -> KMeansResult:
        """
        Cluster a dataset.

        Args:
            data: n vectors of dimensionality d

        Returns:
            KMeansResult

        Raises:
            InsufficientDataError: If n < k
            DimensionMismatchError: If vectors differ in length
        """
        X = as_dataset(data, 'kmeans')
        n = X.shape[0]
        if n < self.n_clusters:
            raise InsufficientDataError(
                f"Not enough data points ({n}) for {self.n_clusters} clusters", 'kmeans'
            )

        centroids = self._init_centroids(X)
        converged = False
        n_iter = 0

        for n_iter in range(1, self.max_iter + 1):
            labels = np.argmin(_squared_distances(X, centroids), axis=1)

            new_centroids = np.empty_like(centroids)
            for j in range(self.n_clusters):
                members = X[labels == j]
                if len(members) == 0:
                    new_centroids[j] = X[self._rng.integers(n)]
                else:
                    new_centroids[j] = members.mean(axis=0)

            shift = np.sqrt(((new_centroids - centroids) ** 2).sum(axis=1)).max()
            centroids = new_centroids
            if shift < self.tol:
                converged = True
                break

        sq = _squared_distances(X, centroids)
        labels = np.argmin(sq, axis=1)
        point_sq = sq[np.arange(n), labels]

        clusters = []
        for j in range(self.n_clusters):
            members = np.flatnonzero(labels == j)
            spread = float(point_sq[members].sum() / len(members)) if len(members) else 0.0
            clusters.append(Cluster(id=j, centroid=centroids[j].copy(),
                                    member_indices=members, variance=spread))

        self.centroids_ = centroids
        return KMeansResult(
            labels=labels,
            centroids=centroids.copy(),
            inertia=float(point_sq.sum()),
            n_iter=n_iter,
            converged=converged,
            clusters=clusters,
        )

    def predict(self, points: DatasetLike) -> np.ndarray:
        """Nearest-centroid cluster for each point."""
        if self.centroids_ is None:
            raise NotFittedError("KMeansClustering must be fitted first", 'kmeans')
        if np.ndim(points) == 1:
            points = [list(points)]
        X = as_dataset(points, 'kmeans')
        if X.shape[1] != self.centroids_.shape[1]:
            raise DimensionMismatchError(
                f"Points have {X.shape[1]} features, centroids have {self.centroids_.shape[1]}",
                'kmeans'
            )
        return np.argmin(_squared_distances(X, self.centroids_), axis=1)


def kmeans(
    data: DatasetLike,
    k: int,
    max_iter: int = 100,
    tol: float = 1e-4,
    random_state: RandomState = None
) -> KMeansResult:
    """Functional shortcut for KMeansClustering(k, ...).fit(data)."""
    return KMeansClustering(k, max_iter, tol, random_state).fit(data)


def find_optimal_k(
    data: DatasetLike,
    max_k: int = 10,
    trials: int = 5,
    max_iter: int = 100,
    tol: float = 1e-4,
    random_state: RandomState = None
) -> ElbowResult:
    """
    Elbow method.

    Runs k-means for k = 1..max_k (inertia averaged over several trials),
    scores each interior k by the second difference
    inertia[k-1] - 2*inertia[k] + inertia[k+1] and picks the k with the
    largest score. The difference is centred on k, not the backward
    difference that would report the next k.

    Args:
        data: Dataset to cluster
        max_k: Largest k tried (capped at the number of points)
        trials: k-means runs averaged per k
        max_iter: Lloyd iteration cap per run
        tol: Convergence tolerance per run
        random_state: Seed or Generator shared by all runs

    Returns:
        ElbowResult
    """
    X = as_dataset(data, 'elbow')
    trials = check_positive_int(trials, 'trials', 'elbow')
    max_k = min(check_positive_int(max_k, 'max_k', 'elbow'), X.shape[0])
    if max_k < 3:
        raise InsufficientDataError(
            f"Elbow method needs at least 3 candidate k values, got {max_k}", 'elbow'
        )

    rng = np.random.default_rng(random_state)
    k_values = list(range(1, max_k + 1))
    inertias = []
    for k in k_values:
        runs = [KMeansClustering(k, max_iter, tol, rng).fit(X).inertia for _ in range(trials)]
        inertias.append(float(np.mean(runs)))

    scores = [inertias[i - 1] - 2 * inertias[i] + inertias[i + 1] for i in range(1, max_k - 1)]
    best = k_values[1 + int(np.argmax(scores))]

    return ElbowResult(k=best, k_values=k_values, inertias=inertias, scores=scores)


def silhouette_samples(data: DatasetLike, labels: np.ndarray) -> np.ndarray:
    """
    Silhouette value of every point.

    s(i) = (b - a) / max(a, b) with a the mean distance to the point's own
    cluster and b the smallest mean distance to another cluster. Points in
    singleton clusters, noise points (-1) and points with no other cluster
    to compare against score 0.
    """
    X = as_dataset(data, 'silhouette')
    labels = np.asarray(labels)
    if len(labels) != X.shape[0]:
        raise InvalidParameterError(
            f"labels length ({len(labels)}) must match number of points ({X.shape[0]})",
            'silhouette'
        )

    distances = pairwise_distances(X)
    cluster_ids = [c for c in np.unique(labels) if c != NOISE]
    scores = np.zeros(X.shape[0])

    for i in range(X.shape[0]):
        own = labels[i]
        if own == NOISE:
            continue
        same = (labels == own)
        same[i] = False
        if not same.any():
            continue

        a = distances[i, same].mean()
        b = np.inf
        for c in cluster_ids:
            if c == own:
                continue
            b = min(b, distances[i, labels == c].mean())
        if not np.isfinite(b):
            continue

        denom = max(a, b)
        scores[i] = 0.0 if denom == 0 else (b - a) / denom

    return scores


def silhouette_score(data: DatasetLike, labels: np.ndarray) -> float:
    """
    Mean silhouette over all non-noise points.

    Returns 0 when fewer than two clusters are present.
    """
    labels = np.asarray(labels)
    samples = silhouette_samples(data, labels)
    mask = labels != NOISE
    if len(np.unique(labels[mask])) < 2:
        return 0.0
    return float(samples[mask].mean())


class DBSCAN:
    """
    Density-based clustering.

    A point with at least `min_points` neighbours (other points within
    `eps`) is a core point. Clusters grow breadth-first through core
    points; points first marked as noise are absorbed as border points when
    a cluster reaches them, without expanding from them.
    """

    def __init__(self, eps: float = 0.5, min_points: int = 5):
        """
        Args:
            eps: Neighbourhood radius
            min_points: Neighbours (excluding the point itself) needed for a core point
        """
        if eps <= 0:
            raise InvalidParameterError(f"eps must be positive, got {eps}", 'dbscan')
        self.eps = eps
        self.min_points = check_positive_int(min_points, 'min_points', 'dbscan')

    def fit(self, data: DatasetLike) -> DBSCANResult:
        """
        Cluster a dataset.

        Returns:
            DBSCANResult with label -1 for points that remain noise
        """
        X = as_dataset(data, 'dbscan')
        n = X.shape[0]
        within = pairwise_distances(X) <= self.eps
        np.fill_diagonal(within, False)
        neighbourhoods = [np.flatnonzero(row) for row in within]

        unvisited = -2
        labels = np.full(n, unvisited, dtype=int)
        core = []
        cluster_id = 0

        for i in range(n):
            if labels[i] != unvisited:
                continue
            if len(neighbourhoods[i]) < self.min_points:
                labels[i] = NOISE
                continue

            labels[i] = cluster_id
            core.append(i)
            queue = list(neighbourhoods[i])
            head = 0
            while head < len(queue):
                j = queue[head]
                head += 1
                if labels[j] == NOISE:
                    labels[j] = cluster_id
                    continue
                if labels[j] != unvisited:
                    continue
                labels[j] = cluster_id
                if len(neighbourhoods[j]) >= self.min_points:
                    core.append(j)
                    queue.extend(neighbourhoods[j])

            cluster_id += 1

        return DBSCANResult(
            labels=labels,
            core_indices=sorted(core),
            n_clusters=cluster_id,
            noise_indices=[int(i) for i in np.flatnonzero(labels == NOISE)],
        )


def dbscan(data: DatasetLike, eps: float, min_points: int) -> DBSCANResult:
    """Functional shortcut for DBSCAN(eps, min_points).fit(data)."""
    return DBSCAN(eps, min_points).fit(data)
