"""
Distance and Similarity

Vector distances used by the clustering engine.
"""

from typing import Callable, Dict, Optional
import numpy as np

from .errors import InvalidParameterError
from .validation import as_vector, as_dataset, check_same_length, ArrayLike, DatasetLike


def euclidean_distance(a: ArrayLike, b: ArrayLike) -> float:
    """Straight-line (L2) distance."""
    a_arr, b_arr = as_vector(a, 'distance'), as_vector(b, 'distance')
    check_same_length(a_arr, b_arr, 'distance')
    return float(np.sqrt(np.sum((a_arr - b_arr) ** 2)))


def squared_euclidean_distance(a: ArrayLike, b: ArrayLike) -> float:
    """Squared L2 distance (no square root)."""
    a_arr, b_arr = as_vector(a, 'distance'), as_vector(b, 'distance')
    check_same_length(a_arr, b_arr, 'distance')
    return float(np.sum((a_arr - b_arr) ** 2))


def manhattan_distance(a: ArrayLike, b: ArrayLike) -> float:
    """City-block (L1) distance."""
    a_arr, b_arr = as_vector(a, 'distance'), as_vector(b, 'distance')
    check_same_length(a_arr, b_arr, 'distance')
    return float(np.sum(np.abs(a_arr - b_arr)))


def cosine_similarity(a: ArrayLike, b: ArrayLike) -> float:
    """
    Cosine of the angle between two vectors.

    A zero vector has no direction; the similarity is 0 in that case.
    """
    a_arr, b_arr = as_vector(a, 'distance'), as_vector(b, 'distance')
    check_same_length(a_arr, b_arr, 'distance')
    norm = np.linalg.norm(a_arr) * np.linalg.norm(b_arr)
    if norm == 0:
        return 0.0
    return float(np.clip(np.dot(a_arr, b_arr) / norm, -1.0, 1.0))


def cosine_distance(a: ArrayLike, b: ArrayLike) -> float:
    """1 - cosine similarity."""
    return 1.0 - cosine_similarity(a, b)


DISTANCE_METRICS: Dict[str, Callable[[ArrayLike, ArrayLike], float]] = {
    'euclidean': euclidean_distance,
    'sqeuclidean': squared_euclidean_distance,
    'manhattan': manhattan_distance,
    'cosine': cosine_distance,
}


def pairwise_distances(
    X: DatasetLike,
    Y: Optional[DatasetLike] = None,
    metric: str = 'euclidean'
) -> np.ndarray:
    """
    Distance matrix between the rows of X and the rows of Y.

    Args:
        X: Dataset of shape (n, d)
        Y: Dataset of shape (m, d); defaults to X
        metric: 'euclidean', 'sqeuclidean', 'manhattan' or 'cosine'

    Returns:
        Array of shape (n, m)
    """
    if metric not in DISTANCE_METRICS:
        raise InvalidParameterError(
            f"Unknown metric '{metric}'. Choose from {sorted(DISTANCE_METRICS)}", 'distance'
        )

    X_arr = as_dataset(X, 'distance')
    Y_arr = X_arr if Y is None else as_dataset(Y, 'distance')
    check_same_length(X_arr, Y_arr, 'distance')

    diff = X_arr[:, None, :] - Y_arr[None, :, :]
    if metric == 'manhattan':
        return np.abs(diff).sum(axis=2)

    if metric == 'cosine':
        norms = np.linalg.norm(X_arr, axis=1)[:, None] * np.linalg.norm(Y_arr, axis=1)[None, :]
        dots = X_arr @ Y_arr.T
        with np.errstate(divide='ignore', invalid='ignore'):
            similarity = np.where(norms == 0, 0.0, dots / norms)
        return 1.0 - np.clip(similarity, -1.0, 1.0)

    squared = np.einsum('ijk,ijk->ij', diff, diff)
    if metric == 'sqeuclidean':
        return squared
    return np.sqrt(squared)
