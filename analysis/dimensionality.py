"""
Dimensionality Reduction

Principal Component Analysis for daily biometric feature vectors.

Eigenvectors are extracted one at a time by power iteration on the
covariance matrix, deflating the matrix after each one so the next run
converges to the next-largest eigenvalue. Deflation accumulates floating
point error, so keep the component count small relative to the number of
features.

Data is centered before reduction; standardization (StandardScaler) is
optional and off by default.
"""

from typing import Optional, Tuple, List, Union
from dataclasses import dataclass
import warnings
import numpy as np
import pandas as pd
from sklearn.preprocessing import StandardScaler

from .errors import InsufficientDataError, InvalidParameterError, NotFittedError, DimensionMismatchError
from .validation import as_dataset, DatasetLike

RandomState = Union[int, np.random.Generator, None]

POWER_ITERATION_TOL = 1e-4
POWER_ITERATION_MAX_ITER = 1000


@dataclass
class PrincipalComponent:
    """
    One eigenvector of the covariance matrix.

    Attributes:
        vector: Unit eigenvector, shape (d,)
        explained_variance: Eigenvalue magnitude
        converged: Whether power iteration met its tolerance
        n_iter: Power iterations used
    """
    vector: np.ndarray
    explained_variance: float
    converged: bool = True
    n_iter: int = 0


@dataclass
class PCAResult:
    """
    Result of a PCA fit.

    Attributes:
        components: Principal components, descending explained variance
        explained_variance: Eigenvalue magnitudes, shape (c,)
        explained_variance_ratio: Share of total variance per component
        transformed: Projected data, shape (n, c)
        mean_vector: Column means used for centering (needed to invert)
    """
    components: List[PrincipalComponent]
    explained_variance: np.ndarray
    explained_variance_ratio: np.ndarray
    transformed: np.ndarray
    mean_vector: np.ndarray

    @property
    def component_matrix(self) -> np.ndarray:
        """Eigenvectors stacked as rows, shape (c, d)."""
        return np.array([c.vector for c in self.components])


def covariance_matrix(centered: np.ndarray) -> np.ndarray:
    """
    Unbiased covariance matrix (divides by n - 1) of centered data.

    Only the upper triangle is computed; the lower one is mirrored.
    """
    n, d = centered.shape
    if n < 2:
        raise InsufficientDataError(f"Need at least 2 samples for covariance, got {n}", 'pca')

    cov = np.zeros((d, d))
    for i in range(d):
        cov[i, i:] = centered[:, i] @ centered[:, i:] / (n - 1)
        cov[i:, i] = cov[i, i:]
    return cov


def _normalize(vector: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vector)
    return vector if norm == 0 else vector / norm


def power_iteration(
    matrix: np.ndarray,
    rng: np.random.Generator,
    tol: float = POWER_ITERATION_TOL,
    max_iter: int = POWER_ITERATION_MAX_ITER
) -> Tuple[float, np.ndarray, bool, int]:
    """
    Dominant eigenpair of a symmetric matrix.

    Starts from a random normalized vector, multiplies and renormalizes
    until the vector moves less than `tol` or `max_iter` is reached. The
    eigenvalue is the Rayleigh quotient v . (M v).

    Returns:
        Tuple of (eigenvalue, eigenvector, converged, iterations)
    """
    vector = _normalize(rng.random(matrix.shape[0]) - 0.5)
    eigenvalue = 0.0
    converged = False
    n_iter = 0

    while not converged and n_iter < max_iter:
        product = matrix @ vector
        eigenvalue = float(vector @ product)
        updated = _normalize(product)
        converged = np.linalg.norm(vector - updated) < tol
        vector = updated
        n_iter += 1

    return eigenvalue, vector, converged, n_iter


def deflate(matrix: np.ndarray, eigenvalue: float, vector: np.ndarray) -> np.ndarray:
    """Remove an eigenpair's contribution: M - lambda * v v^T."""
    return matrix - eigenvalue * np.outer(vector, vector)


def extract_components(
    cov: np.ndarray,
    n_components: int,
    rng: np.random.Generator,
    tol: float = POWER_ITERATION_TOL,
    max_iter: int = POWER_ITERATION_MAX_ITER
) -> List[PrincipalComponent]:
    """
    Extract eigenpairs by repeated power iteration with deflation.

    Returns:
        Components sorted by descending eigenvalue magnitude
    """
    matrix = cov.copy()
    components = []
    for index in range(n_components):
        eigenvalue, vector, converged, n_iter = power_iteration(matrix, rng, tol, max_iter)
        if not converged:
            warnings.warn(
                f"Power iteration for component {index + 1} did not converge "
                f"within {max_iter} iterations; its eigenvector may be inaccurate."
            )
        components.append(PrincipalComponent(vector, abs(eigenvalue), converged, n_iter))
        matrix = deflate(matrix, eigenvalue, vector)

    components.sort(key=lambda c: c.explained_variance, reverse=True)
    return components


class DimensionalityReducer:
    """
    Base class for dimensionality reduction.

    Handles input conversion (arrays, nested lists, DataFrames), NaN rows
    and optional standardization.
    """

    def __init__(
        self,
        n_components: int = 2,
        name: str = "reducer",
        scale_data: bool = False,
        random_state: RandomState = None
    ):
        """
        Initialize dimensionality reducer.

        Args:
            n_components: Number of components to reduce to
            name: Name of reducer
            scale_data: Whether to standardize data before reduction
            random_state: Seed or numpy Generator
        """
        if n_components < 1:
            raise InvalidParameterError(f"n_components must be >= 1, got {n_components}", name)
        self.n_components = n_components
        self.name = name
        self.scale_data = scale_data
        self._rng = np.random.default_rng(random_state)

        self._scaler = StandardScaler() if scale_data else None
        self._is_fitted = False
        self._feature_names: Optional[List[str]] = None

    def _prepare_data(self, X: DatasetLike, fit_scaler: bool = True) -> Tuple[np.ndarray, List[str]]:
        """
        Convert input to a float matrix, drop NaN rows and scale if enabled.

        Args:
            X: Input data
            fit_scaler: Whether to fit the scaler (True for fit, False for transform)

        Returns:
            Tuple of (prepared_data, feature_names)
        """
        if isinstance(X, pd.DataFrame):
            feature_names = X.select_dtypes(include=[np.number]).columns.tolist()
        else:
            feature_names = None
        X_array = as_dataset(X, self.name)
        if feature_names is None:
            feature_names = [f"feature_{i}" for i in range(X_array.shape[1])]

        nan_rows = np.any(np.isnan(X_array), axis=1)
        if np.any(nan_rows):
            warnings.warn(
                f"{int(nan_rows.sum())} samples contain NaN values and will be removed for "
                f"dimensionality reduction. Consider imputing missing values first."
            )
            X_array = X_array[~nan_rows]

        if self._scaler is not None:
            X_array = self._scaler.fit_transform(X_array) if fit_scaler else self._scaler.transform(X_array)

        return X_array, feature_names

    def fit(self, X: DatasetLike) -> 'DimensionalityReducer':
        raise NotImplementedError("Subclasses must implement fit()")

    def transform(self, X: DatasetLike) -> np.ndarray:
        raise NotImplementedError("Subclasses must implement transform()")

    def fit_transform(self, X: DatasetLike) -> np.ndarray:
        """Fit and transform."""
        self.fit(X)
        return self.transform(X)

    def get_component_names(self) -> List[str]:
        raise NotImplementedError("Subclasses must implement get_component_names()")


class PCAReducer(DimensionalityReducer):
    """
    Principal Component Analysis via power iteration.

    Provides:
    - Explained variance and variance ratio per component
    - Feature loadings (contribution of each feature to components)
    - Inverse transform back to feature space
    - Component selection based on a cumulative variance threshold
    """

    def __init__(
        self,
        n_components: int = 2,
        scale_data: bool = False,
        tol: float = POWER_ITERATION_TOL,
        max_iter: int = POWER_ITERATION_MAX_ITER,
        random_state: RandomState = None
    ):
        """
        Initialize PCA.

        Args:
            n_components: Number of principal components
            scale_data: Whether to standardize data before PCA
            tol: Power iteration convergence tolerance
            max_iter: Power iteration cap per component
            random_state: Seed or numpy Generator
        """
        super().__init__(n_components, "pca", scale_data, random_state)
        self.tol = tol
        self.max_iter = max_iter
        self.result_: Optional[PCAResult] = None
        self._total_variance = 0.0

    def _check_fitted(self) -> None:
        if not self._is_fitted:
            raise NotFittedError("PCAReducer must be fitted first", self.name)

    def fit(self, X: DatasetLike) -> 'PCAReducer':
        """
        Fit PCA to data.

        Raises:
            InsufficientDataError: Fewer than 2 samples
            InvalidParameterError: n_components exceeds the feature count
        """
        data, self._feature_names = self._prepare_data(X, fit_scaler=True)
        n, d = data.shape
        if n < 2:
            raise InsufficientDataError(f"PCA needs at least 2 samples, got {n}", self.name)
        if self.n_components > d:
            raise InvalidParameterError(
                f"n_components ({self.n_components}) cannot exceed number of features ({d})",
                self.name
            )

        mean_vector = data.mean(axis=0)
        centered = data - mean_vector
        cov = covariance_matrix(centered)
        self._total_variance = float(np.trace(cov))

        components = extract_components(cov, self.n_components, self._rng, self.tol, self.max_iter)
        explained = np.array([c.explained_variance for c in components])
        ratio = explained / self._total_variance if self._total_variance > 0 else np.zeros_like(explained)
        matrix = np.array([c.vector for c in components])

        self.result_ = PCAResult(
            components=components,
            explained_variance=explained,
            explained_variance_ratio=ratio,
            transformed=centered @ matrix.T,
            mean_vector=mean_vector,
        )
        self._is_fitted = True
        return self

    def transform(self, X: DatasetLike) -> np.ndarray:
        """
        Project data onto the principal components.

        Returns:
            Reduced feature matrix (n_samples, n_components)
        """
        self._check_fitted()
        data, _ = self._prepare_data(X, fit_scaler=False)
        if data.shape[1] != len(self.result_.mean_vector):
            raise DimensionMismatchError(
                f"Expected {len(self.result_.mean_vector)} features, got {data.shape[1]}", self.name
            )
        return (data - self.result_.mean_vector) @ self.result_.component_matrix.T

    def fit_result(self, X: DatasetLike) -> PCAResult:
        """Fit and return the full PCAResult."""
        self.fit(X)
        return self.result_

    def inverse_transform(self, reduced: np.ndarray) -> np.ndarray:
        """
        Map projected data back to feature space (lossy when c < d).

        Args:
            reduced: Array of shape (n, c)

        Returns:
            Array of shape (n, d) in the original (unscaled) units
        """
        self._check_fitted()
        reduced = np.atleast_2d(np.asarray(reduced, dtype=float))
        restored = reduced @ self.result_.component_matrix + self.result_.mean_vector
        if self._scaler is not None:
            restored = self._scaler.inverse_transform(restored)
        return restored

    def get_component_names(self) -> List[str]:
        """Get component names (PC1, PC2, ...)."""
        return [f"PC{i+1}" for i in range(self.n_components)]

    def get_explained_variance(self) -> np.ndarray:
        """Eigenvalue magnitude of each component."""
        self._check_fitted()
        return self.result_.explained_variance

    def get_explained_variance_ratio(self) -> np.ndarray:
        """Share of total variance captured by each component (sums to <= 1)."""
        self._check_fitted()
        return self.result_.explained_variance_ratio

    def get_cumulative_variance(self) -> np.ndarray:
        """Cumulative explained variance ratio."""
        return np.cumsum(self.get_explained_variance_ratio())

    def get_loadings(self, feature_names: Optional[List[str]] = None) -> pd.DataFrame:
        """
        Feature loadings for each component.

        Args:
            feature_names: Names of original features (uses stored names if None)

        Returns:
            DataFrame with features as rows, components as columns
        """
        self._check_fitted()
        if feature_names is None:
            feature_names = self._feature_names

        return pd.DataFrame(
            self.result_.component_matrix.T,
            index=feature_names,
            columns=self.get_component_names()
        )

    def select_n_components(self, X: DatasetLike, variance_threshold: float = 0.95) -> int:
        """
        Number of components needed to reach a cumulative variance ratio.

        Fits every component of X without changing this reducer's state.

        Args:
            X: Feature matrix
            variance_threshold: Desired cumulative variance (e.g. 0.95 for 95%)

        Returns:
            Number of components needed
        """
        probe = PCAReducer(
            n_components=1,
            scale_data=self.scale_data,
            tol=self.tol,
            max_iter=self.max_iter,
            random_state=self._rng
        )
        data, _ = probe._prepare_data(X, fit_scaler=True)
        probe.n_components = data.shape[1]
        probe._scaler = None
        probe.fit(data)

        cumvar = np.cumsum(probe.get_explained_variance_ratio())
        n_components = int(np.searchsorted(cumvar, variance_threshold) + 1)
        return min(n_components, len(cumvar))

    def summary(self) -> str:
        """Generate summary of PCA results."""
        if not self._is_fitted:
            return "PCAReducer: Not fitted yet"

        lines = [
            "PCA Summary",
            "=" * 40,
            f"Number of components: {self.n_components}",
            f"Data scaled: {self.scale_data}",
            "",
            "Explained Variance:",
        ]

        ratio = self.get_explained_variance_ratio()
        cumvar = self.get_cumulative_variance()
        for i, (var, cum) in enumerate(zip(ratio, cumvar)):
            lines.append(f"  PC{i+1}: {var:.4f} ({var*100:.1f}%) | Cumulative: {cum:.4f} ({cum*100:.1f}%)")

        lines.append(f"\nTotal variance explained: {cumvar[-1]*100:.1f}%")
        return "\n".join(lines)


def pca(
    data: DatasetLike,
    n_components: int = 2,
    scale_data: bool = False,
    random_state: RandomState = None
) -> PCAResult:
    """Functional shortcut for PCAReducer(...).fit_result(data)."""
    return PCAReducer(n_components, scale_data=scale_data, random_state=random_state).fit_result(data)
