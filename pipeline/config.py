"""
Pipeline Configuration

AnalysisConfig groups one section per analysis stage and round-trips
through YAML.
"""

from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import List, Optional, Union, Any, Dict
import yaml

from analysis.errors import InvalidParameterError
from forecasting.forecaster import FORECAST_METHODS


@dataclass
class ClusteringConfig:
    """k is an int or 'auto' (chosen by the elbow method up to max_k)."""
    enabled: bool = True
    k: Union[int, str] = 'auto'
    max_k: int = 8
    max_iter: int = 100
    tol: float = 1e-4
    dbscan_eps: Optional[float] = None
    dbscan_min_points: int = 5


@dataclass
class PCAConfig:
    enabled: bool = True
    n_components: int = 2
    scale_data: bool = True


@dataclass
class NetworkConfigSection:
    """Next-day prediction of `target` from the other metrics."""
    enabled: bool = False
    target: Optional[str] = None
    hidden_layers: List[int] = field(default_factory=lambda: [8])
    learning_rate: float = 0.1
    activation: str = 'sigmoid'
    derivative_mode: str = 'output'
    dropout_rate: float = 0.0
    epochs: int = 500
    batch_size: int = 16
    num_samples: int = 10
    min_examples: int = 10


@dataclass
class ForecastConfig:
    enabled: bool = True
    method: str = 'linear'
    steps: int = 7
    seasonality: int = 7
    alpha: float = 0.3
    beta: float = 0.1
    gamma: float = 0.1


@dataclass
class AnomalyConfig:
    enabled: bool = True
    threshold: float = 2.5
    rolling_window: Optional[int] = 7
    rolling_threshold: float = 2.0


SECTIONS = {
    'clustering': ClusteringConfig,
    'pca': PCAConfig,
    'network': NetworkConfigSection,
    'forecast': ForecastConfig,
    'anomaly': AnomalyConfig,
}


def _build_section(cls, name: str, values: Optional[Dict[str, Any]]):
    values = values or {}
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise InvalidParameterError(f"Unknown keys in '{name}' section: {sorted(unknown)}", 'config')
    return cls(**values)


@dataclass
class AnalysisConfig:
    """
    Configuration for the biometric analysis pipeline.

    Attributes:
        metrics: Metric columns to analyze (None = every numeric column)
        date_column: Column holding the observation date
        output_dir: Directory for results
        random_state: Seed shared by every stochastic stage
        verbose: Print phase progress
    """
    metrics: Optional[List[str]] = None
    date_column: str = 'date'
    output_dir: str = 'results'
    random_state: Optional[int] = 42
    verbose: bool = True

    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    pca: PCAConfig = field(default_factory=PCAConfig)
    network: NetworkConfigSection = field(default_factory=NetworkConfigSection)
    forecast: ForecastConfig = field(default_factory=ForecastConfig)
    anomaly: AnomalyConfig = field(default_factory=AnomalyConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AnalysisConfig':
        """Build from a nested dict; missing keys take defaults."""
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise InvalidParameterError(f"Unknown configuration keys: {sorted(unknown)}", 'config')

        for name, section_cls in SECTIONS.items():
            data[name] = _build_section(section_cls, name, data.get(name))
        config = cls(**data)
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, filepath: Union[str, Path]) -> 'AnalysisConfig':
        """Load configuration from YAML file."""
        with open(filepath, 'r') as f:
            return cls.from_dict(yaml.safe_load(f))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_yaml(self, filepath: Union[str, Path]) -> None:
        """Save configuration to YAML file."""
        with open(filepath, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)

    def validate(self) -> None:
        """Validate configuration parameters."""
        k = self.clustering.k
        if not (k == 'auto' or (isinstance(k, int) and k >= 1)):
            raise InvalidParameterError(f"clustering.k must be a positive int or 'auto', got {k!r}", 'config')
        if self.clustering.max_k < 2:
            raise InvalidParameterError(f"clustering.max_k must be >= 2, got {self.clustering.max_k}", 'config')
        if self.pca.n_components < 1:
            raise InvalidParameterError(
                f"pca.n_components must be >= 1, got {self.pca.n_components}", 'config'
            )
        if self.network.enabled and not self.network.target:
            raise InvalidParameterError("network.target is required when the network is enabled", 'config')
        if self.forecast.steps < 1:
            raise InvalidParameterError(f"forecast.steps must be >= 1, got {self.forecast.steps}", 'config')
        if self.forecast.method not in FORECAST_METHODS:
            raise InvalidParameterError(
                f"forecast.method must be one of {FORECAST_METHODS}, got {self.forecast.method!r}", 'config'
            )
        if self.anomaly.threshold <= 0:
            raise InvalidParameterError(
                f"anomaly.threshold must be positive, got {self.anomaly.threshold}", 'config'
            )


def load_config(config_name: Union[str, Path] = "config.yaml") -> AnalysisConfig:
    """Find a config file in the working directory or the project root and load it."""
    paths = [Path(config_name), Path(__file__).resolve().parent.parent / config_name]
    for p in paths:
        if p.exists():
            print(f"    Found config at: {p.absolute()}")
            return AnalysisConfig.from_yaml(p)
    raise FileNotFoundError(f"Config not found: {config_name}")
