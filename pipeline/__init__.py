"""Pipeline Package - Orchestration and configuration"""

from .config import (
    AnalysisConfig,
    ClusteringConfig,
    PCAConfig,
    NetworkConfigSection,
    ForecastConfig,
    AnomalyConfig,
    load_config,
)
from .runner import BiometricAnalysisPipeline

__all__ = [
    'AnalysisConfig',
    'ClusteringConfig',
    'PCAConfig',
    'NetworkConfigSection',
    'ForecastConfig',
    'AnomalyConfig',
    'load_config',
    'BiometricAnalysisPipeline',
]
