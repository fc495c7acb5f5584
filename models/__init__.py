"""Models Package - feed-forward neural network with uncertainty and persistence"""

from .neural_network import (
    NetworkConfig,
    NetworkParameters,
    NeuralNetwork,
    TrainingExample,
    TrainingResult,
    PredictionResult,
    train_parameters,
)

__all__ = [
    'NetworkConfig',
    'NetworkParameters',
    'NeuralNetwork',
    'TrainingExample',
    'TrainingResult',
    'PredictionResult',
    'train_parameters',
]
