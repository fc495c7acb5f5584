"""
Neural Network

Feed-forward network (multi-layer perceptron) trained by mini-batch
backpropagation, used to predict next-day biometric scores from scaled
feature vectors.

Design:
- NetworkConfig is immutable (frozen dataclass).
- NetworkParameters owns every weight and bias in one flat float buffer;
  weights(l) and biases(l) are reshaped views into it.
- train_parameters() takes parameters and returns updated ones; the
  NeuralNetwork class wraps it and replaces its own parameters.
- All randomness (Xavier init, shuffling, Monte-Carlo dropout) comes from
  one numpy Generator built from `random_state`.

Inputs are expected to be scaled (e.g. to [0, 1]) by the caller.
"""

from typing import List, Tuple, Union, Optional, Sequence, Iterable
from dataclasses import dataclass, field, asdict
import json
import warnings
import numpy as np
import joblib
from scipy.special import expit

from analysis.errors import InsufficientDataError, InvalidParameterError, DimensionMismatchError
from analysis.validation import as_vector

RandomState = Union[int, np.random.Generator, None]

ACTIVATIONS = ('sigmoid', 'relu', 'tanh')
DERIVATIVE_MODES = ('output', 'legacy')

EARLY_STOP_ERROR = 0.001


def activate(kind: str, x: np.ndarray) -> np.ndarray:
    """Apply an activation function element-wise."""
    if kind == 'sigmoid':
        return expit(x)
    if kind == 'relu':
        return np.maximum(0.0, x)
    if kind == 'tanh':
        return np.tanh(x)
    raise InvalidParameterError(f"Unknown activation '{kind}'", 'network')


def activation_derivative(kind: str, output: np.ndarray, mode: str = 'output') -> np.ndarray:
    """
    Activation derivative evaluated from a layer's post-activation output.

    mode='output' uses the closed forms in terms of the output a:
    sigmoid a(1-a), tanh 1-a^2, relu 1 where a > 0.

    mode='legacy' feeds the output back through the activation before
    differentiating (sigmoid(a)(1-sigmoid(a)), 1-tanh(a)^2), which is how
    earlier versions of these models were trained. Kept for parity with
    weights produced that way.
    """
    if mode == 'legacy':
        if kind == 'sigmoid':
            s = expit(output)
            return s * (1.0 - s)
        if kind == 'tanh':
            t = np.tanh(output)
            return 1.0 - t * t
    if kind == 'sigmoid':
        return output * (1.0 - output)
    if kind == 'tanh':
        return 1.0 - output * output
    if kind == 'relu':
        return (output > 0).astype(float)
    raise InvalidParameterError(f"Unknown activation '{kind}'", 'network')


@dataclass(frozen=True)
class NetworkConfig:
    """
    Network topology and training hyperparameters.

    Attributes:
        input_size: Number of input features
        hidden_layers: Neurons per hidden layer, in order
        output_size: Number of outputs
        learning_rate: Gradient step size
        activation: 'sigmoid', 'relu' or 'tanh'
        derivative_mode: 'output' (default) or 'legacy', see activation_derivative
        dropout_rate: Hidden-unit drop probability used only for
            multi-sample (Monte-Carlo) prediction
        min_examples: Smallest training set accepted
    """
    input_size: int
    hidden_layers: Tuple[int, ...] = ()
    output_size: int = 1
    learning_rate: float = 0.1
    activation: str = 'sigmoid'
    derivative_mode: str = 'output'
    dropout_rate: float = 0.0
    min_examples: int = 10

    def __post_init__(self):
        """Validate configuration."""
        object.__setattr__(self, 'hidden_layers', tuple(int(h) for h in self.hidden_layers))
        for size in self.layer_sizes:
            if size < 1:
                raise InvalidParameterError(f"Layer sizes must be positive, got {self.layer_sizes}", 'network')
        if self.learning_rate <= 0:
            raise InvalidParameterError(f"learning_rate must be positive, got {self.learning_rate}", 'network')
        if self.activation not in ACTIVATIONS:
            raise InvalidParameterError(
                f"activation must be one of {ACTIVATIONS}, got '{self.activation}'", 'network'
            )
        if self.derivative_mode not in DERIVATIVE_MODES:
            raise InvalidParameterError(
                f"derivative_mode must be one of {DERIVATIVE_MODES}, got '{self.derivative_mode}'", 'network'
            )
        if not 0 <= self.dropout_rate < 1:
            raise InvalidParameterError(f"dropout_rate must be in [0, 1), got {self.dropout_rate}", 'network')
        if self.min_examples < 1:
            raise InvalidParameterError(f"min_examples must be >= 1, got {self.min_examples}", 'network')

    @property
    def layer_sizes(self) -> Tuple[int, ...]:
        """[input, hidden..., output]."""
        return (self.input_size, *self.hidden_layers, self.output_size)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['hidden_layers'] = list(self.hidden_layers)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'NetworkConfig':
        return cls(**data)


class NetworkParameters:
    """
    All weights and biases of a network in one contiguous buffer.

    Layout per layer transition l (input size n_in, output size n_out):
    n_out * n_in weights in row-major order followed by n_out biases.
    The weight from neuron `col` of layer l to neuron `row` of layer l+1
    sits at weight_offset(l) + row * n_in + col.
    """

    def __init__(self, layer_sizes: Sequence[int], buffer: Optional[np.ndarray] = None):
        self.layer_sizes = tuple(int(s) for s in layer_sizes)
        if len(self.layer_sizes) < 2:
            raise InvalidParameterError("A network needs at least an input and an output layer", 'network')

        self._weight_offsets = []
        self._bias_offsets = []
        offset = 0
        for n_in, n_out in zip(self.layer_sizes[:-1], self.layer_sizes[1:]):
            self._weight_offsets.append(offset)
            offset += n_in * n_out
            self._bias_offsets.append(offset)
            offset += n_out
        self.size = offset

        if buffer is None:
            self.buffer = np.zeros(self.size)
        else:
            buffer = np.asarray(buffer, dtype=float)
            if buffer.shape != (self.size,):
                raise DimensionMismatchError(
                    f"Parameter buffer must have {self.size} values, got {buffer.size}", 'network'
                )
            self.buffer = buffer.copy()

    @property
    def n_layers(self) -> int:
        """Number of layer transitions (weight matrices)."""
        return len(self.layer_sizes) - 1

    def weight_offset(self, layer: int) -> int:
        return self._weight_offsets[layer]

    def weights(self, layer: int) -> np.ndarray:
        """View of the weight matrix for transition `layer`, shape (n_out, n_in)."""
        n_in, n_out = self.layer_sizes[layer], self.layer_sizes[layer + 1]
        start = self._weight_offsets[layer]
        return self.buffer[start:start + n_in * n_out].reshape(n_out, n_in)

    def biases(self, layer: int) -> np.ndarray:
        """View of the bias vector for transition `layer`, length n_out."""
        start = self._bias_offsets[layer]
        return self.buffer[start:start + self.layer_sizes[layer + 1]]

    def weight(self, layer: int, row: int, col: int) -> float:
        return float(self.buffer[self._weight_offsets[layer] + row * self.layer_sizes[layer] + col])

    def copy(self) -> 'NetworkParameters':
        return NetworkParameters(self.layer_sizes, self.buffer)

    def zeros_like(self) -> 'NetworkParameters':
        return NetworkParameters(self.layer_sizes)

    @classmethod
    def xavier(cls, layer_sizes: Sequence[int], rng: np.random.Generator) -> 'NetworkParameters':
        """
        Xavier initialization.

        Weights and biases of transition l are drawn uniformly from
        [-scale, scale] with scale = sqrt(2 / (fan_in + fan_out)).
        """
        params = cls(layer_sizes)
        for layer in range(params.n_layers):
            fan_in, fan_out = params.layer_sizes[layer], params.layer_sizes[layer + 1]
            scale = np.sqrt(2.0 / (fan_in + fan_out))
            weights = params.weights(layer)
            weights[:] = rng.uniform(-scale, scale, size=weights.shape)
            params.biases(layer)[:] = rng.uniform(-scale, scale, size=fan_out)
        return params

    def to_nested(self) -> Tuple[List[List[List[float]]], List[List[float]]]:
        """Weights as [layer][neuron][input] lists and biases as [layer][neuron]."""
        weights = [self.weights(l).tolist() for l in range(self.n_layers)]
        biases = [self.biases(l).tolist() for l in range(self.n_layers)]
        return weights, biases

    @classmethod
    def from_nested(cls, layer_sizes: Sequence[int], weights: list, biases: list) -> 'NetworkParameters':
        params = cls(layer_sizes)
        if len(weights) != params.n_layers or len(biases) != params.n_layers:
            raise DimensionMismatchError(
                f"Expected {params.n_layers} weight and bias layers, got {len(weights)} and {len(biases)}",
                'network'
            )
        for layer in range(params.n_layers):
            w = np.asarray(weights[layer], dtype=float)
            b = np.asarray(biases[layer], dtype=float)
            if w.shape != params.weights(layer).shape or b.shape != params.biases(layer).shape:
                raise DimensionMismatchError(
                    f"Layer {layer}: expected weights {params.weights(layer).shape} and "
                    f"biases {params.biases(layer).shape}, got {w.shape} and {b.shape}",
                    'network'
                )
            params.weights(layer)[:] = w
            params.biases(layer)[:] = b
        return params


@dataclass
class TrainingExample:
    """One (input, target) pair."""
    inputs: np.ndarray
    targets: np.ndarray


@dataclass
class TrainingResult:
    """
    Outcome of a training run.

    Attributes:
        final_error: Error of the last epoch run
        epoch_errors: Error per epoch
        epochs_run: Number of epochs actually run
        converged: Whether training stopped early on the error threshold
    """
    final_error: float
    epoch_errors: List[float] = field(default_factory=list)
    epochs_run: int = 0
    converged: bool = False


@dataclass
class PredictionResult:
    """
    Averaged prediction with its spread.

    Attributes:
        prediction: Mean output vector over all samples
        confidence: clamp(1 - uncertainty, 0, 1)
        uncertainty: Mean (over outputs) of the per-output sample variance
    """
    prediction: np.ndarray
    confidence: float
    uncertainty: float


def _as_examples(config: NetworkConfig, examples: Iterable) -> List[TrainingExample]:
    prepared = []
    for item in examples:
        if isinstance(item, TrainingExample):
            inputs, targets = item.inputs, item.targets
        else:
            inputs, targets = item
        x = as_vector(inputs, 'network')
        y = as_vector(targets, 'network')
        if x.size != config.input_size or y.size != config.output_size:
            raise DimensionMismatchError(
                f"Examples must have {config.input_size} inputs and {config.output_size} targets, "
                f"got {x.size} and {y.size}",
                'network'
            )
        prepared.append(TrainingExample(x, y))
    return prepared


def forward(
    config: NetworkConfig,
    params: NetworkParameters,
    inputs: np.ndarray,
    dropout_rng: Optional[np.random.Generator] = None
) -> List[np.ndarray]:
    """
    Forward pass.

    Each layer computes activation(bias + weights . previous_activation).
    When `dropout_rng` is given and the config has a dropout rate, hidden
    activations are randomly dropped (inverted dropout).

    Returns:
        Activations of every layer, input first and output last
    """
    activations = [inputs]
    for layer in range(params.n_layers):
        z = params.biases(layer) + params.weights(layer) @ activations[-1]
        a = activate(config.activation, z)
        if dropout_rng is not None and config.dropout_rate > 0 and layer < params.n_layers - 1:
            keep = dropout_rng.random(a.shape) >= config.dropout_rate
            a = a * keep / (1.0 - config.dropout_rate)
        activations.append(a)
    return activations


def backpropagate(
    config: NetworkConfig,
    params: NetworkParameters,
    activations: List[np.ndarray],
    targets: np.ndarray
) -> List[Optional[np.ndarray]]:
    """
    Per-layer deltas for one example.

    The output delta is (target - output) times the activation derivative;
    each hidden delta sums the downstream deltas weighted by the
    connecting weights, times the derivative.

    Returns:
        deltas[l] for l = 1..n_layers (deltas[0] is None)
    """
    n_layers = params.n_layers
    deltas: List[Optional[np.ndarray]] = [None] * (n_layers + 1)

    output = activations[-1]
    deltas[n_layers] = (targets - output) * activation_derivative(
        config.activation, output, config.derivative_mode
    )
    for layer in range(n_layers - 1, 0, -1):
        downstream = params.weights(layer).T @ deltas[layer + 1]
        deltas[layer] = downstream * activation_derivative(
            config.activation, activations[layer], config.derivative_mode
        )
    return deltas


def train_parameters(
    config: NetworkConfig,
    parameters: NetworkParameters,
    examples: Iterable,
    epochs: int = 1000,
    batch_size: int = 32,
    random_state: RandomState = None,
    verbose: bool = False,
    log_every: int = 100
) -> Tuple[NetworkParameters, TrainingResult]:
    """
    Mini-batch gradient descent.

    Every epoch shuffles the examples and walks them in batches. Gradients
    (delta[l+1][j] * activation[l][i] for weights, delta[l+1][j] for
    biases) are summed over the batch, then every parameter moves by
    learning_rate * gradient / batch_size. Training stops early once an
    epoch's error drops below 0.001.

    The epoch error is the mean over batches of the batch's mean summed
    squared output error.

    Args:
        config: Network configuration
        parameters: Starting parameters (not modified)
        examples: TrainingExample objects or (inputs, targets) pairs
        epochs: Maximum number of epochs
        batch_size: Examples per batch
        random_state: Seed or Generator for shuffling
        verbose: Print progress every `log_every` epochs

    Returns:
        Tuple of (updated parameters, TrainingResult)

    Raises:
        InsufficientDataError: Fewer examples than config.min_examples
    """
    data = _as_examples(config, examples)
    if len(data) < config.min_examples:
        raise InsufficientDataError(
            f"Need at least {config.min_examples} training examples, got {len(data)}", 'network'
        )
    if epochs < 1 or batch_size < 1:
        raise InvalidParameterError(
            f"epochs and batch_size must be positive, got {epochs} and {batch_size}", 'network'
        )
    if tuple(parameters.layer_sizes) != config.layer_sizes:
        raise DimensionMismatchError(
            f"Parameters have layers {parameters.layer_sizes}, config expects {config.layer_sizes}",
            'network'
        )

    rng = np.random.default_rng(random_state)
    params = parameters.copy()
    gradient = params.zeros_like()
    epoch_errors: List[float] = []
    converged = False

    for epoch in range(epochs):
        order = rng.permutation(len(data))
        batch_errors = []

        for start in range(0, len(order), batch_size):
            batch = [data[i] for i in order[start:start + batch_size]]
            gradient.buffer[:] = 0.0
            batch_error = 0.0

            for example in batch:
                activations = forward(config, params, example.inputs)
                error = example.targets - activations[-1]
                batch_error += float(error @ error)

                deltas = backpropagate(config, params, activations, example.targets)
                for layer in range(params.n_layers):
                    gradient.weights(layer)[:] += np.outer(deltas[layer + 1], activations[layer])
                    gradient.biases(layer)[:] += deltas[layer + 1]

            params.buffer += config.learning_rate * gradient.buffer / len(batch)
            batch_errors.append(batch_error / len(batch))

        epoch_error = float(np.mean(batch_errors))
        epoch_errors.append(epoch_error)

        if verbose and (epoch == 0 or (epoch + 1) % log_every == 0):
            print(f"Epoch {epoch + 1}/{epochs} - error {epoch_error:.6f}")

        if epoch_error < EARLY_STOP_ERROR:
            converged = True
            if verbose:
                print(f"Converged at epoch {epoch + 1} with error {epoch_error:.6f}")
            break

    result = TrainingResult(
        final_error=epoch_errors[-1],
        epoch_errors=epoch_errors,
        epochs_run=len(epoch_errors),
        converged=converged,
    )
    return params, result


class NeuralNetwork:
    """
    Feed-forward neural network with Xavier initialization.

    Usage:
        config = NetworkConfig(input_size=4, hidden_layers=(8,), output_size=1)
        net = NeuralNetwork(config, random_state=42)
        history = net.train(pairs, epochs=500, batch_size=16)
        result = net.predict(features, num_samples=10)
    """

    def __init__(
        self,
        config: NetworkConfig,
        random_state: RandomState = None,
        parameters: Optional[NetworkParameters] = None
    ):
        """
        Initialize network.

        Args:
            config: Topology and hyperparameters
            random_state: Seed or Generator for init, shuffling and dropout
            parameters: Existing parameters (Xavier-initialized if None)
        """
        self.config = config
        self._rng = np.random.default_rng(random_state)
        if parameters is None:
            parameters = NetworkParameters.xavier(config.layer_sizes, self._rng)
        elif parameters.layer_sizes != config.layer_sizes:
            raise DimensionMismatchError(
                f"Parameters have layers {parameters.layer_sizes}, config expects {config.layer_sizes}",
                'network'
            )
        self.parameters = parameters
        self.is_trained = False

    def _check_input(self, inputs) -> np.ndarray:
        x = as_vector(inputs, 'network')
        if x.size != self.config.input_size:
            raise DimensionMismatchError(
                f"Expected {self.config.input_size} inputs, got {x.size}", 'network'
            )
        return x

    def forward(self, inputs) -> List[np.ndarray]:
        """Activations of every layer for one input vector."""
        return forward(self.config, self.parameters, self._check_input(inputs))

    def train(
        self,
        examples: Iterable,
        epochs: int = 1000,
        batch_size: int = 32,
        verbose: bool = False
    ) -> TrainingResult:
        """
        Train in place.

        Args:
            examples: TrainingExample objects or (inputs, targets) pairs
            epochs: Maximum number of epochs
            batch_size: Mini-batch size
            verbose: Print progress

        Returns:
            TrainingResult with final error and per-epoch history
        """
        self.parameters, result = train_parameters(
            self.config, self.parameters, examples,
            epochs=epochs, batch_size=batch_size,
            random_state=self._rng, verbose=verbose
        )
        self.is_trained = True
        return result

    def predict(self, inputs, num_samples: int = 1) -> PredictionResult:
        """
        Predict with an uncertainty estimate.

        Runs the forward pass `num_samples` times (with Monte-Carlo dropout
        when the config has a dropout rate and num_samples > 1), averages
        the outputs and reports their variance.
        """
        if num_samples < 1:
            raise InvalidParameterError(f"num_samples must be >= 1, got {num_samples}", 'network')
        if not self.is_trained:
            warnings.warn("Network not trained yet, predictions may be inaccurate")

        x = self._check_input(inputs)
        dropout_rng = self._rng if num_samples > 1 and self.config.dropout_rate > 0 else None
        samples = np.array([
            forward(self.config, self.parameters, x, dropout_rng)[-1] for _ in range(num_samples)
        ])

        prediction = samples.mean(axis=0)
        uncertainty = float(samples.var(axis=0).mean())
        confidence = float(np.clip(1.0 - uncertainty, 0.0, 1.0))
        return PredictionResult(prediction=prediction, confidence=confidence, uncertainty=uncertainty)

    def predict_batch(self, inputs) -> np.ndarray:
        """Single deterministic pass for each row; shape (n, output_size)."""
        rows = np.atleast_2d(np.asarray(inputs, dtype=float))
        return np.array([self.forward(row)[-1] for row in rows])

    # --- persistence ---

    def to_dict(self) -> dict:
        """Serializable state: config, nested weights and biases, trained flag."""
        weights, biases = self.parameters.to_nested()
        return {
            'config': self.config.to_dict(),
            'weights': weights,
            'biases': biases,
            'trained': self.is_trained,
        }

    @classmethod
    def from_dict(cls, state: dict, random_state: RandomState = None) -> 'NeuralNetwork':
        """Rebuild a network whose forward pass matches the exported one."""
        config = NetworkConfig.from_dict(state['config'])
        params = NetworkParameters.from_nested(config.layer_sizes, state['weights'], state['biases'])
        network = cls(config, random_state=random_state, parameters=params)
        network.is_trained = bool(state.get('trained', False))
        return network

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, payload: str, random_state: RandomState = None) -> 'NeuralNetwork':
        return cls.from_dict(json.loads(payload), random_state=random_state)

    def save(self, filepath: str) -> None:
        """Save network state to disk."""
        if not self.is_trained:
            warnings.warn("Saving untrained network.")
        joblib.dump(self.to_dict(), filepath)

    @classmethod
    def load(cls, filepath: str, random_state: RandomState = None) -> 'NeuralNetwork':
        """Load a network saved with save()."""
        return cls.from_dict(joblib.load(filepath), random_state=random_state)

    def __repr__(self) -> str:
        return (
            f"NeuralNetwork(layers={list(self.config.layer_sizes)}, "
            f"activation='{self.config.activation}', trained={self.is_trained})"
        )
