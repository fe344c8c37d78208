"""
Toboggan - Q Network
Single hidden layer perceptron with ReLU activations, trained by
plain backpropagation with momentum. Written directly on numpy arrays.
"""

from typing import Optional

import numpy as np

DEFAULT_LEARNING_RATE = 0.002
DEFAULT_MOMENTUM = 0.2
INPUT_CLAMP = 10.0
ERROR_CLIP = 2.0


class IncompatibleNetworkError(ValueError):
    """Saved network does not match the configured input/output sizes."""


class QNetwork:
    """
    Q-value approximator: input -> hidden (ReLU) -> output (linear).

    Weights are stored as (fan_in, fan_out) matrices so a forward pass
    is x @ W + b.
    """

    def __init__(self, input_size: int, hidden_size: int, output_size: int,
                 learning_rate: float = DEFAULT_LEARNING_RATE,
                 momentum: float = DEFAULT_MOMENTUM,
                 rng: Optional[np.random.Generator] = None):
        self.input_size = input_size
        self.hidden_size = hidden_size
        self.output_size = output_size
        self.learning_rate = learning_rate
        self.momentum = momentum
        self.rng = rng if rng is not None else np.random.default_rng()

        self._init_weights()

    def _init_weights(self):
        """He-scaled uniform weights, small hidden biases, zero output biases."""
        input_scale = np.sqrt(2.0 / self.input_size)
        hidden_scale = np.sqrt(2.0 / self.hidden_size)

        self.weights_input_hidden = self.rng.uniform(
            -1.0, 1.0, size=(self.input_size, self.hidden_size)) * input_scale
        self.weights_hidden_output = self.rng.uniform(
            -1.0, 1.0, size=(self.hidden_size, self.output_size)) * hidden_scale
        self.bias_hidden = 0.01 * self.rng.uniform(-1.0, 1.0, size=self.hidden_size)
        self.bias_output = np.zeros(self.output_size)

        self._reset_momentum()

    def _reset_momentum(self):
        self.momentum_input_hidden = np.zeros((self.input_size, self.hidden_size))
        self.momentum_hidden_output = np.zeros((self.hidden_size, self.output_size))

    def _prepare_inputs(self, observation) -> np.ndarray:
        inputs = np.asarray(observation, dtype=np.float64)
        if inputs.shape != (self.input_size,):
            raise ValueError(
                f"Expected {self.input_size} inputs, but got {inputs.size}"
            )
        return np.clip(inputs, -INPUT_CLAMP, INPUT_CLAMP)

    def _forward(self, inputs: np.ndarray):
        hidden_inputs = inputs @ self.weights_input_hidden + self.bias_hidden
        hidden_outputs = np.maximum(0.0, hidden_inputs)
        outputs = hidden_outputs @ self.weights_hidden_output + self.bias_output
        return hidden_inputs, hidden_outputs, outputs

    def forward(self, observation) -> np.ndarray:
        """Q-value estimate for each action."""
        _, _, outputs = self._forward(self._prepare_inputs(observation))
        return outputs

    def train_step(self, observation, targets) -> float:
        """
        One backpropagation step toward the target vector.
        Returns the mean squared error before the update.
        """
        inputs = self._prepare_inputs(observation)
        targets = np.asarray(targets, dtype=np.float64)
        hidden_inputs, hidden_outputs, outputs = self._forward(inputs)

        raw_errors = targets - outputs
        output_errors = np.clip(raw_errors, -ERROR_CLIP, ERROR_CLIP)

        # Propagate through the output weights before they change
        hidden_errors = (self.weights_hidden_output @ output_errors) * (hidden_inputs > 0)

        self.bias_output += self.learning_rate * output_errors
        delta = (self.learning_rate * np.outer(hidden_outputs, output_errors)
                 + self.momentum * self.momentum_hidden_output)
        self.momentum_hidden_output = delta
        self.weights_hidden_output += delta

        self.bias_hidden += self.learning_rate * hidden_errors
        delta = (self.learning_rate * np.outer(inputs, hidden_errors)
                 + self.momentum * self.momentum_input_hidden)
        self.momentum_input_hidden = delta
        self.weights_input_hidden += delta

        return float(np.mean(raw_errors ** 2))

    def train_single_action(self, observation, action: int, target_q: float) -> float:
        """
        Move only the chosen action's estimate toward target_q.
        Returns that action's prediction before the update.
        """
        predictions = self.forward(observation)
        targets = predictions.copy()
        targets[action] = target_q
        self.train_step(observation, targets)
        return float(predictions[action])

    def set_learning_rate(self, rate: float):
        self.learning_rate = rate

    def clone(self) -> 'QNetwork':
        """Deep copy, including momentum state."""
        clone = QNetwork.__new__(QNetwork)
        clone.input_size = self.input_size
        clone.hidden_size = self.hidden_size
        clone.output_size = self.output_size
        clone.learning_rate = self.learning_rate
        clone.momentum = self.momentum
        clone.rng = self.rng
        for name in PARAMETER_NAMES + MOMENTUM_NAMES:
            setattr(clone, name, getattr(self, name).copy())
        return clone

    def soft_update(self, target: 'QNetwork', tau: float):
        """Blend target parameters toward this network's (Polyak averaging)."""
        for name in PARAMETER_NAMES:
            target_param = getattr(target, name)
            target_param *= (1.0 - tau)
            target_param += tau * getattr(self, name)

    def hard_update(self, target: 'QNetwork'):
        """Make target an exact copy of this network."""
        target.input_size = self.input_size
        target.hidden_size = self.hidden_size
        target.output_size = self.output_size
        target.learning_rate = self.learning_rate
        target.momentum = self.momentum
        for name in PARAMETER_NAMES + MOMENTUM_NAMES:
            setattr(target, name, getattr(self, name).copy())

    def to_dict(self) -> dict:
        """Serialise structure, scalars, parameters then momentum, in that order."""
        return {
            'input_size': self.input_size,
            'hidden_size': self.hidden_size,
            'output_size': self.output_size,
            'learning_rate': self.learning_rate,
            'momentum': self.momentum,
            'weights_input_hidden': self.weights_input_hidden.tolist(),
            'weights_hidden_output': self.weights_hidden_output.tolist(),
            'bias_hidden': self.bias_hidden.tolist(),
            'bias_output': self.bias_output.tolist(),
            'momentum_input_hidden': self.momentum_input_hidden.tolist(),
            'momentum_hidden_output': self.momentum_hidden_output.tolist(),
        }

    def load_dict(self, data: dict):
        """
        Restore from to_dict() output.

        Raises IncompatibleNetworkError when input or output sizes differ.
        A different hidden size is accepted and the arrays are reallocated.
        """
        stored_input = int(data['input_size'])
        stored_hidden = int(data['hidden_size'])
        stored_output = int(data['output_size'])

        if stored_input != self.input_size or stored_output != self.output_size:
            raise IncompatibleNetworkError(
                f"Network structure mismatch: saved {stored_input}x{stored_output}, "
                f"expected {self.input_size}x{self.output_size}"
            )

        weights_input_hidden = _as_matrix(data['weights_input_hidden'],
                                          (stored_input, stored_hidden))
        weights_hidden_output = _as_matrix(data['weights_hidden_output'],
                                           (stored_hidden, stored_output))
        bias_hidden = _as_matrix(data['bias_hidden'], (stored_hidden,))
        bias_output = _as_matrix(data['bias_output'], (stored_output,))

        self.hidden_size = stored_hidden
        self.learning_rate = float(data.get('learning_rate', DEFAULT_LEARNING_RATE))
        self.momentum = float(data.get('momentum', DEFAULT_MOMENTUM))
        self.weights_input_hidden = weights_input_hidden
        self.weights_hidden_output = weights_hidden_output
        self.bias_hidden = bias_hidden
        self.bias_output = bias_output

        # Older files carry no momentum state
        try:
            self.momentum_input_hidden = _as_matrix(
                data['momentum_input_hidden'], (stored_input, stored_hidden))
            self.momentum_hidden_output = _as_matrix(
                data['momentum_hidden_output'], (stored_hidden, stored_output))
        except (KeyError, ValueError):
            self._reset_momentum()


PARAMETER_NAMES = [
    'weights_input_hidden',
    'weights_hidden_output',
    'bias_hidden',
    'bias_output',
]

MOMENTUM_NAMES = [
    'momentum_input_hidden',
    'momentum_hidden_output',
]


def _as_matrix(values, shape) -> np.ndarray:
    array = np.asarray(values, dtype=np.float64)
    if array.shape != shape:
        raise ValueError(f"Expected array of shape {shape}, got {array.shape}")
    if not np.all(np.isfinite(array)):
        raise ValueError("Array contains non-finite values")
    return array.copy()


def parameter_distance(a: QNetwork, b: QNetwork) -> float:
    """L2 distance between the parameters of two same-shaped networks."""
    total = 0.0
    for name in PARAMETER_NAMES:
        diff = getattr(a, name) - getattr(b, name)
        total += float(np.sum(diff * diff))
    return float(np.sqrt(total))
