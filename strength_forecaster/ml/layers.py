"""
Fixed-topology dense layers with hand-rolled backpropagation.

Each layer owns its weights plus one set of activation and gradient
buffers that are overwritten on every forward/backward call.  Networks
are built by chaining layers at construction time; there is no
computation graph.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np
from scipy.special import expit

ACTIVATIONS = ("relu", "linear", "sigmoid")


class DenseLayer:
    """
    Fully connected layer y = act(W x + b) operating on single vectors.

    Args:
        input_dim: Size of the input vector
        output_dim: Size of the output vector
        activation: One of 'relu', 'linear', 'sigmoid'
        rng: Generator used for weight initialization
        momentum: SGD momentum coefficient (0 disables momentum)
    """

    def __init__(
        self,
        input_dim: int,
        output_dim: int,
        activation: str = "relu",
        rng: Optional[np.random.Generator] = None,
        momentum: float = 0.0,
    ):
        if activation not in ACTIVATIONS:
            raise ValueError(f"Unknown activation: {activation}")
        rng = rng if rng is not None else np.random.default_rng()

        self.input_dim = input_dim
        self.output_dim = output_dim
        self.activation = activation
        self.momentum = momentum

        # He init for ReLU, Glorot for the rest
        if activation == "relu":
            scale = np.sqrt(2.0 / input_dim)
        else:
            scale = np.sqrt(2.0 / (input_dim + output_dim))
        self.weights = rng.normal(0.0, scale, size=(output_dim, input_dim))
        self.bias = np.zeros(output_dim)

        self._input = np.zeros(input_dim)
        self._pre_activation = np.zeros(output_dim)
        self._output = np.zeros(output_dim)
        self.grad_weights = np.zeros_like(self.weights)
        self.grad_bias = np.zeros_like(self.bias)
        self._velocity_w = np.zeros_like(self.weights)
        self._velocity_b = np.zeros_like(self.bias)

    def forward(self, x: np.ndarray) -> np.ndarray:
        self._input[:] = x
        np.dot(self.weights, self._input, out=self._pre_activation)
        self._pre_activation += self.bias

        if self.activation == "relu":
            np.maximum(self._pre_activation, 0.0, out=self._output)
        elif self.activation == "sigmoid":
            self._output[:] = expit(self._pre_activation)
        else:
            self._output[:] = self._pre_activation
        return self._output.copy()

    def activation_derivative(self) -> np.ndarray:
        """Derivative of the activation at the cached pre-activation."""
        if self.activation == "relu":
            return (self._pre_activation > 0).astype(float)
        if self.activation == "sigmoid":
            return self._output * (1.0 - self._output)
        return np.ones(self.output_dim)

    def backward(self, grad_output: np.ndarray) -> np.ndarray:
        """
        Backpropagate dL/d(output) through the activation and weights.

        Stores parameter gradients in the layer's buffers.

        Returns:
            dL/d(input)
        """
        return self.backward_pre_activation(grad_output * self.activation_derivative())

    def backward_pre_activation(self, delta: np.ndarray) -> np.ndarray:
        """Backpropagate a delta already expressed w.r.t. the pre-activation."""
        np.outer(delta, self._input, out=self.grad_weights)
        self.grad_bias[:] = delta
        return self.weights.T @ delta

    def apply_gradients(self, learning_rate: float, max_grad_norm: Optional[float] = None) -> None:
        grad_w = self.grad_weights
        grad_b = self.grad_bias
        if max_grad_norm is not None:
            norm = np.sqrt(np.sum(grad_w ** 2) + np.sum(grad_b ** 2))
            if norm > max_grad_norm:
                grad_w = grad_w * (max_grad_norm / norm)
                grad_b = grad_b * (max_grad_norm / norm)

        if self.momentum > 0:
            self._velocity_w = self.momentum * self._velocity_w - learning_rate * grad_w
            self._velocity_b = self.momentum * self._velocity_b - learning_rate * grad_b
            self.weights += self._velocity_w
            self.bias += self._velocity_b
        else:
            self.weights -= learning_rate * grad_w
            self.bias -= learning_rate * grad_b

    def to_dict(self) -> Dict:
        return {
            "input_dim": self.input_dim,
            "output_dim": self.output_dim,
            "activation": self.activation,
            "momentum": self.momentum,
            "weights": self.weights.tolist(),
            "bias": self.bias.tolist(),
        }

    def load_dict(self, data: Dict) -> None:
        weights = np.asarray(data["weights"], dtype=float)
        bias = np.asarray(data["bias"], dtype=float)
        if weights.shape != self.weights.shape or bias.shape != self.bias.shape:
            raise ValueError(
                f"Layer shape mismatch: expected {self.weights.shape}, got {weights.shape}"
            )
        self.weights[:] = weights
        self.bias[:] = bias


def build_stack(
    dims: Sequence[int],
    activations: Sequence[str],
    rng: np.random.Generator,
    momentum: float = 0.0,
) -> List[DenseLayer]:
    """Create a chain of layers, e.g. dims=[88, 64, 32] -> two layers."""
    if len(activations) != len(dims) - 1:
        raise ValueError("Need one activation per layer")
    return [
        DenseLayer(dims[i], dims[i + 1], activations[i], rng=rng, momentum=momentum)
        for i in range(len(dims) - 1)
    ]


def forward_stack(layers: Sequence[DenseLayer], x: np.ndarray) -> np.ndarray:
    out = x
    for layer in layers:
        out = layer.forward(out)
    return out


def backward_stack(layers: Sequence[DenseLayer], grad_output: np.ndarray) -> np.ndarray:
    grad = grad_output
    for layer in reversed(layers):
        grad = layer.backward(grad)
    return grad
