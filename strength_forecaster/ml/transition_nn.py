"""
Feed-forward network predicting per-possession transition probabilities.

Input:  [mu_A, sigma_A, mu_B, sigma_B, context]  (4L + C values)
Hidden: 128 -> 64 -> 32, ReLU
Output: 8-way softmax over possession outcomes for team A facing team B.
"""

import logging
from typing import Dict, Optional, Sequence

import numpy as np
from scipy.special import softmax, xlogy

from ..errors import ValidationError
from ..models.game import CONTEXT_DIM
from ..models.transition import NUM_TRANSITIONS, TransitionProbabilities
from .layers import build_stack, forward_stack

logger = logging.getLogger(__name__)


class TransitionPredictor:
    """
    Transition-probability network trained with SGD on cross-entropy.

    Args:
        latent_dim: Latent dimensionality L of each team distribution
        context_dim: Length of the game context vector
        hidden_dims: Hidden layer sizes
        learning_rate: Default SGD step size
        momentum: SGD momentum coefficient
        max_grad_norm: Per-layer gradient norm clip (None disables)
        rng: Random generator for weight initialization
    """

    def __init__(
        self,
        latent_dim: int = 16,
        context_dim: int = CONTEXT_DIM,
        hidden_dims: Sequence[int] = (128, 64, 32),
        learning_rate: float = 0.001,
        momentum: float = 0.0,
        max_grad_norm: Optional[float] = 5.0,
        rng: Optional[np.random.Generator] = None,
    ):
        self.latent_dim = latent_dim
        self.context_dim = context_dim
        self.hidden_dims = tuple(hidden_dims)
        self.learning_rate = learning_rate
        self.momentum = momentum
        self.max_grad_norm = max_grad_norm
        self.input_dim = 4 * latent_dim + context_dim
        self.output_dim = NUM_TRANSITIONS

        rng = rng if rng is not None else np.random.default_rng()
        # Logits come out of a linear layer; softmax is applied in forward()
        self.layers = build_stack(
            [self.input_dim, *self.hidden_dims, self.output_dim],
            ["relu"] * len(self.hidden_dims) + ["linear"],
            rng,
            momentum,
        )
        self.training_steps = 0

    @classmethod
    def from_config(cls, config, rng: Optional[np.random.Generator] = None) -> "TransitionPredictor":
        return cls(
            latent_dim=config.latent_dim,
            context_dim=config.context_dim,
            learning_rate=config.learning_rate,
            rng=rng if rng is not None else np.random.default_rng(config.random_seed),
        )

    def build_input(self, mu_a, sigma_a, mu_b, sigma_b, context) -> np.ndarray:
        """Concatenate both teams' distributions and the context vector."""
        parts = []
        for name, values, expected in (
            ("mu_a", mu_a, self.latent_dim),
            ("sigma_a", sigma_a, self.latent_dim),
            ("mu_b", mu_b, self.latent_dim),
            ("sigma_b", sigma_b, self.latent_dim),
            ("context", context, self.context_dim),
        ):
            arr = np.asarray(values, dtype=float).ravel()
            if arr.size != expected:
                raise ValidationError(f"{name} has {arr.size} values, expected {expected}")
            parts.append(arr)
        return np.concatenate(parts)

    def _check_input(self, input_vector) -> np.ndarray:
        x = np.asarray(input_vector, dtype=float)
        if x.ndim != 1 or x.size != self.input_dim:
            raise ValidationError(f"Input has {x.size} values, expected {self.input_dim}")
        return x

    def _check_target(self, target) -> np.ndarray:
        t = np.asarray(target, dtype=float)
        if t.ndim != 1 or t.size != self.output_dim:
            raise ValidationError(f"Target has {t.size} values, expected {self.output_dim}")
        if np.any(t < 0):
            raise ValidationError("Target probabilities must be non-negative")
        return t

    def forward(self, input_vector) -> np.ndarray:
        x = self._check_input(input_vector)
        return softmax(forward_stack(self.layers, x))

    def predict(self, mu_a, sigma_a, mu_b, sigma_b, context) -> TransitionProbabilities:
        """
        Predict team A's possession outcome probabilities against team B.

        Returns:
            TransitionProbabilities summing to 1
        """
        probs = self.forward(self.build_input(mu_a, sigma_a, mu_b, sigma_b, context))
        return TransitionProbabilities.from_array(probs)

    @staticmethod
    def compute_loss(predicted, actual, eps: float = 1e-10) -> float:
        """Cross-entropy -sum(actual * log(predicted + eps))."""
        predicted = np.asarray(predicted, dtype=float)
        actual = np.asarray(actual, dtype=float)
        if predicted.shape != actual.shape:
            raise ValidationError(
                f"Predicted and actual lengths differ: {predicted.size} vs {actual.size}"
            )
        return float(-np.sum(xlogy(actual, predicted + eps)))

    def _backward(self, probs: np.ndarray, target: np.ndarray) -> np.ndarray:
        # Softmax + cross-entropy: dL/dlogits = p * sum(t) - t
        delta = probs * target.sum() - target
        grad = self.layers[-1].backward_pre_activation(delta)
        for layer in reversed(self.layers[:-1]):
            grad = layer.backward(grad)
        return grad

    def input_gradient(self, input_vector, target) -> np.ndarray:
        """d(loss)/d(input) at the current weights; weights are not changed."""
        target = self._check_target(target)
        probs = self.forward(input_vector)
        return self._backward(probs, target)

    def train_step(self, input_vector, target, learning_rate: Optional[float] = None) -> float:
        """
        Forward pass, backward pass and in-place SGD update.

        Args:
            input_vector: Concatenated network input
            target: Observed transition probabilities
            learning_rate: Overrides the configured learning rate

        Returns:
            Cross-entropy loss before the update
        """
        target = self._check_target(target)
        probs = self.forward(input_vector)
        loss = self.compute_loss(probs, target)
        self._backward(probs, target)

        lr = self.learning_rate if learning_rate is None else learning_rate
        for layer in self.layers:
            layer.apply_gradients(lr, self.max_grad_norm)
        self.training_steps += 1
        return loss

    def split_latent_gradient(self, grad: np.ndarray) -> Dict[str, np.ndarray]:
        """Split an input gradient into its mu/sigma/context slices."""
        L = self.latent_dim
        return {
            "mu_a": grad[0:L],
            "sigma_a": grad[L:2 * L],
            "mu_b": grad[2 * L:3 * L],
            "sigma_b": grad[3 * L:4 * L],
            "context": grad[4 * L:],
        }

    def to_dict(self) -> Dict:
        return {
            "latent_dim": self.latent_dim,
            "context_dim": self.context_dim,
            "hidden_dims": list(self.hidden_dims),
            "learning_rate": self.learning_rate,
            "momentum": self.momentum,
            "max_grad_norm": self.max_grad_norm,
            "training_steps": self.training_steps,
            "layers": [layer.to_dict() for layer in self.layers],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "TransitionPredictor":
        predictor = cls(
            latent_dim=data["latent_dim"],
            context_dim=data["context_dim"],
            hidden_dims=data.get("hidden_dims", (128, 64, 32)),
            learning_rate=data.get("learning_rate", 0.001),
            momentum=data.get("momentum", 0.0),
            max_grad_norm=data.get("max_grad_norm", 5.0),
        )
        for layer, layer_data in zip(predictor.layers, data["layers"]):
            layer.load_dict(layer_data)
        predictor.training_steps = int(data.get("training_steps", 0))
        return predictor
