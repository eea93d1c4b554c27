"""
Variational autoencoder mapping team/game features to a latent strength
distribution N(mu, sigma^2).

Encoder: input -> 64 -> 32 -> 2L (ReLU hidden, linear output split into
mu and log-variance).  Decoder mirrors it: L -> 32 -> 64 -> input with a
sigmoid output so reconstructions stay in [0, 1].

The loss is

    total = reconstruction + beta * KL(N(mu, sigma^2) || N(0, I)) + alpha * feedback

where the feedback term comes from the transition predictor's error.  When
the predictor also supplies the gradient of its loss w.r.t. the team's
latent inputs, that gradient is routed into mu / log-variance so the
predictor's error actually shapes the encoder.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from ..errors import ValidationError
from .layers import backward_stack, build_stack, forward_stack

logger = logging.getLogger(__name__)

LOG_VAR_BOUNDS = (-10.0, 10.0)


@dataclass
class VAELoss:
    """Breakdown of one VAE loss evaluation."""

    total: float
    reconstruction: float
    kl: float
    beta: float = 1.0
    feedback: float = 0.0
    alpha: float = 0.0

    @property
    def vae_loss(self) -> float:
        """Loss without the feedback term."""
        return self.reconstruction + self.beta * self.kl

    def to_dict(self) -> Dict[str, float]:
        return {
            "total": self.total,
            "reconstruction": self.reconstruction,
            "kl": self.kl,
            "beta": self.beta,
            "feedback": self.feedback,
            "alpha": self.alpha,
        }


class VariationalAutoencoder:
    """
    Hand-rolled VAE over a fixed-length normalized feature vector.

    Args:
        input_dim: Feature vector length
        latent_dim: Latent dimensionality L
        hidden_dims: Encoder hidden sizes (decoder uses them reversed)
        learning_rate: SGD step size
        momentum: SGD momentum coefficient
        kl_weight: Final KL weight (beta)
        kl_warmup_steps: Linear warm-up from 10% of kl_weight over this many steps
        max_grad_norm: Per-layer gradient norm clip (None disables)
        rng: Random generator; drives weight init and reparameterization noise
    """

    def __init__(
        self,
        input_dim: int = 88,
        latent_dim: int = 16,
        hidden_dims: Sequence[int] = (64, 32),
        learning_rate: float = 0.001,
        momentum: float = 0.0,
        kl_weight: float = 1.0,
        kl_warmup_steps: int = 0,
        max_grad_norm: Optional[float] = 5.0,
        rng: Optional[np.random.Generator] = None,
    ):
        if input_dim <= 0 or latent_dim <= 0:
            raise ValidationError("input_dim and latent_dim must be positive")
        self.input_dim = input_dim
        self.latent_dim = latent_dim
        self.hidden_dims = tuple(hidden_dims)
        self.learning_rate = learning_rate
        self.momentum = momentum
        self.kl_weight = kl_weight
        self.kl_warmup_steps = kl_warmup_steps
        self.max_grad_norm = max_grad_norm
        self.rng = rng if rng is not None else np.random.default_rng()

        hidden_acts = ["relu"] * len(self.hidden_dims)
        self.encoder = build_stack(
            [input_dim, *self.hidden_dims, 2 * latent_dim],
            hidden_acts + ["linear"],
            self.rng,
            momentum,
        )
        self.decoder = build_stack(
            [latent_dim, *reversed(self.hidden_dims), input_dim],
            hidden_acts + ["sigmoid"],
            self.rng,
            momentum,
        )

        self.feedback_alpha = 0.0
        self.training_steps = 0

    @classmethod
    def from_config(cls, config, rng: Optional[np.random.Generator] = None) -> "VariationalAutoencoder":
        return cls(
            input_dim=config.input_dim,
            latent_dim=config.latent_dim,
            learning_rate=config.learning_rate,
            rng=rng if rng is not None else np.random.default_rng(config.random_seed),
        )

    # ------------------------------------------------------------------
    # Forward operations
    # ------------------------------------------------------------------

    def _check_features(self, features) -> np.ndarray:
        x = np.asarray(features, dtype=float)
        if x.ndim != 1 or x.size != self.input_dim:
            raise ValidationError(
                f"Feature vector has {x.size} values, expected {self.input_dim}"
            )
        return x

    def _check_latent(self, values, name: str) -> np.ndarray:
        arr = np.asarray(values, dtype=float)
        if arr.ndim != 1 or arr.size != self.latent_dim:
            raise ValidationError(
                f"{name} has {arr.size} values, expected {self.latent_dim}"
            )
        return arr

    def _encode_raw(self, x: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        out = forward_stack(self.encoder, x)
        mu = out[: self.latent_dim]
        raw_log_var = out[self.latent_dim:]
        log_var = np.clip(raw_log_var, *LOG_VAR_BOUNDS)
        return mu, log_var, raw_log_var

    def encode(self, features) -> Tuple[np.ndarray, np.ndarray]:
        """
        Map a feature vector to its latent distribution.

        Args:
            features: Normalized feature vector of length input_dim

        Returns:
            Tuple of (mu, sigma)
        """
        x = self._check_features(features)
        mu, log_var, _ = self._encode_raw(x)
        return mu, np.exp(0.5 * log_var)

    def reparameterize(self, mu, sigma) -> np.ndarray:
        """Sample z = mu + sigma * eps with fresh eps ~ N(0, I)."""
        mu = self._check_latent(mu, "mu")
        sigma = self._check_latent(sigma, "sigma")
        eps = self.rng.standard_normal(self.latent_dim)
        return mu + sigma * eps

    def decode(self, z) -> np.ndarray:
        z = self._check_latent(z, "z")
        return forward_stack(self.decoder, z)

    # ------------------------------------------------------------------
    # Losses
    # ------------------------------------------------------------------

    @staticmethod
    def kl_divergence(mu, log_var) -> float:
        mu = np.asarray(mu, dtype=float)
        log_var = np.asarray(log_var, dtype=float)
        kl = -0.5 * np.sum(1.0 + log_var - mu ** 2 - np.exp(log_var))
        # Rounding can leave a tiny negative value at the optimum
        return float(max(kl, 0.0))

    @staticmethod
    def reconstruction_loss(x, reconstruction) -> float:
        x = np.asarray(x, dtype=float)
        reconstruction = np.asarray(reconstruction, dtype=float)
        if x.shape != reconstruction.shape:
            raise ValidationError("Reconstruction shape does not match input")
        return float(np.mean((reconstruction - x) ** 2))

    def kl_weight_at(self, step: int) -> float:
        if self.kl_warmup_steps <= 0:
            return self.kl_weight
        progress = min(1.0, step / self.kl_warmup_steps)
        floor = 0.1 * self.kl_weight
        return floor + (self.kl_weight - floor) * progress

    def compute_loss(
        self,
        x,
        reconstruction,
        mu,
        log_var,
        feedback_loss: float = 0.0,
        alpha: Optional[float] = None,
    ) -> VAELoss:
        recon = self.reconstruction_loss(x, reconstruction)
        kl = self.kl_divergence(mu, log_var)
        beta = self.kl_weight_at(self.training_steps)
        if not feedback_loss:
            alpha = 0.0
        elif alpha is None:
            alpha = self.feedback_alpha
        total = recon + beta * kl + alpha * feedback_loss
        return VAELoss(
            total=float(total),
            reconstruction=recon,
            kl=kl,
            beta=beta,
            feedback=float(feedback_loss),
            alpha=float(alpha),
        )

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def set_feedback_coefficient(self, alpha: float) -> None:
        self.feedback_alpha = float(alpha)

    def train_step(
        self,
        features,
        feedback_loss: float = 0.0,
        alpha: Optional[float] = None,
        feedback_grad_mu: Optional[np.ndarray] = None,
        feedback_grad_sigma: Optional[np.ndarray] = None,
        learning_rate: Optional[float] = None,
    ) -> VAELoss:
        """
        One forward/backward pass and SGD update.

        Args:
            features: Normalized feature vector
            feedback_loss: Predictor loss to fold into the total (0 = no feedback)
            alpha: Feedback coefficient; defaults to the coefficient set by the trainer
            feedback_grad_mu: d(predictor loss)/d(mu) for this team
            feedback_grad_sigma: d(predictor loss)/d(sigma) for this team
            learning_rate: Overrides the configured learning rate

        Returns:
            VAELoss computed before the update
        """
        x = self._check_features(features)
        lr = self.learning_rate if learning_rate is None else learning_rate

        mu, log_var, raw_log_var = self._encode_raw(x)
        sigma = np.exp(0.5 * log_var)
        eps = self.rng.standard_normal(self.latent_dim)
        z = mu + sigma * eps
        reconstruction = forward_stack(self.decoder, z)

        loss = self.compute_loss(x, reconstruction, mu, log_var, feedback_loss, alpha)

        grad_reconstruction = 2.0 * (reconstruction - x) / self.input_dim
        grad_z = backward_stack(self.decoder, grad_reconstruction)

        grad_mu = grad_z + loss.beta * mu
        grad_log_var = grad_z * eps * 0.5 * sigma + loss.beta * 0.5 * (np.exp(log_var) - 1.0)

        if loss.alpha > 0:
            if feedback_grad_mu is not None:
                grad_mu = grad_mu + loss.alpha * self._check_latent(feedback_grad_mu, "feedback_grad_mu")
            if feedback_grad_sigma is not None:
                grad_sigma = self._check_latent(feedback_grad_sigma, "feedback_grad_sigma")
                grad_log_var = grad_log_var + loss.alpha * grad_sigma * 0.5 * sigma

        # No gradient through the clip
        grad_log_var = np.where(raw_log_var == log_var, grad_log_var, 0.0)
        backward_stack(self.encoder, np.concatenate([grad_mu, grad_log_var]))

        for layer in self.encoder + self.decoder:
            layer.apply_gradients(lr, self.max_grad_norm)
        self.training_steps += 1

        if not np.isfinite(loss.total):
            logger.warning("Non-finite VAE loss at step %d", self.training_steps)
        return loss

    def evaluate(self, features) -> VAELoss:
        """Loss at the posterior mean, without updating weights."""
        x = self._check_features(features)
        mu, log_var, _ = self._encode_raw(x)
        reconstruction = forward_stack(self.decoder, mu)
        return self.compute_loss(x, reconstruction, mu, log_var)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict:
        return {
            "input_dim": self.input_dim,
            "latent_dim": self.latent_dim,
            "hidden_dims": list(self.hidden_dims),
            "learning_rate": self.learning_rate,
            "momentum": self.momentum,
            "kl_weight": self.kl_weight,
            "kl_warmup_steps": self.kl_warmup_steps,
            "max_grad_norm": self.max_grad_norm,
            "feedback_alpha": self.feedback_alpha,
            "training_steps": self.training_steps,
            "encoder": [layer.to_dict() for layer in self.encoder],
            "decoder": [layer.to_dict() for layer in self.decoder],
        }

    @classmethod
    def from_dict(cls, data: Dict, rng: Optional[np.random.Generator] = None) -> "VariationalAutoencoder":
        vae = cls(
            input_dim=data["input_dim"],
            latent_dim=data["latent_dim"],
            hidden_dims=data.get("hidden_dims", (64, 32)),
            learning_rate=data.get("learning_rate", 0.001),
            momentum=data.get("momentum", 0.0),
            kl_weight=data.get("kl_weight", 1.0),
            kl_warmup_steps=data.get("kl_warmup_steps", 0),
            max_grad_norm=data.get("max_grad_norm", 5.0),
            rng=rng,
        )
        for layer, layer_data in zip(vae.encoder, data["encoder"]):
            layer.load_dict(layer_data)
        for layer, layer_data in zip(vae.decoder, data["decoder"]):
            layer.load_dict(layer_data)
        vae.feedback_alpha = float(data.get("feedback_alpha", 0.0))
        vae.training_steps = int(data.get("training_steps", 0))
        return vae
