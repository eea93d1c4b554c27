"""
Feedback-coupled trainer for the VAE and the transition predictor.

Per game the predictor is always trained toward the observed outcome.  When
its loss is above ``feedback_threshold`` and the feedback coefficient alpha
is still above its floor, the predictor's error (loss value plus the
gradient w.r.t. the team's latent inputs) is fed into the VAE update.
Alpha decays geometrically on every call so the coupling fades as evidence
accumulates.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from ..errors import ValidationError
from ..models.latent import LatentDistribution
from .transition_nn import TransitionPredictor
from .vae import VAELoss, VariationalAutoencoder

logger = logging.getLogger(__name__)

LatentInput = Union[LatentDistribution, Tuple[np.ndarray, np.ndarray]]


@dataclass
class TrainingState:
    """Mutable trainer state; bounded histories are deques."""

    alpha: float
    iteration: int = 0
    feedback_triggers: int = 0
    converged: bool = False
    average_nn_loss: float = 0.0
    average_vae_loss: float = 0.0
    history_limit: int = 1000
    nn_loss_history: Deque[float] = field(default_factory=deque)
    vae_loss_history: Deque[float] = field(default_factory=deque)
    feedback_history: Deque[bool] = field(default_factory=deque)
    alpha_history: Deque[float] = field(default_factory=deque)

    def __post_init__(self):
        self.nn_loss_history = deque(self.nn_loss_history, maxlen=self.history_limit)
        self.vae_loss_history = deque(self.vae_loss_history, maxlen=self.history_limit)
        self.feedback_history = deque(self.feedback_history, maxlen=self.history_limit)
        self.alpha_history = deque(self.alpha_history, maxlen=self.history_limit)

    def to_dict(self) -> Dict:
        return {
            "alpha": float(self.alpha),
            "iteration": self.iteration,
            "feedback_triggers": self.feedback_triggers,
            "converged": self.converged,
            "average_nn_loss": float(self.average_nn_loss),
            "average_vae_loss": float(self.average_vae_loss),
            "history_limit": self.history_limit,
            "nn_loss_history": [float(v) for v in self.nn_loss_history],
            "vae_loss_history": [float(v) for v in self.vae_loss_history],
            "feedback_history": [bool(v) for v in self.feedback_history],
            "alpha_history": [float(v) for v in self.alpha_history],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "TrainingState":
        return cls(
            alpha=float(data["alpha"]),
            iteration=int(data.get("iteration", 0)),
            feedback_triggers=int(data.get("feedback_triggers", 0)),
            converged=bool(data.get("converged", False)),
            average_nn_loss=float(data.get("average_nn_loss", 0.0)),
            average_vae_loss=float(data.get("average_vae_loss", 0.0)),
            history_limit=int(data.get("history_limit", 1000)),
            nn_loss_history=data.get("nn_loss_history", []),
            vae_loss_history=data.get("vae_loss_history", []),
            feedback_history=data.get("feedback_history", []),
            alpha_history=data.get("alpha_history", []),
        )


@dataclass
class TrainingResult:
    """Outcome of one ``train_on_game`` call."""

    iteration: int
    nn_loss: float
    vae_loss: float
    feedback_triggered: bool
    alpha: float
    predicted: np.ndarray
    actual: np.ndarray
    vae_details: Optional[VAELoss] = None
    converged: bool = False


@dataclass
class TrainingExample:
    """One (features, observed outcome) pair for batch training."""

    features: np.ndarray
    actual: np.ndarray
    team: Optional[LatentInput] = None
    opponent: Optional[LatentInput] = None
    context: Optional[np.ndarray] = None


@dataclass
class BatchTrainingSummary:
    games: int
    mean_nn_loss: float
    mean_vae_loss: float
    min_nn_loss: float
    max_nn_loss: float
    feedback_count: int
    final_alpha: float
    converged: bool
    results: List[TrainingResult] = field(default_factory=list)


@dataclass
class StabilityReport:
    stable: bool
    reason: str
    feedback_rate: float = 0.0
    alpha_decay: float = 0.0
    current_alpha: float = 0.0
    recent_triggers: int = 0

    def to_dict(self) -> Dict:
        return {
            "stable": self.stable,
            "reason": self.reason,
            "feedback_rate": self.feedback_rate,
            "alpha_decay": self.alpha_decay,
            "current_alpha": self.current_alpha,
            "recent_triggers": self.recent_triggers,
        }


class FeedbackTrainer:
    """
    Jointly trains a VAE and a transition predictor.

    Args:
        vae: Encoder whose weights receive feedback
        predictor: Transition-probability network
        feedback_threshold: Predictor loss above which feedback fires
        initial_alpha: Starting feedback coefficient
        alpha_decay_rate: Multiplicative alpha decay per call
        min_alpha: Alpha floor; feedback never fires at the floor
        convergence_threshold: Loss variance below which training has converged
        stability_window: Number of recent samples used for averages and checks
        history_limit: Maximum retained history length
    """

    def __init__(
        self,
        vae: VariationalAutoencoder,
        predictor: TransitionPredictor,
        feedback_threshold: float = 0.5,
        initial_alpha: float = 0.1,
        alpha_decay_rate: float = 0.99,
        min_alpha: float = 0.001,
        convergence_threshold: float = 1e-6,
        stability_window: int = 10,
        history_limit: int = 1000,
    ):
        if vae.latent_dim != predictor.latent_dim:
            raise ValidationError(
                f"VAE latent_dim {vae.latent_dim} != predictor latent_dim {predictor.latent_dim}"
            )
        if not 0.0 < alpha_decay_rate <= 1.0:
            raise ValidationError("alpha_decay_rate must be in (0, 1]")
        if stability_window < 1:
            raise ValidationError("stability_window must be >= 1")

        self.vae = vae
        self.predictor = predictor
        self.feedback_threshold = feedback_threshold
        self.initial_alpha = initial_alpha
        self.alpha_decay_rate = alpha_decay_rate
        self.min_alpha = min_alpha
        self.convergence_threshold = convergence_threshold
        self.stability_window = stability_window
        self.history_limit = history_limit

        self.state = TrainingState(alpha=initial_alpha, history_limit=history_limit)
        self.vae.set_feedback_coefficient(self.state.alpha)

    @classmethod
    def from_config(cls, config, vae: VariationalAutoencoder, predictor: TransitionPredictor) -> "FeedbackTrainer":
        return cls(
            vae,
            predictor,
            feedback_threshold=config.feedback_threshold,
            initial_alpha=config.initial_alpha,
            alpha_decay_rate=config.alpha_decay_rate,
            min_alpha=config.min_alpha,
            convergence_threshold=config.convergence_threshold,
            stability_window=config.stability_window,
            history_limit=config.history_limit,
        )

    @property
    def alpha(self) -> float:
        return self.state.alpha

    def _resolve_latent(self, latent: Optional[LatentInput], features: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        if latent is None:
            return self.vae.encode(features)
        if isinstance(latent, LatentDistribution):
            return latent.mu, latent.sigma
        mu, sigma = latent
        return np.asarray(mu, dtype=float), np.asarray(sigma, dtype=float)

    def train_on_game(
        self,
        features,
        actual,
        team: Optional[LatentInput] = None,
        opponent: Optional[LatentInput] = None,
        context=None,
    ) -> TrainingResult:
        """
        Run one coupled training step for a team's observed game.

        Args:
            features: The team's normalized feature vector for this game
            actual: Observed transition probabilities (length 8)
            team: Team latent distribution; encoded from ``features`` if omitted
            opponent: Opponent latent distribution; defaults to the team's
            context: Game context vector; zeros if omitted

        Returns:
            TrainingResult for this step
        """
        features = np.asarray(features, dtype=float)
        actual = np.asarray(actual, dtype=float)
        mu_a, sigma_a = self._resolve_latent(team, features)
        if opponent is None:
            mu_b, sigma_b = mu_a, sigma_a
        else:
            mu_b, sigma_b = self._resolve_latent(opponent, features)
        if context is None:
            context = np.zeros(self.predictor.context_dim)

        nn_input = self.predictor.build_input(mu_a, sigma_a, mu_b, sigma_b, context)
        predicted = self.predictor.forward(nn_input)
        nn_loss = self.predictor.compute_loss(predicted, actual)

        alpha_used = self.state.alpha
        feedback = nn_loss > self.feedback_threshold and alpha_used > self.min_alpha

        latent_grad = None
        if feedback:
            latent_grad = self.predictor.split_latent_gradient(
                self.predictor.input_gradient(nn_input, actual)
            )
        self.predictor.train_step(nn_input, actual)

        if feedback:
            vae_details = self.vae.train_step(
                features,
                feedback_loss=nn_loss,
                alpha=alpha_used,
                feedback_grad_mu=latent_grad["mu_a"],
                feedback_grad_sigma=latent_grad["sigma_a"],
            )
            self.state.feedback_triggers += 1
            logger.debug(
                "Feedback fired at iteration %d: nn_loss=%.4f alpha=%.5f",
                self.state.iteration + 1, nn_loss, alpha_used,
            )
        else:
            vae_details = self.vae.train_step(features)

        self._decay_alpha()
        self._record(nn_loss, vae_details.vae_loss, feedback)

        return TrainingResult(
            iteration=self.state.iteration,
            nn_loss=nn_loss,
            vae_loss=vae_details.vae_loss,
            feedback_triggered=feedback,
            alpha=alpha_used,
            predicted=predicted,
            actual=actual,
            vae_details=vae_details,
            converged=self.state.converged,
        )

    def _decay_alpha(self) -> None:
        self.state.alpha = max(self.min_alpha, self.state.alpha * self.alpha_decay_rate)
        self.vae.set_feedback_coefficient(self.state.alpha)

    def _record(self, nn_loss: float, vae_loss: float, feedback: bool) -> None:
        state = self.state
        state.iteration += 1
        state.nn_loss_history.append(nn_loss)
        state.vae_loss_history.append(vae_loss)
        state.feedback_history.append(feedback)
        state.alpha_history.append(state.alpha)

        window = self.stability_window
        state.average_nn_loss = float(np.mean(list(state.nn_loss_history)[-window:]))
        state.average_vae_loss = float(np.mean(list(state.vae_loss_history)[-window:]))

        was_converged = state.converged
        state.converged = self.check_convergence()
        if state.converged and not was_converged:
            logger.info("Training converged at iteration %d", state.iteration)

    def train_on_batch(self, examples: Iterable[TrainingExample]) -> BatchTrainingSummary:
        """Apply ``train_on_game`` to each example in order."""
        results = [
            self.train_on_game(ex.features, ex.actual, ex.team, ex.opponent, ex.context)
            for ex in examples
        ]
        if not results:
            raise ValidationError("train_on_batch requires at least one example")

        frame = pd.DataFrame(
            {
                "nn_loss": [r.nn_loss for r in results],
                "vae_loss": [r.vae_loss for r in results],
                "feedback": [r.feedback_triggered for r in results],
            }
        )
        summary = BatchTrainingSummary(
            games=len(frame),
            mean_nn_loss=float(frame["nn_loss"].mean()),
            mean_vae_loss=float(frame["vae_loss"].mean()),
            min_nn_loss=float(frame["nn_loss"].min()),
            max_nn_loss=float(frame["nn_loss"].max()),
            feedback_count=int(frame["feedback"].sum()),
            final_alpha=self.state.alpha,
            converged=self.state.converged,
            results=results,
        )
        logger.info(
            "Batch of %d games: mean nn_loss=%.4f, mean vae_loss=%.4f, feedback=%d",
            summary.games, summary.mean_nn_loss, summary.mean_vae_loss, summary.feedback_count,
        )
        return summary

    def check_convergence(self) -> bool:
        window = self.stability_window
        if len(self.state.nn_loss_history) < window:
            return False
        nn_var = np.var(list(self.state.nn_loss_history)[-window:])
        vae_var = np.var(list(self.state.vae_loss_history)[-window:])
        return bool(nn_var < self.convergence_threshold and vae_var < self.convergence_threshold)

    def monitor_stability(self) -> StabilityReport:
        window = self.stability_window
        state = self.state
        if len(state.feedback_history) < window:
            return StabilityReport(
                stable=False,
                reason="insufficient history",
                current_alpha=state.alpha,
            )

        recent_feedback = list(state.feedback_history)[-window:]
        recent_alpha = list(state.alpha_history)[-window:]
        triggers = int(sum(recent_feedback))
        feedback_rate = triggers / window
        alpha_decay = recent_alpha[0] - recent_alpha[-1]
        alpha_non_increasing = all(b <= a for a, b in zip(recent_alpha, recent_alpha[1:]))

        if feedback_rate >= 0.5:
            stable, reason = False, "feedback firing too often"
        elif not alpha_non_increasing:
            stable, reason = False, "alpha increased"
        else:
            stable, reason = True, "stable"

        return StabilityReport(
            stable=stable,
            reason=reason,
            feedback_rate=feedback_rate,
            alpha_decay=alpha_decay,
            current_alpha=state.alpha,
            recent_triggers=triggers,
        )

    def stats(self) -> Dict:
        state = self.state
        return {
            "iteration": state.iteration,
            "alpha": state.alpha,
            "feedback_triggers": state.feedback_triggers,
            "feedback_rate": state.feedback_triggers / state.iteration if state.iteration else 0.0,
            "average_nn_loss": state.average_nn_loss,
            "average_vae_loss": state.average_vae_loss,
            "converged": state.converged,
            "history_size": len(state.nn_loss_history),
        }

    def reset(self) -> None:
        self.state = TrainingState(alpha=self.initial_alpha, history_limit=self.history_limit)
        self.vae.set_feedback_coefficient(self.state.alpha)
        logger.info("Feedback trainer reset")

    def state_dict(self) -> Dict:
        return {
            "feedback_threshold": self.feedback_threshold,
            "initial_alpha": self.initial_alpha,
            "alpha_decay_rate": self.alpha_decay_rate,
            "min_alpha": self.min_alpha,
            "convergence_threshold": self.convergence_threshold,
            "stability_window": self.stability_window,
            "state": self.state.to_dict(),
        }

    def load_state_dict(self, data: Dict) -> None:
        self.feedback_threshold = data.get("feedback_threshold", self.feedback_threshold)
        self.initial_alpha = data.get("initial_alpha", self.initial_alpha)
        self.alpha_decay_rate = data.get("alpha_decay_rate", self.alpha_decay_rate)
        self.min_alpha = data.get("min_alpha", self.min_alpha)
        self.convergence_threshold = data.get("convergence_threshold", self.convergence_threshold)
        self.stability_window = data.get("stability_window", self.stability_window)
        self.state = TrainingState.from_dict(data["state"])
        self.history_limit = self.state.history_limit
        self.vae.set_feedback_coefficient(self.state.alpha)
