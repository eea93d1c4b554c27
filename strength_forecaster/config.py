"""Configuration surface for the forecaster."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Dict, Optional

from .errors import ValidationError

# Keys used by the original JSON configuration files.
_CAMEL_CASE_ALIASES = {
    "inputDim": "input_dim",
    "latentDim": "latent_dim",
    "contextDim": "context_dim",
    "learningRate": "learning_rate",
    "feedbackThreshold": "feedback_threshold",
    "initialAlpha": "initial_alpha",
    "alphaDecayRate": "alpha_decay_rate",
    "minAlpha": "min_alpha",
    "initialUncertainty": "initial_uncertainty",
    "minUncertainty": "min_uncertainty",
    "uncertaintyDecayRate": "uncertainty_decay_rate",
    "iterations": "iterations",
    "maxUpdateAttempts": "max_update_attempts",
    "convergenceThreshold": "convergence_threshold",
    "degradationThreshold": "degradation_threshold",
    "stabilityWindow": "stability_window",
    "randomSeed": "random_seed",
}


@dataclass
class ForecasterConfig:
    """All tunable parameters of the forecaster.

    The first block mirrors the recognized configuration options; the rest are
    extended knobs with defaults taken from the production system.
    """

    input_dim: int = 88
    latent_dim: int = 16
    learning_rate: float = 0.001
    feedback_threshold: float = 0.5
    initial_alpha: float = 0.1
    alpha_decay_rate: float = 0.99
    min_alpha: float = 0.001
    initial_uncertainty: float = 1.0
    min_uncertainty: float = 0.1
    uncertainty_decay_rate: float = 0.95
    iterations: int = 10000
    max_update_attempts: int = 3
    convergence_threshold: float = 1e-6
    degradation_threshold: float = 0.2
    stability_window: int = 10

    # Extended parameters
    context_dim: int = 10
    random_seed: Optional[int] = None
    bayesian_learning_rate: float = 0.1
    bayesian_learning_rate_decay: float = 0.05
    season_regression: float = 0.3
    inter_year_variance: float = 0.25
    max_uncertainty: float = 2.0
    team_convergence_threshold: float = 0.1
    history_limit: int = 1000
    monitoring_window: int = 100
    alert_cooldown_seconds: float = 3600.0
    absolute_error_ceiling: float = 1.0
    baseline_increase_threshold: float = 0.1
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    game_timeout: float = 30.0
    model_cache_ttl: float = 300.0
    possessions_per_game: float = 70.0

    def __post_init__(self):
        if self.input_dim <= 0 or self.latent_dim <= 0 or self.context_dim < 0:
            raise ValidationError("input_dim and latent_dim must be positive")
        if self.iterations < 1:
            raise ValidationError(f"iterations must be >= 1, got {self.iterations}")
        if self.max_update_attempts < 1:
            raise ValidationError("max_update_attempts must be >= 1")
        if self.stability_window < 1:
            raise ValidationError("stability_window must be >= 1")
        if not 0.0 < self.alpha_decay_rate <= 1.0:
            raise ValidationError("alpha_decay_rate must be in (0, 1]")
        if not 0.0 < self.uncertainty_decay_rate <= 1.0:
            raise ValidationError("uncertainty_decay_rate must be in (0, 1]")
        if self.min_uncertainty <= 0 or self.initial_uncertainty < self.min_uncertainty:
            raise ValidationError("require 0 < min_uncertainty <= initial_uncertainty")
        if self.min_alpha < 0 or self.initial_alpha < self.min_alpha:
            raise ValidationError("require 0 <= min_alpha <= initial_alpha")

    @classmethod
    def from_dict(cls, data: Dict) -> "ForecasterConfig":
        """Build a config from a dict using snake_case or camelCase keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _CAMEL_CASE_ALIASES.get(key, key)
            if name not in known:
                raise ValidationError(f"Unknown configuration option: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: str) -> "ForecasterConfig":
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))

    def to_dict(self) -> Dict:
        return asdict(self)

    def save(self, path: str) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
