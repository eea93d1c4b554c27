"""Latent team-strength distribution."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import numpy as np

from ..errors import ValidationError


@dataclass
class LatentDistribution:
    """Diagonal Gaussian N(mu, sigma^2) over a team's latent strength vector.

    Owned by the Bayesian team-state store and mutated in place by updates.
    """

    team_id: str
    mu: np.ndarray
    sigma: np.ndarray
    games_processed: int = 0
    last_season: Optional[str] = None
    last_game_date: Optional[datetime] = None
    confidence: float = 0.0
    season_history: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.mu = np.asarray(self.mu, dtype=float).copy()
        self.sigma = np.asarray(self.sigma, dtype=float).copy()
        self.validate()

    def validate(self) -> None:
        if self.mu.ndim != 1 or self.sigma.ndim != 1:
            raise ValidationError("mu and sigma must be one-dimensional")
        if self.mu.shape != self.sigma.shape:
            raise ValidationError(
                f"mu and sigma dimensions differ: {self.mu.size} vs {self.sigma.size}"
            )
        if not np.all(np.isfinite(self.mu)) or not np.all(np.isfinite(self.sigma)):
            raise ValidationError("mu and sigma must be finite")
        if np.any(self.sigma <= 0):
            raise ValidationError("sigma components must be positive")
        if self.games_processed < 0:
            raise ValidationError("games_processed must be non-negative")

    @property
    def dim(self) -> int:
        return int(self.mu.size)

    @property
    def mean_sigma(self) -> float:
        return float(self.sigma.mean())

    @property
    def log_var(self) -> np.ndarray:
        return 2.0 * np.log(self.sigma)

    def copy(self) -> "LatentDistribution":
        return LatentDistribution(
            team_id=self.team_id,
            mu=self.mu.copy(),
            sigma=self.sigma.copy(),
            games_processed=self.games_processed,
            last_season=self.last_season,
            last_game_date=self.last_game_date,
            confidence=self.confidence,
            season_history=list(self.season_history),
        )

    def to_dict(self) -> dict:
        return {
            "team_id": self.team_id,
            "mu": [float(v) for v in self.mu],
            "sigma": [float(v) for v in self.sigma],
            "games_processed": int(self.games_processed),
            "last_season": self.last_season,
            "last_game_date": self.last_game_date.isoformat() if self.last_game_date else None,
            "confidence": float(self.confidence),
            "season_history": list(self.season_history),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LatentDistribution":
        last_game_date = data.get("last_game_date")
        return cls(
            team_id=data["team_id"],
            mu=data["mu"],
            sigma=data["sigma"],
            games_processed=int(data.get("games_processed", 0)),
            last_season=data.get("last_season"),
            last_game_date=datetime.fromisoformat(last_game_date) if last_game_date else None,
            confidence=float(data.get("confidence", 0.0)),
            season_history=list(data.get("season_history", [])),
        )
