"""
Bayesian team-state store.

Each team's latent strength is a diagonal Gaussian.  Updates blend the
prior mean with an observed latent mean using a precision-weighted gain
scaled by a diminishing learning rate, and shrink sigma geometrically
toward a floor.  When a team's first game of a new season arrives, its
distribution is regressed toward the population prior and sigma widens.
"""

import logging
import math
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np

from ..errors import ValidationError
from ..models.game import GameContext
from ..models.latent import LatentDistribution
from .seasons import DEFAULT_CALENDAR, SeasonCalendar

logger = logging.getLogger(__name__)


class BayesianTeamStateStore:
    """
    Owns the LatentDistribution of every tracked team.

    Args:
        latent_dim: Dimensionality of team distributions
        initial_uncertainty: Sigma assigned to a team with no history
        min_uncertainty: Sigma floor
        uncertainty_decay_rate: Per-game multiplicative sigma decay
        learning_rate: Base blend rate for the first observation
        learning_rate_decay: k in lr = base / (1 + k * games_processed)
        opponent_strength_weight: Extra observation noise per unit of opponent uncertainty
        max_games_for_convergence: Games after which confidence is ~95% of its ceiling
        confidence_threshold: Confidence ceiling
        season_regression: Share of the gap to the prior closed per off-season year
        inter_year_variance: Variance added per off-season year
        max_uncertainty: Sigma ceiling after season regression
        season_confidence_decay: Confidence multiplier at a season transition
        prior_mean: Population prior mean (zeros if omitted)
        calendar: Season calendar used to detect transitions
    """

    def __init__(
        self,
        latent_dim: int = 16,
        initial_uncertainty: float = 1.0,
        min_uncertainty: float = 0.1,
        uncertainty_decay_rate: float = 0.95,
        learning_rate: float = 0.1,
        learning_rate_decay: float = 0.05,
        opponent_strength_weight: float = 0.3,
        max_games_for_convergence: int = 20,
        confidence_threshold: float = 0.8,
        season_regression: float = 0.3,
        inter_year_variance: float = 0.25,
        max_uncertainty: float = 2.0,
        season_confidence_decay: float = 0.7,
        prior_mean: Optional[np.ndarray] = None,
        calendar: Optional[SeasonCalendar] = None,
    ):
        if min_uncertainty <= 0 or initial_uncertainty < min_uncertainty:
            raise ValidationError("require 0 < min_uncertainty <= initial_uncertainty")
        if not 0.0 < learning_rate <= 1.0:
            raise ValidationError("learning_rate must be in (0, 1]")
        self.latent_dim = latent_dim
        self.initial_uncertainty = initial_uncertainty
        self.min_uncertainty = min_uncertainty
        self.uncertainty_decay_rate = uncertainty_decay_rate
        self.learning_rate = learning_rate
        self.learning_rate_decay = learning_rate_decay
        self.opponent_strength_weight = opponent_strength_weight
        self.max_games_for_convergence = max_games_for_convergence
        self.confidence_threshold = confidence_threshold
        self.season_regression = season_regression
        self.inter_year_variance = inter_year_variance
        self.max_uncertainty = max(max_uncertainty, initial_uncertainty)
        self.season_confidence_decay = season_confidence_decay
        self.prior_mean = (
            np.zeros(latent_dim) if prior_mean is None else np.asarray(prior_mean, dtype=float)
        )
        if self.prior_mean.shape != (latent_dim,):
            raise ValidationError("prior_mean must have latent_dim entries")
        self.calendar = calendar or DEFAULT_CALENDAR
        self._distributions: Dict[str, LatentDistribution] = {}

    @classmethod
    def from_config(cls, config, calendar: Optional[SeasonCalendar] = None) -> "BayesianTeamStateStore":
        return cls(
            latent_dim=config.latent_dim,
            initial_uncertainty=config.initial_uncertainty,
            min_uncertainty=config.min_uncertainty,
            uncertainty_decay_rate=config.uncertainty_decay_rate,
            learning_rate=config.bayesian_learning_rate,
            learning_rate_decay=config.bayesian_learning_rate_decay,
            season_regression=config.season_regression,
            inter_year_variance=config.inter_year_variance,
            max_uncertainty=config.max_uncertainty,
            calendar=calendar,
        )

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def has(self, team_id: str) -> bool:
        return team_id in self._distributions

    def team_ids(self) -> List[str]:
        return sorted(self._distributions)

    def put(self, distribution: LatentDistribution) -> None:
        """Register a distribution loaded from persistence."""
        if distribution.dim != self.latent_dim:
            raise ValidationError(
                f"Distribution for {distribution.team_id} has dim {distribution.dim}, "
                f"expected {self.latent_dim}"
            )
        self._distributions[distribution.team_id] = distribution

    def get_distribution(self, team_id: str, initial_mu: Optional[np.ndarray] = None) -> LatentDistribution:
        """
        Return the team's distribution, creating a cold-start prior if absent.

        Args:
            team_id: Team identifier
            initial_mu: Optional encoder-derived mean for a new team

        Returns:
            The stored LatentDistribution (not a copy)
        """
        dist = self._distributions.get(team_id)
        if dist is None:
            mu = self.prior_mean.copy() if initial_mu is None else np.asarray(initial_mu, dtype=float)
            dist = LatentDistribution(
                team_id=team_id,
                mu=mu,
                sigma=np.full(self.latent_dim, self.initial_uncertainty),
            )
            self.put(dist)
            logger.debug("Created cold-start prior for %s", team_id)
        return dist

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def learning_rate_for(self, games_processed: int) -> float:
        return self.learning_rate / (1.0 + self.learning_rate_decay * games_processed)

    def confidence_for(self, games_processed: int) -> float:
        return self.confidence_threshold * (
            1.0 - math.exp(-3.0 * games_processed / self.max_games_for_convergence)
        )

    def _context_multiplier(self, context: Optional[GameContext]) -> float:
        if context is None:
            return 1.0
        multiplier = 1.0
        if context.is_neutral_site:
            multiplier *= 1.2
        if context.is_conference_game is False:
            multiplier *= 1.1
        if context.rest_days is not None and context.rest_days < 2:
            multiplier *= 1.15
        if context.is_postseason:
            multiplier *= 0.9
        return multiplier

    def _observation_variance(
        self,
        current_sigma: Optional[np.ndarray],
        context: Optional[GameContext],
        opponent: Optional[LatentDistribution],
    ) -> np.ndarray:
        if current_sigma is None:
            obs_sigma = np.full(self.latent_dim, self.initial_uncertainty)
        else:
            obs_sigma = np.asarray(current_sigma, dtype=float)
            if obs_sigma.shape != (self.latent_dim,):
                raise ValidationError("current_sigma must have latent_dim entries")
            if np.any(obs_sigma <= 0):
                raise ValidationError("current_sigma components must be positive")

        variance = (obs_sigma * self._context_multiplier(context)) ** 2
        if opponent is not None:
            opp_uncertainty = min(opponent.mean_sigma / self.initial_uncertainty, 1.0)
            variance = variance * (1.0 + self.opponent_strength_weight * opp_uncertainty)
        return variance

    def update(
        self,
        team_id: str,
        observed_latent,
        game_context: Optional[GameContext] = None,
        opponent_distribution: Optional[LatentDistribution] = None,
        current_sigma=None,
    ) -> LatentDistribution:
        """
        Blend a new observation into the team's distribution.

        Args:
            team_id: Team identifier
            observed_latent: Latent mean observed for this game
            game_context: Context of the game (date drives season handling)
            opponent_distribution: Opponent's current distribution
            current_sigma: Encoder sigma for the observation

        Returns:
            The updated distribution (mutated in place)
        """
        observed = np.asarray(observed_latent, dtype=float)
        if observed.shape != (self.latent_dim,):
            raise ValidationError(
                f"observed_latent has {observed.size} values, expected {self.latent_dim}"
            )
        if not np.all(np.isfinite(observed)):
            raise ValidationError("observed_latent must be finite")

        dist = self.get_distribution(team_id)
        game_date = game_context.game_date if game_context else None

        if game_date is not None:
            if dist.last_game_date is not None and (
                self.calendar.localize(game_date) < self.calendar.localize(dist.last_game_date)
            ):
                raise ValidationError(
                    f"Out-of-order update for {team_id}: {game_date} is before {dist.last_game_date}"
                )
            season = self.calendar.season_for(game_date)
            if self.calendar.is_transition(dist.last_season, game_date):
                self.apply_season_regression(dist, season, game_date)
            elif dist.last_season is None:
                dist.last_season = season
                dist.season_history.append(season)

        obs_var = self._observation_variance(current_sigma, game_context, opponent_distribution)
        prior_var = dist.sigma ** 2
        gain = prior_var / (prior_var + obs_var)
        weight = np.clip(self.learning_rate_for(dist.games_processed) * gain, 0.0, 1.0)

        dist.mu = (1.0 - weight) * dist.mu + weight * observed
        dist.sigma = np.maximum(self.min_uncertainty, dist.sigma * self.uncertainty_decay_rate)
        dist.games_processed += 1
        dist.confidence = self.confidence_for(dist.games_processed)
        if game_date is not None:
            dist.last_game_date = game_date

        logger.debug(
            "Updated %s: games=%d mean_sigma=%.4f mean_weight=%.4f",
            team_id, dist.games_processed, dist.mean_sigma, float(weight.mean()),
        )
        return dist

    def apply_season_regression(
        self,
        distribution: LatentDistribution,
        new_season: str,
        game_date: Optional[datetime] = None,
    ) -> LatentDistribution:
        """
        Regress a distribution toward the prior at a season boundary.

        The pull toward the prior mean grows with off-season length and
        shrinks with the confidence the team had built up; sigma grows by
        ``inter_year_variance`` per elapsed year and never decreases here.
        """
        previous = distribution.last_season
        if game_date is not None and distribution.last_game_date is not None:
            years = self.calendar.days_between(distribution.last_game_date, game_date) / 365.25
        elif previous is not None:
            years = float(max(self.calendar.seasons_between(previous, new_season), 1))
        else:
            years = 1.0
        years = max(years, 0.0)

        regression = (1.0 - (1.0 - self.season_regression) ** years) * (
            1.0 - 0.5 * distribution.confidence
        )
        distribution.mu = distribution.mu + regression * (self.prior_mean - distribution.mu)

        widened = np.sqrt(distribution.sigma ** 2 + self.inter_year_variance * years)
        widened = np.clip(widened, self.min_uncertainty, self.max_uncertainty)
        distribution.sigma = np.maximum(distribution.sigma, widened)

        distribution.confidence *= self.season_confidence_decay
        distribution.last_season = new_season
        distribution.season_history.append(new_season)

        logger.info(
            "Season transition for %s: %s -> %s (regression=%.3f, mean_sigma=%.3f)",
            distribution.team_id, previous, new_season, regression, distribution.mean_sigma,
        )
        return distribution

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def convergence_status(self, threshold: float = 0.1) -> Dict[str, Dict]:
        return {
            team_id: {
                "mean_sigma": dist.mean_sigma,
                "converged": dist.mean_sigma < threshold,
                "games_processed": dist.games_processed,
                "confidence": dist.confidence,
                "last_season": dist.last_season,
            }
            for team_id, dist in sorted(self._distributions.items())
        }

    def summary(self) -> Dict:
        if not self._distributions:
            return {"teams": 0, "mean_sigma": None, "mean_games": 0.0}
        sigmas = [d.mean_sigma for d in self._distributions.values()]
        games = [d.games_processed for d in self._distributions.values()]
        return {
            "teams": len(self._distributions),
            "mean_sigma": float(np.mean(sigmas)),
            "min_sigma": float(np.min(sigmas)),
            "max_sigma": float(np.max(sigmas)),
            "mean_games": float(np.mean(games)),
        }
