"""Pre-game matchup simulation from team latent distributions."""

import logging
from typing import Mapping, Optional, Union

import numpy as np

from ..errors import ValidationError
from ..ml.transition_nn import TransitionPredictor
from ..models.game import GameContext
from ..models.latent import LatentDistribution
from .monte_carlo import MonteCarloEngine, SimulationResult, TransitionMatrix
from .possessions import ConstantPossessionEstimator, PossessionEstimator

logger = logging.getLogger(__name__)

ContextInput = Union[GameContext, np.ndarray, None]


def _context_vector(predictor: TransitionPredictor, context: ContextInput) -> np.ndarray:
    if context is None:
        return np.zeros(predictor.context_dim)
    if isinstance(context, GameContext):
        return context.to_vector()
    return np.asarray(context, dtype=float)


def estimate_possessions(
    estimator: Optional[PossessionEstimator] = None,
    home_stats: Optional[Mapping] = None,
    away_stats: Optional[Mapping] = None,
) -> float:
    """Possessions per team from ``estimator`` (constant 70 when omitted)."""
    estimator = estimator or ConstantPossessionEstimator()
    possessions = float(estimator.estimate(home_stats, away_stats))
    if not np.isfinite(possessions) or possessions <= 0:
        raise ValidationError(f"{type(estimator).__name__} returned {possessions} possessions")
    return possessions


def build_transition_matrix(
    predictor: TransitionPredictor,
    home: LatentDistribution,
    away: LatentDistribution,
    context: ContextInput = None,
    estimator: Optional[PossessionEstimator] = None,
    home_stats: Optional[Mapping] = None,
    away_stats: Optional[Mapping] = None,
) -> TransitionMatrix:
    """Predict both teams' transition vectors at the distribution means."""
    ctx = _context_vector(predictor, context)
    return TransitionMatrix(
        home=predictor.predict(home.mu, home.sigma, away.mu, away.sigma, ctx),
        away=predictor.predict(away.mu, away.sigma, home.mu, home.sigma, ctx),
        possessions=estimate_possessions(estimator, home_stats, away_stats),
    )


def simulate_matchup(
    predictor: TransitionPredictor,
    engine: MonteCarloEngine,
    home: LatentDistribution,
    away: LatentDistribution,
    context: ContextInput = None,
    iterations: Optional[int] = None,
    latent_draws: int = 20,
    estimator: Optional[PossessionEstimator] = None,
    home_stats: Optional[Mapping] = None,
    away_stats: Optional[Mapping] = None,
) -> SimulationResult:
    """
    Simulate a matchup while propagating uncertainty in team strength.

    Each draw samples a strength vector for both teams from their latent
    Gaussians (mu + sigma * eps), predicts a transition matrix for that
    draw, and simulates its share of the iterations.  Results are pooled.

    Args:
        predictor: Transition-probability network
        engine: Simulation engine; its generator also drives latent draws
        home: Home team's latent distribution
        away: Away team's latent distribution
        context: GameContext or raw context vector
        iterations: Total iterations (defaults to the engine's config)
        latent_draws: Number of strength samples per team
        estimator: Possession estimator (constant 70 when omitted)
        home_stats: Home team's average box score, passed to the estimator
        away_stats: Away team's average box score, passed to the estimator

    Returns:
        Pooled SimulationResult
    """
    n = engine.config.iterations if iterations is None else iterations
    if n < 1:
        raise ValidationError(f"iterations must be >= 1, got {n}")
    if latent_draws < 1:
        raise ValidationError("latent_draws must be >= 1")
    draws = min(latent_draws, n)
    ctx = _context_vector(predictor, context)
    possessions = estimate_possessions(estimator, home_stats, away_stats)

    sizes = np.full(draws, n // draws)
    sizes[: n % draws] += 1

    results = []
    for size in sizes:
        home_z = home.mu + home.sigma * engine.rng.standard_normal(home.dim)
        away_z = away.mu + away.sigma * engine.rng.standard_normal(away.dim)
        matrix = TransitionMatrix(
            home=predictor.predict(home_z, home.sigma, away_z, away.sigma, ctx),
            away=predictor.predict(away_z, away.sigma, home_z, home.sigma, ctx),
            possessions=possessions,
        )
        results.append(engine.simulate(matrix, int(size)))

    pooled = SimulationResult.merge(results)
    logger.info(
        "Matchup %s vs %s: home_wp=%.3f margin=%.2f possessions=%.1f over %d draws",
        home.team_id, away.team_id, pooled.home_win_probability, pooled.average_margin, possessions, draws,
    )
    return pooled
