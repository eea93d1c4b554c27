from .matchup import build_transition_matrix, estimate_possessions, simulate_matchup
from .monte_carlo import MonteCarloEngine, SimulationConfig, SimulationResult, TransitionMatrix
from .possessions import (
    BoxScorePossessionEstimator,
    ConstantPossessionEstimator,
    PossessionEstimator,
    ScoreBasedPossessionEstimator,
    get_estimator,
)

__all__ = [
    "BoxScorePossessionEstimator",
    "ConstantPossessionEstimator",
    "MonteCarloEngine",
    "PossessionEstimator",
    "ScoreBasedPossessionEstimator",
    "SimulationConfig",
    "SimulationResult",
    "TransitionMatrix",
    "build_transition_matrix",
    "estimate_possessions",
    "get_estimator",
    "simulate_matchup",
]
