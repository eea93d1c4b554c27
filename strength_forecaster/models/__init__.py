"""Data models for team strength forecasting."""

from .game import CONTEXT_DIM, CompletedGame, GameContext, Play, TeamGameLine
from .latent import LatentDistribution
from .transition import NUM_TRANSITIONS, TRANSITION_LABELS, TransitionProbabilities

__all__ = [
    "CONTEXT_DIM",
    "CompletedGame",
    "GameContext",
    "LatentDistribution",
    "NUM_TRANSITIONS",
    "Play",
    "TRANSITION_LABELS",
    "TeamGameLine",
    "TransitionProbabilities",
]
