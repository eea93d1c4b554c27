"""
Monte Carlo game simulation engine.

Plays out full games possession by possession by sampling each team's
transition-probability vector, and aggregates win probabilities and the
margin distribution over many iterations.  Iterations are vectorized
with numpy and run in seeded batches.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

import numpy as np
from scipy.stats import norm

from ..errors import ValidationError
from ..models.transition import TransitionProbabilities
from .possessions import DEFAULT_POSSESSIONS

logger = logging.getLogger(__name__)

# Indices into the transition vector
TWO_MAKE, TWO_MISS, THREE_MAKE, THREE_MISS, FT_MAKE, FT_MISS, OREB, TURNOVER = range(8)


@dataclass
class SimulationConfig:
    """Configuration for Monte Carlo simulation."""

    iterations: int = 10000
    random_seed: Optional[int] = None
    # Offensive rebounds allowed to extend one possession before it ends scoreless
    max_offensive_rebounds: int = 3
    free_throws_per_trip: int = 2
    overtime_possessions: int = 7
    max_overtimes: int = 5
    batch_size: int = 2000

    def __post_init__(self):
        if self.iterations < 1:
            raise ValidationError(f"iterations must be >= 1, got {self.iterations}")
        if self.batch_size < 1:
            raise ValidationError("batch_size must be >= 1")
        if self.max_offensive_rebounds < 0 or self.max_overtimes < 0:
            raise ValidationError("max_offensive_rebounds and max_overtimes must be >= 0")


@dataclass
class TransitionMatrix:
    """Both teams' possession outcome probabilities for one game."""

    home: TransitionProbabilities
    away: TransitionProbabilities
    possessions: float = DEFAULT_POSSESSIONS

    def __post_init__(self):
        self.home.validate()
        self.away.validate()
        if not math.isfinite(self.possessions) or self.possessions < 1:
            raise ValidationError(f"possessions must be >= 1, got {self.possessions}")

    @classmethod
    def from_dict(cls, data: Dict) -> "TransitionMatrix":
        return cls(
            home=TransitionProbabilities.from_dict(data["home"]),
            away=TransitionProbabilities.from_dict(data["away"]),
            possessions=float(data.get("possessions", DEFAULT_POSSESSIONS)),
        )

    def to_dict(self) -> Dict:
        return {
            "home": self.home.to_dict(),
            "away": self.away.to_dict(),
            "possessions": self.possessions,
        }


@dataclass
class SimulationResult:
    """Aggregated outcome distribution of a simulated game."""

    home_win_probability: float
    away_win_probability: float
    average_home_score: float
    average_away_score: float
    average_margin: float
    margin_std: float
    iterations: int
    margins: np.ndarray = field(repr=False, default_factory=lambda: np.zeros(0))
    home_scores: np.ndarray = field(repr=False, default_factory=lambda: np.zeros(0))
    away_scores: np.ndarray = field(repr=False, default_factory=lambda: np.zeros(0))
    home_wins: np.ndarray = field(repr=False, default_factory=lambda: np.zeros(0, dtype=bool))
    overtime_rate: float = 0.0
    tie_breaks: int = 0

    @classmethod
    def from_samples(
        cls,
        home_scores: np.ndarray,
        away_scores: np.ndarray,
        home_wins: np.ndarray,
        overtime_games: int = 0,
        tie_breaks: int = 0,
    ) -> "SimulationResult":
        n = len(home_scores)
        if n < 1:
            raise ValidationError("Cannot aggregate zero iterations")
        margins = home_scores - away_scores
        home_wp = float(np.mean(home_wins))
        return cls(
            home_win_probability=home_wp,
            away_win_probability=1.0 - home_wp,
            average_home_score=float(np.mean(home_scores)),
            average_away_score=float(np.mean(away_scores)),
            average_margin=float(np.mean(margins)),
            margin_std=float(np.std(margins)),
            iterations=n,
            margins=margins,
            home_scores=home_scores,
            away_scores=away_scores,
            home_wins=np.asarray(home_wins, dtype=bool),
            overtime_rate=overtime_games / n,
            tie_breaks=tie_breaks,
        )

    @classmethod
    def merge(cls, results: Sequence["SimulationResult"]) -> "SimulationResult":
        """Pool several results into one, as if run as a single simulation."""
        if not results:
            raise ValidationError("Nothing to merge")
        return cls.from_samples(
            home_scores=np.concatenate([r.home_scores for r in results]),
            away_scores=np.concatenate([r.away_scores for r in results]),
            home_wins=np.concatenate([r.home_wins for r in results]),
            overtime_games=int(round(sum(r.overtime_rate * r.iterations for r in results))),
            tie_breaks=sum(r.tie_breaks for r in results),
        )

    @property
    def average_total(self) -> float:
        return self.average_home_score + self.average_away_score

    def spread_cover_probability(self, home_spread: float) -> Dict[str, float]:
        """
        Probability each side covers a point spread.

        Args:
            home_spread: Home line in betting convention (-5.5 = home favored by 5.5)

        Returns:
            Dict with 'home', 'away' and 'push' probabilities
        """
        adjusted = self.margins + home_spread
        return {
            "home": float(np.mean(adjusted > 0)),
            "away": float(np.mean(adjusted < 0)),
            "push": float(np.mean(adjusted == 0)),
        }

    def total_over_probability(self, line: float) -> Dict[str, float]:
        totals = self.home_scores + self.away_scores
        return {
            "over": float(np.mean(totals > line)),
            "under": float(np.mean(totals < line)),
            "push": float(np.mean(totals == line)),
        }

    def margin_percentiles(self, percentiles: Sequence[float] = (5, 25, 50, 75, 95)) -> Dict[float, float]:
        values = np.percentile(self.margins, list(percentiles))
        return {p: float(v) for p, v in zip(percentiles, values)}

    def win_probability_interval(self, confidence: float = 0.95) -> Dict[str, float]:
        """Wilson score interval for the home win probability."""
        n = self.iterations
        p = self.home_win_probability
        z = float(norm.ppf(0.5 + confidence / 2.0))
        denom = 1 + z ** 2 / n
        center = (p + z ** 2 / (2 * n)) / denom
        margin = z * math.sqrt(p * (1 - p) / n + z ** 2 / (4 * n ** 2)) / denom
        return {
            "lower": max(0.0, center - margin),
            "upper": min(1.0, center + margin),
            "standard_error": math.sqrt(p * (1 - p) / n),
        }

    def to_dict(self) -> Dict:
        return {
            "home_win_probability": self.home_win_probability,
            "away_win_probability": self.away_win_probability,
            "average_home_score": self.average_home_score,
            "average_away_score": self.average_away_score,
            "average_margin": self.average_margin,
            "margin_std": self.margin_std,
            "iterations": self.iterations,
            "overtime_rate": self.overtime_rate,
            "tie_breaks": self.tie_breaks,
            "margin_percentiles": {str(k): v for k, v in self.margin_percentiles().items()},
        }


def _cumulative(probs: TransitionProbabilities) -> np.ndarray:
    arr = probs.as_array()
    cum = np.cumsum(arr / arr.sum())
    cum[-1] = 1.0
    return cum


def _play_possessions(
    rng: np.random.Generator,
    cumulative: np.ndarray,
    ft_pct: float,
    n_games: int,
    n_possessions: int,
    max_offensive_rebounds: int,
    free_throws_per_trip: int,
) -> np.ndarray:
    """Points scored by one team over ``n_possessions`` in each of ``n_games`` games."""
    points = np.zeros(n_games)
    for _ in range(n_possessions):
        alive = np.arange(n_games)
        for _ in range(max_offensive_rebounds + 1):
            outcome = np.searchsorted(cumulative, rng.random(alive.size), side="right")
            outcome = np.minimum(outcome, TURNOVER)

            points[alive[outcome == TWO_MAKE]] += 2
            points[alive[outcome == THREE_MAKE]] += 3
            at_line = alive[(outcome == FT_MAKE) | (outcome == FT_MISS)]
            if at_line.size:
                points[at_line] += rng.binomial(free_throws_per_trip, ft_pct, size=at_line.size)

            alive = alive[outcome == OREB]
            if alive.size == 0:
                break
    return points


def _run_batch(
    batch_size: int,
    seed: int,
    matrix: TransitionMatrix,
    config: SimulationConfig,
) -> Dict[str, np.ndarray]:
    """
    Simulate one batch of games with its own generator.

    Returns:
        Dict with home/away scores, home-win flags, overtime and tie-break masks
    """
    rng = np.random.default_rng(seed)
    home_cum = _cumulative(matrix.home)
    away_cum = _cumulative(matrix.away)
    home_ft = matrix.home.free_throw_pct
    away_ft = matrix.away.free_throw_pct
    n_poss = max(1, int(round(matrix.possessions)))

    def play(cum, ft, n_games, n_possessions):
        return _play_possessions(
            rng, cum, ft, n_games, n_possessions,
            config.max_offensive_rebounds, config.free_throws_per_trip,
        )

    home = play(home_cum, home_ft, batch_size, n_poss)
    away = play(away_cum, away_ft, batch_size, n_poss)

    overtime = np.zeros(batch_size, dtype=bool)
    for _ in range(config.max_overtimes):
        tied = np.flatnonzero(home == away)
        if tied.size == 0:
            break
        overtime[tied] = True
        home[tied] += play(home_cum, home_ft, tied.size, config.overtime_possessions)
        away[tied] += play(away_cum, away_ft, tied.size, config.overtime_possessions)

    # Whatever is still level after the last overtime is settled by a fair coin
    still_tied = home == away
    coin = rng.random(batch_size) < 0.5
    home_wins = (home > away) | (still_tied & coin)

    return {
        "home": home,
        "away": away,
        "home_wins": home_wins,
        "overtime": overtime,
        "tie_break": still_tied,
    }


class MonteCarloEngine:
    """
    Possession-level Monte Carlo simulator.

    Args:
        config: Simulation configuration
        rng: Generator used to seed batches; built from config.random_seed if omitted
    """

    def __init__(self, config: Optional[SimulationConfig] = None, rng: Optional[np.random.Generator] = None):
        self.config = config or SimulationConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.random_seed)

    @classmethod
    def from_config(cls, config) -> "MonteCarloEngine":
        return cls(SimulationConfig(iterations=config.iterations, random_seed=config.random_seed))

    def simulate(self, matrix: TransitionMatrix, iterations: Optional[int] = None) -> SimulationResult:
        """
        Simulate a game ``iterations`` times.

        Args:
            matrix: Both teams' transition probabilities and possession count
            iterations: Overrides config.iterations

        Returns:
            SimulationResult
        """
        n = self.config.iterations if iterations is None else iterations
        if not isinstance(n, (int, np.integer)) or n < 1:
            raise ValidationError(f"iterations must be a positive integer, got {n!r}")
        if not isinstance(matrix, TransitionMatrix):
            raise ValidationError("simulate() requires a TransitionMatrix")

        batches = []
        remaining = int(n)
        while remaining > 0:
            size = min(self.config.batch_size, remaining)
            seed = int(self.rng.integers(0, 2**32 - 1))
            batches.append(_run_batch(size, seed, matrix, self.config))
            remaining -= size

        def stack(key):
            return np.concatenate([b[key] for b in batches])

        result = SimulationResult.from_samples(
            home_scores=stack("home"),
            away_scores=stack("away"),
            home_wins=stack("home_wins"),
            overtime_games=int(stack("overtime").sum()),
            tie_breaks=int(stack("tie_break").sum()),
        )
        logger.debug(
            "Simulated %d games: home_wp=%.3f avg_margin=%.2f",
            result.iterations, result.home_win_probability, result.average_margin,
        )
        return result
