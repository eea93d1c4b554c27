"""Pluggable possession-count estimators."""

from typing import Mapping, Optional, Protocol

from ..errors import ValidationError

# NCAA average possessions per team per game
DEFAULT_POSSESSIONS = 70.0


class PossessionEstimator(Protocol):
    def estimate(self, home_stats: Optional[Mapping] = None, away_stats: Optional[Mapping] = None) -> float:
        ...


class ConstantPossessionEstimator:
    """Always returns the same possession count."""

    def __init__(self, possessions: float = DEFAULT_POSSESSIONS):
        if possessions <= 0:
            raise ValidationError("possessions must be positive")
        self.possessions = possessions

    def estimate(self, home_stats: Optional[Mapping] = None, away_stats: Optional[Mapping] = None) -> float:
        return self.possessions


class ScoreBasedPossessionEstimator:
    """
    Estimate possessions from points scored.

    possessions ~= points / points_per_possession, averaged over both teams.
    Only as good as the league-average efficiency it assumes.
    """

    def __init__(self, points_per_possession: float = 1.0, fallback: float = DEFAULT_POSSESSIONS):
        if points_per_possession <= 0:
            raise ValidationError("points_per_possession must be positive")
        self.points_per_possession = points_per_possession
        self.fallback = fallback

    def estimate(self, home_stats: Optional[Mapping] = None, away_stats: Optional[Mapping] = None) -> float:
        points = [
            float(stats["points"])
            for stats in (home_stats, away_stats)
            if stats and stats.get("points") is not None
        ]
        if not points or sum(points) <= 0:
            return self.fallback
        return (sum(points) / len(points)) / self.points_per_possession


class BoxScorePossessionEstimator:
    """Standard box-score formula: FGA - ORB + TOV + 0.475 * FTA."""

    FTA_WEIGHT = 0.475

    def __init__(self, fallback: float = DEFAULT_POSSESSIONS):
        self.fallback = fallback

    def _team_possessions(self, stats: Optional[Mapping]) -> Optional[float]:
        if not stats:
            return None
        try:
            fga = float(stats["fga"])
            fta = float(stats["fta"])
            orb = float(stats.get("offensive_rebounds", 0.0))
            tov = float(stats.get("turnovers", 0.0))
        except (KeyError, TypeError, ValueError):
            return None
        value = fga - orb + tov + self.FTA_WEIGHT * fta
        return value if value > 0 else None

    def estimate(self, home_stats: Optional[Mapping] = None, away_stats: Optional[Mapping] = None) -> float:
        values = [
            v for v in (self._team_possessions(home_stats), self._team_possessions(away_stats))
            if v is not None
        ]
        if not values:
            return self.fallback
        return sum(values) / len(values)


ESTIMATORS = {
    "constant": ConstantPossessionEstimator,
    "score": ScoreBasedPossessionEstimator,
    "box-score": BoxScorePossessionEstimator,
}


def get_estimator(name: str, possessions: float = DEFAULT_POSSESSIONS) -> PossessionEstimator:
    """Build an estimator by name; ``possessions`` is the constant value or the fallback."""
    if name not in ESTIMATORS:
        raise ValidationError(f"Unknown possession estimator {name!r}; choose from {sorted(ESTIMATORS)}")
    if name == "constant":
        return ConstantPossessionEstimator(possessions)
    return ESTIMATORS[name](fallback=possessions)
