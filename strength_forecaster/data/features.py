"""
Versioned feature schema: raw box-score statistics -> normalized vector.

The vector layout is an explicit ordered list of named fields, each with a
default for missing values and min/max bounds for scaling into [0, 1].
Changing the list requires a new schema version so stored models never
see a silently reordered input.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..errors import IncompleteDataError, ValidationError
from ..simulation.possessions import BoxScorePossessionEstimator


@dataclass(frozen=True)
class FeatureField:
    name: str
    minimum: float = 0.0
    maximum: float = 1.0
    default: float = 0.0

    def normalize(self, value: float) -> float:
        span = self.maximum - self.minimum
        if span <= 0:
            return 0.0
        return min(1.0, max(0.0, (value - self.minimum) / span))


def _fields(rows: Sequence[Tuple[str, float, float]]) -> List[FeatureField]:
    return [FeatureField(name, lo, hi) for name, lo, hi in rows]


_UNIT = (0.0, 1.0)

_V1_FIELDS: List[FeatureField] = (
    # Basic shooting (9)
    _fields([
        ("fgm", 0, 50), ("fga", 0, 100), ("fg_pct", 0, 100),
        ("fg3m", 0, 25), ("fg3a", 0, 50), ("fg3_pct", 0, 100),
        ("ftm", 0, 40), ("fta", 0, 50), ("ft_pct", 0, 100),
    ])
    # Rebounding (3)
    + _fields([("rebounds", 0, 60), ("offensive_rebounds", 0, 30), ("defensive_rebounds", 0, 50)])
    # Other box score (7)
    + _fields([
        ("assists", 0, 40), ("turnovers", 0, 30), ("steals", 0, 20), ("blocks", 0, 15),
        ("personal_fouls", 0, 30), ("technical_fouls", 0, 5), ("points", 0, 150),
    ])
    # Advanced (10)
    + _fields([
        ("points_in_paint", 0, 80), ("fast_break_points", 0, 40), ("second_chance_points", 0, 30),
        ("points_off_turnovers", 0, 40), ("bench_points", 0, 80), ("possession_count", 50, 120),
        ("ties", 0, 20), ("leads", 0, 30), ("largest_lead", 0, 40), ("biggest_run", 0, 30),
    ])
    # Derived efficiency (3)
    + _fields([("effective_fg_pct", 0, 100), ("true_shooting_pct", 0, 100), ("turnover_rate", 0, 50)])
    # Player-level aggregates (20)
    + _fields([
        ("avg_player_minutes", 0, 40), ("avg_player_plus_minus", -30, 30),
        ("avg_player_efficiency", -10, 40), ("top_player_minutes", 0, 40),
        ("top_player_points", 0, 50), ("top_player_rebounds", 0, 25),
        ("top_player_assists", 0, 15), ("players_used", 0, 15),
        ("starter_minutes", 0, 200), ("bench_minutes", 0, 200),
        ("bench_contribution", *_UNIT), ("starter_efficiency", -10, 40),
        ("bench_efficiency", -10, 40), ("depth_score", *_UNIT),
        ("minute_distribution", *_UNIT), ("top_player_usage", *_UNIT),
        ("balance_score", *_UNIT), ("clutch_performance", *_UNIT),
        ("experience_level", *_UNIT), ("versatility_score", *_UNIT),
    ])
    # Lineup (15)
    + _fields([
        ("starting_lineup_minutes", 0, 200), ("starting_lineup_points", 0, 120),
        ("starting_lineup_efficiency", -50, 50), ("lineup_bench_contribution", *_UNIT),
        ("lineup_bench_minutes", 0, 200), ("lineup_bench_points", 0, 80),
        ("rotation_depth", 0, 15), ("minutes_distribution", *_UNIT),
        ("lineup_balance", *_UNIT), ("substitution_rate", *_UNIT),
        ("depth_utilization", *_UNIT), ("starter_dominance", *_UNIT),
        ("lineup_versatility", *_UNIT), ("bench_impact", *_UNIT),
        ("rotation_efficiency", *_UNIT),
    ])
    # Game context (8)
    + _fields([
        ("is_neutral_site", *_UNIT), ("is_postseason", *_UNIT), ("game_length", 0, 60),
        ("pace_of_play", 50, 120), ("competitive_balance", *_UNIT), ("game_flow", *_UNIT),
        ("intensity_level", *_UNIT), ("game_context", *_UNIT),
    ])
    # Shooting distribution (8)
    + _fields([
        ("two_point_attempt_rate", *_UNIT), ("three_point_attempt_rate", *_UNIT),
        ("free_throw_rate", *_UNIT), ("two_point_accuracy", *_UNIT),
        ("three_point_accuracy", *_UNIT), ("free_throw_accuracy", *_UNIT),
        ("shot_selection", *_UNIT), ("shooting_efficiency", *_UNIT),
    ])
    # Defense (5)
    + _fields([
        ("opponent_fg_pct_allowed", 0, 100), ("opponent_fg3_pct_allowed", 0, 100),
        ("defensive_rebounding_pct", *_UNIT), ("points_in_paint_allowed", *_UNIT),
        ("defensive_efficiency", *_UNIT),
    ])
)


def _ratio(num: float, den: float, scale: float = 1.0) -> Optional[float]:
    return scale * num / den if den > 0 else None


def derive_features(raw: Mapping) -> Dict[str, float]:
    """
    Fill shooting percentages and rate stats that can be computed from counts.

    Values already present in ``raw`` are never overwritten.
    """
    stats = dict(raw)

    def get(name: str) -> float:
        value = stats.get(name)
        try:
            value = float(value)
        except (TypeError, ValueError):
            return 0.0
        return value if math.isfinite(value) else 0.0

    fgm, fga = get("fgm"), get("fga")
    fg3m, fg3a = get("fg3m"), get("fg3a")
    ftm, fta = get("ftm"), get("fta")
    orb, drb, tov = get("offensive_rebounds"), get("defensive_rebounds"), get("turnovers")
    points = get("points")
    possessions = fga - orb + tov + BoxScorePossessionEstimator.FTA_WEIGHT * fta

    derived = {
        "fg_pct": _ratio(fgm, fga, 100.0),
        "fg3_pct": _ratio(fg3m, fg3a, 100.0),
        "ft_pct": _ratio(ftm, fta, 100.0),
        "rebounds": orb + drb if (orb or drb) else None,
        "effective_fg_pct": _ratio(fgm + 0.5 * fg3m, fga, 100.0),
        "true_shooting_pct": _ratio(points, 2.0 * (fga + 0.44 * fta), 100.0),
        "possession_count": possessions if possessions > 0 else None,
        "turnover_rate": _ratio(tov, possessions, 100.0),
        "two_point_attempt_rate": _ratio(fga - fg3a, fga),
        "three_point_attempt_rate": _ratio(fg3a, fga),
        "free_throw_rate": _ratio(fta, fga),
        "two_point_accuracy": _ratio(fgm - fg3m, fga - fg3a),
        "three_point_accuracy": _ratio(fg3m, fg3a),
        "free_throw_accuracy": _ratio(ftm, fta),
    }
    for name, value in derived.items():
        if value is not None and stats.get(name) is None:
            stats[name] = value
    return stats


class FeatureSchema:
    """
    Ordered, versioned mapping from named statistics to a feature vector.

    Args:
        version: Schema version tag stored alongside trained models
        fields: Ordered field definitions
        derive: Whether to compute derivable stats before normalizing
    """

    def __init__(self, version: str, fields: Sequence[FeatureField], derive: bool = True):
        names = [f.name for f in fields]
        if len(set(names)) != len(names):
            raise ValidationError(f"Schema {version} has duplicate field names")
        self.version = version
        self.fields = list(fields)
        self.derive = derive

    @property
    def dim(self) -> int:
        return len(self.fields)

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def _value(self, field: FeatureField, raw: Mapping) -> float:
        value = raw.get(field.name)
        if value is None:
            return field.default
        if isinstance(value, bool):
            return 1.0 if value else 0.0
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Feature '{field.name}' is not numeric: {value!r}")
        return value if math.isfinite(value) else field.default

    def build(self, raw: Mapping) -> np.ndarray:
        """
        Convert raw statistics into a read-only normalized vector.

        Args:
            raw: Mapping of statistic name to value; unknown keys are ignored

        Returns:
            Array of length ``dim`` with every value in [0, 1]
        """
        stats = derive_features(raw) if self.derive else raw
        vector = np.array([f.normalize(self._value(f, stats)) for f in self.fields], dtype=float)
        vector.setflags(write=False)
        return vector

    def build_from_history(
        self,
        rows: Sequence[Mapping],
        min_games: int = 3,
        window: Optional[int] = None,
    ) -> np.ndarray:
        """
        Average a team's recent game stats and build one profile vector.

        Raises:
            IncompleteDataError: Fewer than ``min_games`` rows are available
        """
        if len(rows) < min_games:
            raise IncompleteDataError(
                f"Need at least {min_games} games to build features, got {len(rows)}"
            )
        frame = pd.DataFrame([derive_features(r) if self.derive else dict(r) for r in rows])
        if window is not None:
            frame = frame.tail(window)
        means = frame.apply(pd.to_numeric, errors="coerce").mean(numeric_only=True)
        averaged = {name: float(v) for name, v in means.items() if pd.notna(v)}
        return FeatureSchema(self.version, self.fields, derive=False).build(averaged)

    def to_dict(self) -> Dict:
        return {
            "version": self.version,
            "fields": [
                {"name": f.name, "min": f.minimum, "max": f.maximum, "default": f.default}
                for f in self.fields
            ],
        }


SCHEMA_V1 = FeatureSchema("v1", _V1_FIELDS)
SCHEMAS = {SCHEMA_V1.version: SCHEMA_V1}


def get_schema(version: str = "v1") -> FeatureSchema:
    try:
        return SCHEMAS[version]
    except KeyError:
        raise ValidationError(f"Unknown feature schema version: {version}")


def validate_feature_vector(vector, expected_dim: int) -> np.ndarray:
    """Check length, finiteness and [0, 1] range before a vector reaches the networks."""
    arr = np.asarray(vector, dtype=float)
    if arr.ndim != 1 or arr.size != expected_dim:
        raise ValidationError(f"Feature vector has {arr.size} values, expected {expected_dim}")
    if not np.all(np.isfinite(arr)):
        raise ValidationError("Feature vector contains NaN or Inf")
    if np.any(arr < 0.0) or np.any(arr > 1.0):
        raise ValidationError("Feature vector values must lie in [0, 1]")
    return arr
