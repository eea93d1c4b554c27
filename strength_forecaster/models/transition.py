"""Per-possession transition probabilities."""

from dataclasses import dataclass
from typing import Dict, Iterable, List

import numpy as np

from ..errors import ValidationError

TRANSITION_LABELS: List[str] = [
    "two_pt_make",
    "two_pt_miss",
    "three_pt_make",
    "three_pt_miss",
    "ft_make",
    "ft_miss",
    "offensive_rebound",
    "turnover",
]
NUM_TRANSITIONS = len(TRANSITION_LABELS)


@dataclass(frozen=True)
class TransitionProbabilities:
    """Probability of each possession outcome for one team in one matchup."""

    two_pt_make: float = 0.0
    two_pt_miss: float = 0.0
    three_pt_make: float = 0.0
    three_pt_miss: float = 0.0
    ft_make: float = 0.0
    ft_miss: float = 0.0
    offensive_rebound: float = 0.0
    turnover: float = 0.0

    @classmethod
    def from_array(cls, values: Iterable[float]) -> "TransitionProbabilities":
        arr = np.asarray(list(values), dtype=float)
        if arr.shape != (NUM_TRANSITIONS,):
            raise ValidationError(
                f"Transition vector must have {NUM_TRANSITIONS} entries, got {arr.size}"
            )
        return cls(**{label: float(v) for label, v in zip(TRANSITION_LABELS, arr)})

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "TransitionProbabilities":
        unknown = set(data) - set(TRANSITION_LABELS)
        if unknown:
            raise ValidationError(f"Unknown transition labels: {sorted(unknown)}")
        return cls(**{label: float(data.get(label, 0.0)) for label in TRANSITION_LABELS})

    def as_array(self) -> np.ndarray:
        return np.array([getattr(self, label) for label in TRANSITION_LABELS], dtype=float)

    def to_dict(self) -> Dict[str, float]:
        return {label: getattr(self, label) for label in TRANSITION_LABELS}

    def validate(self) -> None:
        """Reject vectors that cannot be used as a categorical distribution."""
        arr = self.as_array()
        if not np.all(np.isfinite(arr)):
            raise ValidationError("Transition probabilities must be finite")
        if np.any(arr < 0):
            raise ValidationError("Transition probabilities must be non-negative")
        if not np.any(arr > 0):
            raise ValidationError("Transition probabilities must not all be zero")

    def normalized(self) -> "TransitionProbabilities":
        self.validate()
        arr = self.as_array()
        return TransitionProbabilities.from_array(arr / arr.sum())

    @property
    def scoring_probability(self) -> float:
        """Share of mass on outcomes that put points on the board."""
        arr = self.normalized().as_array()
        return float(arr[0] + arr[2] + arr[4])

    @property
    def free_throw_pct(self) -> float:
        attempts = self.ft_make + self.ft_miss
        return self.ft_make / attempts if attempts > 0 else 0.0
