"""Observed transition probabilities from play-by-play or box-score data."""

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from ..errors import IncompleteDataError
from ..models.game import CompletedGame, Play
from ..models.transition import TransitionProbabilities

logger = logging.getLogger(__name__)

TWO_POINT_SHOT_TYPES = {"LAYUP", "JUMPER", "DUNK", "TIPIN", "HOOK"}


@dataclass
class PossessionCounts:
    two_pt_make: int = 0
    two_pt_miss: int = 0
    three_pt_make: int = 0
    three_pt_miss: int = 0
    ft_make: int = 0
    ft_miss: int = 0
    offensive_rebound: int = 0
    turnover: int = 0
    defensive_rebound: int = 0

    @property
    def total(self) -> int:
        # Defensive rebounds end the other team's possession, not this one
        return (
            self.two_pt_make + self.two_pt_miss + self.three_pt_make + self.three_pt_miss
            + self.ft_make + self.ft_miss + self.offensive_rebound + self.turnover
        )

    def to_probabilities(self) -> TransitionProbabilities:
        total = self.total
        if total == 0:
            return TransitionProbabilities()
        return TransitionProbabilities(
            two_pt_make=self.two_pt_make / total,
            two_pt_miss=self.two_pt_miss / total,
            three_pt_make=self.three_pt_make / total,
            three_pt_miss=self.three_pt_miss / total,
            ft_make=self.ft_make / total,
            ft_miss=self.ft_miss / total,
            offensive_rebound=self.offensive_rebound / total,
            turnover=self.turnover / total,
        )


def count_possession_outcomes(plays: Iterable[Play], side: str) -> PossessionCounts:
    """Tally one side's possession-ending events."""
    counts = PossessionCounts()
    for play in plays:
        if play.side != side:
            continue
        action, kind = play.action, play.type
        if action in ("GOOD", "MISS"):
            made = action == "GOOD"
            if kind == "3PTR":
                if made:
                    counts.three_pt_make += 1
                else:
                    counts.three_pt_miss += 1
            elif kind == "FT":
                if made:
                    counts.ft_make += 1
                else:
                    counts.ft_miss += 1
            elif kind in TWO_POINT_SHOT_TYPES:
                if made:
                    counts.two_pt_make += 1
                else:
                    counts.two_pt_miss += 1
        elif action == "REBOUND":
            if kind == "OFF":
                counts.offensive_rebound += 1
            elif kind == "DEF":
                counts.defensive_rebound += 1
        elif action == "TURNOVER":
            counts.turnover += 1
    return counts


def counts_from_box_score(stats: Mapping) -> PossessionCounts:
    """Approximate outcome counts from box-score totals."""

    def get(name: str) -> int:
        try:
            return max(0, int(round(float(stats.get(name) or 0))))
        except (TypeError, ValueError):
            return 0

    fgm, fga = get("fgm"), get("fga")
    fg3m, fg3a = get("fg3m"), get("fg3a")
    ftm, fta = get("ftm"), get("fta")
    return PossessionCounts(
        two_pt_make=max(fgm - fg3m, 0),
        two_pt_miss=max((fga - fg3a) - (fgm - fg3m), 0),
        three_pt_make=fg3m,
        three_pt_miss=max(fg3a - fg3m, 0),
        ft_make=ftm,
        ft_miss=max(fta - ftm, 0),
        offensive_rebound=get("offensive_rebounds"),
        turnover=get("turnovers"),
        defensive_rebound=get("defensive_rebounds"),
    )


def observed_transitions(game: CompletedGame) -> Mapping[str, TransitionProbabilities]:
    """
    Empirical transition probabilities for both sides of a completed game.

    Uses play-by-play when it has events for a side, otherwise falls back to
    that side's box score.

    Raises:
        IncompleteDataError: A side has no countable events at all
    """
    result = {}
    for side, line in (("home", game.home), ("away", game.away)):
        counts = count_possession_outcomes(game.plays, side)
        if counts.total == 0:
            counts = counts_from_box_score(line.stats)
            if counts.total:
                logger.debug("Game %s: using box score for %s transitions", game.game_id, side)
        if counts.total == 0:
            raise IncompleteDataError(f"Game {game.game_id} has no possession events for {side}")
        result[side] = counts.to_probabilities()
    return result
