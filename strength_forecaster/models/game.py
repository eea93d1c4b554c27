"""Completed-game records and game context."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np

CONTEXT_DIM = 10

# Scale factors used to squash raw context values into [0, 1].
_MAX_REST_DAYS = 7.0
_MAX_TRAVEL_MILES = 3000.0


@dataclass
class GameContext:
    """Situational signals for a matchup.

    Missing values encode as 0, matching how the networks were trained when
    these signals were unavailable.
    """

    is_neutral_site: bool = False
    is_postseason: bool = False
    is_conference_game: Optional[bool] = None
    rest_days: Optional[float] = None
    travel_distance: Optional[float] = None
    is_rivalry: bool = False
    is_televised: bool = False
    game_date: Optional[datetime] = None
    season_progress: Optional[float] = None

    def to_vector(self) -> np.ndarray:
        hour = self.game_date.hour / 24.0 if self.game_date else 0.0
        weekday = self.game_date.weekday() / 6.0 if self.game_date else 0.0
        return np.array(
            [
                1.0 if self.is_neutral_site else 0.0,
                1.0 if self.is_postseason else 0.0,
                min(self.rest_days / _MAX_REST_DAYS, 1.0) if self.rest_days is not None else 0.0,
                min(self.travel_distance / _MAX_TRAVEL_MILES, 1.0) if self.travel_distance is not None else 0.0,
                1.0 if self.is_conference_game else 0.0,
                1.0 if self.is_rivalry else 0.0,
                1.0 if self.is_televised else 0.0,
                hour,
                weekday,
                float(np.clip(self.season_progress, 0.0, 1.0)) if self.season_progress is not None else 0.0,
            ],
            dtype=float,
        )


@dataclass
class Play:
    """One play-by-play event."""

    side: str  # "home" or "away"
    action: str  # GOOD, MISS, REBOUND, TURNOVER, ...
    type: str = ""  # 3PTR, FT, LAYUP, OFF, DEF, ...
    period: int = 1
    clock: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Play":
        return cls(
            side=str(data["side"]).lower(),
            action=str(data.get("action", "")).upper(),
            type=str(data.get("type", "")).upper(),
            period=int(data.get("period", 1)),
            clock=data.get("clock"),
        )

    def to_dict(self) -> dict:
        return {
            "side": self.side,
            "action": self.action,
            "type": self.type,
            "period": self.period,
            "clock": self.clock,
        }


@dataclass
class TeamGameLine:
    """One team's line in a completed game."""

    team_id: str
    score: Optional[float] = None
    stats: Dict[str, float] = field(default_factory=dict)
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TeamGameLine":
        return cls(
            team_id=str(data["team_id"]),
            score=data.get("score"),
            stats=dict(data.get("stats", {})),
            name=data.get("name"),
        )

    def to_dict(self) -> dict:
        return {"team_id": self.team_id, "score": self.score, "stats": self.stats, "name": self.name}


@dataclass
class CompletedGame:
    """A game as delivered by a game source."""

    game_id: str
    home: TeamGameLine
    away: TeamGameLine
    plays: List[Play] = field(default_factory=list)
    game_date: Optional[datetime] = None
    is_neutral_site: bool = False
    is_postseason: bool = False
    is_conference_game: Optional[bool] = None
    status: str = "final"

    @property
    def has_valid_scores(self) -> bool:
        scores = (self.home.score, self.away.score)
        if any(isinstance(s, bool) or not isinstance(s, (int, float)) for s in scores):
            return False
        if any(np.isnan(s) or s < 0 for s in scores):
            return False
        return not all(s == 0 for s in scores)

    @property
    def is_complete(self) -> bool:
        return self.has_valid_scores and len(self.plays) > 0

    def context(self) -> GameContext:
        return GameContext(
            is_neutral_site=self.is_neutral_site,
            is_postseason=self.is_postseason,
            is_conference_game=self.is_conference_game,
            game_date=self.game_date,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "CompletedGame":
        game_date = data.get("game_date")
        return cls(
            game_id=str(data["game_id"]),
            home=TeamGameLine.from_dict(data["home"]),
            away=TeamGameLine.from_dict(data["away"]),
            plays=[Play.from_dict(p) for p in data.get("plays", [])],
            game_date=datetime.fromisoformat(game_date) if game_date else None,
            is_neutral_site=bool(data.get("is_neutral_site", False)),
            is_postseason=bool(data.get("is_postseason", False)),
            is_conference_game=data.get("is_conference_game"),
            status=str(data.get("status", "final")),
        )

    def to_dict(self) -> dict:
        return {
            "game_id": self.game_id,
            "home": self.home.to_dict(),
            "away": self.away.to_dict(),
            "plays": [p.to_dict() for p in self.plays],
            "game_date": self.game_date.isoformat() if self.game_date else None,
            "is_neutral_site": self.is_neutral_site,
            "is_postseason": self.is_postseason,
            "is_conference_game": self.is_conference_game,
            "status": self.status,
        }
