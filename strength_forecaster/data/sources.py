"""Game sources: the boundary that delivers completed games."""

import json
import logging
from typing import Dict, Iterable, List, Protocol

from ..errors import GameNotFoundError, IncompleteDataError, ValidationError
from ..models.game import CompletedGame
from .normalize import normalize_team_id

logger = logging.getLogger(__name__)

FINAL_STATUSES = {"final", "closed", "complete"}


class GameSource(Protocol):
    async def fetch_completed_game(self, game_id: str) -> CompletedGame:
        """
        Return a finished game.

        Raises:
            GameNotFoundError: Unknown game id
            IncompleteDataError: Game exists but is not finished
            TransientFetchError: Upstream temporarily unavailable
        """
        ...


class InMemoryGameSource:
    """Serves games held in a dict keyed by game id."""

    def __init__(self, games: Iterable[CompletedGame] = ()):
        self._games: Dict[str, CompletedGame] = {}
        for game in games:
            self.add(game)

    def add(self, game: CompletedGame) -> None:
        self._games[game.game_id] = game

    def game_ids(self) -> List[str]:
        """Game ids in chronological order (undated games last, by id)."""
        dated = sorted(
            (g for g in self._games.values() if g.game_date is not None),
            key=lambda g: (g.game_date, g.game_id),
        )
        undated = sorted(g.game_id for g in self._games.values() if g.game_date is None)
        return [g.game_id for g in dated] + undated

    async def fetch_completed_game(self, game_id: str) -> CompletedGame:
        game = self._games.get(game_id)
        if game is None:
            raise GameNotFoundError(f"Game {game_id} not found")
        if game.status.lower() not in FINAL_STATUSES:
            raise IncompleteDataError(f"Game {game_id} is not final (status={game.status})")
        return game


def load_games_from_json(file_path: str) -> List[CompletedGame]:
    """
    Load completed games from a JSON file of the form ``{"games": [...]}``.

    Team ids are normalized so differently spelled names share one state.
    """
    with open(file_path, "r") as f:
        payload = json.load(f)
    rows = payload.get("games") if isinstance(payload, dict) else None
    if not isinstance(rows, list):
        raise ValidationError(f"{file_path}: expected an object with a 'games' list")

    games = []
    for idx, row in enumerate(rows):
        try:
            game = CompletedGame.from_dict(row)
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"{file_path}: games[{idx}] is malformed: {exc}") from exc
        game.home.team_id = normalize_team_id(game.home.team_id)
        game.away.team_id = normalize_team_id(game.away.team_id)
        games.append(game)
    logger.info("Loaded %d games from %s", len(games), file_path)
    return games


class JsonGameSource(InMemoryGameSource):
    """Game source backed by a local JSON file."""

    def __init__(self, file_path: str):
        self.file_path = file_path
        super().__init__(load_games_from_json(file_path))
