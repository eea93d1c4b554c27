"""Persistence for team states and trained models."""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from ..errors import TransientFetchError
from ..ml.bundle import ModelBundle
from ..models.latent import LatentDistribution

logger = logging.getLogger(__name__)


class TeamStatePersistence(Protocol):
    async def load(self, team_id: str) -> Optional[LatentDistribution]:
        ...

    async def save(self, team_id: str, distribution: LatentDistribution) -> None:
        ...


class InMemoryTeamStatePersistence:
    """Keeps serialized copies so later in-place mutation never leaks in."""

    def __init__(self):
        self._rows: Dict[str, Dict] = {}

    async def load(self, team_id: str) -> Optional[LatentDistribution]:
        row = self._rows.get(team_id)
        return LatentDistribution.from_dict(row) if row is not None else None

    async def save(self, team_id: str, distribution: LatentDistribution) -> None:
        self._rows[team_id] = distribution.to_dict()

    def team_ids(self) -> List[str]:
        return sorted(self._rows)


def _write_json_atomic(path: Path, payload: Dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w") as f:
        json.dump(payload, f, indent=2)
    os.replace(tmp, path)


class JsonTeamStatePersistence:
    """One JSON file per team under ``directory``."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, team_id: str) -> Path:
        return self.directory / f"{team_id}.json"

    def _read(self, team_id: str) -> Optional[LatentDistribution]:
        path = self._path(team_id)
        if not path.exists():
            return None
        try:
            with open(path, "r") as f:
                return LatentDistribution.from_dict(json.load(f))
        except OSError as exc:
            raise TransientFetchError(f"Could not read {path}: {exc}") from exc

    def _write(self, team_id: str, distribution: LatentDistribution) -> None:
        try:
            _write_json_atomic(self._path(team_id), distribution.to_dict())
        except OSError as exc:
            raise TransientFetchError(f"Could not write {self._path(team_id)}: {exc}") from exc

    async def load(self, team_id: str) -> Optional[LatentDistribution]:
        return await asyncio.to_thread(self._read, team_id)

    async def save(self, team_id: str, distribution: LatentDistribution) -> None:
        await asyncio.to_thread(self._write, team_id, distribution)

    def team_ids(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))

    def load_all(self) -> List[LatentDistribution]:
        return [d for d in (self._read(t) for t in self.team_ids()) if d is not None]


def save_model_bundle(bundle: ModelBundle, file_path: str) -> None:
    _write_json_atomic(Path(file_path), bundle.to_dict())
    logger.info("Saved models to %s", file_path)


def load_model_bundle(file_path: str) -> ModelBundle:
    with open(file_path, "r") as f:
        bundle = ModelBundle.from_dict(json.load(f))
    logger.info("Loaded models from %s", file_path)
    return bundle
