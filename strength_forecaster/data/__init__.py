from .features import SCHEMA_V1, FeatureField, FeatureSchema, get_schema, validate_feature_vector
from .normalize import normalize_team_id
from .sources import GameSource, InMemoryGameSource, JsonGameSource, load_games_from_json
from .store import (
    InMemoryTeamStatePersistence,
    JsonTeamStatePersistence,
    TeamStatePersistence,
    load_model_bundle,
    save_model_bundle,
)
from .transitions import count_possession_outcomes, observed_transitions

__all__ = [
    "FeatureField",
    "FeatureSchema",
    "GameSource",
    "InMemoryGameSource",
    "InMemoryTeamStatePersistence",
    "JsonGameSource",
    "JsonTeamStatePersistence",
    "SCHEMA_V1",
    "TeamStatePersistence",
    "count_possession_outcomes",
    "get_schema",
    "load_games_from_json",
    "load_model_bundle",
    "normalize_team_id",
    "observed_transitions",
    "save_model_bundle",
]
