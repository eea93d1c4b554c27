from .cache import ModelCache
from .post_game import (
    GameUpdateResult,
    OrchestratorConfig,
    PostGameUpdateOrchestrator,
    PredictionError,
    Stage,
    UpdateOutcome,
    backoff_delay,
    should_update,
)

__all__ = [
    "GameUpdateResult",
    "ModelCache",
    "OrchestratorConfig",
    "PostGameUpdateOrchestrator",
    "PredictionError",
    "Stage",
    "UpdateOutcome",
    "backoff_delay",
    "should_update",
]
