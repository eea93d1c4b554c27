"""Team strength forecasting: latent team states, transition prediction and game simulation."""

from .config import ForecasterConfig
from .errors import (
    ForecasterError,
    GameNotFoundError,
    IncompleteDataError,
    TransientFetchError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "ForecasterConfig",
    "ForecasterError",
    "GameNotFoundError",
    "IncompleteDataError",
    "TransientFetchError",
    "ValidationError",
]
