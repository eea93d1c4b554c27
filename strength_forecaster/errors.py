"""Error taxonomy shared across the forecaster."""


class ForecasterError(Exception):
    """Base class for all forecaster errors."""


class ValidationError(ForecasterError, ValueError):
    """Malformed input: wrong vector length, zero iterations, non-positive sigma, etc."""


class IncompleteDataError(ForecasterError):
    """A game is not finished yet, or there is not enough history to build features."""


class TransientFetchError(ForecasterError):
    """Upstream data or persistence is temporarily unavailable; safe to retry."""


class GameNotFoundError(ForecasterError, LookupError):
    """The requested game does not exist at the source."""
