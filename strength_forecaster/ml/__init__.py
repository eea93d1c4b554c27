"""Neural components: latent encoder, transition predictor and their trainer."""

from .bundle import ModelBundle
from .feedback import (
    BatchTrainingSummary,
    FeedbackTrainer,
    StabilityReport,
    TrainingExample,
    TrainingResult,
    TrainingState,
)
from .transition_nn import TransitionPredictor
from .vae import VAELoss, VariationalAutoencoder

__all__ = [
    "BatchTrainingSummary",
    "FeedbackTrainer",
    "ModelBundle",
    "StabilityReport",
    "TrainingExample",
    "TrainingResult",
    "TrainingState",
    "TransitionPredictor",
    "VAELoss",
    "VariationalAutoencoder",
]
