"""The trained model set that travels together: VAE, predictor and trainer."""

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from ..errors import ValidationError
from .feedback import FeedbackTrainer
from .transition_nn import TransitionPredictor
from .vae import VariationalAutoencoder


@dataclass
class ModelBundle:
    vae: VariationalAutoencoder
    predictor: TransitionPredictor
    trainer: FeedbackTrainer
    schema_version: str = "v1"

    @classmethod
    def build(cls, config, rng: Optional[np.random.Generator] = None, schema_version: str = "v1") -> "ModelBundle":
        """Fresh, untrained models sized from a ForecasterConfig."""
        rng = rng if rng is not None else np.random.default_rng(config.random_seed)
        vae = VariationalAutoencoder.from_config(config, rng=rng)
        predictor = TransitionPredictor.from_config(config, rng=rng)
        trainer = FeedbackTrainer.from_config(config, vae, predictor)
        return cls(vae=vae, predictor=predictor, trainer=trainer, schema_version=schema_version)

    def to_dict(self) -> Dict:
        return {
            "schema_version": self.schema_version,
            "vae": self.vae.to_dict(),
            "predictor": self.predictor.to_dict(),
            "trainer": self.trainer.state_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict, rng: Optional[np.random.Generator] = None) -> "ModelBundle":
        vae = VariationalAutoencoder.from_dict(data["vae"], rng=rng)
        predictor = TransitionPredictor.from_dict(data["predictor"])
        if vae.latent_dim != predictor.latent_dim:
            raise ValidationError("Stored VAE and predictor disagree on latent_dim")
        trainer = FeedbackTrainer(vae, predictor)
        trainer.load_state_dict(data["trainer"])
        return cls(
            vae=vae,
            predictor=predictor,
            trainer=trainer,
            schema_version=data.get("schema_version", "v1"),
        )
