"""Tests for the feedback-coupled trainer."""

import numpy as np
import pytest

from strength_forecaster.config import ForecasterConfig
from strength_forecaster.errors import ValidationError
from strength_forecaster.ml.bundle import ModelBundle
from strength_forecaster.ml.feedback import FeedbackTrainer, TrainingExample, TrainingState
from strength_forecaster.ml.transition_nn import TransitionPredictor
from strength_forecaster.ml.vae import VariationalAutoencoder

INPUT_DIM = 12
LATENT_DIM = 3
CONTEXT_DIM = 2


def _trainer(seed=0, **kwargs):
    rng = np.random.default_rng(seed)
    vae = VariationalAutoencoder(INPUT_DIM, LATENT_DIM, hidden_dims=(8,), learning_rate=0.01, rng=rng)
    predictor = TransitionPredictor(LATENT_DIM, CONTEXT_DIM, hidden_dims=(8,), learning_rate=0.01, rng=rng)
    return FeedbackTrainer(vae, predictor, **kwargs)


def _game(rng):
    features = rng.random(INPUT_DIM)
    actual = rng.dirichlet(np.ones(8))
    return features, actual


class TestAlphaSchedule:
    def test_alpha_decays_monotonically_to_floor(self):
        trainer = _trainer(initial_alpha=0.1, alpha_decay_rate=0.5, min_alpha=0.01)
        rng = np.random.default_rng(1)
        alphas = []
        for _ in range(10):
            trainer.train_on_game(*_game(rng))
            alphas.append(trainer.alpha)
        assert all(b <= a for a, b in zip(alphas, alphas[1:]))
        assert alphas[-1] == pytest.approx(0.01)
        assert min(alphas) >= 0.01

    def test_vae_coefficient_follows_alpha(self):
        trainer = _trainer(initial_alpha=0.2, alpha_decay_rate=0.9)
        trainer.train_on_game(*_game(np.random.default_rng(2)))
        assert trainer.vae.feedback_alpha == pytest.approx(trainer.alpha)
        assert trainer.alpha == pytest.approx(0.18)

    def test_no_feedback_at_floor(self):
        # A zero threshold makes every game a feedback candidate
        trainer = _trainer(feedback_threshold=0.0, initial_alpha=0.001, min_alpha=0.001)
        rng = np.random.default_rng(3)
        for _ in range(5):
            result = trainer.train_on_game(*_game(rng))
            assert not result.feedback_triggered
        assert trainer.state.feedback_triggers == 0

    def test_feedback_fires_above_threshold(self):
        trainer = _trainer(feedback_threshold=0.0, initial_alpha=0.1, min_alpha=0.001)
        result = trainer.train_on_game(*_game(np.random.default_rng(4)))
        assert result.feedback_triggered
        assert result.alpha == pytest.approx(0.1)
        assert result.vae_details.alpha == pytest.approx(0.1)
        assert trainer.state.feedback_triggers == 1

    def test_no_feedback_below_threshold(self):
        trainer = _trainer(feedback_threshold=1e9)
        result = trainer.train_on_game(*_game(np.random.default_rng(5)))
        assert not result.feedback_triggered
        assert result.vae_details.alpha == 0.0


class TestHistory:
    def test_history_is_bounded(self):
        trainer = _trainer(history_limit=5)
        rng = np.random.default_rng(6)
        for _ in range(12):
            trainer.train_on_game(*_game(rng))
        assert trainer.state.iteration == 12
        assert len(trainer.state.nn_loss_history) == 5
        assert len(trainer.state.alpha_history) == 5

    def test_explicit_latents_and_context(self):
        trainer = _trainer()
        rng = np.random.default_rng(7)
        features, actual = _game(rng)
        team = (np.zeros(LATENT_DIM), np.ones(LATENT_DIM))
        opponent = (np.ones(LATENT_DIM), np.ones(LATENT_DIM))
        result = trainer.train_on_game(features, actual, team=team, opponent=opponent, context=np.ones(CONTEXT_DIM))
        assert result.predicted.sum() == pytest.approx(1.0)
        np.testing.assert_allclose(result.actual, actual)

    def test_mismatched_latent_dims_rejected(self):
        rng = np.random.default_rng(0)
        vae = VariationalAutoencoder(INPUT_DIM, 3, hidden_dims=(8,), rng=rng)
        predictor = TransitionPredictor(4, CONTEXT_DIM, hidden_dims=(8,), rng=rng)
        with pytest.raises(ValidationError):
            FeedbackTrainer(vae, predictor)


class TestConvergenceAndStability:
    def test_not_converged_with_short_history(self):
        trainer = _trainer(stability_window=10)
        trainer.train_on_game(*_game(np.random.default_rng(8)))
        assert not trainer.check_convergence()

    def test_converged_when_losses_flat(self):
        trainer = _trainer(stability_window=4, convergence_threshold=1e-6)
        for _ in range(4):
            trainer.state.nn_loss_history.append(0.5)
            trainer.state.vae_loss_history.append(0.2)
        assert trainer.check_convergence()

    def test_insufficient_history(self):
        report = _trainer(stability_window=10).monitor_stability()
        assert not report.stable
        assert report.reason == "insufficient history"

    def test_frequent_feedback_is_unstable(self):
        trainer = _trainer(stability_window=4, feedback_threshold=0.0, initial_alpha=0.5, alpha_decay_rate=0.99)
        rng = np.random.default_rng(9)
        for _ in range(4):
            trainer.train_on_game(*_game(rng))
        report = trainer.monitor_stability()
        assert not report.stable
        assert report.reason == "feedback firing too often"
        assert report.feedback_rate == 1.0

    def test_quiet_decaying_trainer_is_stable(self):
        trainer = _trainer(stability_window=4, feedback_threshold=1e9)
        rng = np.random.default_rng(10)
        for _ in range(6):
            trainer.train_on_game(*_game(rng))
        report = trainer.monitor_stability()
        assert report.stable
        assert report.alpha_decay > 0

    def test_increasing_alpha_is_unstable(self):
        trainer = _trainer(stability_window=3)
        trainer.state.feedback_history.extend([False, False, False])
        trainer.state.alpha_history.extend([0.01, 0.02, 0.03])
        report = trainer.monitor_stability()
        assert not report.stable
        assert report.reason == "alpha increased"


class TestBatchAndPersistence:
    def test_batch_summary(self):
        trainer = _trainer()
        rng = np.random.default_rng(11)
        examples = [TrainingExample(*_game(rng)) for _ in range(5)]
        summary = trainer.train_on_batch(examples)
        assert summary.games == 5
        assert len(summary.results) == 5
        assert summary.min_nn_loss <= summary.mean_nn_loss <= summary.max_nn_loss
        assert summary.final_alpha == trainer.alpha

    def test_empty_batch_rejected(self):
        with pytest.raises(ValidationError):
            _trainer().train_on_batch([])

    def test_reset_restores_initial_alpha(self):
        trainer = _trainer(initial_alpha=0.1)
        trainer.train_on_game(*_game(np.random.default_rng(12)))
        trainer.reset()
        assert trainer.alpha == 0.1
        assert trainer.state.iteration == 0

    def test_state_round_trip(self):
        trainer = _trainer(history_limit=50)
        rng = np.random.default_rng(13)
        for _ in range(3):
            trainer.train_on_game(*_game(rng))
        restored = TrainingState.from_dict(trainer.state.to_dict())
        assert restored.alpha == trainer.state.alpha
        assert restored.iteration == 3
        assert list(restored.nn_loss_history) == list(trainer.state.nn_loss_history)
        assert restored.nn_loss_history.maxlen == 50

    def test_bundle_round_trip(self):
        config = ForecasterConfig(input_dim=INPUT_DIM, latent_dim=LATENT_DIM, random_seed=3)
        bundle = ModelBundle.build(config)
        bundle.trainer.train_on_game(*_game(np.random.default_rng(14)))
        restored = ModelBundle.from_dict(bundle.to_dict())

        assert restored.trainer.alpha == pytest.approx(bundle.trainer.alpha)
        assert restored.trainer.state.iteration == 1
        x = np.full(INPUT_DIM, 0.5)
        np.testing.assert_allclose(bundle.vae.encode(x)[0], restored.vae.encode(x)[0])
