"""Tests for configuration, persistence and the command-line interface."""

import asyncio
import json

import numpy as np
import pytest

from strength_forecaster.config import ForecasterConfig
from strength_forecaster.data.store import JsonTeamStatePersistence, load_model_bundle, save_model_bundle
from strength_forecaster.errors import ValidationError
from strength_forecaster.main import main
from strength_forecaster.ml.bundle import ModelBundle
from strength_forecaster.models.latent import LatentDistribution
from strength_forecaster.pipeline.cache import ModelCache


class TestForecasterConfig:
    def test_defaults(self):
        config = ForecasterConfig()
        assert config.input_dim == 88
        assert config.latent_dim == 16
        assert config.iterations == 10000
        assert config.max_update_attempts == 3

    def test_camel_case_keys(self):
        config = ForecasterConfig.from_dict({"latentDim": 8, "feedbackThreshold": 0.7, "randomSeed": 3})
        assert config.latent_dim == 8
        assert config.feedback_threshold == 0.7
        assert config.random_seed == 3

    def test_snake_case_keys(self):
        assert ForecasterConfig.from_dict({"game_timeout": 5.0}).game_timeout == 5.0

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            ForecasterConfig.from_dict({"latentDims": 8})

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"iterations": 0},
            {"max_update_attempts": 0},
            {"latent_dim": 0},
            {"alpha_decay_rate": 1.5},
            {"min_uncertainty": 2.0},
            {"min_alpha": 0.5},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValidationError):
            ForecasterConfig(**kwargs)

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        ForecasterConfig(latent_dim=4, random_seed=9).save(str(path))
        loaded = ForecasterConfig.from_json(str(path))
        assert loaded == ForecasterConfig(latent_dim=4, random_seed=9)


class TestPersistence:
    def test_team_state_round_trip(self, tmp_path):
        persistence = JsonTeamStatePersistence(str(tmp_path / "states"))
        dist = LatentDistribution("duke", np.array([0.1, -0.2]), np.array([0.5, 0.4]), games_processed=3)

        asyncio.run(persistence.save("duke", dist))
        loaded = asyncio.run(persistence.load("duke"))

        np.testing.assert_array_equal(loaded.mu, dist.mu)
        np.testing.assert_array_equal(loaded.sigma, dist.sigma)
        assert loaded.games_processed == 3
        assert persistence.team_ids() == ["duke"]
        assert [d.team_id for d in persistence.load_all()] == ["duke"]

    def test_missing_team(self, tmp_path):
        persistence = JsonTeamStatePersistence(str(tmp_path / "states"))
        assert asyncio.run(persistence.load("nobody")) is None
        assert persistence.team_ids() == []

    def test_model_bundle_round_trip(self, tmp_path):
        bundle = ModelBundle.build(ForecasterConfig(input_dim=12, latent_dim=3, random_seed=4))
        path = str(tmp_path / "models" / "bundle.json")
        save_model_bundle(bundle, path)
        restored = load_model_bundle(path)

        x = np.full(12, 0.25)
        np.testing.assert_allclose(restored.vae.encode(x)[0], bundle.vae.encode(x)[0])
        assert restored.trainer.alpha == bundle.trainer.alpha

    def test_cache_from_file(self, tmp_path):
        bundle = ModelBundle.build(ForecasterConfig(input_dim=12, latent_dim=3, random_seed=4))
        path = str(tmp_path / "bundle.json")
        save_model_bundle(bundle, path)

        cache = ModelCache.from_file(path)
        loaded = asyncio.run(cache.get())
        assert loaded.vae.input_dim == 12
        assert cache.peek() is loaded
        assert cache.is_warm


def _games_file(tmp_path):
    stats = {"fgm": 27, "fga": 59, "fg3m": 7, "fg3a": 21, "ftm": 15, "fta": 20,
             "offensive_rebounds": 9, "defensive_rebounds": 26, "turnovers": 12, "points": 76}
    plays = [
        {"side": "home", "action": "GOOD", "type": "LAYUP"},
        {"side": "home", "action": "MISS", "type": "3PTR"},
        {"side": "away", "action": "GOOD", "type": "JUMPER"},
        {"side": "away", "action": "TURNOVER"},
    ]
    payload = {
        "games": [
            {
                "game_id": "g1",
                "game_date": "2025-01-11T18:00:00",
                "status": "final",
                "home": {"team_id": "Duke", "score": 76, "stats": stats},
                "away": {"team_id": "UNC", "score": 70, "stats": stats},
                "plays": plays,
            }
        ]
    }
    path = tmp_path / "games.json"
    path.write_text(json.dumps(payload))
    return str(path)


class TestCommandLine:
    def test_sample_config(self, tmp_path, capsys):
        path = str(tmp_path / "config.json")
        assert main(["sample-config", "-o", path]) == 0
        assert ForecasterConfig.from_json(path) == ForecasterConfig()
        assert "Sample configuration written" in capsys.readouterr().out

    def test_teams_empty(self, tmp_path, capsys):
        assert main(["teams", "--state-dir", str(tmp_path / "none")]) == 0
        assert "No team states found" in capsys.readouterr().out

    def test_bad_config_reports_error(self, tmp_path, capsys):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"bogus": 1}))
        assert main(["--config", str(path), "teams", "--state-dir", str(tmp_path)]) == 1
        assert "Error:" in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1

    def test_simulate_possession_model(self, tmp_path):
        stats_path = tmp_path / "team_stats.json"
        stats_path.write_text(json.dumps({"duke": {"points": 100}, "unc": {"points": 100}}))
        common = ["simulate", "--home", "duke", "--away", "unc", "--models", str(tmp_path / "none.json"),
                  "--state-dir", str(tmp_path / "states"), "--iterations", "2000", "--seed", "3"]

        slow, fast = tmp_path / "slow.json", tmp_path / "fast.json"
        assert main(common + ["--possessions", "50", "-o", str(slow)]) == 0
        assert main(common + ["--possession-model", "score", "--team-stats", str(stats_path), "-o", str(fast)]) == 0

        def total(path):
            data = json.loads(path.read_text())
            return data["average_home_score"] + data["average_away_score"]

        assert total(fast) > 1.5 * total(slow)

    def test_process_then_simulate(self, tmp_path, capsys):
        config_path = str(tmp_path / "config.json")
        ForecasterConfig(random_seed=0, feedback_threshold=-1.0).save(config_path)
        games = _games_file(tmp_path)
        models = str(tmp_path / "bundle.json")
        states = str(tmp_path / "states")
        report = tmp_path / "report.json"

        code = main(["--config", config_path, "process", "--games", games, "--models", models,
                     "--state-dir", states, "--report", str(report)])
        assert code == 0
        data = json.loads(report.read_text())
        assert data["stats"]["processed"] == 1
        assert data["results"][0]["outcome"] == "updated"
        assert JsonTeamStatePersistence(states).team_ids() == ["duke", "unc"]

        assert main(["teams", "--state-dir", states]) == 0
        assert "duke" in capsys.readouterr().out

        output = tmp_path / "sim.json"
        code = main(["--config", config_path, "simulate", "--home", "duke", "--away", "unc",
                     "--models", models, "--state-dir", states, "--iterations", "500", "--seed", "2",
                     "--spread", "-3.5", "--total", "140", "-o", str(output)])
        assert code == 0
        result = json.loads(output.read_text())
        assert 0.0 <= result["home_win_probability"] <= 1.0
        assert set(result["spread"]) == {"home", "away", "push"}
