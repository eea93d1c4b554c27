"""Tests for the possession-level Monte Carlo engine and matchup simulation."""

import numpy as np
import pytest

from strength_forecaster.config import ForecasterConfig
from strength_forecaster.errors import ValidationError
from strength_forecaster.ml.transition_nn import TransitionPredictor
from strength_forecaster.models.game import GameContext
from strength_forecaster.models.latent import LatentDistribution
from strength_forecaster.models.transition import TransitionProbabilities
from strength_forecaster.simulation.matchup import build_transition_matrix, estimate_possessions, simulate_matchup
from strength_forecaster.simulation.monte_carlo import (
    MonteCarloEngine,
    SimulationConfig,
    SimulationResult,
    TransitionMatrix,
)
from strength_forecaster.simulation.possessions import (
    BoxScorePossessionEstimator,
    ConstantPossessionEstimator,
    ScoreBasedPossessionEstimator,
    get_estimator,
)

COIN_FLIP_TWOS = TransitionProbabilities(two_pt_make=0.5, two_pt_miss=0.5)
ALWAYS_TWO = TransitionProbabilities(two_pt_make=1.0)
ALWAYS_TURNOVER = TransitionProbabilities(turnover=1.0)


def _engine(seed=42, **kwargs):
    return MonteCarloEngine(SimulationConfig(random_seed=seed, **kwargs))


class TestSimulationBasics:
    def test_win_probabilities_sum_to_one(self):
        matrix = TransitionMatrix(COIN_FLIP_TWOS, ALWAYS_TWO, possessions=10)
        result = _engine().simulate(matrix, 500)
        assert result.home_win_probability + result.away_win_probability == pytest.approx(1.0)
        assert result.iterations == 500

    def test_deterministic_blowout(self):
        matrix = TransitionMatrix(ALWAYS_TWO, ALWAYS_TURNOVER, possessions=70)
        result = _engine().simulate(matrix, 200)
        assert result.home_win_probability == 1.0
        assert result.average_home_score == 140.0
        assert result.average_away_score == 0.0
        assert result.margin_std == 0.0

    def test_permanent_tie_is_settled_by_coin(self):
        matrix = TransitionMatrix(ALWAYS_TWO, ALWAYS_TWO, possessions=20)
        result = _engine(max_overtimes=2, overtime_possessions=5).simulate(matrix, 2000)
        assert result.tie_breaks == 2000
        assert result.overtime_rate == 1.0
        assert result.average_home_score == 20 * 2 + 2 * 5 * 2
        assert 0.45 < result.home_win_probability < 0.55

    def test_same_seed_same_result(self):
        matrix = TransitionMatrix(COIN_FLIP_TWOS, COIN_FLIP_TWOS, possessions=30)
        a = _engine(seed=7).simulate(matrix, 1000)
        b = _engine(seed=7).simulate(matrix, 1000)
        np.testing.assert_array_equal(a.margins, b.margins)

    def test_batches_cover_all_iterations(self):
        matrix = TransitionMatrix(COIN_FLIP_TWOS, COIN_FLIP_TWOS, possessions=5)
        result = _engine(batch_size=64).simulate(matrix, 1000)
        assert len(result.margins) == 1000

    def test_offensive_rebounds_extend_possessions(self):
        no_boards = TransitionMatrix(
            TransitionProbabilities(two_pt_make=0.5, two_pt_miss=0.5), ALWAYS_TURNOVER, possessions=50
        )
        with_boards = TransitionMatrix(
            TransitionProbabilities(two_pt_make=0.4, two_pt_miss=0.4, offensive_rebound=0.2),
            ALWAYS_TURNOVER,
            possessions=50,
        )
        plain = _engine().simulate(no_boards, 4000).average_home_score
        boarded = _engine().simulate(with_boards, 4000).average_home_score
        # 0.8 per draw with up to three second chances: 0.8 * (1 + .2 + .04 + .008) * 50 = 49.9
        assert boarded == pytest.approx(49.9, abs=1.0)
        assert plain == pytest.approx(50.0, abs=1.0)

    def test_free_throw_trip_scoring(self):
        trips = TransitionProbabilities(ft_make=0.75, ft_miss=0.25)
        matrix = TransitionMatrix(trips, ALWAYS_TURNOVER, possessions=40)
        result = _engine().simulate(matrix, 4000)
        # Every possession is a two-shot trip at 75%
        assert result.average_home_score == pytest.approx(40 * 2 * 0.75, abs=0.5)


class TestCalibration:
    def test_symmetric_teams_split_wins(self):
        matrix = TransitionMatrix(COIN_FLIP_TWOS, COIN_FLIP_TWOS, possessions=70)
        result = _engine().simulate(matrix, 10000)
        assert result.home_win_probability == pytest.approx(0.5, abs=0.03)
        assert result.average_home_score == pytest.approx(70.0, abs=1.5)
        assert abs(result.average_margin) < 1.0

    def test_stronger_team_wins_more(self):
        strong = TransitionProbabilities(two_pt_make=0.55, two_pt_miss=0.35, turnover=0.1)
        weak = TransitionProbabilities(two_pt_make=0.45, two_pt_miss=0.4, turnover=0.15)
        result = _engine().simulate(TransitionMatrix(strong, weak, possessions=70), 10000)
        assert result.home_win_probability > 0.7
        assert result.average_margin > 0

    def test_wilson_interval_brackets_estimate(self):
        matrix = TransitionMatrix(COIN_FLIP_TWOS, COIN_FLIP_TWOS, possessions=20)
        result = _engine().simulate(matrix, 2000)
        interval = result.win_probability_interval(0.95)
        assert interval["lower"] < result.home_win_probability < interval["upper"]
        assert interval["upper"] - interval["lower"] < 0.06


class TestValidation:
    def test_zero_iterations_rejected(self):
        matrix = TransitionMatrix(COIN_FLIP_TWOS, COIN_FLIP_TWOS)
        with pytest.raises(ValidationError):
            _engine().simulate(matrix, 0)

    def test_fractional_iterations_rejected(self):
        matrix = TransitionMatrix(COIN_FLIP_TWOS, COIN_FLIP_TWOS)
        with pytest.raises(ValidationError):
            _engine().simulate(matrix, 10.5)

    def test_all_zero_vector_rejected(self):
        with pytest.raises(ValidationError):
            TransitionMatrix(TransitionProbabilities(), COIN_FLIP_TWOS)

    def test_negative_entry_rejected(self):
        with pytest.raises(ValidationError):
            TransitionMatrix(TransitionProbabilities(two_pt_make=1.0, turnover=-0.5), COIN_FLIP_TWOS)

    def test_config_rejects_zero_iterations(self):
        with pytest.raises(ValidationError):
            SimulationConfig(iterations=0)

    def test_merge_requires_results(self):
        with pytest.raises(ValidationError):
            SimulationResult.merge([])


class TestMarketHelpers:
    def _result(self):
        home = np.array([70.0, 80.0, 75.0, 60.0])
        away = np.array([65.0, 70.0, 75.5, 70.0])
        return SimulationResult.from_samples(home, away, home > away)

    def test_spread_cover(self):
        # margins: 5, 10, -0.5, -10
        cover = self._result().spread_cover_probability(-5.0)
        assert cover == {"home": 0.25, "away": 0.5, "push": 0.25}

    def test_total_over(self):
        # totals: 135, 150, 150.5, 130
        totals = self._result().total_over_probability(132.0)
        assert totals == {"over": 0.75, "under": 0.25, "push": 0.0}

    def test_to_dict_is_json_ready(self):
        data = self._result().to_dict()
        assert data["iterations"] == 4
        assert data["home_win_probability"] == 0.5
        assert set(data["margin_percentiles"]) == {"5", "25", "50", "75", "95"}

    def test_matrix_round_trip(self):
        matrix = TransitionMatrix(COIN_FLIP_TWOS, ALWAYS_TWO, possessions=66.5)
        restored = TransitionMatrix.from_dict(matrix.to_dict())
        assert restored == matrix


class TestMatchup:
    def test_simulate_matchup_pools_draws(self):
        predictor = TransitionPredictor(latent_dim=4, rng=np.random.default_rng(0))
        home = LatentDistribution("home", np.zeros(4), np.full(4, 0.5))
        away = LatentDistribution("away", np.ones(4), np.full(4, 0.5))
        result = simulate_matchup(
            predictor, _engine(), home, away, GameContext(is_neutral_site=True),
            iterations=1000, latent_draws=7, estimator=ConstantPossessionEstimator(30),
        )
        assert result.iterations == 1000
        assert 0.0 <= result.home_win_probability <= 1.0

    def test_build_transition_matrix(self):
        predictor = TransitionPredictor(latent_dim=4, rng=np.random.default_rng(1))
        home = LatentDistribution("home", np.zeros(4), np.ones(4))
        away = LatentDistribution("away", np.ones(4), np.ones(4))
        matrix = build_transition_matrix(predictor, home, away)
        assert matrix.home.as_array().sum() == pytest.approx(1.0)
        assert matrix.away.as_array().sum() == pytest.approx(1.0)

    def test_matchup_rejects_zero_iterations(self):
        predictor = TransitionPredictor(latent_dim=4, rng=np.random.default_rng(2))
        dist = LatentDistribution("t", np.zeros(4), np.ones(4))
        with pytest.raises(ValidationError):
            simulate_matchup(predictor, _engine(), dist, dist, iterations=0)

    def test_estimator_drives_possessions(self):
        predictor = TransitionPredictor(latent_dim=4, rng=np.random.default_rng(3))
        home = LatentDistribution("home", np.zeros(4), np.full(4, 0.3))
        away = LatentDistribution("away", np.zeros(4), np.full(4, 0.3))
        stats = {"points": 100}

        slow = simulate_matchup(predictor, _engine(seed=4), home, away, iterations=2000,
                                estimator=ConstantPossessionEstimator(50.0))
        fast = simulate_matchup(predictor, _engine(seed=4), home, away, iterations=2000,
                                estimator=ScoreBasedPossessionEstimator(points_per_possession=1.0),
                                home_stats=stats, away_stats=stats)

        slow_total = slow.average_home_score + slow.average_away_score
        fast_total = fast.average_home_score + fast.average_away_score
        assert fast_total > 1.5 * slow_total

    def test_matrix_uses_box_score_estimate(self):
        predictor = TransitionPredictor(latent_dim=4, rng=np.random.default_rng(5))
        dist = LatentDistribution("t", np.zeros(4), np.ones(4))
        stats = {"fga": 60, "fta": 20, "offensive_rebounds": 10, "turnovers": 12}
        matrix = build_transition_matrix(predictor, dist, dist, estimator=BoxScorePossessionEstimator(),
                                         home_stats=stats, away_stats=stats)
        assert matrix.possessions == pytest.approx(60 - 10 + 12 + 9.5)

    def test_default_estimator_is_constant(self):
        assert estimate_possessions() == 70.0

    def test_non_positive_estimate_rejected(self):
        class Broken:
            def estimate(self, home_stats=None, away_stats=None):
                return 0.0

        with pytest.raises(ValidationError):
            estimate_possessions(Broken())

    def test_engine_from_config(self):
        engine = MonteCarloEngine.from_config(ForecasterConfig(iterations=123, random_seed=5))
        assert engine.config.iterations == 123
        assert engine.config.random_seed == 5


class TestPossessionEstimators:
    def test_constant(self):
        assert ConstantPossessionEstimator(68.0).estimate() == 68.0

    def test_score_based(self):
        estimator = ScoreBasedPossessionEstimator(points_per_possession=1.0)
        assert estimator.estimate({"points": 70}, {"points": 80}) == 75.0
        assert estimator.estimate() == 70.0

    def test_box_score(self):
        stats = {"fga": 60, "fta": 20, "offensive_rebounds": 10, "turnovers": 12}
        assert BoxScorePossessionEstimator().estimate(stats, stats) == pytest.approx(60 - 10 + 12 + 9.5)

    def test_box_score_falls_back(self):
        assert BoxScorePossessionEstimator(fallback=71.0).estimate({"points": 70}) == 71.0

    @pytest.mark.parametrize(
        "name,cls",
        [("constant", ConstantPossessionEstimator), ("score", ScoreBasedPossessionEstimator),
         ("box-score", BoxScorePossessionEstimator)],
    )
    def test_get_estimator(self, name, cls):
        estimator = get_estimator(name, 66.0)
        assert isinstance(estimator, cls)
        assert estimator.estimate() == 66.0

    def test_unknown_estimator(self):
        with pytest.raises(ValidationError):
            get_estimator("pace")
