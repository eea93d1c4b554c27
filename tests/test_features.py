"""Tests for feature building, observed transitions and game sources."""

import asyncio
import json

import numpy as np
import pytest

from strength_forecaster.data.features import SCHEMA_V1, FeatureField, get_schema, validate_feature_vector
from strength_forecaster.data.normalize import normalize_team_id
from strength_forecaster.data.sources import InMemoryGameSource, JsonGameSource, load_games_from_json
from strength_forecaster.data.transitions import (
    count_possession_outcomes,
    counts_from_box_score,
    observed_transitions,
)
from strength_forecaster.errors import GameNotFoundError, IncompleteDataError, ValidationError
from strength_forecaster.models.game import CompletedGame, Play, TeamGameLine

BOX_SCORE = {
    "fgm": 28, "fga": 60, "fg3m": 8, "fg3a": 22, "ftm": 14, "fta": 18,
    "offensive_rebounds": 9, "defensive_rebounds": 25, "turnovers": 12,
    "assists": 15, "points": 78,
}


def _plays():
    return [
        Play("home", "GOOD", "LAYUP"),
        Play("home", "MISS", "3PTR"),
        Play("home", "REBOUND", "OFF"),
        Play("home", "GOOD", "3PTR"),
        Play("home", "GOOD", "FT"),
        Play("home", "MISS", "FT"),
        Play("home", "TURNOVER", ""),
        Play("away", "MISS", "JUMPER"),
        Play("away", "REBOUND", "DEF"),
        Play("away", "GOOD", "DUNK"),
    ]


class TestFeatureSchema:
    def test_v1_has_88_named_fields(self):
        assert SCHEMA_V1.dim == 88
        assert len(set(SCHEMA_V1.field_names)) == 88
        assert SCHEMA_V1.version == "v1"

    def test_vector_in_unit_interval(self):
        vector = SCHEMA_V1.build(BOX_SCORE)
        assert vector.shape == (88,)
        assert np.all((vector >= 0.0) & (vector <= 1.0))

    def test_vector_is_read_only(self):
        vector = SCHEMA_V1.build(BOX_SCORE)
        with pytest.raises(ValueError):
            vector[0] = 0.5

    def test_derived_percentages(self):
        names = SCHEMA_V1.field_names
        vector = SCHEMA_V1.build(BOX_SCORE)
        # fg_pct = 28/60 = 46.7% on a 0-100 scale
        assert vector[names.index("fg_pct")] == pytest.approx(28 / 60)
        assert vector[names.index("free_throw_accuracy")] == pytest.approx(14 / 18)

    def test_out_of_range_values_are_clipped(self):
        vector = SCHEMA_V1.build({"fgm": 500, "turnovers": -3})
        names = SCHEMA_V1.field_names
        assert vector[names.index("fgm")] == 1.0
        assert vector[names.index("turnovers")] == 0.0

    def test_missing_values_use_defaults(self):
        vector = SCHEMA_V1.build({})
        assert np.all(np.isfinite(vector))

    def test_non_numeric_value_rejected(self):
        with pytest.raises(ValidationError):
            SCHEMA_V1.build({"assists": "lots"})

    def test_boolean_flags(self):
        names = SCHEMA_V1.field_names
        vector = SCHEMA_V1.build({"is_neutral_site": True, "is_postseason": False})
        assert vector[names.index("is_neutral_site")] == 1.0
        assert vector[names.index("is_postseason")] == 0.0

    def test_history_needs_minimum_games(self):
        with pytest.raises(IncompleteDataError):
            SCHEMA_V1.build_from_history([BOX_SCORE, BOX_SCORE], min_games=3)

    def test_history_averages_games(self):
        low = dict(BOX_SCORE, assists=10)
        high = dict(BOX_SCORE, assists=20)
        vector = SCHEMA_V1.build_from_history([low, high, dict(BOX_SCORE, assists=15)], min_games=3)
        assert vector[SCHEMA_V1.field_names.index("assists")] == pytest.approx(15 / 40)

    def test_history_window_uses_latest_games(self):
        rows = [dict(BOX_SCORE, assists=a) for a in (0, 0, 30, 30)]
        vector = SCHEMA_V1.build_from_history(rows, min_games=3, window=2)
        assert vector[SCHEMA_V1.field_names.index("assists")] == pytest.approx(30 / 40)

    def test_unknown_schema_version(self):
        assert get_schema("v1") is SCHEMA_V1
        with pytest.raises(ValidationError):
            get_schema("v9")

    def test_field_normalize(self):
        field = FeatureField("x", 50, 120)
        assert field.normalize(85) == pytest.approx(0.5)
        assert FeatureField("flat", 1, 1).normalize(3) == 0.0

    def test_validate_feature_vector(self):
        assert validate_feature_vector(np.full(4, 0.5), 4).shape == (4,)
        with pytest.raises(ValidationError):
            validate_feature_vector(np.full(3, 0.5), 4)
        with pytest.raises(ValidationError):
            validate_feature_vector(np.array([0.5, np.nan]), 2)
        with pytest.raises(ValidationError):
            validate_feature_vector(np.array([0.5, 1.5]), 2)


class TestTransitions:
    def test_play_by_play_counts(self):
        counts = count_possession_outcomes(_plays(), "home")
        assert counts.two_pt_make == 1
        assert counts.three_pt_miss == 1
        assert counts.three_pt_make == 1
        assert counts.offensive_rebound == 1
        assert counts.ft_make == 1
        assert counts.ft_miss == 1
        assert counts.turnover == 1
        assert counts.total == 7

    def test_defensive_rebound_not_counted(self):
        counts = count_possession_outcomes(_plays(), "away")
        assert counts.defensive_rebound == 1
        assert counts.total == 2

    def test_probabilities_sum_to_one(self):
        probs = count_possession_outcomes(_plays(), "home").to_probabilities()
        assert probs.as_array().sum() == pytest.approx(1.0)
        assert probs.turnover == pytest.approx(1 / 7)

    def test_box_score_counts(self):
        counts = counts_from_box_score(BOX_SCORE)
        assert counts.two_pt_make == 20
        assert counts.two_pt_miss == 18
        assert counts.three_pt_make == 8
        assert counts.three_pt_miss == 14
        assert counts.ft_miss == 4

    def test_observed_transitions_falls_back_to_box_score(self):
        game = CompletedGame(
            "g1",
            TeamGameLine("a", 70, {}),
            TeamGameLine("b", 60, BOX_SCORE),
            plays=[Play("home", "GOOD", "LAYUP")],
        )
        observed = observed_transitions(game)
        assert observed["home"].two_pt_make == 1.0
        assert observed["away"].as_array().sum() == pytest.approx(1.0)

    def test_observed_transitions_requires_events(self):
        game = CompletedGame("g1", TeamGameLine("a", 70), TeamGameLine("b", 60),
                             plays=[Play("home", "GOOD", "LAYUP")])
        with pytest.raises(IncompleteDataError):
            observed_transitions(game)


class TestCompletedGame:
    def test_complete_game(self):
        game = CompletedGame("g", TeamGameLine("a", 70), TeamGameLine("b", 65), plays=_plays())
        assert game.is_complete

    def test_missing_plays_is_incomplete(self):
        game = CompletedGame("g", TeamGameLine("a", 70), TeamGameLine("b", 65))
        assert not game.is_complete

    @pytest.mark.parametrize(
        "home,away", [(None, 60), (0, 0), (float("nan"), 60), ("70", 60), (-5, 70), (70, -1), (True, 60)]
    )
    def test_invalid_scores(self, home, away):
        game = CompletedGame("g", TeamGameLine("a", home), TeamGameLine("b", away), plays=_plays())
        assert not game.has_valid_scores

    def test_shutout_is_valid(self):
        game = CompletedGame("g", TeamGameLine("a", 20), TeamGameLine("b", 0), plays=_plays())
        assert game.has_valid_scores

    def test_context_vector(self):
        game = CompletedGame("g", TeamGameLine("a", 1), TeamGameLine("b", 0), is_neutral_site=True,
                             is_postseason=True)
        vector = game.context().to_vector()
        assert vector.shape == (10,)
        assert vector[0] == 1.0
        assert vector[1] == 1.0


class TestSources:
    def _write_games(self, tmp_path, games):
        path = tmp_path / "games.json"
        path.write_text(json.dumps({"games": games}))
        return str(path)

    def _row(self, game_id, date, home="Texas A&amp;M", status="final"):
        return {
            "game_id": game_id,
            "game_date": date,
            "status": status,
            "home": {"team_id": home, "score": 70, "stats": BOX_SCORE},
            "away": {"team_id": "San José State", "score": 64},
            "plays": [{"side": "home", "action": "good", "type": "layup"}],
        }

    def test_json_source_normalizes_ids_and_orders_games(self, tmp_path):
        path = self._write_games(tmp_path, [
            self._row("late", "2025-01-20T19:00:00"),
            self._row("early", "2025-01-02T19:00:00"),
        ])
        source = JsonGameSource(path)
        assert source.game_ids() == ["early", "late"]

        game = asyncio.run(source.fetch_completed_game("early"))
        assert game.home.team_id == "texas_a_m"
        assert game.away.team_id == "san_jose_state"
        assert game.plays[0].action == "GOOD"
        assert game.plays[0].type == "LAYUP"

    def test_unknown_game(self):
        source = InMemoryGameSource()
        with pytest.raises(GameNotFoundError):
            asyncio.run(source.fetch_completed_game("nope"))

    def test_game_not_final(self, tmp_path):
        path = self._write_games(tmp_path, [self._row("live", "2025-01-02T19:00:00", status="in_progress")])
        source = JsonGameSource(path)
        with pytest.raises(IncompleteDataError):
            asyncio.run(source.fetch_completed_game("live"))

    def test_malformed_payload(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps([1, 2, 3]))
        with pytest.raises(ValidationError):
            load_games_from_json(str(path))

    def test_malformed_game(self, tmp_path):
        path = self._write_games(tmp_path, [{"game_id": "x"}])
        with pytest.raises(ValidationError):
            load_games_from_json(path)


class TestNormalizeTeamId:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Duke", "duke"),
            ("Texas A&amp;M", "texas_a_m"),
            ("San José State", "san_jose_state"),
            ("  St. John's (NY) ", "st_john_s_ny"),
            ("", ""),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_team_id(raw) == expected

    def test_spellings_share_one_state_key(self):
        spellings = ["Texas A&amp;M", "TEXAS A&M", "texas-a-m", "Texas  A & M"]
        assert {normalize_team_id(s) for s in spellings} == {"texas_a_m"}

    @pytest.mark.parametrize("raw,expected", [("Miami &amp; Ohio", "miami_ohio"), ("Hawaiʻi", "hawai_i")])
    def test_entities_and_modifier_letters(self, raw, expected):
        assert normalize_team_id(raw) == expected
