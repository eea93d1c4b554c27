"""
Post-game update orchestrator.

For each completed game: fetch it, make a fresh prediction with the current
models, compare against what actually happened, and only retrain the models
and team states when the prediction error warrants it.

    FETCH -> VALIDATE_COMPLETE -> PREDICT_FRESH -> COMPUTE_ERROR -> DECIDE
          -> (UPDATE | SKIP) -> PERSIST -> DONE
"""

import asyncio
import logging
import time
from collections import defaultdict
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from ..data.features import SCHEMA_V1, FeatureSchema
from ..data.sources import GameSource
from ..data.store import TeamStatePersistence
from ..data.transitions import observed_transitions
from ..errors import GameNotFoundError, IncompleteDataError, ValidationError
from ..ml.bundle import ModelBundle
from ..ml.transition_nn import TransitionPredictor
from ..models.game import CompletedGame
from ..models.transition import TransitionProbabilities
from ..monitoring.performance import PerformanceMonitor
from ..state.bayesian import BayesianTeamStateStore
from .cache import ModelCache

logger = logging.getLogger(__name__)

SIDES = ("home", "away")


class UpdateOutcome(str, Enum):
    UPDATED = "updated"
    SKIPPED = "skipped"
    INCOMPLETE = "incomplete"
    FAILED = "failed"


class Stage(str, Enum):
    FETCH = "fetch"
    VALIDATE_COMPLETE = "validate_complete"
    PREDICT_FRESH = "predict_fresh"
    COMPUTE_ERROR = "compute_error"
    DECIDE = "decide"
    UPDATE = "update"
    SKIP = "skip"
    PERSIST = "persist"
    DONE = "done"


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 10.0) -> float:
    """Delay before retrying after failed ``attempt`` (1-based): min(cap, base * 2^(attempt-1))."""
    if attempt < 1:
        raise ValidationError(f"attempt must be >= 1, got {attempt}")
    return min(cap, base * 2 ** (attempt - 1))


@dataclass
class OrchestratorConfig:
    max_update_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    game_timeout: float = 30.0
    feedback_threshold: float = 0.5
    absolute_error_ceiling: float = 1.0
    baseline_increase_threshold: float = 0.1

    def __post_init__(self):
        if self.max_update_attempts < 1:
            raise ValidationError("max_update_attempts must be >= 1")
        if self.game_timeout <= 0:
            raise ValidationError("game_timeout must be positive")

    @classmethod
    def from_config(cls, config) -> "OrchestratorConfig":
        return cls(
            max_update_attempts=config.max_update_attempts,
            retry_base_delay=config.retry_base_delay,
            retry_max_delay=config.retry_max_delay,
            game_timeout=config.game_timeout,
            feedback_threshold=config.feedback_threshold,
            absolute_error_ceiling=config.absolute_error_ceiling,
            baseline_increase_threshold=config.baseline_increase_threshold,
        )


@dataclass
class PredictionError:
    """Cross-entropy of the fresh prediction against the observed outcome, per side."""

    home: float
    away: float

    @property
    def total(self) -> float:
        return (self.home + self.away) / 2.0

    @property
    def max(self) -> float:
        return max(self.home, self.away)

    @classmethod
    def compute(
        cls,
        predicted: Mapping[str, TransitionProbabilities],
        actual: Mapping[str, TransitionProbabilities],
    ) -> "PredictionError":
        losses = {
            side: TransitionPredictor.compute_loss(predicted[side].as_array(), actual[side].as_array())
            for side in SIDES
        }
        return cls(home=losses["home"], away=losses["away"])

    def to_dict(self) -> Dict[str, float]:
        return {"home": self.home, "away": self.away, "total": self.total, "max": self.max}


def should_update(
    error: PredictionError,
    config: OrchestratorConfig,
    baseline_error: Optional[float] = None,
) -> Tuple[bool, str]:
    """Decide whether a game's prediction error warrants retraining."""
    if error.total > config.feedback_threshold:
        return True, f"total error {error.total:.4f} > {config.feedback_threshold}"
    if error.max > config.absolute_error_ceiling:
        return True, f"max error {error.max:.4f} > {config.absolute_error_ceiling}"
    if baseline_error is not None and error.total - baseline_error > config.baseline_increase_threshold:
        return True, f"error rose {error.total - baseline_error:.4f} above baseline"
    return False, "error within tolerance"


@dataclass
class GameUpdateResult:
    game_id: str
    outcome: UpdateOutcome = UpdateOutcome.FAILED
    attempts: int = 0
    stage: Stage = Stage.FETCH
    error: Optional[str] = None
    error_type: Optional[str] = None
    reason: Optional[str] = None
    prediction_error: Optional[PredictionError] = None
    post_update_error: Optional[PredictionError] = None
    improved: Optional[bool] = None
    nn_losses: Dict[str, float] = field(default_factory=dict)
    vae_losses: Dict[str, float] = field(default_factory=dict)
    feedback_triggered: bool = False
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome in (UpdateOutcome.UPDATED, UpdateOutcome.SKIPPED)

    def to_dict(self) -> Dict:
        return {
            "game_id": self.game_id,
            "outcome": self.outcome.value,
            "attempts": self.attempts,
            "stage": self.stage.value,
            "error": self.error,
            "error_type": self.error_type,
            "reason": self.reason,
            "prediction_error": self.prediction_error.to_dict() if self.prediction_error else None,
            "post_update_error": self.post_update_error.to_dict() if self.post_update_error else None,
            "improved": self.improved,
            "nn_losses": dict(self.nn_losses),
            "vae_losses": dict(self.vae_losses),
            "feedback_triggered": self.feedback_triggered,
            "duration": self.duration,
        }


@dataclass
class _FreshPrediction:
    features: Dict[str, np.ndarray]
    latents: Dict[str, Tuple[np.ndarray, np.ndarray]]
    context_vector: np.ndarray
    predicted: Dict[str, TransitionProbabilities]


@dataclass
class _GameRun:
    """Progress of one game across retry attempts."""

    game: Optional[CompletedGame] = None
    updated: bool = False
    persisted: bool = False
    recorded: bool = False
    bundle: Optional[ModelBundle] = None


class PostGameUpdateOrchestrator:
    """
    Drives the per-game update state machine.

    Args:
        source: Async provider of completed games
        persistence: Async team-state storage
        store: In-memory Bayesian team-state store
        model_cache: Cache that owns the current ModelBundle
        monitor: Optional performance monitor; receives one record per game
        schema: Feature schema used to build VAE inputs
        config: Retry, timeout and decision thresholds
        model_saver: Optional coroutine called with the bundle after an update;
            the cache is invalidated only once the bundle has been saved
        sleep: Coroutine used between retries; injectable for tests
        clock: Monotonic time source for durations
    """

    def __init__(
        self,
        source: GameSource,
        persistence: TeamStatePersistence,
        store: BayesianTeamStateStore,
        model_cache: ModelCache,
        monitor: Optional[PerformanceMonitor] = None,
        schema: FeatureSchema = SCHEMA_V1,
        config: Optional[OrchestratorConfig] = None,
        model_saver: Optional[Callable[[ModelBundle], Awaitable[None]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.persistence = persistence
        self.store = store
        self.model_cache = model_cache
        self.monitor = monitor
        self.schema = schema
        self.config = config or OrchestratorConfig()
        self.model_saver = model_saver
        self._sleep = sleep
        self._clock = clock
        self._team_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._counters = {outcome.value: 0 for outcome in UpdateOutcome}
        self._counters.update({"processed": 0, "improved": 0, "degraded": 0, "retries": 0})
        self._total_duration = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_game(self, game_id: str, baseline_error: Optional[float] = None) -> GameUpdateResult:
        """
        Run the full update cycle for one game.

        Never raises for per-game problems; the outcome and error are reported
        on the returned GameUpdateResult.
        """
        result = GameUpdateResult(game_id=game_id)
        run = _GameRun()
        started = self._clock()
        try:
            await asyncio.wait_for(
                self._run_with_retry(game_id, baseline_error, result, run),
                timeout=self.config.game_timeout,
            )
        except asyncio.TimeoutError:
            result.outcome = UpdateOutcome.FAILED
            result.error = f"timed out after {self.config.game_timeout:.1f}s"
            result.error_type = "TimeoutError"
            logger.error("Game %s timed out during %s", game_id, result.stage.value)
        result.duration = self._clock() - started
        self._count(result)
        return result

    async def process_games(
        self,
        game_ids: Iterable[str],
        baselines: Optional[Mapping[str, float]] = None,
    ) -> List[GameUpdateResult]:
        """Process games strictly in the given order; one game's failure never stops the rest."""
        baselines = baselines or {}
        results = []
        for game_id in game_ids:
            results.append(await self.process_game(game_id, baselines.get(game_id)))
        outcomes = [r.outcome.value for r in results]
        logger.info(
            "Processed %d games: %d updated, %d skipped, %d incomplete, %d failed",
            len(results),
            outcomes.count("updated"),
            outcomes.count("skipped"),
            outcomes.count("incomplete"),
            outcomes.count("failed"),
        )
        return results

    def stats(self) -> Dict:
        processed = self._counters["processed"]
        return {
            **self._counters,
            "success_rate": (self._counters["updated"] + self._counters["skipped"]) / processed if processed else 0.0,
            "average_duration": self._total_duration / processed if processed else 0.0,
            "cache": self.model_cache.stats(),
        }

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    async def _run_with_retry(
        self,
        game_id: str,
        baseline_error: Optional[float],
        result: GameUpdateResult,
        run: _GameRun,
    ) -> None:
        max_attempts = self.config.max_update_attempts
        for attempt in range(1, max_attempts + 1):
            result.attempts = attempt
            try:
                await self._run_once(game_id, baseline_error, result, run)
                return
            except IncompleteDataError as exc:
                result.outcome = UpdateOutcome.INCOMPLETE
                result.error, result.error_type = str(exc), type(exc).__name__
                logger.info("Game %s incomplete: %s", game_id, exc)
                return
            except (ValidationError, GameNotFoundError) as exc:
                result.outcome = UpdateOutcome.FAILED
                result.error, result.error_type = str(exc), type(exc).__name__
                logger.error("Game %s failed at %s: %s", game_id, result.stage.value, exc)
                return
            except Exception as exc:
                result.outcome = UpdateOutcome.FAILED
                result.error, result.error_type = str(exc), type(exc).__name__
                if attempt >= max_attempts:
                    logger.error(
                        "Game %s failed after %d attempts at %s: %s",
                        game_id, attempt, result.stage.value, exc,
                    )
                    return
                delay = backoff_delay(attempt, self.config.retry_base_delay, self.config.retry_max_delay)
                logger.warning(
                    "Game %s attempt %d/%d failed at %s: %s; retrying in %.1fs",
                    game_id, attempt, max_attempts, result.stage.value, exc, delay,
                )
                self._counters["retries"] += 1
                await self._sleep(delay)

    async def _run_once(
        self,
        game_id: str,
        baseline_error: Optional[float],
        result: GameUpdateResult,
        run: _GameRun,
    ) -> None:
        if run.updated:
            # Models and team states already changed on an earlier attempt;
            # only the persistence step is retried.
            await self._persist(run.game, run, result)
            result.outcome = UpdateOutcome.UPDATED
            result.stage = Stage.DONE
            return

        result.stage = Stage.FETCH
        game = await self.source.fetch_completed_game(game_id)
        run.game = game

        result.stage = Stage.VALIDATE_COMPLETE
        if not game.has_valid_scores:
            raise IncompleteDataError(f"Game {game_id} has no valid final score")
        if not game.plays:
            raise IncompleteDataError(f"Game {game_id} has no play-by-play")

        team_ids = sorted({game.home.team_id, game.away.team_id})
        async with AsyncExitStack() as stack:
            for team_id in team_ids:
                await stack.enter_async_context(self._team_locks[team_id])

            result.stage = Stage.PREDICT_FRESH
            bundle = await self.model_cache.get()
            run.bundle = bundle
            for team_id in team_ids:
                await self._ensure_loaded(team_id)
            fresh = self._predict(bundle, game)

            result.stage = Stage.COMPUTE_ERROR
            actual = observed_transitions(game)
            error = PredictionError.compute(fresh.predicted, actual)
            result.prediction_error = error

            result.stage = Stage.DECIDE
            update, reason = should_update(error, self.config, baseline_error)
            result.reason = reason

            if update:
                result.stage = Stage.UPDATE
                self._update(bundle, game, fresh, actual, result)
                run.updated = True
                logger.info(
                    "Game %s updated (%s); error %.4f -> %.4f",
                    game_id, reason, error.total, result.post_update_error.total,
                )
                await self._persist(game, run, result)
                result.outcome = UpdateOutcome.UPDATED
            else:
                result.stage = Stage.SKIP
                for side in SIDES:
                    result.vae_losses[side] = bundle.vae.evaluate(fresh.features[side]).vae_loss
                logger.info("Game %s skipped (%s)", game_id, reason)
                await self._persist(game, run, result)
                result.outcome = UpdateOutcome.SKIPPED

        result.stage = Stage.DONE

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _ensure_loaded(self, team_id: str) -> None:
        if self.store.has(team_id):
            return
        distribution = await self.persistence.load(team_id)
        if distribution is not None:
            self.store.put(distribution)
            logger.debug("Loaded stored state for %s", team_id)

    def _features(self, game: CompletedGame, side: str) -> np.ndarray:
        line = game.home if side == "home" else game.away
        raw = dict(line.stats)
        raw.setdefault("is_neutral_site", game.is_neutral_site)
        raw.setdefault("is_postseason", game.is_postseason)
        return self.schema.build(raw)

    def _predict(self, bundle: ModelBundle, game: CompletedGame) -> _FreshPrediction:
        if self.schema.dim != bundle.vae.input_dim:
            raise ValidationError(
                f"Feature schema {self.schema.version} has {self.schema.dim} features, "
                f"model expects {bundle.vae.input_dim}"
            )
        features = {side: self._features(game, side) for side in SIDES}
        latents = {side: bundle.vae.encode(features[side]) for side in SIDES}
        context_vector = game.context().to_vector()
        return _FreshPrediction(
            features=features,
            latents=latents,
            context_vector=context_vector,
            predicted=self._predict_both(bundle.predictor, latents, context_vector),
        )

    @staticmethod
    def _predict_both(predictor: TransitionPredictor, latents, context_vector) -> Dict[str, TransitionProbabilities]:
        (mu_h, sigma_h), (mu_a, sigma_a) = latents["home"], latents["away"]
        return {
            "home": predictor.predict(mu_h, sigma_h, mu_a, sigma_a, context_vector),
            "away": predictor.predict(mu_a, sigma_a, mu_h, sigma_h, context_vector),
        }

    def _check_chronology(self, game: CompletedGame) -> None:
        """Reject a game older than either team's last update before anything is mutated."""
        if game.game_date is None:
            return
        calendar = self.store.calendar
        for line in (game.home, game.away):
            if not self.store.has(line.team_id):
                continue
            last = self.store.get_distribution(line.team_id).last_game_date
            if last is not None and calendar.localize(game.game_date) < calendar.localize(last):
                raise ValidationError(
                    f"Game {game.game_id} ({game.game_date}) predates the last update "
                    f"for {line.team_id} ({last})"
                )

    def _update(
        self,
        bundle: ModelBundle,
        game: CompletedGame,
        fresh: _FreshPrediction,
        actual: Mapping[str, TransitionProbabilities],
        result: GameUpdateResult,
    ) -> None:
        lines = {"home": game.home, "away": game.away}
        opponent = {"home": "away", "away": "home"}
        self._check_chronology(game)

        for side in SIDES:
            training = bundle.trainer.train_on_game(
                fresh.features[side],
                actual[side].as_array(),
                team=fresh.latents[side],
                opponent=fresh.latents[opponent[side]],
                context=fresh.context_vector,
            )
            result.nn_losses[side] = training.nn_loss
            result.vae_losses[side] = training.vae_loss
            result.feedback_triggered = result.feedback_triggered or training.feedback_triggered

        # Both teams see the opponent as it stood before this game.
        context = game.context()
        opponents_before = {
            side: self.store.get_distribution(lines[opponent[side]].team_id).copy() for side in SIDES
        }
        for side in SIDES:
            mu, sigma = fresh.latents[side]
            self.store.update(
                lines[side].team_id,
                mu,
                game_context=context,
                opponent_distribution=opponents_before[side],
                current_sigma=sigma,
            )

        latents_after = {side: bundle.vae.encode(fresh.features[side]) for side in SIDES}
        predicted_after = self._predict_both(bundle.predictor, latents_after, fresh.context_vector)
        result.post_update_error = PredictionError.compute(predicted_after, actual)
        result.improved = result.post_update_error.total < result.prediction_error.total

    async def _persist(self, game: CompletedGame, run: _GameRun, result: GameUpdateResult) -> None:
        result.stage = Stage.PERSIST
        team_ids = (game.home.team_id, game.away.team_id)

        if run.updated and not run.persisted:
            for team_id in team_ids:
                await self.persistence.save(team_id, self.store.get_distribution(team_id))
            # Without a saver the cached bundle is the only copy of the new weights.
            if self.model_saver is not None:
                await self.model_saver(run.bundle)
                self.model_cache.invalidate()
            run.persisted = True

        if self.monitor is not None and not run.recorded:
            self._record(game, run, result)
        run.recorded = True

    def _record(self, game: CompletedGame, run: _GameRun, result: GameUpdateResult) -> None:
        trainer = run.bundle.trainer
        nn_loss = float(np.mean(list(result.nn_losses.values()))) if result.nn_losses else result.prediction_error.total
        vae_loss = float(np.mean(list(result.vae_losses.values())))
        self.monitor.record(
            nn_loss=nn_loss,
            vae_loss=vae_loss,
            feedback_triggered=result.feedback_triggered,
            alpha=trainer.alpha,
            game_id=game.game_id,
            outcome=UpdateOutcome.UPDATED.value if run.updated else UpdateOutcome.SKIPPED.value,
        )
        if run.updated:
            for team_id in (game.home.team_id, game.away.team_id):
                self.monitor.record_team_distribution(self.store.get_distribution(team_id))
            self.monitor.record_stability(trainer.monitor_stability())

    def _count(self, result: GameUpdateResult) -> None:
        self._counters["processed"] += 1
        self._counters[result.outcome.value] += 1
        if result.improved is True:
            self._counters["improved"] += 1
        elif result.improved is False:
            self._counters["degraded"] += 1
        self._total_duration += result.duration
