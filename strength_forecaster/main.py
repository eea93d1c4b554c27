"""Command-line interface for the team strength forecaster."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config import ForecasterConfig
from .data.sources import JsonGameSource
from .data.store import JsonTeamStatePersistence, load_model_bundle, save_model_bundle
from .errors import ForecasterError
from .ml.bundle import ModelBundle
from .models.game import GameContext
from .monitoring.performance import PerformanceMonitor
from .pipeline.cache import ModelCache
from .pipeline.post_game import OrchestratorConfig, PostGameUpdateOrchestrator
from .simulation.matchup import simulate_matchup
from .simulation.monte_carlo import MonteCarloEngine
from .simulation.possessions import ESTIMATORS, get_estimator
from .state.bayesian import BayesianTeamStateStore

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_config(path: str = None) -> ForecasterConfig:
    if path:
        return ForecasterConfig.from_json(path)
    return ForecasterConfig()


def load_or_build_models(config: ForecasterConfig, models_path: str) -> ModelBundle:
    """Load a saved bundle, or start from fresh untrained models."""
    if models_path and Path(models_path).exists():
        return load_model_bundle(models_path)
    logger.info("No saved models at %s; building untrained models", models_path)
    return ModelBundle.build(config)


async def _load_team(store: BayesianTeamStateStore, persistence: JsonTeamStatePersistence, team_id: str):
    if not store.has(team_id):
        stored = await persistence.load(team_id)
        if stored is not None:
            store.put(stored)
    return store.get_distribution(team_id)


def simulate_game(args):
    """Simulate a matchup between two teams from their stored states."""
    config = load_config(args.config)
    if args.seed is not None:
        config.random_seed = args.seed
    bundle = load_or_build_models(config, args.models)
    persistence = JsonTeamStatePersistence(args.state_dir)
    store = BayesianTeamStateStore.from_config(config)

    home = asyncio.run(_load_team(store, persistence, args.home))
    away = asyncio.run(_load_team(store, persistence, args.away))
    if home.games_processed == 0 or away.games_processed == 0:
        print("Warning: at least one team has no processed games; using the prior")

    team_stats = {}
    if args.team_stats:
        with open(args.team_stats, "r") as f:
            team_stats = json.load(f)
    estimator = get_estimator(args.possession_model, args.possessions or config.possessions_per_game)

    context = GameContext(is_neutral_site=args.neutral, is_postseason=args.postseason)
    engine = MonteCarloEngine.from_config(config)
    result = simulate_matchup(
        bundle.predictor,
        engine,
        home,
        away,
        context=context,
        iterations=args.iterations or config.iterations,
        estimator=estimator,
        home_stats=team_stats.get(args.home),
        away_stats=team_stats.get(args.away),
    )

    interval = result.win_probability_interval()
    print(f"\n{'='*60}")
    print(f"{args.home} (home) vs {args.away}")
    print(f"{'='*60}")
    print(f"Home win probability: {result.home_win_probability:.3f} "
          f"(95% CI {interval['lower']:.3f}-{interval['upper']:.3f})")
    print(f"Away win probability: {result.away_win_probability:.3f}")
    print(f"Average score: {result.average_home_score:.1f} - {result.average_away_score:.1f}")
    print(f"Average margin: {result.average_margin:+.1f} (std {result.margin_std:.1f})")

    output = result.to_dict()
    if args.spread is not None:
        cover = result.spread_cover_probability(args.spread)
        output["spread"] = cover
        print(f"Home covers {args.spread:+.1f}: {cover['home']:.3f}")
    if args.total is not None:
        over = result.total_over_probability(args.total)
        output["total"] = over
        print(f"Over {args.total:.1f}: {over['over']:.3f}")

    if args.output:
        with open(args.output, "w") as f:
            json.dump(output, f, indent=2)
        print(f"✓ Simulation written to {args.output}")
    return 0


def process_games(args):
    """Run the post-game update cycle over a file of completed games."""
    config = load_config(args.config)
    bundle = load_or_build_models(config, args.models)
    source = JsonGameSource(args.games)
    persistence = JsonTeamStatePersistence(args.state_dir)
    monitor = PerformanceMonitor.from_config(config)

    async def save_models(updated: ModelBundle) -> None:
        await asyncio.to_thread(save_model_bundle, updated, args.models)

    orchestrator = PostGameUpdateOrchestrator(
        source=source,
        persistence=persistence,
        store=BayesianTeamStateStore.from_config(config),
        model_cache=ModelCache.for_bundle(bundle, ttl=config.model_cache_ttl),
        monitor=monitor,
        config=OrchestratorConfig.from_config(config),
        model_saver=save_models if args.models else None,
    )

    game_ids = args.game_ids or source.game_ids()
    print(f"Processing {len(game_ids)} games from {args.games}...")
    results = asyncio.run(orchestrator.process_games(game_ids))

    for result in results:
        line = f"  {result.game_id}: {result.outcome.value}"
        if result.prediction_error is not None:
            line += f" (error {result.prediction_error.total:.4f})"
        if result.error:
            line += f" - {result.error}"
        print(line)

    stats = orchestrator.stats()
    print(f"\nUpdated {stats['updated']}, skipped {stats['skipped']}, "
          f"incomplete {stats['incomplete']}, failed {stats['failed']}")

    if args.report:
        report = {
            "results": [r.to_dict() for r in results],
            "stats": stats,
            "monitor": monitor.report(),
        }
        with open(args.report, "w") as f:
            json.dump(report, f, indent=2, default=str)
        print(f"✓ Report written to {args.report}")
    return 1 if stats["failed"] else 0


def show_teams(args):
    """Print stored team states and their convergence."""
    config = load_config(args.config)
    persistence = JsonTeamStatePersistence(args.state_dir)
    store = BayesianTeamStateStore.from_config(config)
    for distribution in persistence.load_all():
        store.put(distribution)

    status = store.convergence_status(config.team_convergence_threshold)
    if not status:
        print(f"No team states found in {args.state_dir}")
        return 0

    print(f"{'Team':<30} {'Games':>6} {'Mean sigma':>11} {'Confidence':>11}  Season")
    for team_id, row in status.items():
        marker = "*" if row["converged"] else " "
        print(f"{team_id:<30} {row['games_processed']:>6} {row['mean_sigma']:>11.4f} "
              f"{row['confidence']:>11.3f}  {row['last_season'] or '-'} {marker}")
    summary = store.summary()
    print(f"\n{summary['teams']} teams, mean sigma {summary['mean_sigma']:.4f} (* = converged)")
    return 0


def create_sample_config(args):
    """Write a configuration file with every option at its default."""
    ForecasterConfig().save(args.output)
    print(f"✓ Sample configuration written to {args.output}")
    return 0


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Team Strength Forecaster - latent team strength, possession transitions and game simulation"
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--config", default=None, help="ForecasterConfig JSON file")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    simulate_parser = subparsers.add_parser("simulate", help="Simulate a matchup between two teams")
    simulate_parser.add_argument("--home", required=True, help="Home team id")
    simulate_parser.add_argument("--away", required=True, help="Away team id")
    simulate_parser.add_argument("--models", default="models/bundle.json", help="Saved model bundle JSON")
    simulate_parser.add_argument("--state-dir", default="data/team_states", help="Team state directory")
    simulate_parser.add_argument("--iterations", type=int, default=None, help="Monte Carlo iterations")
    simulate_parser.add_argument("--possessions", type=float, default=None, help="Possessions per team (constant model) or fallback")
    simulate_parser.add_argument(
        "--possession-model",
        choices=sorted(ESTIMATORS),
        default="constant",
        help="How to estimate possessions per team (default: constant)",
    )
    simulate_parser.add_argument("--team-stats", default=None, help="JSON of average box scores keyed by team id")
    simulate_parser.add_argument("--neutral", action="store_true", help="Neutral-site game")
    simulate_parser.add_argument("--postseason", action="store_true", help="Postseason game")
    simulate_parser.add_argument("--spread", type=float, default=None, help="Home spread to price")
    simulate_parser.add_argument("--total", type=float, default=None, help="Game total to price")
    simulate_parser.add_argument("--seed", type=int, default=None, help="Random seed")
    simulate_parser.add_argument("--output", "-o", default=None, help="Write the result as JSON")

    process_parser = subparsers.add_parser("process", help="Run post-game updates for completed games")
    process_parser.add_argument("--games", required=True, help='Games JSON ({"games": [...]})')
    process_parser.add_argument("--game-ids", nargs="*", default=None, help="Only these games, in this order")
    process_parser.add_argument("--models", default="models/bundle.json", help="Model bundle JSON (read and written)")
    process_parser.add_argument("--state-dir", default="data/team_states", help="Team state directory")
    process_parser.add_argument("--report", default=None, help="Write results and monitor report as JSON")

    teams_parser = subparsers.add_parser("teams", help="Show stored team states")
    teams_parser.add_argument("--state-dir", default="data/team_states", help="Team state directory")

    sample_parser = subparsers.add_parser("sample-config", help="Write a default configuration file")
    sample_parser.add_argument("--output", "-o", default="forecaster_config.json", help="Output path")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        if args.command == "simulate":
            return simulate_game(args)
        elif args.command == "process":
            return process_games(args)
        elif args.command == "teams":
            return show_teams(args)
        elif args.command == "sample-config":
            return create_sample_config(args)
        else:
            parser.print_help()
            return 1
    except ForecasterError as exc:
        print(f"Error: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
