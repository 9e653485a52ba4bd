# main.py
"""
The command-line entry point for running engine analysis jobs.

    python main.py position "<FEN>" [--depth N]
    python main.py game e4 e5 Nf3 ... [--fen "<FEN>"] [--game-id ID]

The result is printed to stdout as JSON; logs go to stderr.
"""
import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from engine_analysis.config.settings import Settings
from engine_analysis.containers import get_container
from engine_analysis.exceptions import EngineAnalysisBaseError
from engine_analysis.orchestration.orchestrator import JobOrchestrator
from engine_analysis.persistence.sqlite_result_store import SqliteResultStore
from engine_analysis.services.engine_pool import EnginePool
from engine_analysis.utils.logging_config import setup_logging
from engine_analysis.utils.system_utils import find_engine_executable

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Analyze chess positions and games with a UCI engine.")
    parser.add_argument("--engine-path", help="Path to the UCI engine executable.")
    parser.add_argument("--pool-size", type=int, help="Number of engine processes to run.")
    parser.add_argument("--db-path", help="SQLite file that job results are stored in.")
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, ...).")
    parser.add_argument("--log-file", type=Path, help="Optional JSON log file.")

    commands = parser.add_subparsers(dest="command", required=True)

    position = commands.add_parser("position", help="Evaluate a single position.")
    position.add_argument("fen", help="The position in FEN notation.")
    position.add_argument("--depth", type=int, help="Search depth.")

    game = commands.add_parser("game", help="Classify every move of a game.")
    game.add_argument("moves", nargs="+", help="Moves in SAN or UCI notation.")
    game.add_argument("--fen", help="Starting position, if not the standard one.")
    game.add_argument("--game-id", help="Identifier stored with the result.")
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Command-line flags win over environment configuration."""
    engine_config = settings.engine_pool.engine_config
    engine_config.path = str(find_engine_executable(args.engine_path or engine_config.path))
    if args.pool_size:
        settings.engine_pool.pool_size = args.pool_size
    if args.db_path:
        settings.results_db_path = args.db_path
    if args.log_level:
        settings.log_level = args.log_level
    return settings


async def run(args: argparse.Namespace, settings: Settings) -> Dict[str, Any]:
    container = get_container(settings)
    pool = container.resolve(EnginePool)
    store = container.resolve(SqliteResultStore)
    orchestrator = container.resolve(JobOrchestrator)

    async with pool, store, orchestrator:
        if args.command == "position":
            job = orchestrator.submit_hint(args.fen, args.depth)
        else:
            job = orchestrator.submit_game(args.moves, game_id=args.game_id, fen=args.fen)
        result = await orchestrator.wait(job)

    output = asdict(result)
    output["job_id"] = job.id
    return output


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    setup_logging(log_level=args.log_level or settings.log_level, log_file=args.log_file)

    try:
        settings = apply_overrides(settings, args)
        output = asyncio.run(run(args, settings))
    except FileNotFoundError as e:
        logger.error("Engine executable not found.", error=str(e))
        return 2
    except EngineAnalysisBaseError as e:
        logger.error("Analysis failed.", error_type=type(e).__name__, error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted.")
        return 130

    json.dump(output, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
