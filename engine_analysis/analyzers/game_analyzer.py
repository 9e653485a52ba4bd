# engine_analysis/analyzers/game_analyzer.py
"""
Provides the `GameAnalyzer`, which classifies every move of a game.

The whole game is walked ply by ply against a single leased session, since the
engine's state depends on the position it was last given. Parallelism across
games comes from leasing distinct sessions, never from sharing one.

Perspective convention: sessions report white-perspective evaluations. For the
mover at ply i, both the pre-move evaluation (engine's best) and the post-move
evaluation (what was actually reached) are multiplied by +1 for white and -1
for black, so that a larger number is always better for the mover.
"""

from typing import List, Optional, Sequence, TYPE_CHECKING

import structlog

from engine_analysis.analyzers.search_runner import run_search
from engine_analysis.core.chess_utils import normalize_moves, uci_to_san, validate_fen
from engine_analysis.core.move_classifier import centipawn_loss, classify_move
from engine_analysis.core.summary_aggregator import aggregate_game_analysis
from engine_analysis.tracing import trace_stage
from engine_analysis.types import (EngineSession, FEN, GameAnalysis, MoveRecord,
                                   PositionDescriptor, SearchResult, UciMove)
from engine_analysis.utils import metrics

if TYPE_CHECKING:
    from engine_analysis.config.settings import AnalysisSettings
    from engine_analysis.services.engine_pool import EnginePool

logger = structlog.get_logger(__name__)


class GameAnalyzer:
    """Drives one leased session through a game and builds its `GameAnalysis`."""

    def __init__(self, engine_pool: "EnginePool", settings: "AnalysisSettings"):
        self._pool = engine_pool
        self._settings = settings

    @trace_stage
    async def analyze(self, moves: Sequence[str], start_fen: Optional[FEN] = None) -> GameAnalysis:
        """
        Analyzes a game given as a list of SAN or UCI moves.

        Raises:
            InvalidPositionError: If the start FEN or any move is rejected (before leasing).
            AnalysisTimeout: If any single search exceeds `move_timeout_s`.
            EngineCrashError: If the engine died mid-game.
            EngineUnavailableError: If no session could be leased.
        """
        start_fen = validate_fen(start_fen) if start_fen else None
        uci_moves = normalize_moves(moves, start_fen)
        if not uci_moves:
            return aggregate_game_analysis([])

        with metrics.ANALYSIS_DURATION_SECONDS.labels(kind="game").time():
            async with self._pool.lease() as session:
                logger.info("Analyzing game.", plies=len(uci_moves), session=session.name)
                records = await self.walk_game(session, list(moves), uci_moves, start_fen)

        analysis = aggregate_game_analysis(records)
        logger.info(
            "Game analyzed.",
            plies=analysis.move_count,
            average_centipawn_loss=round(analysis.average_centipawn_loss, 1),
            game_quality=round(analysis.game_quality, 1),
            blunders=len(analysis.blunders),
        )
        return analysis

    async def walk_game(
        self,
        session: EngineSession,
        notations: Sequence[str],
        uci_moves: Sequence[UciMove],
        start_fen: Optional[FEN] = None,
    ) -> List[MoveRecord]:
        """The strictly sequential ply loop. The caller owns the session lease."""
        thresholds = self._settings.classification_thresholds
        records: List[MoveRecord] = []
        position = PositionDescriptor(fen=start_fen)

        for ply, (notation, move) in enumerate(zip(notations, uci_moves), start=1):
            mover_is_white = position.white_to_move
            sign = 1.0 if mover_is_white else -1.0

            best = await self._search(session, position)
            expected = sign * best.evaluation_pawns

            after = position.advance(move)
            reached = await self._search(session, after)
            actual = sign * reached.evaluation_pawns

            loss = centipawn_loss(expected, actual)
            record = MoveRecord(
                move_number=ply,
                side="white" if mover_is_white else "black",
                move_notation=notation,
                evaluation_pawns=actual,
                best_move_notation=uci_to_san(position, best.best_move),
                centipawn_loss=loss,
                category=classify_move(loss, thresholds),
            )
            records.append(record)
            logger.debug(
                "Move classified.", ply=ply, move=notation, best_move=record.best_move_notation,
                centipawn_loss=loss, category=record.category.value,
            )
            position = after

        return records

    async def _search(self, session: EngineSession, position: PositionDescriptor) -> SearchResult:
        move_time_ms = self._settings.move_time_ms
        return await run_search(
            session, position, lambda s: s.search_for_duration(move_time_ms), self._settings.move_timeout_s
        )
