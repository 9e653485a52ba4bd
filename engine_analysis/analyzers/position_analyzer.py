# engine_analysis/analyzers/position_analyzer.py
"""
Provides the `PositionAnalyzer`, which evaluates one standalone position.

This is the path behind live hints: validate the FEN, lease a session, run a
depth-bounded search and keep the top candidate lines.
"""

from typing import Optional, TYPE_CHECKING

import structlog

from engine_analysis.analyzers.search_runner import run_search
from engine_analysis.core.chess_utils import validate_fen
from engine_analysis.exceptions import InvalidPositionError
from engine_analysis.tracing import trace_stage
from engine_analysis.types import (CandidateMove, FEN, PositionAnalysis, PositionDescriptor,
                                   SearchResult)
from engine_analysis.utils import metrics

if TYPE_CHECKING:
    from engine_analysis.config.settings import AnalysisSettings
    from engine_analysis.services.engine_pool import EnginePool

logger = structlog.get_logger(__name__)


class PositionAnalyzer:
    """Runs single-position evaluations through leased engine sessions."""

    def __init__(self, engine_pool: "EnginePool", settings: "AnalysisSettings"):
        """
        Initializes the PositionAnalyzer.

        Args:
            engine_pool: The pool to lease sessions from.
            settings: Depth, candidate count and timeout configuration.
        """
        self._pool = engine_pool
        self._settings = settings

    @trace_stage
    async def analyze(self, fen: FEN, depth: Optional[int] = None) -> PositionAnalysis:
        """
        Evaluates a position to the given depth.

        The session is released before this method returns or raises, whatever
        happened during the search.

        Raises:
            InvalidPositionError: If the FEN is rejected or the depth is below 1
                (before any session is leased).
            AnalysisTimeout: If the search does not finish within `position_timeout_s`.
            EngineCrashError: If the engine died during the search.
            EngineUnavailableError: If no session could be leased.
        """
        fen = validate_fen(fen)
        if depth is None:
            depth = self._settings.depth
        elif depth < 1:
            raise InvalidPositionError(f"Search depth must be at least 1, got {depth}.")
        descriptor = PositionDescriptor(fen=fen)

        with metrics.ANALYSIS_DURATION_SECONDS.labels(kind="position").time():
            async with self._pool.lease() as session:
                logger.debug("Analyzing position.", fen=fen, depth=depth, session=session.name)
                result = await run_search(
                    session, descriptor, lambda s: s.search_to_depth(depth), self._settings.position_timeout_s
                )

        analysis = self._to_analysis(result)
        logger.info(
            "Position analyzed.",
            fen=fen, evaluation=analysis.evaluation_pawns,
            best_move=analysis.best_move, depth_reached=analysis.depth_reached,
        )
        return analysis

    def _to_analysis(self, result: SearchResult) -> PositionAnalysis:
        """Keeps the top-K ranked lines, each with a short continuation."""
        length = self._settings.continuation_length
        candidates = [
            CandidateMove(
                move=line.pv[0],
                evaluation_pawns=line.evaluation_pawns,
                continuation=" ".join(line.pv[:length]),
            )
            for line in result.lines if line.pv
        ]
        return PositionAnalysis(
            evaluation_pawns=result.evaluation_pawns,
            best_moves=tuple(candidates[: self._settings.multipv]),
            depth_reached=result.depth_reached,
            best_move=result.best_move,
        )
