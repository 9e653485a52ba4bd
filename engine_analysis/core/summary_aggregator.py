# engine_analysis/core/summary_aggregator.py
"""
Provides a pure function to build the game-level result from per-move records.

Everything in a `GameAnalysis` is derived from its `MoveRecord` list: the
filtered error views, the average centipawn loss and the 0-100 quality score.
"""

from typing import Sequence

from engine_analysis.types import GameAnalysis, MoveCategory, MoveRecord

MAX_GAME_QUALITY = 100.0


def game_quality(average_centipawn_loss: float) -> float:
    """0 average loss is a perfect 100; 100 or more average loss bottoms out at 0."""
    return max(0.0, min(MAX_GAME_QUALITY, MAX_GAME_QUALITY - average_centipawn_loss))


def aggregate_game_analysis(moves: Sequence[MoveRecord]) -> GameAnalysis:
    """
    Aggregates per-move records into a `GameAnalysis`.

    A game without moves has an average loss of 0 and therefore a quality of
    100; callers that need to tell this apart check `move_count`.
    """
    records = list(moves)
    total_loss = sum(record.centipawn_loss for record in records)
    average = total_loss / len(records) if records else 0.0

    return GameAnalysis(
        moves=records,
        blunders=[r for r in records if r.category is MoveCategory.BLUNDER],
        mistakes=[r for r in records if r.category is MoveCategory.MISTAKE],
        inaccuracies=[r for r in records if r.category is MoveCategory.INACCURACY],
        average_centipawn_loss=average,
        game_quality=game_quality(average),
    )
