# engine_analysis/core/move_classifier.py
"""
Contains the move-quality classification rules.

These are pure functions: given the engine's best evaluation and the
evaluation actually reached, compute the centipawn loss and map it onto a
`MoveCategory` using ordered thresholds.
"""
from typing import Optional, TYPE_CHECKING

from engine_analysis.types import MoveCategory

if TYPE_CHECKING:
    from engine_analysis.config.settings import ClassificationThresholdsModel


def centipawn_loss(best_evaluation_pawns: float, actual_evaluation_pawns: float) -> int:
    """
    Centipawn loss of a move, both evaluations in the mover's perspective.

    Never negative: a move the engine underrated counts as a loss of 0.
    """
    loss = round((best_evaluation_pawns - actual_evaluation_pawns) * 100)
    return max(0, int(loss))


def classify_move(
    cpl: int, thresholds: Optional["ClassificationThresholdsModel"] = None
) -> MoveCategory:
    """
    Maps a centipawn loss onto a category by descending severity; first match wins.

    With default thresholds: >=300 blunder, >=100 mistake, >=50 inaccuracy,
    <=10 best, anything else good.
    """
    if thresholds is None:
        from engine_analysis.config.settings import ClassificationThresholdsModel
        thresholds = ClassificationThresholdsModel()

    if cpl >= thresholds.blunder:
        return MoveCategory.BLUNDER
    if cpl >= thresholds.mistake:
        return MoveCategory.MISTAKE
    if cpl >= thresholds.inaccuracy:
        return MoveCategory.INACCURACY
    if cpl <= thresholds.best_move:
        return MoveCategory.BEST
    return MoveCategory.GOOD
