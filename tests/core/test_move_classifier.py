# tests/core/test_move_classifier.py
import pytest
from pydantic import ValidationError

from engine_analysis.config.settings import ClassificationThresholdsModel
from engine_analysis.core.move_classifier import centipawn_loss, classify_move
from engine_analysis.types import MoveCategory

def test_centipawn_loss():
    assert centipawn_loss(0.5, -3.0) == 350
    assert centipawn_loss(0.25, 0.25) == 0
    assert centipawn_loss(1.234, 1.0) == 23

def test_centipawn_loss_is_never_negative():
    # The move turned out better than the engine's own pick.
    assert centipawn_loss(0.1, 0.6) == 0

@pytest.mark.parametrize("cpl, expected", [
    (0, MoveCategory.BEST),
    (10, MoveCategory.BEST),
    (11, MoveCategory.GOOD),
    (49, MoveCategory.GOOD),
    (50, MoveCategory.INACCURACY),
    (99, MoveCategory.INACCURACY),
    (100, MoveCategory.MISTAKE),
    (299, MoveCategory.MISTAKE),
    (300, MoveCategory.BLUNDER),
    (2500, MoveCategory.BLUNDER),
])
def test_classify_move_default_thresholds(cpl, expected):
    assert classify_move(cpl) is expected

def test_classify_move_custom_thresholds():
    # Arrange
    thresholds = ClassificationThresholdsModel(best_move=5, inaccuracy=30, mistake=80, blunder=200)

    # Act / Assert
    assert classify_move(6, thresholds) is MoveCategory.GOOD
    assert classify_move(30, thresholds) is MoveCategory.INACCURACY
    assert classify_move(200, thresholds) is MoveCategory.BLUNDER

def test_thresholds_must_be_ascending():
    with pytest.raises(ValidationError):
        ClassificationThresholdsModel(best_move=10, inaccuracy=100, mistake=50, blunder=300)
