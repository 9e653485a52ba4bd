# tests/core/test_chess_utils.py
import pytest

from engine_analysis.core.chess_utils import normalize_moves, uci_to_san, validate_fen
from engine_analysis.exceptions import InvalidPositionError
from engine_analysis.types import PositionDescriptor

START_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"

def test_validate_fen_accepts_legal_position():
    assert validate_fen(START_FEN) == START_FEN
    assert validate_fen(f"  {START_FEN}  ") == START_FEN

@pytest.mark.parametrize("fen", [
    "",
    "not a fen",
    "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP w KQkq - 0 1",  # missing a rank
    "8/8/8/8/8/8/8/8 w - - 0 1",  # no kings
    "4k3/8/8/8/8/8/8/4R1K1 w - - 0 1",  # side not to move is in check
    "4k3/8/8/8/8/8/8/P3K3 w - - 0 1",  # pawn on the back rank
])
def test_validate_fen_rejects_bad_input(fen):
    with pytest.raises(InvalidPositionError):
        validate_fen(fen)

def test_normalize_moves_accepts_san_and_uci():
    assert normalize_moves(["e4", "e7e5", "Nf3", "b8c6", "Bb5"]) == ["e2e4", "e7e5", "g1f3", "b8c6", "f1b5"]

def test_normalize_moves_castling():
    moves = ["e4", "e5", "Nf3", "Nc6", "Bc4", "Bc5", "O-O"]
    assert normalize_moves(moves)[-1] == "e1g1"

def test_normalize_moves_from_custom_start():
    fen = "4k3/8/8/8/8/8/4P3/4K3 w - - 0 1"
    assert normalize_moves(["e4", "Kd7"], start_fen=fen) == ["e2e4", "e8d7"]

def test_normalize_moves_reports_the_bad_ply():
    with pytest.raises(InvalidPositionError, match="ply 3"):
        normalize_moves(["e4", "e5", "Ke3"])

def test_normalize_moves_rejects_garbage():
    with pytest.raises(InvalidPositionError):
        normalize_moves(["e4", ""])
    with pytest.raises(InvalidPositionError):
        normalize_moves(["zz99"])

def test_normalize_moves_empty_game():
    assert normalize_moves([]) == []

def test_uci_to_san():
    assert uci_to_san(PositionDescriptor(), "g1f3") == "Nf3"
    assert uci_to_san(PositionDescriptor(moves=("e2e4",)), "e7e5") == "e5"

def test_uci_to_san_falls_back_to_uci_for_inapplicable_moves():
    assert uci_to_san(PositionDescriptor(), "e3e4") == "e3e4"
    assert uci_to_san(PositionDescriptor(), None) is None
