# engine_analysis/core/chess_utils.py
"""
Provides pure, stateless helpers for validating and normalizing chess input.

Move legality and notation are delegated to `python-chess`; this module only
adapts its results to our types and turns its errors into
`InvalidPositionError`, so bad input is rejected before any engine is leased.
"""

from typing import List, Optional, Sequence

import chess

from engine_analysis.exceptions import InvalidPositionError
from engine_analysis.types import FEN, PositionDescriptor, UciMove


def validate_fen(fen: FEN) -> FEN:
    """
    Checks that a FEN string describes a legal, playable position.

    Returns:
        The FEN, normalized by `python-chess`.

    Raises:
        InvalidPositionError: If the string is malformed or the position is illegal.
    """
    if not isinstance(fen, str) or not fen.strip():
        raise InvalidPositionError("Position descriptor must be a non-empty FEN string.")
    try:
        board = chess.Board(fen.strip())
    except ValueError as e:
        raise InvalidPositionError(f"Malformed FEN '{fen}': {e}") from e
    if not board.is_valid():
        raise InvalidPositionError(f"Illegal position '{fen}': {board.status()!r}")
    return board.fen()


def board_for(start_fen: Optional[FEN]) -> chess.Board:
    return chess.Board(validate_fen(start_fen)) if start_fen else chess.Board()


def normalize_moves(moves: Sequence[str], start_fen: Optional[FEN] = None) -> List[UciMove]:
    """
    Converts a move list in SAN or UCI notation into legal UCI moves.

    Each token is tried as SAN first (`e4`, `Nf3`, `O-O`), then as UCI
    (`e2e4`), and must be legal in the position reached so far.

    Raises:
        InvalidPositionError: On the first unparseable or illegal move.
    """
    board = board_for(start_fen)
    uci_moves: List[UciMove] = []
    for ply, token in enumerate(moves, start=1):
        move = _parse_move(board, token)
        if move is None:
            raise InvalidPositionError(f"Illegal or unreadable move '{token}' at ply {ply}.")
        board.push(move)
        uci_moves.append(move.uci())
    return uci_moves


def _parse_move(board: chess.Board, token: str) -> Optional[chess.Move]:
    token = token.strip() if isinstance(token, str) else ""
    if not token:
        return None
    try:
        return board.parse_san(token)
    except ValueError:
        pass
    try:
        move = chess.Move.from_uci(token)
    except ValueError:
        return None
    return move if board.is_legal(move) else None


def uci_to_san(descriptor: PositionDescriptor, move: Optional[UciMove]) -> Optional[str]:
    """
    Renders an engine move in SAN for the given position.

    Falls back to the raw UCI string if the move does not apply; returns None
    for a missing move.
    """
    if move is None:
        return None
    try:
        board = board_for(descriptor.fen)
        for played in descriptor.moves:
            board.push_uci(played)
        return board.san(chess.Move.from_uci(move))
    except (ValueError, AssertionError, InvalidPositionError):
        return move
