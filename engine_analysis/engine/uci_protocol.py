# engine_analysis/engine/uci_protocol.py
"""
Pure functions for speaking UCI: building command lines and parsing response lines.

Nothing here touches a process. `UciSession` feeds every stdout line through
`parse_line` and writes the strings produced by the `*_command` builders, which
keeps the text format testable on its own.
"""

from typing import Any, Final, List, Optional

import structlog

from engine_analysis.types import (BestMoveEvent, EngineEvent, IdentityEvent, InfoEvent,
                                   PositionDescriptor, ReadyEvent, UciOkEvent)

logger = structlog.get_logger(__name__)

# Used to scale mate scores so that a faster mate is worth more than a slower one.
MATE_ADJUSTMENT_FACTOR: Final[int] = 10

NO_MOVE: Final[str] = "(none)"

# `info` fields that carry exactly one value we do not need.
_SINGLE_VALUE_FIELDS: Final = frozenset({
    "time", "nodes", "currmove", "currmovenumber", "hashfull",
    "nps", "tbhits", "sbhits", "cpuload",
})
# `info` fields that consume the rest of the line.
_TRAILING_FIELDS: Final = frozenset({"string", "refutation", "currline"})


# --- Commands ---

def setoption_command(name: str, value: Any) -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return f"setoption name {name} value {value}"

def position_command(descriptor: PositionDescriptor) -> str:
    base = f"position fen {descriptor.fen}" if descriptor.fen else "position startpos"
    if descriptor.moves:
        return f"{base} moves {' '.join(descriptor.moves)}"
    return base

def go_depth_command(depth: int) -> str:
    if depth < 1:
        raise ValueError(f"Search depth must be positive, got {depth}.")
    return f"go depth {depth}"

def go_movetime_command(duration_ms: int) -> str:
    if duration_ms < 1:
        raise ValueError(f"Search duration must be positive, got {duration_ms}ms.")
    return f"go movetime {duration_ms}"


# --- Parsing ---

def parse_line(line: str) -> Optional[EngineEvent]:
    """
    Parses one line of engine output into a structured event.

    Returns None for blank lines, lines we have no use for (`option`,
    `info string`, copyright banners...) and malformed lines.
    """
    tokens = line.split()
    if not tokens:
        return None

    head = tokens[0]
    if head == "readyok":
        return ReadyEvent()
    if head == "uciok":
        return UciOkEvent()
    if head == "id" and len(tokens) > 2 and tokens[1] == "name":
        return IdentityEvent(name=" ".join(tokens[2:]))
    if head == "bestmove":
        return _parse_bestmove(tokens)
    if head == "info":
        try:
            return _parse_info(tokens[1:])
        except (ValueError, IndexError):
            logger.debug("Ignoring malformed info line.", line=line)
            return None
    return None

def _parse_bestmove(tokens: List[str]) -> BestMoveEvent:
    move = tokens[1] if len(tokens) > 1 else NO_MOVE
    ponder = None
    if len(tokens) > 3 and tokens[2] == "ponder":
        ponder = tokens[3]
    return BestMoveEvent(move=move, ponder=ponder)

def _parse_info(tokens: List[str]) -> Optional[InfoEvent]:
    """Walks the key/value pairs of an `info` line. Raises ValueError on bad numbers."""
    fields: dict = {}
    i = 0
    while i < len(tokens):
        key = tokens[i]
        if key in ("depth", "seldepth", "multipv"):
            fields[key] = int(tokens[i + 1])
            i += 2
        elif key == "score":
            kind, value = tokens[i + 1], int(tokens[i + 2])
            if kind == "cp":
                fields["score_cp"] = value
            elif kind == "mate":
                fields["score_mate"] = value
            i += 3
            if i < len(tokens) and tokens[i] in ("lowerbound", "upperbound"):
                fields["bound"] = tokens[i]
                i += 1
        elif key == "wdl":
            i += 4
        elif key == "pv":
            fields["pv"] = tuple(tokens[i + 1:])
            break
        elif key in _TRAILING_FIELDS:
            if key == "string" and not fields:
                return None
            break
        elif key in _SINGLE_VALUE_FIELDS:
            i += 2
        else:
            # Unknown token: skip it alone and keep scanning.
            i += 1

    if not fields:
        return None
    return InfoEvent(**fields)


# --- Score normalization ---

def score_to_pawns(
    score_cp: Optional[int],
    score_mate: Optional[int],
    white_to_move: bool,
    mate_score_cp: int,
) -> Optional[float]:
    """
    Converts a side-to-move relative UCI score into white-perspective pawns.

    A mate in n is worth `mate_score_cp - |n| * 10` centipawns to the side
    delivering it. `mate 0` means the side to move has been mated.
    """
    if score_mate is not None:
        sign = 1 if score_mate > 0 else -1
        centipawns = sign * float(mate_score_cp - abs(score_mate) * MATE_ADJUSTMENT_FACTOR)
    elif score_cp is not None:
        centipawns = float(score_cp)
    else:
        return None

    if not white_to_move and centipawns:
        centipawns = -centipawns
    return centipawns / 100.0
