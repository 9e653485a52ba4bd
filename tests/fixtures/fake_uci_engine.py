#!/usr/bin/env python
# tests/fixtures/fake_uci_engine.py
"""
A scripted stand-in for a UCI engine, run as a real subprocess by the session tests.

    python fake_uci_engine.py [--mode MODE] [--score CP] [--mate N]

Modes:
    normal       answers every command immediately
    silent       never answers 'isready'
    crash_on_go  exits as soon as a search is requested
    hang         searches until told to 'stop'
    ignore_stop  searches forever, even after 'stop'
    ignore_quit  behaves normally but never exits on 'quit'
    no_score     reports no score at all and answers "bestmove (none)"
    bound_only   reports only an upperbound score before its best move
"""
import argparse
import sys

LINES = {
    1: "e2e4 e7e5 g1f3 b8c6 f1b5 a7a6",
    2: "d2d4 d7d5 c2c4 e7e6 b1c3 g8f6",
    3: "g1f3 g8f6 c2c4 e7e6 b1c3 d7d5",
}


def emit(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


def emit_search_info(score: int, mate, multipv: int) -> None:
    # A fail-high line first; sessions must not take it as the final score.
    emit("info depth 1 seldepth 1 multipv 1 score cp 999 lowerbound nodes 20 time 1 pv e2e4")
    for depth in (1, 2):
        for rank in range(1, min(multipv, len(LINES)) + 1):
            if mate is not None and rank == 1:
                score_text = f"mate {mate}"
            else:
                score_text = f"cp {score - (rank - 1) * 30}"
            emit(
                f"info depth {depth} seldepth {depth + 2} multipv {rank} score {score_text} "
                f"wdl 500 400 100 nodes {1000 * depth} nps 50000 time {20 * depth} pv {LINES[rank]}"
            )


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--mode", default="normal",
        choices=["normal", "silent", "crash_on_go", "hang", "ignore_stop", "ignore_quit", "no_score", "bound_only"],
    )
    parser.add_argument("--score", type=int, default=25)
    parser.add_argument("--mate", type=int, default=None)
    args = parser.parse_args()

    multipv = 1
    searching = False
    while True:
        raw = sys.stdin.readline()
        if not raw:
            return 0
        command = raw.strip()

        if command == "uci":
            emit("Fake engine for tests")
            emit("id name FakeFish 1.0")
            emit("id author engine-analysis tests")
            emit("option name MultiPV type spin default 1 min 1 max 500")
            emit("uciok")
        elif command.startswith("setoption name MultiPV value"):
            multipv = int(command.split()[-1])
        elif command == "isready":
            if args.mode != "silent":
                emit("readyok")
        elif command.startswith("go"):
            if args.mode == "crash_on_go":
                return 3
            emit("info string starting search")
            if args.mode == "no_score":
                emit("info depth 0")
                emit("bestmove (none)")
                continue
            if args.mode == "bound_only":
                emit(f"info depth 1 seldepth 1 score cp {args.score} upperbound nodes 20 time 1 pv e2e4")
                emit("bestmove e2e4")
                continue
            emit_search_info(args.score, args.mate, multipv)
            if args.mode in ("hang", "ignore_stop"):
                searching = True
                continue
            emit("bestmove e2e4 ponder e7e5")
        elif command == "stop":
            if searching and args.mode != "ignore_stop":
                searching = False
                emit("bestmove e2e4")
        elif command == "quit":
            if args.mode != "ignore_quit":
                return 0


if __name__ == "__main__":
    sys.exit(main())
