# engine_analysis/persistence/sqlite_result_store.py
"""
Provides a concrete implementation of the `ResultSink` protocol using SQLite.

Finished analyses are stored as JSON payloads keyed by job id, and permanent
job failures are recorded alongside them so that a caller can find out what
happened to any job it submitted.
"""

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Type, Union

import aiosqlite
import structlog

from engine_analysis.exceptions import PersistenceError
from engine_analysis.types import FEN, GameAnalysis, JobKind, PositionAnalysis
from engine_analysis.utils.retry import retry_with_backoff

logger = structlog.get_logger(__name__)

# Exceptions that are considered transient and can be retried.
# This primarily targets "database is locked" errors in SQLite under WAL mode.
RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    aiosqlite.OperationalError,
)

CREATE_RESULTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS analysis_results (
    job_id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    subject TEXT,
    result_json TEXT NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_FAILURES_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS job_failures (
    job_id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    error TEXT NOT NULL,
    failed_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""


class SqliteResultStore:
    """
    A `ResultSink` backed by a local SQLite database.

    This class is an async context manager, managing its own database connection
    lifecycle.
    """

    def __init__(self, db_path: Union[str, Path]):
        self._db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None

    async def __aenter__(self) -> "SqliteResultStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def connect(self) -> None:
        """Opens the connection and creates the schema."""
        if self._connection is not None:
            return
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(self._db_path, timeout=10.0)
            # WAL lets readers proceed while a job result is being written.
            await self._connection.execute("PRAGMA journal_mode=WAL;")
            await self._connection.execute(CREATE_RESULTS_TABLE_SQL)
            await self._connection.execute(CREATE_FAILURES_TABLE_SQL)
            await self._connection.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to initialize result store at {self._db_path}: {e}") from e
        logger.info("Result store connected.", db_path=str(self._db_path))

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise PersistenceError("Result store is not connected.")
        return self._connection

    # --- ResultSink ---

    async def store_position_analysis(self, job_id: str, fen: FEN, analysis: PositionAnalysis) -> None:
        await self._store_result(job_id, JobKind.POSITION, fen, asdict(analysis))

    async def store_game_analysis(self, job_id: str, game_id: Optional[str], analysis: GameAnalysis) -> None:
        payload = asdict(analysis)
        payload["move_count"] = analysis.move_count
        await self._store_result(job_id, JobKind.GAME, game_id, payload)

    async def record_failure(self, job_id: str, kind: JobKind, error: str) -> None:
        query = "INSERT OR REPLACE INTO job_failures (job_id, kind, error) VALUES (?, ?, ?)"
        await self._write(query, (job_id, JobKind(kind).value, error))

    # --- Reads ---

    async def get_result(self, job_id: str) -> Optional[Dict[str, Any]]:
        """
        Returns the stored result of a job as a plain dictionary, or None.

        Raises:
            PersistenceError: If the row cannot be read or decoded.
        """
        query = "SELECT job_id, kind, subject, result_json, created_at FROM analysis_results WHERE job_id = ?"
        row = await self._fetch_one(query, (job_id,))
        if row is None:
            return None
        try:
            result = json.loads(row[3])
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Corrupt result payload for job {job_id}: {e}") from e
        return {"job_id": row[0], "kind": row[1], "subject": row[2], "result": result, "created_at": row[4]}

    async def get_failure(self, job_id: str) -> Optional[Dict[str, Any]]:
        query = "SELECT job_id, kind, error, failed_at FROM job_failures WHERE job_id = ?"
        row = await self._fetch_one(query, (job_id,))
        if row is None:
            return None
        return {"job_id": row[0], "kind": row[1], "error": row[2], "failed_at": row[3]}

    # --- Internals ---

    async def _store_result(self, job_id: str, kind: JobKind, subject: Optional[str], payload: Dict[str, Any]) -> None:
        query = "INSERT OR REPLACE INTO analysis_results (job_id, kind, subject, result_json) VALUES (?, ?, ?, ?)"
        await self._write(query, (job_id, kind.value, subject, json.dumps(payload)))
        logger.debug("Stored job result.", job_id=job_id, kind=kind.value)

    async def _write(self, query: str, params: Sequence[Any]) -> None:
        try:
            await self._write_with_retry(query, params)
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to write to result store: {e}") from e

    @retry_with_backoff(exceptions_to_catch=RETRYABLE_EXCEPTIONS, db_type="results")
    async def _write_with_retry(self, query: str, params: Sequence[Any]) -> None:
        conn = self._ensure_connected()
        try:
            await conn.execute(query, params)
            await conn.commit()
        except aiosqlite.Error:
            await conn.rollback()
            raise

    async def _fetch_one(self, query: str, params: Sequence[Any]) -> Optional[Tuple[Any, ...]]:
        try:
            return await self._fetch_one_with_retry(query, params)
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to read from result store: {e}") from e

    @retry_with_backoff(exceptions_to_catch=RETRYABLE_EXCEPTIONS, db_type="results")
    async def _fetch_one_with_retry(self, query: str, params: Sequence[Any]) -> Optional[Tuple[Any, ...]]:
        conn = self._ensure_connected()
        async with conn.execute(query, params) as cursor:
            return await cursor.fetchone()
