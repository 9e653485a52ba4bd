# engine_analysis/orchestration/orchestrator.py
"""
The job scheduling engine of the application.

The `JobOrchestrator` owns a priority queue of `AnalysisJob`s and a fixed set of
worker tasks. Each worker dequeues the most urgent job, runs one attempt of it
through the matching analyzer, and then either stores the result, schedules a
delayed retry, or fails the job permanently.
"""

import asyncio
import itertools
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union, TYPE_CHECKING

import structlog

from engine_analysis.exceptions import (AnalysisUnavailableError, InvalidPositionError, JobError,
                                        JobRetryExhausted, PersistenceError)
from engine_analysis.tracing import CorrelationID
from engine_analysis.types import (AnalysisJob, FEN, GameAnalysis, JobKind, JobStatus,
                                   PositionAnalysis, ResultSink)
from engine_analysis.utils import metrics
from engine_analysis.utils.retry import delay_for_policy

if TYPE_CHECKING:
    from engine_analysis.analyzers.game_analyzer import GameAnalyzer
    from engine_analysis.analyzers.position_analyzer import PositionAnalyzer
    from engine_analysis.config.settings import JobSettings, RetryPolicyModel

logger = structlog.get_logger(__name__)

QueueEntry = Tuple[int, int, AnalysisJob]


class JobOrchestrator:
    """Schedules, runs and retries analysis jobs on a pool of workers."""

    def __init__(
        self,
        settings: "JobSettings",
        position_analyzer: "PositionAnalyzer",
        game_analyzer: "GameAnalyzer",
        result_sink: Optional[ResultSink] = None,
    ):
        self._settings = settings
        self._position_analyzer = position_analyzer
        self._game_analyzer = game_analyzer
        self._sink = result_sink
        self._queue: "asyncio.PriorityQueue[QueueEntry]" = asyncio.PriorityQueue()
        self._sequence = itertools.count()
        self._jobs: Dict[str, AnalysisJob] = {}
        self._running: Dict[str, asyncio.Task] = {}
        self._retry_handles: Dict[str, asyncio.TimerHandle] = {}
        self._workers: List[asyncio.Task] = []
        self._shutdown_event = asyncio.Event()
        self._run_id = uuid.uuid4().hex[:8]

    @property
    def pending_count(self) -> int:
        """Jobs that are queued or waiting for a retry."""
        return sum(1 for job in self._jobs.values() if job.status in (JobStatus.PENDING, JobStatus.RETRY_WAIT))

    @property
    def running_count(self) -> int:
        return len(self._running)

    # --- Lifecycle ---

    async def start(self) -> "JobOrchestrator":
        if self._workers:
            return self
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"job-worker-{index}")
            for index in range(self._settings.worker_count)
        ]
        logger.info("Job orchestrator started.", workers=len(self._workers), run_id=self._run_id)
        return self

    async def __aenter__(self) -> "JobOrchestrator":
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    async def shutdown(self) -> None:
        """
        Stops all workers. Running attempts are interrupted and every unfinished
        job is cancelled.
        """
        if self._shutdown_event.is_set():
            return
        self._shutdown_event.set()
        logger.info("Shutting down job orchestrator.", pending=self.pending_count, running=self.running_count)

        for job_id, task in list(self._running.items()):
            job = self._jobs.get(job_id)
            if job is not None and not task.done():
                job.status = JobStatus.CANCELLED
                task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        for handle in self._retry_handles.values():
            handle.cancel()
        self._retry_handles.clear()
        for job in list(self._jobs.values()):
            if not job.is_finished:
                job.status = JobStatus.CANCELLED
                self._finalize_cancelled(job)
        while not self._queue.empty():
            self._queue.get_nowait()
        metrics.JOB_QUEUE_DEPTH.set(0)
        logger.info("Job orchestrator shut down.")

    # --- Submission ---

    def submit(
        self,
        kind: Union[JobKind, str],
        payload: Mapping[str, Any],
        priority: Optional[int] = None,
        retry_policy: Optional["RetryPolicyModel"] = None,
    ) -> AnalysisJob:
        """
        Queues a new job and returns it. Await `wait(job)` for its outcome.

        Raises:
            JobError: If the orchestrator has been shut down.
            ValueError: If the payload lacks the fields its kind requires.
        """
        if self._shutdown_event.is_set():
            raise JobError("Cannot submit jobs after the orchestrator has shut down.")
        kind = JobKind(kind)
        payload = dict(payload)
        self._validate_payload(kind, payload)

        policy = retry_policy or self._default_retry_policy(kind)
        job = AnalysisJob(
            id=uuid.uuid4().hex,
            kind=kind,
            payload=payload,
            priority=self._default_priority(kind, payload) if priority is None else priority,
            attempts_remaining=policy.attempts,
            retry_policy=policy,
            sequence=next(self._sequence),
        )
        job.outcome = asyncio.get_running_loop().create_future()
        self._jobs[job.id] = job
        self._enqueue(job)

        metrics.JOBS_SUBMITTED_TOTAL.labels(kind=kind.value).inc()
        logger.info("Job submitted.", job_id=job.id, kind=kind.value, priority=job.priority, attempts=policy.attempts)
        return job

    def submit_hint(self, fen: FEN, depth: Optional[int] = None) -> AnalysisJob:
        payload: Dict[str, Any] = {"fen": fen}
        if depth is not None:
            payload["depth"] = depth
        return self.submit(JobKind.POSITION, payload)

    def submit_game(
        self, moves: Sequence[str], game_id: Optional[str] = None, fen: Optional[FEN] = None
    ) -> AnalysisJob:
        payload: Dict[str, Any] = {"moves": list(moves), "game_id": game_id}
        if fen is not None:
            payload["fen"] = fen
        return self.submit(JobKind.GAME, payload)

    async def wait(self, job: Union[AnalysisJob, str]) -> Union[PositionAnalysis, GameAnalysis]:
        """
        Awaits a job's outcome.

        Cancelling the caller does not cancel the job; use `cancel` for that.

        Raises:
            JobRetryExhausted: If every attempt failed.
            InvalidPositionError: If the job's input was rejected.
            asyncio.CancelledError: If the job was cancelled.
        """
        if isinstance(job, str):
            found = self._jobs.get(job)
            if found is None:
                raise JobError(f"Unknown or already finished job: {job}")
            job = found
        return await asyncio.shield(job.outcome)

    async def get_position_analysis(self, fen: FEN, depth: Optional[int] = None) -> PositionAnalysis:
        """
        Submits a hint job and waits for it.

        Raises:
            AnalysisUnavailableError: If the hint could not be produced.
            InvalidPositionError: If the FEN is rejected.
        """
        job = self.submit_hint(fen, depth)
        try:
            return await self.wait(job)
        except JobRetryExhausted as e:
            raise AnalysisUnavailableError(f"Analysis is unavailable for this position: {e.last_error}") from e

    def cancel(self, job_id: str) -> bool:
        """
        Cancels a queued job or interrupts a running one.

        Interrupting a running job stops its engine search; the session is
        released by the analyzer's lease. Returns False if the job is unknown
        or already finished.
        """
        job = self._jobs.get(job_id)
        if job is None or job.is_finished:
            return False

        task = self._running.get(job_id)
        if task is not None:
            if task.done():
                return False
            job.status = JobStatus.CANCELLED
            task.cancel()
            logger.info("Interrupting running job.", job_id=job_id)
            return True

        handle = self._retry_handles.pop(job_id, None)
        if handle is not None:
            handle.cancel()
        job.status = JobStatus.CANCELLED
        self._finalize_cancelled(job)
        return True

    # --- Scheduling internals ---

    def _validate_payload(self, kind: JobKind, payload: Dict[str, Any]) -> None:
        if kind is JobKind.POSITION and not payload.get("fen"):
            raise ValueError("Position jobs require a 'fen' in their payload.")
        if kind is JobKind.GAME and not isinstance(payload.get("moves"), (list, tuple)):
            raise ValueError("Game jobs require a 'moves' list in their payload.")

    def _default_priority(self, kind: JobKind, payload: Mapping[str, Any]) -> int:
        if kind is JobKind.POSITION:
            return self._settings.hint_priority
        if len(payload["moves"]) > self._settings.long_game_threshold:
            return self._settings.long_game_priority
        return self._settings.game_priority

    def _default_retry_policy(self, kind: JobKind) -> "RetryPolicyModel":
        return self._settings.hint_retry if kind is JobKind.POSITION else self._settings.game_retry

    def _enqueue(self, job: AnalysisJob) -> None:
        self._queue.put_nowait((job.priority, job.sequence, job))
        metrics.JOB_QUEUE_DEPTH.set(self._queue.qsize())

    def _requeue(self, job: AnalysisJob) -> None:
        self._retry_handles.pop(job.id, None)
        if job.status is not JobStatus.RETRY_WAIT or self._shutdown_event.is_set():
            return
        job.status = JobStatus.PENDING
        self._enqueue(job)
        logger.debug("Job requeued for retry.", job_id=job.id, attempt=job.attempts_made + 1)

    async def _worker(self, index: int) -> None:
        while not self._shutdown_event.is_set():
            try:
                _, _, job = await asyncio.wait_for(self._queue.get(), timeout=self._settings.dequeue_timeout_s)
            except asyncio.TimeoutError:
                # Expected while the queue is empty; re-check the shutdown flag.
                continue
            metrics.JOB_QUEUE_DEPTH.set(self._queue.qsize())
            if job.status is not JobStatus.PENDING:
                # Cancelled while queued.
                continue
            await self._run_attempt(job)
        logger.debug("Job worker exiting.", worker=index)

    async def _run_attempt(self, job: AnalysisJob) -> None:
        job.status = JobStatus.RUNNING
        job.attempts_made += 1
        job.attempts_remaining -= 1
        cid = CorrelationID(run_id=self._run_id, job_id=job.id, kind=job.kind.value, attempt=job.attempts_made)
        structlog.contextvars.bind_contextvars(correlation_id=cid.short_id)
        try:
            task = asyncio.create_task(self._execute(job))
            self._running[job.id] = task
            try:
                result = await task
            except asyncio.CancelledError:
                if job.status is not JobStatus.CANCELLED:
                    raise
                self._finalize_cancelled(job)
            except Exception as e:
                if job.status is JobStatus.CANCELLED:
                    logger.info("Cancelled job ended with an error.", job_id=job.id, error=str(e))
                    self._finalize_cancelled(job)
                elif isinstance(e, InvalidPositionError):
                    logger.warning("Job input rejected; not retrying.", job_id=job.id, error=str(e))
                    await self._fail(job, e)
                else:
                    await self._handle_attempt_failure(job, e)
            else:
                await self._succeed(job, result)
        finally:
            self._running.pop(job.id, None)
            structlog.contextvars.clear_contextvars()

    async def _execute(self, job: AnalysisJob) -> Union[PositionAnalysis, GameAnalysis]:
        logger.info("Job attempt started.", job_id=job.id, attempt=job.attempts_made)
        payload = job.payload
        if job.kind is JobKind.POSITION:
            return await self._position_analyzer.analyze(payload["fen"], payload.get("depth"))
        return await self._game_analyzer.analyze(payload["moves"], payload.get("fen"))

    async def _handle_attempt_failure(self, job: AnalysisJob, error: Exception) -> None:
        job.last_error = error
        error_type = type(error).__name__
        if job.attempts_remaining <= 0:
            logger.error("Job failed after max attempts.", job_id=job.id, attempts=job.attempts_made, error=str(error))
            await self._fail(job, JobRetryExhausted(job.id, job.attempts_made, error))
            return

        delay = delay_for_policy(job.retry_policy, job.attempts_made)
        job.status = JobStatus.RETRY_WAIT
        metrics.JOB_RETRIES_TOTAL.labels(kind=job.kind.value, error_type=error_type).inc()
        logger.warning(
            "Job attempt failed, scheduling retry.",
            job_id=job.id, attempt=job.attempts_made, remaining=job.attempts_remaining,
            delay_s=round(delay, 3), error_type=error_type, error=str(error),
        )
        self._retry_handles[job.id] = asyncio.get_running_loop().call_later(delay, self._requeue, job)

    async def _succeed(self, job: AnalysisJob, result: Union[PositionAnalysis, GameAnalysis]) -> None:
        job.status = JobStatus.SUCCEEDED
        if self._sink is not None:
            try:
                if job.kind is JobKind.POSITION:
                    await self._sink.store_position_analysis(job.id, job.payload["fen"], result)
                else:
                    await self._sink.store_game_analysis(job.id, job.payload.get("game_id"), result)
            except PersistenceError as e:
                logger.error("Failed to store job result.", job_id=job.id, error=str(e))
        self._finish(job, "succeeded")
        if not job.outcome.done():
            job.outcome.set_result(result)
        logger.info("Job succeeded.", job_id=job.id, attempts=job.attempts_made)

    async def _fail(self, job: AnalysisJob, error: Exception) -> None:
        job.status = JobStatus.FAILED
        job.last_error = error
        if self._sink is not None:
            try:
                await self._sink.record_failure(job.id, job.kind, str(error))
            except PersistenceError as e:
                logger.error("Failed to record job failure.", job_id=job.id, error=str(e))
        self._finish(job, "failed")
        if not job.outcome.done():
            job.outcome.set_exception(error)

    def _finalize_cancelled(self, job: AnalysisJob) -> None:
        self._finish(job, "cancelled")
        if not job.outcome.done():
            job.outcome.cancel()
        logger.info("Job cancelled.", job_id=job.id)

    def _finish(self, job: AnalysisJob, outcome: str) -> None:
        self._jobs.pop(job.id, None)
        metrics.JOBS_COMPLETED_TOTAL.labels(kind=job.kind.value, outcome=outcome).inc()
