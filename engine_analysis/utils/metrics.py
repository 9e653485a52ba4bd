"""
Centralized Prometheus metrics definitions for the engine analysis core.

This module uses the prometheus-client library to define all metrics exposed
for monitoring. Grouping them here provides a single, clear overview of the
instrumentation points.
"""
from prometheus_client import Counter, Gauge, Histogram

# A common prefix for all application-specific metrics.
PREFIX = "engine_analysis"

# --- Engine & Pool Metrics ---

ENGINE_SESSIONS_STARTED_TOTAL = Counter(
    f"{PREFIX}_engine_sessions_started_total",
    "Total number of engine sessions that completed the UCI handshake.",
)

ENGINE_SESSIONS_FAILED_TOTAL = Counter(
    f"{PREFIX}_engine_sessions_failed_total",
    "Total number of engine sessions that died without being asked to quit.",
)

ENGINE_SESSIONS_LEASED = Gauge(
    f"{PREFIX}_engine_sessions_leased",
    "Current number of engine sessions leased to callers.",
)

ENGINE_SESSIONS_REPLACED_TOTAL = Counter(
    f"{PREFIX}_engine_sessions_replaced_total",
    "Total number of dead engine sessions replaced by the pool.",
    ["outcome"],  # e.g., outcome="replaced", "gave_up"
)

# --- Analysis Metrics ---

ANALYSIS_DURATION_SECONDS = Histogram(
    f"{PREFIX}_analysis_duration_seconds",
    "Histogram of the time taken by one position or game analysis.",
    ["kind"],
    buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 120, 300, float("inf"))
)

# --- Job Metrics ---

JOBS_SUBMITTED_TOTAL = Counter(
    f"{PREFIX}_jobs_submitted_total",
    "Total number of analysis jobs submitted.",
    ["kind"],
)

JOBS_COMPLETED_TOTAL = Counter(
    f"{PREFIX}_jobs_completed_total",
    "Total number of analysis jobs that reached a final state.",
    ["kind", "outcome"],  # e.g., outcome="succeeded", "failed", "cancelled"
)

JOB_RETRIES_TOTAL = Counter(
    f"{PREFIX}_job_retries_total",
    "Total number of job attempts that were rescheduled after a failure.",
    ["kind", "error_type"],
)

JOB_QUEUE_DEPTH = Gauge(
    f"{PREFIX}_job_queue_depth",
    "Current number of jobs waiting in the priority queue.",
)

# --- Persistence Metrics ---

DB_TRANSIENT_ERRORS_TOTAL = Counter(
    f"{PREFIX}_db_transient_errors_total",
    "Total number of transient database errors that triggered a retry.",
    ["db_type"]
)
