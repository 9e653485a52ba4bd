# engine_analysis/config/settings.py
"""
Configuration settings for the engine analysis core, powered by Pydantic.

This module centralizes all tunable parameters, default values, and configuration
schemas. Settings can be overridden from environment variables, e.g.
`ENGINE_ANALYSIS_ENGINE_POOL__POOL_SIZE=8`.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Nested Models for Configuration Schemas ---

class ClassificationThresholdsModel(BaseModel):
    """
    Centipawn Loss (CPL) thresholds for move classification.

    Checked in descending severity, first match wins: a loss at or above
    `blunder` is a blunder, at or above `mistake` a mistake, at or above
    `inaccuracy` an inaccuracy, at or below `best_move` the best move, and
    anything in between is a good move.
    """
    best_move: int = Field(10, description="Maximum CPL for a move to be classified as 'best'.")
    inaccuracy: int = Field(50, description="Minimum CPL for a move to be classified as an 'inaccuracy'.")
    mistake: int = Field(100, description="Minimum CPL for a move to be classified as a 'mistake'.")
    blunder: int = Field(300, description="Minimum CPL for a move to be classified as a 'blunder'.")

    @model_validator(mode='after')
    def validate_thresholds_are_sorted(self) -> 'ClassificationThresholdsModel':
        """Ensures that CPL thresholds are logically sorted in ascending order."""
        values = [self.best_move, self.inaccuracy, self.mistake, self.blunder]
        if not all(values[i] < values[i + 1] for i in range(len(values) - 1)):
            raise ValueError("Configuration error: Classification CPL thresholds must be strictly ascending.")
        return self

class AnalysisSettings(BaseModel):
    """Groups all settings related to position and game analysis."""
    depth: int = Field(20, description="Search depth for standalone position analysis.")
    multipv: int = Field(3, description="Number of candidate lines reported by position analysis.")
    move_time_ms: int = Field(1000, description="Search time per position during game analysis.")
    position_timeout_s: float = Field(30.0, description="Ceiling for a depth-bounded position search.")
    move_timeout_s: float = Field(10.0, description="Ceiling for each time-bounded search in a game walk.")
    continuation_length: int = Field(5, description="How many PV moves to keep as a candidate's continuation.")
    classification_thresholds: ClassificationThresholdsModel = Field(default_factory=ClassificationThresholdsModel)

class EngineSettings(BaseModel):
    """Configuration for a single engine process."""
    path: str = Field("stockfish", description="The engine executable.")
    args: List[str] = Field(default_factory=list, description="Extra command-line arguments for the executable.")
    threads: int = Field(2, description="Value for the UCI 'Threads' option.")
    hash_mb: int = Field(256, description="Value for the UCI 'Hash' option, in megabytes.")
    multipv: int = Field(3, description="Value for the UCI 'MultiPV' option. Follows `analysis.multipv` unless set.")
    options: Dict[str, Any] = Field(default_factory=dict, description="Additional UCI options set during the handshake.")
    mate_score_cp: int = Field(10000, description="The centipawn value assigned to a forced mate.")
    startup_timeout_s: float = Field(10.0, description="How long to wait for 'readyok' during the handshake.")
    stop_timeout_s: float = Field(2.0, description="How long to wait for 'bestmove' after sending 'stop'.")
    quit_grace_s: float = Field(2.0, description="How long to wait after 'quit' before killing the process.")

    def uci_options(self) -> Dict[str, Any]:
        """The options sent with `setoption` during the handshake, in order."""
        return {"Threads": self.threads, "Hash": self.hash_mb, "MultiPV": self.multipv, **self.options}

class RetryPolicyModel(BaseModel):
    """Retry budget and exponential backoff for one class of work."""
    attempts: int = Field(3, ge=1, description="Total attempts, including the first.")
    initial_backoff_s: float = Field(2.0, ge=0, description="Delay before the first retry.")
    max_backoff_s: float = Field(60.0, ge=0, description="Upper bound on any single delay.")
    multiplier: float = Field(2.0, ge=1, description="Growth factor between consecutive delays.")
    jitter_factor: float = Field(0.0, ge=0, le=1, description="Relative random spread applied to each delay.")

class EnginePoolSettings(BaseModel):
    """Configuration for the pool of engine sessions."""
    pool_size: int = Field(4, ge=1, description="The fixed number of engine sessions to maintain.")
    acquire_timeout_s: Optional[float] = Field(30.0, description="How long a caller may wait for a free session.")
    replacement: RetryPolicyModel = Field(
        default_factory=lambda: RetryPolicyModel(attempts=3, initial_backoff_s=1.0, max_backoff_s=10.0),
        description="Attempts and backoff for replacing a dead session.",
    )
    engine_config: EngineSettings = Field(default_factory=EngineSettings)

class JobSettings(BaseModel):
    """Scheduling policy for the job orchestrator."""
    worker_count: int = Field(4, ge=1, description="Number of concurrent job workers.")
    dequeue_timeout_s: float = Field(1.0, description="Poll interval of an idle worker.")
    hint_priority: int = Field(0, description="Priority of interactive position (hint) jobs.")
    long_game_priority: int = Field(1, description="Priority of game jobs longer than `long_game_threshold` plies.")
    game_priority: int = Field(2, description="Priority of all other game jobs.")
    long_game_threshold: int = Field(40, description="Games with more plies than this get `long_game_priority`.")
    hint_retry: RetryPolicyModel = Field(
        default_factory=lambda: RetryPolicyModel(attempts=2, initial_backoff_s=0.05, max_backoff_s=0.05)
    )
    game_retry: RetryPolicyModel = Field(
        default_factory=lambda: RetryPolicyModel(attempts=3, initial_backoff_s=2.0, max_backoff_s=60.0)
    )

# --- Main Application Settings Class ---

class Settings(BaseSettings):
    """
    Main configuration class for the application.

    It loads settings from environment variables with the prefix 'ENGINE_ANALYSIS_'.
    Nested models can be configured using a double underscore delimiter, e.g.,
    `ENGINE_ANALYSIS_ANALYSIS__DEPTH=15`.
    """
    model_config = SettingsConfigDict(env_prefix='ENGINE_ANALYSIS_', env_nested_delimiter='__')

    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    engine_pool: EnginePoolSettings = Field(default_factory=EnginePoolSettings)
    jobs: JobSettings = Field(default_factory=JobSettings)
    results_db_path: str = "data/analysis_results.db"
    log_level: str = "INFO"

    @model_validator(mode='after')
    def sync_engine_multipv(self) -> 'Settings':
        """Asks the engine for as many lines as position analysis reports."""
        engine = self.engine_pool.engine_config
        if "multipv" not in engine.model_fields_set:
            engine.multipv = self.analysis.multipv
        elif engine.multipv < self.analysis.multipv:
            raise ValueError(
                f"Configuration error: engine MultiPV ({engine.multipv}) is below the "
                f"{self.analysis.multipv} candidate lines position analysis reports."
            )
        return self

