# engine_analysis/containers.py
"""
Defines the Dependency Injection (DI) container for the application.

This module uses the `punq` library to wire the engine pool, the analyzers,
the result store and the job orchestrator from one `Settings` object.
"""

from typing import Optional

import punq

from engine_analysis.analyzers.game_analyzer import GameAnalyzer
from engine_analysis.analyzers.position_analyzer import PositionAnalyzer
from engine_analysis.config.settings import Settings
from engine_analysis.engine.session import UciSession
from engine_analysis.orchestration.orchestrator import JobOrchestrator
from engine_analysis.persistence.sqlite_result_store import SqliteResultStore
from engine_analysis.services.engine_pool import EnginePool
from engine_analysis.types import SessionFactory


def get_container(settings: Settings, session_factory: Optional[SessionFactory] = None) -> punq.Container:
    """
    Initializes and returns a DI container for one application run.

    Args:
        settings: The application settings.
        session_factory: Starts one engine session. Defaults to `UciSession.create`;
                         tests pass an in-process fake.
    """
    container = punq.Container()
    factory = session_factory or UciSession.create

    container.register(Settings, instance=settings)

    # Singletons: the orchestrator and both analyzers must share one pool and one store.
    container.register(
        EnginePool, factory=lambda: EnginePool(settings.engine_pool, factory), scope=punq.Scope.singleton
    )
    container.register(
        SqliteResultStore, factory=lambda: SqliteResultStore(settings.results_db_path), scope=punq.Scope.singleton
    )
    container.register(
        PositionAnalyzer,
        factory=lambda: PositionAnalyzer(container.resolve(EnginePool), settings.analysis),
        scope=punq.Scope.singleton,
    )
    container.register(
        GameAnalyzer,
        factory=lambda: GameAnalyzer(container.resolve(EnginePool), settings.analysis),
        scope=punq.Scope.singleton,
    )
    container.register(
        JobOrchestrator,
        factory=lambda: JobOrchestrator(
            settings.jobs,
            container.resolve(PositionAnalyzer),
            container.resolve(GameAnalyzer),
            container.resolve(SqliteResultStore),
        ),
        scope=punq.Scope.singleton,
    )

    return container
