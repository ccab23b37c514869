"""
taskledger Core

Builds one store handle and passes it to every component.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from taskledger.config import Config, get_config
from taskledger.db.database import SQLiteDatabase
from taskledger.logging import get_logger, setup_logging
from taskledger.repositories import (
    AnalyticsRepository,
    ProjectRepository,
    SprintRepository,
    TaskRepository,
)
from taskledger.services.base import ServiceContext
from taskledger.services.fact_log import FactLog
from taskledger.services.reconciliation import ReconciliationEngine
from taskledger.services.tracker import ExternalTracker, GitHubTracker, GitHubTrackerConfig
from taskledger.services.tracking import TrackingService

logger = get_logger(__name__)


@dataclass
class TaskLedgerCore:
    """Every component of one store, wired together."""
    config: Config
    db: SQLiteDatabase
    fact_log: FactLog
    projects: ProjectRepository
    sprints: SprintRepository
    tasks: TaskRepository
    analytics: AnalyticsRepository
    tracker: ExternalTracker
    reconciliation: ReconciliationEngine
    service: TrackingService

    def close(self) -> None:
        close = getattr(self.tracker, "close", None)
        if close is not None:
            close()


def build_core(
    config: Optional[Config] = None,
    *,
    tracker: Optional[ExternalTracker] = None,
    clock: Optional[Callable[[], datetime]] = None,
    configure_logging: bool = False,
) -> TaskLedgerCore:
    """
    Open (and initialize) the store described by ``config`` and wire the
    fact log, repositories, tracker and services around it.

    Args:
        config: Defaults to ``get_config()``
        tracker: Overrides the GitHub tracker built from config
        clock: Timestamp source for appended facts
        configure_logging: Call ``setup_logging`` with the configured level
    """
    config = config or get_config()
    if configure_logging:
        setup_logging(config.log_level, json_output=config.log_json)

    db = SQLiteDatabase(Path(config.db_path), busy_timeout=config.db_busy_timeout)
    db.init_schema()

    fact_log = FactLog(db, clock=clock)
    projects = ProjectRepository(db, fact_log)
    sprints = SprintRepository(db, fact_log)
    tasks = TaskRepository(
        db,
        fact_log,
        default_page_size=config.default_page_size,
        max_page_size=config.max_page_size,
    )
    analytics = AnalyticsRepository(db)
    tracker = tracker or GitHubTracker(GitHubTrackerConfig.from_config(config))

    context = ServiceContext(config=config, db=db)
    reconciliation = ReconciliationEngine(context, tasks, tracker)
    service = TrackingService(
        context,
        projects=projects,
        sprints=sprints,
        tasks=tasks,
        analytics=analytics,
        reconciliation=reconciliation,
    )

    logger.info(
        "taskledger core ready",
        extra={"db_path": str(config.db_path), "tracker_enabled": config.tracker_enabled},
    )
    return TaskLedgerCore(
        config=config,
        db=db,
        fact_log=fact_log,
        projects=projects,
        sprints=sprints,
        tasks=tasks,
        analytics=analytics,
        tracker=tracker,
        reconciliation=reconciliation,
        service=service,
    )
