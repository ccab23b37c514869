"""
Task projections: replay, filtered listings and the status board.
"""

import sqlite3
from typing import Any, Dict, List, Optional

from taskledger.db.database import SQLiteDatabase
from taskledger.logging import get_logger, log_extra
from taskledger.models.domain import AggregateType, TaskFilter, TaskProjection, TaskStatus
from taskledger.repositories.base import ProjectionRepository
from taskledger.services.fact_log import FactLog

logger = get_logger(__name__)


class TaskRepository(ProjectionRepository[TaskProjection]):
    aggregate_type = AggregateType.TASK
    creation_fact = "TaskCreated"

    def __init__(
        self,
        db: SQLiteDatabase,
        fact_log: FactLog,
        *,
        default_page_size: int = 50,
        max_page_size: int = 500,
    ) -> None:
        super().__init__(db, fact_log)
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    def _save(self, projection: TaskProjection, conn: Optional[sqlite3.Connection] = None) -> None:
        self.db.upsert_task(projection, conn=conn)

    def _discard(self, aggregate_id: str) -> None:
        self.db.delete_task(aggregate_id)

    def sync_from_events(self, aggregate_id: str) -> Optional[TaskProjection]:
        """Replay a task; a task whose history ends in ``TaskDeleted`` loses its row."""
        with self.db.aggregate_lock(self.aggregate_type, aggregate_id):
            state = self.replay(aggregate_id)
            if state is None or state.deleted_at is not None:
                self._discard(aggregate_id)
                if state is not None:
                    logger.info(
                        "Removed deleted task projection",
                        extra=log_extra(aggregate_type=self.aggregate_type, aggregate_id=aggregate_id),
                    )
                return None
            self._save(state)
        return state

    def get_by_id(self, aggregate_id: str) -> Optional[TaskProjection]:
        return self.db.get_task(aggregate_id)

    def get_by_external_issue(self, external_issue_id: str) -> Optional[TaskProjection]:
        return self.db.find_task_by_external_issue(external_issue_id)

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.default_page_size
        return max(1, min(int(limit), self.max_page_size))

    def list(self, task_filter: Optional[TaskFilter] = None, **filters: Any) -> List[TaskProjection]:
        """
        List tasks by priority (critical first), then newest first.

        Accepts a ``TaskFilter`` or the same fields as keyword arguments.
        ``limit`` defaults to the configured page size and is clamped to
        ``1..max_page_size``.
        """
        task_filter = task_filter or TaskFilter(**filters)
        return self.db.list_tasks(
            project_id=task_filter.project_id,
            sprint_id=task_filter.sprint_id,
            status=task_filter.status,
            assignee=task_filter.assignee,
            type=task_filter.type,
            priority=task_filter.priority,
            limit=self._clamp_limit(task_filter.limit),
            offset=max(0, task_filter.offset or 0),
        )

    def list_for_project(self, project_id: str) -> List[TaskProjection]:
        """Every task of a project, unpaginated."""
        return self.db.list_tasks(project_id=project_id)

    def get_by_status(self, project_id: str, sprint_id: Optional[str] = None) -> Dict[str, List[TaskProjection]]:
        """Board view: every task of the project (optionally one sprint) grouped by status."""
        board: Dict[str, List[TaskProjection]] = {status: [] for status in TaskStatus.ALL}
        for task in self.db.list_tasks(project_id=project_id, sprint_id=sprint_id):
            board.setdefault(task.status, []).append(task)
        return board

    def status_before_block(self, task_id: str) -> Optional[str]:
        """Status the task had just before its most recent ``TaskBlocked``."""
        state: Optional[TaskProjection] = None
        previous: Optional[str] = None
        for fact in self.fact_log.get_events(self.aggregate_type, task_id):
            if fact.fact_type == "TaskBlocked" and state is not None and state.status != TaskStatus.BLOCKED:
                previous = state.status
            state = self.reducer(state, fact)
        return previous
