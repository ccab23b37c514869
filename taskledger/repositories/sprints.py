"""
Sprint projections and sprint lifecycle commands.
"""

import sqlite3
import uuid
from typing import Any, Dict, List, Optional, Union

from taskledger.errors import EntityNotFoundError, SprintStateError, ValidationError
from taskledger.logging import get_logger, log_extra
from taskledger.models.domain import (
    AggregateType,
    FactMetadata,
    SprintProjection,
    SprintStatus,
    SprintStatusReport,
    TaskProjection,
    TaskStatus,
    VelocityRecord,
)
from taskledger.repositories.analytics import round_half_up
from taskledger.repositories.base import ProjectionRepository
from taskledger.time_utils import to_date

logger = get_logger(__name__)


def point_totals(tasks: List[TaskProjection]) -> tuple[float, float]:
    """(total estimated points, points of done tasks)."""
    total = sum(t.estimate_points or 0 for t in tasks)
    completed = sum(t.estimate_points or 0 for t in tasks if t.status == TaskStatus.DONE)
    return total, completed


class SprintRepository(ProjectionRepository[SprintProjection]):
    aggregate_type = AggregateType.SPRINT
    creation_fact = "SprintCreated"

    def _save(self, projection: SprintProjection, conn: Optional[sqlite3.Connection] = None) -> None:
        self.db.upsert_sprint(projection, conn=conn)

    def get_by_id(self, aggregate_id: str) -> Optional[SprintProjection]:
        return self.db.get_sprint(aggregate_id)

    def list(self, project_id: str) -> List[SprintProjection]:
        """Sprints of a project, latest start date first."""
        return self.db.list_sprints(project_id=project_id)

    def get_active(self, project_id: str) -> Optional[SprintProjection]:
        active = self.db.list_sprints(project_id=project_id, status=SprintStatus.ACTIVE)
        return active[0] if active else None

    def _require(self, sprint_id: str) -> SprintProjection:
        state = self.replay(sprint_id)
        if state is None:
            raise EntityNotFoundError(
                f"Sprint {sprint_id} not found",
                metadata={"aggregate_type": self.aggregate_type, "aggregate_id": sprint_id},
            )
        return state

    def create(
        self,
        project_id: str,
        name: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        goal: Optional[str] = None,
        *,
        sprint_id: Optional[str] = None,
        metadata: Union[FactMetadata, Dict[str, Any], None] = None,
    ) -> SprintProjection:
        try:
            start, end = to_date(start_date), to_date(end_date)
        except ValueError as exc:
            raise ValidationError(f"Invalid sprint dates: {exc}") from exc
        if start and end and end < start:
            raise ValidationError("Sprint end_date is before start_date")
        payload = {
            "project_id": project_id,
            "name": name,
            "start_date": start.isoformat() if start else None,
            "end_date": end.isoformat() if end else None,
            "goal": goal,
        }
        return self.record("SprintCreated", sprint_id or str(uuid.uuid4()), payload, metadata, expected_version=0)

    def start(
        self,
        sprint_id: str,
        metadata: Union[FactMetadata, Dict[str, Any], None] = None,
    ) -> SprintProjection:
        state = self._require(sprint_id)
        if state.status != SprintStatus.PLANNING:
            raise SprintStateError(
                f"Sprint {sprint_id} cannot start from status {state.status}",
                metadata={"sprint_id": sprint_id, "status": state.status},
            )
        return self.record("SprintStarted", sprint_id, {}, metadata, expected_version=state.version)

    def cancel(
        self,
        sprint_id: str,
        reason: Optional[str] = None,
        metadata: Union[FactMetadata, Dict[str, Any], None] = None,
    ) -> SprintProjection:
        state = self._require(sprint_id)
        if state.status in SprintStatus.TERMINAL:
            raise SprintStateError(
                f"Sprint {sprint_id} is already {state.status}",
                metadata={"sprint_id": sprint_id, "status": state.status},
            )
        return self.record("SprintCancelled", sprint_id, {"reason": reason}, metadata, expected_version=state.version)

    def get_status(self, sprint_id: str) -> Optional[SprintStatusReport]:
        sprint = self.get_by_id(sprint_id)
        if sprint is None:
            return None
        tasks = self.db.list_tasks(sprint_id=sprint_id)
        total, completed = point_totals(tasks)
        return SprintStatusReport(
            sprint=sprint,
            tasks=tasks,
            total_points=total,
            completed_points=completed,
            progress_pct=int(round_half_up(completed / total * 100)) if total > 0 else 0,
        )

    def complete(
        self,
        sprint_id: str,
        metadata: Union[FactMetadata, Dict[str, Any], None] = None,
    ) -> SprintProjection:
        """
        Complete a sprint.

        The ``SprintCompleted`` fact, the rewritten sprint projection and the
        velocity history row are written in one transaction: either all three
        land or none do.

        Raises:
            EntityNotFoundError: unknown sprint
            SprintStateError: the sprint is already completed or cancelled
        """
        with self.db.aggregate_lock(self.aggregate_type, sprint_id):
            state = self._require(sprint_id)
            if state.status in SprintStatus.TERMINAL:
                raise SprintStateError(
                    f"Sprint {sprint_id} is already {state.status}",
                    metadata={"sprint_id": sprint_id, "status": state.status},
                )
            total, completed = point_totals(self.db.list_tasks(sprint_id=sprint_id))

            with self.db.transaction() as conn:
                fact = self.fact_log.append(
                    "SprintCompleted",
                    self.aggregate_type,
                    sprint_id,
                    {"total_points": total, "completed_points": completed},
                    metadata,
                    expected_version=state.version,
                    conn=conn,
                )
                projection = self.reducer(state, fact)
                self._save(projection, conn=conn)
                self.db.insert_velocity_record(
                    VelocityRecord(
                        project_id=projection.project_id,
                        sprint_id=sprint_id,
                        committed_points=total,
                        completed_points=completed,
                        completion_rate=completed / total if total > 0 else 0.0,
                        recorded_at=fact.created_at,
                    ),
                    conn=conn,
                )

        logger.info(
            f"Completed sprint {sprint_id} with velocity {completed}",
            extra=log_extra(
                project_id=projection.project_id,
                aggregate_type=self.aggregate_type,
                aggregate_id=sprint_id,
                committed_points=total,
                completed_points=completed,
            ),
        )
        return projection
