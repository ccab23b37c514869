"""
taskledger Tracking Service

The in-process invocation surface: one method per fact-producing action and
one per read. Every command appends a fact and resyncs the affected
projection before returning it.
"""

import uuid
from typing import Any, Dict, List, Optional

from taskledger.errors import EntityNotFoundError, ValidationError
from taskledger.models.domain import (
    BurndownPoint,
    FactMetadata,
    ProjectProjection,
    SprintProjection,
    SprintStatusReport,
    TaskFilter,
    TaskProjection,
    TaskStatus,
    VelocityReport,
)
from taskledger.models.facts import TaskUpdated
from taskledger.repositories.analytics import AnalyticsRepository
from taskledger.repositories.projects import ProjectRepository
from taskledger.repositories.sprints import SprintRepository
from taskledger.repositories.tasks import TaskRepository
from taskledger.services.base import Service, ServiceContext
from taskledger.services.reconciliation import ReconciliationEngine, ReconciliationReport
from taskledger.services.status_mapping import parse_issue_references

_UPDATABLE_TASK_FIELDS = frozenset(TaskUpdated.model_fields)
_UPDATABLE_PROJECT_FIELDS = frozenset({"name", "description"})


class TrackingService(Service):
    """
    Commands and queries over projects, sprints and tasks.

    Example:
        service = build_core(config).service
        project = service.create_project("Website")
        task = service.create_task(project.id, "Fix login", estimate_points=3)
        service.change_task_status(task.id, "in_progress")
    """

    def __init__(
        self,
        context: ServiceContext,
        *,
        projects: ProjectRepository,
        sprints: SprintRepository,
        tasks: TaskRepository,
        analytics: AnalyticsRepository,
        reconciliation: ReconciliationEngine,
    ) -> None:
        super().__init__(context)
        self.projects = projects
        self.sprints = sprints
        self.tasks = tasks
        self.analytics = analytics
        self.reconciliation = reconciliation

    def _metadata(self, actor: Optional[str] = None) -> FactMetadata:
        return FactMetadata(
            actor=actor or self.context.metadata.get("actor"),
            source=self.context.metadata.get("source"),
            correlation_id=self.context.request_id,
        )

    def _require_task(self, task_id: str) -> TaskProjection:
        task = self.tasks.get_by_id(task_id)
        if task is None:
            raise EntityNotFoundError(f"Task {task_id} not found", metadata={"task_id": task_id})
        return task

    def _require_sprint(self, sprint_id: str) -> SprintProjection:
        sprint = self.sprints.get_by_id(sprint_id)
        if sprint is None:
            raise EntityNotFoundError(f"Sprint {sprint_id} not found", metadata={"sprint_id": sprint_id})
        return sprint

    # Projects

    def create_project(
        self,
        name: str,
        description: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        *,
        project_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> ProjectProjection:
        project = self.projects.create(
            name, description, settings, project_id=project_id, metadata=self._metadata(actor)
        )
        self.logger.info(
            f"Created project {project.name}",
            extra=self.log_extra(project_id=project.id),
        )
        return project

    def update_project(self, project_id: str, *, actor: Optional[str] = None, **changes: Any) -> ProjectProjection:
        unknown = set(changes) - _UPDATABLE_PROJECT_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update project fields: {', '.join(sorted(unknown))}")
        return self.projects.record("ProjectUpdated", project_id, changes, self._metadata(actor))

    def archive_project(
        self,
        project_id: str,
        reason: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> ProjectProjection:
        return self.projects.record("ProjectArchived", project_id, {"reason": reason}, self._metadata(actor))

    def change_project_settings(
        self,
        project_id: str,
        settings: Dict[str, Any],
        *,
        actor: Optional[str] = None,
    ) -> ProjectProjection:
        """Shallow-merge ``settings`` into the project's settings."""
        return self.projects.record("ProjectSettingsChanged", project_id, {"settings": settings}, self._metadata(actor))

    def get_project(self, project_id: str) -> Optional[ProjectProjection]:
        return self.projects.get_by_id(project_id)

    def list_projects(self, *, include_archived: bool = False) -> List[ProjectProjection]:
        return self.projects.list(include_archived=include_archived)

    # Tasks

    def create_task(
        self,
        project_id: str,
        title: str,
        description: Optional[str] = None,
        *,
        priority: Optional[str] = None,
        type: Optional[str] = None,
        parent_id: Optional[str] = None,
        assignee: Optional[str] = None,
        labels: Optional[List[str]] = None,
        due_date: Optional[str] = None,
        estimate_points: Optional[float] = None,
        estimate_hours: Optional[float] = None,
        sprint_id: Optional[str] = None,
        task_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> TaskProjection:
        """
        Create a task, then record its estimate and sprint membership when given.

        Each step is its own fact; the projection is synced after each append.
        """
        if sprint_id is not None:
            self._require_sprint(sprint_id)
        task_id = task_id or str(uuid.uuid4())
        metadata = self._metadata(actor)
        payload: Dict[str, Any] = {"title": title, "project_id": project_id}
        for key, value in (
            ("description", description),
            ("priority", priority),
            ("type", type),
            ("parent_id", parent_id),
            ("assignee", assignee),
            ("labels", labels),
            ("due_date", due_date),
        ):
            if value is not None:
                payload[key] = value

        task = self.tasks.record("TaskCreated", task_id, payload, metadata, expected_version=0)
        if estimate_points is not None or estimate_hours is not None:
            task = self.tasks.record(
                "TaskEstimated", task_id, {"points": estimate_points, "hours": estimate_hours}, metadata
            )
        if sprint_id is not None:
            task = self.tasks.record("TaskAddedToSprint", task_id, {"sprint_id": sprint_id}, metadata)

        self.logger.info(
            f"Created task {task_id}",
            extra=self.log_extra(project_id=project_id, aggregate_type="task", aggregate_id=task_id),
        )
        return task

    def update_task(self, task_id: str, *, actor: Optional[str] = None, **changes: Any) -> TaskProjection:
        """Apply only the given fields; passing ``None`` clears an optional field."""
        unknown = set(changes) - _UPDATABLE_TASK_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update task fields: {', '.join(sorted(unknown))}")
        if not changes:
            return self._require_task(task_id)
        return self.tasks.record("TaskUpdated", task_id, changes, self._metadata(actor))

    def change_task_status(self, task_id: str, status: str, *, actor: Optional[str] = None) -> TaskProjection:
        task = self._require_task(task_id)
        return self.tasks.record(
            "TaskStatusChanged",
            task_id,
            {"from": task.status, "to": status},
            self._metadata(actor),
            expected_version=task.version,
        )

    def estimate_task(
        self,
        task_id: str,
        points: Optional[float] = None,
        hours: Optional[float] = None,
        *,
        actor: Optional[str] = None,
    ) -> TaskProjection:
        """Replace both estimate fields; an omitted one is cleared."""
        return self.tasks.record("TaskEstimated", task_id, {"points": points, "hours": hours}, self._metadata(actor))

    def assign_task(self, task_id: str, assignee: Optional[str], *, actor: Optional[str] = None) -> TaskProjection:
        return self.tasks.record("TaskAssigned", task_id, {"assignee": assignee}, self._metadata(actor))

    def add_task_to_sprint(self, task_id: str, sprint_id: str, *, actor: Optional[str] = None) -> TaskProjection:
        self._require_sprint(sprint_id)
        return self.tasks.record("TaskAddedToSprint", task_id, {"sprint_id": sprint_id}, self._metadata(actor))

    def add_tasks_to_sprint(
        self,
        sprint_id: str,
        task_ids: List[str],
        *,
        actor: Optional[str] = None,
    ) -> List[TaskProjection]:
        self._require_sprint(sprint_id)
        return [self.add_task_to_sprint(task_id, sprint_id, actor=actor) for task_id in task_ids]

    def remove_task_from_sprint(self, task_id: str, *, actor: Optional[str] = None) -> TaskProjection:
        task = self._require_task(task_id)
        return self.tasks.record(
            "TaskRemovedFromSprint", task_id, {"sprint_id": task.sprint_id}, self._metadata(actor)
        )

    def link_commit(
        self,
        task_id: str,
        commit_sha: str,
        branch: Optional[str] = None,
        message: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> TaskProjection:
        return self.tasks.record(
            "TaskLinkedToCommit",
            task_id,
            {"commit_sha": commit_sha, "branch": branch, "message": message},
            self._metadata(actor),
        )

    def link_pr(
        self,
        task_id: str,
        pr_number: int,
        branch: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> TaskProjection:
        return self.tasks.record(
            "TaskLinkedToPR", task_id, {"pr_number": pr_number, "branch": branch}, self._metadata(actor)
        )

    def block_task(self, task_id: str, reason: Optional[str] = None, *, actor: Optional[str] = None) -> TaskProjection:
        return self.tasks.record("TaskBlocked", task_id, {"reason": reason}, self._metadata(actor))

    def unblock_task(
        self,
        task_id: str,
        previous_status: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> TaskProjection:
        """Unblock a task, restoring the status it had before the latest block unless one is given."""
        self._require_task(task_id)
        restored = previous_status or self.tasks.status_before_block(task_id)
        payload = {"previous_status": restored} if restored else {}
        return self.tasks.record("TaskUnblocked", task_id, payload, self._metadata(actor))

    def complete_task(
        self,
        task_id: str,
        actual_hours: Optional[float] = None,
        *,
        actor: Optional[str] = None,
    ) -> TaskProjection:
        return self.tasks.record("TaskCompleted", task_id, {"actual_hours": actual_hours}, self._metadata(actor))

    def delete_task(self, task_id: str, reason: Optional[str] = None, *, actor: Optional[str] = None) -> None:
        """Record the deletion; the task's projection row is removed."""
        self.tasks.record("TaskDeleted", task_id, {"reason": reason}, self._metadata(actor))

    def apply_commit(
        self,
        commit_sha: str,
        message: str,
        branch: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> List[TaskProjection]:
        """
        Link a commit to every task whose issue it references (``fixes #12``)
        and apply the status the magic word implies. References to issues no
        task is linked to are ignored.
        """
        touched: List[TaskProjection] = []
        for issue_number, status in parse_issue_references(message).items():
            task = self.tasks.get_by_external_issue(str(issue_number))
            if task is None:
                continue
            task = self.link_commit(task.id, commit_sha, branch, message, actor=actor)
            if status is not None and status != task.status:
                if status == TaskStatus.BLOCKED:
                    task = self.block_task(task.id, f"Blocked by commit {commit_sha[:12]}", actor=actor)
                else:
                    task = self.change_task_status(task.id, status, actor=actor)
            touched.append(task)
        return touched

    def get_task(self, task_id: str) -> Optional[TaskProjection]:
        return self.tasks.get_by_id(task_id)

    def list_tasks(self, task_filter: Optional[TaskFilter] = None, **filters: Any) -> List[TaskProjection]:
        return self.tasks.list(task_filter, **filters)

    def get_board(self, project_id: str, sprint_id: Optional[str] = None) -> Dict[str, List[TaskProjection]]:
        return self.tasks.get_by_status(project_id, sprint_id)

    # Sprints

    def create_sprint(
        self,
        project_id: str,
        name: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        goal: Optional[str] = None,
        *,
        sprint_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> SprintProjection:
        return self.sprints.create(
            project_id, name, start_date, end_date, goal, sprint_id=sprint_id, metadata=self._metadata(actor)
        )

    def start_sprint(self, sprint_id: str, *, actor: Optional[str] = None) -> SprintProjection:
        return self.sprints.start(sprint_id, self._metadata(actor))

    def complete_sprint(self, sprint_id: str, *, actor: Optional[str] = None) -> SprintProjection:
        return self.sprints.complete(sprint_id, self._metadata(actor))

    def cancel_sprint(
        self,
        sprint_id: str,
        reason: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> SprintProjection:
        return self.sprints.cancel(sprint_id, reason, self._metadata(actor))

    def set_sprint_goal(self, sprint_id: str, goal: Optional[str], *, actor: Optional[str] = None) -> SprintProjection:
        return self.sprints.record("SprintGoalSet", sprint_id, {"goal": goal}, self._metadata(actor))

    def record_sprint_velocity(
        self,
        sprint_id: str,
        committed_points: float,
        completed_points: float,
        *,
        actor: Optional[str] = None,
    ) -> SprintProjection:
        return self.sprints.record(
            "SprintVelocityRecorded",
            sprint_id,
            {"committed_points": committed_points, "completed_points": completed_points},
            self._metadata(actor),
        )

    def get_sprint(self, sprint_id: str) -> Optional[SprintProjection]:
        return self.sprints.get_by_id(sprint_id)

    def list_sprints(self, project_id: str) -> List[SprintProjection]:
        return self.sprints.list(project_id)

    def get_active_sprint(self, project_id: str) -> Optional[SprintProjection]:
        return self.sprints.get_active(project_id)

    def get_sprint_status(self, sprint_id: str) -> Optional[SprintStatusReport]:
        return self.sprints.get_status(sprint_id)

    def get_velocity(self, project_id: str, sprint_count: int = 3) -> VelocityReport:
        return self.analytics.calculate_velocity(project_id, sprint_count)

    def get_burndown(self, sprint_id: str) -> List[BurndownPoint]:
        return self.analytics.get_burndown_data(sprint_id)

    # External tracker

    def reconcile(
        self,
        project_id: str,
        policy: Optional[str] = None,
        dry_run: bool = False,
    ) -> ReconciliationReport:
        return self.reconciliation.reconcile(project_id, policy=policy, dry_run=dry_run)

    def import_issues(self, project_id: str, **kwargs: Any) -> List[TaskProjection]:
        return self.reconciliation.import_issues(project_id, **kwargs)
