"""
Reducers: pure folds from (state, fact) to the next projection state.

Each aggregate type has a handler table keyed by fact type. A fact type
without a handler, or a fact that arrives before its aggregate was created,
leaves the state unchanged. Handlers never mutate their input; they return
a new projection via ``dataclasses.replace``.
"""

from dataclasses import replace
from typing import Any, Callable, Dict, Optional

from taskledger.models import facts as f
from taskledger.models.domain import (
    AggregateType,
    Fact,
    ProjectProjection,
    ProjectStatus,
    SprintProjection,
    SprintStatus,
    TaskPriority,
    TaskProjection,
    TaskStatus,
    TaskType,
)


def _touch(fact: Fact) -> Dict[str, Any]:
    return {"updated_at": fact.created_at, "version": fact.version}


# Task

def _task_created(state: Optional[TaskProjection], fact: Fact, p: f.TaskCreated) -> TaskProjection:
    return TaskProjection(
        id=fact.aggregate_id,
        project_id=p.project_id,
        title=p.title,
        description=p.description,
        parent_id=p.parent_id,
        status=TaskStatus.TODO,
        priority=p.priority or TaskPriority.MEDIUM,
        type=p.type or TaskType.TASK,
        assignee=p.assignee,
        labels=list(p.labels or []),
        due_date=p.due_date,
        linked_commits=[],
        linked_prs=[],
        created_at=fact.created_at,
        updated_at=fact.created_at,
        version=fact.version,
    )


def _task_updated(state: TaskProjection, fact: Fact, p: f.TaskUpdated) -> TaskProjection:
    changes = p.present()
    for required in ("title", "priority", "type"):
        if changes.get(required, "") is None:
            changes.pop(required)
    if "labels" in changes:
        changes["labels"] = list(changes["labels"] or [])
    return replace(state, **changes, **_touch(fact))


def _task_status_changed(state: TaskProjection, fact: Fact, p: f.TaskStatusChanged) -> TaskProjection:
    changes: Dict[str, Any] = {"status": p.to}
    if p.to == TaskStatus.IN_PROGRESS and not state.started_at:
        changes["started_at"] = fact.created_at
    if p.to == TaskStatus.DONE:
        changes["completed_at"] = fact.created_at
    return replace(state, **changes, **_touch(fact))


def _task_estimated(state: TaskProjection, fact: Fact, p: f.TaskEstimated) -> TaskProjection:
    return replace(state, estimate_points=p.points, estimate_hours=p.hours, **_touch(fact))


def _task_assigned(state: TaskProjection, fact: Fact, p: f.TaskAssigned) -> TaskProjection:
    return replace(state, assignee=p.assignee, **_touch(fact))


def _task_added_to_sprint(state: TaskProjection, fact: Fact, p: f.TaskAddedToSprint) -> TaskProjection:
    return replace(state, sprint_id=p.sprint_id, **_touch(fact))


def _task_removed_from_sprint(state: TaskProjection, fact: Fact, p: f.TaskRemovedFromSprint) -> TaskProjection:
    return replace(state, sprint_id=None, **_touch(fact))


def _task_linked_to_commit(state: TaskProjection, fact: Fact, p: f.TaskLinkedToCommit) -> TaskProjection:
    return replace(
        state,
        linked_commits=[*state.linked_commits, p.commit_sha],
        branch_name=p.branch or state.branch_name,
        **_touch(fact),
    )


def _task_linked_to_pr(state: TaskProjection, fact: Fact, p: f.TaskLinkedToPR) -> TaskProjection:
    return replace(
        state,
        linked_prs=[*state.linked_prs, p.pr_number],
        branch_name=p.branch or state.branch_name,
        **_touch(fact),
    )


def _task_blocked(state: TaskProjection, fact: Fact, p: f.TaskBlocked) -> TaskProjection:
    return replace(state, status=TaskStatus.BLOCKED, blocked_reason=p.reason, **_touch(fact))


def _task_unblocked(state: TaskProjection, fact: Fact, p: f.TaskUnblocked) -> TaskProjection:
    return replace(state, status=p.previous_status or TaskStatus.TODO, blocked_reason=None, **_touch(fact))


def _task_completed(state: TaskProjection, fact: Fact, p: f.TaskCompleted) -> TaskProjection:
    return replace(
        state,
        status=TaskStatus.DONE,
        actual_hours=p.actual_hours,
        completed_at=fact.created_at,
        **_touch(fact),
    )


def _task_deleted(state: TaskProjection, fact: Fact, p: f.TaskDeleted) -> TaskProjection:
    return replace(state, deleted_at=fact.created_at, **_touch(fact))


_TASK_HANDLERS: Dict[str, Callable[..., TaskProjection]] = {
    "TaskCreated": _task_created,
    "TaskUpdated": _task_updated,
    "TaskStatusChanged": _task_status_changed,
    "TaskEstimated": _task_estimated,
    "TaskAssigned": _task_assigned,
    "TaskAddedToSprint": _task_added_to_sprint,
    "TaskRemovedFromSprint": _task_removed_from_sprint,
    "TaskLinkedToCommit": _task_linked_to_commit,
    "TaskLinkedToPR": _task_linked_to_pr,
    "TaskBlocked": _task_blocked,
    "TaskUnblocked": _task_unblocked,
    "TaskCompleted": _task_completed,
    "TaskDeleted": _task_deleted,
}


# Sprint

def _sprint_created(state: Optional[SprintProjection], fact: Fact, p: f.SprintCreated) -> SprintProjection:
    return SprintProjection(
        id=fact.aggregate_id,
        project_id=p.project_id,
        name=p.name,
        goal=p.goal,
        status=SprintStatus.PLANNING,
        start_date=p.start_date,
        end_date=p.end_date,
        created_at=fact.created_at,
        updated_at=fact.created_at,
        version=fact.version,
    )


def _sprint_started(state: SprintProjection, fact: Fact, p: f.SprintStarted) -> SprintProjection:
    return replace(state, status=SprintStatus.ACTIVE, started_at=p.started_at or fact.created_at, **_touch(fact))


def _sprint_completed(state: SprintProjection, fact: Fact, p: f.SprintCompleted) -> SprintProjection:
    return replace(
        state,
        status=SprintStatus.COMPLETED,
        velocity_committed=p.total_points,
        velocity_completed=p.completed_points,
        completed_at=p.completed_at or fact.created_at,
        **_touch(fact),
    )


def _sprint_cancelled(state: SprintProjection, fact: Fact, p: f.SprintCancelled) -> SprintProjection:
    return replace(state, status=SprintStatus.CANCELLED, **_touch(fact))


def _sprint_goal_set(state: SprintProjection, fact: Fact, p: f.SprintGoalSet) -> SprintProjection:
    return replace(state, goal=p.goal, **_touch(fact))


def _sprint_velocity_recorded(state: SprintProjection, fact: Fact, p: f.SprintVelocityRecorded) -> SprintProjection:
    return replace(
        state,
        velocity_committed=p.committed_points,
        velocity_completed=p.completed_points,
        **_touch(fact),
    )


_SPRINT_HANDLERS: Dict[str, Callable[..., SprintProjection]] = {
    "SprintCreated": _sprint_created,
    "SprintStarted": _sprint_started,
    "SprintCompleted": _sprint_completed,
    "SprintCancelled": _sprint_cancelled,
    "SprintGoalSet": _sprint_goal_set,
    "SprintVelocityRecorded": _sprint_velocity_recorded,
}


# Project

def _project_created(state: Optional[ProjectProjection], fact: Fact, p: f.ProjectCreated) -> ProjectProjection:
    return ProjectProjection(
        id=fact.aggregate_id,
        name=p.name,
        description=p.description,
        status=ProjectStatus.ACTIVE,
        settings=dict(p.settings),
        created_at=fact.created_at,
        updated_at=fact.created_at,
        version=fact.version,
    )


def _project_updated(state: ProjectProjection, fact: Fact, p: f.ProjectUpdated) -> ProjectProjection:
    changes = p.present()
    if changes.get("name", "") is None:
        changes.pop("name")
    return replace(state, **changes, **_touch(fact))


def _project_archived(state: ProjectProjection, fact: Fact, p: f.ProjectArchived) -> ProjectProjection:
    return replace(state, status=ProjectStatus.ARCHIVED, **_touch(fact))


def _project_settings_changed(state: ProjectProjection, fact: Fact, p: f.ProjectSettingsChanged) -> ProjectProjection:
    return replace(state, settings={**state.settings, **p.settings}, **_touch(fact))


_PROJECT_HANDLERS: Dict[str, Callable[..., ProjectProjection]] = {
    "ProjectCreated": _project_created,
    "ProjectUpdated": _project_updated,
    "ProjectArchived": _project_archived,
    "ProjectSettingsChanged": _project_settings_changed,
}

_CREATION_FACTS = {"TaskCreated", "SprintCreated", "ProjectCreated"}


def _reduce(handlers: Dict[str, Callable[..., Any]], state: Any, fact: Fact) -> Any:
    handler = handlers.get(fact.fact_type)
    if handler is None or isinstance(fact.payload, f.UnrecognizedFact):
        return state
    if state is None and fact.fact_type not in _CREATION_FACTS:
        return state
    return handler(state, fact, fact.payload)


def task_reducer(state: Optional[TaskProjection], fact: Fact) -> Optional[TaskProjection]:
    return _reduce(_TASK_HANDLERS, state, fact)


def sprint_reducer(state: Optional[SprintProjection], fact: Fact) -> Optional[SprintProjection]:
    return _reduce(_SPRINT_HANDLERS, state, fact)


def project_reducer(state: Optional[ProjectProjection], fact: Fact) -> Optional[ProjectProjection]:
    return _reduce(_PROJECT_HANDLERS, state, fact)


REDUCERS = {
    AggregateType.TASK: task_reducer,
    AggregateType.SPRINT: sprint_reducer,
    AggregateType.PROJECT: project_reducer,
}
