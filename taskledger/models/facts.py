"""
Fact payload models.

One pydantic model per fact type. Each model declares the fact type it
belongs to and the aggregate type it may be appended to; ``PAYLOAD_TYPES``
is the registry the fact log validates against. Payloads stored under a
fact type this version no longer knows are loaded as ``UnrecognizedFact``.
"""

from typing import Any, ClassVar, Dict, List, Literal, Optional, Type, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from taskledger.errors import ValidationError

TaskStatusValue = Literal["todo", "in_progress", "in_review", "done", "blocked", "cancelled"]
PriorityValue = Literal["critical", "high", "medium", "low"]
TaskTypeValue = Literal["epic", "story", "task", "bug", "subtask"]
Points = float


class FactPayload(BaseModel):
    """Base class for fact payloads."""

    fact_type: ClassVar[str] = ""
    aggregate_type: ClassVar[str] = ""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    def present(self) -> Dict[str, Any]:
        """Fields that were explicitly supplied, including explicit ``None``."""
        return {name: getattr(self, name) for name in self.model_fields_set}


# Task payloads

class TaskCreated(FactPayload):
    fact_type: ClassVar[str] = "TaskCreated"
    aggregate_type: ClassVar[str] = "task"

    title: str = Field(min_length=1)
    project_id: str = Field(min_length=1)
    description: Optional[str] = None
    parent_id: Optional[str] = None
    priority: Optional[PriorityValue] = None
    type: Optional[TaskTypeValue] = None
    assignee: Optional[str] = None
    labels: Optional[List[str]] = None
    due_date: Optional[str] = None


class TaskUpdated(FactPayload):
    """Only the keys present are applied; an explicit ``None`` clears the field."""

    fact_type: ClassVar[str] = "TaskUpdated"
    aggregate_type: ClassVar[str] = "task"

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    priority: Optional[PriorityValue] = None
    type: Optional[TaskTypeValue] = None
    assignee: Optional[str] = None
    due_date: Optional[str] = None
    labels: Optional[List[str]] = None
    parent_id: Optional[str] = None
    external_issue_id: Optional[str] = None


class TaskStatusChanged(FactPayload):
    fact_type: ClassVar[str] = "TaskStatusChanged"
    aggregate_type: ClassVar[str] = "task"

    from_status: Optional[TaskStatusValue] = Field(default=None, alias="from")
    to: TaskStatusValue


class TaskEstimated(FactPayload):
    fact_type: ClassVar[str] = "TaskEstimated"
    aggregate_type: ClassVar[str] = "task"

    points: Optional[Points] = Field(default=None, ge=0)
    hours: Optional[float] = Field(default=None, ge=0)


class TaskAssigned(FactPayload):
    fact_type: ClassVar[str] = "TaskAssigned"
    aggregate_type: ClassVar[str] = "task"

    assignee: Optional[str] = None


class TaskAddedToSprint(FactPayload):
    fact_type: ClassVar[str] = "TaskAddedToSprint"
    aggregate_type: ClassVar[str] = "task"

    sprint_id: str = Field(min_length=1)


class TaskRemovedFromSprint(FactPayload):
    fact_type: ClassVar[str] = "TaskRemovedFromSprint"
    aggregate_type: ClassVar[str] = "task"

    sprint_id: Optional[str] = None


class TaskLinkedToCommit(FactPayload):
    fact_type: ClassVar[str] = "TaskLinkedToCommit"
    aggregate_type: ClassVar[str] = "task"

    commit_sha: str = Field(min_length=1)
    branch: Optional[str] = None
    message: Optional[str] = None


class TaskLinkedToPR(FactPayload):
    fact_type: ClassVar[str] = "TaskLinkedToPR"
    aggregate_type: ClassVar[str] = "task"

    pr_number: int = Field(ge=1)
    branch: Optional[str] = None


class TaskBlocked(FactPayload):
    fact_type: ClassVar[str] = "TaskBlocked"
    aggregate_type: ClassVar[str] = "task"

    reason: Optional[str] = None


class TaskUnblocked(FactPayload):
    fact_type: ClassVar[str] = "TaskUnblocked"
    aggregate_type: ClassVar[str] = "task"

    previous_status: Optional[TaskStatusValue] = None


class TaskCompleted(FactPayload):
    fact_type: ClassVar[str] = "TaskCompleted"
    aggregate_type: ClassVar[str] = "task"

    actual_hours: Optional[float] = Field(default=None, ge=0)


class TaskDeleted(FactPayload):
    fact_type: ClassVar[str] = "TaskDeleted"
    aggregate_type: ClassVar[str] = "task"

    reason: Optional[str] = None


# Sprint payloads

class SprintCreated(FactPayload):
    fact_type: ClassVar[str] = "SprintCreated"
    aggregate_type: ClassVar[str] = "sprint"

    project_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    goal: Optional[str] = None


class SprintStarted(FactPayload):
    fact_type: ClassVar[str] = "SprintStarted"
    aggregate_type: ClassVar[str] = "sprint"

    started_at: Optional[str] = None


class SprintCompleted(FactPayload):
    fact_type: ClassVar[str] = "SprintCompleted"
    aggregate_type: ClassVar[str] = "sprint"

    total_points: Points = Field(ge=0)
    completed_points: Points = Field(ge=0)
    completed_at: Optional[str] = None


class SprintCancelled(FactPayload):
    fact_type: ClassVar[str] = "SprintCancelled"
    aggregate_type: ClassVar[str] = "sprint"

    reason: Optional[str] = None


class SprintGoalSet(FactPayload):
    fact_type: ClassVar[str] = "SprintGoalSet"
    aggregate_type: ClassVar[str] = "sprint"

    goal: Optional[str] = None


class SprintVelocityRecorded(FactPayload):
    fact_type: ClassVar[str] = "SprintVelocityRecorded"
    aggregate_type: ClassVar[str] = "sprint"

    committed_points: Points = Field(ge=0)
    completed_points: Points = Field(ge=0)


# Project payloads

class ProjectCreated(FactPayload):
    fact_type: ClassVar[str] = "ProjectCreated"
    aggregate_type: ClassVar[str] = "project"

    name: str = Field(min_length=1)
    description: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)


class ProjectUpdated(FactPayload):
    fact_type: ClassVar[str] = "ProjectUpdated"
    aggregate_type: ClassVar[str] = "project"

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None


class ProjectArchived(FactPayload):
    fact_type: ClassVar[str] = "ProjectArchived"
    aggregate_type: ClassVar[str] = "project"

    reason: Optional[str] = None


class ProjectSettingsChanged(FactPayload):
    fact_type: ClassVar[str] = "ProjectSettingsChanged"
    aggregate_type: ClassVar[str] = "project"

    settings: Dict[str, Any]


class UnrecognizedFact(BaseModel):
    """Payload of a stored fact whose type is not in the registry. Reducers ignore it."""

    model_config = ConfigDict(extra="allow", frozen=True)


PAYLOAD_TYPES: Dict[str, Type[FactPayload]] = {
    cls.fact_type: cls
    for cls in (
        TaskCreated, TaskUpdated, TaskStatusChanged, TaskEstimated, TaskAssigned,
        TaskAddedToSprint, TaskRemovedFromSprint, TaskLinkedToCommit, TaskLinkedToPR,
        TaskBlocked, TaskUnblocked, TaskCompleted, TaskDeleted,
        SprintCreated, SprintStarted, SprintCompleted, SprintCancelled,
        SprintGoalSet, SprintVelocityRecorded,
        ProjectCreated, ProjectUpdated, ProjectArchived, ProjectSettingsChanged,
    )
}


def parse_payload(
    fact_type: str,
    data: Union[FactPayload, Dict[str, Any], None],
    *,
    aggregate_type: Optional[str] = None,
) -> FactPayload:
    """
    Validate ``data`` as the payload of ``fact_type``.

    Accepts a dict or an instance of the registered model. Raises
    ``ValidationError`` for unknown fact types, a fact type appended to the
    wrong aggregate type, or a payload that fails model validation.
    """
    model = PAYLOAD_TYPES.get(fact_type)
    if model is None:
        raise ValidationError(f"Unknown fact type: {fact_type!r}", metadata={"fact_type": fact_type})
    if aggregate_type is not None and model.aggregate_type != aggregate_type:
        raise ValidationError(
            f"{fact_type} cannot be appended to a {aggregate_type} aggregate",
            metadata={"fact_type": fact_type, "aggregate_type": aggregate_type},
        )
    if isinstance(data, BaseModel):
        if not isinstance(data, model):
            raise ValidationError(
                f"Payload {type(data).__name__} does not match fact type {fact_type}",
                metadata={"fact_type": fact_type},
            )
        return data
    try:
        return model.model_validate(data or {})
    except pydantic.ValidationError as exc:
        raise ValidationError(
            f"Invalid {fact_type} payload: {exc.error_count()} error(s)",
            errors=exc.errors(include_url=False),
            metadata={"fact_type": fact_type},
        ) from exc


def load_payload(fact_type: str, data: Dict[str, Any]) -> Union[FactPayload, UnrecognizedFact]:
    """Rebuild a stored payload without rejecting it; unknown types become ``UnrecognizedFact``."""
    model = PAYLOAD_TYPES.get(fact_type)
    if model is None:
        return UnrecognizedFact.model_validate(data or {})
    return model.model_validate(data or {})


def dump_payload(payload: BaseModel) -> Dict[str, Any]:
    """JSON-ready dict of the supplied payload fields, using wire names (``from``)."""
    return payload.model_dump(mode="json", by_alias=True, exclude_unset=True)
