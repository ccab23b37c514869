"""
taskledger Domain Models

Data classes representing facts and the projections derived from them.
These are used for data transfer between storage, repositories and callers.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# Status Constants

class AggregateType:
    """Aggregate kinds a fact can belong to."""
    TASK = "task"
    SPRINT = "sprint"
    PROJECT = "project"

    ALL = (TASK, SPRINT, PROJECT)


class TaskStatus:
    """Task status values."""
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"

    ALL = (TODO, IN_PROGRESS, IN_REVIEW, DONE, BLOCKED, CANCELLED)
    CLOSED = (DONE, CANCELLED)


class TaskPriority:
    """Task priorities, listed in board order."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    ALL = (CRITICAL, HIGH, MEDIUM, LOW)


class TaskType:
    EPIC = "epic"
    STORY = "story"
    TASK = "task"
    BUG = "bug"
    SUBTASK = "subtask"

    ALL = (EPIC, STORY, TASK, BUG, SUBTASK)


class SprintStatus:
    """Sprint status values."""
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    TERMINAL = (COMPLETED, CANCELLED)


class ProjectStatus:
    ACTIVE = "active"
    ARCHIVED = "archived"


def _to_dict(value: Any) -> Dict[str, Any]:
    data = dataclasses.asdict(value)
    return {k: (list(v) if isinstance(v, tuple) else v) for k, v in data.items()}


# Fact Log

@dataclass(frozen=True)
class FactMetadata:
    """Who or what produced a fact, plus tracing ids."""
    actor: Optional[str] = None
    source: Optional[str] = None
    correlation_id: Optional[str] = None
    causation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in dataclasses.asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["FactMetadata"]:
        if not data:
            return None
        return cls(
            actor=data.get("actor"),
            source=data.get("source"),
            correlation_id=data.get("correlation_id"),
            causation_id=data.get("causation_id"),
        )


@dataclass(frozen=True)
class Fact:
    """
    An immutable record of something that happened to one aggregate.

    ``payload`` is the typed payload model registered for ``fact_type``
    (see ``taskledger.models.facts``). ``version`` is the per-aggregate
    sequence number, starting at 1.
    """
    fact_id: str
    fact_type: str
    aggregate_type: str
    aggregate_id: str
    payload: Any
    created_at: str
    version: int
    metadata: Optional[FactMetadata] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fact_id": self.fact_id,
            "fact_type": self.fact_type,
            "aggregate_type": self.aggregate_type,
            "aggregate_id": self.aggregate_id,
            "payload": self.payload.model_dump(by_alias=True, exclude_unset=True),
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "created_at": self.created_at,
            "version": self.version,
        }


# Projections

@dataclass
class TaskProjection:
    """Current state of a task, derived from its facts."""
    id: str
    project_id: str
    title: str
    created_at: str
    updated_at: str
    version: int
    status: str = TaskStatus.TODO
    priority: str = TaskPriority.MEDIUM
    type: str = TaskType.TASK
    description: Optional[str] = None
    parent_id: Optional[str] = None
    sprint_id: Optional[str] = None
    assignee: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    due_date: Optional[str] = None
    estimate_points: Optional[float] = None
    estimate_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    blocked_reason: Optional[str] = None
    branch_name: Optional[str] = None
    linked_commits: List[str] = field(default_factory=list)
    linked_prs: List[int] = field(default_factory=list)
    external_issue_id: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    deleted_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _to_dict(self)


@dataclass
class SprintProjection:
    """Current state of a sprint."""
    id: str
    project_id: str
    name: str
    created_at: str
    updated_at: str
    version: int
    status: str = SprintStatus.PLANNING
    goal: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    velocity_committed: Optional[float] = None
    velocity_completed: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return _to_dict(self)


@dataclass
class ProjectProjection:
    """Current state of a project."""
    id: str
    name: str
    created_at: str
    updated_at: str
    version: int
    status: str = ProjectStatus.ACTIVE
    description: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _to_dict(self)


# Analytics

@dataclass(frozen=True)
class VelocityRecord:
    """Insert-only snapshot written when a sprint completes."""
    project_id: str
    sprint_id: str
    committed_points: float
    completed_points: float
    completion_rate: float
    recorded_at: str

    def to_dict(self) -> Dict[str, Any]:
        return _to_dict(self)


@dataclass(frozen=True)
class VelocityReport:
    """Average completed points over recent sprints; ``trend`` is most recent first."""
    average: float
    trend: List[VelocityRecord]
    std_dev: float

    def to_dict(self) -> Dict[str, Any]:
        return _to_dict(self)


@dataclass(frozen=True)
class BurndownPoint:
    date: str
    remaining_points: float
    ideal_points: int

    def to_dict(self) -> Dict[str, Any]:
        return _to_dict(self)


@dataclass
class SprintStatusReport:
    """A sprint with its tasks and point totals."""
    sprint: SprintProjection
    tasks: List[TaskProjection]
    total_points: float
    completed_points: float
    progress_pct: int

    def to_dict(self) -> Dict[str, Any]:
        return _to_dict(self)


@dataclass
class TaskFilter:
    """Filters and paging for task listings. ``None`` means no constraint."""
    project_id: Optional[str] = None
    sprint_id: Optional[str] = None
    status: Optional[str] = None
    assignee: Optional[str] = None
    type: Optional[str] = None
    priority: Optional[str] = None
    limit: Optional[int] = None
    offset: int = 0
