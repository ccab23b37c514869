import pytest

from taskledger.errors import EntityNotFoundError, SprintStateError, StorageError, ValidationError
from taskledger.repositories.sprints import SprintRepository
from taskledger.repositories.tasks import TaskRepository


@pytest.fixture
def sprints(db, fact_log) -> SprintRepository:
    return SprintRepository(db, fact_log)


@pytest.fixture
def tasks(db, fact_log) -> TaskRepository:
    return TaskRepository(db, fact_log)


def _task(tasks: TaskRepository, task_id: str, points, sprint_id: str, done: bool = False) -> None:
    tasks.record("TaskCreated", task_id, {"title": task_id, "project_id": "p1"})
    tasks.record("TaskEstimated", task_id, {"points": points})
    tasks.record("TaskAddedToSprint", task_id, {"sprint_id": sprint_id})
    if done:
        tasks.record("TaskCompleted", task_id, {})


def test_create_validates_dates(sprints: SprintRepository) -> None:
    sprint = sprints.create("p1", "Sprint 1", "2024-03-01", "2024-03-14", "Ship it", sprint_id="s1")
    assert sprint.status == "planning"
    assert sprint.start_date == "2024-03-01"
    assert sprint.goal == "Ship it"

    with pytest.raises(ValidationError):
        sprints.create("p1", "Backwards", "2024-03-14", "2024-03-01")
    with pytest.raises(ValidationError):
        sprints.create("p1", "Garbage", "next week", None)
    assert [s.id for s in sprints.list("p1")] == ["s1"]


def test_start_and_active(sprints: SprintRepository) -> None:
    sprints.create("p1", "Sprint 1", "2024-03-01", "2024-03-14", sprint_id="s1")
    assert sprints.get_active("p1") is None

    started = sprints.start("s1")
    assert started.status == "active"
    assert started.started_at is not None
    assert sprints.get_active("p1").id == "s1"

    with pytest.raises(SprintStateError):
        sprints.start("s1")
    with pytest.raises(EntityNotFoundError):
        sprints.start("nope")


def test_complete_writes_fact_projection_and_velocity(sprints: SprintRepository, tasks: TaskRepository, db, fact_log) -> None:
    sprints.create("p1", "Sprint 1", "2024-03-01", "2024-03-14", sprint_id="s1")
    sprints.start("s1")
    _task(tasks, "a", 5, "s1", done=True)
    _task(tasks, "b", 3, "s1")
    _task(tasks, "c", None, "s1", done=True)

    completed = sprints.complete("s1")

    assert completed.status == "completed"
    assert completed.velocity_committed == 8
    assert completed.velocity_completed == 5
    assert sprints.get_by_id("s1") == completed
    assert sprints.replay("s1") == completed
    assert fact_log.get_events("sprint", "s1")[-1].fact_type == "SprintCompleted"

    [record] = db.list_velocity_history("p1")
    assert record.sprint_id == "s1"
    assert record.committed_points == 8
    assert record.completed_points == 5
    assert record.completion_rate == pytest.approx(0.625)
    assert record.recorded_at == completed.completed_at


def test_complete_is_all_or_nothing(sprints: SprintRepository, tasks: TaskRepository, db, fact_log, monkeypatch) -> None:
    sprints.create("p1", "Sprint 1", sprint_id="s1")
    _task(tasks, "a", 5, "s1", done=True)
    before = sprints.get_by_id("s1")

    def boom(record, conn=None):
        raise StorageError("disk full")

    monkeypatch.setattr(db, "insert_velocity_record", boom)
    with pytest.raises(StorageError):
        sprints.complete("s1")

    assert fact_log.current_version("sprint", "s1") == before.version
    assert sprints.get_by_id("s1") == before
    assert db.list_velocity_history("p1") == []

    monkeypatch.undo()
    assert sprints.complete("s1").status == "completed"
    assert len(db.list_velocity_history("p1")) == 1


def test_terminal_sprints_reject_transitions(sprints: SprintRepository) -> None:
    sprints.create("p1", "Sprint 1", sprint_id="s1")
    sprints.complete("s1")

    with pytest.raises(SprintStateError):
        sprints.complete("s1")
    with pytest.raises(SprintStateError):
        sprints.cancel("s1")

    sprints.create("p1", "Sprint 2", sprint_id="s2")
    cancelled = sprints.cancel("s2", "scope cut")
    assert cancelled.status == "cancelled"
    with pytest.raises(SprintStateError):
        sprints.complete("s2")
    with pytest.raises(EntityNotFoundError):
        sprints.complete("missing")


def test_status_report(sprints: SprintRepository, tasks: TaskRepository) -> None:
    sprints.create("p1", "Sprint 1", sprint_id="s1")
    _task(tasks, "a", 2, "s1", done=True)
    _task(tasks, "b", 1, "s1")

    report = sprints.get_status("s1")
    assert report.total_points == 3
    assert report.completed_points == 2
    assert report.progress_pct == 67
    assert {t.id for t in report.tasks} == {"a", "b"}
    assert report.to_dict()["sprint"]["id"] == "s1"

    sprints.create("p1", "Empty", sprint_id="s2")
    assert sprints.get_status("s2").progress_pct == 0
    assert sprints.get_status("missing") is None
