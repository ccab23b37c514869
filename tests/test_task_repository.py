import pytest

from taskledger.errors import EntityNotFoundError, VersionConflictError
from taskledger.models.domain import TaskFilter
from taskledger.repositories.tasks import TaskRepository


@pytest.fixture
def tasks(db, fact_log) -> TaskRepository:
    return TaskRepository(db, fact_log, default_page_size=3, max_page_size=5)


def _create(tasks: TaskRepository, task_id: str, **payload) -> None:
    tasks.record("TaskCreated", task_id, {"title": task_id.upper(), "project_id": "p1", **payload})


def test_record_syncs_projection(tasks: TaskRepository) -> None:
    created = tasks.record("TaskCreated", "t1", {"title": "Write docs", "project_id": "p1", "labels": ["docs"]})
    assert created == tasks.get_by_id("t1")

    changed = tasks.record("TaskStatusChanged", "t1", {"from": "todo", "to": "in_progress"})
    stored = tasks.get_by_id("t1")
    assert changed == stored
    assert stored.status == "in_progress"
    assert stored.started_at is not None
    assert stored.labels == ["docs"]
    assert stored.version == 2


def test_record_against_unknown_task_raises(tasks: TaskRepository) -> None:
    with pytest.raises(EntityNotFoundError):
        tasks.record("TaskAssigned", "missing", {"assignee": "sam"})
    assert tasks.get_by_id("missing") is None


def test_create_twice_with_expected_version_conflicts(tasks: TaskRepository) -> None:
    tasks.record("TaskCreated", "t1", {"title": "A", "project_id": "p1"}, expected_version=0)
    with pytest.raises(VersionConflictError):
        tasks.record("TaskCreated", "t1", {"title": "B", "project_id": "p1"}, expected_version=0)
    assert tasks.get_by_id("t1").title == "A"


def test_sync_is_idempotent_and_repairs_drift(tasks: TaskRepository, db) -> None:
    _create(tasks, "t1")
    tasks.record("TaskAssigned", "t1", {"assignee": "sam"})

    with db.transaction() as conn:
        conn.execute("UPDATE tasks SET title = 'stale', assignee = NULL WHERE id = 't1'")

    first = tasks.sync_from_events("t1")
    second = tasks.sync_from_events("t1")
    assert first == second == tasks.get_by_id("t1")
    assert first.title == "T1"
    assert first.assignee == "sam"


def test_sync_of_unknown_task_returns_none(tasks: TaskRepository) -> None:
    assert tasks.sync_from_events("ghost") is None


def test_delete_removes_projection_but_keeps_facts(tasks: TaskRepository, fact_log) -> None:
    _create(tasks, "t1")
    assert tasks.record("TaskDeleted", "t1", {"reason": "duplicate"}) is None

    assert tasks.get_by_id("t1") is None
    assert tasks.sync_from_events("t1") is None
    assert [f.fact_type for f in fact_log.get_events("task", "t1")] == ["TaskCreated", "TaskDeleted"]


def test_list_orders_by_priority_then_newest(tasks: TaskRepository) -> None:
    _create(tasks, "low", priority="low")
    _create(tasks, "med-old")
    _create(tasks, "crit", priority="critical")
    _create(tasks, "med-new")
    _create(tasks, "high", priority="high")

    ids = [t.id for t in tasks.list(project_id="p1", limit=5)]
    assert ids == ["crit", "high", "med-new", "med-old", "low"]


def test_list_filters_and_pagination(tasks: TaskRepository) -> None:
    for n in range(7):
        _create(tasks, f"t{n}", assignee="sam" if n % 2 else "kim", type="bug" if n < 2 else "task")
    tasks.record("TaskStatusChanged", "t3", {"to": "done"})

    assert len(tasks.list(project_id="p1")) == 3
    assert len(tasks.list(project_id="p1", limit=100)) == 5
    assert len(tasks.list(project_id="p1", limit=0)) == 1

    everything = [t.id for t in tasks.db.list_tasks(project_id="p1")]
    page = [t.id for t in tasks.list(TaskFilter(project_id="p1", limit=2, offset=2))]
    assert page == everything[2:4]

    assert {t.id for t in tasks.list(assignee="sam")} <= {"t1", "t3", "t5"}
    assert {t.id for t in tasks.list(type="bug")} == {"t0", "t1"}
    assert [t.id for t in tasks.list(status="done")] == ["t3"]
    assert tasks.list(project_id="other") == []


def test_board_groups_every_status(tasks: TaskRepository) -> None:
    _create(tasks, "a")
    _create(tasks, "b")
    _create(tasks, "c")
    tasks.record("TaskStatusChanged", "b", {"to": "in_review"})
    tasks.record("TaskBlocked", "c", {"reason": "waiting"})
    tasks.record("TaskAddedToSprint", "a", {"sprint_id": "s1"})

    board = tasks.get_by_status("p1")
    assert set(board) == {"todo", "in_progress", "in_review", "done", "blocked", "cancelled"}
    assert [t.id for t in board["todo"]] == ["a"]
    assert [t.id for t in board["in_review"]] == ["b"]
    assert [t.id for t in board["blocked"]] == ["c"]
    assert board["done"] == []

    sprint_board = tasks.get_by_status("p1", sprint_id="s1")
    assert [t.id for t in sprint_board["todo"]] == ["a"]
    assert sprint_board["blocked"] == []


def test_status_before_block_uses_latest_block(tasks: TaskRepository) -> None:
    _create(tasks, "t1")
    assert tasks.status_before_block("t1") is None

    tasks.record("TaskStatusChanged", "t1", {"to": "in_progress"})
    tasks.record("TaskBlocked", "t1", {})
    assert tasks.status_before_block("t1") == "in_progress"

    tasks.record("TaskUnblocked", "t1", {"previous_status": "in_progress"})
    tasks.record("TaskStatusChanged", "t1", {"to": "in_review"})
    tasks.record("TaskBlocked", "t1", {})
    tasks.record("TaskBlocked", "t1", {"reason": "again"})
    assert tasks.status_before_block("t1") == "in_review"


def test_find_by_external_issue(tasks: TaskRepository) -> None:
    _create(tasks, "t1")
    tasks.record("TaskUpdated", "t1", {"external_issue_id": "12"})

    assert tasks.get_by_external_issue("12").id == "t1"
    assert tasks.get_by_external_issue("13") is None
