from dataclasses import replace

from taskledger.models.domain import Fact
from taskledger.models.facts import UnrecognizedFact, parse_payload
from taskledger.services.reducers import project_reducer, sprint_reducer, task_reducer


def make_fact(fact_type: str, aggregate_type: str, payload: dict, version: int, aggregate_id: str = "a1") -> Fact:
    return Fact(
        fact_id=f"f{version}",
        fact_type=fact_type,
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        payload=parse_payload(fact_type, payload),
        created_at=f"2024-03-01T09:00:{version:02d}.000000+00:00",
        version=version,
    )


def fold(reducer, facts):
    state = None
    for fact in facts:
        state = reducer(state, fact)
    return state


def test_task_created_defaults() -> None:
    task = task_reducer(None, make_fact("TaskCreated", "task", {"title": "A", "project_id": "p1"}, 1))

    assert task.status == "todo"
    assert task.priority == "medium"
    assert task.type == "task"
    assert task.labels == []
    assert task.linked_commits == [] and task.linked_prs == []
    assert task.created_at == task.updated_at
    assert task.version == 1


def test_status_transitions_stamp_started_and_completed() -> None:
    facts = [
        make_fact("TaskCreated", "task", {"title": "A", "project_id": "p1"}, 1),
        make_fact("TaskStatusChanged", "task", {"from": "todo", "to": "in_progress"}, 2),
        make_fact("TaskStatusChanged", "task", {"from": "in_progress", "to": "in_review"}, 3),
        make_fact("TaskStatusChanged", "task", {"from": "in_review", "to": "in_progress"}, 4),
        make_fact("TaskStatusChanged", "task", {"from": "in_progress", "to": "done"}, 5),
    ]
    task = fold(task_reducer, facts)

    assert task.status == "done"
    assert task.started_at == facts[1].created_at
    assert task.completed_at == facts[4].created_at
    assert task.updated_at == facts[4].created_at
    assert task.version == 5


def test_todo_to_done_sets_completed_at_without_started_at() -> None:
    facts = [
        make_fact("TaskCreated", "task", {"title": "A", "project_id": "p1"}, 1),
        make_fact("TaskStatusChanged", "task", {"from": "todo", "to": "done"}, 2),
    ]
    task = fold(task_reducer, facts)

    assert task.completed_at == facts[1].created_at
    assert task.started_at is None


def test_task_updated_only_touches_supplied_fields() -> None:
    created = make_fact(
        "TaskCreated",
        "task",
        {"title": "A", "project_id": "p1", "description": "old", "assignee": "sam", "labels": ["x"]},
        1,
    )
    task = fold(task_reducer, [created, make_fact("TaskUpdated", "task", {"description": None, "priority": "high"}, 2)])

    assert task.title == "A"
    assert task.description is None
    assert task.priority == "high"
    assert task.assignee == "sam"
    assert task.labels == ["x"]


def test_task_updated_ignores_null_title() -> None:
    created = make_fact("TaskCreated", "task", {"title": "A", "project_id": "p1"}, 1)
    task = fold(task_reducer, [created, make_fact("TaskUpdated", "task", {"title": None}, 2)])

    assert task.title == "A"
    assert task.version == 2


def test_links_accumulate_and_keep_branch() -> None:
    facts = [
        make_fact("TaskCreated", "task", {"title": "A", "project_id": "p1"}, 1),
        make_fact("TaskLinkedToCommit", "task", {"commit_sha": "abc1234", "branch": "feat/a"}, 2),
        make_fact("TaskLinkedToCommit", "task", {"commit_sha": "def5678"}, 3),
        make_fact("TaskLinkedToPR", "task", {"pr_number": 42}, 4),
    ]
    task = fold(task_reducer, facts)

    assert task.linked_commits == ["abc1234", "def5678"]
    assert task.linked_prs == [42]
    assert task.branch_name == "feat/a"


def test_block_and_unblock() -> None:
    facts = [
        make_fact("TaskCreated", "task", {"title": "A", "project_id": "p1"}, 1),
        make_fact("TaskBlocked", "task", {"reason": "waiting on API"}, 2),
    ]
    blocked = fold(task_reducer, facts)
    assert blocked.status == "blocked"
    assert blocked.blocked_reason == "waiting on API"

    restored = task_reducer(blocked, make_fact("TaskUnblocked", "task", {"previous_status": "in_review"}, 3))
    assert restored.status == "in_review"
    assert restored.blocked_reason is None

    defaulted = task_reducer(blocked, make_fact("TaskUnblocked", "task", {}, 3))
    assert defaulted.status == "todo"


def test_reducers_do_not_mutate_input() -> None:
    task = task_reducer(None, make_fact("TaskCreated", "task", {"title": "A", "project_id": "p1", "labels": ["x"]}, 1))
    snapshot = replace(task)
    task_reducer(task, make_fact("TaskLinkedToCommit", "task", {"commit_sha": "abc1234"}, 2))
    task_reducer(task, make_fact("TaskUpdated", "task", {"labels": ["y"]}, 2))

    assert task == snapshot


def test_non_creation_fact_on_empty_state_is_ignored() -> None:
    assert task_reducer(None, make_fact("TaskAssigned", "task", {"assignee": "sam"}, 1)) is None
    assert sprint_reducer(None, make_fact("SprintStarted", "sprint", {}, 1)) is None


def test_unrecognized_and_foreign_facts_are_no_ops() -> None:
    task = task_reducer(None, make_fact("TaskCreated", "task", {"title": "A", "project_id": "p1"}, 1))
    unknown = Fact(
        fact_id="fx",
        fact_type="TaskArchivedLegacy",
        aggregate_type="task",
        aggregate_id="a1",
        payload=UnrecognizedFact(),
        created_at="2024-03-01T10:00:00.000000+00:00",
        version=2,
    )
    assert task_reducer(task, unknown) is task
    assert task_reducer(task, make_fact("SprintGoalSet", "sprint", {"goal": "x"}, 2)) is task


def test_sprint_lifecycle() -> None:
    facts = [
        make_fact("SprintCreated", "sprint", {"project_id": "p1", "name": "S1", "start_date": "2024-03-01"}, 1),
        make_fact("SprintGoalSet", "sprint", {"goal": "Ship login"}, 2),
        make_fact("SprintStarted", "sprint", {}, 3),
        make_fact("SprintCompleted", "sprint", {"total_points": 13, "completed_points": 8}, 4),
    ]
    sprint = fold(sprint_reducer, facts)

    assert sprint.status == "completed"
    assert sprint.goal == "Ship login"
    assert sprint.started_at == facts[2].created_at
    assert sprint.completed_at == facts[3].created_at
    assert sprint.velocity_committed == 13
    assert sprint.velocity_completed == 8


def test_project_settings_merge_and_archive() -> None:
    facts = [
        make_fact("ProjectCreated", "project", {"name": "Web", "settings": {"a": 1, "b": 2}}, 1),
        make_fact("ProjectSettingsChanged", "project", {"settings": {"b": 3, "c": 4}}, 2),
        make_fact("ProjectUpdated", "project", {"description": "Site"}, 3),
        make_fact("ProjectArchived", "project", {}, 4),
    ]
    project = fold(project_reducer, facts)

    assert project.settings == {"a": 1, "b": 3, "c": 4}
    assert project.name == "Web"
    assert project.description == "Site"
    assert project.status == "archived"
    assert project.version == 4
