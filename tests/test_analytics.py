from datetime import datetime, timezone

import pytest

from taskledger.repositories.analytics import AnalyticsRepository, round_half_up


def _sprint_with_points(service, project_id: str, name: str, points) -> str:
    sprint = service.create_sprint(project_id, name)
    for n, value in enumerate(points):
        task = service.create_task(project_id, f"{name} task {n}", estimate_points=value, sprint_id=sprint.id)
        service.complete_task(task.id)
    service.complete_sprint(sprint.id)
    return sprint.id


def test_round_half_up() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(22.335, 2) == 22.34
    assert round_half_up(67 / 3, 2) == 22.33
    assert round_half_up(0.0) == 0


def test_velocity_over_last_three_sprints(core) -> None:
    service = core.service
    project = service.create_project("Web")
    _sprint_with_points(service, project.id, "S0", [5])
    _sprint_with_points(service, project.id, "S1", [20])
    _sprint_with_points(service, project.id, "S2", [10, 15])
    _sprint_with_points(service, project.id, "S3", [22])

    report = service.get_velocity(project.id)

    assert report.average == 22.33
    assert [r.completed_points for r in report.trend] == [22, 25, 20]
    assert report.std_dev == 2.52
    assert len(report.to_dict()["trend"]) == 3


def test_velocity_without_history(core) -> None:
    report = core.analytics.calculate_velocity("nothing-here")

    assert report.average == 0
    assert report.trend == []
    assert report.std_dev == 0


def test_velocity_single_sprint_has_zero_spread(core) -> None:
    project = core.service.create_project("Web")
    _sprint_with_points(core.service, project.id, "S1", [8])

    report = core.service.get_velocity(project.id, sprint_count=5)
    assert report.average == 8
    assert report.std_dev == 0


def test_burndown_drops_on_completion_day(core, clock) -> None:
    service = core.service
    project = service.create_project("Web")
    sprint = service.create_sprint(project.id, "S1", "2024-03-01", "2024-03-08")
    service.start_sprint(sprint.id)
    big = service.create_task(project.id, "Big", estimate_points=5, sprint_id=sprint.id)
    service.create_task(project.id, "Small", estimate_points=3, sprint_id=sprint.id)

    clock.set(datetime(2024, 3, 3, 15, 30, tzinfo=timezone.utc))
    service.change_task_status(big.id, "done")

    burndown = service.get_burndown(sprint.id)

    assert [p.date for p in burndown][0] == "2024-03-01"
    assert [p.date for p in burndown][-1] == "2024-03-08"
    assert [p.remaining_points for p in burndown] == [8, 8, 3, 3, 3, 3, 3, 3]
    assert [p.ideal_points for p in burndown] == [8, 7, 6, 5, 3, 2, 1, 0]


def test_burndown_single_day_and_missing_dates(core) -> None:
    service = core.service
    project = service.create_project("Web")
    one_day = service.create_sprint(project.id, "Hackday", "2024-03-01", "2024-03-01")
    service.create_task(project.id, "Thing", estimate_points=2, sprint_id=one_day.id)

    [point] = service.get_burndown(one_day.id)
    assert point.remaining_points == 2
    assert point.ideal_points == 0

    undated = service.create_sprint(project.id, "Someday")
    assert service.get_burndown(undated.id) == []
    assert service.get_burndown("missing") == []


@pytest.mark.parametrize("count", [0, -3])
def test_sprint_count_is_at_least_one(core, count) -> None:
    project = core.service.create_project("Web")
    _sprint_with_points(core.service, project.id, "S1", [3])
    _sprint_with_points(core.service, project.id, "S2", [4])

    report = AnalyticsRepository(core.db).calculate_velocity(project.id, sprint_count=count)
    assert [r.completed_points for r in report.trend] == [4]
