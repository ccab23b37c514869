"""
Derived sprint analytics: velocity over recent sprints and burndown.
"""

import statistics
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List

from taskledger.db.database import SQLiteDatabase
from taskledger.models.domain import BurndownPoint, TaskStatus, VelocityReport
from taskledger.time_utils import to_date


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like a person would (2.5 -> 3), unlike ``round``'s banker's rounding."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


class AnalyticsRepository:
    """Read-only aggregates over velocity history and sprint task projections."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def calculate_velocity(self, project_id: str, sprint_count: int = 3) -> VelocityReport:
        """
        Velocity over the ``sprint_count`` most recently recorded sprints.

        ``average`` is rounded to two decimals; ``std_dev`` is the sample
        standard deviation (0 with fewer than two sprints).
        """
        history = self.db.list_velocity_history(project_id, limit=max(1, int(sprint_count)))
        if not history:
            return VelocityReport(average=0.0, trend=[], std_dev=0.0)

        points = [record.completed_points for record in history]
        std_dev = statistics.stdev(points) if len(points) > 1 else 0.0
        return VelocityReport(
            average=round_half_up(statistics.fmean(points), 2),
            trend=history,
            std_dev=round_half_up(std_dev, 2),
        )

    def get_burndown_data(self, sprint_id: str) -> List[BurndownPoint]:
        """
        One point per calendar day from sprint start to end, inclusive.

        Remaining points drop on the day a task's completion landed; tasks
        completed before the sprint started count on day 0. Empty when the
        sprint is unknown or has no start/end date.
        """
        sprint = self.db.get_sprint(sprint_id)
        if sprint is None:
            return []
        start = to_date(sprint.start_date or sprint.started_at)
        end = to_date(sprint.end_date)
        if start is None or end is None or end < start:
            return []

        tasks = self.db.list_tasks(sprint_id=sprint_id)
        total = sum(t.estimate_points or 0 for t in tasks)
        completions = [
            (to_date(t.completed_at), t.estimate_points or 0)
            for t in tasks
            if t.status == TaskStatus.DONE and t.completed_at
        ]

        days = (end - start).days
        burndown: List[BurndownPoint] = []
        for day in range(days + 1):
            current = start + timedelta(days=day)
            done = sum(points for completed_on, points in completions if completed_on <= current)
            ideal = total * (days - day) / days if days else 0
            burndown.append(
                BurndownPoint(
                    date=current.isoformat(),
                    remaining_points=max(0, total - done),
                    ideal_points=int(round_half_up(ideal)),
                )
            )
        return burndown
