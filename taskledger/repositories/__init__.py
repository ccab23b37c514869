"""
taskledger Projection Repositories

Materialized views rebuilt from the fact log, plus derived analytics.
"""

from taskledger.repositories.analytics import AnalyticsRepository
from taskledger.repositories.projects import ProjectRepository
from taskledger.repositories.sprints import SprintRepository
from taskledger.repositories.tasks import TaskRepository

__all__ = [
    "AnalyticsRepository",
    "ProjectRepository",
    "SprintRepository",
    "TaskRepository",
]
