"""
taskledger Services

Fact log, reducers, status mapping, the tracker boundary and the service layer.
"""

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskledger.services.base import Service, ServiceContext
    from taskledger.services.fact_log import FactLog
    from taskledger.services.reducers import REDUCERS, project_reducer, sprint_reducer, task_reducer
    from taskledger.services.reconciliation import ReconciliationEngine, ReconciliationReport, Verdict
    from taskledger.services.tracker import ExternalIssue, ExternalTracker, GitHubTracker
    from taskledger.services.tracking import TrackingService

__all__ = [
    # Base
    "Service",
    "ServiceContext",
    # Fact log
    "FactLog",
    "REDUCERS",
    "task_reducer",
    "sprint_reducer",
    "project_reducer",
    # Tracker
    "ExternalIssue",
    "ExternalTracker",
    "GitHubTracker",
    # Reconciliation
    "ReconciliationEngine",
    "ReconciliationReport",
    "Verdict",
    # Facade
    "TrackingService",
]

_EXPORTS = {
    "Service": "taskledger.services.base",
    "ServiceContext": "taskledger.services.base",
    "FactLog": "taskledger.services.fact_log",
    "REDUCERS": "taskledger.services.reducers",
    "task_reducer": "taskledger.services.reducers",
    "sprint_reducer": "taskledger.services.reducers",
    "project_reducer": "taskledger.services.reducers",
    "ExternalIssue": "taskledger.services.tracker",
    "ExternalTracker": "taskledger.services.tracker",
    "GitHubTracker": "taskledger.services.tracker",
    "ReconciliationEngine": "taskledger.services.reconciliation",
    "ReconciliationReport": "taskledger.services.reconciliation",
    "Verdict": "taskledger.services.reconciliation",
    "TrackingService": "taskledger.services.tracking",
}


def __getattr__(name: str):
    module_path = _EXPORTS.get(name)
    if not module_path:
        raise AttributeError(f"module {__name__} has no attribute {name}")
    module = import_module(module_path)
    return getattr(module, name)


def __dir__() -> list[str]:
    return sorted(__all__)
