"""
taskledger Models

Domain dataclasses and fact payload models.
"""

from taskledger.models.domain import (
    AggregateType,
    BurndownPoint,
    Fact,
    FactMetadata,
    ProjectProjection,
    ProjectStatus,
    SprintProjection,
    SprintStatus,
    SprintStatusReport,
    TaskFilter,
    TaskPriority,
    TaskProjection,
    TaskStatus,
    TaskType,
    VelocityRecord,
    VelocityReport,
)
from taskledger.models.facts import (
    PAYLOAD_TYPES,
    FactPayload,
    UnrecognizedFact,
    parse_payload,
)

__all__ = [
    "AggregateType",
    "BurndownPoint",
    "Fact",
    "FactMetadata",
    "ProjectProjection",
    "ProjectStatus",
    "SprintProjection",
    "SprintStatus",
    "SprintStatusReport",
    "TaskFilter",
    "TaskPriority",
    "TaskProjection",
    "TaskStatus",
    "TaskType",
    "VelocityRecord",
    "VelocityReport",
    "PAYLOAD_TYPES",
    "FactPayload",
    "UnrecognizedFact",
    "parse_payload",
]
