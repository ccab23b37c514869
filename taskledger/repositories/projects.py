"""
Project projections.
"""

import sqlite3
import uuid
from typing import Any, Dict, List, Optional, Union

from taskledger.models.domain import AggregateType, FactMetadata, ProjectProjection
from taskledger.repositories.base import ProjectionRepository


class ProjectRepository(ProjectionRepository[ProjectProjection]):
    aggregate_type = AggregateType.PROJECT
    creation_fact = "ProjectCreated"

    def _save(self, projection: ProjectProjection, conn: Optional[sqlite3.Connection] = None) -> None:
        self.db.upsert_project(projection, conn=conn)

    def create(
        self,
        name: str,
        description: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        *,
        project_id: Optional[str] = None,
        metadata: Union[FactMetadata, Dict[str, Any], None] = None,
    ) -> ProjectProjection:
        project_id = project_id or str(uuid.uuid4())
        payload: Dict[str, Any] = {"name": name, "description": description}
        if settings:
            payload["settings"] = settings
        return self.record("ProjectCreated", project_id, payload, metadata, expected_version=0)

    def get_by_id(self, aggregate_id: str) -> Optional[ProjectProjection]:
        return self.db.get_project(aggregate_id)

    def list(self, *, include_archived: bool = False) -> List[ProjectProjection]:
        """Projects in creation order; archived projects only when asked for."""
        return self.db.list_projects(include_archived=include_archived)
