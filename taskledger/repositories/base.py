"""
Shared replay-and-persist behaviour for projection repositories.
"""

import sqlite3
from typing import Any, Dict, Generic, Optional, TypeVar, Union

from taskledger.db.database import SQLiteDatabase
from taskledger.errors import EntityNotFoundError
from taskledger.logging import get_logger, log_extra
from taskledger.models.domain import FactMetadata
from taskledger.models.facts import FactPayload
from taskledger.services.fact_log import FactLog
from taskledger.services.reducers import REDUCERS

P = TypeVar("P")

logger = get_logger(__name__)


class ProjectionRepository(Generic[P]):
    """
    Owns the materialized projection of one aggregate type.

    The fact log stays the source of truth: ``sync_from_events`` replays the
    aggregate from version 1 and overwrites the stored row wholesale.
    """

    aggregate_type: str = ""
    creation_fact: str = ""

    def __init__(self, db: SQLiteDatabase, fact_log: FactLog) -> None:
        self.db = db
        self.fact_log = fact_log
        self.reducer = REDUCERS[self.aggregate_type]

    def _save(self, projection: P, conn: Optional[sqlite3.Connection] = None) -> None:
        raise NotImplementedError

    def _discard(self, aggregate_id: str) -> None:
        """Remove a stored row whose replay produced nothing."""

    def get_by_id(self, aggregate_id: str) -> Optional[P]:
        raise NotImplementedError

    def replay(self, aggregate_id: str, *, until_version: Optional[int] = None) -> Optional[P]:
        return self.fact_log.replay(self.aggregate_type, aggregate_id, self.reducer, until_version=until_version)

    def sync_from_events(self, aggregate_id: str) -> Optional[P]:
        """Rebuild and store the projection; ``None`` when the aggregate has no facts."""
        with self.db.aggregate_lock(self.aggregate_type, aggregate_id):
            state = self.replay(aggregate_id)
            if state is None:
                self._discard(aggregate_id)
                return None
            self._save(state)
        return state

    def record(
        self,
        fact_type: str,
        aggregate_id: str,
        payload: Union[FactPayload, Dict[str, Any], None],
        metadata: Union[FactMetadata, Dict[str, Any], None] = None,
        *,
        expected_version: Optional[int] = None,
    ) -> Optional[P]:
        """
        Append a fact for an aggregate and resync its projection.

        Raises:
            EntityNotFoundError: the aggregate has no facts and ``fact_type``
                does not create it
        """
        if fact_type != self.creation_fact and self.fact_log.current_version(self.aggregate_type, aggregate_id) == 0:
            raise EntityNotFoundError(
                f"{self.aggregate_type.capitalize()} {aggregate_id} not found",
                metadata={"aggregate_type": self.aggregate_type, "aggregate_id": aggregate_id},
            )
        fact = self.fact_log.append(
            fact_type,
            self.aggregate_type,
            aggregate_id,
            payload,
            metadata,
            expected_version=expected_version,
        )
        logger.info(
            f"Recorded {fact_type}",
            extra=log_extra(aggregate_type=self.aggregate_type, aggregate_id=aggregate_id, version=fact.version),
        )
        return self.sync_from_events(aggregate_id)
