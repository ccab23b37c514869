"""
taskledger Fact Log

Append-only, per-aggregate ordered record of facts. Every change to a task,
sprint or project is appended here; projections are rebuilt from it.
"""

import sqlite3
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

from taskledger.db.database import SQLiteDatabase
from taskledger.errors import ValidationError, VersionConflictError
from taskledger.logging import get_logger, log_extra
from taskledger.models.domain import AggregateType, Fact, FactMetadata
from taskledger.models.facts import FactPayload, parse_payload
from taskledger.time_utils import Timestamp, format_timestamp, normalize_timestamp, utc_now

logger = get_logger(__name__)

S = TypeVar("S")
Reducer = Callable[[Optional[S], Fact], Optional[S]]


class FactLog:
    """
    Append and read facts for one store.

    Version assignment reads the current max version and inserts max + 1
    while holding the store's per-aggregate lock inside a ``BEGIN IMMEDIATE``
    transaction; the unique (aggregate_type, aggregate_id, version) index
    rejects anything that slips past both.
    """

    def __init__(self, db: SQLiteDatabase, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.db = db
        self._clock = clock or utc_now

    @staticmethod
    def _next_version(current: int) -> int:
        return current + 1

    def append(
        self,
        fact_type: str,
        aggregate_type: str,
        aggregate_id: str,
        payload: Union[FactPayload, Dict[str, Any], None],
        metadata: Union[FactMetadata, Dict[str, Any], None] = None,
        *,
        expected_version: Optional[int] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Fact:
        """
        Validate and durably append one fact.

        Args:
            fact_type: A registered fact type, e.g. ``TaskStatusChanged``
            aggregate_type: ``task``, ``sprint`` or ``project``
            aggregate_id: Id of the aggregate the fact belongs to
            payload: Dict or payload model for ``fact_type``
            metadata: Actor/source/correlation info
            expected_version: When given, the aggregate's current version must match
            conn: An open transaction to join instead of starting one

        Raises:
            ValidationError: payload does not validate; nothing is written
            VersionConflictError: expected_version mismatch or version collision
        """
        if aggregate_type not in AggregateType.ALL:
            raise ValidationError(f"Unknown aggregate type: {aggregate_type!r}")
        if not aggregate_id:
            raise ValidationError("aggregate_id is required")
        parsed = parse_payload(fact_type, payload, aggregate_type=aggregate_type)
        meta = FactMetadata.from_dict(metadata) if isinstance(metadata, dict) else metadata

        with self.db.aggregate_lock(aggregate_type, aggregate_id):
            with self.db.transaction(conn) as tx:
                current = self.db.max_version(aggregate_type, aggregate_id, conn=tx)
                if expected_version is not None and expected_version != current:
                    raise VersionConflictError(
                        f"Expected {aggregate_type} {aggregate_id} at version {expected_version}, found {current}",
                        aggregate_type=aggregate_type,
                        aggregate_id=aggregate_id,
                        expected_version=expected_version,
                        actual_version=current,
                    )
                fact = Fact(
                    fact_id=str(uuid.uuid4()),
                    fact_type=fact_type,
                    aggregate_type=aggregate_type,
                    aggregate_id=aggregate_id,
                    payload=parsed,
                    metadata=meta,
                    created_at=format_timestamp(self._clock()),
                    version=self._next_version(current),
                )
                self.db.insert_fact(tx, fact)

        logger.debug(
            "Fact appended",
            extra=log_extra(
                aggregate_type=aggregate_type,
                aggregate_id=aggregate_id,
                fact_type=fact_type,
                version=fact.version,
            ),
        )
        return fact

    def get_events(
        self,
        aggregate_type: str,
        aggregate_id: str,
        from_version: Optional[int] = None,
    ) -> List[Fact]:
        """Facts of one aggregate in version order; only versions after ``from_version`` when given."""
        return self.db.list_facts(aggregate_type, aggregate_id, from_version=from_version)

    def get_events_by_type(self, fact_type: str, limit: int = 100) -> List[Fact]:
        """Most recent facts of one type first."""
        return self.db.list_facts_by_type(fact_type, limit=limit)

    def get_events_in_range(self, start: Timestamp, end: Timestamp) -> List[Fact]:
        """Facts created within [start, end], oldest first."""
        try:
            start_ts, end_ts = normalize_timestamp(start), normalize_timestamp(end)
        except ValueError as exc:
            raise ValidationError(f"Invalid time range: {exc}") from exc
        return self.db.list_facts_in_range(start_ts, end_ts)

    def current_version(self, aggregate_type: str, aggregate_id: str) -> int:
        return self.db.max_version(aggregate_type, aggregate_id)

    def replay(
        self,
        aggregate_type: str,
        aggregate_id: str,
        reducer: Reducer,
        initial: Optional[S] = None,
        *,
        until_version: Optional[int] = None,
    ) -> Optional[S]:
        """
        Fold the aggregate's facts through ``reducer``.

        Returns ``initial`` (``None`` by default) when the aggregate has no
        facts. ``until_version`` reconstructs the state as of that version.
        """
        state = initial
        for fact in self.db.list_facts(aggregate_type, aggregate_id, until_version=until_version):
            state = reducer(state, fact)
        return state
