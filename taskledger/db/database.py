"""
taskledger Database Service

SQLite persistence for the fact log, projections and velocity history.
Uses the Protocol pattern to define the database contract.

JSON text columns (payloads, metadata, labels, linked commits/PRs, settings)
are encoded and decoded only in this module.
"""

import json
import sqlite3
import threading
import weakref
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Protocol, Tuple

from taskledger.errors import StorageError, VersionConflictError
from taskledger.logging import get_logger, log_extra
from taskledger.models.domain import (
    Fact,
    FactMetadata,
    ProjectProjection,
    ProjectStatus,
    SprintProjection,
    SprintStatus,
    TaskProjection,
    VelocityRecord,
)
from taskledger.models.facts import dump_payload, load_payload

logger = get_logger(__name__)

_TASK_COLUMNS = (
    "id", "project_id", "parent_id", "sprint_id", "title", "description", "status",
    "priority", "type", "assignee", "labels", "due_date", "estimate_points",
    "estimate_hours", "actual_hours", "blocked_reason", "branch_name",
    "linked_commits", "linked_prs", "external_issue_id", "started_at",
    "completed_at", "version", "created_at", "updated_at",
)
_SPRINT_COLUMNS = (
    "id", "project_id", "name", "goal", "status", "start_date", "end_date",
    "started_at", "completed_at", "velocity_committed", "velocity_completed",
    "version", "created_at", "updated_at",
)
_PROJECT_COLUMNS = (
    "id", "name", "description", "status", "settings", "version", "created_at", "updated_at",
)

_PRIORITY_ORDER = (
    "CASE priority WHEN 'critical' THEN 1 WHEN 'high' THEN 2 "
    "WHEN 'medium' THEN 3 WHEN 'low' THEN 4 ELSE 5 END"
)


def _upsert_sql(table: str, columns: Tuple[str, ...]) -> str:
    updates = ", ".join(f"{col} = excluded.{col}" for col in columns if col != "id")
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) "
        f"VALUES ({', '.join('?' for _ in columns)}) "
        f"ON CONFLICT(id) DO UPDATE SET {updates}"
    )


def _dump_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


class DatabaseProtocol(Protocol):
    """Protocol defining the store capabilities the core depends on."""

    def init_schema(self) -> None: ...
    def transaction(self, conn: Optional[sqlite3.Connection] = None, *, immediate: bool = True) -> Any: ...
    def aggregate_lock(self, aggregate_type: str, aggregate_id: str) -> Any: ...

    # Facts
    def insert_fact(self, conn: sqlite3.Connection, fact: Fact) -> None: ...
    def max_version(self, aggregate_type: str, aggregate_id: str, conn: Optional[sqlite3.Connection] = None) -> int: ...
    def list_facts(
        self,
        aggregate_type: str,
        aggregate_id: str,
        *,
        from_version: Optional[int] = None,
        until_version: Optional[int] = None,
    ) -> List[Fact]: ...
    def list_facts_by_type(self, fact_type: str, *, limit: int = 100) -> List[Fact]: ...
    def list_facts_in_range(self, start: str, end: str) -> List[Fact]: ...

    # Projections
    def upsert_task(self, task: TaskProjection, conn: Optional[sqlite3.Connection] = None) -> None: ...
    def delete_task(self, task_id: str, conn: Optional[sqlite3.Connection] = None) -> None: ...
    def get_task(self, task_id: str) -> Optional[TaskProjection]: ...
    def list_tasks(self, **filters: Any) -> List[TaskProjection]: ...
    def upsert_sprint(self, sprint: SprintProjection, conn: Optional[sqlite3.Connection] = None) -> None: ...
    def get_sprint(self, sprint_id: str) -> Optional[SprintProjection]: ...
    def list_sprints(self, project_id: Optional[str] = None, status: Optional[str] = None) -> List[SprintProjection]: ...
    def upsert_project(self, project: ProjectProjection, conn: Optional[sqlite3.Connection] = None) -> None: ...
    def get_project(self, project_id: str) -> Optional[ProjectProjection]: ...
    def list_projects(self, *, include_archived: bool = False) -> List[ProjectProjection]: ...

    # Velocity history
    def insert_velocity_record(self, record: VelocityRecord, conn: Optional[sqlite3.Connection] = None) -> None: ...
    def list_velocity_history(self, project_id: str, *, limit: Optional[int] = None) -> List[VelocityRecord]: ...


class SQLiteDatabase:
    """
    SQLite-backed persistence for taskledger state.

    Connections are opened per operation and closed afterwards. Writes run in
    explicit transactions (``BEGIN IMMEDIATE`` by default) so the read of the
    current max version and the insert of the next fact are one atomic unit.
    """

    def __init__(self, db_path: Path, *, busy_timeout: float = 5.0) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout = busy_timeout
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout * 1000)}")
        return conn

    @contextmanager
    def transaction(
        self,
        conn: Optional[sqlite3.Connection] = None,
        *,
        immediate: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.

        When ``conn`` is given the caller already owns an open transaction and
        the block simply joins it; commit and rollback stay with the owner.
        """
        if conn is not None:
            yield conn
            return
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    @contextmanager
    def aggregate_lock(self, aggregate_type: str, aggregate_id: str) -> Iterator[None]:
        """
        Per-aggregate re-entrant lock for in-process writers.

        Locks are held weakly: an entry lives only while some writer holds it.
        """
        key = (aggregate_type, aggregate_id)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
        with lock:
            yield

    def _fetchone(self, query: str, params: Iterable[Any] = (), conn: Optional[sqlite3.Connection] = None) -> Optional[sqlite3.Row]:
        if conn is not None:
            return conn.execute(query, tuple(params)).fetchone()
        with closing(self._connect()) as own:
            return own.execute(query, tuple(params)).fetchone()

    def _fetchall(self, query: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        with closing(self._connect()) as conn:
            return conn.execute(query, tuple(params)).fetchall()

    def init_schema(self) -> None:
        """Initialize database schema."""
        from taskledger.db.schema import SCHEMA_SQLITE

        with closing(self._connect()) as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA_SQLITE)

    # Helper methods for JSON parsing
    @staticmethod
    def _parse_json(value: Any, default: Any) -> Any:
        if value is None:
            return default
        if isinstance(value, (dict, list)):
            return value
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return default

    # Facts
    def insert_fact(self, conn: sqlite3.Connection, fact: Fact) -> None:
        """Insert a fact inside the caller's transaction."""
        try:
            conn.execute(
                """
                INSERT INTO facts (
                    fact_id, fact_type, aggregate_type, aggregate_id,
                    payload, metadata, created_at, version
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    fact.fact_id,
                    fact.fact_type,
                    fact.aggregate_type,
                    fact.aggregate_id,
                    _dump_json(dump_payload(fact.payload)),
                    _dump_json(fact.metadata.to_dict()) if fact.metadata else None,
                    fact.created_at,
                    fact.version,
                ),
            )
        except sqlite3.IntegrityError as exc:
            if "version" in str(exc):
                logger.error(
                    "Fact version collision",
                    extra=log_extra(
                        aggregate_type=fact.aggregate_type,
                        aggregate_id=fact.aggregate_id,
                        version=fact.version,
                    ),
                )
                raise VersionConflictError(
                    f"Version {fact.version} already exists for {fact.aggregate_type} {fact.aggregate_id}",
                    aggregate_type=fact.aggregate_type,
                    aggregate_id=fact.aggregate_id,
                    actual_version=fact.version,
                ) from exc
            raise StorageError(f"Failed to insert fact {fact.fact_id}: {exc}") from exc

    def max_version(
        self,
        aggregate_type: str,
        aggregate_id: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        row = self._fetchone(
            "SELECT COALESCE(MAX(version), 0) AS v FROM facts WHERE aggregate_type = ? AND aggregate_id = ?",
            (aggregate_type, aggregate_id),
            conn=conn,
        )
        return int(row["v"]) if row else 0

    def list_facts(
        self,
        aggregate_type: str,
        aggregate_id: str,
        *,
        from_version: Optional[int] = None,
        until_version: Optional[int] = None,
    ) -> List[Fact]:
        where = ["aggregate_type = ?", "aggregate_id = ?"]
        params: List[Any] = [aggregate_type, aggregate_id]
        if from_version is not None:
            where.append("version > ?")
            params.append(int(from_version))
        if until_version is not None:
            where.append("version <= ?")
            params.append(int(until_version))
        rows = self._fetchall(
            f"SELECT * FROM facts WHERE {' AND '.join(where)} ORDER BY version ASC",
            params,
        )
        return [self._row_to_fact(row) for row in rows]

    def list_facts_by_type(self, fact_type: str, *, limit: int = 100) -> List[Fact]:
        limit = max(1, min(int(limit), 1000))
        rows = self._fetchall(
            "SELECT * FROM facts WHERE fact_type = ? ORDER BY created_at DESC, seq DESC LIMIT ?",
            (fact_type, limit),
        )
        return [self._row_to_fact(row) for row in rows]

    def list_facts_in_range(self, start: str, end: str) -> List[Fact]:
        rows = self._fetchall(
            "SELECT * FROM facts WHERE created_at >= ? AND created_at <= ? ORDER BY created_at ASC, seq ASC",
            (start, end),
        )
        return [self._row_to_fact(row) for row in rows]

    # Tasks
    def upsert_task(self, task: TaskProjection, conn: Optional[sqlite3.Connection] = None) -> None:
        values = {
            **{col: getattr(task, col) for col in _TASK_COLUMNS},
            "labels": _dump_json(list(task.labels)),
            "linked_commits": _dump_json(list(task.linked_commits)),
            "linked_prs": _dump_json(list(task.linked_prs)),
        }
        with self.transaction(conn) as tx:
            tx.execute(_upsert_sql("tasks", _TASK_COLUMNS), tuple(values[col] for col in _TASK_COLUMNS))

    def delete_task(self, task_id: str, conn: Optional[sqlite3.Connection] = None) -> None:
        with self.transaction(conn) as tx:
            tx.execute("DELETE FROM tasks WHERE id = ?", (task_id,))

    def get_task(self, task_id: str) -> Optional[TaskProjection]:
        row = self._fetchone("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return self._row_to_task(row) if row else None

    def find_task_by_external_issue(self, external_issue_id: str) -> Optional[TaskProjection]:
        row = self._fetchone(
            "SELECT * FROM tasks WHERE external_issue_id = ? ORDER BY created_at ASC LIMIT 1",
            (str(external_issue_id),),
        )
        return self._row_to_task(row) if row else None

    def list_tasks(
        self,
        *,
        project_id: Optional[str] = None,
        sprint_id: Optional[str] = None,
        status: Optional[str] = None,
        assignee: Optional[str] = None,
        type: Optional[str] = None,
        priority: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[TaskProjection]:
        """
        List task projections ordered by priority rank, then newest first.

        ``limit=None`` returns every match (board and sprint views).
        """
        where = []
        params: List[Any] = []
        for column, value in (
            ("project_id", project_id),
            ("sprint_id", sprint_id),
            ("status", status),
            ("assignee", assignee),
            ("type", type),
            ("priority", priority),
        ):
            if value is not None:
                where.append(f"{column} = ?")
                params.append(value)
        query = "SELECT * FROM tasks"
        if where:
            query += " WHERE " + " AND ".join(where)
        query += f" ORDER BY {_PRIORITY_ORDER}, created_at DESC, id ASC"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([int(limit), max(0, int(offset))])
        elif offset:
            query += " LIMIT -1 OFFSET ?"
            params.append(max(0, int(offset)))
        return [self._row_to_task(row) for row in self._fetchall(query, params)]

    # Sprints
    def upsert_sprint(self, sprint: SprintProjection, conn: Optional[sqlite3.Connection] = None) -> None:
        with self.transaction(conn) as tx:
            tx.execute(
                _upsert_sql("sprints", _SPRINT_COLUMNS),
                tuple(getattr(sprint, col) for col in _SPRINT_COLUMNS),
            )

    def get_sprint(self, sprint_id: str) -> Optional[SprintProjection]:
        row = self._fetchone("SELECT * FROM sprints WHERE id = ?", (sprint_id,))
        return self._row_to_sprint(row) if row else None

    def list_sprints(
        self,
        project_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[SprintProjection]:
        where = []
        params: List[Any] = []
        if project_id is not None:
            where.append("project_id = ?")
            params.append(project_id)
        if status is not None:
            where.append("status = ?")
            params.append(status)
        query = "SELECT * FROM sprints"
        if where:
            query += " WHERE " + " AND ".join(where)
        query += " ORDER BY start_date DESC, created_at DESC"
        return [self._row_to_sprint(row) for row in self._fetchall(query, params)]

    # Projects
    def upsert_project(self, project: ProjectProjection, conn: Optional[sqlite3.Connection] = None) -> None:
        values = {
            **{col: getattr(project, col) for col in _PROJECT_COLUMNS},
            "settings": _dump_json(dict(project.settings)),
        }
        with self.transaction(conn) as tx:
            tx.execute(_upsert_sql("projects", _PROJECT_COLUMNS), tuple(values[col] for col in _PROJECT_COLUMNS))

    def get_project(self, project_id: str) -> Optional[ProjectProjection]:
        row = self._fetchone("SELECT * FROM projects WHERE id = ?", (project_id,))
        return self._row_to_project(row) if row else None

    def list_projects(self, *, include_archived: bool = False) -> List[ProjectProjection]:
        if include_archived:
            rows = self._fetchall("SELECT * FROM projects ORDER BY created_at ASC, id ASC")
        else:
            rows = self._fetchall(
                "SELECT * FROM projects WHERE status != ? ORDER BY created_at ASC, id ASC",
                (ProjectStatus.ARCHIVED,),
            )
        return [self._row_to_project(row) for row in rows]

    # Velocity history
    def insert_velocity_record(self, record: VelocityRecord, conn: Optional[sqlite3.Connection] = None) -> None:
        with self.transaction(conn) as tx:
            tx.execute(
                """
                INSERT INTO velocity_history (
                    project_id, sprint_id, committed_points,
                    completed_points, completion_rate, recorded_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.project_id,
                    record.sprint_id,
                    record.committed_points,
                    record.completed_points,
                    record.completion_rate,
                    record.recorded_at,
                ),
            )

    def list_velocity_history(
        self,
        project_id: str,
        *,
        limit: Optional[int] = None,
        sprint_id: Optional[str] = None,
    ) -> List[VelocityRecord]:
        """Velocity records, most recently recorded first."""
        query = "SELECT * FROM velocity_history WHERE project_id = ?"
        params: List[Any] = [project_id]
        if sprint_id is not None:
            query += " AND sprint_id = ?"
            params.append(sprint_id)
        query += " ORDER BY recorded_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(max(1, int(limit)))
        return [self._row_to_velocity(row) for row in self._fetchall(query, params)]

    # Row to model converters
    def _row_to_fact(self, row: sqlite3.Row) -> Fact:
        try:
            payload = json.loads(row["payload"])
        except ValueError as exc:
            raise StorageError(
                f"Corrupt payload for fact {row['fact_id']}",
                metadata={"fact_id": row["fact_id"]},
            ) from exc
        return Fact(
            fact_id=row["fact_id"],
            fact_type=row["fact_type"],
            aggregate_type=row["aggregate_type"],
            aggregate_id=row["aggregate_id"],
            payload=load_payload(row["fact_type"], payload),
            metadata=FactMetadata.from_dict(self._parse_json(row["metadata"], None)),
            created_at=row["created_at"],
            version=row["version"],
        )

    def _row_to_task(self, row: sqlite3.Row) -> TaskProjection:
        return TaskProjection(
            id=row["id"],
            project_id=row["project_id"],
            parent_id=row["parent_id"],
            sprint_id=row["sprint_id"],
            title=row["title"],
            description=row["description"],
            status=row["status"],
            priority=row["priority"],
            type=row["type"],
            assignee=row["assignee"],
            labels=self._parse_json(row["labels"], []),
            due_date=row["due_date"],
            estimate_points=row["estimate_points"],
            estimate_hours=row["estimate_hours"],
            actual_hours=row["actual_hours"],
            blocked_reason=row["blocked_reason"],
            branch_name=row["branch_name"],
            linked_commits=self._parse_json(row["linked_commits"], []),
            linked_prs=self._parse_json(row["linked_prs"], []),
            external_issue_id=row["external_issue_id"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_sprint(self, row: sqlite3.Row) -> SprintProjection:
        return SprintProjection(
            id=row["id"],
            project_id=row["project_id"],
            name=row["name"],
            goal=row["goal"],
            status=row["status"] or SprintStatus.PLANNING,
            start_date=row["start_date"],
            end_date=row["end_date"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            velocity_committed=row["velocity_committed"],
            velocity_completed=row["velocity_completed"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_project(self, row: sqlite3.Row) -> ProjectProjection:
        return ProjectProjection(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            status=row["status"],
            settings=self._parse_json(row["settings"], {}),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_velocity(row: sqlite3.Row) -> VelocityRecord:
        return VelocityRecord(
            project_id=row["project_id"],
            sprint_id=row["sprint_id"],
            committed_points=row["committed_points"],
            completed_points=row["completed_points"],
            completion_rate=row["completion_rate"],
            recorded_at=row["recorded_at"],
        )
