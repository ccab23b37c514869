"""
taskledger Reconciliation Engine

Compares projected task state with the external tracker, classifies each
pair and applies the configured resolution policy. Tracker calls are made
without holding any store lock; the follow-up write is a single append.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from taskledger.config import CONFLICT_POLICIES
from taskledger.errors import EntityNotFoundError, ExternalTrackerError, ValidationError
from taskledger.models.domain import FactMetadata, TaskProjection, TaskStatus
from taskledger.repositories.tasks import TaskRepository
from taskledger.services.base import Service, ServiceContext
from taskledger.services.status_mapping import (
    issue_to_status,
    status_to_issue_state,
    status_to_labels,
    statuses_equivalent,
)
from taskledger.services.tracker import ExternalIssue, ExternalTracker
from taskledger.time_utils import parse_timestamp


class Verdict:
    """Outcome of comparing one local task with its issue."""
    UNCHANGED = "unchanged"
    PUSH = "push"
    PULL = "pull"
    CONFLICT = "conflict"


class ConflictPolicy:
    MANUAL = "manual"
    LOCAL_WINS = "local-wins"
    REMOTE_WINS = "remote-wins"


RECONCILIATION_SOURCE = "reconciliation"

# Labels that only encode status; not carried over as task labels on import.
_STATUS_LABELS = frozenset(status_to_labels(TaskStatus.TODO)[1])


@dataclass
class ReconciliationRecord:
    """Comparison of one task with its issue. Never persisted."""
    task_id: str
    local_status: str
    local_updated_at: str
    verdict: str
    issue_id: Optional[str] = None
    remote_state: Optional[str] = None
    remote_status: Optional[str] = None
    remote_updated_at: Optional[str] = None
    action: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class ReconciliationReport:
    policy: str
    dry_run: bool
    records: List[ReconciliationRecord] = field(default_factory=list)

    def _with_verdict(self, verdict: str) -> List[ReconciliationRecord]:
        return [r for r in self.records if r.verdict == verdict]

    @property
    def conflicts(self) -> List[ReconciliationRecord]:
        return self._with_verdict(Verdict.CONFLICT)

    @property
    def pushed(self) -> List[ReconciliationRecord]:
        return [r for r in self._with_verdict(Verdict.PUSH) if r.error is None]

    @property
    def pulled(self) -> List[ReconciliationRecord]:
        return [r for r in self._with_verdict(Verdict.PULL) if r.error is None]

    @property
    def unchanged(self) -> List[ReconciliationRecord]:
        return self._with_verdict(Verdict.UNCHANGED)

    @property
    def errors(self) -> List[ReconciliationRecord]:
        return [r for r in self.records if r.error is not None]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy": self.policy,
            "dry_run": self.dry_run,
            "records": [r.to_dict() for r in self.records],
            "summary": {
                "total": len(self.records),
                "unchanged": len(self.unchanged),
                "pushed": len(self.pushed),
                "pulled": len(self.pulled),
                "conflicts": len(self.conflicts),
                "errors": len(self.errors),
            },
        }


def classify(
    local_status: str,
    local_updated_at: str,
    remote: Optional[ExternalIssue],
    policy: str = ConflictPolicy.MANUAL,
) -> str:
    """
    Decide what to do with one task.

    No issue means push. Equivalent statuses mean unchanged. Otherwise the
    policy decides: ``local-wins`` pushes, ``remote-wins`` pulls, and
    ``manual`` pulls unless the local side is strictly newer, in which case
    it reports a conflict. Equal timestamps go to the remote side.
    """
    if remote is None:
        return Verdict.PUSH
    if statuses_equivalent(local_status, remote.state):
        return Verdict.UNCHANGED
    if policy == ConflictPolicy.LOCAL_WINS:
        return Verdict.PUSH
    if policy == ConflictPolicy.REMOTE_WINS:
        return Verdict.PULL
    if parse_timestamp(local_updated_at) > parse_timestamp(remote.updated_at):
        return Verdict.CONFLICT
    return Verdict.PULL


class ReconciliationEngine(Service):
    """
    Synchronizes task projections with an external tracker.

    Example:
        engine = ReconciliationEngine(context, tasks, tracker)
        report = engine.reconcile("project-1", policy="remote-wins")
        for record in report.conflicts:
            ...
    """

    def __init__(
        self,
        context: ServiceContext,
        tasks: TaskRepository,
        tracker: ExternalTracker,
    ) -> None:
        super().__init__(context)
        self.tasks = tasks
        self.tracker = tracker

    def _metadata(self) -> FactMetadata:
        return FactMetadata(
            actor=RECONCILIATION_SOURCE,
            source=RECONCILIATION_SOURCE,
            correlation_id=self.context.request_id,
        )

    def reconcile(
        self,
        tasks: Union[str, Sequence[TaskProjection]],
        policy: Optional[str] = None,
        dry_run: bool = False,
    ) -> ReconciliationReport:
        """
        Reconcile every task of a project (by id) or an explicit task list.

        A failure on one task is recorded on its record and the batch goes on.
        With ``dry_run`` only the tracker reads happen; nothing is written on
        either side.
        """
        policy = policy or self.config.conflict_policy
        if policy not in CONFLICT_POLICIES:
            raise ValidationError(f"Unknown conflict policy: {policy!r}")

        project_id = tasks if isinstance(tasks, str) else None
        items = self.tasks.list_for_project(tasks) if isinstance(tasks, str) else list(tasks)
        report = ReconciliationReport(policy=policy, dry_run=dry_run)

        for task in items:
            record = ReconciliationRecord(
                task_id=task.id,
                local_status=task.status,
                local_updated_at=task.updated_at,
                verdict=Verdict.UNCHANGED,
                issue_id=task.external_issue_id,
            )
            try:
                self._reconcile_task(task, record, policy, dry_run)
            except (ExternalTrackerError, ValidationError, EntityNotFoundError) as exc:
                record.action = "error"
                record.error = str(exc)
                self.logger.warning(
                    f"Reconciliation failed for task {task.id}: {exc}",
                    extra=self.log_extra(
                        project_id=task.project_id,
                        aggregate_type="task",
                        aggregate_id=task.id,
                        error_category=exc.category,
                    ),
                )
            report.records.append(record)

        self.logger.info(
            "Reconciliation finished",
            extra=self.log_extra(
                project_id=project_id,
                policy=policy,
                dry_run=dry_run,
                total=len(report.records),
                conflicts=len(report.conflicts),
                errors=len(report.errors),
            ),
        )
        return report

    def _reconcile_task(
        self,
        task: TaskProjection,
        record: ReconciliationRecord,
        policy: str,
        dry_run: bool,
    ) -> None:
        remote = self.tracker.get_issue(task.external_issue_id) if task.external_issue_id else None
        if remote is not None:
            try:
                parse_timestamp(remote.updated_at)
            except ValueError as exc:
                raise ExternalTrackerError(
                    f"Issue {remote.id} has an unreadable updated_at: {remote.updated_at!r}",
                    retryable=False,
                ) from exc
            record.remote_state = remote.state
            record.remote_status = issue_to_status(remote.state, remote.labels)
            record.remote_updated_at = remote.updated_at

        record.verdict = classify(task.status, task.updated_at, remote, policy)
        if dry_run or record.verdict in (Verdict.UNCHANGED, Verdict.CONFLICT):
            record.action = "none"
            return

        if record.verdict == Verdict.PULL:
            self._pull(task, remote)
            record.action = "updated_local"
        elif remote is None:
            record.issue_id = self._create_remote(task).id
            record.action = "created_remote"
        else:
            self._push(task, remote)
            record.action = "updated_remote"

    def _pull(self, task: TaskProjection, remote: ExternalIssue) -> Optional[TaskProjection]:
        new_status = issue_to_status(remote.state, remote.labels)
        return self.tasks.record(
            "TaskStatusChanged",
            task.id,
            {"from": task.status, "to": new_status},
            self._metadata(),
            expected_version=task.version,
        )

    def _push(self, task: TaskProjection, remote: ExternalIssue) -> ExternalIssue:
        add, remove = status_to_labels(task.status)
        labels = [label for label in remote.labels if label not in remove]
        labels.extend(label for label in add if label not in labels)
        updated = self.tracker.update_issue_state(remote.id, status_to_issue_state(task.status), labels=labels)
        self.tracker.add_comment(remote.id, f"Task status updated to: {task.status}")
        return updated

    def _create_remote(self, task: TaskProjection) -> ExternalIssue:
        add, _ = status_to_labels(task.status)
        issue = self.tracker.create_issue(task.title, task.description or "", labels=add + list(task.labels))
        if status_to_issue_state(task.status) != issue.state:
            issue = self.tracker.update_issue_state(issue.id, status_to_issue_state(task.status))
        self.tasks.record(
            "TaskUpdated",
            task.id,
            {"external_issue_id": issue.id},
            self._metadata(),
            expected_version=task.version,
        )
        return issue

    def import_issues(
        self,
        project_id: str,
        *,
        state: str = "open",
        labels: Optional[List[str]] = None,
        limit: int = 100,
    ) -> List[TaskProjection]:
        """Create local tasks for tracker issues no task is linked to yet."""
        created: List[TaskProjection] = []
        for issue in self.tracker.list_issues(state=state, labels=labels, limit=limit):
            if self.tasks.get_by_external_issue(issue.id) is not None:
                continue
            task = self._import_issue(project_id, issue)
            if task is not None:
                created.append(task)

        self.logger.info(
            f"Imported {len(created)} issue(s)",
            extra=self.log_extra(project_id=project_id, imported=len(created)),
        )
        return created

    def _import_issue(self, project_id: str, issue: ExternalIssue) -> Optional[TaskProjection]:
        task_id = str(uuid.uuid4())
        metadata = self._metadata()
        try:
            self.tasks.record(
                "TaskCreated",
                task_id,
                {
                    "title": issue.title,
                    "project_id": project_id,
                    "description": issue.body,
                    "labels": [label for label in issue.labels if label not in _STATUS_LABELS],
                },
                metadata,
                expected_version=0,
            )
        except ValidationError as exc:
            self.logger.warning(
                f"Skipping issue {issue.id}: {exc}",
                extra=self.log_extra(project_id=project_id, issue_id=issue.id),
            )
            return None
        task = self.tasks.record("TaskUpdated", task_id, {"external_issue_id": issue.id}, metadata)
        status = issue_to_status(issue.state, issue.labels)
        if status != TaskStatus.TODO:
            task = self.tasks.record("TaskStatusChanged", task_id, {"from": TaskStatus.TODO, "to": status}, metadata)
        return task


