"""
Mapping between local task statuses and the external tracker's vocabulary.

GitHub issues only know ``open``/``closed``; finer-grained statuses travel
as labels. Commit messages may carry magic words (``fixes #12``) that imply
a status change for the referenced issue.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from taskledger.models.domain import TaskStatus

ISSUE_OPEN = "open"
ISSUE_CLOSED = "closed"


@dataclass(frozen=True)
class StatusMapping:
    status: str
    issue_state: str
    board_status: str
    labels: Tuple[str, ...] = ()


DEFAULT_MAPPINGS: Tuple[StatusMapping, ...] = (
    StatusMapping(TaskStatus.TODO, ISSUE_OPEN, "Todo"),
    StatusMapping(TaskStatus.IN_PROGRESS, ISSUE_OPEN, "In Progress", ("in-progress",)),
    StatusMapping(TaskStatus.IN_REVIEW, ISSUE_OPEN, "In Review", ("in-review",)),
    StatusMapping(TaskStatus.DONE, ISSUE_CLOSED, "Done"),
    StatusMapping(TaskStatus.BLOCKED, ISSUE_OPEN, "Blocked", ("blocked",)),
    StatusMapping(TaskStatus.CANCELLED, ISSUE_CLOSED, "Done", ("wontfix",)),
)
_BY_STATUS: Dict[str, StatusMapping] = {m.status: m for m in DEFAULT_MAPPINGS}

# Checked in order: the first label present decides.
_LABEL_PRECEDENCE = (
    ("blocked", TaskStatus.BLOCKED),
    ("in-review", TaskStatus.IN_REVIEW),
    ("in-progress", TaskStatus.IN_PROGRESS),
    ("wontfix", TaskStatus.CANCELLED),
)

MAGIC_WORDS: Dict[str, Optional[str]] = {
    **dict.fromkeys(("fixes", "fix", "closes", "close", "resolves", "resolve"), TaskStatus.DONE),
    **dict.fromkeys(("refs", "ref", "relates", "relate"), None),
    "wip": TaskStatus.IN_PROGRESS,
    "review": TaskStatus.IN_REVIEW,
    **dict.fromkeys(("done", "complete", "completed"), TaskStatus.DONE),
    **dict.fromkeys(("blocks", "block"), TaskStatus.BLOCKED),
}
_REFERENCE_PATTERN = re.compile(r"\b(\w+)\s+#(\d+)", re.IGNORECASE)


def status_to_issue_state(status: str) -> str:
    mapping = _BY_STATUS.get(status)
    return mapping.issue_state if mapping else ISSUE_OPEN


def status_to_board_status(status: str) -> str:
    mapping = _BY_STATUS.get(status)
    return mapping.board_status if mapping else "Todo"


def status_to_labels(status: str) -> Tuple[List[str], List[str]]:
    """Labels to (add, remove) on the issue so it reflects ``status``."""
    mapping = _BY_STATUS.get(status)
    add = list(mapping.labels) if mapping else []
    remove: List[str] = []
    for other in DEFAULT_MAPPINGS:
        for label in other.labels:
            if label not in add and label not in remove:
                remove.append(label)
    return add, remove


def issue_to_status(state: str, labels: Iterable[str] = ()) -> str:
    """
    Infer a local status from issue state and labels.

    Labels refine the state but never contradict it: a label whose status
    maps to the other issue state (``in-progress`` on a closed issue) is
    ignored, so the result always satisfies ``statuses_equivalent``.
    """
    present = {label.lower() for label in labels}
    for label, status in _LABEL_PRECEDENCE:
        if label in present and status_to_issue_state(status) == state:
            return status
    return TaskStatus.DONE if state == ISSUE_CLOSED else TaskStatus.TODO


def board_status_to_status(board_status: str) -> str:
    """Infer a local status from free-form project board column text."""
    normalized = board_status.lower()
    if "done" in normalized or "complete" in normalized:
        return TaskStatus.DONE
    if "review" in normalized:
        return TaskStatus.IN_REVIEW
    if "progress" in normalized or "doing" in normalized:
        return TaskStatus.IN_PROGRESS
    if "block" in normalized:
        return TaskStatus.BLOCKED
    if "cancel" in normalized or "wont" in normalized or "won't" in normalized:
        return TaskStatus.CANCELLED
    return TaskStatus.TODO


def statuses_equivalent(local_status: str, issue_state: str) -> bool:
    """Whether a local status and an issue state agree (done/cancelled <-> closed)."""
    return status_to_issue_state(local_status) == issue_state


def magic_word_to_status(word: str) -> Optional[str]:
    return MAGIC_WORDS.get(word.lower())


def parse_issue_references(message: str) -> Dict[int, Optional[str]]:
    """
    Issue numbers referenced with a magic word, mapped to the implied status.

    Link-only words (``refs #4``) map to ``None``. A later reference to the
    same issue overrides an earlier one.
    """
    references: Dict[int, Optional[str]] = {}
    for word, number in _REFERENCE_PATTERN.findall(message or ""):
        if word.lower() in MAGIC_WORDS:
            references[int(number)] = MAGIC_WORDS[word.lower()]
    return references


def parse_status_changes(message: str) -> Dict[int, str]:
    """Issue number -> new status for every status-changing magic word in ``message``."""
    return {number: status for number, status in parse_issue_references(message).items() if status is not None}
