"""
taskledger Service Base

Services share one store handle and one configuration through a
``ServiceContext``. The context also carries the request id used as the
correlation id on appended facts, and free-form metadata (``actor``,
``source``) that becomes fact metadata.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from taskledger.config import Config
from taskledger.db.database import SQLiteDatabase
from taskledger.logging import get_logger, log_extra


@dataclass(frozen=True)
class ServiceContext:
    config: Config
    db: SQLiteDatabase
    request_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_request_id(self, request_id: str) -> "ServiceContext":
        return replace(self, request_id=request_id, metadata=dict(self.metadata))

    def with_metadata(self, **kwargs: Any) -> "ServiceContext":
        """Derive a context whose metadata is this one's plus ``kwargs``."""
        return replace(self, metadata={**self.metadata, **kwargs})


class Service:
    """
    Common base for components that write facts or read projections.

    Subclasses get ``config``, ``db`` and a logger named after the class.
    ``log_extra`` stamps the context's request id on every record unless
    the call passes its own.
    """

    def __init__(self, context: ServiceContext) -> None:
        self.context = context
        self.config = context.config
        self.db = context.db
        self.logger = get_logger(f"taskledger.{type(self).__name__}")

    def log_extra(self, *, request_id: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
        return log_extra(request_id=request_id or self.context.request_id, **fields)
