import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional

import pytest

from taskledger.config import Config, _reset_config_for_tests
from taskledger.core import TaskLedgerCore, build_core
from taskledger.db.database import SQLiteDatabase
from taskledger.services.fact_log import FactLog


class ManualClock:
    """Deterministic clock for facts: returns ``now`` and advances by ``step`` per call."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.step
        return current

    def set(self, value: datetime) -> None:
        self.now = value


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in ("GITHUB_TOKEN", "GH_TOKEN", "TASKLEDGER_TRACKER_TOKEN", "TASKLEDGER_TRACKER_REPO"):
        monkeypatch.delenv(name, raising=False)
    _reset_config_for_tests()
    yield
    _reset_config_for_tests()


@pytest.fixture
def tmp_db_path() -> Iterator[Path]:
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "taskledger.sqlite"


@pytest.fixture
def db(tmp_db_path: Path) -> SQLiteDatabase:
    database = SQLiteDatabase(tmp_db_path)
    database.init_schema()
    return database


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def fact_log(db: SQLiteDatabase, clock: ManualClock) -> FactLog:
    return FactLog(db, clock=clock)


@pytest.fixture
def config(tmp_db_path: Path) -> Config:
    return Config(db_path=tmp_db_path)


@pytest.fixture
def core(config: Config, clock: ManualClock) -> Iterator[TaskLedgerCore]:
    ledger = build_core(config, clock=clock)
    yield ledger
    ledger.close()
