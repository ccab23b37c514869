import threading
from pathlib import Path

import pytest

from taskledger.config import _reset_config_for_tests, get_config, load_config
from taskledger.errors import ConfigError


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("TASKLEDGER_DB_PATH", "TASKLEDGER_CONFLICT_POLICY", "TASKLEDGER_LOG_JSON"):
        monkeypatch.delenv(name, raising=False)

    cfg = load_config()

    assert cfg.db_path == Path(".taskledger.sqlite")
    assert cfg.conflict_policy == "manual"
    assert cfg.log_json is False
    assert cfg.tracker_enabled is False
    assert cfg.tracker_owner_repo is None


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TASKLEDGER_DB_PATH", str(tmp_path / "ledger.sqlite"))
    monkeypatch.setenv("TASKLEDGER_CONFLICT_POLICY", "Remote-Wins")
    monkeypatch.setenv("TASKLEDGER_LOG_JSON", "yes")
    monkeypatch.setenv("TASKLEDGER_DEFAULT_PAGE_SIZE", "900")
    monkeypatch.setenv("TASKLEDGER_MAX_PAGE_SIZE", "200")
    monkeypatch.setenv("TASKLEDGER_TRACKER_REPO", "acme/app.git")
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_fallback")

    cfg = load_config()

    assert cfg.db_path == tmp_path / "ledger.sqlite"
    assert cfg.conflict_policy == "remote-wins"
    assert cfg.log_json is True
    assert cfg.default_page_size == 200
    assert cfg.max_page_size == 200
    assert cfg.tracker_token == "ghp_fallback"
    assert cfg.tracker_enabled is True
    assert cfg.tracker_owner_repo == ("acme", "app")


def test_explicit_tracker_token_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_fallback")
    monkeypatch.setenv("TASKLEDGER_TRACKER_TOKEN", "ghp_explicit")

    assert load_config().tracker_token == "ghp_explicit"


@pytest.mark.parametrize(
    "name,value",
    [
        ("TASKLEDGER_CONFLICT_POLICY", "coin-flip"),
        ("TASKLEDGER_DB_BUSY_TIMEOUT", "soon"),
        ("TASKLEDGER_MAX_PAGE_SIZE", "lots"),
        ("TASKLEDGER_DEFAULT_PAGE_SIZE", "0"),
    ],
)
def test_invalid_values_raise(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigError):
        load_config()


def test_config_singleton_thread_safe() -> None:
    _reset_config_for_tests()
    results = []
    lock = threading.Lock()

    def worker() -> None:
        cfg = get_config()
        with lock:
            results.append(cfg)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    first = results[0]
    assert all(item is first for item in results)
