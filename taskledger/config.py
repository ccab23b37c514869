"""
taskledger Configuration

Pydantic-backed configuration loaded from environment variables.
Uses TASKLEDGER_ prefix for all environment variables.
"""

import os
import threading
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from taskledger.errors import ConfigError

CONFLICT_POLICIES = ("manual", "local-wins", "remote-wins")


class Config(BaseModel):
    """
    Pydantic-backed configuration loaded from environment variables.

    Key env vars:
    - TASKLEDGER_DB_PATH (default: .taskledger.sqlite)
    - TASKLEDGER_LOG_LEVEL (default: INFO), TASKLEDGER_LOG_JSON
    - TASKLEDGER_CONFLICT_POLICY (manual | local-wins | remote-wins)
    - TASKLEDGER_TRACKER_REPO (owner/repo) and TASKLEDGER_TRACKER_TOKEN
      (falls back to GITHUB_TOKEN / GH_TOKEN)
    """

    # Database
    db_path: Path = Field(default=Path(".taskledger.sqlite"))
    db_busy_timeout: float = Field(default=5.0)

    # Environment
    environment: str = Field(default="local")
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    # Projections
    default_page_size: int = Field(default=50)
    max_page_size: int = Field(default=500)

    # Reconciliation
    conflict_policy: str = Field(default="manual")

    # External tracker (GitHub)
    tracker_repo: Optional[str] = Field(default=None)
    tracker_token: Optional[str] = Field(default=None)
    tracker_api_url: str = Field(default="https://api.github.com")
    tracker_timeout: float = Field(default=30.0)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def tracker_enabled(self) -> bool:
        """Check if the external tracker is configured with a repo and a token."""
        return bool(self.tracker_repo and self.tracker_token)

    @property
    def tracker_owner_repo(self) -> Optional[tuple[str, str]]:
        """Split tracker_repo into (owner, repo)."""
        if not self.tracker_repo or "/" not in self.tracker_repo:
            return None
        owner, repo = self.tracker_repo.strip().split("/", 1)
        if not owner or not repo:
            return None
        return owner, repo.removesuffix(".git")


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _parse_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _parse_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def load_config() -> Config:
    """
    Load taskledger configuration from environment.

    Environment variables use the TASKLEDGER_ prefix.
    """
    policy = os.environ.get("TASKLEDGER_CONFLICT_POLICY", "manual").strip().lower()
    if policy not in CONFLICT_POLICIES:
        raise ConfigError(
            f"TASKLEDGER_CONFLICT_POLICY must be one of {', '.join(CONFLICT_POLICIES)}, got {policy!r}"
        )

    max_page_size = _parse_int("TASKLEDGER_MAX_PAGE_SIZE", 500)
    default_page_size = _parse_int("TASKLEDGER_DEFAULT_PAGE_SIZE", 50)
    if max_page_size < 1 or default_page_size < 1:
        raise ConfigError("Page sizes must be positive")

    return Config(
        # Database
        db_path=Path(os.environ.get("TASKLEDGER_DB_PATH", ".taskledger.sqlite")).expanduser(),
        db_busy_timeout=_parse_float("TASKLEDGER_DB_BUSY_TIMEOUT", 5.0),

        # Environment
        environment=os.environ.get("TASKLEDGER_ENV", "local"),
        log_level=os.environ.get("TASKLEDGER_LOG_LEVEL", "INFO"),
        log_json=_parse_bool(os.environ.get("TASKLEDGER_LOG_JSON")),

        # Projections
        default_page_size=min(default_page_size, max_page_size),
        max_page_size=max_page_size,

        # Reconciliation
        conflict_policy=policy,

        # Tracker
        tracker_repo=os.environ.get("TASKLEDGER_TRACKER_REPO") or None,
        tracker_token=(
            os.environ.get("TASKLEDGER_TRACKER_TOKEN")
            or os.environ.get("GITHUB_TOKEN")
            or os.environ.get("GH_TOKEN")
            or None
        ),
        tracker_api_url=os.environ.get("TASKLEDGER_TRACKER_API_URL", "https://api.github.com").rstrip("/"),
        tracker_timeout=_parse_float("TASKLEDGER_TRACKER_TIMEOUT", 30.0),
    )


# Singleton config instance (lazy loaded)
_config: Optional[Config] = None
_config_lock = threading.Lock()


def get_config() -> Config:
    """Get or create the singleton config instance."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_config()
    return _config


def _reset_config_for_tests() -> None:
    """Reset the global config cache (tests only)."""
    global _config
    with _config_lock:
        _config = None
