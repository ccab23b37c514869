"""
taskledger External Tracker

The boundary to the external issue tracker and its GitHub REST implementation.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from taskledger.config import Config
from taskledger.errors import ExternalTrackerError, TrackerAuthError
from taskledger.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ExternalIssue:
    """An issue as the tracker reports it."""
    id: str
    title: str
    state: str
    updated_at: str
    labels: List[str] = field(default_factory=list)
    body: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_github(cls, data: Dict[str, Any]) -> "ExternalIssue":
        return cls(
            id=str(data["number"]),
            title=data.get("title") or "",
            state=data.get("state") or "open",
            updated_at=data.get("updated_at") or data.get("created_at") or "",
            labels=[
                label["name"] if isinstance(label, dict) else str(label)
                for label in data.get("labels") or []
            ],
            body=data.get("body"),
            url=data.get("html_url"),
        )


class ExternalTracker(Protocol):
    """Operations the reconciliation engine needs from an issue tracker."""

    def get_issue(self, issue_id: str) -> Optional[ExternalIssue]: ...
    def create_issue(self, title: str, body: str, labels: Optional[List[str]] = None) -> ExternalIssue: ...
    def update_issue_state(self, issue_id: str, state: str, labels: Optional[List[str]] = None) -> ExternalIssue: ...
    def add_comment(self, issue_id: str, body: str) -> None: ...
    def list_issues(
        self,
        state: str = "open",
        labels: Optional[List[str]] = None,
        limit: int = 100,
    ) -> List[ExternalIssue]: ...


@dataclass
class GitHubTrackerConfig:
    """GitHub connection configuration."""
    repo: Optional[str]
    token: Optional[str]
    api_url: str = "https://api.github.com"
    timeout: float = 30.0

    @classmethod
    def from_config(cls, config: Config) -> "GitHubTrackerConfig":
        return cls(
            repo=config.tracker_repo,
            token=config.tracker_token,
            api_url=config.tracker_api_url,
            timeout=config.tracker_timeout,
        )


class GitHubTracker:
    """
    GitHub Issues over the REST API.

    Every call without a configured token raises ``TrackerAuthError``; HTTP
    and transport failures raise ``ExternalTrackerError``.

    Example:
        tracker = GitHubTracker(GitHubTrackerConfig(repo="acme/app", token=token))
        issue = tracker.create_issue("Fix login", "Details", labels=["in-progress"])
        tracker.update_issue_state(issue.id, "closed")
    """

    def __init__(
        self,
        config: GitHubTrackerConfig,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if not self.config.token:
            raise TrackerAuthError("No GitHub token configured for the issue tracker")
        if not self.config.repo or "/" not in self.config.repo:
            raise ExternalTrackerError(
                f"Tracker repo must be 'owner/repo', got {self.config.repo!r}",
                retryable=False,
            )
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.config.api_url,
                timeout=self.config.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.config.token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
            )
        return self._client

    def _url(self, path: str) -> str:
        return f"/repos/{self.config.repo}{path}"

    def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            self._client.close()
            self._client = None

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = self._get_client()
        try:
            resp = client.request(method, self._url(path), **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (401, 403):
                raise TrackerAuthError(
                    f"GitHub rejected credentials ({status}) for {method} {path}",
                    metadata={"status_code": status},
                ) from exc
            raise ExternalTrackerError(
                f"GitHub {method} {path} failed with {status}",
                metadata={"status_code": status},
                retryable=status >= 500 or status == 429,
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalTrackerError(f"GitHub {method} {path} failed: {exc}") from exc
        return resp

    def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = self._request(method, path, **kwargs)
        try:
            return resp.json()
        except ValueError as exc:
            raise ExternalTrackerError(
                f"GitHub {method} {path} returned a body that is not JSON",
                metadata={"status_code": resp.status_code},
            ) from exc

    @staticmethod
    def _issue(data: Any, method: str, path: str) -> ExternalIssue:
        try:
            return ExternalIssue.from_github(data)
        except (KeyError, TypeError, AttributeError) as exc:
            raise ExternalTrackerError(
                f"GitHub {method} {path} returned a malformed issue: {exc!r}",
                retryable=False,
            ) from exc

    def get_issue(self, issue_id: str) -> Optional[ExternalIssue]:
        """Fetch one issue; ``None`` when it does not exist."""
        try:
            data = self._json("GET", f"/issues/{issue_id}")
        except ExternalTrackerError as exc:
            if exc.metadata.get("status_code") in (404, 410):
                return None
            raise
        return self._issue(data, "GET", f"/issues/{issue_id}")

    def create_issue(self, title: str, body: str, labels: Optional[List[str]] = None) -> ExternalIssue:
        payload: Dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = list(labels)
        issue = self._issue(self._json("POST", "/issues", json=payload), "POST", "/issues")
        logger.info("issue_created", extra={"issue_id": issue.id, "repo": self.config.repo})
        return issue

    def update_issue_state(self, issue_id: str, state: str, labels: Optional[List[str]] = None) -> ExternalIssue:
        """Open or close an issue; ``labels`` replaces the issue's label set when given."""
        if state not in ("open", "closed"):
            raise ExternalTrackerError(f"Unsupported issue state: {state!r}", retryable=False)
        payload: Dict[str, Any] = {"state": state}
        if labels is not None:
            payload["labels"] = list(labels)
        issue = self._issue(
            self._json("PATCH", f"/issues/{issue_id}", json=payload), "PATCH", f"/issues/{issue_id}"
        )
        logger.info("issue_updated", extra={"issue_id": issue_id, "state": state})
        return issue

    def add_comment(self, issue_id: str, body: str) -> None:
        self._request("POST", f"/issues/{issue_id}/comments", json={"body": body})

    def list_issues(
        self,
        state: str = "open",
        labels: Optional[List[str]] = None,
        limit: int = 100,
    ) -> List[ExternalIssue]:
        """List issues (pull requests excluded), following pages up to ``limit``."""
        limit = max(1, int(limit))
        params: Dict[str, Any] = {"state": state, "per_page": min(limit, 100), "page": 1}
        if labels:
            params["labels"] = ",".join(labels)

        issues: List[ExternalIssue] = []
        while len(issues) < limit:
            items = self._json("GET", "/issues", params=params)
            if not items:
                break
            if not isinstance(items, list):
                raise ExternalTrackerError("GitHub GET /issues did not return a list", retryable=False)
            issues.extend(
                self._issue(item, "GET", "/issues")
                for item in items
                if not (isinstance(item, dict) and "pull_request" in item)
            )
            if len(items) < params["per_page"]:
                break
            params["page"] += 1
        return issues[:limit]
