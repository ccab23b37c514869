import json

import httpx
import pytest

from taskledger.config import Config
from taskledger.errors import ExternalTrackerError, TrackerAuthError
from taskledger.services.tracker import ExternalIssue, GitHubTracker, GitHubTrackerConfig


def _issue(number: int, state: str = "open", labels=("bug",), **extra) -> dict:
    return {
        "number": number,
        "title": f"Issue {number}",
        "state": state,
        "updated_at": "2024-03-02T10:00:00Z",
        "labels": [{"name": name} for name in labels],
        "body": "Details",
        "html_url": f"https://github.com/acme/app/issues/{number}",
        **extra,
    }


def _tracker(handler, token: str = "ghp_test") -> GitHubTracker:
    return GitHubTracker(
        GitHubTrackerConfig(repo="acme/app", token=token),
        transport=httpx.MockTransport(handler),
    )


def test_from_github_parses_labels() -> None:
    issue = ExternalIssue.from_github(_issue(7, labels=("bug", "in-progress")))

    assert issue.id == "7"
    assert issue.labels == ["bug", "in-progress"]
    assert issue.url.endswith("/issues/7")


def test_config_mapping() -> None:
    cfg = GitHubTrackerConfig.from_config(Config(tracker_repo="acme/app", tracker_token="t", tracker_timeout=5))

    assert cfg.repo == "acme/app"
    assert cfg.token == "t"
    assert cfg.timeout == 5


def test_get_issue_sends_auth_and_returns_none_on_404() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.endswith("/issues/7"):
            return httpx.Response(200, json=_issue(7))
        return httpx.Response(404, json={"message": "Not Found"})

    tracker = _tracker(handler)
    issue = tracker.get_issue("7")

    assert issue.title == "Issue 7"
    assert seen[0].headers["Authorization"] == "Bearer ghp_test"
    assert seen[0].url.path == "/repos/acme/app/issues/7"
    assert tracker.get_issue("8") is None
    tracker.close()


def test_create_and_update_issue_payloads() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append((request.method, request.url.path, json.loads(request.content)))
        if request.method == "POST" and request.url.path.endswith("/comments"):
            return httpx.Response(201, json={"id": 1})
        if request.method == "POST":
            return httpx.Response(201, json=_issue(9, labels=("in-progress",)))
        return httpx.Response(200, json=_issue(9, state="closed", labels=()))

    tracker = _tracker(handler)
    created = tracker.create_issue("Fix login", "Body", labels=["in-progress"])
    closed = tracker.update_issue_state(created.id, "closed", labels=[])
    tracker.add_comment(created.id, "done")

    assert bodies[0] == ("POST", "/repos/acme/app/issues", {"title": "Fix login", "body": "Body", "labels": ["in-progress"]})
    assert bodies[1] == ("PATCH", "/repos/acme/app/issues/9", {"state": "closed", "labels": []})
    assert bodies[2] == ("POST", "/repos/acme/app/issues/9/comments", {"body": "done"})
    assert closed.state == "closed"

    with pytest.raises(ExternalTrackerError):
        tracker.update_issue_state("9", "merged")


def test_list_issues_paginates_and_skips_pull_requests() -> None:
    pages = {
        "1": [_issue(n) for n in range(1, 3)] + [_issue(3, pull_request={"url": "x"})],
        "2": [_issue(4)],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["state"] == "all"
        assert request.url.params["labels"] == "bug,ui"
        return httpx.Response(200, json=pages.get(request.url.params["page"], []))

    tracker = _tracker(handler)
    issues = tracker.list_issues(state="all", labels=["bug", "ui"], limit=3)

    assert [i.id for i in issues] == ["1", "2", "4"]


def test_missing_token_raises_auth_error_without_requests() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be called
        raise AssertionError("no request expected")

    tracker = _tracker(handler, token="")
    with pytest.raises(TrackerAuthError):
        tracker.get_issue("1")
    with pytest.raises(TrackerAuthError):
        tracker.list_issues()


@pytest.mark.parametrize("status,error", [(401, TrackerAuthError), (403, TrackerAuthError), (500, ExternalTrackerError)])
def test_http_errors_are_mapped(status, error) -> None:
    tracker = _tracker(lambda request: httpx.Response(status, json={"message": "nope"}))

    with pytest.raises(error) as exc_info:
        tracker.create_issue("x", "y")
    assert exc_info.value.metadata["status_code"] == status


def test_server_errors_are_retryable_client_errors_are_not() -> None:
    with pytest.raises(ExternalTrackerError) as exc_info:
        _tracker(lambda request: httpx.Response(502)).create_issue("x", "y")
    assert exc_info.value.retryable is True

    with pytest.raises(ExternalTrackerError) as exc_info:
        _tracker(lambda request: httpx.Response(422)).create_issue("x", "y")
    assert exc_info.value.retryable is False


def test_transport_failure_is_tracker_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalTrackerError):
        _tracker(handler).get_issue("1")


def test_non_json_body_is_tracker_error() -> None:
    tracker = _tracker(lambda request: httpx.Response(200, text="<html>proxy error</html>"))

    with pytest.raises(ExternalTrackerError) as exc_info:
        tracker.get_issue("1")
    assert "not JSON" in str(exc_info.value)
    assert exc_info.value.metadata["status_code"] == 200


def test_malformed_issue_payloads_are_tracker_errors() -> None:
    missing_number = {k: v for k, v in _issue(3).items() if k != "number"}

    with pytest.raises(ExternalTrackerError):
        _tracker(lambda request: httpx.Response(200, json=missing_number)).get_issue("3")
    with pytest.raises(ExternalTrackerError):
        _tracker(lambda request: httpx.Response(201, json=["not", "an", "issue"])).create_issue("x", "y")
    with pytest.raises(ExternalTrackerError):
        _tracker(lambda request: httpx.Response(200, json={"message": "rate limited"})).list_issues()
