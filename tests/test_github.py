from __future__ import annotations

import json
import threading
from unittest.mock import Mock, patch

import pytest
import requests

from ghchk.errors import (
    AuthError,
    Cancelled,
    ErrorKind,
    GitHubAPIError,
    MalformedResponseError,
    NotFoundError,
    RateLimitError,
)
from ghchk.github import PAGE_SIZE, GitHubClient
from ghchk.models import EventKind, ItemKey
from ghchk.ratelimit import RateLimiter

KEY = ItemKey("octo", "repo", 12)


def _node(kind: str, login: str | None, created_at: str, typename: str = "User") -> dict:
    assignee = None
    if login is not None or typename != "User":
        assignee = {"__typename": typename}
        if typename == "User":
            assignee.update({"login": login, "name": login.title()})
    return {"__typename": kind, "createdAt": created_at, "assignee": assignee}


def _page(nodes: list, has_next: bool = False, cursor: str | None = None, title: str = "Fix the thing") -> dict:
    return {
        "data": {
            "repository": {
                "issueOrPullRequest": {
                    "__typename": "Issue",
                    "title": title,
                    "timelineItems": {
                        "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
                        "nodes": nodes,
                    },
                }
            }
        }
    }


def _response(data, status: int = 200, headers: dict | None = None) -> Mock:
    response = Mock()
    response.status_code = status
    response.headers = headers or {}
    response.json.return_value = data
    response.text = json.dumps(data)
    return response


def _client(**kwargs) -> GitHubClient:
    return GitHubClient(token="test-token", rate_limiter=RateLimiter(rate=1000, burst=1000), **kwargs)


def test_fetch_is_lazy_and_paginates_with_cursor():
    client = _client()
    pages = [
        _response(_page([_node("AssignedEvent", "alice", "2024-01-01T00:00:00Z")], True, "c1")),
        _response(_page([_node("AssignedEvent", "bob", "2024-01-02T00:00:00Z")], False, "c2")),
    ]

    with patch.object(client.session, "post", side_effect=pages) as post:
        timeline = client.fetch_timeline(KEY)
        assert post.call_count == 0

        events = list(timeline)

    assert [e.assignee.login for e in events] == ["alice", "bob"]
    assert timeline.title == "Fix the thing"
    assert post.call_count == 2
    first_vars = post.call_args_list[0].kwargs["json"]["variables"]
    second_vars = post.call_args_list[1].kwargs["json"]["variables"]
    assert first_vars == {"owner": "octo", "name": "repo", "number": 12, "first": PAGE_SIZE, "after": None}
    assert second_vars["after"] == "c1"


def test_fetch_is_restartable():
    client = _client()
    page = _page([_node("AssignedEvent", "alice", "2024-01-01T00:00:00Z")])

    with patch.object(client.session, "post", side_effect=lambda *a, **kw: _response(page)) as post:
        timeline = client.fetch_timeline(KEY)
        assert list(timeline) == list(timeline)

    assert post.call_count == 2


def test_duplicates_across_page_boundary_are_dropped():
    client = _client()
    repeated = _node("AssignedEvent", "alice", "2024-01-01T00:00:00Z")
    pages = [
        _response(_page([repeated], True, "c1")),
        _response(_page([repeated, _node("UnassignedEvent", "alice", "2024-01-02T00:00:00Z")])),
    ]

    with patch.object(client.session, "post", side_effect=pages):
        events = list(client.fetch_timeline(KEY))

    assert [(e.kind, e.assignee.login) for e in events] == [
        (EventKind.ASSIGNED, "alice"),
        (EventKind.UNASSIGNED, "alice"),
    ]


def test_repeats_at_each_page_boundary_are_dropped():
    client = _client()
    first = _node("AssignedEvent", "alice", "2024-01-01T00:00:00Z")
    second = _node("AssignedEvent", "bob", "2024-01-02T00:00:00Z")
    third = _node("UnassignedEvent", "alice", "2024-01-03T00:00:00Z")
    pages = [
        _response(_page([first], True, "c1")),
        _response(_page([first, second], True, "c2")),
        _response(_page([second, third])),
    ]

    with patch.object(client.session, "post", side_effect=pages):
        events = list(client.fetch_timeline(KEY))

    assert [(e.kind, e.assignee.login) for e in events] == [
        (EventKind.ASSIGNED, "alice"),
        (EventKind.ASSIGNED, "bob"),
        (EventKind.UNASSIGNED, "alice"),
    ]


@pytest.mark.parametrize("created_at", [None, 1704067200, "yesterday"])
def test_bad_created_at_is_malformed(created_at):
    client = _client()
    page = _page([_node("AssignedEvent", "alice", created_at)])

    with patch.object(client.session, "post", return_value=_response(page)):
        with pytest.raises(MalformedResponseError):
            list(client.fetch_timeline(KEY))


def test_non_user_assignees_dropped_with_warning():
    client = _client()
    page = _page([
        _node("AssignedEvent", None, "2024-01-01T00:00:00Z", typename="Bot"),
        _node("AssignedEvent", None, "2024-01-01T01:00:00Z"),
        _node("AssignedEvent", "alice", "2024-01-02T00:00:00Z"),
    ])
    warnings = []

    with patch.object(client.session, "post", return_value=_response(page)):
        events = list(client.fetch_timeline(KEY, on_warning=warnings.append))

    assert [e.assignee.login for e in events] == ["alice"]
    assert len(warnings) == 2
    assert "Bot" in warnings[0]
    assert "deleted account" in warnings[1]


def test_events_within_page_are_sorted():
    client = _client()
    page = _page([
        _node("UnassignedEvent", "alice", "2024-01-03T00:00:00Z"),
        _node("AssignedEvent", "alice", "2024-01-01T00:00:00Z"),
    ])

    with patch.object(client.session, "post", return_value=_response(page)):
        events = list(client.fetch_timeline(KEY))

    assert [e.kind for e in events] == [EventKind.ASSIGNED, EventKind.UNASSIGNED]


def test_page_going_back_in_time_is_malformed():
    client = _client()
    pages = [
        _response(_page([_node("AssignedEvent", "alice", "2024-01-05T00:00:00Z")], True, "c1")),
        _response(_page([_node("AssignedEvent", "bob", "2024-01-01T00:00:00Z")])),
    ]

    with patch.object(client.session, "post", side_effect=pages):
        with pytest.raises(MalformedResponseError):
            list(client.fetch_timeline(KEY))


def test_cursor_that_does_not_advance_is_malformed():
    client = _client()
    page = _page([], True, None)

    with patch.object(client.session, "post", return_value=_response(page)):
        with pytest.raises(MalformedResponseError):
            list(client.fetch_timeline(KEY))


def test_missing_repository_is_not_found():
    client = _client()
    with patch.object(client.session, "post", return_value=_response({"data": {"repository": None}})):
        with pytest.raises(NotFoundError):
            list(client.fetch_timeline(KEY))


def test_missing_item_is_not_found():
    client = _client()
    body = {"data": {"repository": {"issueOrPullRequest": None}}}
    with patch.object(client.session, "post", return_value=_response(body)):
        with pytest.raises(NotFoundError):
            list(client.fetch_timeline(KEY))


@pytest.mark.parametrize(
    "error_type, expected",
    [
        ("NOT_FOUND", NotFoundError),
        ("RATE_LIMITED", RateLimitError),
        ("FORBIDDEN", AuthError),
        ("SOMETHING_ELSE", MalformedResponseError),
    ],
)
def test_graphql_errors_are_classified(error_type, expected):
    client = _client()
    body = {"data": None, "errors": [{"type": error_type, "message": "nope"}]}
    with patch.object(client.session, "post", return_value=_response(body)):
        with pytest.raises(expected):
            list(client.fetch_timeline(KEY))


@pytest.mark.parametrize(
    "status, headers, kind",
    [
        (401, {}, ErrorKind.AUTH),
        (403, {}, ErrorKind.AUTH),
        (403, {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"}, ErrorKind.RATE_LIMITED),
        (429, {}, ErrorKind.RATE_LIMITED),
        (404, {}, ErrorKind.NOT_FOUND),
        (502, {}, ErrorKind.NETWORK),
        (422, {}, ErrorKind.MALFORMED),
    ],
)
def test_http_status_is_classified(status, headers, kind):
    client = _client()
    with patch.object(client.session, "post", return_value=_response({}, status, headers)):
        with pytest.raises(GitHubAPIError) as excinfo:
            list(client.fetch_timeline(KEY))
    assert excinfo.value.kind is kind
    assert excinfo.value.status_code == status


def test_rate_limit_reset_time_is_kept():
    client = _client()
    headers = {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"}
    with patch.object(client.session, "post", return_value=_response({}, 403, headers)):
        with pytest.raises(RateLimitError) as excinfo:
            list(client.fetch_timeline(KEY))
    assert excinfo.value.reset_time == 1700000000


def test_non_json_body_is_malformed():
    client = _client()
    response = _response({})
    response.json.side_effect = ValueError("no json")
    with patch.object(client.session, "post", return_value=response):
        with pytest.raises(MalformedResponseError):
            list(client.fetch_timeline(KEY))


def test_network_error_is_not_retried_by_default():
    client = _client()
    with patch.object(client.session, "post", side_effect=requests.ConnectionError("down")) as post:
        with pytest.raises(GitHubAPIError) as excinfo:
            list(client.fetch_timeline(KEY))

    assert excinfo.value.kind is ErrorKind.NETWORK
    assert post.call_count == 1


def test_network_error_retried_when_configured():
    client = _client(max_retries=1)
    side_effect = [requests.ConnectionError("blip"), _response(_page([]))]

    with patch("ghchk.github.time.sleep"):
        with patch.object(client.session, "post", side_effect=side_effect) as post:
            assert list(client.fetch_timeline(KEY)) == []

    assert post.call_count == 2


def test_missing_token_is_auth_error_without_request():
    client = GitHubClient(token=None)
    with patch.object(client.session, "post") as post:
        with pytest.raises(AuthError):
            list(client.fetch_timeline(KEY))
    post.assert_not_called()


def test_token_sent_as_bearer():
    client = _client()
    assert client.session.headers["Authorization"] == "bearer test-token"


def test_cancelled_before_request():
    client = GitHubClient(token="t", rate_limiter=RateLimiter(rate=0.001, burst=1))
    client.rate_limiter.try_acquire()
    event = threading.Event()
    event.set()

    with patch.object(client.session, "post") as post:
        with pytest.raises(Cancelled):
            list(client.fetch_timeline(KEY, cancel_event=event))
    post.assert_not_called()


def test_mock_file_replaces_network(tmp_path):
    mock_file = tmp_path / "mock.json"
    mock_file.write_text(json.dumps(_page([_node("AssignedEvent", "alice", "2024-01-01T00:00:00Z")])))
    client = GitHubClient(token=None, mock_file=mock_file)

    with patch.object(client.session, "post") as post:
        events = list(client.fetch_timeline(KEY))

    post.assert_not_called()
    assert events[0].assignee.login == "alice"
    assert events[0].assignee.display_name == "Alice"
