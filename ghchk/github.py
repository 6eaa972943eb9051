"""
GitHub GraphQL client for gh-chk.

Fetches the assignment timeline of an issue or pull request.

Supports:
- Cursor pagination (100 timeline items per page)
- Shared rate limiting across worker threads
- Mapping HTTP/GraphQL failures onto the gh-chk error kinds
- Replaying a canned response from a file (GH_CHK_MOCK_FILE)
"""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterator

import requests

from . import __version__
from .errors import (
    AuthError,
    Cancelled,
    ErrorKind,
    GitHubAPIError,
    MalformedResponseError,
    NotFoundError,
    RateLimitError,
)
from .models import Assignee, EventKind, ItemKey, TimelineEvent, parse_timestamp
from .ratelimit import RateLimiter


logger = logging.getLogger(__name__)

GRAPHQL_URL = "https://api.github.com/graphql"
PAGE_SIZE = 100
RETRY_DELAY = 1.0
DEFAULT_TIMEOUT = 30.0

_TIMELINE_SELECTION = """
      timelineItems(first: $first, after: $after, itemTypes: [ASSIGNED_EVENT, UNASSIGNED_EVENT]) {
        pageInfo { hasNextPage endCursor }
        nodes {
          __typename
          ... on AssignedEvent {
            createdAt
            assignee { __typename ... on User { login name } }
          }
          ... on UnassignedEvent {
            createdAt
            assignee { __typename ... on User { login name } }
          }
        }
      }"""

TIMELINE_QUERY = (
    "query($owner: String!, $name: String!, $number: Int!, $first: Int!, $after: String) {\n"
    "  repository(owner: $owner, name: $name) {\n"
    "    issueOrPullRequest(number: $number) {\n"
    "      __typename\n"
    "      ... on Issue {\n"
    "        title" + _TIMELINE_SELECTION + "\n"
    "      }\n"
    "      ... on PullRequest {\n"
    "        title" + _TIMELINE_SELECTION + "\n"
    "      }\n"
    "    }\n"
    "  }\n"
    "}\n"
)

WarningCallback = Callable[[str], None]


class AssignmentTimeline:
    """
    Lazy, restartable sequence of assignment events for one item.

    Each iteration starts again from the first page and requests the next
    page only when the previous one is exhausted. ``title`` is filled in once
    the first page has been loaded.
    """

    def __init__(
        self,
        client: "GitHubClient",
        key: ItemKey,
        on_warning: WarningCallback | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.client = client
        self.key = key
        self.title: str | None = None
        self._on_warning = on_warning
        self._cancel_event = cancel_event

    def _warn(self, message: str) -> None:
        logger.warning(message)
        if self._on_warning:
            self._on_warning(message)

    def __iter__(self) -> Iterator[TimelineEvent]:
        # Identities of the previous and current page; repeats only occur at page boundaries
        previous_page: set[tuple] = set()
        current_page: set[tuple] = set()
        last_yielded = None
        cursor: str | None = None

        while True:
            data = self.client.query(
                TIMELINE_QUERY,
                {
                    "owner": self.key.owner,
                    "name": self.key.name,
                    "number": self.key.number,
                    "first": PAGE_SIZE,
                    "after": cursor,
                },
                cancel_event=self._cancel_event,
            )
            title, nodes, has_next, end_cursor = _parse_page(self.key, data)
            if self.title is None:
                self.title = title

            events = []
            for node in nodes:
                event = self._parse_node(node)
                if event is not None:
                    events.append(event)
            events.sort(key=lambda e: e.timestamp)
            previous_page, current_page = current_page, set()

            for event in events:
                if event.identity in previous_page or event.identity in current_page:
                    continue
                if last_yielded is not None and event.timestamp < last_yielded:
                    raise MalformedResponseError(
                        f"Timeline for {self.key} went back in time across pages "
                        f"({event.timestamp.isoformat()} < {last_yielded.isoformat()})"
                    )
                current_page.add(event.identity)
                last_yielded = event.timestamp
                yield event

            if not has_next:
                break
            if not end_cursor or end_cursor == cursor:
                raise MalformedResponseError(f"Pagination cursor did not advance for {self.key}")
            cursor = end_cursor

    def _parse_node(self, node: Any) -> TimelineEvent | None:
        """Parse one timeline node; returns None for events dropped with a warning."""
        if not isinstance(node, dict):
            raise MalformedResponseError(f"Unexpected timeline node for {self.key}: {node!r}")

        try:
            kind = EventKind(node.get("__typename"))
        except ValueError:
            raise MalformedResponseError(
                f"Unexpected timeline item type for {self.key}: {node.get('__typename')!r}"
            )

        created_at = node.get("createdAt")
        if not isinstance(created_at, str):
            raise MalformedResponseError(f"Bad createdAt in timeline for {self.key}: {node!r}")
        try:
            timestamp = parse_timestamp(created_at)
        except ValueError:
            raise MalformedResponseError(f"Bad createdAt in timeline for {self.key}: {node!r}")

        assignee = node.get("assignee")
        if not isinstance(assignee, dict) or assignee.get("__typename") != "User":
            actor = assignee.get("__typename") if isinstance(assignee, dict) else "deleted account"
            self._warn(
                f"{self.key}: dropping {kind.value} at {created_at} "
                f"for non-user assignee ({actor})"
            )
            return None

        login = assignee.get("login")
        if not isinstance(login, str) or not login:
            raise MalformedResponseError(f"Assignee without login in timeline for {self.key}")

        return TimelineEvent(
            kind=kind,
            timestamp=timestamp,
            assignee=Assignee(login=login, display_name=assignee.get("name") or None),
        )


def _parse_page(key: ItemKey, data: dict[str, Any]) -> tuple[str | None, list, bool, str | None]:
    """Extract (title, nodes, has_next_page, end_cursor) from a query response."""
    try:
        repository = data["data"]["repository"]
    except (KeyError, TypeError):
        raise MalformedResponseError(f"Response for {key} has no data.repository")
    if repository is None:
        raise NotFoundError(f"Repository not found: {key.slug}")

    item = repository.get("issueOrPullRequest") if isinstance(repository, dict) else None
    if item is None:
        raise NotFoundError(f"Issue or pull request not found: {key}")

    try:
        timeline = item["timelineItems"]
        nodes = timeline["nodes"] or []
        page_info = timeline["pageInfo"]
        has_next = bool(page_info.get("hasNextPage"))
        end_cursor = page_info.get("endCursor")
    except (KeyError, TypeError, AttributeError):
        raise MalformedResponseError(f"Response for {key} has no timelineItems page")

    if not isinstance(nodes, list):
        raise MalformedResponseError(f"Timeline nodes for {key} are not a list")
    return item.get("title"), nodes, has_next, end_cursor


def _raise_for_graphql_errors(data: dict[str, Any]) -> None:
    errors = data.get("errors")
    if not errors:
        return
    first = errors[0] if isinstance(errors, list) and errors else {}
    error_type = first.get("type") if isinstance(first, dict) else None
    message = first.get("message", "GraphQL error") if isinstance(first, dict) else str(first)

    if error_type == "NOT_FOUND":
        raise NotFoundError(message)
    if error_type == "RATE_LIMITED":
        raise RateLimitError()
    if error_type == "FORBIDDEN":
        raise AuthError(message)
    raise MalformedResponseError(f"GraphQL error: {message}")


class GitHubClient:
    """GitHub GraphQL client with rate limiting and error classification."""

    def __init__(
        self,
        token: str | None,
        rate_limiter: RateLimiter | None = None,
        max_retries: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
        mock_file: str | Path | None = None,
    ):
        self.token = token
        self.rate_limiter = rate_limiter or RateLimiter()
        self.max_retries = max(0, max_retries)
        self.timeout = timeout
        self.mock_file = Path(mock_file) if mock_file else None
        self.session = requests.Session()

        if self.token:
            self.session.headers["Authorization"] = f"bearer {self.token}"

        self.session.headers["Accept"] = "application/vnd.github+json"
        self.session.headers["User-Agent"] = f"gh-chk/{__version__}"

    def fetch_timeline(
        self,
        key: ItemKey,
        on_warning: WarningCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> AssignmentTimeline:
        """
        Get the assignment timeline of an issue or pull request.

        Nothing is requested until the returned timeline is iterated.
        """
        return AssignmentTimeline(self, key, on_warning=on_warning, cancel_event=cancel_event)

    def query(
        self,
        query: str,
        variables: dict[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Run a GraphQL query and return the decoded response body."""
        if self.mock_file is not None:
            return self._read_mock()

        if not self.token:
            raise AuthError("No GitHub token configured (set GITHUB_TOKEN or log in with gh)")

        response = self._request({"query": query, "variables": variables}, cancel_event)
        try:
            data = response.json()
        except ValueError:
            raise MalformedResponseError(
                f"GitHub returned a non-JSON body (status {response.status_code})",
                response.status_code,
            )
        if not isinstance(data, dict):
            raise MalformedResponseError("GitHub returned an unexpected JSON document")
        _raise_for_graphql_errors(data)
        return data

    def _read_mock(self) -> dict[str, Any]:
        try:
            data = json.loads(self.mock_file.read_text(encoding="utf-8"))
        except OSError as e:
            raise GitHubAPIError(f"Cannot read mock file {self.mock_file}: {e}", ErrorKind.NETWORK)
        except ValueError as e:
            raise MalformedResponseError(f"Mock file {self.mock_file} is not JSON: {e}")
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Mock file {self.mock_file} is not a JSON object")
        _raise_for_graphql_errors(data)
        return data

    def _request(
        self,
        payload: dict[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> requests.Response:
        """POST a GraphQL payload, classifying failures by error kind."""
        for attempt in range(self.max_retries + 1):
            self.rate_limiter.acquire(cancel_event)
            try:
                logger.debug("POST %s (attempt %d)", GRAPHQL_URL, attempt + 1)
                response = self.session.post(GRAPHQL_URL, json=payload, timeout=self.timeout)
            except requests.RequestException as e:
                if attempt < self.max_retries:
                    delay = RETRY_DELAY * (attempt + 1)
                    if cancel_event is not None:
                        if cancel_event.wait(delay):
                            raise Cancelled()
                    else:
                        time.sleep(delay)
                    continue
                raise GitHubAPIError(f"Request failed: {e}", ErrorKind.NETWORK)

            _raise_for_status(response)
            return response

        raise GitHubAPIError("Max retries exceeded", ErrorKind.NETWORK)


def _raise_for_status(response: requests.Response) -> None:
    status = response.status_code
    if status < 400:
        return

    if status == 429 or (
        status == 403
        and (response.headers.get("X-RateLimit-Remaining") == "0" or "Retry-After" in response.headers)
    ):
        reset = response.headers.get("X-RateLimit-Reset")
        raise RateLimitError(int(reset) if reset and reset.isdigit() else None, status)
    if status in (401, 403):
        raise AuthError(f"GitHub rejected the credential: {status}", status)
    if status == 404:
        raise NotFoundError("GitHub API returned 404", status)
    if status >= 500:
        raise GitHubAPIError(f"GitHub API error: {status}", ErrorKind.NETWORK, status)
    raise MalformedResponseError(f"GitHub API error: {status} - {response.text[:200]}", status)
