"""
Assignee tracking across many issues and pull requests.

Each tracked item runs fetch -> reconstruct -> diff -> persist inside one
worker thread. Workers share only the client's rate limiter and the snapshot
store. A failure is recorded on that item's result and never affects the
other items in the batch.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable

from .diff import diff
from .errors import Cancelled, ErrorKind, GhChkError
from .github import GitHubClient
from .history import peak_assignees, reduce
from .models import AssignmentState, Diff, HistoryEntry, ItemKey, Snapshot, format_timestamp
from .store import SnapshotStore


logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


class ItemStatus(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    RECONSTRUCTING = "reconstructing"
    DIFFING = "diffing"
    PERSISTING = "persisting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ItemResult:
    """Outcome of tracking one item."""
    key: ItemKey
    status: ItemStatus = ItemStatus.PENDING
    title: str | None = None
    state: AssignmentState | None = None
    diff: Diff | None = None
    previous: Snapshot | None = None
    history: list[HistoryEntry] | None = None
    warnings: list[str] = field(default_factory=list)
    error: GhChkError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is ItemStatus.SUCCEEDED

    @property
    def peak(self) -> int | None:
        if self.history is None:
            return None
        return peak_assignees(self.history)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "item": str(self.key),
            "owner": self.key.owner,
            "repo": self.key.name,
            "number": self.key.number,
            "title": self.title,
            "status": self.status.value,
            "warnings": list(self.warnings),
        }
        if self.succeeded:
            data["assignees"] = sorted(self.state.current)
            data["as_of"] = format_timestamp(self.state.as_of)
            data["previous"] = sorted(self.previous.assignees) if self.previous else None
            data["diff"] = self.diff.to_dict()
        else:
            data["error"] = {
                "kind": self.error.kind.value if self.error else None,
                "message": str(self.error) if self.error else None,
            }
        if self.history is not None:
            data["history"] = [
                {**entry.event.to_dict(), "assignees": sorted(entry.assignees)}
                for entry in self.history
            ]
            data["peak_assignees"] = self.peak
        return data


class AssigneeTracker:
    """Runs the tracking pipeline for a batch of items on a bounded thread pool."""

    def __init__(
        self,
        client: GitHubClient,
        store: SnapshotStore,
        max_workers: int = DEFAULT_MAX_WORKERS,
        dry_run: bool = False,
        clock: Callable[[], datetime] | None = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.client = client
        self.store = store
        self.max_workers = max_workers
        self.dry_run = dry_run
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._cancel_event = threading.Event()
        self.interrupted = False

    def cancel(self) -> None:
        """Stop the run: pending requests abort and no further snapshots are written."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def track(
        self,
        keys: Iterable[ItemKey],
        include_history: bool = False,
        on_result: Callable[[ItemResult], None] | None = None,
    ) -> list[ItemResult]:
        """
        Track assignees for every item.

        Args:
            keys: Items to track; duplicates are tracked once
            include_history: Keep the full replayed history on each result
            on_result: Called from the calling thread as each item finishes

        Returns:
            One ItemResult per distinct item, in input order
        """
        unique = list(dict.fromkeys(keys))
        results: dict[ItemKey, ItemResult] = {}

        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="gh-chk")
        futures: dict[Future, ItemKey] = {
            executor.submit(self._track_one, key, include_history): key for key in unique
        }

        def collect(future: Future) -> None:
            key = futures[future]
            if future.cancelled():
                result = ItemResult(key=key, status=ItemStatus.FAILED, error=Cancelled())
            else:
                result = future.result()
            results[key] = result
            if on_result:
                on_result(result)

        try:
            for future in as_completed(futures):
                collect(future)
        except KeyboardInterrupt:
            logger.warning("Interrupted; cancelling %d pending item(s)", len(unique) - len(results))
            self.interrupted = True
            self.cancel()
            executor.shutdown(wait=True, cancel_futures=True)
            for future, key in futures.items():
                if key not in results:
                    collect(future)
        finally:
            executor.shutdown(wait=True)

        return [results[key] for key in unique]

    def _track_one(self, key: ItemKey, include_history: bool) -> ItemResult:
        result = ItemResult(key=key)

        def transition(status: ItemStatus) -> None:
            logger.debug("%s: %s -> %s", key, result.status.value, status.value)
            result.status = status

        try:
            if self.cancelled:
                raise Cancelled()

            transition(ItemStatus.FETCHING)
            fetched_at = self._clock()
            timeline = self.client.fetch_timeline(
                key, on_warning=result.warnings.append, cancel_event=self._cancel_event
            )

            # Pages are requested lazily while folding
            transition(ItemStatus.RECONSTRUCTING)
            history: list[HistoryEntry] | None = [] if include_history else None
            state = reduce(timeline, fetched_at=fetched_at, history=history)
            result.title = timeline.title
            result.history = history

            transition(ItemStatus.DIFFING)
            previous = self.store.load(key, on_warning=result.warnings.append)
            item_diff = diff(previous, state)

            if not self.dry_run:
                transition(ItemStatus.PERSISTING)
                if self.cancelled:
                    raise Cancelled()
                self.store.save(Snapshot.from_state(key, state, observed_at=fetched_at))

            result.state = state
            result.previous = previous
            result.diff = item_diff
            transition(ItemStatus.SUCCEEDED)
        except GhChkError as e:
            result.error = e
            transition(ItemStatus.FAILED)
            logger.info("%s failed (%s): %s", key, e.kind.value, e)
        except Exception as e:
            # Anything unclassified still fails only this item
            logger.exception("%s: unexpected error while tracking", key)
            result.error = GhChkError(f"Unexpected error: {e!r}", ErrorKind.MALFORMED)
            transition(ItemStatus.FAILED)

        return result
