"""
Assignee history reconstruction.

Replays an ordered sequence of assignment timeline events into the set of
logins currently assigned. Unassigning someone who is not in the set (a log
that starts mid-history) and assigning someone already present are both
no-ops, so folding is idempotent under repeated events.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from .models import AssignmentState, EventKind, HistoryEntry, TimelineEvent


def reduce(
    events: Iterable[TimelineEvent],
    fetched_at: datetime | None = None,
    history: list[HistoryEntry] | None = None,
) -> AssignmentState:
    """
    Fold timeline events left to right into the current assignee set.

    Args:
        events: Events in non-decreasing timestamp order
        fetched_at: ``as_of`` value for an empty log (defaults to now, UTC)
        history: If given, one HistoryEntry is appended per folded event

    Returns:
        AssignmentState as of the last folded event
    """
    current: set[str] = set()
    last: datetime | None = None

    for event in events:
        login = event.assignee.login
        if event.kind is EventKind.ASSIGNED:
            current.add(login)
        else:
            current.discard(login)
        last = event.timestamp
        if history is not None:
            history.append(HistoryEntry(event=event, assignees=frozenset(current)))

    if last is None:
        last = fetched_at or datetime.now(timezone.utc)
    return AssignmentState(current=frozenset(current), as_of=last)


def peak_assignees(history: Iterable[HistoryEntry]) -> int:
    """Largest number of simultaneous assignees seen while replaying."""
    return max((len(entry.assignees) for entry in history), default=0)
