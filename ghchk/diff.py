"""Compare a stored snapshot with a freshly reconstructed assignment state."""

from __future__ import annotations

from .models import AssignmentState, Diff, Snapshot


def diff(previous: Snapshot | None, current: AssignmentState) -> Diff:
    """
    Compute who was added and removed since the previous snapshot.

    With no previous snapshot the result is a baseline: added and removed are
    left empty so that first adoption does not report every assignee as new.
    Nothing is persisted here; saving the new snapshot is the caller's step.
    """
    if previous is None:
        return Diff(added=frozenset(), removed=frozenset(), is_baseline=True)

    return Diff(
        added=frozenset(current.current - previous.assignees),
        removed=frozenset(previous.assignees - current.current),
        is_baseline=False,
    )
