"""
Data model for assignee tracking.

Everything here is immutable: timeline events come from GitHub, assignment
states are derived from them, and snapshots/diffs are values passed between
the store, the diff engine and the reporter.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


# GitHub owner/repo alphabet
NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
ITEM_PATTERN = re.compile(r"^(?P<owner>[^/#\s]+)/(?P<name>[^/#\s]+)#(?P<number>\d+)$")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (GitHub uses a trailing Z) into an aware datetime."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _valid_name(value: str) -> bool:
    return bool(NAME_PATTERN.match(value)) and value not in (".", "..")


@dataclass(frozen=True, order=True)
class ItemKey:
    """Identifies one tracked issue or pull request."""
    owner: str
    name: str
    number: int

    def __post_init__(self) -> None:
        if not _valid_name(self.owner) or not _valid_name(self.name):
            raise ValueError(f"Invalid repository slug: {self.owner}/{self.name}")
        if self.number <= 0:
            raise ValueError(f"Invalid item number: {self.number}")

    @classmethod
    def parse(cls, value: str) -> "ItemKey":
        """
        Parse an ``owner/repo#number`` identifier.

        Raises:
            ValueError: if the identifier is not in that form
        """
        match = ITEM_PATTERN.match(value.strip())
        if not match:
            raise ValueError(f"Invalid item identifier (expected owner/repo#number): {value}")
        return cls(match.group("owner"), match.group("name"), int(match.group("number")))

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}#{self.number}"


class EventKind(str, Enum):
    ASSIGNED = "AssignedEvent"
    UNASSIGNED = "UnassignedEvent"


@dataclass(frozen=True)
class Assignee:
    login: str
    display_name: str | None = None


@dataclass(frozen=True)
class TimelineEvent:
    """An assignment or unassignment record from an item's timeline."""
    kind: EventKind
    timestamp: datetime
    assignee: Assignee

    @property
    def identity(self) -> tuple[EventKind, str, datetime]:
        """Tuple used to recognise the same event repeated across pages."""
        return (self.kind, self.assignee.login, self.timestamp)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "timestamp": format_timestamp(self.timestamp),
            "login": self.assignee.login,
            "name": self.assignee.display_name,
        }


@dataclass(frozen=True)
class AssignmentState:
    """Assignee set reconstructed from the event log."""
    current: frozenset[str]
    as_of: datetime


@dataclass(frozen=True)
class HistoryEntry:
    """One folded event and the assignee set right after it."""
    event: TimelineEvent
    assignees: frozenset[str]


@dataclass(frozen=True)
class Snapshot:
    """Last durably recorded assignee set for an item."""
    repo_owner: str
    repo_name: str
    item_number: int
    assignees: frozenset[str]
    observed_at: datetime

    @property
    def key(self) -> ItemKey:
        return ItemKey(self.repo_owner, self.repo_name, self.item_number)

    @classmethod
    def from_state(cls, key: ItemKey, state: AssignmentState, observed_at: datetime) -> "Snapshot":
        return cls(
            repo_owner=key.owner,
            repo_name=key.name,
            item_number=key.number,
            assignees=frozenset(state.current),
            observed_at=observed_at,
        )


@dataclass(frozen=True)
class Diff:
    """Added/removed delta between a snapshot and a fresh state."""
    added: frozenset[str]
    removed: frozenset[str]
    is_baseline: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)

    def to_dict(self) -> dict:
        return {
            "added": sorted(self.added),
            "removed": sorted(self.removed),
            "is_baseline": self.is_baseline,
        }
