"""
Snapshot storage for gh-chk.

One JSON file per tracked item:

    <state_dir>/snapshots/<owner>/<name>/<number>.json

Owner and name are lower-cased in the path (GitHub names are
case-insensitive) so every run derives the same file for the same item.
Unreadable or corrupted files load as absent; the next successful run
rewrites them.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable

from .errors import SnapshotStoreError
from .models import ItemKey, Snapshot, format_timestamp, parse_timestamp


logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class SnapshotStore:
    """Persists the last observed assignee set per item."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self.root = self.state_dir / "snapshots"
        self._locks: dict[ItemKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def path_for(self, key: ItemKey) -> Path:
        return self.root / key.owner.lower() / key.name.lower() / f"{key.number}.json"

    def _lock_for(self, key: ItemKey) -> threading.Lock:
        normalized = _normalized(key)
        with self._locks_guard:
            lock = self._locks.get(normalized)
            if lock is None:
                lock = self._locks[normalized] = threading.Lock()
            return lock

    def load(
        self,
        key: ItemKey,
        on_warning: Callable[[str], None] | None = None,
    ) -> Snapshot | None:
        """
        Load the snapshot for an item.

        Returns:
            The stored Snapshot, or None if there is none or it cannot be used
        """
        path = self.path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            _warn(on_warning, f"{key}: snapshot {path} is unreadable ({e}); treating as absent")
            return None

        try:
            snapshot = _decode(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            _warn(on_warning, f"{key}: snapshot {path} is corrupted ({e}); treating as absent")
            return None

        if _normalized(snapshot.key) != _normalized(key):
            _warn(on_warning, f"{key}: snapshot {path} belongs to {snapshot.key}; treating as absent")
            return None
        return snapshot

    def save(self, snapshot: Snapshot) -> Path:
        """
        Write a snapshot, replacing any previous one for the same item.

        The file is fsynced and atomically moved into place before this
        returns. Writes to the same item are serialized.

        Raises:
            SnapshotStoreError: if the snapshot could not be written
        """
        key = snapshot.key
        path = self.path_for(key)
        payload = json.dumps(_encode(snapshot), indent=2) + "\n"

        with self._lock_for(key):
            tmp_name = None
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{key.number}.", suffix=".tmp", dir=path.parent
                )
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
                tmp_name = None
                _fsync_dir(path.parent)
            except OSError as e:
                raise SnapshotStoreError(f"Failed to save snapshot for {key} to {path}: {e}")
            finally:
                if tmp_name is not None:
                    try:
                        os.unlink(tmp_name)
                    except OSError:
                        pass

        logger.debug("Saved snapshot for %s: %s", key, sorted(snapshot.assignees))
        return path

    def list_snapshots(self) -> list[Snapshot]:
        """All readable snapshots, ordered by item."""
        snapshots = []
        if not self.root.exists():
            return snapshots
        for path in sorted(self.root.glob("*/*/*.json")):
            try:
                snapshots.append(_decode(json.loads(path.read_text(encoding="utf-8"))))
            except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
                logger.warning("Skipping unreadable snapshot %s: %s", path, e)
        snapshots.sort(key=lambda s: (s.repo_owner.lower(), s.repo_name.lower(), s.item_number))
        return snapshots


def _normalized(key: ItemKey) -> ItemKey:
    return ItemKey(key.owner.lower(), key.name.lower(), key.number)


def _warn(on_warning: Callable[[str], None] | None, message: str) -> None:
    logger.warning(message)
    if on_warning:
        on_warning(message)


def _fsync_dir(directory: Path) -> None:
    # Directory fsync makes the rename durable; not supported on every platform.
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def _encode(snapshot: Snapshot) -> dict[str, Any]:
    return {
        "version": SNAPSHOT_VERSION,
        "repo_owner": snapshot.repo_owner,
        "repo_name": snapshot.repo_name,
        "item_number": snapshot.item_number,
        "assignees": sorted(snapshot.assignees),
        "observed_at": format_timestamp(snapshot.observed_at),
    }


def _decode(data: Any) -> Snapshot:
    if not isinstance(data, dict):
        raise TypeError("snapshot is not a JSON object")
    version = data.get("version", SNAPSHOT_VERSION)
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"unsupported snapshot version {version!r}")

    assignees = data["assignees"]
    if not isinstance(assignees, list) or not all(isinstance(a, str) for a in assignees):
        raise TypeError("assignees must be a list of logins")
    number = data["item_number"]
    if not isinstance(number, int) or isinstance(number, bool):
        raise TypeError("item_number must be an integer")
    owner, name = data["repo_owner"], data["repo_name"]
    if not isinstance(owner, str) or not isinstance(name, str):
        raise TypeError("repo_owner and repo_name must be strings")

    # ItemKey validates owner/name/number
    key = ItemKey(owner, name, number)
    return Snapshot(
        repo_owner=key.owner,
        repo_name=key.name,
        item_number=key.number,
        assignees=frozenset(assignees),
        observed_at=parse_timestamp(data["observed_at"]),
    )
