"""
Snapshot Cache
Local, always-available copy of the last known-good record set per kind.

The cache is an explicit object handed to the sync orchestrator. Tests use
InMemorySnapshotCache; the service uses JsonFileSnapshotCache so snapshots
survive a restart.

A kind is flagged "unsynced" while its snapshot holds changes the remote
store has not accepted yet; the orchestrator never refreshes such a
snapshot from the remote.
"""
from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Set

from pydantic import ValidationError

from schemas.records import CanonicalRecord, records_from_json, records_to_json

logger = logging.getLogger(__name__)


class SnapshotCache(Protocol):
    def read(self, kind: str) -> Optional[List[CanonicalRecord]]: ...

    def write(self, kind: str, records: List[CanonicalRecord]) -> None: ...

    def kinds(self) -> List[str]: ...

    def mark_unsynced(self, kind: str) -> None: ...

    def clear_unsynced(self, kind: str) -> None: ...

    def is_unsynced(self, kind: str) -> bool: ...


class InMemorySnapshotCache:
    def __init__(self):
        self._snapshots: Dict[str, List[CanonicalRecord]] = {}
        self._unsynced: Set[str] = set()

    def read(self, kind: str) -> Optional[List[CanonicalRecord]]:
        snapshot = self._snapshots.get(kind)
        return list(snapshot) if snapshot is not None else None

    def write(self, kind: str, records: List[CanonicalRecord]) -> None:
        self._snapshots[kind] = list(records)

    def kinds(self) -> List[str]:
        return list(self._snapshots)

    def mark_unsynced(self, kind: str) -> None:
        self._unsynced.add(kind)

    def clear_unsynced(self, kind: str) -> None:
        self._unsynced.discard(kind)

    def is_unsynced(self, kind: str) -> bool:
        return kind in self._unsynced


def _atomic_write_bytes(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="wb",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as handle:
        handle.write(payload)
        handle.flush()
        temp_path = Path(handle.name)
    temp_path.replace(path)


class JsonFileSnapshotCache:
    """One `<kind>.json` file per record kind under `directory`."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, kind: str) -> Path:
        return self.directory / f"{kind}.json"

    def read(self, kind: str) -> Optional[List[CanonicalRecord]]:
        path = self._path(kind)
        if not path.exists():
            return None
        try:
            return records_from_json(path.read_bytes())
        except (OSError, ValidationError):
            logger.exception("SNAPSHOT: unreadable snapshot kind=%s path=%s", kind, path)
            return None

    def write(self, kind: str, records: List[CanonicalRecord]) -> None:
        _atomic_write_bytes(self._path(kind), records_to_json(records))
        logger.info("SNAPSHOT: wrote kind=%s records=%d", kind, len(records))

    def kinds(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))

    def _marker(self, kind: str) -> Path:
        return self.directory / f"{kind}.unsynced"

    def mark_unsynced(self, kind: str) -> None:
        marker = self._marker(kind)
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.touch()
        logger.warning("SNAPSHOT: kind=%s holds changes the remote store has not accepted", kind)

    def clear_unsynced(self, kind: str) -> None:
        self._marker(kind).unlink(missing_ok=True)

    def is_unsynced(self, kind: str) -> bool:
        return self._marker(kind).exists()
