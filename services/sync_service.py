"""
Sync Orchestrator
Coordinates record sets between the remote store and the local snapshot cache.

read_all:  remote first (then refresh the snapshot), snapshot on any failure
           and while the snapshot holds unsynced changes
save_all:  snapshot first, unconditionally; then delete-all -> batched insert
           on the remote. Not configured -> snapshot only.

Remote failures surface as CloudSyncFailed once the snapshot is written, so
the caller can always tell the user the local copy was kept.
Any save the remote did not fully accept flags the kind unsynced in the
cache; only a later successful full replace clears the flag.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from schemas.records import CanonicalRecord, QuoteRequestLine
from services.batch_writer import BatchedWriter
from services.errors import CloudSyncFailed, RecordNotFound, RemoteStoreError
from services.remote_store import RemoteStore, get_remote_store
from services.snapshot_cache import JsonFileSnapshotCache, SnapshotCache
from settings import RECORD_KINDS, SyncSettings, load_settings

logger = logging.getLogger(__name__)

QUOTE_KIND = "quote_request"

STATUS_OK = "ok"
STATUS_LOCAL_ONLY = "local_only"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"

NOT_CONFIGURED_MESSAGE = "Remote store is not configured; saved to the local snapshot only."
UNSYNCED_MESSAGE = "Local changes have not reached the remote store yet; showing the local snapshot."
EMPTY_REMOTE_MESSAGE = "Remote store returned no records; showing the local snapshot."

Partition = Union[Mapping[str, Any], Callable[[CanonicalRecord], bool]]


@dataclass(frozen=True)
class SyncResult:
    kind: str
    status: str
    message: str
    written: int = 0
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return self.status in (STATUS_OK, STATUS_LOCAL_ONLY)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ReadResult:
    kind: str
    records: List[CanonicalRecord]
    source: str  # remote | cache | empty
    message: str = ""
    # the snapshot holds changes the remote store has not accepted
    pending: bool = False


def describe_failure(exc: BaseException) -> str:
    """Human-readable line for the UI."""
    if isinstance(exc, CloudSyncFailed):
        return str(exc)
    if isinstance(exc, RecordNotFound):
        return str(exc)
    return f"Operation failed: {exc}"


def _in_partition(partition: Partition) -> Callable[[CanonicalRecord], bool]:
    if callable(partition):
        return partition
    items = dict(partition)
    return lambda record: all(getattr(record, key, None) == value for key, value in items.items())


class SyncOrchestrator:
    def __init__(
        self,
        cache: SnapshotCache,
        remote: Optional[RemoteStore] = None,
        writer: Optional[BatchedWriter] = None,
        settings: Optional[SyncSettings] = None,
    ):
        self.cache = cache
        self.remote = remote
        self.settings = settings or load_settings()
        if writer is None and remote is not None:
            writer = BatchedWriter.from_settings(remote, self.settings)
        self.writer = writer

    @property
    def remote_configured(self) -> bool:
        return self.remote is not None

    # ---------- read ----------

    async def read_all(self, kind: str) -> ReadResult:
        if self.remote is None:
            return self._from_cache(kind, "Remote store is not configured; showing the local snapshot")
        if self.cache.is_unsynced(kind):
            logger.warning("SYNC: read kind=%s served from snapshot, local changes not yet synced", kind)
            return self._from_cache(kind, UNSYNCED_MESSAGE, pending=True)
        try:
            records = await self.writer.retry(lambda: self.remote.fetch_all(kind), f"{kind}.fetch_all")
        except RemoteStoreError as exc:
            logger.warning("SYNC: remote read failed kind=%s, serving snapshot: %s", kind, exc)
            return self._from_cache(kind, f"Remote read failed; showing the local snapshot ({exc})")

        snapshot = self.cache.read(kind)
        if not records and snapshot:
            # an empty remote never replaces a non-empty snapshot
            logger.warning("SYNC: remote returned no %s records, keeping snapshot records=%d", kind, len(snapshot))
            return ReadResult(kind, snapshot, "cache", EMPTY_REMOTE_MESSAGE)
        self.cache.write(kind, records)
        logger.info("SYNC: read kind=%s source=remote records=%d", kind, len(records))
        return ReadResult(kind, records, "remote")

    def _from_cache(self, kind: str, message: str, pending: bool = False) -> ReadResult:
        snapshot = self.cache.read(kind)
        if snapshot is None:
            return ReadResult(kind, [], "empty", message, pending)
        return ReadResult(kind, snapshot, "cache", message, pending)

    async def _current(self, kind: str) -> List[CanonicalRecord]:
        snapshot = self.cache.read(kind)
        if snapshot is not None:
            return snapshot
        return (await self.read_all(kind)).records

    # ---------- full replace ----------

    async def save_all(self, kind: str, records: List[CanonicalRecord]) -> SyncResult:
        """Full replace of `kind`. Raises CloudSyncFailed after the snapshot is written."""
        records = list(records)
        self.cache.write(kind, records)

        if self.remote is None:
            self.cache.mark_unsynced(kind)
            logger.info("SYNC: save kind=%s local_only records=%d", kind, len(records))
            return SyncResult(kind, STATUS_LOCAL_ONLY, NOT_CONFIGURED_MESSAGE, written=0)

        try:
            # delete strictly precedes insert
            deleted = await self.writer.retry(lambda: self.remote.delete_all(kind), f"{kind}.delete_all")
            report = await self.writer.write_all(kind, records, self.settings.batch_size_for(kind))
        except RemoteStoreError as exc:
            self.cache.mark_unsynced(kind)
            logger.error("SYNC: save failed kind=%s records=%d: %s", kind, len(records), exc)
            raise CloudSyncFailed(kind, exc) from exc

        logger.info(
            "SYNC: save kind=%s deleted=%s written=%d failed=%d",
            kind,
            deleted,
            report.written,
            report.failed,
        )
        if report.partial:
            self.cache.mark_unsynced(kind)
            return SyncResult(
                kind,
                STATUS_PARTIAL,
                f"Partial failure: {report.failed} of {report.attempted} records skipped.",
                written=report.written,
                skipped=report.failed,
            )
        self.cache.clear_unsynced(kind)
        return SyncResult(kind, STATUS_OK, f"Saved {report.written} records.", written=report.written)

    async def replace_partition(
        self,
        kind: str,
        records: List[CanonicalRecord],
        partition: Partition,
    ) -> SyncResult:
        """
        Replace only the records inside `partition` (e.g. `{"year": 2024}`).

        Records outside the partition are kept and the merged set goes
        through an ordinary save_all, so failures surface exactly as there.
        """
        belongs = _in_partition(partition)
        stray = [r for r in records if not belongs(r)]
        if stray:
            logger.warning("SYNC: %d new %s records fall outside the partition", len(stray), kind)
        current = await self._current(kind)
        kept = [r for r in current if not belongs(r)]
        logger.info(
            "SYNC: replace_partition kind=%s kept=%d replaced=%d new=%d",
            kind,
            len(kept),
            len(current) - len(kept),
            len(records),
        )
        return await self.save_all(kind, kept + list(records))

    # ---------- quote requests (single-row) ----------

    async def _remote_single(self, label: str, operation) -> None:
        try:
            await self.writer.retry(operation, f"{QUOTE_KIND}.{label}")
        except RemoteStoreError as exc:
            self.cache.mark_unsynced(QUOTE_KIND)
            logger.error("SYNC: quote %s failed: %s", label, exc)
            raise CloudSyncFailed(QUOTE_KIND, exc) from exc

    def _local_only_quote(self) -> SyncResult:
        self.cache.mark_unsynced(QUOTE_KIND)
        return SyncResult(QUOTE_KIND, STATUS_LOCAL_ONLY, NOT_CONFIGURED_MESSAGE)

    async def add_quote(self, record: QuoteRequestLine) -> SyncResult:
        current = await self._current(QUOTE_KIND)
        self.cache.write(QUOTE_KIND, current + [record])
        if self.remote is None:
            return self._local_only_quote()
        await self._remote_single("insert_one", lambda: self.remote.insert_one(QUOTE_KIND, record))
        return SyncResult(QUOTE_KIND, STATUS_OK, "Quote request added.", written=1)

    async def update_quote(self, record: QuoteRequestLine) -> SyncResult:
        current = await self._current(QUOTE_KIND)
        if not any(r.id == record.id for r in current):
            raise RecordNotFound(QUOTE_KIND, record.id)
        self.cache.write(QUOTE_KIND, [record if r.id == record.id else r for r in current])
        if self.remote is None:
            return self._local_only_quote()
        await self._remote_single("update_one", lambda: self.remote.update_one(QUOTE_KIND, record))
        return SyncResult(QUOTE_KIND, STATUS_OK, "Quote request updated.", written=1)

    async def delete_quote(self, record_id: str) -> SyncResult:
        current = await self._current(QUOTE_KIND)
        remaining = [r for r in current if r.id != record_id]
        if len(remaining) == len(current):
            raise RecordNotFound(QUOTE_KIND, record_id)
        self.cache.write(QUOTE_KIND, remaining)
        if self.remote is None:
            return self._local_only_quote()
        await self._remote_single("delete_one", lambda: self.remote.delete_one(QUOTE_KIND, record_id))
        return SyncResult(QUOTE_KIND, STATUS_OK, "Quote request deleted.")

    # ---------- every kind ----------

    async def push_all(self) -> Dict[str, SyncResult]:
        """Full-replace every kind held in the snapshot cache."""
        results: Dict[str, SyncResult] = {}
        for kind in RECORD_KINDS:
            snapshot = self.cache.read(kind)
            if snapshot is None:
                continue
            try:
                results[kind] = await self.save_all(kind, snapshot)
            except CloudSyncFailed as exc:
                results[kind] = SyncResult(kind, STATUS_FAILED, describe_failure(exc))
        return results

    async def pull_all(self) -> Dict[str, ReadResult]:
        """Read every kind, refreshing the snapshot from the remote where reachable."""
        return {kind: await self.read_all(kind) for kind in RECORD_KINDS}


def build_orchestrator(settings: Optional[SyncSettings] = None) -> SyncOrchestrator:
    settings = settings or load_settings()
    return SyncOrchestrator(
        cache=JsonFileSnapshotCache(settings.snapshot_cache_dir),
        remote=get_remote_store(),
        settings=settings,
    )


@lru_cache(maxsize=1)
def get_sync_orchestrator() -> SyncOrchestrator:
    return build_orchestrator()
