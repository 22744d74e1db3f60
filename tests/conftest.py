import sys
from collections import defaultdict
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.batch_writer import BatchedWriter, RetryPolicy
from services.errors import PermanentRemoteError, TransientRemoteError
from services.snapshot_cache import InMemorySnapshotCache
from services.sync_service import SyncOrchestrator
from settings import SyncSettings


class FakeRemoteStore:
    """In-memory remote with switchable outages; records every call."""

    def __init__(self):
        self.tables = defaultdict(list)
        self.calls = []
        self.fail_reads = False
        self.fail_writes = False
        self.fail_batches = False
        self.failing_ids = set()

    def _outage(self):
        return TransientRemoteError("503 service unavailable", status=503)

    async def fetch_all(self, kind):
        self.calls.append(("fetch_all", kind))
        if self.fail_reads:
            raise self._outage()
        return list(self.tables[kind])

    async def delete_all(self, kind):
        self.calls.append(("delete_all", kind))
        if self.fail_writes:
            raise self._outage()
        count = len(self.tables[kind])
        self.tables[kind] = []
        return count

    async def insert_many(self, kind, records, start=0):
        self.calls.append(("insert_many", kind, len(records)))
        if self.fail_writes or self.fail_batches:
            raise self._outage()
        self.tables[kind].extend(records)

    async def insert_one(self, kind, record, position=None):
        self.calls.append(("insert_one", kind, record.id))
        if self.fail_writes or record.id in self.failing_ids:
            raise self._outage()
        self.tables[kind].append(record)

    async def update_one(self, kind, record):
        self.calls.append(("update_one", kind, record.id))
        if self.fail_writes:
            raise self._outage()
        rows = self.tables[kind]
        for i, existing in enumerate(rows):
            if existing.id == record.id:
                rows[i] = record
                return
        raise PermanentRemoteError(f"no row with id {record.id}", status=404)

    async def delete_one(self, kind, record_id):
        self.calls.append(("delete_one", kind, record_id))
        if self.fail_writes:
            raise self._outage()
        before = len(self.tables[kind])
        self.tables[kind] = [r for r in self.tables[kind] if r.id != record_id]
        return before - len(self.tables[kind])


async def no_sleep(seconds):
    return None


@pytest.fixture
def sync_settings():
    return SyncSettings(
        database_url="sqlite+aiosqlite:///:memory:",
        snapshot_cache_dir=".snapshot_cache_test",
        batch_size=2,
        revenue_batch_size=2,
        retry_max=3,
        retry_delay_s=0.0,
        batch_pause_s=0.0,
    )


@pytest.fixture
def fake_remote():
    return FakeRemoteStore()


@pytest.fixture
def memory_cache():
    return InMemorySnapshotCache()


@pytest.fixture
def make_orchestrator(sync_settings, memory_cache):
    def _make(remote=None, cache=None):
        cache = cache if cache is not None else memory_cache
        writer = None
        if remote is not None:
            writer = BatchedWriter(
                remote,
                policy=RetryPolicy(max_attempts=sync_settings.retry_max, base_delay_s=0.0),
                batch_pause_s=0.0,
                sleep=no_sleep,
            )
        return SyncOrchestrator(cache, remote=remote, writer=writer, settings=sync_settings)

    return _make
