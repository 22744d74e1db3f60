import asyncio
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas.records import SupplierProfile
from services.batch_writer import BatchedWriter, RetryPolicy, attempt_with_retry
from services.errors import (
    BatchWriteError,
    PermanentRemoteError,
    TransientRemoteError,
    classify_remote_error,
    is_transient,
)


class FlakyRemote:
    """insert_many fails the first `batch_failures` calls; insert_one fails for `failing_ids`."""

    def __init__(self, batch_failures=0, failing_ids=(), batch_error=None, row_error=None):
        self.batch_failures = batch_failures
        self.failing_ids = set(failing_ids)
        self.batch_error = batch_error or (lambda: TransientRemoteError("503 service unavailable", status=503))
        self.row_error = row_error or (lambda: TransientRemoteError("timeout", status=504))
        self.batch_calls = 0
        self.row_calls = 0
        self.written = []
        self.positions = {}
        self.starts = []

    async def insert_many(self, kind, records, start=0):
        self.batch_calls += 1
        self.starts.append(start)
        if self.batch_failures:
            self.batch_failures -= 1
            raise self.batch_error()
        self.written.extend(r.id for r in records)

    async def insert_one(self, kind, record, position=None):
        self.row_calls += 1
        self.positions[record.id] = position
        if record.id in self.failing_ids:
            raise self.row_error()
        self.written.append(record.id)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def _suppliers(n):
    return [SupplierProfile(company_name=f"supplier-{i}") for i in range(n)]


def _writer(remote, sleeper, max_attempts=3, base_delay_s=0.0, batch_pause_s=0.0):
    return BatchedWriter(
        remote,
        policy=RetryPolicy(max_attempts=max_attempts, base_delay_s=base_delay_s),
        batch_pause_s=batch_pause_s,
        sleep=sleeper,
    )


def test_transient_batch_failures_below_limit_are_retried():
    remote = FlakyRemote(batch_failures=2)
    records = _suppliers(3)

    report = asyncio.run(_writer(remote, SleepRecorder()).write_all("supplier", records, batch_size=10))

    assert remote.batch_calls == 3
    assert remote.row_calls == 0
    assert report.written == 3
    assert report.failed == 0
    assert not report.partial


def test_exhausted_batch_falls_back_to_rows_and_counts_failures():
    records = _suppliers(3)
    remote = FlakyRemote(batch_failures=99, failing_ids={records[1].id})

    report = asyncio.run(_writer(remote, SleepRecorder()).write_all("supplier", records, batch_size=3))

    assert remote.batch_calls == 3
    assert report.fallback_batches == 1
    assert report.written == 2
    assert report.failed == 1
    assert report.failures[0].record_id == records[1].id
    assert report.partial
    assert remote.written == [records[0].id, records[2].id]


def test_batch_where_every_row_fails_raises():
    records = _suppliers(3)
    remote = FlakyRemote(batch_failures=99, failing_ids={r.id for r in records})

    with pytest.raises(BatchWriteError) as excinfo:
        asyncio.run(_writer(remote, SleepRecorder()).write_all("supplier", records, batch_size=3))

    assert excinfo.value.batch_index == 0
    assert excinfo.value.batch_size == 3
    assert remote.row_calls == 9


def test_permanent_error_is_not_retried():
    remote = FlakyRemote(
        batch_failures=99,
        batch_error=lambda: PermanentRemoteError("duplicate key value", status=409),
    )

    with pytest.raises(PermanentRemoteError):
        asyncio.run(_writer(remote, SleepRecorder()).write_all("supplier", _suppliers(2), batch_size=2))

    assert remote.batch_calls == 1
    assert remote.row_calls == 0


def test_permanent_row_error_escalates_during_fallback():
    records = _suppliers(2)
    remote = FlakyRemote(
        batch_failures=99,
        failing_ids={records[0].id},
        row_error=lambda: PermanentRemoteError("invalid input syntax", status=400),
    )

    with pytest.raises(PermanentRemoteError):
        asyncio.run(_writer(remote, SleepRecorder()).write_all("supplier", records, batch_size=2))

    assert remote.row_calls == 1


def test_batches_are_sequential_with_pause_between_them():
    remote = FlakyRemote()
    sleeper = SleepRecorder()
    records = _suppliers(5)

    report = asyncio.run(_writer(remote, sleeper, batch_pause_s=0.2).write_all("supplier", records, batch_size=2))

    assert report.batches == 3
    assert remote.batch_calls == 3
    assert remote.written == [r.id for r in records]
    assert sleeper.delays == [0.2, 0.2]


def test_retry_delay_grows_with_attempt_number():
    remote = FlakyRemote(batch_failures=2)
    sleeper = SleepRecorder()

    asyncio.run(_writer(remote, sleeper, base_delay_s=0.5).write_all("supplier", _suppliers(1), batch_size=1))

    assert sleeper.delays == [0.5, 1.0]


def test_empty_record_set_writes_nothing():
    remote = FlakyRemote()
    report = asyncio.run(_writer(remote, SleepRecorder()).write_all("supplier", [], batch_size=5))
    assert report.attempted == 0
    assert remote.batch_calls == 0


def test_raw_exceptions_are_classified_before_retrying():
    calls = []

    async def rate_limited_then_ok():
        calls.append(1)
        if len(calls) < 2:
            raise RuntimeError("Rate limit exceeded, retry later")
        return "done"

    result = asyncio.run(
        attempt_with_retry(rate_limited_then_ok, RetryPolicy(max_attempts=3, base_delay_s=0.0), "revenue.fetch_all", sleep=SleepRecorder())
    )
    assert result == "done"
    assert len(calls) == 2

    async def malformed():
        raise ValueError("invalid payload")

    with pytest.raises(PermanentRemoteError) as excinfo:
        asyncio.run(attempt_with_retry(malformed, RetryPolicy(base_delay_s=0.0), "revenue.fetch_all", sleep=SleepRecorder()))
    assert isinstance(excinfo.value.cause, ValueError)


def test_error_classification():
    assert is_transient(TransientRemoteError("x"))
    assert not is_transient(PermanentRemoteError("x", status=503))
    assert is_transient(asyncio.TimeoutError())
    assert is_transient(ConnectionResetError("connection reset by peer"))
    assert not is_transient(ValueError("bad value"))

    class HttpLike(Exception):
        def __init__(self, status_code):
            super().__init__(f"status {status_code}")
            self.status_code = status_code

    assert isinstance(classify_remote_error(HttpLike(429), "op"), TransientRemoteError)
    assert isinstance(classify_remote_error(HttpLike(400), "op"), PermanentRemoteError)
    assert classify_remote_error(HttpLike(502), "op").status == 502


def test_rows_keep_their_index_in_the_record_set():
    records = _suppliers(5)
    remote = FlakyRemote()

    asyncio.run(_writer(remote, SleepRecorder()).write_all("supplier", records, batch_size=2))
    assert remote.starts == [0, 2, 4]

    fallback = FlakyRemote(batch_failures=99)
    asyncio.run(_writer(fallback, SleepRecorder()).write_all("supplier", records[:4], batch_size=2))
    assert fallback.positions == {r.id: i for i, r in enumerate(records[:4])}
