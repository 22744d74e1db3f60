import asyncio
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas.records import QuoteRequestLine, RevenueLine, SupplierProfile
from services.errors import CloudSyncFailed, RecordNotFound
from services.snapshot_cache import JsonFileSnapshotCache
from services.sync_service import (
    STATUS_FAILED,
    STATUS_LOCAL_ONLY,
    STATUS_OK,
    STATUS_PARTIAL,
    describe_failure,
)
from settings import RECORD_KINDS


def _revenue(year, month, customer="현대", qty=1):
    return RevenueLine(year=year, month=month, customer=customer, qty=qty, amount=qty * 100)


def test_save_without_remote_keeps_snapshot_only(make_orchestrator, memory_cache):
    orchestrator = make_orchestrator()
    records = [_revenue(2024, "01월"), _revenue(2024, "02월")]

    result = asyncio.run(orchestrator.save_all("revenue", records))

    assert result.status == STATUS_LOCAL_ONLY
    assert result.ok
    assert "not configured" in result.message
    assert memory_cache.read("revenue") == records

    read = asyncio.run(orchestrator.read_all("revenue"))
    assert read.source == "cache"
    assert read.records == records


def test_cache_is_written_even_when_remote_fails(make_orchestrator, fake_remote, memory_cache):
    fake_remote.fail_writes = True
    fake_remote.fail_reads = True
    orchestrator = make_orchestrator(remote=fake_remote)
    records = [SupplierProfile(company_name="대한정밀", purchase_amounts={2025: 10.0})]

    with pytest.raises(CloudSyncFailed) as excinfo:
        asyncio.run(orchestrator.save_all("supplier", records))

    assert "local copy was kept" in describe_failure(excinfo.value)
    assert memory_cache.read("supplier") == records
    assert fake_remote.calls.count(("delete_all", "supplier")) == 3
    assert not any(call[0] == "insert_many" for call in fake_remote.calls)

    read = asyncio.run(orchestrator.read_all("supplier"))
    assert read.source == "cache"
    assert read.records == records
    assert read.pending
    assert "not reached the remote store" in read.message


def test_double_save_is_idempotent_and_deletes_before_insert(make_orchestrator, fake_remote):
    orchestrator = make_orchestrator(remote=fake_remote)
    records = [_revenue(2024, "01월"), _revenue(2024, "02월"), _revenue(2024, "03월")]

    first = asyncio.run(orchestrator.save_all("revenue", records))
    second = asyncio.run(orchestrator.save_all("revenue", records))

    assert first.status == STATUS_OK
    assert second.written == 3
    assert fake_remote.tables["revenue"] == records
    ops = [call[0] for call in fake_remote.calls]
    assert ops == ["delete_all", "insert_many", "insert_many"] * 2


def test_read_prefers_remote_and_refreshes_snapshot(make_orchestrator, fake_remote, memory_cache):
    stale = [_revenue(2023, "12월")]
    fresh = [_revenue(2024, "01월")]
    memory_cache.write("revenue", stale)
    fake_remote.tables["revenue"] = list(fresh)
    orchestrator = make_orchestrator(remote=fake_remote)

    read = asyncio.run(orchestrator.read_all("revenue"))

    assert read.source == "remote"
    assert read.records == fresh
    assert memory_cache.read("revenue") == fresh


def test_empty_result_when_nothing_is_known(make_orchestrator):
    read = asyncio.run(make_orchestrator().read_all("inventory"))
    assert read.source == "empty"
    assert read.records == []


def test_partial_failure_is_reported(make_orchestrator, fake_remote, memory_cache):
    fake_remote.fail_batches = True
    records = [_revenue(2024, "01월"), _revenue(2024, "02월")]
    fake_remote.failing_ids = {records[0].id}
    orchestrator = make_orchestrator(remote=fake_remote)

    result = asyncio.run(orchestrator.save_all("revenue", records))

    assert result.status == STATUS_PARTIAL
    assert not result.ok
    assert result.message == "Partial failure: 1 of 2 records skipped."
    assert (result.written, result.skipped) == (1, 1)
    assert fake_remote.tables["revenue"] == [records[1]]
    assert memory_cache.is_unsynced("revenue")
    assert asyncio.run(orchestrator.read_all("revenue")).records == records


def test_replace_partition_keeps_other_periods(make_orchestrator, fake_remote, memory_cache):
    old_2023 = _revenue(2023, "01월", qty=5)
    old_2024 = _revenue(2024, "01월", qty=6)
    memory_cache.write("revenue", [old_2023, old_2024])
    orchestrator = make_orchestrator(remote=fake_remote)
    new_2024 = [_revenue(2024, "02월", qty=7)]

    result = asyncio.run(orchestrator.replace_partition("revenue", new_2024, {"year": 2024}))

    assert result.status == STATUS_OK
    assert memory_cache.read("revenue") == [old_2023] + new_2024
    assert fake_remote.tables["revenue"] == [old_2023] + new_2024


def test_replace_partition_accepts_predicate(make_orchestrator, memory_cache):
    keep = _revenue(2024, "01월", customer="기아")
    drop = _revenue(2024, "01월", customer="현대")
    memory_cache.write("revenue", [keep, drop])
    replacement = _revenue(2024, "05월", customer="현대")

    asyncio.run(
        make_orchestrator().replace_partition("revenue", [replacement], lambda r: r.customer == "현대")
    )

    assert memory_cache.read("revenue") == [keep, replacement]


def test_quote_add_update_delete(make_orchestrator, fake_remote, memory_cache):
    orchestrator = make_orchestrator(remote=fake_remote)
    quote = QuoteRequestLine(customer="HMC", qty=10, unit_price=5, amount=50)

    added = asyncio.run(orchestrator.add_quote(quote))
    assert added.status == STATUS_OK
    assert fake_remote.tables["quote_request"] == [quote]

    changed = quote.model_copy(update={"status": "수주"})
    asyncio.run(orchestrator.update_quote(changed))
    assert memory_cache.read("quote_request") == [changed]
    assert fake_remote.tables["quote_request"] == [changed]

    asyncio.run(orchestrator.delete_quote(quote.id))
    assert memory_cache.read("quote_request") == []
    assert fake_remote.tables["quote_request"] == []


def test_quote_operations_on_unknown_id(make_orchestrator, memory_cache):
    orchestrator = make_orchestrator()
    memory_cache.write("quote_request", [])

    with pytest.raises(RecordNotFound):
        asyncio.run(orchestrator.update_quote(QuoteRequestLine(customer="HMC")))
    with pytest.raises(RecordNotFound):
        asyncio.run(orchestrator.delete_quote("missing"))


def test_quote_add_without_remote_is_local_only(make_orchestrator, memory_cache):
    quote = QuoteRequestLine(customer="HMC")
    result = asyncio.run(make_orchestrator().add_quote(quote))
    assert result.status == STATUS_LOCAL_ONLY
    assert memory_cache.read("quote_request") == [quote]


def test_quote_remote_failure_keeps_local_change(make_orchestrator, fake_remote, memory_cache):
    fake_remote.fail_writes = True
    memory_cache.write("quote_request", [])
    quote = QuoteRequestLine(customer="HMC")

    with pytest.raises(CloudSyncFailed):
        asyncio.run(make_orchestrator(remote=fake_remote).add_quote(quote))

    assert memory_cache.read("quote_request") == [quote]


def test_push_all_reports_each_cached_kind(make_orchestrator, fake_remote, memory_cache):
    memory_cache.write("revenue", [_revenue(2024, "01월")])
    memory_cache.write("supplier", [SupplierProfile(company_name="대한정밀")])
    orchestrator = make_orchestrator(remote=fake_remote)

    results = asyncio.run(orchestrator.push_all())
    assert set(results) == {"revenue", "supplier"}
    assert all(r.status == STATUS_OK for r in results.values())

    fake_remote.fail_writes = True
    results = asyncio.run(orchestrator.push_all())
    assert all(r.status == STATUS_FAILED for r in results.values())
    assert results["revenue"].as_dict()["kind"] == "revenue"


def test_pull_all_reads_every_kind(make_orchestrator, fake_remote):
    fake_remote.tables["supplier"] = [SupplierProfile(company_name="대한정밀")]

    results = asyncio.run(make_orchestrator(remote=fake_remote).pull_all())

    assert set(results) == set(RECORD_KINDS)
    assert len(results["supplier"].records) == 1
    assert results["revenue"].records == []


def test_json_file_cache_round_trip(tmp_path):
    cache = JsonFileSnapshotCache(tmp_path / "snapshots")
    records = [
        SupplierProfile(company_name="대한정밀", purchase_amounts={2025: 1000.0, 2024: 0.0}),
    ]

    assert cache.read("supplier") is None
    cache.write("supplier", records)

    assert cache.read("supplier") == records
    assert cache.kinds() == ["supplier"]
    assert list((tmp_path / "snapshots").glob("*.tmp")) == []


def test_json_file_cache_ignores_corrupt_snapshot(tmp_path):
    (tmp_path / "revenue.json").write_text("{not json", encoding="utf-8")
    assert JsonFileSnapshotCache(tmp_path).read("revenue") is None


def test_failed_inserts_after_delete_never_empty_the_snapshot(make_orchestrator, fake_remote, memory_cache):
    original = [_revenue(2024, "01월", qty=1), _revenue(2024, "02월", qty=2)]
    fake_remote.tables["revenue"] = list(original)
    memory_cache.write("revenue", list(original))
    orchestrator = make_orchestrator(remote=fake_remote)
    replacement = [_revenue(2024, "03월", qty=3), _revenue(2024, "04월", qty=4)]
    fake_remote.fail_batches = True
    fake_remote.failing_ids = {r.id for r in replacement}

    with pytest.raises(CloudSyncFailed):
        asyncio.run(orchestrator.save_all("revenue", replacement))

    assert ("delete_all", "revenue") in fake_remote.calls
    assert fake_remote.tables["revenue"] == []
    assert memory_cache.read("revenue") == replacement

    read = asyncio.run(orchestrator.read_all("revenue"))
    assert read.source == "cache"
    assert read.pending
    assert read.records == replacement
    assert memory_cache.read("revenue") == replacement
    assert ("fetch_all", "revenue") not in fake_remote.calls


def test_successful_save_clears_pending_flag(make_orchestrator, fake_remote, memory_cache):
    records = [_revenue(2024, "01월"), _revenue(2024, "02월")]
    fake_remote.fail_writes = True
    orchestrator = make_orchestrator(remote=fake_remote)
    with pytest.raises(CloudSyncFailed):
        asyncio.run(orchestrator.save_all("revenue", records))
    assert memory_cache.is_unsynced("revenue")

    fake_remote.fail_writes = False
    result = asyncio.run(orchestrator.save_all("revenue", records))
    read = asyncio.run(orchestrator.read_all("revenue"))

    assert result.status == STATUS_OK
    assert not memory_cache.is_unsynced("revenue")
    assert read.source == "remote"
    assert not read.pending
    assert read.records == records


def test_empty_remote_never_replaces_snapshot(make_orchestrator, fake_remote, memory_cache):
    snapshot = [_revenue(2024, "01월")]
    memory_cache.write("revenue", snapshot)

    read = asyncio.run(make_orchestrator(remote=fake_remote).read_all("revenue"))

    assert read.source == "cache"
    assert read.records == snapshot
    assert "no records" in read.message
    assert memory_cache.read("revenue") == snapshot


def test_empty_remote_fills_empty_snapshot(make_orchestrator, fake_remote, memory_cache):
    memory_cache.write("revenue", [])

    read = asyncio.run(make_orchestrator(remote=fake_remote).read_all("revenue"))

    assert read.source == "remote"
    assert read.records == []


def test_failed_quote_write_marks_quotes_pending(make_orchestrator, fake_remote, memory_cache):
    fake_remote.fail_writes = True
    memory_cache.write("quote_request", [])
    quote = QuoteRequestLine(customer="HMC")
    orchestrator = make_orchestrator(remote=fake_remote)

    with pytest.raises(CloudSyncFailed):
        asyncio.run(orchestrator.add_quote(quote))
    fake_remote.fail_writes = False
    read = asyncio.run(orchestrator.read_all("quote_request"))

    assert read.pending
    assert read.records == [quote]


def test_json_file_cache_unsynced_marker(tmp_path):
    cache = JsonFileSnapshotCache(tmp_path)
    cache.write("revenue", [_revenue(2024, "01월")])

    assert not cache.is_unsynced("revenue")
    cache.mark_unsynced("revenue")
    assert JsonFileSnapshotCache(tmp_path).is_unsynced("revenue")
    assert cache.kinds() == ["revenue"]

    cache.clear_unsynced("revenue")
    cache.clear_unsynced("revenue")
    assert not cache.is_unsynced("revenue")
