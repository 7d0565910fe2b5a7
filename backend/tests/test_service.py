"""
Unit Tests for FinancialSyncService

End-to-end over in-memory stores:
- Create / update / invoiced-orphan scenarios
- Idempotence and dry-run purity
- Fatal errors -> success=False
- Pending-only runs from stored plans
- get_sync_status

Run with: pytest tests/test_service.py -v
"""

from datetime import date
from unittest.mock import patch

import httpx
import pytest

from financial_sync.models import SyncOptions
from financial_sync.service import (
    FinancialSyncService,
    SyncAuditEvent,
    log_sync_event,
    parse_window,
    synchronize,
)
from financial_sync.tracking import SyncTrackingStore
from conftest import ORG_ID, FakeCustomerDirectory, FakeLedgerStore, FakeSourceStore, make_raw, make_row

START = date(2025, 9, 1)
END = date(2025, 9, 30)


def _r1(quantity="2"):
    return make_raw(
        "R1",
        _custID="C1",
        DateStart="2025-09-05",
        Billable_Time_Rounded=quantity,
        Hourly_Rate="100",
    )


@pytest.fixture(autouse=True)
def no_sentry():
    with patch("financial_sync.service.capture_exception") as capture:
        yield capture


class TestScenarios:
    """Test the canonical sync scenarios."""

    @pytest.mark.asyncio
    async def test_new_record_is_created(self):
        ledger = FakeLedgerStore()
        service = FinancialSyncService(FakeSourceStore([_r1()]), ledger)

        result = await service.synchronize(ORG_ID, START, END)

        assert result.success is True
        assert len(result.changes.created) == 1
        created = result.changes.created[0]
        assert created["source_record_id"] == "R1"
        assert created["customer_id"] == "C1"
        assert created["total_price"] == 200.0
        assert result.changes.updated == []
        assert result.changes.errors == []
        assert result.summary.dev_records_count == 1
        assert result.summary.customer_sales_count == 0

    @pytest.mark.asyncio
    async def test_changed_quantity_is_updated(self):
        stored = make_row(
            "R1", customer_id="C1", record_date=date(2025, 9, 5),
            quantity="2", unit_price="100", product_name="Bookkeeping",
        )
        ledger = FakeLedgerStore([stored])
        service = FinancialSyncService(FakeSourceStore([_r1(quantity="3")]), ledger)

        result = await service.synchronize(ORG_ID, START, END)

        assert result.success is True
        assert result.changes.created == []
        assert len(result.changes.updated) == 1
        assert result.changes.updated[0]["source_record_id"] == "R1"
        assert result.changes.updated[0]["total_price"] == 300.0
        assert ledger.rows[stored.id].total_price == 300

    @pytest.mark.asyncio
    async def test_invoiced_orphan_is_not_deleted(self):
        invoiced = make_row("R2", record_date=date(2025, 9, 10), invoice_id="INV-1")
        ledger = FakeLedgerStore([invoiced])
        service = FinancialSyncService(FakeSourceStore([]), ledger)

        result = await service.synchronize(ORG_ID, START, END, SyncOptions(delete_orphaned=True))

        assert result.success is True
        assert result.changes.deleted == []
        assert result.changes.errors == []
        assert invoiced.id in ledger.rows


class TestProperties:
    """Test idempotence, dry-run purity and failure isolation."""

    @pytest.mark.asyncio
    async def test_second_run_performs_no_writes(self):
        ledger = FakeLedgerStore([make_row("gone", record_date=date(2025, 9, 2))])
        source = FakeSourceStore([_r1(), make_raw("R3", DateStart="2025-09-07")])
        service = FinancialSyncService(source, ledger)
        options = SyncOptions(delete_orphaned=True)

        first = await service.synchronize(ORG_ID, START, END, options)
        writes_after_first = ledger.write_count
        second = await service.synchronize(ORG_ID, START, END, options)

        assert len(first.changes.created) == 2
        assert len(first.changes.deleted) == 1
        assert ledger.write_count == writes_after_first
        assert second.changes.created == []
        assert second.changes.updated == []
        assert second.changes.deleted == []
        assert second.summary.unchanged == 2

    @pytest.mark.asyncio
    async def test_dry_run_leaves_ledger_untouched(self):
        ledger = FakeLedgerStore([make_row("gone", record_date=date(2025, 9, 2))])
        service = FinancialSyncService(FakeSourceStore([_r1()]), ledger)

        result = await service.synchronize(
            ORG_ID, START, END, SyncOptions(dry_run=True, delete_orphaned=True)
        )

        assert result.dry_run is True
        assert len(result.changes.created) == 1
        assert len(result.changes.deleted) == 1
        assert ledger.write_count == 0

    @pytest.mark.asyncio
    async def test_write_failure_is_reported_not_fatal(self):
        ledger = FakeLedgerStore()
        ledger.fail_source_ids = {"r3"}
        source = FakeSourceStore([_r1(), make_raw("R3", DateStart="2025-09-07")])
        service = FinancialSyncService(source, ledger)

        result = await service.synchronize(ORG_ID, START, END)

        assert result.success is True
        assert [c["source_record_id"] for c in result.changes.created] == ["R1"]
        assert result.changes.errors[0]["source_record_id"] == "R3"

    @pytest.mark.asyncio
    async def test_orphans_without_delete_flag_produce_note(self):
        ledger = FakeLedgerStore([make_row("gone", record_date=date(2025, 9, 2))])
        service = FinancialSyncService(FakeSourceStore([]), ledger)

        result = await service.synchronize(ORG_ID, START, END)

        assert result.changes.deleted == []
        assert len(result.changes.orphaned) == 1
        assert result.summary.to_delete == 0
        assert any("orphaned" in note for note in result.changes.notes)
        assert ledger.deletes == []

    @pytest.mark.asyncio
    async def test_invoiced_drift_produces_note(self):
        stored = make_row("R1", customer_id="C1", record_date=date(2025, 9, 5), quantity="2", invoice_id="INV-9")
        service = FinancialSyncService(FakeSourceStore([_r1(quantity="5")]), FakeLedgerStore([stored]))

        result = await service.synchronize(ORG_ID, START, END)

        assert result.changes.updated == []
        assert result.summary.protected == 1
        assert any("INV-9" in note for note in result.changes.notes)

    @pytest.mark.asyncio
    async def test_accepts_iso_string_dates(self):
        service = FinancialSyncService(FakeSourceStore([_r1()]), FakeLedgerStore())
        result = await service.synchronize(ORG_ID, "2025-09-01", "2025-09-30")
        assert result.success is True
        assert isinstance(result.duration, int)


class TestFatalErrors:
    """Test fatal errors surface as success=False."""

    @pytest.mark.asyncio
    async def test_source_unavailable(self, no_sentry):
        ledger = FakeLedgerStore()
        source = FakeSourceStore(error=httpx.ConnectTimeout("timed out"))
        service = FinancialSyncService(source, ledger)

        result = await service.synchronize(ORG_ID, START, END)

        assert result.success is False
        assert result.error_type == "SourceUnavailable"
        assert result.summary is None
        assert ledger.write_count == 0
        no_sentry.assert_called_once()

    @pytest.mark.asyncio
    async def test_ledger_unavailable(self):
        service = FinancialSyncService(
            FakeSourceStore([_r1()]),
            FakeLedgerStore(list_error=ConnectionResetError("reset")),
        )

        result = await service.synchronize(ORG_ID, START, END)

        assert result.success is False
        assert result.error_type == "LedgerUnavailable"

    @pytest.mark.asyncio
    async def test_malformed_source_row(self):
        ledger = FakeLedgerStore()
        service = FinancialSyncService(FakeSourceStore([_r1(quantity="lots")]), ledger)

        result = await service.synchronize(ORG_ID, START, END)

        assert result.success is False
        assert result.error_type == "SourceFormatError"
        assert "Billable_Time_Rounded" in result.error
        assert ledger.write_count == 0

    @pytest.mark.asyncio
    async def test_duplicate_mapping_aborts_before_writes(self):
        rows = [
            make_row("R1", row_id="a", record_date=date(2025, 9, 5)),
            make_row("r1", row_id="b", record_date=date(2025, 9, 5)),
        ]
        ledger = FakeLedgerStore(rows)
        service = FinancialSyncService(FakeSourceStore([make_raw("R9", DateStart="2025-09-01")]), ledger)

        result = await service.synchronize(ORG_ID, START, END)

        assert result.success is False
        assert result.error_type == "DataIntegrityError"
        assert ledger.write_count == 0

    @pytest.mark.asyncio
    async def test_invalid_window_is_not_reported_to_sentry(self, no_sentry):
        service = FinancialSyncService(FakeSourceStore(), FakeLedgerStore())

        result = await service.synchronize(ORG_ID, "2025-09-30", "2025-09-01")

        assert result.success is False
        assert result.error_type == "ValueError"
        no_sentry.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self):
        service = FinancialSyncService(FakeSourceStore(error=RuntimeError("boom")), FakeLedgerStore())

        result = await service.synchronize(ORG_ID, START, END)

        assert result.success is False
        assert result.error == "boom"
        assert result.error_type == "RuntimeError"


class TestPendingOnly:
    """Test use_pending_only runs against stored plans."""

    @pytest.mark.asyncio
    async def test_pending_run_applies_stored_plan_without_reading_stores(self, tmp_path):
        tracking = SyncTrackingStore(tmp_path)
        source = FakeSourceStore([_r1()])
        ledger = FakeLedgerStore()
        service = FinancialSyncService(source, ledger, tracking=tracking)

        preview = await service.synchronize(ORG_ID, START, END, SyncOptions(dry_run=True))
        assert preview.summary.sync_type == "full_review"
        assert tracking.has_pending(ORG_ID, START, END) is True

        result = await service.synchronize(ORG_ID, START, END, SyncOptions(use_pending_only=True))

        assert result.success is True
        assert result.summary.sync_type == "pending_only"
        assert [c["source_record_id"] for c in result.changes.created] == ["R1"]
        assert source.list_calls == 1
        assert ledger.list_calls == 1
        assert tracking.get(ORG_ID, START, END) is None

    @pytest.mark.asyncio
    async def test_pending_run_without_stored_plan_is_empty(self, tmp_path):
        ledger = FakeLedgerStore()
        service = FinancialSyncService(FakeSourceStore([_r1()]), ledger, tracking=SyncTrackingStore(tmp_path))

        result = await service.synchronize(ORG_ID, START, END, SyncOptions(use_pending_only=True))

        assert result.success is True
        assert result.summary.sync_type == "pending_only"
        assert result.changes.created == []
        assert ledger.write_count == 0

    @pytest.mark.asyncio
    async def test_plan_kept_when_writes_fail(self, tmp_path):
        tracking = SyncTrackingStore(tmp_path)
        ledger = FakeLedgerStore()
        ledger.fail_source_ids = {"r1"}
        service = FinancialSyncService(FakeSourceStore([_r1()]), ledger, tracking=tracking)

        result = await service.synchronize(ORG_ID, START, END)

        assert len(result.changes.errors) == 1
        assert tracking.has_pending(ORG_ID, START, END) is True

    @pytest.mark.asyncio
    async def test_pending_rerun_after_partial_failure_only_retries_failed_writes(self, tmp_path):
        tracking = SyncTrackingStore(tmp_path)
        ledger = FakeLedgerStore()
        ledger.fail_source_ids = {"r2"}
        source = FakeSourceStore([_r1(), make_raw("R2", DateStart="2025-09-06")])
        service = FinancialSyncService(source, ledger, tracking=tracking)

        first = await service.synchronize(ORG_ID, START, END)

        assert [c["source_record_id"] for c in first.changes.created] == ["R1"]
        pending = tracking.pending_summary(ORG_ID, START, END)
        assert pending["to_create"] == 1
        assert [i.source.id for i in tracking.get(ORG_ID, START, END).to_create] == ["R2"]

        ledger.fail_source_ids = set()
        retry = await service.synchronize(ORG_ID, START, END, SyncOptions(use_pending_only=True))

        assert [c["source_record_id"] for c in retry.changes.created] == ["R2"]
        assert sorted(r.source_record_id for r in ledger.rows.values()) == ["R1", "R2"]
        assert tracking.get(ORG_ID, START, END) is None

        after = await service.synchronize(ORG_ID, START, END)

        assert after.success is True
        assert after.changes.created == []
        assert after.changes.updated == []

    @pytest.mark.asyncio
    async def test_pending_plan_drops_unattempted_deletes(self, tmp_path):
        tracking = SyncTrackingStore(tmp_path)
        ledger = FakeLedgerStore([make_row("gone", record_date=date(2025, 9, 2))])
        ledger.fail_source_ids = {"r1"}
        service = FinancialSyncService(FakeSourceStore([_r1()]), ledger, tracking=tracking)

        await service.synchronize(ORG_ID, START, END)

        plan = tracking.get(ORG_ID, START, END)
        assert [i.source.id for i in plan.to_create] == ["R1"]
        assert plan.to_delete == []


class TestCustomerResolution:
    """Test runs with a customer directory."""

    @pytest.mark.asyncio
    async def test_live_run_creates_customer_and_uses_its_id(self):
        directory = FakeCustomerDirectory()
        ledger = FakeLedgerStore()
        service = FinancialSyncService(FakeSourceStore([_r1()]), ledger, customers=directory)

        result = await service.synchronize(ORG_ID, START, END)

        assert result.success is True
        assert directory.created == ["Acme Pty Ltd"]
        assert [r.customer_id for r in ledger.rows.values()] == [directory.customers["Acme Pty Ltd"]]

        again = await service.synchronize(ORG_ID, START, END)

        assert again.changes.created == []
        assert again.changes.updated == []
        assert directory.created == ["Acme Pty Ltd"]

    @pytest.mark.asyncio
    async def test_dry_run_never_creates_customers(self):
        directory = FakeCustomerDirectory()
        ledger = FakeLedgerStore()
        service = FinancialSyncService(FakeSourceStore([_r1()]), ledger, customers=directory)

        result = await service.synchronize(ORG_ID, START, END, SyncOptions(dry_run=True))

        assert len(result.changes.created) == 1
        assert directory.created == []
        assert directory.find_calls == 1
        assert ledger.write_count == 0

    @pytest.mark.asyncio
    async def test_row_with_practice_store_customer_id_is_corrected(self):
        directory = FakeCustomerDirectory({"Acme Pty Ltd": "cust-acme"})
        existing = make_row(
            "R1", customer_id="C1", record_date=date(2025, 9, 5),
            quantity="2", unit_price="100", product_name="Bookkeeping",
        )
        ledger = FakeLedgerStore([existing])
        service = FinancialSyncService(FakeSourceStore([_r1()]), ledger, customers=directory)

        result = await service.synchronize(ORG_ID, START, END)

        assert [u["source_record_id"] for u in result.changes.updated] == ["R1"]
        assert ledger.rows[existing.id].customer_id == "cust-acme"

    @pytest.mark.asyncio
    async def test_pending_run_after_preview_resolves_customers(self, tmp_path):
        directory = FakeCustomerDirectory()
        ledger = FakeLedgerStore()
        tracking = SyncTrackingStore(tmp_path)
        service = FinancialSyncService(FakeSourceStore([_r1()]), ledger, tracking=tracking, customers=directory)

        await service.synchronize(ORG_ID, START, END, SyncOptions(dry_run=True))
        result = await service.synchronize(ORG_ID, START, END, SyncOptions(use_pending_only=True))

        assert len(result.changes.created) == 1
        assert directory.created == ["Acme Pty Ltd"]
        assert [r.customer_id for r in ledger.rows.values()] == [directory.customers["Acme Pty Ltd"]]

    @pytest.mark.asyncio
    async def test_customer_lookup_failure_is_fatal(self, no_sentry):
        directory = FakeCustomerDirectory(error=OSError("connection refused"))
        ledger = FakeLedgerStore()
        service = FinancialSyncService(FakeSourceStore([_r1()]), ledger, customers=directory)

        result = await service.synchronize(ORG_ID, START, END)

        assert result.success is False
        assert result.error_type == "LedgerUnavailable"
        assert ledger.write_count == 0


class TestSyncStatus:
    """Test get_sync_status."""

    @pytest.mark.asyncio
    async def test_reports_out_of_sync_without_writing(self):
        ledger = FakeLedgerStore([make_row("gone", record_date=date(2025, 9, 2))])
        service = FinancialSyncService(FakeSourceStore([_r1()]), ledger)

        status = await service.get_sync_status(ORG_ID, START, END)

        assert status["success"] is True
        assert status["status"]["in_sync"] is False
        assert status["status"]["records_to_create"] == 1
        assert status["status"]["orphaned_records"] == 1
        assert status["details"]["to_create"][0]["source_record_id"] == "R1"
        assert ledger.write_count == 0

    @pytest.mark.asyncio
    async def test_reports_in_sync_after_sync(self):
        service = FinancialSyncService(FakeSourceStore([_r1()]), FakeLedgerStore())
        await service.synchronize(ORG_ID, START, END)

        status = await service.get_sync_status(ORG_ID, START, END)

        assert status["status"]["in_sync"] is True
        assert status["status"]["unchanged_records"] == 1

    @pytest.mark.asyncio
    async def test_failure_is_reported(self):
        service = FinancialSyncService(FakeSourceStore(error=httpx.ConnectError("down")), FakeLedgerStore())

        status = await service.get_sync_status(ORG_ID, START, END)

        assert status["success"] is False
        assert status["error_type"] == "SourceUnavailable"


class TestHelpers:
    def test_parse_window_rejects_bad_dates(self):
        with pytest.raises(ValueError):
            parse_window("2025-13-01", "2025-12-31")

    def test_parse_window_accepts_dates_and_strings(self):
        assert parse_window(date(2025, 1, 1), "2025-01-31") == (date(2025, 1, 1), date(2025, 1, 31))

    def test_log_sync_event_uses_extra(self, caplog):
        with caplog.at_level("INFO", logger="financial_sync.service"):
            log_sync_event(SyncAuditEvent.RUN_STARTED, ORG_ID, {"run_id": "x"})

        record = caplog.records[-1]
        assert record.sync_event["event"] == SyncAuditEvent.RUN_STARTED
        assert record.sync_event["organization_id"] == ORG_ID

    @pytest.mark.asyncio
    async def test_module_level_synchronize(self):
        result = await synchronize(
            ORG_ID, START, END,
            source_store=FakeSourceStore([_r1()]),
            ledger_store=FakeLedgerStore(),
        )
        assert result.success is True

    @pytest.mark.asyncio
    async def test_context_manager_closes_source(self):
        source = FakeSourceStore()
        async with FinancialSyncService(source, FakeLedgerStore()):
            pass
        assert source.closed is True
