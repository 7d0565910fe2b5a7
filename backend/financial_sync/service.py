"""
Financial Synchronization Service

Keeps the customer_sales ledger in step with billable time entries from the
practice-management store for a date window:
- Reads both stores concurrently
- Reconciles them into a create/update/delete plan
- Applies the plan with per-record failure isolation (or previews it)
- Returns a SyncResult envelope

The operation is idempotent: re-running a window over unchanged source data
performs no writes, so callers retry a failed window by simply invoking it
again. The engine never retries internally.
"""

import asyncio
import logging
import time
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from config import get_settings
from logging_config import sync_context
from sentry_integration import capture_exception
from financial_sync.aggregator import (
    SYNC_TYPE_FULL,
    SYNC_TYPE_PENDING,
    build_failure_result,
    build_sync_result,
)
from financial_sync.customers import assign_customer_ids, assign_plan_customers
from financial_sync.errors import FinancialSyncError
from financial_sync.executor import DEFAULT_WRITE_CONCURRENCY, execute, remaining_plan
from financial_sync.models import ExecutionResult, ReconciliationPlan, SyncOptions, SyncResult
from financial_sync.readers import fetch_ledger_rows, fetch_source_records
from financial_sync.reconciler import reconcile
from financial_sync.tracking import SyncTrackingStore

logger = logging.getLogger(__name__)

DateLike = Union[date, str]


class SyncAuditEvent:
    """Event names for sync lifecycle logging."""
    RUN_STARTED = "financial_sync.run_started"
    RUN_COMPLETED = "financial_sync.run_completed"
    RUN_FAILED = "financial_sync.run_failed"
    PLAN_BUILT = "financial_sync.plan_built"
    PENDING_EMPTY = "financial_sync.pending_empty"


def log_sync_event(event_type: str, organization_id: str, details: Dict[str, Any], level: int = logging.INFO):
    """Log a sync lifecycle event with structured details."""
    log_entry = {
        "event": event_type,
        "organization_id": organization_id,
        "details": details,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    logger.log(level, f"Financial sync event: {event_type}", extra={"sync_event": log_entry})


def parse_date(value: DateLike, name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValueError(f"{name} must be an ISO date (YYYY-MM-DD), got {value!r}")


def parse_window(start_date: DateLike, end_date: DateLike) -> Tuple[date, date]:
    start = parse_date(start_date, "start_date")
    end = parse_date(end_date, "end_date")
    if end < start:
        raise ValueError(f"end_date {end.isoformat()} is before start_date {start.isoformat()}")
    return start, end


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class FinancialSyncService:
    """
    Synchronizes practice store records into the sales ledger.

    Collaborators are injected: ``source_store`` needs ``list(org, start, end)``
    returning raw rows; ``ledger_store`` needs ``list``, ``insert``,
    ``update`` and ``delete``. An optional ``customers`` directory
    (``find`` / ``get_or_create``) maps customer names to ledger customer ids;
    without one the practice store's customer id is written as is.
    """

    def __init__(
        self,
        source_store,
        ledger_store,
        tracking: Optional[SyncTrackingStore] = None,
        write_concurrency: int = DEFAULT_WRITE_CONCURRENCY,
        customers=None,
    ):
        self.source_store = source_store
        self.ledger_store = ledger_store
        self.tracking = tracking
        self.write_concurrency = write_concurrency
        self.customers = customers

    @classmethod
    def from_settings(cls) -> "FinancialSyncService":
        """Service wired to the configured practice store and ledger database."""
        from database.connection import get_session_factory
        from financial_sync.clients import CustomerDirectory, LedgerStore, PracticeStoreClient

        settings = get_settings()
        session_factory = get_session_factory()
        return cls(
            source_store=PracticeStoreClient.from_settings(),
            ledger_store=LedgerStore(session_factory),
            tracking=SyncTrackingStore(Path(settings.SYNC_TRACKING_DIR)),
            write_concurrency=settings.SYNC_WRITE_CONCURRENCY,
            customers=CustomerDirectory(session_factory),
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        close = getattr(self.source_store, "close", None)
        if close is not None:
            await close()

    async def review(
        self,
        organization_id: str,
        start: date,
        end: date,
        create_customers: bool = False,
    ) -> ReconciliationPlan:
        """
        Read both stores concurrently and reconcile them.

        With a customer directory, source records carry resolved customer ids;
        missing customers are only created when ``create_customers`` is set.
        """
        source_outcome, ledger_outcome = await asyncio.gather(
            fetch_source_records(self.source_store, organization_id, start, end),
            fetch_ledger_rows(self.ledger_store, organization_id, start, end),
            return_exceptions=True,
        )
        for outcome in (source_outcome, ledger_outcome):
            if isinstance(outcome, BaseException):
                raise outcome

        source_records = source_outcome
        if self.customers is not None:
            source_records = await assign_customer_ids(
                source_records, self.customers, organization_id, create=create_customers
            )

        plan = reconcile(source_records, ledger_outcome)
        log_sync_event(SyncAuditEvent.PLAN_BUILT, organization_id, {
            "source_records": plan.source_count,
            "ledger_rows": plan.ledger_count,
            "to_create": len(plan.to_create),
            "to_update": len(plan.to_update),
            "orphaned": len(plan.to_delete),
        })
        return plan

    async def synchronize(
        self,
        organization_id: str,
        start_date: DateLike,
        end_date: DateLike,
        options: Optional[SyncOptions] = None,
    ) -> SyncResult:
        """
        Synchronize one window.

        Args:
            organization_id: Organization owning the ledger rows
            start_date: First day of the window (inclusive)
            end_date: Last day of the window (inclusive)
            options: dry_run / delete_orphaned / use_pending_only

        Returns:
            SyncResult; ``success`` is False only for fatal errors (store
            unavailable, malformed source data, duplicate mappings).
            Per-record write failures are listed in ``changes.errors``.
        """
        options = options or SyncOptions()
        started = time.monotonic()
        run_id = str(uuid.uuid4())

        with sync_context(run_id, organization_id):
            try:
                start, end = parse_window(start_date, end_date)
                log_sync_event(SyncAuditEvent.RUN_STARTED, organization_id, {
                    "run_id": run_id,
                    "start_date": start.isoformat(),
                    "end_date": end.isoformat(),
                    "dry_run": options.dry_run,
                    "delete_orphaned": options.delete_orphaned,
                    "use_pending_only": options.use_pending_only,
                })

                if options.use_pending_only:
                    sync_type = SYNC_TYPE_PENDING
                    plan = self.tracking.get(organization_id, start, end) if self.tracking else None
                    if plan is None:
                        log_sync_event(SyncAuditEvent.PENDING_EMPTY, organization_id, {"run_id": run_id})
                        return build_sync_result(
                            ReconciliationPlan(), ExecutionResult(), options,
                            _elapsed_ms(started), sync_type=sync_type,
                        )
                    if self.customers is not None and not options.dry_run:
                        plan = await assign_plan_customers(plan, self.customers, organization_id)
                else:
                    sync_type = SYNC_TYPE_FULL
                    plan = await self.review(organization_id, start, end, create_customers=not options.dry_run)
                    if self.tracking:
                        self.tracking.store(organization_id, start, end, plan)

                execution = await execute(plan, self.ledger_store, options, self.write_concurrency)

                if self.tracking and not options.dry_run:
                    if execution.errors:
                        self.tracking.store(organization_id, start, end, remaining_plan(plan, execution))
                    else:
                        self.tracking.clear(organization_id, start, end)

                result = build_sync_result(plan, execution, options, _elapsed_ms(started), sync_type=sync_type)

            except (FinancialSyncError, ValueError) as e:
                return self._failure(organization_id, run_id, e, started, options)
            except Exception as e:
                logger.exception(f"Unexpected error during financial synchronization: {e}")
                return self._failure(organization_id, run_id, e, started, options)

            log_sync_event(SyncAuditEvent.RUN_COMPLETED, organization_id, {
                "run_id": run_id,
                "created": len(result.changes.created),
                "updated": len(result.changes.updated),
                "deleted": len(result.changes.deleted),
                "errors": len(result.changes.errors),
                "duration_ms": result.duration,
                "dry_run": options.dry_run,
            })
            return result

    def _failure(
        self,
        organization_id: str,
        run_id: str,
        error: Exception,
        started: float,
        options: SyncOptions,
    ) -> SyncResult:
        message = str(error) or error.__class__.__name__
        log_sync_event(SyncAuditEvent.RUN_FAILED, organization_id, {
            "run_id": run_id,
            "error_type": error.__class__.__name__,
            "error": message,
        }, level=logging.ERROR)
        # Bad window arguments are not reported to Sentry
        if not isinstance(error, ValueError):
            capture_exception(error, organization_id=organization_id, sync_run_id=run_id)
        return build_failure_result(
            message, _elapsed_ms(started), dry_run=options.dry_run, error_type=error.__class__.__name__
        )

    async def get_sync_status(
        self,
        organization_id: str,
        start_date: DateLike,
        end_date: DateLike,
    ) -> Dict[str, Any]:
        """Dry-run the window and report whether the ledger is in sync."""
        result = await self.synchronize(organization_id, start_date, end_date, SyncOptions(dry_run=True))
        if not result.success:
            return {"success": False, "error": result.error, "error_type": result.error_type}

        summary = result.summary
        return {
            "success": True,
            "status": {
                "in_sync": summary.to_create == 0 and summary.to_update == 0,
                "dev_records_count": summary.dev_records_count,
                "customer_sales_count": summary.customer_sales_count,
                "records_to_create": summary.to_create,
                "records_to_update": summary.to_update,
                "orphaned_records": len(result.changes.orphaned),
                "unchanged_records": summary.unchanged,
                "invoiced_records": summary.protected,
            },
            "details": {
                "to_create": result.changes.created,
                "to_update": result.changes.updated,
                "orphaned": result.changes.orphaned,
            },
        }


async def synchronize(
    organization_id: str,
    start_date: DateLike,
    end_date: DateLike,
    options: Optional[SyncOptions] = None,
    *,
    source_store,
    ledger_store,
    tracking: Optional[SyncTrackingStore] = None,
    write_concurrency: int = DEFAULT_WRITE_CONCURRENCY,
    customers=None,
) -> SyncResult:
    """Functional entry point for scripts and scheduled jobs."""
    service = FinancialSyncService(
        source_store=source_store,
        ledger_store=ledger_store,
        tracking=tracking,
        write_concurrency=write_concurrency,
        customers=customers,
    )
    return await service.synchronize(organization_id, start_date, end_date, options)
