#!/usr/bin/env python3
"""
Manual sync of missing billing records into customer_sales.

Syncs month by month (one window per calendar month) with a short pause
between periods. Exits 1 if any period failed outright; per-record write
errors are listed but do not change the exit code.

Usage:
    python sync_missing_records.py <organization_id> [start_date] [end_date]

Dates are YYYY-MM-DD and default to 2024-09-01 .. 2025-01-31.
"""

import asyncio
import os
import sys
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config import get_settings
from logging_config import setup_logging
from sentry_integration import init_sentry
from financial_sync.models import SyncOptions
from financial_sync.periods import PeriodRunReport, month_periods, sync_periods
from financial_sync.service import FinancialSyncService, parse_window

DEFAULT_START = date(2024, 9, 1)
DEFAULT_END = date(2025, 1, 31)

USAGE = "Usage: python sync_missing_records.py <organization_id> [start_date] [end_date]"


def print_report(report: PeriodRunReport):
    print("\n" + "=" * 60)
    print("SYNC SUMMARY")
    print("=" * 60)

    for outcome in report.outcomes:
        if outcome.success:
            print(
                f"[OK]   {outcome.period.name}: {outcome.created} created, "
                f"{outcome.updated} updated, {outcome.errors} errors ({outcome.duration}ms)"
            )
            for index, message in enumerate(outcome.error_messages, start=1):
                print(f"         {index}. {message}")
        else:
            print(f"[FAIL] {outcome.period.name}: {outcome.error}")

    print("-" * 60)
    print(f"Successful periods: {len(report.successful)}/{len(report.outcomes)}")
    print(f"Total created: {report.total_created}")
    print(f"Total updated: {report.total_updated}")
    print(f"Total errors: {report.total_errors}")

    if report.failed:
        print("\nFailed periods:")
        for outcome in report.failed:
            print(f"  - {outcome.period.name}: {outcome.error}")


async def run(organization_id: str, start: date, end: date) -> int:
    settings = get_settings()
    periods = month_periods(start, end)

    print("=" * 60)
    print("FINANCIAL RECORDS SYNC")
    print("=" * 60)
    print(f"Organization ID: {organization_id}")
    print(f"Periods to sync: {len(periods)}")

    async with FinancialSyncService.from_settings() as service:
        report = await sync_periods(
            service,
            organization_id,
            periods,
            SyncOptions(dry_run=False, delete_orphaned=False),
            delay_seconds=settings.SYNC_PERIOD_DELAY_SECONDS,
        )

    print_report(report)
    return report.exit_code


def main(argv) -> int:
    if not argv:
        print("Error: Organization ID is required")
        print(USAGE)
        return 1

    organization_id = argv[0]
    try:
        start, end = parse_window(
            argv[1] if len(argv) > 1 else DEFAULT_START,
            argv[2] if len(argv) > 2 else DEFAULT_END,
        )
    except ValueError as e:
        print(f"Error: {e}")
        print(USAGE)
        return 1

    settings = get_settings()
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.is_production)
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    return asyncio.run(run(organization_id, start, end))


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
