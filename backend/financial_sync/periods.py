"""
Multi-period synchronization runs.

Large ranges are synced one month at a time with a pause between periods to
spread load on both stores. A failed period is reported and the run moves on;
the exit code is non-zero only if at least one period failed outright.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Awaitable, Callable, List, Optional

from dateutil.relativedelta import relativedelta
from dateutil.rrule import rrule, MONTHLY

from financial_sync.models import SyncOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncPeriod:
    name: str
    start: date
    end: date


@dataclass
class PeriodOutcome:
    period: SyncPeriod
    success: bool
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)
    error: Optional[str] = None
    duration: Optional[int] = None


@dataclass
class PeriodRunReport:
    outcomes: List[PeriodOutcome] = field(default_factory=list)

    @property
    def successful(self) -> List[PeriodOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[PeriodOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def total_created(self) -> int:
        return sum(o.created for o in self.successful)

    @property
    def total_updated(self) -> int:
        return sum(o.updated for o in self.successful)

    @property
    def total_errors(self) -> int:
        return sum(o.errors for o in self.successful)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0


def month_periods(start: date, end: date) -> List[SyncPeriod]:
    """Split [start, end] into calendar-month periods (first and last clamped)."""
    if end < start:
        raise ValueError("end must not be before start")

    month_starts = rrule(
        MONTHLY,
        dtstart=datetime(start.year, start.month, 1),
        until=datetime(end.year, end.month, end.day),
    )

    periods = []
    for month_start in month_starts:
        month_end = month_start + relativedelta(day=31)
        periods.append(SyncPeriod(
            name=month_start.strftime("%B %Y"),
            start=max(month_start.date(), start),
            end=min(month_end.date(), end),
        ))
    return periods


async def sync_periods(
    service,
    organization_id: str,
    periods: List[SyncPeriod],
    options: Optional[SyncOptions] = None,
    delay_seconds: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> PeriodRunReport:
    """Run ``service.synchronize`` for each period in order."""
    report = PeriodRunReport()

    for index, period in enumerate(periods):
        logger.info(f"Syncing {period.name}: {period.start.isoformat()} to {period.end.isoformat()}")
        try:
            result = await service.synchronize(organization_id, period.start, period.end, options)
        except Exception as e:
            logger.exception(f"Exception while syncing {period.name}: {e}")
            report.outcomes.append(PeriodOutcome(period=period, success=False, error=str(e)))
        else:
            if result.success:
                report.outcomes.append(PeriodOutcome(
                    period=period,
                    success=True,
                    created=len(result.changes.created),
                    updated=len(result.changes.updated),
                    deleted=len(result.changes.deleted),
                    errors=len(result.changes.errors),
                    error_messages=[f"{e['type']}: {e['error']}" for e in result.changes.errors],
                    duration=result.duration,
                ))
            else:
                logger.error(f"Sync failed for {period.name}: {result.error}")
                report.outcomes.append(PeriodOutcome(
                    period=period, success=False, error=result.error, duration=result.duration
                ))

        if delay_seconds and index < len(periods) - 1:
            await sleep(delay_seconds)

    return report
