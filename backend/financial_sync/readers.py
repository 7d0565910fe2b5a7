"""
Source and ledger readers.

``normalize_source_record`` is the single place that knows the practice
store's raw field names. Everything downstream works on SourceUsageRecord.
"""

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from financial_sync.errors import LedgerUnavailable, SourceFormatError, SourceUnavailable
from financial_sync.models import LedgerRow, SourceUsageRecord

logger = logging.getLogger(__name__)

# Raw practice store field names
FIELD_ID = "__ID"
FIELD_CUSTOMER_ID = "_custID"
FIELD_PROJECT_ID = "_projectID"
FIELD_DATE = "DateStart"
FIELD_QUANTITY = "Billable_Time_Rounded"
FIELD_RATE = "Hourly_Rate"
FIELD_RATE_FALLBACK = "Customers::chargeRate"
FIELD_DESCRIPTION = "Work Performed"
FIELD_PROJECT_NAME = "customers_Projects::projectName"
FIELD_PROJECT_NAME_FALLBACK = "customers_Projects::Name"
FIELD_CUSTOMER_NAME = "Customers::Name"
FIELD_BILLABLE = "f_billable"
FIELD_DO_NOT_BILL = "f_dnb"
FIELD_OMIT = "f_omit"
FIELD_BILLED = "f_billed"

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y")
TRUE_VALUES = {"1", "true", "yes", "y", "t"}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _flag(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUE_VALUES


def _decimal(raw: Dict[str, Any], field: str, record_id: str, fallback: Optional[str] = None) -> Decimal:
    value = raw.get(field)
    if (value is None or value == "") and fallback:
        value = raw.get(fallback)
    if value is None or value == "":
        return Decimal("0")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise SourceFormatError(
            f"Record {record_id}: {field} is not numeric ({value!r})",
            field=field,
            record_id=record_id,
        )
    if not number.is_finite():
        raise SourceFormatError(f"Record {record_id}: {field} is not finite", field=field, record_id=record_id)
    if number < 0:
        raise SourceFormatError(
            f"Record {record_id}: {field} must be >= 0 (got {number})",
            field=field,
            record_id=record_id,
        )
    return number


def _date(value: Any, record_id: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text_value = _text(value)
    if not text_value:
        raise SourceFormatError(f"Record {record_id}: missing {FIELD_DATE}", field=FIELD_DATE, record_id=record_id)
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text_value[:10], fmt).date()
        except ValueError:
            continue
    raise SourceFormatError(
        f"Record {record_id}: unrecognised date {text_value!r}",
        field=FIELD_DATE,
        record_id=record_id,
    )


def normalize_source_record(raw: Dict[str, Any], organization_id: str) -> SourceUsageRecord:
    """
    Convert one raw practice store row into a SourceUsageRecord.

    Raises:
        SourceFormatError: required field missing or malformed
    """
    record_id = _text(raw.get(FIELD_ID))
    if not record_id:
        raise SourceFormatError(f"Source row missing {FIELD_ID}", field=FIELD_ID)

    return SourceUsageRecord(
        id=record_id,
        organization_id=organization_id,
        customer_id=_text(raw.get(FIELD_CUSTOMER_ID)) or None,
        project_id=_text(raw.get(FIELD_PROJECT_ID)) or None,
        date=_date(raw.get(FIELD_DATE), record_id),
        quantity=_decimal(raw, FIELD_QUANTITY, record_id),
        unit_rate=_decimal(raw, FIELD_RATE, record_id, fallback=FIELD_RATE_FALLBACK),
        description=_text(raw.get(FIELD_DESCRIPTION)),
        project_label=_text(raw.get(FIELD_PROJECT_NAME)) or _text(raw.get(FIELD_PROJECT_NAME_FALLBACK)),
        customer_name=_text(raw.get(FIELD_CUSTOMER_NAME)),
        # Entries are billable unless the store says otherwise
        billable=_flag(raw.get(FIELD_BILLABLE), default=True),
        do_not_bill=_flag(raw.get(FIELD_DO_NOT_BILL), default=False),
        omit=_flag(raw.get(FIELD_OMIT), default=False),
        already_billed=_flag(raw.get(FIELD_BILLED), default=False),
    )


async def fetch_source_records(
    store,
    organization_id: str,
    start_date: date,
    end_date: date
) -> List[SourceUsageRecord]:
    """
    Fetch and normalize every source record in the window.

    Raises:
        SourceUnavailable: store unreachable or authentication failed
        SourceFormatError: a row could not be normalized
    """
    try:
        raw_rows = await store.list(organization_id, start_date, end_date)
    except SourceUnavailable:
        raise
    except httpx.HTTPError as e:
        raise SourceUnavailable(f"Failed to fetch source records: {e}") from e

    records = [normalize_source_record(raw, organization_id) for raw in raw_rows]
    logger.info(f"Found {len(records)} source records for {start_date.isoformat()} to {end_date.isoformat()}")
    return records


async def fetch_ledger_rows(
    ledger,
    organization_id: str,
    start_date: date,
    end_date: date
) -> List[LedgerRow]:
    """
    Fetch ledger rows owned by the sync engine for the window.

    Raises:
        LedgerUnavailable: ledger could not be queried
    """
    try:
        rows = await ledger.list(organization_id, start_date, end_date)
    except (SQLAlchemyError, OSError) as e:
        raise LedgerUnavailable(f"Failed to fetch customer_sales: {e}") from e

    owned = [row for row in rows if row.source_record_id]
    if len(owned) != len(rows):
        logger.warning(f"Ignoring {len(rows) - len(owned)} manual ledger rows returned by the ledger store")

    logger.info(f"Found {len(owned)} customer_sales rows for {start_date.isoformat()} to {end_date.isoformat()}")
    return owned
