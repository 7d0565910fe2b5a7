"""
Unit Tests for the Field Mapper

Tests:
- round2 half-even rounding and stability
- Eligibility gate
- Source -> ledger row mapping

Run with: pytest tests/test_mapper.py -v
"""

from datetime import date
from decimal import Decimal

import pytest

from financial_sync.mapper import (
    SKIP,
    UNLABELED_PRODUCT,
    is_eligible,
    map_to_ledger_row,
    round2,
)
from conftest import ORG_ID, make_source


class TestRound2:
    """Test cent rounding."""

    @pytest.mark.parametrize("value,expected", [
        ("0.125", "0.12"),
        ("0.135", "0.14"),
        ("2.675", "2.68"),
        ("1.005", "1.00"),
        ("10", "10.00"),
    ])
    def test_half_even(self, value, expected):
        """Test ties round to the even cent."""
        assert round2(Decimal(value)) == Decimal(expected)

    def test_accepts_floats_via_str(self):
        """Test floats are converted through str, not binary expansion."""
        assert round2(0.125) == Decimal("0.12")
        assert round2(2.675) == Decimal("2.68")

    def test_idempotent(self):
        """Test rounding an already rounded value is a no-op."""
        for raw in ("0.005", "33.335", "1234.5678", "0"):
            once = round2(Decimal(raw))
            assert round2(once) == once

    def test_total_is_stable_across_mappings(self):
        """Test the same inputs always produce the same total."""
        source = make_source(quantity="0.25", unit_rate="130.50")
        first = map_to_ledger_row(source)
        second = map_to_ledger_row(source)
        assert first.total_price == second.total_price == Decimal("32.62")


class TestEligibility:
    """Test the eligibility gate."""

    def test_billable_record_is_eligible(self):
        assert is_eligible(make_source()) is True

    @pytest.mark.parametrize("flags", [
        {"billable": False},
        {"do_not_bill": True},
        {"omit": True},
        {"billable": True, "omit": True, "do_not_bill": True},
    ])
    def test_gate_failures_map_to_skip(self, flags):
        """Test any failed flag yields SKIP."""
        source = make_source(**flags)
        assert is_eligible(source) is False
        assert map_to_ledger_row(source) is SKIP

    def test_already_billed_does_not_affect_gate(self):
        """Test already_billed is informational only."""
        assert map_to_ledger_row(make_source(already_billed=True)) is not SKIP

    def test_skip_is_falsy_singleton(self):
        assert not SKIP
        assert repr(SKIP) == "SKIP"
        assert type(SKIP)() is SKIP


class TestMapToLedgerRow:
    """Test field mapping."""

    def test_maps_fields(self):
        source = make_source(record_id="abc", quantity="2", unit_rate="95.50", record_date=date(2024, 11, 5))
        row = map_to_ledger_row(source)

        assert row.source_record_id == "abc"
        assert row.organization_id == ORG_ID
        assert row.customer_id == "cust-1"
        assert row.product_name == "Bookkeeping"
        assert row.quantity == Decimal("2")
        assert row.unit_price == Decimal("95.50")
        assert row.total_price == Decimal("191.00")
        assert row.date == date(2024, 11, 5)
        assert row.id is None
        assert row.invoice_id is None

    def test_product_name_falls_back_to_project_label(self):
        row = map_to_ledger_row(make_source(description=""))
        assert row.product_name == "Monthly Accounts"

    def test_product_name_falls_back_to_unlabeled(self):
        row = map_to_ledger_row(make_source(description="", project_label=""))
        assert row.product_name == UNLABELED_PRODUCT

    def test_zero_quantity_maps_to_zero_total(self):
        row = map_to_ledger_row(make_source(quantity="0"))
        assert row.total_price == Decimal("0.00")
