"""Unit tests for invoice totals calculation."""
from decimal import Decimal

import pytest

from totals import TAX_RATE, InvoiceTotals, calculate_totals, format_money, line_total, round2


class TestCalculateTotals:
    """Subtotal, tax and total for a selection."""

    def test_entries_and_service(self):
        """3h and 1.5h at $100 plus a $250 service."""
        totals = calculate_totals(
            [(Decimal("3"), Decimal("100")), (Decimal("1.5"), Decimal("100"))],
            [Decimal("250")],
        )

        assert totals.time_subtotal == Decimal("450")
        assert totals.services_total == Decimal("250")
        assert totals.subtotal == Decimal("700")
        assert totals.tax == Decimal("43.75")
        assert totals.total == Decimal("743.75")

    def test_service_only(self):
        """A single $80 service and no time entries."""
        totals = calculate_totals([], [Decimal("80")]).rounded()

        assert totals.subtotal == Decimal("80.00")
        assert totals.tax == Decimal("5.00")
        assert totals.total == Decimal("85.00")

    def test_empty_selection_is_all_zero(self):
        totals = calculate_totals([], [])

        assert totals == InvoiceTotals(
            time_subtotal=Decimal("0"),
            services_total=Decimal("0"),
            subtotal=Decimal("0"),
            tax=Decimal("0"),
            total=Decimal("0"),
        )

    def test_zero_rate_entries_contribute_nothing(self):
        totals = calculate_totals([(Decimal("8"), Decimal("0"))], [])

        assert totals.total == Decimal("0")

    def test_no_rounding_before_presentation(self):
        """Intermediate values keep full precision."""
        totals = calculate_totals([(Decimal("0.33"), Decimal("10.01"))], [])

        assert totals.time_subtotal == Decimal("3.3033")
        assert totals.tax == Decimal("3.3033") * TAX_RATE
        assert totals.rounded().total == Decimal("3.51")

    def test_recomputing_is_deterministic(self):
        selection = [(Decimal("2.75"), Decimal("85.50")), (Decimal("0.25"), Decimal("120"))]
        fees = [Decimal("19.99"), Decimal("5")]

        assert calculate_totals(selection, fees) == calculate_totals(list(selection), list(fees))

    @pytest.mark.parametrize(
        "entries,fees",
        [
            ([("1.25", "99.99")], []),
            ([("7", "65"), ("0.5", "65")], ["12.34"]),
            ([], ["0.01", "0.02"]),
            ([("10", "150.75"), ("3.33", "47.10")], ["1000"]),
        ],
    )
    def test_total_matches_formula(self, entries, fees):
        """total == round2((sum hours*rate + sum fee) * 1.0625)"""
        pairs = [(Decimal(h), Decimal(r)) for h, r in entries]
        fee_values = [Decimal(f) for f in fees]

        totals = calculate_totals(pairs, fee_values)

        expected = round2(
            (sum((h * r for h, r in pairs), Decimal("0")) + sum(fee_values, Decimal("0"))) * Decimal("1.0625")
        )
        assert round2(totals.total) == expected


class TestPresentation:
    """Rounding and formatting for display."""

    def test_round2_rounds_half_up(self):
        assert round2(Decimal("43.755")) == Decimal("43.76")
        assert round2(Decimal("0.005")) == Decimal("0.01")
        assert round2(Decimal("2.004")) == Decimal("2.00")

    def test_format_money(self):
        assert format_money(Decimal("743.75")) == "743.75"
        assert format_money(Decimal("85")) == "85.00"
        assert format_money(Decimal("0")) == "0.00"

    def test_line_total(self):
        assert line_total(Decimal("1.5"), Decimal("100")) == Decimal("150.0")
