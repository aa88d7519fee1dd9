"""Invoice totals calculation.

Sums selected time entries (hours × rate) and one-time service fees, then
applies the flat sales tax. All arithmetic is exact Decimal math; values are
only rounded to cents through ``round2`` when they are displayed or stored
as an invoice amount, so recomputing the same selection always agrees with
an earlier computation.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Tuple

TAX_RATE = Decimal("0.0625")
TAX_LABEL = "Tax (6.25%)"

CENT = Decimal("0.01")


def round2(value: Decimal) -> Decimal:
    """Round a money value to cents, halves away from zero.

    Example:
        >>> round2(Decimal("43.755"))
        Decimal('43.76')
    """
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    """Format a money value with two decimals, e.g. ``"743.75"``."""
    return f"{round2(value):.2f}"


@dataclass(frozen=True)
class InvoiceTotals:
    """Unrounded totals for one invoice selection.

    Attributes:
        time_subtotal: Sum of hours × rate over the selected time entries
        services_total: Sum of the selected service fees
        subtotal: time_subtotal + services_total
        tax: subtotal × TAX_RATE
        total: subtotal + tax
    """

    time_subtotal: Decimal
    services_total: Decimal
    subtotal: Decimal
    tax: Decimal
    total: Decimal

    def rounded(self) -> "InvoiceTotals":
        """Return a copy with every value rounded to cents."""
        return InvoiceTotals(
            time_subtotal=round2(self.time_subtotal),
            services_total=round2(self.services_total),
            subtotal=round2(self.subtotal),
            tax=round2(self.tax),
            total=round2(self.total),
        )


def line_total(hours: Decimal, rate: Decimal) -> Decimal:
    """Amount for a single time entry."""
    return Decimal(hours) * Decimal(rate)


def calculate_totals(
    entries: Iterable[Tuple[Decimal, Decimal]],
    fees: Iterable[Decimal],
) -> InvoiceTotals:
    """Calculate subtotal, tax and total for a selection.

    Args:
        entries: (hours, rate) pairs of the selected time entries
        fees: Flat fees of the selected one-time services

    Returns:
        InvoiceTotals with exact, unrounded values. An empty selection
        yields zero everywhere.

    Example:
        >>> totals = calculate_totals(
        ...     [(Decimal("3"), Decimal("100")), (Decimal("1.5"), Decimal("100"))],
        ...     [Decimal("250")],
        ... )
        >>> totals.rounded().total
        Decimal('743.75')
    """
    time_subtotal = sum((line_total(hours, rate) for hours, rate in entries), Decimal("0"))
    services_total = sum((Decimal(fee) for fee in fees), Decimal("0"))
    subtotal = time_subtotal + services_total
    tax = subtotal * TAX_RATE

    return InvoiceTotals(
        time_subtotal=time_subtotal,
        services_total=services_total,
        subtotal=subtotal,
        tax=tax,
        total=subtotal + tax,
    )
