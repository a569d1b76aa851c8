"""
Ledger aggregation and bill arithmetic.

Pure functions over ledger items; no store access. The ledger total is the
authoritative billable amount: only finished items count, regardless of
order or of how many unfinished items exist.
"""

from dataclasses import dataclass
from typing import Iterable

from core.errors import InvalidError
from core.models import LedgerItem, LedgerItemKind


@dataclass(frozen=True)
class BillTotals:
    """Amounts derived from a ledger subtotal, all in cents."""

    subtotal_cents: int
    additional_charges_cents: int
    discount_cents: int
    tax_rate_bps: int
    tax_amount_cents: int
    total_amount_cents: int


@dataclass(frozen=True)
class LedgerSummary:
    """Totals split by item kind."""

    ongoing_total_cents: int
    additional_total_cents: int
    finished_count: int
    open_count: int

    @property
    def total_cents(self) -> int:
        return self.ongoing_total_cents + self.additional_total_cents

    @property
    def all_finished(self) -> bool:
        return self.open_count == 0


def compute_ledger_total(items: Iterable[LedgerItem]) -> int:
    """Sum of total_price_cents over finished items."""
    return sum(item.total_price_cents for item in items if item.finished)


def summarize_ledger(items: Iterable[LedgerItem]) -> LedgerSummary:
    """Split finished totals by kind and count open items."""
    ongoing = 0
    additional = 0
    finished = 0
    open_ = 0

    for item in items:
        if not item.finished:
            open_ += 1
            continue
        finished += 1
        if item.kind == LedgerItemKind.ADDITIONAL:
            additional += item.total_price_cents
        else:
            ongoing += item.total_price_cents

    return LedgerSummary(
        ongoing_total_cents=ongoing,
        additional_total_cents=additional,
        finished_count=finished,
        open_count=open_,
    )


def compute_bill(
    subtotal_cents: int,
    tax_rate_bps: int,
    additional_charges_cents: int = 0,
    discount_cents: int = 0,
) -> BillTotals:
    """
    Apply adjustments and tax to a ledger subtotal.

    Tax is charged on (subtotal + charges - discount), rounded down to the
    cent. With no adjustments, total = subtotal + tax.

    Raises:
        InvalidError: Negative amounts, or a discount larger than the
            subtotal plus charges
    """
    if subtotal_cents < 0 or additional_charges_cents < 0 or discount_cents < 0:
        raise InvalidError("Amounts must not be negative")
    if not 0 <= tax_rate_bps <= 10000:
        raise InvalidError(f"Tax rate {tax_rate_bps} bps out of range")

    taxable = subtotal_cents + additional_charges_cents - discount_cents
    if taxable < 0:
        raise InvalidError("Discount exceeds the billable amount")

    tax_amount_cents = (taxable * tax_rate_bps) // 10000

    return BillTotals(
        subtotal_cents=subtotal_cents,
        additional_charges_cents=additional_charges_cents,
        discount_cents=discount_cents,
        tax_rate_bps=tax_rate_bps,
        tax_amount_cents=tax_amount_cents,
        total_amount_cents=taxable + tax_amount_cents,
    )
