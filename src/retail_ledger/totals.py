"""Invoice totals calculator.

A stateless fold over line items. Callers recompute totals after every ledger
change instead of caching them.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from .constants import HUNDRED, ZERO, InvoiceType
from .models import LineItem


@dataclass(frozen=True)
class InvoiceTotals:
    """Subtotal, discount and grand total of a ledger."""

    subtotal: Decimal
    discount_total: Decimal
    total: Decimal


def unit_price(item: LineItem, invoice_type: InvoiceType) -> Decimal:
    """Selling price for sale ledgers, buying price for purchase ledgers."""
    if invoice_type is InvoiceType.PURCHASE:
        return item.buying_price
    return item.selling_price


def compute_totals(items: Iterable[LineItem], invoice_type: InvoiceType) -> InvoiceTotals:
    """Fold line items into invoice totals.

    Args:
        items (Iterable[LineItem]): Line items of the ledger, in any order.
        invoice_type (InvoiceType): Ledger flavor. Purchase ledgers carry no
            discount, so their ``discount_total`` is always zero.

    Returns:
        InvoiceTotals: ``subtotal = sum(unit_price * quantity)``,
            ``discount_total = sum(unit_price * quantity * discount / 100)`` and
            ``total = subtotal - discount_total``.
    """
    subtotal = ZERO
    discount_total = ZERO
    for item in items:
        gross = unit_price(item, invoice_type) * item.quantity
        subtotal += gross
        if invoice_type is InvoiceType.SALE:
            discount_total += gross * item.discount_percent / HUNDRED
    return InvoiceTotals(
        subtotal=subtotal,
        discount_total=discount_total,
        total=subtotal - discount_total,
    )


__all__ = ["InvoiceTotals", "unit_price", "compute_totals"]
