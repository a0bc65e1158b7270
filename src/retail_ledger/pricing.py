"""Pricing reconciler for a single line item.

Keeps ``selling_price == buying_price * (1 + margin_percent / 100)`` true
whenever one of the three price fields is edited, and refreshes the line total
afterwards. The only tolerated break of the relation is a selling price edit
on a zero buying price, where the margin cannot be derived.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Union

from . import log
from .constants import HUNDRED, ZERO, InvoiceType, PriceField
from .errors import DivisionGuard
from .models import LineItem

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Coerce user supplied numbers into :class:`~decimal.Decimal`.

    Floats go through ``str`` first so ``0.1`` stays ``Decimal("0.1")``.

    Raises:
        ValueError: If ``value`` cannot be parsed as a number, or is NaN or
            infinite.
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Not a valid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")
    return amount


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Args:
        amount (Decimal): Price or payment supplied by a caller.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < ZERO:
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def compute_selling_price(buying_price: Decimal, margin_percent: Decimal) -> Decimal:
    """Return ``buying_price`` marked up by ``margin_percent``."""
    return buying_price * (1 + margin_percent / HUNDRED)


def compute_margin(buying_price: Decimal, selling_price: Decimal) -> Decimal:
    """Derive the margin percent implied by a buying and a selling price.

    Args:
        buying_price (Decimal): Unit cost of the product.
        selling_price (Decimal): Unit price charged to clients.

    Returns:
        Decimal: ``(selling - buying) / buying * 100``. Negative when selling
            below cost.

    Raises:
        DivisionGuard: If ``buying_price`` is zero.
    """
    if buying_price == ZERO:
        raise DivisionGuard("Cannot derive a margin from a zero buying price")
    return (selling_price - buying_price) / buying_price * HUNDRED


def compute_line_total(item: LineItem, invoice_type: InvoiceType) -> Decimal:
    """Compute the total of one line for the given ledger flavor.

    Purchase ledgers use the cost basis ``buying_price * quantity``. Sale
    ledgers charge ``selling_price * quantity`` minus the line discount.
    """
    if invoice_type is InvoiceType.PURCHASE:
        return item.buying_price * item.quantity
    return item.selling_price * item.quantity * (1 - item.discount_percent / HUNDRED)


def with_line_total(item: LineItem, invoice_type: InvoiceType) -> LineItem:
    """Return ``item`` with its ``total`` recomputed."""
    return replace(item, total=compute_line_total(item, invoice_type))


def reconcile_prices(
    item: LineItem,
    field: PriceField,
    value: Number,
    invoice_type: InvoiceType,
    *,
    strict: bool = False,
) -> LineItem:
    """Apply a price edit and recompute the dependent price fields.

    Buying price and margin edits recompute the selling price. A selling
    price edit recomputes the margin and leaves the buying price alone. When
    the buying price is zero the margin is kept as is: the
    :class:`~retail_ledger.errors.DivisionGuard` raised by
    :func:`compute_margin` is logged and absorbed unless ``strict`` is set.

    Args:
        item (LineItem): Line being edited.
        field (PriceField): Which price field the user changed.
        value (Number): New value for ``field``.
        invoice_type (InvoiceType): Flavor of the owning ledger, used for the
            line total.
        strict (bool): Propagate :class:`DivisionGuard` instead of keeping the
            previous margin.

    Returns:
        LineItem: New line item with consistent prices and total.

    Raises:
        ValueError: If a price is negative or not a number.
        DivisionGuard: Only when ``strict`` is ``True`` and the margin cannot be
            derived.
    """
    amount = to_decimal(value)
    field = PriceField(field)

    if field is PriceField.BUYING_PRICE:
        require_nonnegative_money(amount)
        updated = replace(
            item,
            buying_price=amount,
            selling_price=compute_selling_price(amount, item.margin_percent),
        )
    elif field is PriceField.MARGIN_PERCENT:
        selling = compute_selling_price(item.buying_price, amount)
        require_nonnegative_money(selling)
        updated = replace(item, margin_percent=amount, selling_price=selling)
    else:
        require_nonnegative_money(amount)
        updated = replace(item, selling_price=amount)
        try:
            updated = replace(updated, margin_percent=compute_margin(item.buying_price, amount))
        except DivisionGuard:
            log.warning(
                "Kept margin %s on line '%s': buying price is zero",
                item.margin_percent,
                item.line_id,
            )
            if strict:
                raise

    return with_line_total(updated, invoice_type)


__all__ = [
    "to_decimal",
    "require_nonnegative_money",
    "compute_selling_price",
    "compute_margin",
    "compute_line_total",
    "with_line_total",
    "reconcile_prices",
]
