"""Cart/line-item ledger for one transaction-composition session.

A :class:`Ledger` is owned by a single point-of-sale or invoicing session and
is mutated sequentially. It never touches stock: stock only moves when the
ledger is committed through :mod:`retail_ledger.core_logic`.

Two selection modes coexist on purpose. ``SelectionMode.SCAN`` (point of
sale) treats re-selecting a product as "one more unit" and runs every
quantity increase through the stock guard. ``SelectionMode.SEARCH``
(invoicing) refuses duplicates and leaves quantities unconstrained, since a
purchase brings stock in rather than taking it out.
"""

from __future__ import annotations

import itertools
from dataclasses import replace
from typing import Dict, Iterator, List, Optional

from . import log
from .constants import HUNDRED, ZERO, InvoiceType, PriceField, SelectionMode
from .errors import BusinessRuleViolation, DuplicateLineItem, MissingReferenceError
from .models import LineItem, Product
from .pricing import Number, reconcile_prices, to_decimal, with_line_total
from .stock_guard import require_admission
from .totals import InvoiceTotals, compute_totals


def _require_whole_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValueError(f"Quantity must be a whole number, got {quantity!r}")


class Ledger:
    """Ordered collection of line items for one uncommitted transaction."""

    def __init__(self, invoice_type: InvoiceType, mode: Optional[SelectionMode] = None) -> None:
        self.invoice_type = InvoiceType(invoice_type)
        if mode is None:
            mode = SelectionMode.SCAN if self.invoice_type is InvoiceType.SALE else SelectionMode.SEARCH
        self.mode = SelectionMode(mode)
        self._items: Dict[str, LineItem] = {}
        self._snapshots: Dict[str, Product] = {}
        self._line_ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[LineItem]:
        return iter(list(self._items.values()))

    def __repr__(self) -> str:
        return f"Ledger({self.invoice_type.value!r}, mode={self.mode.value!r}, lines={len(self)})"

    @property
    def items(self) -> List[LineItem]:
        return list(self._items.values())

    @property
    def is_empty(self) -> bool:
        return not self._items

    def get(self, line_id: str) -> LineItem:
        try:
            return self._items[line_id]
        except KeyError as exc:
            raise MissingReferenceError(f"Unknown line item: {line_id}") from exc

    def find_by_product(self, product_id: str) -> Optional[LineItem]:
        for item in self._items.values():
            if item.product_id == product_id:
                return item
        return None

    def quantity_for(self, product_id: str) -> int:
        item = self.find_by_product(product_id)
        return item.quantity if item is not None else 0

    def snapshot_for(self, product_id: str) -> Optional[Product]:
        """Return the stock snapshot read when ``product_id`` was selected."""
        return self._snapshots.get(product_id)

    def totals(self) -> InvoiceTotals:
        return compute_totals(self._items.values(), self.invoice_type)

    def select_product(self, product: Product) -> LineItem:
        """Put ``product`` into the ledger.

        A new line starts at quantity one with no discount, copying the
        product's prices, name, barcode and reorder threshold. Re-selecting a
        product already on the ledger increments it in ``SCAN`` mode and is
        rejected in ``SEARCH`` mode.

        Args:
            product (Product): Product snapshot as read from the store.

        Returns:
            LineItem: The new or incremented line.

        Raises:
            DuplicateLineItem: In ``SEARCH`` mode when the product is present.
            OutOfStock: In ``SCAN`` mode when the product has no stock.
            InsufficientStock: In ``SCAN`` mode when one more unit would exceed
                the stock snapshot.
        """
        existing = self.find_by_product(product.product_id)
        if existing is not None:
            if self.mode is SelectionMode.SEARCH:
                log.warning("Rejected duplicate selection of product '%s'", product.product_id)
                raise DuplicateLineItem(product.product_id)
            self._snapshots[product.product_id] = product
            return self.increment(existing.line_id)

        if self.mode is SelectionMode.SCAN:
            require_admission(product, 1, 0)

        item = LineItem(
            line_id=f"L{next(self._line_ids)}",
            product_id=product.product_id,
            product_name=product.name,
            barcode=product.barcode,
            buying_price=product.buying_price,
            margin_percent=product.margin_percent,
            selling_price=product.selling_price,
            quantity=1,
            discount_percent=ZERO,
            min_quantity=product.min_quantity,
        )
        item = with_line_total(item, self.invoice_type)
        self._items[item.line_id] = item
        self._snapshots[product.product_id] = product
        log.debug("Selected product '%s' as line '%s'", product.product_id, item.line_id)
        return item

    def increment(self, line_id: str, delta: int = 1) -> Optional[LineItem]:
        """Add ``delta`` units to an existing line."""
        return self.update_quantity(line_id, self.get(line_id).quantity + delta)

    def update_quantity(self, line_id: str, new_quantity: int) -> Optional[LineItem]:
        """Set the quantity of a line.

        A quantity of zero or less removes the line. In ``SCAN`` mode an
        increase is checked against the stock snapshot of the product; a
        decrease is never checked.

        Returns:
            LineItem | None: The updated line, or ``None`` when it was removed.

        Raises:
            MissingReferenceError: If ``line_id`` is unknown.
            ValueError: If ``new_quantity`` is not a whole number.
            OutOfStock: On a guarded increase of an exhausted product.
            InsufficientStock: On a guarded increase beyond the snapshot.
        """
        _require_whole_quantity(new_quantity)
        item = self.get(line_id)
        if new_quantity <= 0:
            self.remove_line_item(line_id)
            return None

        if self.mode is SelectionMode.SCAN and new_quantity > item.quantity:
            snapshot = self._snapshots[item.product_id]
            require_admission(snapshot, new_quantity - item.quantity, item.quantity)

        return self._store(replace(item, quantity=new_quantity))

    def update_discount(self, line_id: str, percent: Number) -> LineItem:
        """Set a line discount, clamped to the 0..100 range.

        Raises:
            BusinessRuleViolation: On purchase ledgers, which carry no discount.
        """
        if self.invoice_type is not InvoiceType.SALE:
            raise BusinessRuleViolation("Discounts only apply to sale ledgers")
        value = min(max(to_decimal(percent), ZERO), HUNDRED)
        return self._store(replace(self.get(line_id), discount_percent=value))

    def update_price(self, line_id: str, field: PriceField, value: Number, *, strict: bool = False) -> LineItem:
        """Edit one price field of a line and reconcile the other two."""
        item = reconcile_prices(self.get(line_id), field, value, self.invoice_type, strict=strict)
        self._items[line_id] = item
        return item

    def update_min_quantity(self, line_id: str, min_quantity: int) -> LineItem:
        _require_whole_quantity(min_quantity)
        if min_quantity < 0:
            raise ValueError("Minimum quantity must be zero or positive")
        return self._store(replace(self.get(line_id), min_quantity=min_quantity))

    def remove_line_item(self, line_id: str) -> LineItem:
        """Drop a line. Stock is not affected."""
        item = self.get(line_id)
        del self._items[line_id]
        self._snapshots.pop(item.product_id, None)
        log.debug("Removed line '%s' (product '%s')", line_id, item.product_id)
        return item

    def clear(self) -> None:
        """Empty the ledger after a commit or an abandoned session."""
        self._items.clear()
        self._snapshots.clear()

    def refresh_product(self, product: Product) -> None:
        """Replace the stock snapshot of a product already on the ledger."""
        if product.product_id in self._snapshots:
            self._snapshots[product.product_id] = product

    def _store(self, item: LineItem) -> LineItem:
        item = with_line_total(item, self.invoice_type)
        self._items[item.line_id] = item
        return item


__all__ = ["Ledger"]
