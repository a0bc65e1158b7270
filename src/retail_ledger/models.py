"""Typed records exchanged between the engine, the store and the CLI.

Records are frozen dataclasses. The engine never mutates them in place: an
edit produces a new record through :func:`dataclasses.replace`. Translation
from store field names (sheet headers) into these attributes happens in
:mod:`retail_ledger.data_manager` only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from .constants import ZERO, CreatorKind, InvoiceType, OrderStatus, PaymentMethod


@dataclass(frozen=True)
class Product:
    """Catalog entry together with its live stock counter."""

    product_id: str
    name: str
    barcode: Optional[str]
    buying_price: Decimal
    selling_price: Decimal
    margin_percent: Decimal
    initial_quantity: int
    current_quantity: int
    min_quantity: int
    supplier_id: Optional[str] = None

    @property
    def is_low_stock(self) -> bool:
        return self.current_quantity <= self.min_quantity


@dataclass(frozen=True)
class LineItem:
    """One product entry inside an uncommitted ledger."""

    line_id: str
    product_id: str
    product_name: str
    barcode: Optional[str]
    buying_price: Decimal
    margin_percent: Decimal
    selling_price: Decimal
    quantity: int
    discount_percent: Decimal = ZERO
    min_quantity: int = 0
    total: Decimal = ZERO


@dataclass(frozen=True)
class InvoiceItem:
    """Frozen copy of a line item taken when its ledger is committed."""

    product_id: str
    product_name: str
    barcode: Optional[str]
    buying_price: Decimal
    margin_percent: Decimal
    selling_price: Decimal
    quantity: int
    discount_percent: Decimal
    min_quantity: int
    total: Decimal

    @classmethod
    def from_line_item(cls, item: LineItem) -> "InvoiceItem":
        return cls(
            product_id=item.product_id,
            product_name=item.product_name,
            barcode=item.barcode,
            buying_price=item.buying_price,
            margin_percent=item.margin_percent,
            selling_price=item.selling_price,
            quantity=item.quantity,
            discount_percent=item.discount_percent,
            min_quantity=item.min_quantity,
            total=item.total,
        )


@dataclass(frozen=True)
class CreatorContext:
    """Who is committing a transaction; passed explicitly into every commit."""

    creator_id: str
    creator_kind: CreatorKind


@dataclass(frozen=True)
class Invoice:
    """Persisted record of a committed purchase or sale."""

    invoice_id: str
    invoice_type: InvoiceType
    counterparty_id: Optional[str]
    counterparty_name: Optional[str]
    items: Tuple[InvoiceItem, ...]
    total: Decimal
    amount_paid: Decimal
    created_at: datetime
    creator_id: Optional[str]
    creator_kind: Optional[CreatorKind]


@dataclass(frozen=True)
class PaymentRecord:
    """Append-only entry for a payment added after an invoice was committed."""

    payment_id: str
    invoice_id: str
    timestamp: datetime
    amount: Decimal


@dataclass(frozen=True)
class OrderItem:
    """Product line of a storefront order."""

    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    total: Decimal


@dataclass(frozen=True)
class Order:
    """Storefront order governed by the fulfillment state machine."""

    order_id: str
    client_name: str
    status: OrderStatus
    items: Tuple[OrderItem, ...]
    payment_method: PaymentMethod
    total: Decimal
    created_at: datetime
    updated_at: datetime
    client_phone: Optional[str] = None
    address: Optional[str] = None
    region: Optional[str] = None
    notes: Optional[str] = None


__all__ = [
    "Product",
    "LineItem",
    "InvoiceItem",
    "CreatorContext",
    "Invoice",
    "PaymentRecord",
    "OrderItem",
    "Order",
]
