"""Enumerations shared across the retail ledger modules.

Centralises the domain identifiers so that the pure engine modules, the
workbook store adapter and the CLI rely on a single source of truth for the
values persisted in the workbook.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class InvoiceType(str, Enum):
    """Enumerate the two invoice flavors a ledger can be committed as."""

    PURCHASE = "purchase"
    SALE = "sale"


class CreatorKind(str, Enum):
    """Enumerate the kinds of users allowed to stamp an invoice."""

    ADMIN = "admin"
    EMPLOYEE = "employee"


class SelectionMode(str, Enum):
    """How products enter a ledger.

    ``SCAN`` is the point-of-sale flow where re-scanning a product bumps its
    quantity. ``SEARCH`` is the invoicing flow where a product may only be
    selected once.
    """

    SCAN = "scan"
    SEARCH = "search"


class PriceField(str, Enum):
    """Line item price fields the reconciler knows how to edit."""

    BUYING_PRICE = "buying_price"
    MARGIN_PERCENT = "margin_percent"
    SELLING_PRICE = "selling_price"


class PaymentStatus(str, Enum):
    """Derived payment state of a committed invoice."""

    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class OrderStatus(str, Enum):
    """Lifecycle states of a storefront order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"


class PaymentMethod(str, Enum):
    """Payment methods accepted by the storefront checkout."""

    CASH_ON_DELIVERY = "cod"
    CARD = "card"
    TRANSFER = "transfer"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the store adapter."""

    PRODUCTS = "Products"
    INVOICES = "Invoices"
    INVOICE_ITEMS = "InvoiceItems"
    PAYMENTS = "Payments"
    ORDERS = "Orders"
    ORDER_ITEMS = "OrderItems"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "ZERO",
    "HUNDRED",
    "InvoiceType",
    "CreatorKind",
    "SelectionMode",
    "PriceField",
    "PaymentStatus",
    "OrderStatus",
    "PaymentMethod",
    "SheetName",
]
