"""Contract of the inventory/invoice store the engine talks to.

The engine owns no storage. Everything persistent sits behind
:class:`InventoryStore`; :class:`retail_ledger.data_manager.WorkbookStore` is
the reference implementation backed by an Excel workbook.

Implementations must make :meth:`InventoryStore.commit_invoice` atomic: all
sale lines are checked against the authoritative stock before any write, and
a shortfall is reported as :class:`~retail_ledger.errors.StoreConflict`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from .constants import InvoiceType, OrderStatus, PaymentMethod
from .models import CreatorContext, Invoice, InvoiceItem, Order, OrderItem, PaymentRecord, Product


class InventoryStore(ABC):
    """Request/response interface to the remote inventory and invoice store."""

    @abstractmethod
    def get_product(self, product_id: str) -> Product:
        """Return the authoritative product record.

        Raises:
            MissingReferenceError: If the product does not exist.
        """

    @abstractmethod
    def list_products(self, *, query: Optional[str] = None, low_stock_only: bool = False) -> List[Product]:
        """List products, optionally filtered by name/barcode substring or low stock."""

    @abstractmethod
    def add_product(self, product: Product) -> Product:
        """Register a catalog entry, generating a barcode when none is given."""

    @abstractmethod
    def commit_invoice(
        self,
        invoice_type: InvoiceType,
        items: Sequence[InvoiceItem],
        amount_paid: Decimal,
        creator: CreatorContext,
        *,
        counterparty_id: Optional[str] = None,
        counterparty_name: Optional[str] = None,
    ) -> Invoice:
        """Create an invoice and move stock exactly once.

        Sale commits decrement each product's stock, purchase commits
        increment it.

        Raises:
            StoreConflict: If a sale line asks for more than is in stock.
            MissingReferenceError: If a line references an unknown product.
        """

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> Invoice:
        """Return an invoice with its items."""

    @abstractmethod
    def list_invoices(self, *, invoice_type: Optional[InvoiceType] = None, debts_only: bool = False) -> List[Invoice]:
        """List invoices, optionally restricted to one type or to unpaid balances."""

    @abstractmethod
    def add_payment(self, invoice_id: str, amount: Decimal) -> Invoice:
        """Apply a follow-up payment using the payment tracker rules."""

    @abstractmethod
    def list_payments(self, invoice_id: str) -> List[PaymentRecord]:
        """Return the follow-up payments recorded for an invoice."""

    @abstractmethod
    def create_order(
        self,
        client_name: str,
        items: Iterable[OrderItem],
        *,
        payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY,
        client_phone: Optional[str] = None,
        address: Optional[str] = None,
        region: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """Persist a new ``pending`` order."""

    @abstractmethod
    def get_order(self, order_id: str) -> Order:
        """Return an order with its items."""

    @abstractmethod
    def list_orders(self, *, status: Optional[OrderStatus] = None) -> List[Order]:
        """List orders, optionally restricted to one status."""

    @abstractmethod
    def set_order_status(self, order_id: str, status: OrderStatus, creator: CreatorContext) -> Order:
        """Move an order through its lifecycle.

        Entering ``completed`` takes the order's quantities out of stock.

        Raises:
            TerminalStateViolation: If the order is already completed.
            InvalidTransition: If the move is not part of the lifecycle.
        """


__all__ = ["InventoryStore"]
