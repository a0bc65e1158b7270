"""Error kinds raised by the reconciliation engine.

Every class deriving from :class:`BusinessRuleViolation` is a local
validation failure: it is raised synchronously by the component that detects
it and never reaches the store. :class:`StoreConflict` is the separate class
for rejections coming back from the store itself.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, line item, invoice, or order is unknown."""


class StockAdmissionError(BusinessRuleViolation):
    """Base class for the reasons the stock guard can reject a quantity."""


class OutOfStock(StockAdmissionError):
    """The product has no stock left at all."""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Product '{product_id}' is out of stock")


class InsufficientStock(StockAdmissionError):
    """The requested quantity exceeds what is currently available."""

    def __init__(self, product_id: str, available: int) -> None:
        self.product_id = product_id
        self.available = available
        super().__init__(f"Not enough stock for product '{product_id}' (available: {available})")


class DuplicateLineItem(BusinessRuleViolation):
    """The product is already part of an invoicing ledger."""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Product '{product_id}' is already on the invoice")


class EmptyLedgerError(BusinessRuleViolation):
    """Raised when committing a ledger that holds no line items."""


class DivisionGuard(BusinessRuleViolation):
    """Margin cannot be derived from a selling price when the buying price is zero."""


class PaymentError(BusinessRuleViolation):
    """Base class for payment tracker rejections."""


class NegativePaymentError(PaymentError):
    """Payments must be zero or positive."""


class OverpaymentError(PaymentError):
    """A follow-up payment would push the paid amount above the invoice total."""


class AlreadyPaidError(PaymentError):
    """The invoice is fully paid and cannot accept further money."""


class OrderStateError(BusinessRuleViolation):
    """Base class for order fulfillment state machine rejections."""


class TerminalStateViolation(OrderStateError):
    """An order in a terminal state cannot transition anywhere."""


class InvalidTransition(OrderStateError):
    """The requested transition is not part of the order lifecycle."""


class StoreConflict(Exception):
    """The store rejected a commit or its data changed under the session.

    ``records`` carries the authoritative objects re-read from the store, when
    the component raising the conflict could fetch them.
    """

    def __init__(self, message: str, *, records: Optional[Sequence[Any]] = None) -> None:
        super().__init__(message)
        self.records = list(records or [])


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "StockAdmissionError",
    "OutOfStock",
    "InsufficientStock",
    "DuplicateLineItem",
    "EmptyLedgerError",
    "DivisionGuard",
    "PaymentError",
    "NegativePaymentError",
    "OverpaymentError",
    "AlreadyPaidError",
    "OrderStateError",
    "TerminalStateViolation",
    "InvalidTransition",
    "StoreConflict",
]
