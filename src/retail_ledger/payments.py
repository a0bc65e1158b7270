"""Payment/debt tracker for a single invoice.

The store applies the same rules authoritatively when a payment is added; the
functions here mirror them so a session can reject bad input before any
request is sent. Amounts are :class:`~decimal.Decimal` throughout.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from . import log
from .constants import ZERO, PaymentStatus
from .errors import AlreadyPaidError, NegativePaymentError, OverpaymentError
from .pricing import Number, to_decimal


@dataclass(frozen=True)
class PaymentSnapshot:
    """Paid amount of an invoice with its derived debt and change."""

    total: Decimal
    amount_paid: Decimal

    @property
    def remaining_debt(self) -> Decimal:
        return remaining_debt(self.total, self.amount_paid)

    @property
    def change(self) -> Decimal:
        return change_due(self.total, self.amount_paid)

    @property
    def status(self) -> PaymentStatus:
        return payment_status(self.total, self.amount_paid)


def remaining_debt(total: Decimal, amount_paid: Decimal) -> Decimal:
    """Return ``total - amount_paid`` when positive, else zero."""
    return max(total - amount_paid, ZERO)


def change_due(total: Decimal, amount_paid: Decimal) -> Decimal:
    """Return ``amount_paid - total`` when positive, else zero."""
    return max(amount_paid - total, ZERO)


def payment_status(total: Decimal, amount_paid: Decimal) -> PaymentStatus:
    """Classify an invoice as unpaid, partially paid, or paid."""
    if amount_paid >= total:
        return PaymentStatus.PAID
    if amount_paid <= ZERO:
        return PaymentStatus.UNPAID
    return PaymentStatus.PARTIAL


def _require_nonnegative_payment(amount: Decimal) -> None:
    if amount < ZERO:
        log.warning("Rejected negative payment of %s", amount)
        raise NegativePaymentError(f"Payment must be zero or positive, got {amount}")


def settle(total: Number, received: Number) -> PaymentSnapshot:
    """Record the amount handed over when a ledger is committed.

    ``amount_paid`` becomes exactly ``received``. Anything above the total is
    reported as change; anything below remains as debt.

    Args:
        total (Number): Grand total of the invoice being committed.
        received (Number): Money received at the counter.

    Returns:
        PaymentSnapshot: Commit-time payment state.

    Raises:
        NegativePaymentError: If ``received`` is negative.
    """
    total_amount = to_decimal(total)
    received_amount = to_decimal(received)
    _require_nonnegative_payment(received_amount)
    return PaymentSnapshot(total=total_amount, amount_paid=received_amount)


def apply_payment(total: Number, amount_paid: Number, payment: Number) -> PaymentSnapshot:
    """Add a follow-up payment to an already committed invoice.

    Checks run in order: negative payments are rejected, then any positive
    payment on a fully paid invoice, then payments that would exceed the
    total. A zero payment is accepted and changes nothing.

    Args:
        total (Number): Invoice total.
        amount_paid (Number): Amount paid so far.
        payment (Number): Additional amount offered.

    Returns:
        PaymentSnapshot: State after the payment.

    Raises:
        NegativePaymentError: If ``payment`` is negative.
        AlreadyPaidError: If the invoice is paid and ``payment`` is positive.
        OverpaymentError: If ``amount_paid + payment`` exceeds ``total``.
    """
    total_amount = to_decimal(total)
    paid = to_decimal(amount_paid)
    amount = to_decimal(payment)

    _require_nonnegative_payment(amount)
    if amount == ZERO:
        return PaymentSnapshot(total=total_amount, amount_paid=paid)
    if paid >= total_amount:
        log.warning("Rejected payment of %s on a fully paid invoice", amount)
        raise AlreadyPaidError("Invoice is already fully paid")

    new_paid = paid + amount
    if new_paid > total_amount:
        log.warning(
            "Rejected overpayment: %s + %s exceeds total %s",
            paid,
            amount,
            total_amount,
        )
        raise OverpaymentError(
            f"Payment of {amount} exceeds the remaining debt of {remaining_debt(total_amount, paid)}"
        )
    return PaymentSnapshot(total=total_amount, amount_paid=new_paid)


__all__ = [
    "PaymentSnapshot",
    "remaining_debt",
    "change_due",
    "payment_status",
    "settle",
    "apply_payment",
]
