"""Stock admission guard.

Decides whether a cart may ask for more units of a product given the stock
snapshot read when the product was selected. Only quantity increases go
through the guard; decreases and removals never do.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from . import log
from .errors import InsufficientStock, OutOfStock, StockAdmissionError
from .models import Product


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of :func:`can_add`; ``reason`` is set only for rejections."""

    reason: Optional[StockAdmissionError] = None

    @property
    def allowed(self) -> bool:
        return self.reason is None

    def raise_for_rejection(self) -> None:
        if self.reason is not None:
            raise self.reason


ALLOWED = AdmissionDecision()


def can_add(product: Product, requested_delta: int, cart_quantity: int) -> AdmissionDecision:
    """Evaluate the admission rules for a quantity increase.

    Rules run in order: an exhausted product is rejected as
    :class:`OutOfStock`; a request that would put more units in the cart than
    ``current_quantity`` is rejected as :class:`InsufficientStock`. Asking for
    exactly the available quantity is allowed.

    Args:
        product (Product): Stock snapshot of the product.
        requested_delta (int): Units being added on top of the cart.
        cart_quantity (int): Units of the product already in the cart.

    Returns:
        AdmissionDecision: :data:`ALLOWED` or a rejection carrying the reason.
    """
    if product.current_quantity <= 0:
        return AdmissionDecision(OutOfStock(product.product_id))
    if cart_quantity + requested_delta > product.current_quantity:
        return AdmissionDecision(InsufficientStock(product.product_id, product.current_quantity))
    return ALLOWED


def require_admission(product: Product, requested_delta: int, cart_quantity: int) -> None:
    """Raise the rejection reason of :func:`can_add`, if any."""
    decision = can_add(product, requested_delta, cart_quantity)
    if not decision.allowed:
        log.warning(
            "Stock guard rejected +%d of '%s' (in cart: %d, in stock: %d)",
            requested_delta,
            product.product_id,
            cart_quantity,
            product.current_quantity,
        )
    decision.raise_for_rejection()


__all__ = ["AdmissionDecision", "ALLOWED", "can_add", "require_admission"]
