"""Order fulfillment state machine for storefront orders.

Orders move ``pending -> confirmed -> completed`` or straight from
``pending`` to ``completed``. ``completed`` is terminal. Entering it is the
one moment an order takes stock: the plan returned by
:func:`plan_transition` lists the decrements, which the store applies
without consulting the stock guard since the goods are already promised.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

from . import log
from .constants import ZERO, OrderStatus, PaymentMethod
from .errors import InvalidTransition, TerminalStateViolation
from .models import Order, OrderItem
from .pricing import Number, require_nonnegative_money, to_decimal

ALLOWED_TRANSITIONS: Mapping[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.COMPLETED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
}


@dataclass(frozen=True)
class TransitionPlan:
    """Order after a status change plus the stock it consumes."""

    order: Order
    previous_status: OrderStatus
    stock_decrements: Dict[str, int] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return self.order.status is not self.previous_status


def validate_transition(current: OrderStatus, target: OrderStatus) -> None:
    """Check that ``current -> target`` is part of the order lifecycle.

    Staying in a non-terminal state is accepted as a no-op.

    Raises:
        TerminalStateViolation: If ``current`` is ``completed``, whatever the
            target.
        InvalidTransition: For backward moves such as ``confirmed -> pending``.
    """
    if current is OrderStatus.COMPLETED:
        raise TerminalStateViolation("Completed orders cannot change status")
    if target is current:
        return
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(f"Cannot move an order from '{current.value}' to '{target.value}'")


def stock_decrements(items: Iterable[OrderItem]) -> Dict[str, int]:
    """Aggregate order quantities per product."""
    decrements: Dict[str, int] = {}
    for item in items:
        decrements[item.product_id] = decrements.get(item.product_id, 0) + item.quantity
    return decrements


def plan_transition(order: Order, target: OrderStatus, *, when: Optional[datetime] = None) -> TransitionPlan:
    """Compute the outcome of moving ``order`` to ``target``.

    Args:
        order (Order): Order as currently stored.
        target (OrderStatus): Requested status.
        when (datetime | None): Timestamp for ``updated_at``; defaults to now.

    Returns:
        TransitionPlan: Updated order and, when entering ``completed``, the
            per-product quantities to take out of stock.

    Raises:
        TerminalStateViolation: If the order is already completed.
        InvalidTransition: If the move is not allowed.
    """
    target = OrderStatus(target)
    try:
        validate_transition(order.status, target)
    except (TerminalStateViolation, InvalidTransition):
        log.warning(
            "Rejected order '%s' transition %s -> %s",
            order.order_id,
            order.status.value,
            target.value,
        )
        raise

    if target is order.status:
        return TransitionPlan(order=order, previous_status=order.status)

    moment = when if when is not None else datetime.now(UTC)
    updated = replace(order, status=target, updated_at=moment)
    decrements = stock_decrements(order.items) if target is OrderStatus.COMPLETED else {}
    return TransitionPlan(order=updated, previous_status=order.status, stock_decrements=decrements)


def build_order_item(product_id: str, product_name: str, quantity: int, unit_price: Number) -> OrderItem:
    """Create an order line whose total is ``unit_price * quantity``."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError(f"Order quantity must be a positive whole number, got {quantity!r}")
    price = to_decimal(unit_price)
    require_nonnegative_money(price)
    return OrderItem(
        product_id=product_id,
        product_name=product_name,
        quantity=quantity,
        unit_price=price,
        total=price * quantity,
    )


def build_order(
    order_id: str,
    client_name: str,
    items: Iterable[OrderItem],
    *,
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY,
    when: Optional[datetime] = None,
    client_phone: Optional[str] = None,
    address: Optional[str] = None,
    region: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    """Assemble a new ``pending`` order whose total is the sum of its lines.

    Raises:
        ValueError: If the client name is blank or there are no items.
    """
    lines = tuple(items)
    if not client_name or not client_name.strip():
        raise ValueError("Orders need a client name")
    if not lines:
        raise ValueError("Orders need at least one item")
    moment = when if when is not None else datetime.now(UTC)
    return Order(
        order_id=order_id,
        client_name=client_name.strip(),
        status=OrderStatus.PENDING,
        items=lines,
        payment_method=PaymentMethod(payment_method),
        total=sum((line.total for line in lines), ZERO),
        created_at=moment,
        updated_at=moment,
        client_phone=client_phone,
        address=address,
        region=region,
        notes=notes,
    )


def summarize_orders(orders: Iterable[Order]) -> Dict[str, object]:
    """Count orders per status and sum their totals."""
    counts: Dict[str, int] = {status.value: 0 for status in OrderStatus}
    revenue: Decimal = ZERO
    for order in orders:
        counts[order.status.value] += 1
        revenue += order.total
    return {**counts, "total_revenue": revenue}


__all__ = [
    "ALLOWED_TRANSITIONS",
    "TransitionPlan",
    "validate_transition",
    "stock_decrements",
    "plan_transition",
    "build_order_item",
    "build_order",
    "summarize_orders",
]
