"""Unit tests for the order fulfillment state machine."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from retail_ledger import orders
from retail_ledger.constants import OrderStatus, PaymentMethod
from retail_ledger.errors import InvalidTransition, TerminalStateViolation

CREATED = datetime(2024, 5, 1, 8, 0, tzinfo=UTC)
LATER = datetime(2024, 5, 2, 8, 0, tzinfo=UTC)


@pytest.fixture
def order():
    items = [
        orders.build_order_item("P-1", "Olive Oil 1L", 2, Decimal("120")),
        orders.build_order_item("P-2", "Couscous 1kg", 1, "1200"),
        orders.build_order_item("P-1", "Olive Oil 1L", 1, Decimal("120")),
    ]
    return orders.build_order("ORD-000001", "  Amina B.  ", items, when=CREATED, region="Oran")


# ---------------------------------------------------------------------------
# Building orders
# ---------------------------------------------------------------------------


def test_build_order_sums_items_and_starts_pending(order):
    """New orders should be pending, cash on delivery, and total their lines."""

    assert order.status is OrderStatus.PENDING
    assert order.payment_method is PaymentMethod.CASH_ON_DELIVERY
    assert order.total == Decimal("1560")
    assert order.client_name == "Amina B."
    assert order.created_at == order.updated_at == CREATED


def test_build_order_requires_client_and_items():
    """Blank client names and empty item lists should be refused."""

    item = orders.build_order_item("P-1", "Olive Oil 1L", 1, Decimal("120"))

    with pytest.raises(ValueError):
        orders.build_order("ORD-1", "   ", [item])
    with pytest.raises(ValueError):
        orders.build_order("ORD-1", "Client", [])


@pytest.mark.parametrize("quantity", [0, -1, 1.5])
def test_build_order_item_rejects_bad_quantities(quantity):
    """Order quantities should be positive whole numbers."""

    with pytest.raises(ValueError):
        orders.build_order_item("P-1", "Olive Oil 1L", quantity, Decimal("120"))


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def test_confirming_moves_no_stock(order):
    """pending -> confirmed should not touch stock."""

    plan = orders.plan_transition(order, OrderStatus.CONFIRMED, when=LATER)

    assert plan.changed
    assert plan.previous_status is OrderStatus.PENDING
    assert plan.order.status is OrderStatus.CONFIRMED
    assert plan.order.updated_at == LATER
    assert plan.stock_decrements == {}


def test_completing_aggregates_decrements_per_product(order):
    """Entering completed should list each product's total quantity once."""

    plan = orders.plan_transition(order, OrderStatus.COMPLETED, when=LATER)

    assert plan.order.status is OrderStatus.COMPLETED
    assert plan.stock_decrements == {"P-1": 3, "P-2": 1}


def test_shortcut_from_confirmed_to_completed(order):
    """confirmed -> completed should also take stock."""

    confirmed = orders.plan_transition(order, OrderStatus.CONFIRMED).order

    plan = orders.plan_transition(confirmed, OrderStatus.COMPLETED)

    assert plan.stock_decrements == {"P-1": 3, "P-2": 1}


@pytest.mark.parametrize("target", list(OrderStatus))
def test_completed_orders_are_terminal(order, target):
    """No transition out of completed is allowed, including completing again."""

    completed = orders.plan_transition(order, OrderStatus.COMPLETED).order

    with pytest.raises(TerminalStateViolation):
        orders.plan_transition(completed, target)


def test_backward_transition_is_invalid(order):
    """confirmed -> pending should be rejected."""

    confirmed = orders.plan_transition(order, OrderStatus.CONFIRMED).order

    with pytest.raises(InvalidTransition):
        orders.plan_transition(confirmed, OrderStatus.PENDING)


def test_same_state_is_a_no_op(order):
    """Re-applying the current non-terminal status should change nothing."""

    plan = orders.plan_transition(order, "pending", when=LATER)

    assert not plan.changed
    assert plan.order is order
    assert plan.stock_decrements == {}


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def test_summarize_orders_counts_statuses_and_revenue(order):
    """Counts should be per status and revenue should add up every order."""

    completed = orders.plan_transition(order, OrderStatus.COMPLETED).order
    other = orders.build_order(
        "ORD-000002",
        "Karim",
        [orders.build_order_item("P-3", "Mint Tea", 2, Decimal("75"))],
    )

    summary = orders.summarize_orders([completed, other])

    assert summary["pending"] == 1
    assert summary["confirmed"] == 0
    assert summary["completed"] == 1
    assert summary["total_revenue"] == Decimal("1710")
