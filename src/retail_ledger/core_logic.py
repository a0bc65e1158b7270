"""Orchestration layer for the retail ledger.

This module ties the pure engine modules (pricing, stock guard, ledger,
totals, payments, orders) to an :class:`~retail_ledger.store.InventoryStore`.
It is the only place where a session crosses into the store: every rule is
checked locally first, and the store call is the last step of each flow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from openpyxl.workbook import Workbook

from . import data_manager, log
from .cart import Ledger
from .constants import EXPECTED_SCHEMA_VERSION, ZERO, InvoiceType, OrderStatus, PaymentMethod, SelectionMode
from .errors import DivisionGuard, EmptyLedgerError, MissingReferenceError, StoreConflict
from .models import CreatorContext, Invoice, InvoiceItem, LineItem, Order, PaymentRecord, Product
from .orders import build_order_item, summarize_orders
from .payments import PaymentSnapshot, apply_payment, settle
from .pricing import Number, compute_margin, compute_selling_price, require_nonnegative_money, to_decimal
from .store import InventoryStore


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, workbook and store used by the flows."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    store: InventoryStore
    clock: Optional[Callable[[], datetime]] = field(default=None, repr=False, compare=False)
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class ProductCommand:
    """User intent for registering a catalog entry.

    Give either ``margin_percent`` or ``selling_price``; the other one is
    derived. When both are missing the margin is zero.
    """

    product_id: str
    name: str
    buying_price: Decimal
    margin_percent: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    initial_quantity: int = 0
    min_quantity: int = 0
    barcode: Optional[str] = None
    supplier_id: Optional[str] = None


@dataclass(frozen=True)
class OrderLineCommand:
    """One requested product on a storefront order."""

    product_id: str
    quantity: int
    unit_price: Optional[Decimal] = None


@dataclass(frozen=True)
class OrderCommand:
    """User intent for placing a storefront order."""

    client_name: str
    lines: Sequence[OrderLineCommand]
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    client_phone: Optional[str] = None
    address: Optional[str] = None
    region: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class CommitResult:
    """Stored invoice plus the payment state computed at the counter."""

    invoice: Invoice
    payment: PaymentSnapshot

    @property
    def change(self) -> Decimal:
        return self.payment.change

    @property
    def remaining_debt(self) -> Decimal:
        return self.payment.remaining_debt


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return the mutable cache bucket dedicated to ``name``, creating it if needed."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict cache buckets after a write so later reads see the new state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    clock: Optional[Callable[[], datetime]] = None,
) -> RuntimeContext:
    """Load configuration settings, the workbook, and a store bound to it.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.
        clock (Callable[[], datetime] | None): Time source for the store;
            defaults to the current UTC time.

    Returns:
        RuntimeContext: Fully populated context ready for the flows below.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(
        settings=settings,
        workbook=workbook,
        store=data_manager.WorkbookStore(workbook, clock=clock),
        clock=clock,
    )


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def default_creator(context: RuntimeContext) -> CreatorContext:
    """Creator used when a command does not name one explicitly."""
    return context.settings.default_creator


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[Product]:
    """Return the cached catalog in store order.

    The cache is only a convenience for listings; stock decisions always go
    through :func:`get_product`, which reads the store.
    """
    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        bucket["all"] = context.store.list_products()
        log.debug("Populated products cache with %d entries", len(bucket["all"]))
    return list(bucket["all"])


def search_products(context: RuntimeContext, query: str) -> List[Product]:
    """Products whose name or barcode contains ``query`` (case-insensitive)."""
    return context.store.list_products(query=query)


def list_low_stock(context: RuntimeContext) -> List[Product]:
    """Products at or below their reorder threshold."""
    return context.store.list_products(low_stock_only=True)


def get_product(context: RuntimeContext, product_id: str) -> Product:
    """Read the authoritative product record from the store.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
    """
    return context.store.get_product(product_id)


def build_product(command: ProductCommand) -> Product:
    """Materialize a :class:`ProductCommand` into a consistent :class:`Product`.

    Prices follow the same relation as line items:
    ``selling = buying * (1 + margin / 100)``. A selling price given over a
    zero buying price keeps a zero margin.

    Raises:
        ValueError: On negative prices or quantities.
    """
    buying = to_decimal(command.buying_price)
    require_nonnegative_money(buying)
    if command.initial_quantity < 0 or command.min_quantity < 0:
        raise ValueError("Quantities must be zero or positive")

    if command.margin_percent is not None:
        margin = to_decimal(command.margin_percent)
        selling = compute_selling_price(buying, margin)
    elif command.selling_price is not None:
        selling = to_decimal(command.selling_price)
        require_nonnegative_money(selling)
        try:
            margin = compute_margin(buying, selling)
        except DivisionGuard:
            margin = ZERO
    else:
        margin = ZERO
        selling = buying

    return Product(
        product_id=command.product_id,
        name=command.name,
        barcode=command.barcode,
        buying_price=buying,
        selling_price=selling,
        margin_percent=margin,
        initial_quantity=command.initial_quantity,
        current_quantity=command.initial_quantity,
        min_quantity=command.min_quantity,
        supplier_id=command.supplier_id,
    )


def add_product(context: RuntimeContext, command: ProductCommand) -> Product:
    """Register a product in the store; a missing barcode is generated there."""
    product = context.store.add_product(build_product(command))
    _invalidate_cache(context, "products")
    log.info("Registered product '%s' (%s)", product.product_id, product.name)
    return product


# ---------------------------------------------------------------------------
# Ledgers and commits
# ---------------------------------------------------------------------------


def new_ledger(invoice_type: InvoiceType, mode: Optional[SelectionMode] = None) -> Ledger:
    """Start an empty ledger; ``SCAN`` for sales and ``SEARCH`` for purchases by default."""
    return Ledger(invoice_type, mode)


def select_product(context: RuntimeContext, ledger: Ledger, product_id: str) -> LineItem:
    """Fetch ``product_id`` from the store and put it on ``ledger``."""
    return ledger.select_product(get_product(context, product_id))


def _refresh_snapshots(context: RuntimeContext, ledger: Ledger) -> List[Product]:
    fresh = []
    for item in ledger.items:
        try:
            product = get_product(context, item.product_id)
        except MissingReferenceError:
            continue
        ledger.refresh_product(product)
        fresh.append(product)
    return fresh


def revalidate_ledger(context: RuntimeContext, ledger: Ledger) -> None:
    """Compare the stock snapshots of a sale ledger with the store.

    Every line's product is re-read. Snapshots are replaced with the fresh
    records whatever the outcome, so the caller can retry from a consistent
    view.

    Raises:
        StoreConflict: If any product's ``current_quantity`` moved since it was
            selected, or a product vanished. ``records`` holds the fresh
            products that changed.
    """
    if ledger.invoice_type is not InvoiceType.SALE:
        return

    stale: List[Product] = []
    for item in ledger.items:
        snapshot = ledger.snapshot_for(item.product_id)
        try:
            product = get_product(context, item.product_id)
        except MissingReferenceError as exc:
            raise StoreConflict(f"Product '{item.product_id}' no longer exists") from exc
        ledger.refresh_product(product)
        if snapshot is None or snapshot.current_quantity != product.current_quantity:
            stale.append(product)

    if stale:
        log.warning(
            "Stock changed since selection for: %s",
            ", ".join(product.product_id for product in stale),
        )
        raise StoreConflict(
            "Stock changed since selection for: " + ", ".join(product.product_id for product in stale),
            records=stale,
        )


def commit_ledger(
    context: RuntimeContext,
    ledger: Ledger,
    creator: Optional[CreatorContext] = None,
    *,
    received_amount: Number = ZERO,
    counterparty_id: Optional[str] = None,
    counterparty_name: Optional[str] = None,
) -> CommitResult:
    """Turn a ledger into a stored invoice.

    The flow computes the totals, settles the received amount, re-validates
    sale stock against the store, and asks the store to create the invoice
    and move stock once. On success the ledger is cleared. On
    :class:`StoreConflict` the ledger keeps its lines, its snapshots are
    refreshed from the store, and the error is re-raised; nothing is retried.

    Args:
        context (RuntimeContext): Runtime context holding the store.
        ledger (Ledger): Ledger to commit.
        creator (CreatorContext | None): Who commits; defaults to the
            configured creator.
        received_amount (Number): Money received at commit time. It becomes
            the invoice's ``amount_paid`` exactly.
        counterparty_id (str | None): Client or supplier id; ``None`` for
            walk-in clients.
        counterparty_name (str | None): Display name stored on the invoice.

    Returns:
        CommitResult: Stored invoice plus change and remaining debt.

    Raises:
        EmptyLedgerError: If the ledger has no lines.
        NegativePaymentError: If ``received_amount`` is negative.
        StoreConflict: If stock moved since selection or the store rejected
            the commit.
    """
    if ledger.is_empty:
        log.warning("Refused to commit an empty %s ledger", ledger.invoice_type.value)
        raise EmptyLedgerError("Cannot commit a ledger without line items")

    creator = creator or default_creator(context)
    totals = ledger.totals()
    payment = settle(totals.total, received_amount)

    revalidate_ledger(context, ledger)
    items = [InvoiceItem.from_line_item(item) for item in ledger.items]

    try:
        invoice = context.store.commit_invoice(
            ledger.invoice_type,
            items,
            payment.amount_paid,
            creator,
            counterparty_id=counterparty_id,
            counterparty_name=counterparty_name,
        )
    except StoreConflict:
        _refresh_snapshots(context, ledger)
        raise

    _invalidate_cache(context, "products")
    ledger.clear()
    log.info(
        "Committed %s invoice '%s' (total=%s, paid=%s, change=%s, debt=%s)",
        invoice.invoice_type.value,
        invoice.invoice_id,
        totals.total,
        payment.amount_paid,
        payment.change,
        payment.remaining_debt,
    )
    return CommitResult(invoice=invoice, payment=payment)


# ---------------------------------------------------------------------------
# Invoices and payments
# ---------------------------------------------------------------------------


def get_invoice(context: RuntimeContext, invoice_id: str) -> Invoice:
    return context.store.get_invoice(invoice_id)


def list_invoices(context: RuntimeContext, *, invoice_type: Optional[InvoiceType] = None) -> List[Invoice]:
    return context.store.list_invoices(invoice_type=invoice_type)


def list_debts(context: RuntimeContext, *, invoice_type: Optional[InvoiceType] = None) -> List[Invoice]:
    """Invoices whose paid amount is still below their total."""
    return context.store.list_invoices(invoice_type=invoice_type, debts_only=True)


def invoice_payment(invoice: Invoice) -> PaymentSnapshot:
    """Payment state (status, debt, change) of a stored invoice."""
    return PaymentSnapshot(total=invoice.total, amount_paid=invoice.amount_paid)


def list_payments(context: RuntimeContext, invoice_id: str) -> List[PaymentRecord]:
    return context.store.list_payments(invoice_id)


def record_payment(context: RuntimeContext, invoice_id: str, amount: Number) -> Invoice:
    """Add a follow-up payment to a committed invoice.

    The payment rules are checked against the stored invoice before the store
    is asked to apply them again authoritatively.

    Raises:
        MissingReferenceError: If the invoice is unknown.
        NegativePaymentError: If ``amount`` is negative.
        AlreadyPaidError: If the invoice is settled and ``amount`` is positive.
        OverpaymentError: If the payment would exceed the total.
    """
    payment = to_decimal(amount)
    invoice = get_invoice(context, invoice_id)
    apply_payment(invoice.total, invoice.amount_paid, payment)
    updated = context.store.add_payment(invoice_id, payment)
    log.info(
        "Recorded payment of %s on invoice '%s' (remaining debt %s)",
        payment,
        invoice_id,
        invoice_payment(updated).remaining_debt,
    )
    return updated


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def create_order(context: RuntimeContext, command: OrderCommand) -> Order:
    """Place a pending order priced from the catalog.

    Lines without an explicit ``unit_price`` use the product's selling price.
    No stock moves until the order is completed.

    Raises:
        MissingReferenceError: If a line references an unknown product.
        ValueError: On a blank client name, no lines, or a non-positive
            quantity.
    """
    items = []
    for line in command.lines:
        product = get_product(context, line.product_id)
        unit_price = line.unit_price if line.unit_price is not None else product.selling_price
        items.append(build_order_item(product.product_id, product.name, line.quantity, unit_price))

    order = context.store.create_order(
        command.client_name,
        items,
        payment_method=command.payment_method,
        client_phone=command.client_phone,
        address=command.address,
        region=command.region,
        notes=command.notes,
    )
    log.info("Created order '%s' with %d item(s)", order.order_id, len(order.items))
    return order


def get_order(context: RuntimeContext, order_id: str) -> Order:
    return context.store.get_order(order_id)


def list_orders(context: RuntimeContext, *, status: Optional[OrderStatus] = None) -> List[Order]:
    return context.store.list_orders(status=status)


def set_order_status(
    context: RuntimeContext,
    order_id: str,
    status: OrderStatus,
    creator: Optional[CreatorContext] = None,
) -> Order:
    """Move an order to ``status``; entering ``completed`` takes its stock.

    Raises:
        MissingReferenceError: If the order is unknown.
        TerminalStateViolation: If the order is already completed.
        InvalidTransition: For moves outside the lifecycle.
    """
    order = context.store.set_order_status(order_id, OrderStatus(status), creator or default_creator(context))
    _invalidate_cache(context, "products")
    return order


def order_summary(context: RuntimeContext) -> Dict[str, object]:
    """Order counts per status plus the summed totals of all orders."""
    return summarize_orders(context.store.list_orders())


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def persist_context(context: RuntimeContext) -> None:
    """Persist the in-memory workbook to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context with a newly opened workbook, a store
            bound to it using the same clock, and an empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(
        settings=context.settings,
        workbook=workbook,
        store=data_manager.WorkbookStore(workbook, clock=context.clock),
        clock=context.clock,
    )
