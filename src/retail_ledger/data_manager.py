"""Data access layer for the retail ledger.

This module reads from and writes to the ``retail_ledger.xlsx`` workbook that
stands in for the remote inventory/invoice store. Business rules belong to the
engine modules; the only rules enforced here are the ones the store contract
puts on the store (atomic stock moves, authoritative payment checks, the
order status side effect).

The public API covers four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Sheet operations: translating rows to typed records and back. Sheet
   headers such as ``CurrentQuantity`` are mapped to record attributes here
   and nowhere else.
4. :class:`WorkbookStore`, the :class:`~retail_ledger.store.InventoryStore`
   implementation built on the helpers above.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log, orders, payments
from .constants import ZERO, CreatorKind, InvoiceType, OrderStatus, PaymentMethod, SheetName
from .errors import BusinessRuleViolation, MissingReferenceError, StoreConflict
from .models import CreatorContext, Invoice, InvoiceItem, Order, OrderItem, PaymentRecord, Product
from .pricing import require_nonnegative_money
from .store import InventoryStore


CONFIG_FILE_NAME = "config.ini"
DEFAULT_CURRENCY = "DZD"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
INVOICES_SHEET = SheetName.INVOICES.value
INVOICE_ITEMS_SHEET = SheetName.INVOICE_ITEMS.value
PAYMENTS_SHEET = SheetName.PAYMENTS.value
ORDERS_SHEET = SheetName.ORDERS.value
ORDER_ITEMS_SHEET = SheetName.ORDER_ITEMS.value

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "Name",
        "Barcode",
        "BuyingPrice",
        "SellingPrice",
        "MarginPercent",
        "InitialQuantity",
        "CurrentQuantity",
        "MinQuantity",
        "SupplierID",
    ],
    INVOICES_SHEET: [
        "InvoiceID",
        "Type",
        "CounterpartyID",
        "CounterpartyName",
        "Total",
        "AmountPaid",
        "CreatedAt",
        "CreatedBy",
        "CreatedByType",
    ],
    INVOICE_ITEMS_SHEET: [
        "InvoiceID",
        "ProductID",
        "ProductName",
        "Barcode",
        "BuyingPrice",
        "MarginPercent",
        "SellingPrice",
        "Quantity",
        "DiscountPercent",
        "MinQuantity",
        "Total",
    ],
    PAYMENTS_SHEET: ["PaymentID", "InvoiceID", "Timestamp", "Amount"],
    ORDERS_SHEET: [
        "OrderID",
        "ClientName",
        "ClientPhone",
        "Address",
        "Region",
        "Notes",
        "PaymentMethod",
        "Total",
        "Status",
        "CreatedAt",
        "UpdatedAt",
    ],
    ORDER_ITEMS_SHEET: ["OrderID", "ProductID", "ProductName", "Quantity", "UnitPrice", "Total"],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    currency: str
    default_creator_id: str
    default_creator_kind: CreatorKind

    @property
    def default_creator(self) -> CreatorContext:
        return CreatorContext(self.default_creator_id, self.default_creator_kind)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    An explicit path is returned as-is so callers can target a non-standard
    location. Otherwise the search walks up from the current working
    directory and returns the first ``CONFIG_FILE_NAME`` it finds.

    Args:
        explicit_path (Path | None): Optional path to use instead of the
            upward search.

    Returns:
        Path: The explicit path or the discovered configuration file.

    Raises:
        FileNotFoundError: If no configuration file exists up to the root.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are anchored to ``base_path`` (or the
    current working directory). ``Currency`` is optional and defaults to
    ``DEFAULT_CURRENCY``.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory relative data files resolve against.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing, or
            ``CreatorKind`` is not a known kind.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
        creator_id = parser.get("Defaults", "CreatorId")
        creator_kind_raw = parser.get("Defaults", "CreatorKind")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    try:
        creator_kind = CreatorKind(creator_kind_raw.strip().lower())
    except ValueError as exc:
        raise KeyError(f"Unknown CreatorKind in configuration: {creator_kind_raw}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        currency=parser.get("System", "Currency", fallback=DEFAULT_CURRENCY),
        default_creator_id=creator_id,
        default_creator_kind=creator_kind,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the store workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


# ---------------------------------------------------------------------------
# Cell coercion
# ---------------------------------------------------------------------------


def _decimal(raw: object) -> Decimal:
    return Decimal(str(raw)) if raw is not None else ZERO


def _int(raw: object) -> int:
    return int(Decimal(str(raw))) if raw is not None else 0


def _text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def _timestamp(raw: object) -> datetime:
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw))


def _rows(workbook: Workbook, sheet_name: str) -> Iterable[Tuple[object, ...]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_product(record: Product) -> list[object]:
    """Arrange a product in the ``Products`` column order."""

    return [
        record.product_id,
        record.name,
        record.barcode,
        record.buying_price,
        record.selling_price,
        record.margin_percent,
        record.initial_quantity,
        record.current_quantity,
        record.min_quantity,
        record.supplier_id,
    ]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    """Convert a ``Products`` row into a :class:`Product`.

    Identifiers are coerced to ``str`` so numeric-looking ids typed into Excel
    keep matching, money becomes :class:`~decimal.Decimal` and quantities
    become ``int``.
    """

    (
        product_id,
        name,
        barcode,
        buying_price,
        selling_price,
        margin_percent,
        initial_quantity,
        current_quantity,
        min_quantity,
        supplier_id,
    ) = raw_row[:10]
    return Product(
        product_id=str(product_id),
        name=str(name) if name is not None else "",
        barcode=_text(barcode),
        buying_price=_decimal(buying_price),
        selling_price=_decimal(selling_price),
        margin_percent=_decimal(margin_percent),
        initial_quantity=_int(initial_quantity),
        current_quantity=_int(current_quantity),
        min_quantity=_int(min_quantity),
        supplier_id=_text(supplier_id),
    )


def serialize_invoice(record: Invoice) -> list[object]:
    """Arrange an invoice header in the ``Invoices`` column order."""

    return [
        record.invoice_id,
        record.invoice_type.value,
        record.counterparty_id,
        record.counterparty_name,
        record.total,
        record.amount_paid,
        record.created_at.isoformat(),
        record.creator_id,
        record.creator_kind.value if record.creator_kind is not None else None,
    ]


def deserialize_invoice(raw_row: Sequence[object], items: Sequence[InvoiceItem]) -> Invoice:
    """Convert an ``Invoices`` row plus its item rows into an :class:`Invoice`."""

    (
        invoice_id,
        invoice_type,
        counterparty_id,
        counterparty_name,
        total,
        amount_paid,
        created_at,
        created_by,
        created_by_type,
    ) = raw_row[:9]
    return Invoice(
        invoice_id=str(invoice_id),
        invoice_type=InvoiceType(str(invoice_type)),
        counterparty_id=_text(counterparty_id),
        counterparty_name=_text(counterparty_name),
        items=tuple(items),
        total=_decimal(total),
        amount_paid=_decimal(amount_paid),
        created_at=_timestamp(created_at),
        creator_id=_text(created_by),
        creator_kind=CreatorKind(str(created_by_type)) if created_by_type is not None else None,
    )


def serialize_invoice_item(invoice_id: str, item: InvoiceItem) -> list[object]:
    """Arrange an invoice item in the ``InvoiceItems`` column order."""

    return [
        invoice_id,
        item.product_id,
        item.product_name,
        item.barcode,
        item.buying_price,
        item.margin_percent,
        item.selling_price,
        item.quantity,
        item.discount_percent,
        item.min_quantity,
        item.total,
    ]


def deserialize_invoice_item(raw_row: Sequence[object]) -> Tuple[str, InvoiceItem]:
    """Convert an ``InvoiceItems`` row into ``(invoice_id, InvoiceItem)``."""

    (
        invoice_id,
        product_id,
        product_name,
        barcode,
        buying_price,
        margin_percent,
        selling_price,
        quantity,
        discount_percent,
        min_quantity,
        total,
    ) = raw_row[:11]
    item = InvoiceItem(
        product_id=str(product_id),
        product_name=str(product_name) if product_name is not None else "",
        barcode=_text(barcode),
        buying_price=_decimal(buying_price),
        margin_percent=_decimal(margin_percent),
        selling_price=_decimal(selling_price),
        quantity=_int(quantity),
        discount_percent=_decimal(discount_percent),
        min_quantity=_int(min_quantity),
        total=_decimal(total),
    )
    return str(invoice_id), item


def serialize_payment(record: PaymentRecord) -> list[object]:
    return [record.payment_id, record.invoice_id, record.timestamp.isoformat(), record.amount]


def deserialize_payment(raw_row: Sequence[object]) -> PaymentRecord:
    payment_id, invoice_id, timestamp, amount = raw_row[:4]
    return PaymentRecord(
        payment_id=str(payment_id),
        invoice_id=str(invoice_id),
        timestamp=_timestamp(timestamp),
        amount=_decimal(amount),
    )


def serialize_order(record: Order) -> list[object]:
    """Arrange an order header in the ``Orders`` column order."""

    return [
        record.order_id,
        record.client_name,
        record.client_phone,
        record.address,
        record.region,
        record.notes,
        record.payment_method.value,
        record.total,
        record.status.value,
        record.created_at.isoformat(),
        record.updated_at.isoformat(),
    ]


def deserialize_order(raw_row: Sequence[object], items: Sequence[OrderItem]) -> Order:
    """Convert an ``Orders`` row plus its item rows into an :class:`Order`."""

    (
        order_id,
        client_name,
        client_phone,
        address,
        region,
        notes,
        payment_method,
        total,
        status,
        created_at,
        updated_at,
    ) = raw_row[:11]
    return Order(
        order_id=str(order_id),
        client_name=str(client_name) if client_name is not None else "",
        status=OrderStatus(str(status)),
        items=tuple(items),
        payment_method=PaymentMethod(str(payment_method)),
        total=_decimal(total),
        created_at=_timestamp(created_at),
        updated_at=_timestamp(updated_at),
        client_phone=_text(client_phone),
        address=_text(address),
        region=_text(region),
        notes=_text(notes),
    )


def serialize_order_item(order_id: str, item: OrderItem) -> list[object]:
    return [order_id, item.product_id, item.product_name, item.quantity, item.unit_price, item.total]


def deserialize_order_item(raw_row: Sequence[object]) -> Tuple[str, OrderItem]:
    order_id, product_id, product_name, quantity, unit_price, total = raw_row[:6]
    item = OrderItem(
        product_id=str(product_id),
        product_name=str(product_name) if product_name is not None else "",
        quantity=_int(quantity),
        unit_price=_decimal(unit_price),
        total=_decimal(total),
    )
    return str(order_id), item


# ---------------------------------------------------------------------------
# Sheet operations
# ---------------------------------------------------------------------------


def iter_products(workbook: Workbook) -> Iterable[Product]:
    """Yield a :class:`Product` for each populated ``Products`` row."""

    for raw in _rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_invoices(workbook: Workbook) -> Iterable[Invoice]:
    """Yield invoices in sheet order, each with its items attached."""

    items_by_invoice: Dict[str, List[InvoiceItem]] = {}
    for raw in _rows(workbook, INVOICE_ITEMS_SHEET):
        invoice_id, item = deserialize_invoice_item(raw)
        items_by_invoice.setdefault(invoice_id, []).append(item)

    for raw in _rows(workbook, INVOICES_SHEET):
        invoice_id = str(raw[0])
        yield deserialize_invoice(raw, items_by_invoice.get(invoice_id, []))


def iter_payments(workbook: Workbook) -> Iterable[PaymentRecord]:
    for raw in _rows(workbook, PAYMENTS_SHEET):
        yield deserialize_payment(raw)


def iter_orders(workbook: Workbook) -> Iterable[Order]:
    """Yield orders in sheet order, each with its items attached."""

    items_by_order: Dict[str, List[OrderItem]] = {}
    for raw in _rows(workbook, ORDER_ITEMS_SHEET):
        order_id, item = deserialize_order_item(raw)
        items_by_order.setdefault(order_id, []).append(item)

    for raw in _rows(workbook, ORDERS_SHEET):
        order_id = str(raw[0])
        yield deserialize_order(raw, items_by_order.get(order_id, []))


def append_row(workbook: Workbook, sheet_name: str, values: Sequence[object]) -> None:
    workbook[sheet_name].append(list(values))


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title of the lookup column.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index of the first match, else ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    *,
    field_values: Mapping[str, Any],
) -> None:
    """Overwrite selected columns of the row whose ``key_column`` is ``key_value``.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}

    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field}")
        sheet.cell(row=row_index, column=header_map[field], value=value)


def next_identifier(workbook: Workbook, sheet_name: str, prefix: str) -> str:
    """Return the next sequential identifier (``PREFIX-000001``) for a sheet.

    The key is read from the first column; identifiers that do not carry
    ``prefix`` are ignored.
    """

    highest = 0
    marker = f"{prefix}-"
    for raw in _rows(workbook, sheet_name):
        key = str(raw[0]) if raw[0] is not None else ""
        if key.startswith(marker) and key[len(marker):].isdigit():
            highest = max(highest, int(key[len(marker):]))
    return f"{marker}{highest + 1:06d}"


def generate_barcode(when: datetime) -> str:
    """Barcode assigned to products created without one: ``P`` + epoch milliseconds."""

    return f"P{int(when.timestamp() * 1000)}"


def _aggregate_quantities(items: Iterable[InvoiceItem]) -> Dict[str, int]:
    requested: Dict[str, int] = {}
    for item in items:
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
    return requested


class WorkbookStore(InventoryStore):
    """:class:`InventoryStore` backed by an ``openpyxl`` workbook.

    The workbook is only modified in memory; saving it is the caller's job
    (see :func:`retail_ledger.core_logic.persist_context`).
    """

    def __init__(self, workbook: Workbook, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.workbook = workbook
        self._clock = clock or (lambda: datetime.now(UTC))

    # -- products -----------------------------------------------------------

    def get_product(self, product_id: str) -> Product:
        for product in iter_products(self.workbook):
            if product.product_id == product_id:
                return product
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}")

    def list_products(self, *, query: Optional[str] = None, low_stock_only: bool = False) -> List[Product]:
        needle = query.strip().lower() if query else None
        results = []
        for product in iter_products(self.workbook):
            if low_stock_only and not product.is_low_stock:
                continue
            if needle and needle not in product.name.lower() and needle not in (product.barcode or "").lower():
                continue
            results.append(product)
        return results

    def add_product(self, product: Product) -> Product:
        existing = list(iter_products(self.workbook))
        if any(row.product_id == product.product_id for row in existing):
            raise BusinessRuleViolation(f"Product id already exists: {product.product_id}")
        for amount in (product.buying_price, product.selling_price):
            require_nonnegative_money(amount)
        if product.current_quantity < 0 or product.initial_quantity < 0 or product.min_quantity < 0:
            raise ValueError("Product quantities must be zero or positive")

        if not product.barcode:
            product = replace(product, barcode=generate_barcode(self._clock()))
        if any(row.barcode == product.barcode for row in existing):
            raise BusinessRuleViolation(f"Barcode already in use: {product.barcode}")

        append_row(self.workbook, PRODUCTS_SHEET, serialize_product(product))
        log.info("Added product '%s' (barcode %s)", product.product_id, product.barcode)
        return product

    def _set_current_quantity(self, product_id: str, quantity: int) -> None:
        update_row(
            self.workbook,
            PRODUCTS_SHEET,
            "ProductID",
            product_id,
            field_values={"CurrentQuantity": quantity},
        )

    # -- invoices -----------------------------------------------------------

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
        invoice_type = InvoiceType(invoice_type)
        if not items:
            raise StoreConflict("Refusing to store an invoice without items")
        require_nonnegative_money(amount_paid)

        requested = _aggregate_quantities(items)
        try:
            current = {product_id: self.get_product(product_id) for product_id in requested}
        except MissingReferenceError as exc:
            raise StoreConflict(str(exc)) from exc

        # every line is checked before anything is written
        if invoice_type is InvoiceType.SALE:
            short = [
                product
                for product_id, product in current.items()
                if product.current_quantity < requested[product_id]
            ]
            if short:
                log.warning(
                    "Sale commit rejected, insufficient stock for: %s",
                    ", ".join(product.product_id for product in short),
                )
                raise StoreConflict(
                    "Insufficient stock for: " + ", ".join(product.product_id for product in short),
                    records=short,
                )

        total = sum((item.total for item in items), ZERO)
        invoice = Invoice(
            invoice_id=next_identifier(self.workbook, INVOICES_SHEET, "INV"),
            invoice_type=invoice_type,
            counterparty_id=counterparty_id,
            counterparty_name=counterparty_name,
            items=tuple(items),
            total=total,
            amount_paid=amount_paid,
            created_at=self._clock(),
            creator_id=creator.creator_id,
            creator_kind=creator.creator_kind,
        )
        append_row(self.workbook, INVOICES_SHEET, serialize_invoice(invoice))
        for item in items:
            append_row(self.workbook, INVOICE_ITEMS_SHEET, serialize_invoice_item(invoice.invoice_id, item))

        sign = -1 if invoice_type is InvoiceType.SALE else 1
        for product_id, quantity in requested.items():
            self._set_current_quantity(product_id, current[product_id].current_quantity + sign * quantity)

        log.info(
            "Stored %s invoice '%s' (total=%s, paid=%s, by %s '%s')",
            invoice_type.value,
            invoice.invoice_id,
            invoice.total,
            invoice.amount_paid,
            creator.creator_kind.value,
            creator.creator_id,
        )
        return invoice

    def get_invoice(self, invoice_id: str) -> Invoice:
        for invoice in iter_invoices(self.workbook):
            if invoice.invoice_id == invoice_id:
                return invoice
        log.warning("Invoice lookup failed for id '%s'", invoice_id)
        raise MissingReferenceError(f"Unknown invoice id: {invoice_id}")

    def list_invoices(self, *, invoice_type: Optional[InvoiceType] = None, debts_only: bool = False) -> List[Invoice]:
        results = []
        for invoice in iter_invoices(self.workbook):
            if invoice_type is not None and invoice.invoice_type is not InvoiceType(invoice_type):
                continue
            if debts_only and invoice.amount_paid >= invoice.total:
                continue
            results.append(invoice)
        return results

    def add_payment(self, invoice_id: str, amount: Decimal) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        snapshot = payments.apply_payment(invoice.total, invoice.amount_paid, amount)
        if snapshot.amount_paid == invoice.amount_paid:
            return invoice

        update_row(
            self.workbook,
            INVOICES_SHEET,
            "InvoiceID",
            invoice_id,
            field_values={"AmountPaid": snapshot.amount_paid},
        )
        record = PaymentRecord(
            payment_id=next_identifier(self.workbook, PAYMENTS_SHEET, "PAY"),
            invoice_id=invoice_id,
            timestamp=self._clock(),
            amount=snapshot.amount_paid - invoice.amount_paid,
        )
        append_row(self.workbook, PAYMENTS_SHEET, serialize_payment(record))
        log.info(
            "Recorded payment '%s' of %s on invoice '%s' (paid %s of %s)",
            record.payment_id,
            record.amount,
            invoice_id,
            snapshot.amount_paid,
            invoice.total,
        )
        return replace(invoice, amount_paid=snapshot.amount_paid)

    def list_payments(self, invoice_id: str) -> List[PaymentRecord]:
        return [record for record in iter_payments(self.workbook) if record.invoice_id == invoice_id]

    # -- orders -------------------------------------------------------------

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
        order = orders.build_order(
            next_identifier(self.workbook, ORDERS_SHEET, "ORD"),
            client_name,
            items,
            payment_method=payment_method,
            when=self._clock(),
            client_phone=client_phone,
            address=address,
            region=region,
            notes=notes,
        )
        append_row(self.workbook, ORDERS_SHEET, serialize_order(order))
        for item in order.items:
            append_row(self.workbook, ORDER_ITEMS_SHEET, serialize_order_item(order.order_id, item))
        log.info("Stored order '%s' for '%s' (total=%s)", order.order_id, order.client_name, order.total)
        return order

    def get_order(self, order_id: str) -> Order:
        for order in iter_orders(self.workbook):
            if order.order_id == order_id:
                return order
        log.warning("Order lookup failed for id '%s'", order_id)
        raise MissingReferenceError(f"Unknown order id: {order_id}")

    def list_orders(self, *, status: Optional[OrderStatus] = None) -> List[Order]:
        return [
            order
            for order in iter_orders(self.workbook)
            if status is None or order.status is OrderStatus(status)
        ]

    def set_order_status(self, order_id: str, status: OrderStatus, creator: CreatorContext) -> Order:
        order = self.get_order(order_id)
        plan = orders.plan_transition(order, status, when=self._clock())
        if not plan.changed:
            return order

        update_row(
            self.workbook,
            ORDERS_SHEET,
            "OrderID",
            order_id,
            field_values={
                "Status": plan.order.status.value,
                "UpdatedAt": plan.order.updated_at.isoformat(),
            },
        )
        for product_id, quantity in plan.stock_decrements.items():
            try:
                product = self.get_product(product_id)
            except MissingReferenceError:
                log.warning("Order '%s' references unknown product '%s'; stock untouched", order_id, product_id)
                continue
            if product.current_quantity < quantity:
                log.warning(
                    "Order '%s' takes %d of '%s' but only %d in stock; clamping at zero",
                    order_id,
                    quantity,
                    product_id,
                    product.current_quantity,
                )
            self._set_current_quantity(product_id, max(0, product.current_quantity - quantity))

        log.info(
            "Order '%s' moved %s -> %s by %s '%s'",
            order_id,
            plan.previous_status.value,
            plan.order.status.value,
            creator.creator_kind.value,
            creator.creator_id,
        )
        return plan.order
