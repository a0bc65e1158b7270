"""Unit tests documenting the expected behavior of the workbook store adapter."""

from __future__ import annotations

import configparser
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from retail_ledger import constants, data_manager
from retail_ledger.constants import CreatorKind, InvoiceType, OrderStatus
from retail_ledger.errors import (
    AlreadyPaidError,
    BusinessRuleViolation,
    MissingReferenceError,
    OverpaymentError,
    StoreConflict,
    TerminalStateViolation,
)
from retail_ledger.models import CreatorContext, InvoiceItem, OrderItem

NOW = datetime(2024, 5, 1, 9, 30, tzinfo=UTC)
CASHIER = CreatorContext("E-7", CreatorKind.EMPLOYEE)


def invoice_item(product, quantity: int, invoice_type: InvoiceType) -> InvoiceItem:
    unit = product.selling_price if invoice_type is InvoiceType.SALE else product.buying_price
    return InvoiceItem(
        product_id=product.product_id,
        product_name=product.name,
        barcode=product.barcode,
        buying_price=product.buying_price,
        margin_percent=product.margin_percent,
        selling_price=product.selling_price,
        quantity=quantity,
        discount_percent=Decimal("0"),
        min_quantity=product.min_quantity,
        total=unit * quantity,
    )


@pytest.fixture
def workbook(master_workbook_path):
    return data_manager.open_workbook(master_workbook_path)


@pytest.fixture
def store(workbook):
    return data_manager.WorkbookStore(workbook, clock=lambda: NOW)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent_directories(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=retail_ledger.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "StoreName") == "Test Store"
    assert parser.get("Defaults", "CreatorId") == "E-DEFAULT"


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = configparser.ConfigParser()
    parser.read(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.currency == "DZD"
    assert settings.default_creator == CreatorContext("E-DEFAULT", CreatorKind.EMPLOYEE)


def test_parse_settings_defaults_currency(tmp_path):
    """Currency is optional in config.ini."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=/tmp/x.xlsx\nStoreName=S\nSchemaVersion=1.0.0\n"
        "[Defaults]\nCreatorId=A-1\nCreatorKind=Admin\n"
    )

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.currency == data_manager.DEFAULT_CURRENCY
    assert settings.default_creator_kind is CreatorKind.ADMIN


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_unknown_creator_kind(tmp_path):
    """Creator kinds outside admin/employee should be refused."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=x.xlsx\nStoreName=S\nSchemaVersion=1.0.0\n"
        "[Defaults]\nCreatorId=A-1\nCreatorKind=robot\n"
    )
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle and sheet helpers
# ---------------------------------------------------------------------------


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)
    assert set(workbook.sheetnames) == {member.value for member in constants.SheetName}


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_iter_products_reads_typed_records(workbook):
    """Seeded product rows should come back with Decimal prices and int quantities."""

    products = list(data_manager.iter_products(workbook))

    assert [product.product_id for product in products] == ["P-1", "P-2", "P-3"]
    couscous = products[1]
    assert couscous.selling_price == Decimal("1200")
    assert isinstance(couscous.selling_price, Decimal)
    assert couscous.current_quantity == 10
    assert isinstance(couscous.current_quantity, int)
    assert couscous.supplier_id is None


def test_locate_row_and_update_row(workbook):
    """update_row should overwrite only the named columns of the matching row."""

    assert data_manager.locate_row(workbook, "Products", "ProductID", "P-2") == 3
    assert data_manager.locate_row(workbook, "Products", "ProductID", "P-99") is None

    data_manager.update_row(workbook, "Products", "ProductID", "P-2", field_values={"CurrentQuantity": 4})

    couscous = [product for product in data_manager.iter_products(workbook) if product.product_id == "P-2"][0]
    assert couscous.current_quantity == 4
    assert couscous.name == "Couscous 1kg"


def test_update_row_errors(workbook):
    """Unknown rows, key columns and fields should raise KeyError."""

    with pytest.raises(KeyError):
        data_manager.update_row(workbook, "Products", "ProductID", "P-99", field_values={"Name": "x"})
    with pytest.raises(KeyError):
        data_manager.update_row(workbook, "Products", "ProductID", "P-1", field_values={"Colour": "red"})
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, "Products", "Sku", "P-1")


def test_next_identifier_is_sequential(workbook):
    """Identifiers should continue from the highest existing number."""

    assert data_manager.next_identifier(workbook, "Invoices", "INV") == "INV-000001"

    workbook["Invoices"].append(["INV-000007"])
    workbook["Invoices"].append(["legacy-1"])

    assert data_manager.next_identifier(workbook, "Invoices", "INV") == "INV-000008"


def test_generate_barcode_uses_epoch_milliseconds():
    """Generated barcodes are P followed by the creation time in milliseconds."""

    assert data_manager.generate_barcode(NOW) == f"P{int(NOW.timestamp() * 1000)}"


# ---------------------------------------------------------------------------
# Products through the store
# ---------------------------------------------------------------------------


def test_get_product_missing_raises(store):
    """Unknown product ids should raise MissingReferenceError."""

    with pytest.raises(MissingReferenceError):
        store.get_product("P-99")


def test_list_products_filters(store):
    """Listing should support substring search and the low stock filter."""

    assert [p.product_id for p in store.list_products(query="TEA")] == ["P-3"]
    assert [p.product_id for p in store.list_products(query="0028")] == ["P-2"]
    assert [p.product_id for p in store.list_products(low_stock_only=True)] == ["P-3"]


def test_add_product_generates_missing_barcode(store, make_product):
    """Products created without a barcode should get a generated one."""

    product = store.add_product(make_product(product_id="P-10", barcode=None))

    assert product.barcode == data_manager.generate_barcode(NOW)
    assert store.get_product("P-10").barcode == product.barcode


def test_add_product_rejects_duplicates(store, make_product):
    """Product ids and barcodes must be unique."""

    with pytest.raises(BusinessRuleViolation):
        store.add_product(make_product(product_id="P-1", barcode="NEW"))
    with pytest.raises(BusinessRuleViolation):
        store.add_product(make_product(product_id="P-10", barcode="6130000000011"))


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


def test_commit_sale_decrements_stock_and_stores_items(store):
    """A sale commit should write the invoice, its items, and take stock once."""

    oil = store.get_product("P-1")
    items = [invoice_item(oil, 2, InvoiceType.SALE)]

    invoice = store.commit_invoice(InvoiceType.SALE, items, Decimal("300"), CASHIER, counterparty_name="Walk-in")

    assert invoice.invoice_id == "INV-000001"
    assert invoice.total == Decimal("240")
    assert invoice.amount_paid == Decimal("300")
    assert invoice.created_at == NOW
    assert store.get_product("P-1").current_quantity == 3

    stored = store.get_invoice("INV-000001")
    assert stored.items == tuple(items)
    assert stored.creator_id == "E-7"
    assert stored.creator_kind is CreatorKind.EMPLOYEE


def test_commit_sale_with_shortage_writes_nothing(store):
    """If any line is short, no invoice is written and no stock moves."""

    oil = store.get_product("P-1")
    couscous = store.get_product("P-2")
    items = [invoice_item(couscous, 2, InvoiceType.SALE), invoice_item(oil, 6, InvoiceType.SALE)]

    with pytest.raises(StoreConflict) as excinfo:
        store.commit_invoice(InvoiceType.SALE, items, Decimal("0"), CASHIER)

    assert [record.product_id for record in excinfo.value.records] == ["P-1"]
    assert store.list_invoices() == []
    assert store.get_product("P-2").current_quantity == 10


def test_commit_sale_counts_repeated_products_together(store):
    """Two lines of the same product are checked against stock as one request."""

    oil = store.get_product("P-1")
    items = [invoice_item(oil, 3, InvoiceType.SALE), invoice_item(oil, 3, InvoiceType.SALE)]

    with pytest.raises(StoreConflict):
        store.commit_invoice(InvoiceType.SALE, items, Decimal("0"), CASHIER)


def test_commit_purchase_increments_stock_only(store):
    """A purchase commit should add to current stock and leave the catalog prices alone."""

    tea = store.get_product("P-3")
    item = invoice_item(tea, 12, InvoiceType.PURCHASE)

    invoice = store.commit_invoice(InvoiceType.PURCHASE, [item], Decimal("0"), CASHIER, counterparty_id="SUP-1")

    assert invoice.total == Decimal("600")
    updated = store.get_product("P-3")
    assert updated.current_quantity == 12
    assert updated.initial_quantity == tea.initial_quantity
    assert updated.buying_price == tea.buying_price


def test_commit_rejects_unknown_product(store, make_product):
    """Lines referencing missing products are a store conflict."""

    ghost = make_product(product_id="P-404")

    with pytest.raises(StoreConflict):
        store.commit_invoice(InvoiceType.SALE, [invoice_item(ghost, 1, InvoiceType.SALE)], Decimal("0"), CASHIER)


def test_list_invoices_filters_debts_and_type(store):
    """debts_only should keep invoices paid below their total."""

    oil = store.get_product("P-1")
    store.commit_invoice(InvoiceType.SALE, [invoice_item(oil, 1, InvoiceType.SALE)], Decimal("120"), CASHIER)
    store.commit_invoice(InvoiceType.SALE, [invoice_item(oil, 1, InvoiceType.SALE)], Decimal("20"), CASHIER)
    store.commit_invoice(InvoiceType.PURCHASE, [invoice_item(oil, 1, InvoiceType.PURCHASE)], Decimal("0"), CASHIER)

    assert [i.invoice_id for i in store.list_invoices(debts_only=True)] == ["INV-000002", "INV-000003"]
    assert [i.invoice_id for i in store.list_invoices(invoice_type=InvoiceType.SALE, debts_only=True)] == [
        "INV-000002"
    ]


def test_add_payment_updates_invoice_and_logs_payment(store):
    """Follow-up payments should raise the paid amount and append a Payments row."""

    oil = store.get_product("P-1")
    invoice = store.commit_invoice(InvoiceType.SALE, [invoice_item(oil, 1, InvoiceType.SALE)], Decimal("20"), CASHIER)

    updated = store.add_payment(invoice.invoice_id, Decimal("60"))

    assert updated.amount_paid == Decimal("80")
    assert store.get_invoice(invoice.invoice_id).amount_paid == Decimal("80")
    [payment] = store.list_payments(invoice.invoice_id)
    assert payment.payment_id == "PAY-000001"
    assert payment.amount == Decimal("60")
    assert payment.timestamp == NOW

    with pytest.raises(OverpaymentError):
        store.add_payment(invoice.invoice_id, Decimal("41"))


def test_add_payment_zero_writes_nothing(store):
    """A zero payment is accepted without a Payments row."""

    oil = store.get_product("P-1")
    invoice = store.commit_invoice(InvoiceType.SALE, [invoice_item(oil, 1, InvoiceType.SALE)], Decimal("0"), CASHIER)

    assert store.add_payment(invoice.invoice_id, Decimal("0")).amount_paid == Decimal("0")
    assert store.list_payments(invoice.invoice_id) == []


def test_add_payment_refused_after_change_was_given(store):
    """An invoice settled with change is fully paid."""

    oil = store.get_product("P-1")
    invoice = store.commit_invoice(InvoiceType.SALE, [invoice_item(oil, 1, InvoiceType.SALE)], Decimal("200"), CASHIER)

    with pytest.raises(AlreadyPaidError):
        store.add_payment(invoice.invoice_id, Decimal("1"))


def test_add_payment_zero_after_change_is_a_no_op(store):
    """A zero payment on an invoice settled with change writes nothing."""

    oil = store.get_product("P-1")
    invoice = store.commit_invoice(InvoiceType.SALE, [invoice_item(oil, 1, InvoiceType.SALE)], Decimal("200"), CASHIER)

    assert store.add_payment(invoice.invoice_id, Decimal("0")).amount_paid == Decimal("200")
    assert store.get_invoice(invoice.invoice_id).amount_paid == Decimal("200")
    assert store.list_payments(invoice.invoice_id) == []


def test_invoice_survives_save_and_reload(store, workbook, master_workbook_path):
    """Invoices written to disk should read back with the same values."""

    oil = store.get_product("P-1")
    invoice = store.commit_invoice(
        InvoiceType.SALE,
        [invoice_item(oil, 2, InvoiceType.SALE)],
        Decimal("100.50"),
        CASHIER,
        counterparty_id="C-1",
        counterparty_name="Amina",
    )
    data_manager.save_workbook(workbook, master_workbook_path)

    reloaded = data_manager.WorkbookStore(data_manager.open_workbook(master_workbook_path))
    stored = reloaded.get_invoice(invoice.invoice_id)

    assert stored.total == Decimal("240")
    assert stored.amount_paid == Decimal("100.50")
    assert stored.counterparty_name == "Amina"
    assert stored.created_at == NOW
    assert stored.items[0].quantity == 2
    assert reloaded.get_product("P-1").current_quantity == 3


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def _order_items():
    return [
        OrderItem("P-1", "Olive Oil 1L", 2, Decimal("120"), Decimal("240")),
        OrderItem("P-2", "Couscous 1kg", 1, Decimal("1200"), Decimal("1200")),
    ]


def test_create_order_persists_pending_order(store):
    """New orders should be stored as pending with their items."""

    order = store.create_order("Amina", _order_items(), client_phone="0555", region="Oran")

    assert order.order_id == "ORD-000001"
    stored = store.get_order(order.order_id)
    assert stored.status is OrderStatus.PENDING
    assert stored.total == Decimal("1440")
    assert stored.client_phone == "0555"
    assert len(stored.items) == 2
    assert store.get_product("P-1").current_quantity == 5


def test_completing_order_decrements_stock_once(store):
    """Stock should move on completion only, and a second completion must fail."""

    order = store.create_order("Amina", _order_items())

    store.set_order_status(order.order_id, OrderStatus.CONFIRMED, CASHIER)
    assert store.get_product("P-1").current_quantity == 5

    completed = store.set_order_status(order.order_id, OrderStatus.COMPLETED, CASHIER)
    assert completed.status is OrderStatus.COMPLETED
    assert store.get_product("P-1").current_quantity == 3
    assert store.get_product("P-2").current_quantity == 9

    with pytest.raises(TerminalStateViolation):
        store.set_order_status(order.order_id, OrderStatus.COMPLETED, CASHIER)
    assert store.get_product("P-1").current_quantity == 3
    assert store.list_orders(status=OrderStatus.COMPLETED) == [store.get_order(order.order_id)]


def test_completing_order_clamps_stock_at_zero(store):
    """Completion takes what is left without going negative."""

    order = store.create_order("Karim", [OrderItem("P-1", "Olive Oil 1L", 8, Decimal("120"), Decimal("960"))])

    store.set_order_status(order.order_id, OrderStatus.COMPLETED, CASHIER)

    assert store.get_product("P-1").current_quantity == 0


def test_completing_order_skips_unknown_products(store):
    """Products removed from the catalog do not block completion."""

    order = store.create_order(
        "Karim",
        [
            OrderItem("P-404", "Discontinued", 1, Decimal("10"), Decimal("10")),
            OrderItem("P-2", "Couscous 1kg", 1, Decimal("1200"), Decimal("1200")),
        ],
    )

    store.set_order_status(order.order_id, OrderStatus.COMPLETED, CASHIER)

    assert store.get_product("P-2").current_quantity == 9
