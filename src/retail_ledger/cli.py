"""Command-line entry points for the retail ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the objects consumed by :mod:`core_logic`, and
printing results. Every rule lives in the engine; the CLI only maps the
errors it raises to exit codes.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, log
from .constants import CreatorKind, InvoiceType, OrderStatus, PaymentMethod, PriceField
from .errors import BusinessRuleViolation, StoreConflict
from .models import CreatorContext, Invoice, Product
from .pricing import to_decimal

ItemSpec = Tuple[str, int, Optional[Decimal]]


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="retail-ledger",
        description="Point-of-sale, invoicing and order tools for the retail ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
    )
    parser.add_argument("--creator-id", default=None, help="Who performs the operation (defaults to config).")
    parser.add_argument(
        "--creator-kind",
        choices=[member.value for member in CreatorKind],
        default=None,
        help="Kind of creator performing the operation (defaults to config).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and purchases."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "sale": register_sale_command(subparsers),
        "purchase": register_purchase_command(subparsers),
        "pay": register_pay_command(subparsers),
        "create-order": register_create_order_command(subparsers),
        "order-status": register_order_status_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "debts": register_debts_command(subparsers),
        "invoices": register_invoices_command(subparsers),
        "orders": register_orders_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_item(raw: str) -> ItemSpec:
    """Parse ``PRODUCT_ID:QUANTITY[:AMOUNT]`` into its parts.

    The meaning of the optional amount depends on the command: a discount
    percent for sales, a buying price for purchases, a unit price for orders.

    Raises:
        argparse.ArgumentTypeError: If the value does not follow the format.
    """
    parts = raw.split(":")
    if len(parts) not in (2, 3) or not parts[0]:
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID:QUANTITY[:AMOUNT], got '{raw}'")
    try:
        quantity = int(parts[1])
        amount = to_decimal(parts[2]) if len(parts) == 3 else None
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid item '{raw}'") from exc
    return parts[0], quantity, amount


def _decimal_arg(raw: str) -> Decimal:
    try:
        return to_decimal(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--buying-price", type=_decimal_arg, required=True)
        pricing = parser.add_mutually_exclusive_group()
        pricing.add_argument("--margin", type=_decimal_arg, default=None, help="Margin percent over the buying price.")
        pricing.add_argument("--selling-price", type=_decimal_arg, default=None)
        parser.add_argument("--quantity", type=int, default=0, help="Initial stock.")
        parser.add_argument("--min-quantity", type=int, default=0, help="Reorder threshold.")
        parser.add_argument("--barcode", default=None, help="Generated when omitted.")
        parser.add_argument("--supplier-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product, mutates=True)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Ring up a point-of-sale ticket and commit it."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item,
            required=True,
            help="PRODUCT_ID:QUANTITY[:DISCOUNT_PERCENT]; repeat for each product.",
        )
        parser.add_argument("--received", type=_decimal_arg, default=Decimal("0"))
        parser.add_argument("--client-id", default=None)
        parser.add_argument("--client-name", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, mutates=True)


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    name = "purchase"
    help_text = "Record a supplier purchase invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item,
            required=True,
            help="PRODUCT_ID:QUANTITY[:BUYING_PRICE]; each product at most once.",
        )
        parser.add_argument("--paid", type=_decimal_arg, default=Decimal("0"))
        parser.add_argument("--supplier-id", default=None)
        parser.add_argument("--supplier-name", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase, mutates=True)


def register_pay_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay``."""
    name = "pay"
    help_text = "Add a payment to an invoice with outstanding debt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--invoice-id", required=True)
        parser.add_argument("--amount", type=_decimal_arg, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay, mutates=True)


def register_create_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``create-order``."""
    name = "create-order"
    help_text = "Place a storefront order (stock moves on completion)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--client-name", required=True)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item,
            required=True,
            help="PRODUCT_ID:QUANTITY[:UNIT_PRICE]; the catalog price is used when omitted.",
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH_ON_DELIVERY.value,
        )
        parser.add_argument("--phone", default=None)
        parser.add_argument("--address", default=None)
        parser.add_argument("--region", default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_create_order, mutates=True)


def register_order_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``order-status``."""
    name = "order-status"
    help_text = "Move an order to a new status."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--order-id", required=True)
        parser.add_argument("--status", choices=[member.value for member in OrderStatus], required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_order_status, mutates=True)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--query", default=None, help="Filter by name or barcode substring.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "Display products at or below their reorder threshold."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock_report)


def register_debts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``debts``."""
    name = "debts"
    help_text = "Display invoices with outstanding balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--type", dest="invoice_type", choices=[member.value for member in InvoiceType], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_debts_report)


def register_invoices_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``invoices``."""
    name = "invoices"
    help_text = "Display committed invoices with their payment status."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--type", dest="invoice_type", choices=[member.value for member in InvoiceType], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_invoices_report)


def register_orders_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``orders``."""
    name = "orders"
    help_text = "Display orders and per-status counts."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--status", choices=[member.value for member in OrderStatus], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_orders_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations.

    Without ``--config`` the data layer looks for ``config.ini`` in the working
    directory and its parents.
    """
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor.

    Mutating commands are refused when the workbook schema does not match.
    """
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    if spec.mutates:
        core_logic.ensure_schema_version(context)
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def format_currency(amount: Decimal, currency: str) -> str:
    """Render ``amount`` with two decimals followed by the currency code."""
    return f"{amount.quantize(Decimal('0.01')):,.2f} {currency}"


def resolve_creator(context: core_logic.RuntimeContext, args: argparse.Namespace) -> CreatorContext:
    """Creator from ``--creator-id``/``--creator-kind``, falling back to config."""
    fallback = core_logic.default_creator(context)
    creator_id = getattr(args, "creator_id", None) or fallback.creator_id
    raw_kind = getattr(args, "creator_kind", None)
    creator_kind = CreatorKind(raw_kind) if raw_kind else fallback.creator_kind
    return CreatorContext(creator_id, creator_kind)


def translate_add_product(args: argparse.Namespace) -> core_logic.ProductCommand:
    """Translate CLI args into a product command object."""
    return core_logic.ProductCommand(
        product_id=args.product_id,
        name=args.name,
        buying_price=args.buying_price,
        margin_percent=args.margin,
        selling_price=args.selling_price,
        initial_quantity=args.quantity,
        min_quantity=args.min_quantity,
        barcode=args.barcode,
        supplier_id=args.supplier_id,
    )


def translate_create_order(args: argparse.Namespace) -> core_logic.OrderCommand:
    """Translate CLI args into an order command object."""
    return core_logic.OrderCommand(
        client_name=args.client_name,
        lines=[
            core_logic.OrderLineCommand(product_id=product_id, quantity=quantity, unit_price=unit_price)
            for product_id, quantity, unit_price in args.items
        ],
        payment_method=PaymentMethod(args.payment_method),
        client_phone=args.phone,
        address=args.address,
        region=args.region,
        notes=args.notes,
    )


def fill_sale_ledger(context: core_logic.RuntimeContext, items: Sequence[ItemSpec]) -> core_logic.Ledger:
    """Scan each requested product into a sale ledger.

    Every unit goes through the stock guard; repeating a product adds to its
    line the way a second scan would.
    """
    ledger = core_logic.new_ledger(InvoiceType.SALE)
    for product_id, quantity, discount in items:
        existing = ledger.find_by_product(product_id)
        if existing is None:
            line = core_logic.select_product(context, ledger, product_id)
            line = ledger.update_quantity(line.line_id, quantity)
        else:
            line = ledger.increment(existing.line_id, quantity)
        if line is not None and discount is not None:
            ledger.update_discount(line.line_id, discount)
    return ledger


def fill_purchase_ledger(context: core_logic.RuntimeContext, items: Sequence[ItemSpec]) -> core_logic.Ledger:
    """Search each requested product into a purchase ledger; duplicates are rejected."""
    ledger = core_logic.new_ledger(InvoiceType.PURCHASE)
    for product_id, quantity, buying_price in items:
        line = core_logic.select_product(context, ledger, product_id)
        line = ledger.update_quantity(line.line_id, quantity)
        if line is not None and buying_price is not None:
            ledger.update_price(line.line_id, PriceField.BUYING_PRICE, buying_price)
    return ledger


def _print_commit(result: core_logic.CommitResult, currency: str) -> None:
    invoice = result.invoice
    print(f"{invoice.invoice_type.value} invoice {invoice.invoice_id}")
    print(f"  total:  {format_currency(invoice.total, currency)}")
    print(f"  paid:   {format_currency(invoice.amount_paid, currency)}")
    print(f"  change: {format_currency(result.change, currency)}")
    print(f"  debt:   {format_currency(result.remaining_debt, currency)}")


def _print_products(products: List[Product], currency: str) -> None:
    for product in products:
        flag = " (low)" if product.is_low_stock else ""
        print(
            f"{product.product_id}\t{product.name}\t{product.barcode or '-'}\t"
            f"{product.current_quantity}/{product.min_quantity}{flag}\t"
            f"{format_currency(product.selling_price, currency)}"
        )


def _print_invoices(invoices: List[Invoice], currency: str) -> None:
    for invoice in invoices:
        payment = core_logic.invoice_payment(invoice)
        print(
            f"{invoice.invoice_id}\t{invoice.invoice_type.value}\t{invoice.counterparty_name or '-'}\t"
            f"{format_currency(invoice.total, currency)}\t{payment.status.value}\t"
            f"debt {format_currency(payment.remaining_debt, currency)}"
        )


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow."""
    product = core_logic.add_product(context, translate_add_product(args))
    print(f"Added {product.product_id} with barcode {product.barcode}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the point-of-sale workflow."""
    ledger = fill_sale_ledger(context, args.items)
    result = core_logic.commit_ledger(
        context,
        ledger,
        resolve_creator(context, args),
        received_amount=args.received,
        counterparty_id=args.client_id,
        counterparty_name=args.client_name,
    )
    _print_commit(result, context.settings.currency)
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase invoicing workflow."""
    ledger = fill_purchase_ledger(context, args.items)
    result = core_logic.commit_ledger(
        context,
        ledger,
        resolve_creator(context, args),
        received_amount=args.paid,
        counterparty_id=args.supplier_id,
        counterparty_name=args.supplier_name,
    )
    _print_commit(result, context.settings.currency)
    return 0


def run_pay(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the follow-up payment workflow."""
    invoice = core_logic.record_payment(context, args.invoice_id, args.amount)
    payment = core_logic.invoice_payment(invoice)
    print(
        f"{invoice.invoice_id}: {payment.status.value}, "
        f"debt {format_currency(payment.remaining_debt, context.settings.currency)}"
    )
    return 0


def run_create_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the order placement workflow."""
    order = core_logic.create_order(context, translate_create_order(args))
    print(f"Order {order.order_id} ({order.status.value}): {format_currency(order.total, context.settings.currency)}")
    return 0


def run_order_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the order status workflow."""
    order = core_logic.set_order_status(context, args.order_id, OrderStatus(args.status), resolve_creator(context, args))
    print(f"Order {order.order_id} is {order.status.value}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    query = getattr(args, "query", None)
    products = core_logic.search_products(context, query) if query else core_logic.list_products(context)
    _print_products(products, context.settings.currency)
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the low stock reporting workflow."""
    _print_products(core_logic.list_low_stock(context), context.settings.currency)
    return 0


def run_debts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the outstanding debts reporting workflow."""
    invoice_type = InvoiceType(args.invoice_type) if getattr(args, "invoice_type", None) else None
    _print_invoices(core_logic.list_debts(context, invoice_type=invoice_type), context.settings.currency)
    return 0


def run_invoices_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the invoice listing workflow."""
    invoice_type = InvoiceType(args.invoice_type) if getattr(args, "invoice_type", None) else None
    _print_invoices(core_logic.list_invoices(context, invoice_type=invoice_type), context.settings.currency)
    return 0


def run_orders_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the order listing workflow."""
    status = OrderStatus(args.status) if getattr(args, "status", None) else None
    currency = context.settings.currency
    for order in core_logic.list_orders(context, status=status):
        print(f"{order.order_id}\t{order.client_name}\t{order.status.value}\t{format_currency(order.total, currency)}")
    summary = core_logic.order_summary(context)
    counts = ", ".join(f"{member.value}: {summary[member.value]}" for member in OrderStatus)
    print(f"{counts}; revenue {format_currency(summary['total_revenue'], currency)}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, StoreConflict):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
