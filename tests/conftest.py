"""Shared pytest fixtures and utilities for retail ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from retail_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from retail_ledger.models import Product  # noqa: E402
from retail_ledger.setup_excel import create_master_workbook  # noqa: E402
from retail_ledger.store import InventoryStore  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_CREATOR_ID = "E-DEFAULT"
FIXED_NOW = datetime(2024, 5, 1, 9, 30, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n"
    "Currency = DZD\n\n"
    "[Defaults]\n"
    "CreatorId = {creator_id}\n"
    "CreatorKind = employee\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    creator_id: str
    schema_version: str
    store_name: str


def build_product(**overrides) -> Product:
    values = dict(
        product_id="P-1",
        name="Olive Oil 1L",
        barcode="6130000000011",
        buying_price=Decimal("100"),
        selling_price=Decimal("120"),
        margin_percent=Decimal("20"),
        initial_quantity=5,
        current_quantity=5,
        min_quantity=1,
        supplier_id=None,
    )
    values.update(overrides)
    return Product(**values)


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def make_product() -> Callable[..., Product]:
    """Factory for :class:`Product` records with overridable fields."""

    return build_product


@pytest.fixture
def catalog() -> list[Product]:
    """Two stocked products and one that has run out."""

    return [
        build_product(),
        build_product(
            product_id="P-2",
            name="Couscous 1kg",
            barcode="6130000000028",
            buying_price=Decimal("1000"),
            selling_price=Decimal("1200"),
            margin_percent=Decimal("20"),
            initial_quantity=10,
            current_quantity=10,
            min_quantity=3,
        ),
        build_product(
            product_id="P-3",
            name="Mint Tea",
            barcode="6130000000035",
            buying_price=Decimal("50"),
            selling_price=Decimal("75"),
            margin_percent=Decimal("50"),
            initial_quantity=4,
            current_quantity=0,
            min_quantity=2,
        ),
    ]


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        seed_products: Iterable[Product] = (),
        filename: str = "retail_ledger.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, seed_products=seed_products, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path], catalog: list[Product]) -> Path:
    """Return a fresh master workbook seeded with the test catalog."""

    unique_dir = f"workbook_{uuid.uuid4().hex}"
    return workbook_factory(subdir=unique_dir, seed_products=catalog)


@pytest.fixture
def config_factory(
    tmp_path: Path,
    workbook_factory: Callable[..., Path],
    catalog: list[Product],
) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        creator_id: str = DEFAULT_CREATOR_ID,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", seed_products=catalog)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                creator_id=creator_id,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            creator_id=creator_id,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file, clock=lambda: FIXED_NOW)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="retail-ledger", description="Retail ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "retail_ledger.xlsx",
        store_name="Test Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        currency="DZD",
        default_creator_id=DEFAULT_CREATOR_ID,
        default_creator_kind=constants.CreatorKind.EMPLOYEE,
    )


@pytest.fixture
def store() -> Mock:
    """Return a mock store honouring the :class:`InventoryStore` interface."""

    return Mock(spec=InventoryStore, name="store")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, store: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and a mocked store."""

    return core_logic.RuntimeContext(settings=settings, workbook=Mock(name="workbook"), store=store)
