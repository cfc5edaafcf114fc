"""Shared pytest fixtures and utilities for cash ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Optional
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from cash_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from cash_ledger.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_CASH_HOLDER = "Vamshi"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "BusinessName = {business_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "DefaultCashHolder = {default_cash_holder}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    default_cash_holder: str
    schema_version: str
    business_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "ledger_master.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        business_name: str = "Test Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_cash_holder: str = DEFAULT_CASH_HOLDER,
        cash_holders: Optional[str] = None,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        text = _CONFIG_TEMPLATE.format(
            data_file=data_file_entry,
            business_name=business_name,
            schema_version=schema_version,
            default_cash_holder=default_cash_holder,
        )
        if cash_holders is not None:
            text += f"\n[CashHolders]\nNames = {cash_holders}\n"
        config_path = bundle_dir / "config.ini"
        config_path.write_text(text)
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            default_cash_holder=default_cash_holder,
            schema_version=schema_version,
            business_name=business_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


@pytest.fixture
def make_sale() -> Callable[..., data_manager.SaleRecord]:
    """Build sale records with sensible defaults for the fields a test ignores."""

    counter = {"n": 0}

    def _make(
        sale_date: Optional[date],
        cash_collected: str | Decimal = "0",
        cash_holder: str = DEFAULT_CASH_HOLDER,
        *,
        gross_cash_sales: str | Decimal = "0",
    ) -> data_manager.SaleRecord:
        counter["n"] += 1
        return data_manager.SaleRecord(
            sale_id=f"S{counter['n']}",
            sale_date=sale_date,
            gross_cash_sales=Decimal(gross_cash_sales),
            cash_collected=Decimal(cash_collected),
            cash_holder=cash_holder,
            notes=None,
            created_at="2024-01-01T00:00:00+00:00",
        )

    return _make


@pytest.fixture
def make_transaction() -> Callable[..., data_manager.TransactionRecord]:
    """Build expense/payout records; defaults describe a cash expense."""

    counter = {"n": 0}

    def _make(
        transaction_date: Optional[date],
        amount: str | Decimal,
        spent_by: Optional[str] = DEFAULT_CASH_HOLDER,
        *,
        kind: str = constants.TransactionKind.EXPENSE.value,
        payment_method: str = constants.PaymentMethod.CASH.value,
        category: str = "Supplies",
        payee_name: Optional[str] = None,
    ) -> data_manager.TransactionRecord:
        counter["n"] += 1
        return data_manager.TransactionRecord(
            transaction_id=f"T{counter['n']}",
            transaction_date=transaction_date,
            kind=kind,
            category=category,
            amount=Decimal(amount),
            payment_method=payment_method,
            spent_by=spent_by,
            payee_name=payee_name,
            purpose=None,
            description=None,
            notes=None,
            created_at="2024-01-01T00:00:00+00:00",
        )

    return _make


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="ledger-cli", description="Ledger CLI")


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
        data_file=tmp_path / "ledger_master.xlsx",
        business_name="Test Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_cash_holder=DEFAULT_CASH_HOLDER,
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def fixed_moment() -> datetime:
    """A deterministic timestamp used when commands need one."""

    return datetime(2024, 3, 15, 9, 30, 0, 123456, tzinfo=UTC)
