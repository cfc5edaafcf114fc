"""Data access layer for the cash ledger.

This module provides low-level helpers that read from and write to the
``ledger_master.xlsx`` workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured sale and transaction records and
   appending, updating, or deleting individual rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import CASH_HOLDERS, SheetName


CONFIG_FILE_NAME = "config.ini"
SALES_SHEET = SheetName.SALES.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value

SALE_COLUMNS: tuple[str, ...] = (
    "SaleID",
    "Date",
    "GrossCashSales",
    "CashCollected",
    "CashHolder",
    "Notes",
    "CreatedAt",
)

TRANSACTION_COLUMNS: tuple[str, ...] = (
    "TransactionID",
    "Date",
    "Kind",
    "Category",
    "Amount",
    "PaymentMethod",
    "SpentBy",
    "PayeeName",
    "Purpose",
    "Description",
    "Notes",
    "CreatedAt",
)

# Editable record fields and the worksheet column each one lives in.
SALE_FIELD_COLUMNS: dict[str, str] = {
    "sale_date": "Date",
    "gross_cash_sales": "GrossCashSales",
    "cash_collected": "CashCollected",
    "cash_holder": "CashHolder",
    "notes": "Notes",
}

TRANSACTION_FIELD_COLUMNS: dict[str, str] = {
    "transaction_date": "Date",
    "category": "Category",
    "amount": "Amount",
    "payment_method": "PaymentMethod",
    "spent_by": "SpentBy",
    "payee_name": "PayeeName",
    "purpose": "Purpose",
    "description": "Description",
    "notes": "Notes",
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    default_cash_holder: str
    cash_holders: tuple[str, ...] = CASH_HOLDERS


@dataclass(frozen=True)
class SaleRecord:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    sale_date: Optional[date]
    gross_cash_sales: Decimal
    cash_collected: Decimal
    cash_holder: str
    notes: Optional[str]
    created_at: str


@dataclass(frozen=True)
class TransactionRecord:
    """In-memory view of a row from the ``Transactions`` sheet."""

    transaction_id: str
    transaction_date: Optional[date]
    kind: str
    category: str
    amount: Decimal
    payment_method: str
    spent_by: Optional[str]
    payee_name: Optional[str]
    purpose: Optional[str]
    description: Optional[str]
    notes: Optional[str]
    created_at: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`; this
    helper only guarantees the file exists.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_cash_holders(raw: Optional[str]) -> tuple[str, ...]:
    """Split a comma separated ``Names`` entry into an ordered holder tuple.

    Blank entries and duplicates are dropped while the first-seen order is
    kept. ``None`` or an empty string falls back to :data:`CASH_HOLDERS`.
    """

    if not raw:
        return CASH_HOLDERS
    names: list[str] = []
    for part in raw.split(","):
        name = part.strip()
        if name and name not in names:
            names.append(name)
    return tuple(names) or CASH_HOLDERS


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The function validates that all required options are present under the
    expected sections and normalizes the configured data file path. Relative
    paths are expanded against ``base_path`` when provided, or against the
    current working directory as a fallback. The optional ``[CashHolders]``
    section overrides the canonical custodian list.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
        default_cash_holder = parser.get("Defaults", "DefaultCashHolder")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    cash_holders = parse_cash_holders(parser.get("CashHolders", "Names", fallback=None))

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        default_cash_holder=default_cash_holder,
        cash_holders=cash_holders,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the ``ledger_master.xlsx`` file.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def iter_sales(workbook: Workbook) -> Iterable[SaleRecord]:
    """Iterate over sale records stored on the ``Sales`` worksheet.

    The header row and fully empty rows are skipped. Every other row is turned
    into a :class:`SaleRecord` via :func:`deserialize_sale`.

    Args:
        workbook (Workbook): Workbook containing the ``Sales`` sheet.

    Yields:
        SaleRecord: One structured row for each meaningful record in the sheet.
    """

    sheet = workbook[SALES_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserialize_sale(raw)


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRecord]:
    """Stream expense and payout records from the ``Transactions`` worksheet.

    Args:
        workbook (Workbook): Workbook containing the transactions sheet.

    Yields:
        TransactionRecord: Normalized record for each populated row.
    """

    sheet = workbook[TRANSACTIONS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_transaction(raw)


def append_sale(workbook: Workbook, record: SaleRecord) -> None:
    """Append a sale record to the ``Sales`` worksheet."""

    sheet = workbook[SALES_SHEET]
    sheet.append(serialize_sale(record))


def append_transaction(workbook: Workbook, record: TransactionRecord) -> None:
    """Append an expense or payout record to the ``Transactions`` worksheet.

    Amounts are written as :class:`~decimal.Decimal` instances so that Excel
    keeps the cents exactly when the workbook is saved.
    """

    sheet = workbook[TRANSACTIONS_SHEET]
    sheet.append(serialize_transaction(record))


def _update_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, field_values: dict[str, Any]) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"Row not found in {sheet_name}: {key_value}")

    sheet = workbook[sheet_name]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}

    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field}")
        sheet.cell(row=row_index, column=header_map[field], value=value)


def update_sale(workbook: Workbook, sale_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing sale.

    Only the specified columns are modified, leaving other cells untouched.

    Args:
        workbook (Workbook): Workbook containing the sales sheet.
        sale_id (str): Identifier used to locate the target row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Raises:
        KeyError: If the sale or any referenced column cannot be found.
    """

    _update_row(workbook, SALES_SHEET, "SaleID", sale_id, field_values)


def update_transaction(workbook: Workbook, transaction_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing expense or payout.

    Raises:
        KeyError: If the transaction or any referenced column is missing.
    """

    _update_row(workbook, TRANSACTIONS_SHEET, "TransactionID", transaction_id, field_values)


def delete_sale(workbook: Workbook, sale_id: str) -> None:
    """Remove the row holding ``sale_id`` from the ``Sales`` worksheet.

    Raises:
        KeyError: If no row carries the identifier.
    """

    row_index = locate_row(workbook, SALES_SHEET, "SaleID", sale_id)
    if row_index is None:
        raise KeyError(f"Sale not found: {sale_id}")
    workbook[SALES_SHEET].delete_rows(row_index)


def delete_transaction(workbook: Workbook, transaction_id: str) -> None:
    """Remove the row holding ``transaction_id`` from the ``Transactions`` worksheet.

    Raises:
        KeyError: If no row carries the identifier.
    """

    row_index = locate_row(workbook, TRANSACTIONS_SHEET, "TransactionID", transaction_id)
    if row_index is None:
        raise KeyError(f"Transaction not found: {transaction_id}")
    workbook[TRANSACTIONS_SHEET].delete_rows(row_index)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    The function constructs a mapping from header titles to column indices,
    verifies that ``key_column`` exists, and scans the worksheet for the first
    row whose value equals ``key_value``. The header row itself is not
    considered during matching.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_cells = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(header_cells)}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def coerce_date(value: object) -> Optional[date]:
    """Normalize a worksheet cell into a calendar date.

    ``openpyxl`` hands back ``datetime`` objects for date-formatted cells and
    plain strings for text cells. ISO strings with or without a time part are
    accepted. Anything else, including malformed text, yields ``None`` so the
    reporting layers can skip the record instead of failing.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        log.debug("Ignoring unparseable date cell %r", value)
        return None


def coerce_decimal(value: object, default: str = "0.00") -> Decimal:
    """Convert a worksheet cell into a :class:`~decimal.Decimal`.

    Blank cells use ``default``. Unparseable text is treated the same way so a
    stray note typed into an amount column does not break reporting.
    """

    if value is None or (isinstance(value, str) and not value.strip()):
        return Decimal(default)
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        log.warning("Treating unparseable amount %r as %s", value, default)
        return Decimal(default)


def _optional_text(value: object) -> Optional[str]:
    return str(value) if value is not None else None


def serialize_sale(record: SaleRecord) -> list[object]:
    """Convert a sale dataclass into the worksheet column ordering.

    Returns:
        list[object]: Values arranged as ``[SaleID, Date, GrossCashSales,
        CashCollected, CashHolder, Notes, CreatedAt]``.
    """

    return [
        record.sale_id,
        record.sale_date.isoformat() if record.sale_date is not None else None,
        record.gross_cash_sales,
        record.cash_collected,
        record.cash_holder,
        record.notes,
        record.created_at,
    ]


def serialize_transaction(record: TransactionRecord) -> list[object]:
    """Convert a transaction dataclass into the ``Transactions`` column order."""

    return [
        record.transaction_id,
        record.transaction_date.isoformat() if record.transaction_date is not None else None,
        record.kind,
        record.category,
        record.amount,
        record.payment_method,
        record.spent_by,
        record.payee_name,
        record.purpose,
        record.description,
        record.notes,
        record.created_at,
    ]


def deserialize_sale(raw_row: Sequence[object]) -> SaleRecord:
    """Convert a raw worksheet row into a strongly typed sale record.

    Short rows are padded with ``None`` so a sheet whose trailing columns were
    never filled still loads. Amounts become :class:`~decimal.Decimal`, the
    date goes through :func:`coerce_date`, and a missing holder becomes an
    empty string.

    Args:
        raw_row (Sequence[object]): Raw cell values from the worksheet row.

    Returns:
        SaleRecord: Dataclass reflecting the row contents.
    """

    width = len(SALE_COLUMNS)
    padded = list(raw_row) + [None] * (width - len(raw_row))
    (
        sale_id,
        sale_date,
        gross_cash_sales,
        cash_collected,
        cash_holder,
        notes,
        created_at,
    ) = padded[:width]

    return SaleRecord(
        sale_id=str(sale_id),
        sale_date=coerce_date(sale_date),
        gross_cash_sales=coerce_decimal(gross_cash_sales),
        cash_collected=coerce_decimal(cash_collected),
        cash_holder=str(cash_holder) if cash_holder is not None else "",
        notes=_optional_text(notes),
        created_at=str(created_at) if created_at is not None else "",
    )


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRecord:
    """Convert a raw worksheet row into a strongly typed transaction record.

    Decimal-compatible columns are normalized into :class:`~decimal.Decimal`
    instances, optional columns remain ``None`` when the sheet leaves them
    blank, and required text columns default to empty strings.

    Args:
        raw_row (Sequence[object]): Raw cell values from the transactions row
            in their worksheet order.

    Returns:
        TransactionRecord: Dataclass reflecting the row contents.
    """

    width = len(TRANSACTION_COLUMNS)
    padded = list(raw_row) + [None] * (width - len(raw_row))
    (
        transaction_id,
        transaction_date,
        kind,
        category,
        amount,
        payment_method,
        spent_by,
        payee_name,
        purpose,
        description,
        notes,
        created_at,
    ) = padded[:width]

    return TransactionRecord(
        transaction_id=str(transaction_id),
        transaction_date=coerce_date(transaction_date),
        kind=str(kind) if kind is not None else "",
        category=str(category) if category is not None else "",
        amount=coerce_decimal(amount),
        payment_method=str(payment_method) if payment_method is not None else "",
        spent_by=_optional_text(spent_by),
        payee_name=_optional_text(payee_name),
        purpose=_optional_text(purpose),
        description=_optional_text(description),
        notes=_optional_text(notes),
        created_at=str(created_at) if created_at is not None else "",
    )
