"""Business logic layer for the cash ledger.

This module validates the sales, expenses and payouts users want to record,
hands them to the Data Access Layer (DAL) for storage, and feeds the stored
records into the monthly report and the cash-holding rollup engine. All
workbook I/O goes through :mod:`cash_ledger.data_manager`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from openpyxl.workbook import Workbook

from . import cash_holding, data_manager, log, reports
from .constants import EXPECTED_SCHEMA_VERSION, PAYOUT_CATEGORY, PaymentMethod, TransactionKind


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced sale or transaction is unknown."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording one day's sales."""

    sale_date: date
    gross_cash_sales: Decimal
    cash_collected: Decimal
    cash_holder: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ExpenseCommand:
    """User intent for recording an expense."""

    expense_date: date
    category: str
    amount: Decimal
    payment_method: PaymentMethod
    spent_by: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PayoutCommand:
    """User intent for recording a cash payout to a person."""

    payout_date: date
    payee_name: str
    amount: Decimal
    purpose: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when it is ``None``, the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets are plain dictionaries stored on the context and keyed by record
    type (``sales``, ``transactions``), so repeated report calls do not rescan
    the workbook.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Args:
        context (RuntimeContext): Active runtime context whose cache should be
            pruned.
        *names (str): Bucket identifiers to remove. Missing buckets are
            ignored.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the sales cache bucket on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` sales in sheet order and a
            ``by_id`` lookup dictionary.
    """

    bucket = _get_cache_bucket(context, "sales")
    if "all" not in bucket:
        all_sales = list(data_manager.iter_sales(context.workbook))
        bucket["all"] = all_sales
        bucket["by_id"] = {sale.sale_id: sale for sale in all_sales}
        log.debug("Populated sales cache with %d entries", len(all_sales))
    return bucket


def _ensure_transactions_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the transactions cache bucket on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` transactions and a ``by_id``
            dictionary for primary key lookups.
    """

    bucket = _get_cache_bucket(context, "transactions")
    if "all" not in bucket:
        all_transactions = list(data_manager.iter_transactions(context.workbook))
        bucket["all"] = all_transactions
        bucket["by_id"] = {transaction.transaction_id: transaction for transaction in all_transactions}
        log.debug(
            "Populated transactions cache with %d entries",
            len(all_transactions),
        )
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

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
    return RuntimeContext(settings=settings, workbook=workbook)


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


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRecord]:
    """Return a copy of the cached sales in workbook order."""
    return list(_ensure_sales_cache(context)["all"])


def list_transactions(context: RuntimeContext, *, kind: Optional[TransactionKind] = None) -> List[data_manager.TransactionRecord]:
    """Return cached transactions, optionally only one kind.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        kind (TransactionKind | None): Restrict the result to expenses or
            payouts. ``None`` returns both.

    Returns:
        list[data_manager.TransactionRecord]: Copy of the cached records in
            workbook order.
    """
    cache = _ensure_transactions_cache(context)
    if kind is None:
        return list(cache["all"])
    return [transaction for transaction in cache["all"] if transaction.kind == kind.value]


def get_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRecord:
    """Resolve a sale record by its identifier.

    Raises:
        MissingReferenceError: If ``sale_id`` is absent from the workbook.
    """
    cache = _ensure_sales_cache(context)
    try:
        return cache["by_id"][sale_id]
    except KeyError as exc:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise MissingReferenceError(f"Unknown sale id: {sale_id}") from exc


def get_transaction(context: RuntimeContext, transaction_id: str) -> data_manager.TransactionRecord:
    """Resolve an expense or payout by its identifier.

    Raises:
        MissingReferenceError: If the workbook lacks the supplied identifier.
    """
    cache = _ensure_transactions_cache(context)
    try:
        return cache["by_id"][transaction_id]
    except KeyError as exc:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}") from exc


def _require_unused_id(bucket: Dict[str, Any], record_id: str, label: str) -> None:
    """Reject an identifier that already names a stored row.

    Rows are located by identifier, so a repeated id would make later edits
    and deletes hit the first row carrying it.
    """
    if record_id in bucket["by_id"]:
        log.error("Refusing to record %s with duplicate id '%s'", label, record_id)
        raise BusinessRuleViolation(f"Duplicate {label} id: {record_id}")


def _resolve_holder(context: RuntimeContext, candidate: Optional[str]) -> str:
    """Return the trimmed holder name, or the configured default when blank."""

    trimmed = (candidate or "").strip()
    return trimmed if trimmed else context.settings.default_cash_holder


def record_sale(context: RuntimeContext, command: SaleCommand) -> data_manager.SaleRecord:
    """Validate and append one day's sales to the ``Sales`` sheet.

    Both amounts must be zero or positive. A blank ``cash_holder`` falls back
    to ``settings.default_cash_holder`` so collected cash is always assigned to
    somebody. The sales cache is invalidated so subsequent reads observe the
    new entry.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (SaleCommand): Structured intent describing the sale.

    Returns:
        data_manager.SaleRecord: Newly appended sale.

    Raises:
        BusinessRuleViolation: If the generated id is already in use.
        ValueError: When an amount is negative.
    """
    require_nonnegative_money(command.gross_cash_sales)
    require_nonnegative_money(command.cash_collected)

    timestamp = _resolve_timestamp(command.timestamp)
    sale_id = generate_record_id(prefix="S", when=timestamp)
    _require_unused_id(_ensure_sales_cache(context), sale_id, "sale")
    record = build_sale_record(
        command,
        sale_id=sale_id,
        cash_holder=_resolve_holder(context, command.cash_holder),
        timestamp=timestamp,
    )
    data_manager.append_sale(context.workbook, record)
    _invalidate_cache(context, "sales")
    log.info(
        "Recorded sale '%s' for %s (gross=%s, cash=%s, holder=%s)",
        record.sale_id,
        record.sale_date,
        record.gross_cash_sales,
        record.cash_collected,
        record.cash_holder,
    )
    return record


def record_expense(context: RuntimeContext, command: ExpenseCommand) -> data_manager.TransactionRecord:
    """Validate and append an expense to the ``Transactions`` sheet.

    Cash expenses reduce the holdings of whoever spent the money, so they are
    always stored with a ``spent_by`` name, defaulting to the configured cash
    holder. Card and bank-transfer expenses keep ``spent_by`` as given.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (ExpenseCommand): Structured expense intent.

    Returns:
        data_manager.TransactionRecord: Newly appended expense.

    Raises:
        BusinessRuleViolation: If the payment method is unsupported or the
            category is blank.
        ValueError: If the amount is not strictly positive.
    """
    if not isinstance(command.payment_method, PaymentMethod):
        log.error("Unsupported payment method provided: %s", command.payment_method)
        raise BusinessRuleViolation(f"Unsupported payment method: {command.payment_method}")
    if not command.category or not command.category.strip():
        log.warning("Attempted expense without a category")
        raise BusinessRuleViolation("Expense category is required")
    require_positive_money(command.amount)

    spent_by = command.spent_by
    if command.payment_method is PaymentMethod.CASH:
        spent_by = _resolve_holder(context, spent_by)

    timestamp = _resolve_timestamp(command.timestamp)
    transaction_id = generate_record_id(prefix="E", when=timestamp)
    _require_unused_id(_ensure_transactions_cache(context), transaction_id, "expense")
    record = build_expense_record(command, transaction_id=transaction_id, spent_by=spent_by, timestamp=timestamp)
    data_manager.append_transaction(context.workbook, record)
    _invalidate_cache(context, "transactions")
    log.info(
        "Recorded expense '%s' in '%s' (amount=%s, method=%s, spent_by=%s)",
        record.transaction_id,
        record.category,
        record.amount,
        record.payment_method,
        record.spent_by,
    )
    return record


def record_payout(context: RuntimeContext, command: PayoutCommand) -> data_manager.TransactionRecord:
    """Validate and append a payout to the ``Transactions`` sheet.

    Payouts are stored with ``category="Payout"`` and ``payment_method="cash"``
    and carry the purpose as their description. They never change a
    custodian's held cash.

    Raises:
        BusinessRuleViolation: If the payee is blank.
        ValueError: If the amount is not strictly positive.
    """
    if not command.payee_name or not command.payee_name.strip():
        log.warning("Attempted payout without a payee")
        raise BusinessRuleViolation("Payout payee is required")
    require_positive_money(command.amount)

    timestamp = _resolve_timestamp(command.timestamp)
    transaction_id = generate_record_id(prefix="P", when=timestamp)
    _require_unused_id(_ensure_transactions_cache(context), transaction_id, "payout")
    record = build_payout_record(command, transaction_id=transaction_id, timestamp=timestamp)
    data_manager.append_transaction(context.workbook, record)
    _invalidate_cache(context, "transactions")
    log.info(
        "Recorded payout '%s' to '%s' (amount=%s)",
        record.transaction_id,
        record.payee_name,
        record.amount,
    )
    return record


def _serialize_field(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, PaymentMethod):
        return value.value
    return value


def _validate_changes(changes: Mapping[str, Any], allowed: Mapping[str, str], label: str) -> None:
    if not changes:
        log.warning("Rejected %s update without any fields", label)
        raise BusinessRuleViolation(f"No {label} fields to update")
    unknown = sorted(set(changes).difference(allowed))
    if unknown:
        log.error("Rejected %s update with unknown fields: %s", label, ", ".join(unknown))
        raise BusinessRuleViolation(f"Unknown {label} field(s): {', '.join(unknown)}")


def _require_text(changes: Mapping[str, Any], name: str, message: str) -> None:
    if name in changes and not (changes[name] or "").strip():
        log.warning("Rejected update with blank '%s'", name)
        raise BusinessRuleViolation(message)


def update_sale(context: RuntimeContext, sale_id: str, changes: Mapping[str, Any]) -> data_manager.SaleRecord:
    """Replace selected fields of an existing sale.

    The same rules as :func:`record_sale` apply to the edited values: amounts
    stay non-negative and a blank ``cash_holder`` falls back to the configured
    default holder.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        sale_id (str): Identifier of the sale to change.
        changes (Mapping[str, Any]): ``SaleRecord`` field names mapped to their
            new values. Only ``data_manager.SALE_FIELD_COLUMNS`` are editable.

    Returns:
        data_manager.SaleRecord: The sale as stored after the update.

    Raises:
        MissingReferenceError: If the sale is unknown.
        BusinessRuleViolation: If no field is given or a field is not editable.
        ValueError: If an amount is negative.
    """
    get_sale(context, sale_id)
    _validate_changes(changes, data_manager.SALE_FIELD_COLUMNS, "sale")
    for name in ("gross_cash_sales", "cash_collected"):
        if name in changes:
            require_nonnegative_money(changes[name])

    resolved = dict(changes)
    if "cash_holder" in resolved:
        resolved["cash_holder"] = _resolve_holder(context, resolved["cash_holder"])

    field_values = {
        data_manager.SALE_FIELD_COLUMNS[name]: _serialize_field(value)
        for name, value in resolved.items()
    }
    data_manager.update_sale(context.workbook, sale_id, field_values=field_values)
    _invalidate_cache(context, "sales")
    log.info("Updated sale '%s' fields: %s", sale_id, ", ".join(sorted(changes)))
    return get_sale(context, sale_id)


def update_transaction(context: RuntimeContext, transaction_id: str, changes: Mapping[str, Any]) -> data_manager.TransactionRecord:
    """Replace selected fields of an existing expense or payout.

    The transaction kind cannot be changed; delete and re-record instead. The
    edited record must still satisfy the recording rules: an expense keeps a
    category, a payout keeps a payee, and an expense that is paid in cash
    after the edit always names who spent it, falling back to the configured
    default holder.

    Raises:
        MissingReferenceError: If the transaction is unknown.
        BusinessRuleViolation: If no field is given, a field is not editable,
            a required name is blanked, or the payment method is unsupported.
        ValueError: If the amount is not strictly positive.
    """
    current = get_transaction(context, transaction_id)
    _validate_changes(changes, data_manager.TRANSACTION_FIELD_COLUMNS, "transaction")
    if "amount" in changes:
        require_positive_money(changes["amount"])
    if "payment_method" in changes and not isinstance(changes["payment_method"], PaymentMethod):
        log.error("Unsupported payment method provided: %s", changes["payment_method"])
        raise BusinessRuleViolation(f"Unsupported payment method: {changes['payment_method']}")
    if current.kind == TransactionKind.PAYOUT.value:
        _require_text(changes, "payee_name", "Payout payee is required")
    else:
        _require_text(changes, "category", "Expense category is required")

    resolved = dict(changes)
    if "category" in resolved:
        resolved["category"] = resolved["category"].strip()
    if "payee_name" in resolved:
        resolved["payee_name"] = resolved["payee_name"].strip()

    payment_method = resolved.get("payment_method", current.payment_method)
    paid_in_cash = current.kind == TransactionKind.EXPENSE.value and payment_method == PaymentMethod.CASH.value
    if paid_in_cash and ("spent_by" in resolved or "payment_method" in resolved):
        resolved["spent_by"] = _resolve_holder(context, resolved.get("spent_by", current.spent_by))
    elif resolved.get("spent_by") is not None:
        resolved["spent_by"] = resolved["spent_by"].strip() or None

    field_values = {
        data_manager.TRANSACTION_FIELD_COLUMNS[name]: _serialize_field(value)
        for name, value in resolved.items()
    }
    data_manager.update_transaction(context.workbook, transaction_id, field_values=field_values)
    _invalidate_cache(context, "transactions")
    log.info("Updated transaction '%s' fields: %s", transaction_id, ", ".join(sorted(changes)))
    return get_transaction(context, transaction_id)


def delete_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRecord:
    """Remove a sale and return the record that was deleted.

    Raises:
        MissingReferenceError: If the sale is unknown.
    """
    record = get_sale(context, sale_id)
    data_manager.delete_sale(context.workbook, sale_id)
    _invalidate_cache(context, "sales")
    log.info("Deleted sale '%s'", sale_id)
    return record


def delete_transaction(context: RuntimeContext, transaction_id: str) -> data_manager.TransactionRecord:
    """Remove an expense or payout and return the record that was deleted.

    Raises:
        MissingReferenceError: If the transaction is unknown.
    """
    record = get_transaction(context, transaction_id)
    data_manager.delete_transaction(context.workbook, transaction_id)
    _invalidate_cache(context, "transactions")
    log.info("Deleted %s '%s'", record.kind, transaction_id)
    return record


def monthly_report(context: RuntimeContext, month: int, year: int) -> reports.MonthlyReport:
    """Build the income/expense/payout report for one month of stored records."""
    return reports.generate_monthly_report(
        _ensure_sales_cache(context)["all"],
        _ensure_transactions_cache(context)["all"],
        month,
        year,
    )


def cash_holding_summary(context: RuntimeContext, month: int, year: int) -> cash_holding.CashHoldingSummary:
    """Run the cash-holding replay over stored records up to ``month``/``year``.

    The configured ``cash_holders`` list decides which custodians are always
    shown and in what order.
    """
    return cash_holding.get_cash_holding_summary(
        _ensure_sales_cache(context)["all"],
        _ensure_transactions_cache(context)["all"],
        month,
        year,
        cash_holders=context.settings.cash_holders,
    )


def cash_holding_year_snapshot(context: RuntimeContext, year: int) -> cash_holding.CashHoldingSummary:
    """Run the year-long cash-holding replay over stored records."""
    return cash_holding.get_cash_holding_year_snapshot(
        _ensure_sales_cache(context)["all"],
        _ensure_transactions_cache(context)["all"],
        year,
        cash_holders=context.settings.cash_holders,
    )


def generate_record_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable record identifier using UTC timestamps.

    Args:
        prefix (str): Designator prepended to the identifier, ``"S"`` for
            sales, ``"E"`` for expenses and ``"P"`` for payouts.
        when (datetime | None): Timestamp used for deterministically producing
            the identifier. When ``None`` the current UTC time is used.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def require_positive_money(amount: Decimal) -> None:
    """Validate that a monetary value is strictly positive.

    Raises:
        ValueError: If ``amount`` is zero or negative.
    """
    if amount <= Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to ``settings.data_file``."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def build_sale_record(command: SaleCommand, *, sale_id: str, cash_holder: str, timestamp: datetime) -> data_manager.SaleRecord:
    """Materialize a :class:`SaleCommand` into a DAL sale record."""
    return data_manager.SaleRecord(
        sale_id=sale_id,
        sale_date=command.sale_date,
        gross_cash_sales=command.gross_cash_sales,
        cash_collected=command.cash_collected,
        cash_holder=cash_holder,
        notes=command.notes,
        created_at=timestamp.isoformat(),
    )


def build_expense_record(
    command: ExpenseCommand,
    *,
    transaction_id: str,
    spent_by: Optional[str],
    timestamp: datetime,
) -> data_manager.TransactionRecord:
    """Materialize an :class:`ExpenseCommand` into a DAL transaction record.

    The category is trimmed and the payment method enum is stored as its text
    value, matching what the reporting layers compare against.
    """
    return data_manager.TransactionRecord(
        transaction_id=transaction_id,
        transaction_date=command.expense_date,
        kind=TransactionKind.EXPENSE.value,
        category=command.category.strip(),
        amount=command.amount,
        payment_method=command.payment_method.value,
        spent_by=spent_by,
        payee_name=None,
        purpose=None,
        description=command.description,
        notes=command.notes,
        created_at=timestamp.isoformat(),
    )


def build_payout_record(command: PayoutCommand, *, transaction_id: str, timestamp: datetime) -> data_manager.TransactionRecord:
    """Materialize a :class:`PayoutCommand` into a DAL transaction record."""
    return data_manager.TransactionRecord(
        transaction_id=transaction_id,
        transaction_date=command.payout_date,
        kind=TransactionKind.PAYOUT.value,
        category=PAYOUT_CATEGORY,
        amount=command.amount,
        payment_method=PaymentMethod.CASH.value,
        spent_by=None,
        payee_name=command.payee_name.strip(),
        purpose=command.purpose,
        description=command.purpose or "",
        notes=command.notes,
        created_at=timestamp.isoformat(),
    )
