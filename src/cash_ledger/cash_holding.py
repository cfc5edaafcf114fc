"""Cash-holding rollup engine.

Every custodian in :data:`~cash_ledger.constants.CASH_HOLDERS` (plus anyone
else named on a record) is responsible for a pool of physical cash. Sales add
``cash_collected`` to the pool of the sale's ``cash_holder`` and cash expenses
remove ``amount`` from the pool of whoever ``spent_by`` names. Payouts and
card or bank-transfer expenses never touch these pools.

Balances are carried forward: the opening balance of a month is the closing
balance of the month before it. To get that right for an arbitrary target
month the engine replays every calendar month from the earliest dated record
up to the target, keyed by ``(year, month)`` tuples. Nothing here performs
I/O or keeps state between calls; the functions are safe to call repeatedly
with the same record lists.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from . import data_manager, log
from .constants import (
    CASH_HOLDERS,
    TOTAL_ROW_NAME,
    UNASSIGNED_HOLDER,
    PaymentMethod,
    TransactionKind,
)


MonthKey = Tuple[int, int]
MonthBuckets = Dict[MonthKey, Dict[str, Decimal]]

ZERO = Decimal("0")


@dataclass(frozen=True)
class CashHoldingRow:
    """One custodian's movement of held cash over a period."""

    name: str
    opening: Decimal = ZERO
    collected: Decimal = ZERO
    expenses: Decimal = ZERO
    closing: Decimal = ZERO


@dataclass(frozen=True)
class CashHoldingSummary:
    """Per-custodian rows for a period together with their column totals."""

    rows: Tuple[CashHoldingRow, ...]
    totals: CashHoldingRow

    def row(self, name: str) -> CashHoldingRow:
        """Return the row for ``name``.

        Raises:
            KeyError: If ``name`` is not part of the summary.
        """
        for candidate in self.rows:
            if candidate.name == name:
                return candidate
        raise KeyError(f"No cash holding row for '{name}'")

    @property
    def names(self) -> List[str]:
        return [row.name for row in self.rows]


def normalize_holder(value: Optional[str]) -> str:
    """Trim a custodian name, mapping blank values to ``"Unassigned"``."""

    trimmed = (value or "").strip()
    return trimmed if trimmed else UNASSIGNED_HOLDER


def as_amount(value: object) -> Decimal:
    """Coerce a record amount into a :class:`~decimal.Decimal`, ``None`` as zero."""

    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return data_manager.coerce_decimal(value, default="0")


def month_key(value: object) -> Optional[MonthKey]:
    """Return the ``(year, month)`` key of a record date.

    ``date`` and ``datetime`` values are used directly; strings go through
    :func:`~cash_ledger.data_manager.coerce_date`. Unparseable input yields
    ``None``.
    """

    parsed = value if isinstance(value, date) else data_manager.coerce_date(value)
    if parsed is None:
        return None
    return (parsed.year, parsed.month)


def next_month_key(key: MonthKey) -> MonthKey:
    """Step a ``(year, month)`` key forward by exactly one calendar month."""

    year, month = key
    if month == 12:
        return (year + 1, 1)
    return (year, month + 1)


def iter_month_keys(start: MonthKey, end: MonthKey) -> Iterator[MonthKey]:
    """Yield every month key from ``start`` through ``end`` inclusive.

    Nothing is yielded when ``end`` precedes ``start``.
    """

    current = start
    while current <= end:
        yield current
        current = next_month_key(current)


def is_cash_expense(transaction: data_manager.TransactionRecord) -> bool:
    """Tell whether a transaction was paid out of a custodian's cash."""

    return (
        transaction.kind == TransactionKind.EXPENSE.value
        and transaction.payment_method == PaymentMethod.CASH.value
    )


def order_holders(holders: Iterable[str], canonical: Sequence[str] = CASH_HOLDERS) -> List[str]:
    """Order custodian names for display.

    Members of ``canonical`` come first in their canonical order, followed by
    every other name sorted lexicographically.
    """

    present = set(holders)
    ordered = [name for name in dict.fromkeys(canonical) if name in present]
    remaining = sorted(present.difference(ordered))
    return ordered + remaining


def collect_holders(
    sales: Iterable[data_manager.SaleRecord],
    transactions: Iterable[data_manager.TransactionRecord],
    canonical: Sequence[str] = CASH_HOLDERS,
) -> List[str]:
    """Build the ordered custodian universe for a set of records.

    The result always contains the canonical names, then adds the normalized
    ``cash_holder`` of every sale and the normalized ``spent_by`` of every cash
    expense. Records with unusable dates still contribute their names.
    """

    holders: Set[str] = set(canonical)
    for sale in sales:
        holders.add(normalize_holder(sale.cash_holder))
    for transaction in transactions:
        if is_cash_expense(transaction):
            holders.add(normalize_holder(transaction.spent_by))
    return order_holders(holders, canonical)


def _add_to_bucket(buckets: MonthBuckets, key: MonthKey, holder: str, amount: Decimal) -> None:
    by_holder = buckets.setdefault(key, {})
    by_holder[holder] = by_holder.get(holder, ZERO) + amount


def bucket_contributions(
    sales: Iterable[data_manager.SaleRecord],
    transactions: Iterable[data_manager.TransactionRecord],
) -> Tuple[MonthBuckets, MonthBuckets]:
    """Sum cash collected and cash spent per month and custodian.

    Returns:
        tuple[dict, dict]: ``(collected, expenses)`` maps of
            ``{(year, month): {holder: amount}}``. Records without a usable
            date are left out of both maps.
    """

    collected: MonthBuckets = {}
    expenses: MonthBuckets = {}

    for sale in sales:
        key = month_key(sale.sale_date)
        if key is None:
            continue
        _add_to_bucket(collected, key, normalize_holder(sale.cash_holder), as_amount(sale.cash_collected))

    for transaction in transactions:
        if not is_cash_expense(transaction):
            continue
        key = month_key(transaction.transaction_date)
        if key is None:
            continue
        _add_to_bucket(expenses, key, normalize_holder(transaction.spent_by), as_amount(transaction.amount))

    return collected, expenses


def earliest_month(
    sales: Iterable[data_manager.SaleRecord],
    transactions: Iterable[data_manager.TransactionRecord],
) -> Optional[MonthKey]:
    """Return the earliest month holding any dated sale or transaction.

    Every transaction counts here, payouts and card expenses included, so the
    replay always starts at the first month the business has data for.
    """

    keys = [month_key(sale.sale_date) for sale in sales]
    keys.extend(month_key(transaction.transaction_date) for transaction in transactions)
    return min((key for key in keys if key is not None), default=None)


def build_totals(rows: Iterable[CashHoldingRow]) -> CashHoldingRow:
    """Sum every numeric column of ``rows`` into a ``"Total"`` row."""

    opening = collected = expenses = closing = ZERO
    for row in rows:
        opening += row.opening
        collected += row.collected
        expenses += row.expenses
        closing += row.closing
    return CashHoldingRow(
        name=TOTAL_ROW_NAME,
        opening=opening,
        collected=collected,
        expenses=expenses,
        closing=closing,
    )


def _summarize(rows: Sequence[CashHoldingRow]) -> CashHoldingSummary:
    return CashHoldingSummary(rows=tuple(rows), totals=build_totals(rows))


def _zero_summary(holders: Sequence[str]) -> CashHoldingSummary:
    return _summarize([CashHoldingRow(name=name) for name in holders])


def _replay_month(
    holders: Sequence[str],
    running: Dict[str, Decimal],
    collected: Dict[str, Decimal],
    expenses: Dict[str, Decimal],
) -> List[CashHoldingRow]:
    """Advance every running balance by one month and return that month's rows."""

    rows: List[CashHoldingRow] = []
    for name in holders:
        opening = running[name]
        month_collected = collected.get(name, ZERO)
        month_expenses = expenses.get(name, ZERO)
        closing = opening + month_collected - month_expenses
        running[name] = closing
        rows.append(
            CashHoldingRow(
                name=name,
                opening=opening,
                collected=month_collected,
                expenses=month_expenses,
                closing=closing,
            )
        )
    return rows


def _require_month(month: int) -> None:
    if not 1 <= month <= 12:
        log.error("Month out of range: %s", month)
        raise ValueError(f"Month must be between 1 and 12, got {month}")


def get_cash_holding_summary(
    sales: Sequence[data_manager.SaleRecord],
    transactions: Sequence[data_manager.TransactionRecord],
    target_month: int,
    target_year: int,
    *,
    cash_holders: Sequence[str] = CASH_HOLDERS,
) -> CashHoldingSummary:
    """Compute each custodian's held cash for one calendar month.

    Balances start at zero in the earliest month holding any dated record and
    are replayed month by month up to the target, so ``opening`` reflects the
    full history rather than the target month in isolation. Only the target
    month's rows are returned.

    Args:
        sales (Sequence[SaleRecord]): Every known sale, in any order.
        transactions (Sequence[TransactionRecord]): Every known expense and
            payout, in any order.
        target_month (int): Calendar month, 1 for January through 12.
        target_year (int): Four digit year.
        cash_holders (Sequence[str]): Canonical custodian names, listed first
            and always present even without activity.

    Returns:
        CashHoldingSummary: Rows in display order plus a ``"Total"`` row. When
            there is no dated data, or the target month precedes it, every row
            is zero.

    Raises:
        ValueError: If ``target_month`` is outside 1..12.
    """

    _require_month(target_month)
    holders = collect_holders(sales, transactions, cash_holders)
    target: MonthKey = (target_year, target_month)

    start = earliest_month(sales, transactions)
    if start is None:
        log.debug("No dated records; returning empty cash holding summary for %04d-%02d", target_year, target_month)
        return _zero_summary(holders)
    if target < start:
        log.debug(
            "Target %04d-%02d precedes first data month %04d-%02d; returning zero balances",
            target_year,
            target_month,
            *start,
        )
        return _zero_summary(holders)

    collected, expenses = bucket_contributions(sales, transactions)
    running = {name: ZERO for name in holders}
    rows: List[CashHoldingRow] = []
    for key in iter_month_keys(start, target):
        rows = _replay_month(holders, running, collected.get(key, {}), expenses.get(key, {}))

    log.debug(
        "Replayed cash holdings from %04d-%02d to %04d-%02d for %d holders",
        *start,
        target_year,
        target_month,
        len(holders),
    )
    return _summarize(rows)


def get_cash_holding_year_snapshot(
    sales: Sequence[data_manager.SaleRecord],
    transactions: Sequence[data_manager.TransactionRecord],
    target_year: int,
    *,
    cash_holders: Sequence[str] = CASH_HOLDERS,
) -> CashHoldingSummary:
    """Compute each custodian's held cash across a whole calendar year.

    The same monthly replay as :func:`get_cash_holding_summary` runs from the
    earliest data month (or January of ``target_year`` when that comes first)
    through December. ``opening`` is the balance carried into January,
    ``collected`` and ``expenses`` are twelve-month sums, and ``closing`` is the
    balance after December.

    Returns:
        CashHoldingSummary: Rows in display order plus a ``"Total"`` row.
    """

    holders = collect_holders(sales, transactions, cash_holders)
    data_start = earliest_month(sales, transactions)
    if data_start is None:
        log.debug("No dated records; returning empty cash holding snapshot for %04d", target_year)
        return _zero_summary(holders)

    january: MonthKey = (target_year, 1)
    december: MonthKey = (target_year, 12)
    start = min(data_start, january)

    collected, expenses = bucket_contributions(sales, transactions)
    running = {name: ZERO for name in holders}
    opening: Dict[str, Decimal] = {}
    year_collected = {name: ZERO for name in holders}
    year_expenses = {name: ZERO for name in holders}

    for key in iter_month_keys(start, december):
        if key == january:
            opening = dict(running)
        month_rows = _replay_month(holders, running, collected.get(key, {}), expenses.get(key, {}))
        if key >= january:
            for row in month_rows:
                year_collected[row.name] += row.collected
                year_expenses[row.name] += row.expenses

    rows = [
        CashHoldingRow(
            name=name,
            opening=opening[name],
            collected=year_collected[name],
            expenses=year_expenses[name],
            closing=running[name],
        )
        for name in holders
    ]
    log.debug("Built cash holding snapshot for %04d across %d holders", target_year, len(holders))
    return _summarize(rows)


__all__ = [
    "CashHoldingRow",
    "CashHoldingSummary",
    "MonthKey",
    "as_amount",
    "bucket_contributions",
    "build_totals",
    "collect_holders",
    "earliest_month",
    "get_cash_holding_summary",
    "get_cash_holding_year_snapshot",
    "is_cash_expense",
    "iter_month_keys",
    "month_key",
    "next_month_key",
    "normalize_holder",
    "order_holders",
]
