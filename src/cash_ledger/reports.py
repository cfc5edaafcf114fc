"""Monthly income and outflow report."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from . import data_manager, log
from .cash_holding import ZERO, as_amount, month_key
from .constants import TransactionKind


@dataclass(frozen=True)
class MonthlyReport:
    """Income, expenses and payouts for one calendar month."""

    month: int
    month_name: str
    year: int
    total_income: Decimal
    total_expenses: Decimal
    total_payouts: Decimal
    net_cash: Decimal
    square_sales: Decimal
    unreported_cash: Decimal


def generate_monthly_report(
    sales: Sequence[data_manager.SaleRecord],
    transactions: Sequence[data_manager.TransactionRecord],
    month: int,
    year: int,
) -> MonthlyReport:
    """Summarize the sales and transactions dated within one month.

    Income is the register (``gross_cash_sales``) total plus the cash
    collected off the books. Every expense counts toward ``total_expenses``
    whatever its payment method; payouts are reported on their own line.
    Records without a usable date are ignored.

    Args:
        sales (Sequence[SaleRecord]): Every known sale.
        transactions (Sequence[TransactionRecord]): Every known expense and
            payout.
        month (int): Calendar month, 1 for January through 12.
        year (int): Four digit year.

    Returns:
        MonthlyReport: All-zero when nothing falls within the month.

    Raises:
        ValueError: If ``month`` is outside 1..12.
    """

    if not 1 <= month <= 12:
        log.error("Month out of range: %s", month)
        raise ValueError(f"Month must be between 1 and 12, got {month}")

    target = (year, month)
    square_sales = unreported_cash = ZERO
    for sale in sales:
        if month_key(sale.sale_date) != target:
            continue
        square_sales += as_amount(sale.gross_cash_sales)
        unreported_cash += as_amount(sale.cash_collected)

    total_expenses = total_payouts = ZERO
    for transaction in transactions:
        if month_key(transaction.transaction_date) != target:
            continue
        if transaction.kind == TransactionKind.EXPENSE.value:
            total_expenses += as_amount(transaction.amount)
        elif transaction.kind == TransactionKind.PAYOUT.value:
            total_payouts += as_amount(transaction.amount)

    total_income = square_sales + unreported_cash
    net_cash = total_income - total_expenses - total_payouts
    log.debug(
        "Monthly report %04d-%02d: income=%s expenses=%s payouts=%s net=%s",
        year,
        month,
        total_income,
        total_expenses,
        total_payouts,
        net_cash,
    )
    return MonthlyReport(
        month=month,
        month_name=calendar.month_name[month],
        year=year,
        total_income=total_income,
        total_expenses=total_expenses,
        total_payouts=total_payouts,
        net_cash=net_cash,
        square_sales=square_sales,
        unreported_cash=unreported_cash,
    )
