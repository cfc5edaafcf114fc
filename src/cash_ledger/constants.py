"""Enumerations and fixed names shared across the cash ledger modules.

The data layer, the business layer, the rollup engine and the CLI all read
their identifiers from here so a renamed sheet or a new custodian only has to
change in one place.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# People who physically hold the business's cash, in display order.
CASH_HOLDERS: tuple[str, ...] = (
    "Vamshi",
    "Raghu",
    "Naresh",
    "Nikki",
    "Meenu",
    "Pradeep",
)

UNASSIGNED_HOLDER = "Unassigned"
TOTAL_ROW_NAME = "Total"
PAYOUT_CATEGORY = "Payout"


class TransactionKind(str, Enum):
    """Enumerate the ways money can leave the business."""

    EXPENSE = "expense"
    PAYOUT = "payout"


class PaymentMethod(str, Enum):
    """Enumerate how a transaction was paid."""

    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    SALES = "Sales"
    TRANSACTIONS = "Transactions"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "CASH_HOLDERS",
    "UNASSIGNED_HOLDER",
    "TOTAL_ROW_NAME",
    "PAYOUT_CATEGORY",
    "TransactionKind",
    "PaymentMethod",
    "SheetName",
]
