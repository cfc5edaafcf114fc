"""Command-line entry points for the cash ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing plain-text tables for the reporting commands.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, TextIO

from . import core_logic, log, set_console_level
from .cash_holding import CashHoldingSummary
from .constants import PaymentMethod, TransactionKind
from .reports import MonthlyReport


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    persists: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-cli",
        description="Command-line tools for the cash ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Also print informational log messages to stderr.",
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
    """Declare mutating CLI commands such as sales and expenses."""
    specs = {
        "sale": register_sale_command(subparsers),
        "expense": register_expense_command(subparsers),
        "payout": register_payout_command(subparsers),
        "edit-sale": register_edit_sale_command(subparsers),
        "edit-transaction": register_edit_transaction_command(subparsers),
        "delete-sale": register_delete_sale_command(subparsers),
        "delete-transaction": register_delete_transaction_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "sales": register_sales_command(subparsers),
        "transactions": register_transactions_command(subparsers),
        "report": register_report_command(subparsers),
        "cash-holding": register_cash_holding_command(subparsers),
        "cash-holding-year": register_cash_holding_year_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_month_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--month", type=int, required=True, choices=range(1, 13), metavar="1-12")
    parser.add_argument("--year", type=int, required=True)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record one day's sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", required=True, help="Sale date as YYYY-MM-DD.")
        parser.add_argument("--gross-cash-sales", required=True)
        parser.add_argument("--cash-collected", required=True)
        parser.add_argument("--cash-holder", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, persists=True)


def register_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``expense``."""
    name = "expense"
    help_text = "Record an expense."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", required=True, help="Expense date as YYYY-MM-DD.")
        parser.add_argument("--category", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--spent-by", default=None)
        parser.add_argument("--description", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_expense, persists=True)


def register_payout_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``payout``."""
    name = "payout"
    help_text = "Record a cash payout to a person."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", required=True, help="Payout date as YYYY-MM-DD.")
        parser.add_argument("--payee", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--purpose", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_payout, persists=True)


def register_edit_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-sale``."""
    name = "edit-sale"
    help_text = "Change fields of a recorded sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.add_argument("--date", default=None, help="New sale date as YYYY-MM-DD.")
        parser.add_argument("--gross-cash-sales", default=None)
        parser.add_argument("--cash-collected", default=None)
        parser.add_argument("--cash-holder", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_sale, persists=True)


def register_edit_transaction_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-transaction``."""
    name = "edit-transaction"
    help_text = "Change fields of a recorded expense or payout."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.add_argument("--date", default=None, help="New transaction date as YYYY-MM-DD.")
        parser.add_argument("--category", default=None)
        parser.add_argument("--amount", default=None)
        parser.add_argument("--payment-method", choices=[member.value for member in PaymentMethod], default=None)
        parser.add_argument("--spent-by", default=None)
        parser.add_argument("--payee", default=None)
        parser.add_argument("--purpose", default=None)
        parser.add_argument("--description", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_edit_transaction,
        persists=True,
    )


def register_delete_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-sale``."""
    name = "delete-sale"
    help_text = "Delete a recorded sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_sale, persists=True)


def register_delete_transaction_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-transaction``."""
    name = "delete-transaction"
    help_text = "Delete a recorded expense or payout."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_delete_transaction,
        persists=True,
    )


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "List recorded sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_report)


def register_transactions_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``transactions``."""
    name = "transactions"
    help_text = "List recorded expenses and payouts."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--kind", choices=[member.value for member in TransactionKind], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_transactions_report)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Display income, expenses, and payouts for a month."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_month_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_monthly_report)


def register_cash_holding_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cash-holding``."""
    name = "cash-holding"
    help_text = "Display the cash each holder is responsible for in a month."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_month_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cash_holding_report)


def register_cash_holding_year_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cash-holding-year``."""
    name = "cash-holding-year"
    help_text = "Display each holder's January opening, yearly movement, and December closing."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--year", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cash_holding_year_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
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


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        sale_date=date.fromisoformat(args.date),
        gross_cash_sales=Decimal(args.gross_cash_sales),
        cash_collected=Decimal(args.cash_collected),
        cash_holder=args.cash_holder,
        notes=args.notes,
    )


def translate_expense(args: argparse.Namespace) -> core_logic.ExpenseCommand:
    """Translate CLI args into an expense command object."""
    return core_logic.ExpenseCommand(
        expense_date=date.fromisoformat(args.date),
        category=args.category,
        amount=Decimal(args.amount),
        payment_method=PaymentMethod(args.payment_method),
        spent_by=args.spent_by,
        description=args.description,
        notes=args.notes,
    )


def translate_payout(args: argparse.Namespace) -> core_logic.PayoutCommand:
    """Translate CLI args into a payout command object."""
    return core_logic.PayoutCommand(
        payout_date=date.fromisoformat(args.date),
        payee_name=args.payee,
        amount=Decimal(args.amount),
        purpose=args.purpose,
        notes=args.notes,
    )


def translate_sale_changes(args: argparse.Namespace) -> Dict[str, object]:
    """Collect the sale fields given on the command line.

    Options left out are not part of the mapping, so the stored values stay
    as they are.
    """
    changes: Dict[str, object] = {}
    if args.date is not None:
        changes["sale_date"] = date.fromisoformat(args.date)
    if args.gross_cash_sales is not None:
        changes["gross_cash_sales"] = Decimal(args.gross_cash_sales)
    if args.cash_collected is not None:
        changes["cash_collected"] = Decimal(args.cash_collected)
    for option, field in (("cash_holder", "cash_holder"), ("notes", "notes")):
        value = getattr(args, option)
        if value is not None:
            changes[field] = value
    return changes


def translate_transaction_changes(args: argparse.Namespace) -> Dict[str, object]:
    """Collect the expense or payout fields given on the command line."""
    changes: Dict[str, object] = {}
    if args.date is not None:
        changes["transaction_date"] = date.fromisoformat(args.date)
    if args.amount is not None:
        changes["amount"] = Decimal(args.amount)
    if args.payment_method is not None:
        changes["payment_method"] = PaymentMethod(args.payment_method)
    text_options = (
        ("category", "category"),
        ("spent_by", "spent_by"),
        ("payee", "payee_name"),
        ("purpose", "purpose"),
        ("description", "description"),
        ("notes", "notes"),
    )
    for option, field in text_options:
        value = getattr(args, option)
        if value is not None:
            changes[field] = value
    return changes


def format_money(amount: Decimal) -> str:
    """Render an amount with thousands separators and two decimals."""
    return f"{amount:,.2f}"


def render_table(headers: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    """Lay out ``rows`` as left-aligned first column, right-aligned others."""
    materialized = [list(headers), *[list(row) for row in rows]]
    widths = [max(len(row[index]) for row in materialized) for index in range(len(headers))]
    lines = []
    for row in materialized:
        cells = [
            cell.ljust(widths[index]) if index == 0 else cell.rjust(widths[index])
            for index, cell in enumerate(row)
        ]
        lines.append("  ".join(cells).rstrip())
    lines.insert(1, "  ".join("-" * width for width in widths))
    return "\n".join(lines)


def render_cash_holding(summary: CashHoldingSummary) -> str:
    """Render a cash-holding summary including its ``Total`` row."""
    body = [
        [
            row.name,
            format_money(row.opening),
            format_money(row.collected),
            format_money(row.expenses),
            format_money(row.closing),
        ]
        for row in (*summary.rows, summary.totals)
    ]
    return render_table(["Holder", "Opening", "Collected", "Expenses", "Closing"], body)


def render_monthly_report(report: MonthlyReport) -> str:
    """Render the monthly report as a two-column table."""
    body = [
        ["Square sales", format_money(report.square_sales)],
        ["Unreported cash", format_money(report.unreported_cash)],
        ["Total income", format_money(report.total_income)],
        ["Expenses", format_money(report.total_expenses)],
        ["Payouts", format_money(report.total_payouts)],
        ["Net cash", format_money(report.net_cash)],
    ]
    return render_table([f"{report.month_name} {report.year}", "Amount"], body)


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    record = core_logic.record_sale(context, translate_sale(args))
    print(record.sale_id)
    return 0


def run_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the expense workflow via the BLL."""
    record = core_logic.record_expense(context, translate_expense(args))
    print(record.transaction_id)
    return 0


def run_payout(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the payout workflow via the BLL."""
    record = core_logic.record_payout(context, translate_payout(args))
    print(record.transaction_id)
    return 0


def run_edit_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale edit workflow via the BLL."""
    record = core_logic.update_sale(context, args.sale_id, translate_sale_changes(args))
    print(record.sale_id)
    return 0


def run_edit_transaction(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction edit workflow via the BLL."""
    record = core_logic.update_transaction(context, args.transaction_id, translate_transaction_changes(args))
    print(record.transaction_id)
    return 0


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale deletion workflow via the BLL."""
    core_logic.delete_sale(context, args.sale_id)
    return 0


def run_delete_transaction(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction deletion workflow via the BLL."""
    core_logic.delete_transaction(context, args.transaction_id)
    return 0


def run_sales_report(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Print every recorded sale."""
    body = [
        [
            sale.sale_id,
            sale.sale_date.isoformat() if sale.sale_date else "?",
            format_money(sale.gross_cash_sales),
            format_money(sale.cash_collected),
            sale.cash_holder,
        ]
        for sale in core_logic.list_sales(context)
    ]
    print(render_table(["SaleID", "Date", "Gross", "Cash", "Holder"], body), file=out)
    return 0


def run_transactions_report(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Print recorded expenses and payouts, optionally one kind only."""
    kind = TransactionKind(args.kind) if getattr(args, "kind", None) else None
    body = [
        [
            transaction.transaction_id,
            transaction.transaction_date.isoformat() if transaction.transaction_date else "?",
            transaction.kind,
            transaction.category,
            transaction.payment_method,
            transaction.spent_by or transaction.payee_name or "",
            format_money(transaction.amount),
        ]
        for transaction in core_logic.list_transactions(context, kind=kind)
    ]
    headers = ["TransactionID", "Date", "Kind", "Category", "Method", "Person", "Amount"]
    print(render_table(headers, body), file=out)
    return 0


def run_monthly_report(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Print the income and outflow report for a month."""
    report = core_logic.monthly_report(context, args.month, args.year)
    print(render_monthly_report(report), file=out)
    return 0


def run_cash_holding_report(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Print the per-holder cash table for a month."""
    summary = core_logic.cash_holding_summary(context, args.month, args.year)
    print(render_cash_holding(summary), file=out)
    return 0


def run_cash_holding_year_report(context: core_logic.RuntimeContext, args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Print the per-holder cash table for a whole year."""
    summary = core_logic.cash_holding_year_snapshot(context, args.year)
    print(render_cash_holding(summary), file=out)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
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
    if getattr(args, "verbose", False):
        set_console_level(logging.INFO)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].persists:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
