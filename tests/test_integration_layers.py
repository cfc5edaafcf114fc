"""Integration tests describing the end-to-end cash ledger workflows.

These scenarios exercise the data access layer, the business logic layer and
the CLI together against a real workbook created in a temporary directory.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from cash_ledger import cli, constants, core_logic


def _record_month(context: core_logic.RuntimeContext) -> None:
    """Record the January and February activity used by several scenarios."""

    core_logic.record_sale(
        context,
        core_logic.SaleCommand(date(2024, 1, 10), Decimal("400"), Decimal("100"), cash_holder="Vamshi"),
    )
    core_logic.record_expense(
        context,
        core_logic.ExpenseCommand(
            expense_date=date(2024, 1, 12),
            category="Supplies",
            amount=Decimal("30"),
            payment_method=constants.PaymentMethod.CASH,
            spent_by="Vamshi",
        ),
    )
    core_logic.record_expense(
        context,
        core_logic.ExpenseCommand(
            expense_date=date(2024, 1, 13),
            category="Rent",
            amount=Decimal("900"),
            payment_method=constants.PaymentMethod.BANK_TRANSFER,
        ),
    )
    core_logic.record_payout(
        context,
        core_logic.PayoutCommand(payout_date=date(2024, 1, 20), payee_name="Helper", amount=Decimal("60")),
    )
    core_logic.record_sale(
        context,
        core_logic.SaleCommand(date(2024, 2, 3), Decimal("250"), Decimal("50"), cash_holder="Vamshi"),
    )
    core_logic.record_expense(
        context,
        core_logic.ExpenseCommand(
            expense_date=date(2024, 2, 4),
            category="Supplies",
            amount=Decimal("10"),
            payment_method=constants.PaymentMethod.CASH,
            spent_by="Vamshi",
        ),
    )


def test_cash_holding_survives_persist_and_reload(runtime_context):
    """Balances computed from reloaded rows should match the in-memory ones."""

    context = runtime_context
    _record_month(context)
    before = core_logic.cash_holding_summary(context, 2, 2024)

    # Persist and reload so the scenario mirrors separate CLI invocations.
    core_logic.persist_context(context)
    context = core_logic.refresh_context(context)
    after = core_logic.cash_holding_summary(context, 2, 2024)

    assert after == before
    vamshi = after.row("Vamshi")
    assert (vamshi.opening, vamshi.collected, vamshi.expenses, vamshi.closing) == (
        Decimal("70"),
        Decimal("50"),
        Decimal("10"),
        Decimal("110"),
    )
    assert after.totals.closing == Decimal("110")
    assert after.names == list(constants.CASH_HOLDERS)


def test_year_snapshot_matches_december_after_reload(runtime_context):
    context = runtime_context
    _record_month(context)
    core_logic.persist_context(context)
    context = core_logic.refresh_context(context)

    snapshot = core_logic.cash_holding_year_snapshot(context, 2024)
    december = core_logic.cash_holding_summary(context, 12, 2024)

    assert snapshot.row("Vamshi").collected == Decimal("150")
    assert snapshot.row("Vamshi").expenses == Decimal("40")
    assert snapshot.totals.closing == december.totals.closing == Decimal("110")


def test_monthly_report_reads_stored_transactions(runtime_context):
    context = runtime_context
    _record_month(context)
    core_logic.persist_context(context)
    context = core_logic.refresh_context(context)

    report = core_logic.monthly_report(context, 1, 2024)

    assert report.total_income == Decimal("500")
    assert report.total_expenses == Decimal("930")
    assert report.total_payouts == Decimal("60")
    assert report.net_cash == Decimal("-490")


def test_unsaved_changes_are_discarded_on_refresh(runtime_context):
    context = runtime_context
    core_logic.record_sale(
        context,
        core_logic.SaleCommand(date(2024, 1, 10), Decimal("1"), Decimal("1")),
    )
    context = core_logic.refresh_context(context)
    assert core_logic.list_sales(context) == []


def test_update_and_delete_round_trip(runtime_context):
    context = runtime_context
    sale = core_logic.record_sale(
        context,
        core_logic.SaleCommand(date(2024, 5, 1), Decimal("10"), Decimal("5"), cash_holder="Nikki"),
    )

    updated = core_logic.update_sale(context, sale.sale_id, {"cash_holder": "Meenu"})
    assert updated.cash_holder == "Meenu"
    assert core_logic.cash_holding_summary(context, 5, 2024).row("Meenu").closing == Decimal("5")

    core_logic.delete_sale(context, sale.sale_id)
    core_logic.persist_context(context)
    context = core_logic.refresh_context(context)
    assert core_logic.list_sales(context) == []


def test_custom_cash_holders_from_config(config_factory):
    bundle = config_factory(cash_holders="Ana, Ben")
    context = core_logic.load_runtime_context(bundle.config_path)
    core_logic.record_sale(
        context,
        core_logic.SaleCommand(date(2024, 1, 1), Decimal("0"), Decimal("20"), cash_holder="Vamshi"),
    )

    summary = core_logic.cash_holding_summary(context, 1, 2024)

    assert summary.names == ["Ana", "Ben", "Vamshi"]


# ---------------------------------------------------------------------------
# CLI end to end
# ---------------------------------------------------------------------------


def test_cli_sale_then_cash_holding(config_file, capsys):
    config = str(config_file)
    exit_code = cli.main(
        [
            "--config",
            config,
            "sale",
            "--date",
            "2024-01-10",
            "--gross-cash-sales",
            "400",
            "--cash-collected",
            "100",
            "--cash-holder",
            "Raghu",
        ]
    )
    assert exit_code == 0
    sale_id = capsys.readouterr().out.strip()
    assert sale_id.startswith("S")

    assert cli.main(["--config", config, "cash-holding", "--month", "1", "--year", "2024"]) == 0
    output = capsys.readouterr().out
    raghu_line = next(line for line in output.splitlines() if line.startswith("Raghu"))
    assert raghu_line.split() == ["Raghu", "0.00", "100.00", "0.00", "100.00"]

    context = core_logic.load_runtime_context(config_file)
    assert [sale.sale_id for sale in core_logic.list_sales(context)] == [sale_id]


def test_cli_edit_moves_card_expense_into_cash_holding(config_file, capsys):
    config = str(config_file)
    assert (
        cli.main(
            [
                "--config",
                config,
                "expense",
                "--date",
                "2024-01-12",
                "--category",
                "Supplies",
                "--amount",
                "30",
                "--payment-method",
                "card",
            ]
        )
        == 0
    )
    expense_id = capsys.readouterr().out.strip()

    assert cli.main(["--config", config, "edit-transaction", "--transaction-id", expense_id, "--payment-method", "cash"]) == 0
    assert capsys.readouterr().out.strip() == expense_id

    context = core_logic.load_runtime_context(config_file)
    stored = core_logic.get_transaction(context, expense_id)
    assert stored.payment_method == constants.PaymentMethod.CASH.value
    assert stored.spent_by == "Vamshi"

    assert cli.main(["--config", config, "cash-holding", "--month", "1", "--year", "2024"]) == 0
    names = [line.split()[0] for line in capsys.readouterr().out.splitlines()[2:]]
    assert constants.UNASSIGNED_HOLDER not in names


def test_cli_edit_sale_persists_changes(config_file, capsys):
    config = str(config_file)
    cli.main(
        ["--config", config, "sale", "--date", "2024-03-01", "--gross-cash-sales", "10", "--cash-collected", "5"]
    )
    sale_id = capsys.readouterr().out.strip()

    exit_code = cli.main(
        ["--config", config, "edit-sale", "--sale-id", sale_id, "--cash-collected", "8", "--cash-holder", "Meenu"]
    )
    assert exit_code == 0

    stored = core_logic.get_sale(core_logic.load_runtime_context(config_file), sale_id)
    assert stored.cash_collected == Decimal("8")
    assert stored.cash_holder == "Meenu"
    assert stored.gross_cash_sales == Decimal("10")


def test_cli_edit_without_fields_reports_business_error(config_file, capsys):
    config = str(config_file)
    cli.main(
        ["--config", config, "sale", "--date", "2024-03-01", "--gross-cash-sales", "10", "--cash-collected", "5"]
    )
    sale_id = capsys.readouterr().out.strip()
    assert cli.main(["--config", config, "edit-sale", "--sale-id", sale_id]) == 2


def test_same_timestamp_cannot_record_two_sales(runtime_context):
    moment = datetime(2024, 3, 15, 9, 30, tzinfo=UTC)
    command = core_logic.SaleCommand(date(2024, 3, 15), Decimal("10"), Decimal("5"), timestamp=moment)
    first = core_logic.record_sale(runtime_context, command)

    with pytest.raises(core_logic.BusinessRuleViolation):
        core_logic.record_sale(runtime_context, command)

    assert [sale.sale_id for sale in core_logic.list_sales(runtime_context)] == [first.sale_id]
    core_logic.delete_sale(runtime_context, first.sale_id)
    assert core_logic.list_sales(runtime_context) == []


def test_cli_delete_unknown_transaction_reports_business_error(config_file):
    exit_code = cli.main(["--config", str(config_file), "delete-transaction", "--transaction-id", "E-missing"])
    assert exit_code == 2


def test_cli_missing_config_returns_not_found(tmp_path):
    exit_code = cli.main(["--config", str(tmp_path / "absent.ini"), "sales"])
    assert exit_code == 3


def test_cli_rejects_schema_mismatch(config_factory):
    bundle = config_factory(schema_version="0.1.0")
    exit_code = cli.main(["--config", str(bundle.config_path), "sales"])
    assert exit_code == 1
