"""End-to-end tests for the command line and MCP tools."""

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from fundsplit import mcp_server
from fundsplit.cli import app
from fundsplit.config import Settings
from fundsplit.db import Database
from fundsplit.ledger.service import LedgerService
from fundsplit.models import ParsedTransaction

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the CLI at a temporary database."""
    path = tmp_path / "cli.db"
    monkeypatch.setenv("DATABASE_PATH", str(path))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return path


@pytest.fixture
def fund_id(db_path):
    """Three members and an active fund created through the CLI."""
    for member_id, name in [("minh", "Minh"), ("linh", "Linh"), ("huy", "Huy")]:
        result = runner.invoke(app, ["member", "add", member_id, name])
        assert result.exit_code == 0, result.output

    result = runner.invoke(
        app, ["fund", "create", "Da Lat trip", "--creator", "minh", "-m", "linh", "-m", "huy"]
    )
    assert result.exit_code == 0, result.output

    db = Database(db_path)
    try:
        return db.get_active_fund_id()
    finally:
        db.close()


def stored_transactions(db_path, fund_id):
    db = Database(db_path)
    try:
        return db.list_transactions(fund_id)
    finally:
        db.close()


class TestCli:
    """Tests for the fundsplit command."""

    def test_add_even_split(self, db_path, fund_id):
        result = runner.invoke(app, ["tx", "add", "Hotpot", "300k", "--payer", "minh"])

        assert result.exit_code == 0, result.output
        assert "Recorded transaction" in result.output
        [tx] = stored_transactions(db_path, fund_id)
        assert tx.total_amount == 300_000
        assert {s.member_id: s.amount for s in tx.splits} == {
            "minh": 200_000,
            "linh": -100_000,
            "huy": -100_000,
        }

    def test_add_unbalanced_custom_split_rejected(self, db_path, fund_id):
        result = runner.invoke(
            app,
            [
                "tx", "add", "Taxi", "90000", "--payer", "minh",
                "--custom", "minh=90000", "--custom", "linh=-45000",
            ],
        )

        assert result.exit_code == 1
        assert "Transaction rejected" in result.output
        assert stored_transactions(db_path, fund_id) == []

    def test_invalid_amount(self, fund_id):
        result = runner.invoke(app, ["tx", "add", "Hotpot", "lots", "--payer", "minh"])
        assert result.exit_code == 1

    def test_bad_percent_is_usage_error(self, db_path, fund_id):
        result = runner.invoke(
            app,
            [
                "tx", "add", "Villa", "300000", "--payer", "minh",
                "--percent", "minh=abc", "--percent", "linh=50",
            ],
        )

        assert result.exit_code == 2
        assert stored_transactions(db_path, fund_id) == []

    def test_bad_custom_amount_is_usage_error(self, db_path, fund_id):
        result = runner.invoke(
            app,
            ["tx", "add", "Taxi", "90000", "--payer", "minh", "--custom", "minh=lots"],
        )

        assert result.exit_code == 2
        assert stored_transactions(db_path, fund_id) == []

    def test_add_custom_split_with_steps(self, db_path, fund_id):
        result = runner.invoke(
            app,
            [
                "tx", "add", "Boat", "80000", "--payer", "minh",
                "--custom", "minh=60000", "--custom", "linh=-30000", "--custom", "huy=-30000",
                "--step", "minh=2", "--step", "linh=-1", "--step", "huy=-1",
            ],
        )

        assert result.exit_code == 0, result.output
        [tx] = stored_transactions(db_path, fund_id)
        assert {s.member_id: s.amount for s in tx.splits} == {
            "minh": 80_000,
            "linh": -40_000,
            "huy": -40_000,
        }

    def test_step_needs_custom_split(self, db_path, fund_id):
        result = runner.invoke(
            app, ["tx", "add", "Boat", "80000", "--payer", "minh", "--step", "minh=1"]
        )

        assert result.exit_code == 2
        assert stored_transactions(db_path, fund_id) == []

    def test_archive_hides_fund_from_list(self, fund_id):
        result = runner.invoke(app, ["fund", "archive"])
        assert result.exit_code == 0, result.output

        assert "Da Lat trip" not in runner.invoke(app, ["fund", "list"]).output
        assert "Da Lat trip" in runner.invoke(app, ["fund", "list", "--archived"]).output

        runner.invoke(app, ["fund", "archive", fund_id, "--restore"])
        assert "Da Lat trip" in runner.invoke(app, ["fund", "list"]).output

    def test_edit_fund(self, db_path, fund_id):
        result = runner.invoke(
            app, ["fund", "edit", "--name", "Da Lat 2025", "--currency", "usd"]
        )

        assert result.exit_code == 0, result.output
        db = Database(db_path)
        try:
            fund = db.get_fund(fund_id)
        finally:
            db.close()
        assert fund.name == "Da Lat 2025"
        assert fund.currency == "USD"

    def test_edit_currency_after_transactions_fails(self, fund_id):
        runner.invoke(app, ["tx", "add", "Hotpot", "300000", "--payer", "minh"])

        result = runner.invoke(app, ["fund", "edit", "--currency", "USD"])

        assert result.exit_code == 1
        assert "currency" in result.output

    def test_delete_fund(self, db_path, fund_id):
        runner.invoke(app, ["tx", "add", "Hotpot", "300000", "--payer", "minh"])

        result = runner.invoke(app, ["fund", "delete", fund_id, "--yes"])

        assert result.exit_code == 0, result.output
        assert stored_transactions(db_path, fund_id) == []
        assert "No fund given" in runner.invoke(app, ["balances"]).output

    def test_delete_fund_cancelled(self, db_path, fund_id):
        runner.invoke(app, ["tx", "add", "Hotpot", "300000", "--payer", "minh"])

        with patch("fundsplit.cli.confirm", return_value=False):
            result = runner.invoke(app, ["fund", "delete", fund_id])

        assert "Cancelled" in result.output
        assert len(stored_transactions(db_path, fund_id)) == 1

    def test_settle_apply(self, db_path, fund_id):
        runner.invoke(app, ["tx", "add", "Hotpot", "300000", "--payer", "minh"])

        result = runner.invoke(app, ["settle", "--apply", "--yes"])

        assert result.exit_code == 0, result.output
        assert "Recorded 2 payments" in result.output
        assert len(stored_transactions(db_path, fund_id)) == 3

        result = runner.invoke(app, ["settle"])
        assert "settled up" in result.output

    def test_pay_whole_debt(self, db_path, fund_id):
        runner.invoke(app, ["tx", "add", "Hotpot", "300000", "--payer", "minh"])

        result = runner.invoke(app, ["pay", "--from", "linh", "--to", "minh"])

        assert result.exit_code == 0, result.output
        payment = stored_transactions(db_path, fund_id)[-1]
        assert payment.description == "Payment to Minh"
        assert payment.total_amount == 100_000

    def test_parse_without_api_key(self, fund_id):
        result = runner.invoke(app, ["tx", "parse", "hotpot 300k", "--as", "minh"])

        assert result.exit_code == 1
        assert "OPENAI_API_KEY" in result.output

    def test_no_active_fund(self, db_path):
        result = runner.invoke(app, ["balances"])
        assert result.exit_code == 1
        assert "No fund given" in result.output


@pytest.fixture
def mcp_service(tmp_path):
    """Run MCP tools against a fresh service."""
    settings = Settings(openai_api_key="test_openai_key", database_path=tmp_path / "mcp.db")
    db = Database(settings.database_path)
    service = LedgerService(settings, db)
    for member_id, name in [("minh", "Minh"), ("linh", "Linh")]:
        service.add_member(member_id, name)
    with patch.object(mcp_server, "_state", mcp_server.SessionState(service=service, db=db)):
        yield service
    db.close()


class TestMcpTools:
    """Tests for the MCP tool functions."""

    def test_record_even_and_settle(self, mcp_service):
        fund = mcp_service.create_fund("Flat", "minh", ["linh"])

        result = mcp_server.record_even_transaction(fund.id, "Rent", 8_000_000, "minh")
        assert "Transaction recorded" in result

        assert "Linh: (4,000,000 VND)" in mcp_server.show_balances(fund.id)
        assert "Linh pays Minh 4,000,000 VND" in mcp_server.suggest_settlement(fund.id)

    def test_unknown_fund(self, mcp_service):
        assert mcp_server.show_balances("missing").startswith("Error:")

    def test_record_without_draft(self, mcp_service):
        assert "Call parse_transaction first" in mcp_server.record_parsed_transaction()

    def test_parse_then_record(self, mcp_service):
        fund = mcp_service.create_fund("Flat", "minh", ["linh"])
        parsed = ParsedTransaction(
            payer="minh",
            total_amount=50_000,
            splits={"minh": "25000", "linh": "-25000"},
            description="Minh paid 50k for fruit",
        )

        with patch.object(mcp_service, "parse_transaction", return_value=parsed):
            draft_text = mcp_server.parse_transaction(fund.id, "fruit 50k", "minh")

        assert "Call record_parsed_transaction" in draft_text
        assert "Transaction recorded" in mcp_server.record_parsed_transaction()
        assert len(mcp_service.db.list_transactions(fund.id)) == 1

    def test_unbalanced_parse_is_not_recordable(self, mcp_service):
        fund = mcp_service.create_fund("Flat", "minh", ["linh"])
        parsed = ParsedTransaction(
            payer="minh",
            total_amount=50_000,
            splits={"minh": "50000", "linh": "-25000"},
            description="Minh paid 50k for fruit",
        )

        with patch.object(mcp_service, "parse_transaction", return_value=parsed):
            draft_text = mcp_server.parse_transaction(fund.id, "fruit 50k", "minh")

        assert "ERROR [splits]" in draft_text
        assert "Transaction rejected" in mcp_server.record_parsed_transaction()
