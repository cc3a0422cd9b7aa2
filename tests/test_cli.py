"""Tests for the command-line interface."""

import json

import pytest

from merchant_sync.database import SyncStatus
from merchant_sync.sync.cli import EXIT_FATAL, EXIT_OK, EXIT_PARTIAL, create_parser, exit_code_for, main
from merchant_sync.sync.models import SyncResult

from conftest import MERCHANT_ID, make_invoice, make_payment


@pytest.fixture
def database(tmp_path, monkeypatch):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    return url


@pytest.fixture
def configured(database, client_factory):
    """Store credentials for the test merchant through the CLI itself."""
    code = main([
        "set-credentials",
        "--merchant", MERCHANT_ID,
        "--key", "ck_test",
        "--secret", "cs_test",
        "--webhook-secret", "wh",
        "--environment", "sandbox",
    ], client_factory=client_factory)
    assert code == EXIT_OK
    return database


class TestExitCodes:
    def test_success(self):
        assert exit_code_for(SyncResult(merchant_id="m", success=True, status=SyncStatus.COMPLETED)) == EXIT_OK

    def test_partial(self):
        result = SyncResult(merchant_id="m", status=SyncStatus.FAILED, transactions_processed=2, transactions_failed=1)
        assert exit_code_for(result) == EXIT_PARTIAL

    def test_fatal(self):
        assert exit_code_for(SyncResult(merchant_id="m", status=SyncStatus.FAILED)) == EXIT_FATAL


class TestParser:
    def test_transactions_defaults(self):
        args = create_parser().parse_args(["transactions", "--merchant", MERCHANT_ID])
        assert args.count == 100
        assert args.date_filter is None

    @pytest.mark.parametrize("count", ["0", "1001", "many"])
    def test_count_validated(self, count):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["transactions", "-m", MERCHANT_ID, "-n", count])

    def test_page_size_validated(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["invoices", "-m", MERCHANT_ID, "--page-size", "500"])

    def test_no_command(self, capsys):
        assert main([]) == EXIT_PARTIAL
        assert "usage" in capsys.readouterr().out.lower()


class TestCommands:
    """Tests running commands end to end against a fake API."""

    def test_transactions(self, configured, fake_api, client_factory, capsys):
        fake_api.payments = [make_payment(5001, invoice_ids=[9001]), make_payment(5002)]
        fake_api.add_invoice(make_invoice(9001, 1001))
        capsys.readouterr()

        code = main(["transactions", "-m", MERCHANT_ID, "-n", "10"], client_factory=client_factory)

        assert code == EXIT_OK
        summary = json.loads(capsys.readouterr().out)
        assert summary["success"] is True
        assert summary["transactions"]["new"] == 2
        assert summary["invoices"]["new"] == 1
        assert summary["links_created"] == 1

    def test_partial_failure(self, configured, fake_api, client_factory, capsys):
        fake_api.payments = [make_payment(5001), {"id": 5002, "amount": "-1.00"}]

        code = main(["transactions", "-m", MERCHANT_ID], client_factory=client_factory)

        assert code == EXIT_PARTIAL

    def test_unknown_merchant(self, configured, client_factory):
        assert main(["transactions", "-m", "404404"], client_factory=client_factory) == EXIT_FATAL

    def test_invoices(self, configured, fake_api, client_factory, capsys):
        fake_api.add_invoice(make_invoice(9001, 1001))
        capsys.readouterr()

        code = main(["invoices", "-m", MERCHANT_ID, "--page-size", "10"], client_factory=client_factory)

        assert code == EXIT_OK
        assert json.loads(capsys.readouterr().out)["invoices"]["new"] == 1

    def test_logs(self, configured, fake_api, client_factory, capsys):
        main(["transactions", "-m", MERCHANT_ID], client_factory=client_factory)
        capsys.readouterr()

        code = main(["logs", "--limit", "5", "--merchant", MERCHANT_ID])

        assert code == EXIT_OK
        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
        assert len(lines) == 1
        assert lines[0]["sync_type"] == "incremental"
        assert lines[0]["status"] == "completed"
