"""
Tests for the provisioning CLI.

WHY: These commands run outside the API, so their exit codes and messages are
the only feedback an operator gets.
"""

from unittest.mock import AsyncMock, patch

import pytest

from memodams.cli import build_parser, main
from memodams.core.exceptions import ResourceNotFoundError
from memodams.services.admin_grant import AdminGrantResult


def result(already_admin: bool = False) -> AdminGrantResult:
    return AdminGrantResult(
        target_uid="uid-1",
        target_email="ops@example.com",
        granted_via="seed",
        already_admin=already_admin,
    )


class TestParser:
    def test_seed_admin_args(self):
        args = build_parser().parse_args(["seed-admin", "ops@example.com"])

        assert args.command == "seed-admin"
        assert args.email == "ops@example.com"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestSeedAdmin:
    def test_grant(self, capsys):
        with patch("memodams.cli.seed_admin", AsyncMock(return_value=result())) as seed:
            code = main(["seed-admin", "ops@example.com"])

        assert code == 0
        seed.assert_awaited_once_with("ops@example.com")
        assert "is now an admin" in capsys.readouterr().out

    def test_already_admin(self, capsys):
        with patch("memodams.cli.seed_admin", AsyncMock(return_value=result(already_admin=True))):
            code = main(["seed-admin", "ops@example.com"])

        assert code == 0
        assert "already an admin" in capsys.readouterr().out

    def test_unknown_account(self, capsys):
        error = ResourceNotFoundError(message="No account registered for x@example.com")
        with patch("memodams.cli.seed_admin", AsyncMock(side_effect=error)):
            code = main(["seed-admin", "x@example.com"])

        assert code == 1
        assert "No account registered" in capsys.readouterr().err


class TestPurgeExpired:
    def test_default_days(self):
        args = build_parser().parse_args(["purge-expired"])

        assert args.days == 7

    def test_reports_counts(self, capsys):
        with patch("memodams.cli.purge_expired", AsyncMock(return_value=(3, 1))) as purge:
            code = main(["purge-expired", "--days", "30"])

        assert code == 0
        purge.assert_awaited_once_with(30)
        assert "deleted 3 tokens and 1 challenges" in capsys.readouterr().out
