"""Tests for the maintenance CLI."""

import json

from click.testing import CliRunner
from cryptography.fernet import Fernet

from safetrust.cli import cli


def test_generate_key_is_valid_fernet_key() -> None:
    result = CliRunner().invoke(cli, ["mfa", "generate-key"])

    assert result.exit_code == 0
    Fernet(result.output.strip().encode())


def test_offline_status_on_empty_store(tmp_path) -> None:
    db_path = str(tmp_path / "cli.db")

    result = CliRunner().invoke(cli, ["offline", "status", "--db", db_path])

    assert result.exit_code == 0, result.output
    status = json.loads(result.output)
    assert status["pending_actions"] == 0
    assert status["is_syncing"] is False


def test_offline_list_and_purge(tmp_path) -> None:
    db_path = str(tmp_path / "cli.db")
    runner = CliRunner()

    listed = runner.invoke(cli, ["offline", "list", "--db", db_path, "--status", "PENDING"])
    purged = runner.invoke(cli, ["offline", "purge", "--db", db_path])

    assert listed.exit_code == 0, listed.output
    assert json.loads(listed.output) == []
    assert purged.exit_code == 0
    assert "Purged 0 completed actions" in purged.output
