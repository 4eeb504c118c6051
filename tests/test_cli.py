import pytest
from typer.testing import CliRunner

from wallet_core.cli.app import app

runner = CliRunner()

BOB = "0x000000000000000000000000000000000000dEaD"


@pytest.fixture(autouse=True)
def _in_tmp(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)


def test_tokens_lists_native_asset():
    result = runner.invoke(app, ["tokens", "--chain", "polygon"])
    assert result.exit_code == 0
    assert "POL" in result.output


def test_tokens_unknown_chain():
    result = runner.invoke(app, ["tokens", "--chain", "dogechain"])
    assert result.exit_code == 1
    assert "validation" in result.output


def test_contacts_round_trip():
    result = runner.invoke(app, ["contacts", "add", "Bob", BOB, "--notes", "burn"])
    assert result.exit_code == 0
    contact_id = result.output.split("ID: ")[1].split(")")[0]

    result = runner.invoke(app, ["contacts", "list"])
    assert result.exit_code == 0
    assert "Bob" in result.output

    result = runner.invoke(app, ["contacts", "remove", contact_id])
    assert result.exit_code == 0
    result = runner.invoke(app, ["contacts", "remove", contact_id])
    assert result.exit_code == 1


def test_balance_before_init():
    result = runner.invoke(app, ["balance"])
    assert result.exit_code == 1
    assert "not_initialized" in result.output


def test_balance_all_before_init():
    result = runner.invoke(app, ["balance", "--all"])
    assert result.exit_code == 1
    assert "not_initialized" in result.output
