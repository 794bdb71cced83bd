from __future__ import annotations

import json

import pytest

from ordswap import cli
from ordswap.coin_selection import SelectionError
from ordswap.config import ConfigurationError
from ordswap.model import OutPoint, UnspentOutput
from ordswap.separator import SeparatorProvision
from ordswap.trade import TradeAbandoned, TradeCompleted, TradeFailed

from stubs import BUYER_ADDRESS

INSCRIPTION = OutPoint("ab" * 32, 0)


class FakeConfig:
    inscription = INSCRIPTION
    oracle_url = "https://ord.example"


class FakeCoordinator:
    outcome = TradeCompleted(txid="cd" * 32, psbt="cHNidP8=")
    runs: list[bool] = []

    @classmethod
    def from_config(cls, config):
        return cls()

    def run(self, *, broadcast=True):
        FakeCoordinator.runs.append(broadcast)
        return FakeCoordinator.outcome

    def provision_separator(self, *, allow_create=True):
        return SeparatorProvision(
            separator=UnspentOutput(txid="ef" * 32, vout=0, address=BUYER_ADDRESS, value=1000)
        )


@pytest.fixture(autouse=True)
def patch_cli(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr("ordswap.config._CONFIG_PATH_OVERRIDE", None)
    monkeypatch.setattr(cli, "load_trade_config", lambda: FakeConfig())
    monkeypatch.setattr(cli, "TradeCoordinator", FakeCoordinator)
    FakeCoordinator.runs = []
    yield


def test_trade_success_exits_cleanly(capsys: pytest.CaptureFixture[str]) -> None:
    cli.main(["trade"])

    assert FakeCoordinator.runs == [True]
    assert f"Trade broadcast: {'cd' * 32}" in capsys.readouterr().out


def test_trade_dry_run_json(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(
        FakeCoordinator, "outcome", TradeCompleted(txid="cd" * 32, psbt="cHNidP8=", broadcast=False)
    )

    cli.main(["trade", "--dry-run", "--json"])

    assert FakeCoordinator.runs == [False]
    payload = json.loads(capsys.readouterr().out)
    assert payload["status"] == "completed"
    assert payload["broadcast"] is False


def test_abandoned_trade_exits_with_code_2(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setattr(FakeCoordinator, "outcome", TradeAbandoned(reason="buyer is broke"))

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["trade"])

    assert excinfo.value.code == cli.EXIT_ABANDONED
    assert "Trade abandoned: buyer is broke" in capsys.readouterr().out


def test_failed_trade_reports_separator(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setattr(
        FakeCoordinator,
        "outcome",
        TradeFailed(stage="settle", cause="rejected", separator_txid="12" * 32),
    )

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["trade"])

    out = capsys.readouterr().out
    assert excinfo.value.code == cli.EXIT_FAILED
    assert "Trade failed during settle: rejected" in out
    assert f"Separator transaction broadcast: {'12' * 32}" in out


def test_configuration_errors_exit_with_message(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    def broken():
        raise ConfigurationError("BUYER_ADDRESS missing")

    monkeypatch.setattr(cli, "load_trade_config", broken)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["trade"])

    assert excinfo.value.code == 1
    assert "error: BUYER_ADDRESS missing" in capsys.readouterr().err


def test_classify_uses_oracle(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    class FakeOracle:
        def __init__(self, base_url):
            assert base_url == "https://ord.example"

        def is_inscription(self, outpoint):
            return outpoint == INSCRIPTION

    monkeypatch.setattr(cli, "InscriptionOracle", FakeOracle)

    cli.main(["classify", str(INSCRIPTION)])

    assert capsys.readouterr().out.strip() == f"{INSCRIPTION}: inscription"


def test_classify_rejects_malformed_outpoint(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["classify", "nope"])

    assert excinfo.value.code == 2


def test_separator_command_reports_existing(capsys) -> None:
    cli.main(["separator", "--dry-run"])

    assert f"Existing separator {'ef' * 32}:0 (1000 sats)" in capsys.readouterr().out


def test_separator_command_reports_unreadable_wallet(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    def unreadable(self, *, allow_create=True):
        raise SelectionError("Buyer wallet returned an unreadable listunspent entry: 'amount'")

    monkeypatch.setattr(FakeCoordinator, "provision_separator", unreadable)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["separator"])

    assert excinfo.value.code == 1
    assert "unreadable listunspent entry" in capsys.readouterr().err
