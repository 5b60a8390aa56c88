import threading

import pytest

from nexus.core.errors import InsufficientFunds, UnknownWallet
from nexus.wallet.ledger import WalletLedger


def test_reserve_then_release_restores_balance():
    ledger = WalletLedger({"DEMO": 1000.0})
    assert ledger.reserve_margin("DEMO", 200.0) == 800.0
    assert ledger.release_margin("DEMO", 200.0, 0.0) == 1000.0


def test_release_applies_profit_once():
    ledger = WalletLedger({"DEMO": 1000.0})
    ledger.reserve_margin("DEMO", 200.0)
    assert ledger.release_margin("DEMO", 200.0, -10.0) == pytest.approx(990.0)


def test_reserve_more_than_balance_is_rejected_without_partial_debit():
    ledger = WalletLedger({"DEMO": 100.0})
    with pytest.raises(InsufficientFunds) as ei:
        ledger.reserve_margin("DEMO", 100.01)
    assert ei.value.details["margin_required"] == 100.01
    assert ledger.balance("DEMO") == 100.0


def test_reserve_exact_balance_is_allowed():
    ledger = WalletLedger({"DEMO": 100.0})
    assert ledger.reserve_margin("DEMO", 100.0) == 0.0


def test_non_positive_margin_is_invalid():
    ledger = WalletLedger({"DEMO": 100.0})
    with pytest.raises(ValueError):
        ledger.reserve_margin("DEMO", 0)


def test_unknown_wallet():
    ledger = WalletLedger({"DEMO": 100.0})
    with pytest.raises(UnknownWallet):
        ledger.balance("PAPER")
    with pytest.raises(UnknownWallet):
        ledger.reserve_margin("PAPER", 1.0)


def test_wallet_ids_are_case_insensitive():
    ledger = WalletLedger({"demo": 50.0, "LIVE": 0.0})
    assert "DEMO" in ledger
    assert "live" in ledger
    assert ledger.snapshot() == {"DEMO": 50.0, "LIVE": 0.0}


def test_negative_initial_balance_rejected():
    with pytest.raises(ValueError):
        WalletLedger({"DEMO": -1.0})


def test_release_books_loss_beyond_margin():
    ledger = WalletLedger({"DEMO": 100.0})
    ledger.reserve_margin("DEMO", 100.0)
    # short squeezed past its margin
    assert ledger.release_margin("DEMO", 100.0, -150.0) == -50.0
    assert ledger.snapshot() == {"DEMO": -50.0}

    with pytest.raises(InsufficientFunds):
        ledger.reserve_margin("DEMO", 1.0)


def test_concurrent_reservations_never_overdraw():
    ledger = WalletLedger({"DEMO": 1000.0})
    ok = []
    rejected = []

    def worker():
        try:
            ledger.reserve_margin("DEMO", 150.0)
            ok.append(1)
        except InsufficientFunds:
            rejected.append(1)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(ok) == 6
    assert len(rejected) == 4
    assert ledger.balance("DEMO") == pytest.approx(100.0)
