# nexus/wallet/ledger.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Mapping

from nexus.core.errors import InsufficientFunds, UnknownWallet

log = logging.getLogger("nexus.wallet")


@dataclass
class Wallet:
    wallet_id: str
    balance: float = 0.0


class WalletLedger:
    """
    Named balance pools (DEMO / LIVE).

    Only reserve_margin() and release_margin() mutate a balance, and both do so
    under one lock so a tick closing positions and a manual open can never
    interleave a read-modify-write on the same wallet.
    """

    def __init__(self, balances: Mapping[str, float]):
        self._lock = threading.Lock()
        self._wallets: Dict[str, Wallet] = {}
        for wallet_id, balance in balances.items():
            if float(balance) < 0:
                raise ValueError(f"initial balance for {wallet_id} must be >= 0")
            wid = str(wallet_id).upper()
            self._wallets[wid] = Wallet(wallet_id=wid, balance=float(balance))

    def _get(self, wallet_id: str) -> Wallet:
        wallet = self._wallets.get((wallet_id or "").upper())
        if wallet is None:
            raise UnknownWallet(f"unknown wallet {wallet_id!r}", {"wallet_id": wallet_id})
        return wallet

    # ---------------- READ-ONLY ----------------

    def balance(self, wallet_id: str) -> float:
        with self._lock:
            return self._get(wallet_id).balance

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return {w.wallet_id: w.balance for w in self._wallets.values()}

    def __contains__(self, wallet_id: object) -> bool:
        return isinstance(wallet_id, str) and wallet_id.upper() in self._wallets

    # ---------------- MUTATIONS ----------------

    def reserve_margin(self, wallet_id: str, amount: float) -> float:
        """Debit `amount`; returns the new balance. No partial debit."""
        amount = float(amount)
        if amount <= 0:
            raise ValueError("margin amount must be > 0")

        with self._lock:
            wallet = self._get(wallet_id)
            if amount > wallet.balance:
                raise InsufficientFunds(
                    "margin exceeds available balance",
                    {
                        "wallet_id": wallet.wallet_id,
                        "balance": wallet.balance,
                        "margin_required": amount,
                    },
                )
            wallet.balance -= amount
            return wallet.balance

    def release_margin(self, wallet_id: str, amount: float, profit: float) -> float:
        """
        Credit margin + realized profit (profit may be negative). The full loss
        is always booked: a SHORT gapping past its margin can leave the pool
        negative, and reserve_margin() then rejects every open until it recovers.
        """
        credit = float(amount) + float(profit)

        with self._lock:
            wallet = self._get(wallet_id)
            wallet.balance += credit
            if wallet.balance < 0:
                log.warning(
                    "wallet %s overdrawn to %.8f after release (margin %.8f, profit %.8f)",
                    wallet.wallet_id,
                    wallet.balance,
                    float(amount),
                    float(profit),
                )
            return wallet.balance
