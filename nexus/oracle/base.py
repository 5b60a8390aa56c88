from typing import List, Protocol

from nexus.runner.models import Signal


class SignalOracle(Protocol):
    """
    External market-analysis service. May raise OracleUnavailable; the
    engine turns any failure into HOLD with confidence 0.
    """

    def request_signal(
        self,
        price_history: List[float],
        wallet_balance: float,
        risk_tier: str,
        symbol: str,
        sensitivity: str,
    ) -> Signal: ...
