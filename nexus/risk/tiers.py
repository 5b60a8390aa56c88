from __future__ import annotations

from nexus.core.config import Settings, settings
from nexus.core.errors import PolicyViolation
from nexus.runner.models import AccountTier, RiskConfig, RiskTier, Sensitivity


def risk_fraction_for(tier: RiskTier, cfg: Settings = settings) -> float:
    if tier == RiskTier.LOW:
        return float(cfg.RISK_FRACTION_LOW)
    if tier == RiskTier.HIGH:
        return float(cfg.RISK_FRACTION_HIGH)
    return float(cfg.RISK_FRACTION_MEDIUM)


def max_positions_per_symbol(tier: AccountTier, cfg: Settings = settings) -> int:
    if tier == AccountTier.PRO:
        return int(cfg.PRO_MAX_POSITIONS_PER_SYMBOL)
    return int(cfg.FREE_MAX_POSITIONS_PER_SYMBOL)


def confidence_threshold(sensitivity: Sensitivity, cfg: Settings = settings) -> float:
    # HIGH sensitivity accepts earlier, less confirmed entries
    if sensitivity == Sensitivity.HIGH:
        return float(cfg.HIGH_SENSITIVITY_THRESHOLD)
    return float(cfg.CONFIDENCE_THRESHOLD)


def validate_risk_config(risk: RiskConfig) -> None:
    """HIGH risk is reserved for PRO accounts. Raises PolicyViolation."""
    if risk.risk_tier == RiskTier.HIGH and risk.account_tier != AccountTier.PRO:
        raise PolicyViolation(
            "high_risk_requires_pro",
            {"risk_tier": risk.risk_tier.value, "account_tier": risk.account_tier.value},
        )


def risk_config_from_settings(cfg: Settings = settings) -> RiskConfig:
    return RiskConfig(
        risk_tier=RiskTier(cfg.RISK_TIER),
        account_tier=AccountTier(cfg.ACCOUNT_TIER),
        sensitivity=Sensitivity(cfg.SENSITIVITY),
        auto_trade=bool(cfg.AUTO_TRADE),
    )
