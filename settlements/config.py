"""
Runtime configuration.

Values come from environment variables so the same code runs under Flask
locally and under AWS Lambda.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation


def _decimal_env(name: str, default: str) -> Decimal:
    raw = os.environ.get(name, default)
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"{name} must be a decimal number, got: {raw!r}")
    if not (0 <= value <= 1):
        raise ValueError(f"{name} must be between 0 and 1, got: {value}")
    return value


@dataclass
class Settings:
    """Engine settings with production defaults."""

    environment: str = "dev"
    port: int = 8080
    withholding_rate: Decimal = Decimal("0.15")
    default_commission_rate: Decimal = Decimal("0.03")
    currency: str = "EUR"
    catalog_seed_path: str | None = None
    lock_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> "Settings":
        try:
            port = int(os.environ.get("PORT", 8080))
            lock_timeout = float(os.environ.get("SETTLEMENT_LOCK_TIMEOUT", 5.0))
        except ValueError as e:
            raise ValueError(f"Invalid numeric setting: {e}")

        if lock_timeout <= 0:
            raise ValueError(f"SETTLEMENT_LOCK_TIMEOUT must be positive, got: {lock_timeout}")

        return cls(
            environment=os.environ.get("ENVIRONMENT", "dev"),
            port=port,
            withholding_rate=_decimal_env("SETTLEMENT_WITHHOLDING_RATE", "0.15"),
            default_commission_rate=_decimal_env("SETTLEMENT_DEFAULT_RATE", "0.03"),
            currency=os.environ.get("SETTLEMENT_CURRENCY", "EUR"),
            catalog_seed_path=os.environ.get("SETTLEMENT_CATALOG_SEED") or None,
            lock_timeout=lock_timeout,
        )
