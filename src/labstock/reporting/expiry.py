"""Presentational expiry bands for batch listings. Allocation never reads these."""

import enum
from datetime import date

from labstock.config_schema import ExpiryConfig


class ExpirationWarningLevel(enum.StrEnum):
    CRITICAL = "critical"
    WARNING = "warning"
    NORMAL = "normal"


def days_until_expiration(expiration_date: date | None, today: date) -> int | None:
    """Whole days left; 0 on the expiration date itself, negative once past it."""
    if expiration_date is None:
        return None
    return (expiration_date - today).days


def expiration_warning_level(
    days: int | None,
    config: ExpiryConfig | None = None,
) -> ExpirationWarningLevel | None:
    if days is None:
        return None
    config = config or ExpiryConfig()
    if days <= config.critical_days:
        return ExpirationWarningLevel.CRITICAL
    if days <= config.warning_days:
        return ExpirationWarningLevel.WARNING
    return ExpirationWarningLevel.NORMAL
