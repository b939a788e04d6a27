from datetime import date

import pytest

from labstock.config_schema import ExpiryConfig
from labstock.reporting.expiry import (
    ExpirationWarningLevel,
    days_until_expiration,
    expiration_warning_level,
)

TODAY = date(2026, 3, 1)


def test_days_until_expiration():
    assert days_until_expiration(date(2026, 3, 11), TODAY) == 10
    assert days_until_expiration(TODAY, TODAY) == 0
    assert days_until_expiration(date(2026, 2, 27), TODAY) == -2
    assert days_until_expiration(None, TODAY) is None


@pytest.mark.parametrize(
    "days,level",
    [
        (-5, ExpirationWarningLevel.CRITICAL),
        (0, ExpirationWarningLevel.CRITICAL),
        (7, ExpirationWarningLevel.CRITICAL),
        (8, ExpirationWarningLevel.WARNING),
        (30, ExpirationWarningLevel.WARNING),
        (31, ExpirationWarningLevel.NORMAL),
        (None, None),
    ],
)
def test_default_bands(days, level):
    assert expiration_warning_level(days) == level


def test_configured_bands():
    config = ExpiryConfig(critical_days=2, warning_days=14)
    assert expiration_warning_level(3, config) == ExpirationWarningLevel.WARNING
    assert expiration_warning_level(15, config) == ExpirationWarningLevel.NORMAL


def test_band_order_validated():
    with pytest.raises(ValueError):
        ExpiryConfig(critical_days=30, warning_days=7)
