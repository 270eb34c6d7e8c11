"""
Allowance math.

Pure integer arithmetic converting epoch rates and lockup amounts into
persistence runways and top-up requirements. Monetary amounts never touch
floating point; day counts are exact fractions, converted to float only
for display.
"""

import math
from fractions import Fraction
from typing import Union

from .units import EPOCHS_PER_DAY

DaysLeft = Union[Fraction, float]


def lockup_per_day(rate: int, epochs_per_day: int = EPOCHS_PER_DAY) -> int:
    """Lockup consumed per day at a per-epoch rate."""
    return rate * epochs_per_day


def persistence_days_left(lockup_remaining: int, lockup_per_day: int) -> DaysLeft:
    """Days of storage the remaining lockup can pay for.

    When nothing is being charged (``lockup_per_day == 0``) the runway is
    reported as ``math.inf`` if any lockup remains, and 0 otherwise. Treat
    infinity as "cannot yet estimate", not as "safe forever".

    Args:
        lockup_remaining: Unused lockup allowance in base units
        lockup_per_day: Lockup consumed per day in base units

    Returns:
        Exact Fraction of days, or math.inf
    """
    if lockup_per_day == 0:
        return math.inf if lockup_remaining > 0 else Fraction(0)
    return Fraction(lockup_remaining, lockup_per_day)


def required_lockup(
    persistence_days_wanted: int,
    persistence_days_left_current: DaysLeft,
    lockup_per_day: int,
    lockup_used: int,
) -> int:
    """Total lockup needed to extend the runway to the wanted period.

    The shortfall is measured against the current runway rather than from
    zero, so existing lockup covers its share of the window. Rounded up to a
    whole base unit.

    Returns:
        0 when the current runway already covers the wanted period
    """
    if persistence_days_wanted <= persistence_days_left_current:
        return 0
    shortfall_days = Fraction(persistence_days_wanted) - Fraction(persistence_days_left_current)
    return math.ceil(shortfall_days * lockup_per_day) + lockup_used


def current_storage_usage_bytes(rate_used: int, rate_allowance_needed: int, capacity_bytes: int) -> int:
    """Estimate bytes currently stored from the rate in use.

    Approximation only: assumes uniform per-byte pricing, so it scales the
    requested capacity by the ratio of used rate to the rate that capacity
    needs. Not an authoritative usage figure.
    """
    if rate_allowance_needed <= 0:
        return 0
    return rate_used * capacity_bytes // rate_allowance_needed


def is_rate_sufficient(rate_allowance_current: int, rate_needed: int) -> bool:
    return rate_allowance_current >= rate_needed


def is_lockup_sufficient(days_left: DaysLeft, min_days_threshold: int) -> bool:
    return days_left >= min_days_threshold
