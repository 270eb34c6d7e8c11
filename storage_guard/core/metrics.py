"""
Storage metrics calculation.

Composes pricing and allowance math into a single sufficiency report for a
storage request against an allowance snapshot. Pure and deterministic: same
inputs, same report, no I/O.

The rate needed is derived from the fixed price table (capacity times the
per-epoch unit price), not from the "needed" figure reported on-chain.
"""

from dataclasses import dataclass
from typing import Optional

from .allowance import (
    DaysLeft,
    current_storage_usage_bytes,
    is_lockup_sufficient,
    is_rate_sufficient,
    lockup_per_day,
    persistence_days_left,
    required_lockup,
)
from .pricing import PRICING_TABLE, PricingTable, rate_allowance_capacity_bytes, rate_per_epoch
from .units import EPOCHS_PER_DAY
from storage_guard.chain.models import AllowanceSnapshot


@dataclass(frozen=True)
class StorageRequest:
    """Desired storage intent for one operation."""
    capacity_bytes: int
    persistence_days: int = 30
    min_days_threshold: int = 10
    use_cdn: bool = False

    def __post_init__(self):
        """Validate request values are positive."""
        if self.capacity_bytes <= 0:
            raise ValueError("capacity_bytes must be > 0")
        if self.persistence_days <= 0:
            raise ValueError("persistence_days must be > 0")
        if self.min_days_threshold <= 0:
            raise ValueError("min_days_threshold must be > 0")


@dataclass(frozen=True)
class SufficiencyReport:
    """Whether current allowances cover a storage request, and by how much not."""
    rate_needed: int
    rate_used: int
    rate_allowance_current: int
    lockup_allowance_current: int
    lockup_per_day: int
    lockup_remaining: int
    lockup_needed: int
    persistence_days_left: DaysLeft
    persistence_days_left_at_current_rate: DaysLeft
    current_storage_bytes: int
    rate_allowance_capacity_bytes: int
    is_rate_sufficient: bool
    is_lockup_sufficient: bool

    @property
    def is_sufficient(self) -> bool:
        """Both rate and lockup allowances are sufficient."""
        return self.is_rate_sufficient and self.is_lockup_sufficient


def compute_metrics(
    request: StorageRequest,
    snapshot: AllowanceSnapshot,
    pricing: Optional[PricingTable] = None,
    epochs_per_day: int = EPOCHS_PER_DAY,
) -> SufficiencyReport:
    """Compute the sufficiency report for a storage request.

    Args:
        request: Capacity, persistence period and CDN mode wanted
        snapshot: Current on-chain allowance state
        pricing: Price table (defaults to PRICING_TABLE)
        epochs_per_day: Epochs per day

    Returns:
        SufficiencyReport with rate/lockup requirements and verdicts
    """
    unit_pricing = (pricing or PRICING_TABLE).get_pricing(request.use_cdn)

    rate_needed = rate_per_epoch(request.capacity_bytes, unit_pricing.per_tib_per_epoch)
    daily_lockup = lockup_per_day(rate_needed, epochs_per_day)
    daily_lockup_at_current_rate = lockup_per_day(snapshot.rate_used, epochs_per_day)

    lockup_remaining = snapshot.lockup_remaining
    days_left = persistence_days_left(lockup_remaining, daily_lockup)
    days_left_at_current_rate = persistence_days_left(lockup_remaining, daily_lockup_at_current_rate)

    lockup_needed = required_lockup(
        request.persistence_days,
        days_left,
        daily_lockup,
        snapshot.lockup_used,
    )

    return SufficiencyReport(
        rate_needed=rate_needed,
        rate_used=snapshot.rate_used,
        rate_allowance_current=snapshot.rate_allowance_current,
        lockup_allowance_current=snapshot.lockup_allowance_current,
        lockup_per_day=daily_lockup,
        lockup_remaining=lockup_remaining,
        lockup_needed=lockup_needed,
        persistence_days_left=days_left,
        persistence_days_left_at_current_rate=days_left_at_current_rate,
        current_storage_bytes=current_storage_usage_bytes(
            snapshot.rate_used,
            snapshot.rate_allowance_needed,
            request.capacity_bytes,
        ),
        rate_allowance_capacity_bytes=rate_allowance_capacity_bytes(
            snapshot.rate_allowance_current, unit_pricing
        ),
        is_rate_sufficient=is_rate_sufficient(snapshot.rate_allowance_current, rate_needed),
        is_lockup_sufficient=is_lockup_sufficient(days_left, request.min_days_threshold),
    )
