"""
Storage pricing and rate calculations.

Converts byte capacities into per-epoch payment rates from a fixed price table.
"""

from dataclasses import dataclass

from .units import EPOCHS_PER_MONTH, TiB


@dataclass(frozen=True)
class StoragePricing:
    """Price of one TiB of storage per month, in base token units."""
    per_tib_per_month: int

    def __post_init__(self):
        """Validate price is positive."""
        if self.per_tib_per_month <= 0:
            raise ValueError("per_tib_per_month must be > 0")

    @property
    def per_tib_per_epoch(self) -> int:
        """Per-epoch price of one TiB (floor)."""
        return self.per_tib_per_month // EPOCHS_PER_MONTH


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing for CDN and non-CDN storage."""
    without_cdn: StoragePricing
    with_cdn: StoragePricing

    def get_pricing(self, use_cdn: bool) -> StoragePricing:
        """Get pricing for the requested storage mode."""
        return self.with_cdn if use_cdn else self.without_cdn


# 2 USDFC per TiB per month, 3 USDFC with CDN
PRICING_TABLE = PricingTable(
    without_cdn=StoragePricing(per_tib_per_month=2 * 10 ** 18),
    with_cdn=StoragePricing(per_tib_per_month=3 * 10 ** 18),
)


def rate_per_epoch(capacity_bytes: int, price_per_tib_per_epoch: int) -> int:
    """Calculate the payment rate per epoch for a storage capacity.

    Division truncates so the payer is never overcharged.

    Args:
        capacity_bytes: Storage capacity in bytes
        price_per_tib_per_epoch: Price of one TiB for one epoch in base units

    Returns:
        Rate per epoch in base units

    Raises:
        ValueError: If capacity or price is negative
    """
    if capacity_bytes < 0:
        raise ValueError("capacity_bytes cannot be negative")
    if price_per_tib_per_epoch < 0:
        raise ValueError("price_per_tib_per_epoch cannot be negative")
    return capacity_bytes * price_per_tib_per_epoch // TiB


def rate_allowance_capacity_bytes(rate_allowance: int, pricing: StoragePricing) -> int:
    """Bytes of storage a rate allowance can pay for at the given pricing."""
    monthly_rate = rate_allowance * EPOCHS_PER_MONTH
    return monthly_rate * TiB // pricing.per_tib_per_month
