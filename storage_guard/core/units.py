"""
Size and time units.

Byte sizes and epoch-based time constants used by pricing and allowance math.
"""

from decimal import Decimal

KiB = 1024
MiB = 1024 ** 2
GiB = 1024 ** 3
TiB = 1024 ** 4

EPOCH_DURATION_SECONDS = 30
EPOCHS_PER_DAY = 2880  # 24h * 3600s / 30s
DAYS_PER_MONTH = 30
EPOCHS_PER_MONTH = EPOCHS_PER_DAY * DAYS_PER_MONTH

TOKEN_DECIMALS = 18


def gib_to_bytes(gib: int) -> int:
    """Convert a whole number of GiB to bytes."""
    return gib * GiB


def bytes_to_gib(size_bytes: int) -> float:
    """Convert bytes to GiB for display."""
    return size_bytes / GiB


def format_token_amount(amount: int, decimals: int = TOKEN_DECIMALS) -> str:
    """Render an amount in base units as a decimal token string.

    Args:
        amount: Amount in the smallest payment unit
        decimals: Number of decimals of the token

    Returns:
        Decimal string without exponent notation or trailing zeros,
        e.g. ``1500000000000000000`` -> ``"1.5"``
    """
    value = Decimal(amount).scaleb(-decimals)
    return format(value.normalize(), "f")
