"""
Typed contracts for data crossing the chain/provider boundary.

Payloads returned by the external SDK are validated here before they
reach allowance math or the upload state machine.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional


def _parse_amount(raw: Mapping[str, Any], key: str) -> int:
    """Read a non-negative integer amount from an SDK payload."""
    if key not in raw:
        raise ValueError(f"Missing required field '{key}'")
    value = raw[key]
    if isinstance(value, bool):
        raise ValueError(f"'{key}' must be an integer, got bool")
    if isinstance(value, str):
        try:
            value = int(value, 0)
        except ValueError:
            raise ValueError(f"'{key}' must be an integer, got {value!r}")
    if not isinstance(value, int):
        raise ValueError(f"'{key}' must be an integer, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"'{key}' cannot be negative")
    return value


@dataclass(frozen=True)
class AllowanceSnapshot:
    """Point-in-time view of a client's payment approval state.

    ``rate_used <= rate_allowance_current`` is what a top-up restores; it may
    not hold before one.
    """
    rate_allowance_current: int
    rate_used: int
    lockup_allowance_current: int
    lockup_used: int
    rate_allowance_needed: int

    def __post_init__(self):
        """Validate amounts are non-negative."""
        for name in (
            "rate_allowance_current",
            "rate_used",
            "lockup_allowance_current",
            "lockup_used",
            "rate_allowance_needed",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @property
    def lockup_remaining(self) -> int:
        """Unused lockup allowance, clamped at zero."""
        return max(0, self.lockup_allowance_current - self.lockup_used)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "AllowanceSnapshot":
        """Build a snapshot from an allowance-check payload.

        Raises:
            ValueError: If a field is missing or not a non-negative integer
        """
        if not isinstance(raw, Mapping):
            raise ValueError("Allowance payload must be a mapping")
        return cls(
            rate_allowance_current=_parse_amount(raw, "currentRateAllowance"),
            rate_used=_parse_amount(raw, "currentRateUsed"),
            lockup_allowance_current=_parse_amount(raw, "currentLockupAllowance"),
            lockup_used=_parse_amount(raw, "currentLockupUsed"),
            rate_allowance_needed=_parse_amount(raw, "rateAllowanceNeeded"),
        )


@dataclass(frozen=True)
class StorageDestination:
    """An existing dataset (proof set) bound to one storage provider."""
    id: int
    payee_address: str
    with_cdn: bool
    current_piece_count: int
    provider_id: Optional[int] = None

    def __post_init__(self):
        if self.current_piece_count < 0:
            raise ValueError("current_piece_count cannot be negative")

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "StorageDestination":
        """Build a destination from a dataset or legacy proof set payload.

        Older proof set payloads report ``currentRootCount`` instead of
        ``currentPieceCount``.
        """
        if not isinstance(raw, Mapping):
            raise ValueError("Destination payload must be a mapping")
        count_key = "currentPieceCount" if "currentPieceCount" in raw else "currentRootCount"
        payee = raw.get("payee")
        if not isinstance(payee, str) or not payee:
            raise ValueError("'payee' must be a non-empty string")
        with_cdn = raw.get("withCDN")
        if not isinstance(with_cdn, bool):
            raise ValueError("'withCDN' must be a boolean")
        return cls(
            id=_parse_amount(raw, "id"),
            payee_address=payee,
            with_cdn=with_cdn,
            current_piece_count=_parse_amount(raw, count_key),
        )


@dataclass(frozen=True)
class TransactionRef:
    """Handle to a submitted transaction. It may not be mined yet."""
    hash: str


@dataclass(frozen=True)
class TransactionReceipt:
    """Outcome of a mined transaction."""
    hash: str
    status: int  # 1 success, 0 reverted
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True)
class WalletBalances:
    """Token balances held by a client."""
    token: str
    wallet: int
    escrow: int
