"""
Collaborator contracts for the chain and storage provider SDK.

The SDK itself (RPC, signing, contract ABI) stays behind these protocols.
Every operation receives its collaborators through an explicit
``ChainContext`` instead of a process-wide client.
"""

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Protocol, Sequence

from .models import TransactionReceipt, TransactionRef


class PaymentsService(Protocol):
    """Payment escrow and spending approvals. All amounts in base units."""

    async def wallet_balance(self, token: str) -> int:
        ...

    async def escrow_balance(self, token: str) -> int:
        ...

    async def check_allowance_for_storage(
        self,
        client_address: str,
        service_address: str,
        capacity_bytes: int,
        with_cdn: bool,
    ) -> Mapping[str, Any]:
        """Return current approval state plus the rate the capacity needs.

        Keys: ``currentRateAllowance``, ``currentRateUsed``,
        ``currentLockupAllowance``, ``currentLockupUsed``, ``rateAllowanceNeeded``.
        """
        ...

    async def deposit(self, amount: int) -> TransactionRef:
        ...

    async def approve_spender(self, spender_address: str, rate_limit: int, total_limit: int) -> TransactionRef:
        ...


class DestinationRegistry(Protocol):
    """Lookup and creation of datasets (proof sets)."""

    async def list_client_destinations(self, client_address: str) -> Sequence[Mapping[str, Any]]:
        ...

    async def resolve_provider_id(self, destination_id: int) -> Optional[int]:
        """Provider id for a destination, or None when not found."""
        ...

    async def create_destination(self, client_address: str, with_cdn: bool) -> TransactionRef:
        ...

    async def confirm_destination(self, transaction: TransactionRef) -> int:
        """Wait until creation is confirmed and return the new destination id."""
        ...


class UploadCallbacks(Protocol):
    """Notifications fired by the provider, in exactly this order."""

    def on_transfer_complete(self, commp: str) -> None:
        ...

    def on_root_submitted(self, transaction: Optional[TransactionRef]) -> None:
        ...

    def on_root_confirmed(self, root_ids: List[int]) -> None:
        ...


class StorageProvider(Protocol):
    """Byte transfer to the provider bound to a destination."""

    async def upload(self, data: bytes, destination_id: int, callbacks: UploadCallbacks) -> str:
        """Transfer bytes and register the piece. Returns the commp."""
        ...


class ChainClient(Protocol):

    async def wait_for_receipt(self, transaction: TransactionRef) -> TransactionReceipt:
        ...


@dataclass(frozen=True)
class ChainContext:
    """Connection bundle threaded through every operation for one client."""
    client_address: str
    network: str
    payments: PaymentsService
    registry: DestinationRegistry
    provider: StorageProvider
    chain: ChainClient
