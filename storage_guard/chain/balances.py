"""
Balance fetcher.

Reads a client's allowance state and token balances from the payments
service. Read-only; every payload is validated before it is returned.
"""

import asyncio
import logging
from typing import Optional

from .interfaces import PaymentsService
from .models import AllowanceSnapshot, WalletBalances
from storage_guard.config.loader import GuardConfig
from storage_guard.core.errors import MalformedResponse, UpstreamUnavailable

logger = logging.getLogger(__name__)

# Transport failures worth retrying; anything else is an integration bug
TRANSIENT_ERRORS = (OSError, asyncio.TimeoutError)


class BalanceFetcher:
    """Payments service reader scoped to one configuration.

    Network configuration is checked before any call is made.
    """

    def __init__(self, payments: PaymentsService, config: GuardConfig):
        self.payments = payments
        self.config = config

    async def fetch_snapshot(
        self,
        client_address: str,
        network: str,
        capacity_bytes: int,
        with_cdn: bool,
    ) -> AllowanceSnapshot:
        """Read the allowance snapshot for a client and requested capacity.

        Args:
            client_address: Client wallet address
            network: Network identifier
            capacity_bytes: Capacity the ``rateAllowanceNeeded`` figure is scaled to
            with_cdn: Whether the capacity is priced for CDN storage

        Returns:
            Validated AllowanceSnapshot

        Raises:
            InvalidNetwork: If the network is not configured
            UpstreamUnavailable: If the read could not complete
            MalformedResponse: If the payload is malformed
        """
        if not client_address:
            raise ValueError("client_address is required and cannot be empty")
        network_config = self.config.get_network(network)

        try:
            raw = await self.payments.check_allowance_for_storage(
                client_address,
                network_config.storage_service_address,
                capacity_bytes,
                with_cdn,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning("Allowance read failed for %s on %s: %s", client_address, network, e)
            raise UpstreamUnavailable("allowance check", str(e)) from e

        try:
            snapshot = AllowanceSnapshot.from_raw(raw)
        except ValueError as e:
            raise MalformedResponse("allowance check", str(e)) from e
        logger.debug("Allowance snapshot for %s on %s: %s", client_address, network, snapshot)
        return snapshot

    async def fetch_balances(self, token: Optional[str] = None) -> WalletBalances:
        """Read wallet and escrow balances concurrently.

        ``token`` defaults to the configured payment token.

        Raises:
            UpstreamUnavailable: If either read could not complete
        """
        token = token or self.config.upload.token
        try:
            wallet, escrow = await asyncio.gather(
                self.payments.wallet_balance(token),
                self.payments.escrow_balance(token),
            )
        except TRANSIENT_ERRORS as e:
            raise UpstreamUnavailable("balance read", str(e)) from e

        return WalletBalances(token=token, wallet=wallet, escrow=escrow)
