"""
Upload orchestration.

Drives one upload through a forward-only sequence of stages:

    INIT -> PREFLIGHT_CHECKED -> DESTINATION_RESOLVING -> DESTINATION_READY
         -> TRANSFERRING -> ROOT_SUBMITTED -> ROOT_CONFIRMED -> DONE

FAILED is reachable from every non-terminal stage. A failure ends the
session; nothing retries the whole machine; the caller starts a new session
if it wants another attempt.

The session is the single source of truth for progress. Provider callbacks
only record what they observed; the orchestrator decides what to wait on.

Cancellation: cancelling the ``upload`` task stops the orchestrator at its
current await. Transactions already submitted are not rolled back and keep
being mined. Abandoning a session is only free of side effects while the
preflight deposit has not been submitted.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .errors import (
    ConfirmationTimeout,
    DestinationCreationFailed,
    RootRegistrationFailed,
    StorageGuardError,
    TransferFailed,
    UnexpectedError,
)
from .metrics import compute_metrics
from .preflight import DepositPlan, ensure_sufficient
from .selector import list_destinations, lookup_provider_id, resolve_destination
from .units import format_token_amount
from storage_guard.chain.balances import BalanceFetcher
from storage_guard.chain.interfaces import ChainContext
from storage_guard.chain.models import StorageDestination, TransactionRef
from storage_guard.config.loader import GuardConfig

logger = logging.getLogger(__name__)


class UploadStage(Enum):
    """Upload stages in the only order they can be entered."""
    INIT = 0
    PREFLIGHT_CHECKED = 1
    DESTINATION_RESOLVING = 2
    DESTINATION_READY = 3
    TRANSFERRING = 4
    ROOT_SUBMITTED = 5
    ROOT_CONFIRMED = 6
    DONE = 7
    FAILED = 8

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStage.DONE, UploadStage.FAILED)


@dataclass(frozen=True)
class ProgressEvent:
    """One entry of a session's progress stream."""
    stage: UploadStage
    progress_percent: int
    status_message: str


@dataclass(frozen=True)
class UploadResult:
    """Outcome of a completed upload.

    ``verified`` is False when the registration transaction was never
    observed and completion rests on the grace-period wait alone.
    """
    commp: str
    transaction_hash: Optional[str]
    destination_id: int
    provider_id: Optional[int]
    size_bytes: int
    verified: bool
    file_name: Optional[str] = None
    root_ids: List[int] = field(default_factory=list)


ProgressListener = Callable[[ProgressEvent], None]


class UploadSession:
    """Mutable state of one upload, owned by the caller that started it."""

    def __init__(self, listener: Optional[ProgressListener] = None):
        self.stage = UploadStage.INIT
        self.progress_percent = 0
        self.status_message = ""
        self.commp: Optional[str] = None
        self.transaction_hash: Optional[str] = None
        self.destination_id: Optional[int] = None
        self.result: Optional[UploadResult] = None
        self.error: Optional[StorageGuardError] = None
        self.events: List[ProgressEvent] = []
        self._listeners: List[ProgressListener] = []
        if listener is not None:
            self._listeners.append(listener)

    def advance(self, stage: UploadStage, progress_percent: int, message: str) -> None:
        """Move to ``stage`` (or stay in it) and publish progress.

        Raises:
            ValueError: On a backward transition or after a terminal stage
        """
        if self.stage.is_terminal:
            raise ValueError(f"Session already terminated in {self.stage.name}")
        if stage is not UploadStage.FAILED and stage.value < self.stage.value:
            raise ValueError(f"Cannot move from {self.stage.name} back to {stage.name}")

        self.stage = stage
        # Progress never goes backwards within a session
        self.progress_percent = max(self.progress_percent, min(progress_percent, 100))
        self.status_message = message
        event = ProgressEvent(stage, self.progress_percent, message)
        self.events.append(event)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Progress listener failed on %s", stage.name)

    def update(self, progress_percent: int, message: str) -> None:
        """Publish progress without changing stage."""
        self.advance(self.stage, progress_percent, message)

    def note(self, message: str) -> None:
        """Publish a status message without changing stage or progress."""
        self.advance(self.stage, self.progress_percent, message)

    def fail(self, error: StorageGuardError) -> None:
        self.error = error
        prefix = "Upload unconfirmed" if getattr(error, "soft", False) else "Upload failed"
        self.advance(UploadStage.FAILED, self.progress_percent, f"{prefix}: {error.message}")


class _SessionCallbacks:
    """Provider callbacks that record observations into the session."""

    def __init__(self, session: UploadSession):
        self.session = session
        self.transaction: Optional[TransactionRef] = None
        self.root_submitted = False
        self.root_ids: List[int] = []
        self.root_confirmed = asyncio.Event()

    def on_transfer_complete(self, commp: str) -> None:
        self.session.commp = commp
        self.session.update(80, "File uploaded, registering root on destination")

    def on_root_submitted(self, transaction: Optional[TransactionRef]) -> None:
        self.root_submitted = True
        if transaction is not None:
            self.transaction = transaction
            self.session.transaction_hash = transaction.hash
            message = f"Waiting for transaction {transaction.hash} to be confirmed on chain"
        else:
            message = "Root submitted; provider did not surface a transaction"
        self.session.advance(UploadStage.ROOT_SUBMITTED, 85, message)

    def on_root_confirmed(self, root_ids: List[int]) -> None:
        self.root_ids = list(root_ids)
        self.root_confirmed.set()
        self.session.note("Storage provider confirmed roots")


class UploadOrchestrator:
    """Runs upload sessions for one client connection.

    Args:
        context: Collaborators and client identity for every call
        config: Storage, pricing, upload and network configuration
        sleep: Coroutine used for the grace-period wait
    """

    def __init__(
        self,
        context: ChainContext,
        config: GuardConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.context = context
        self.config = config
        self.fetcher = BalanceFetcher(context.payments, config)
        self._sleep = sleep

    async def upload(
        self,
        data: bytes,
        session: Optional[UploadSession] = None,
        file_name: Optional[str] = None,
    ) -> UploadSession:
        """Upload bytes and return the session in a terminal stage.

        Failures do not raise: the returned session is FAILED and carries
        the error. Collaborator errors outside the taxonomy are wrapped in
        UnexpectedError. Check ``session.result`` or ``session.error``.

        Raises:
            ValueError: If data is empty or the session was already used
        """
        if not data:
            raise ValueError("data is required and cannot be empty")
        session = session or UploadSession()
        if session.stage is not UploadStage.INIT:
            raise ValueError("Upload sessions cannot be reused")

        try:
            await self._run(session, bytes(data), file_name)
        except StorageGuardError as e:
            self._fail(session, e)
        except Exception as e:
            logger.exception("Unexpected error in %s", session.stage.name)
            self._fail(session, UnexpectedError(e))
        return session

    def _fail(self, session: UploadSession, error: StorageGuardError) -> None:
        logger.error("Upload failed in %s: %s", session.stage.name, error.message)
        session.fail(error)

    async def _run(self, session: UploadSession, data: bytes, file_name: Optional[str]) -> None:
        ctx = self.context
        network = self.config.get_network(ctx.network)
        session.update(5, "Initializing file upload")

        request = self.config.storage_request(len(data))
        snapshot, candidates = await asyncio.gather(
            self.fetcher.fetch_snapshot(
                ctx.client_address, ctx.network, request.capacity_bytes, request.use_cdn
            ),
            list_destinations(ctx.registry, ctx.client_address),
        )
        destination = await resolve_destination(ctx.registry, candidates, request.use_cdn)

        session.update(10, "Checking balance and storage allowances")
        report = compute_metrics(request, snapshot, self.config.pricing)
        if not report.is_sufficient:
            balances = await self.fetcher.fetch_balances()
            session.note(
                f"Wallet holds {format_token_amount(balances.wallet)} {balances.token}, "
                f"escrow {format_token_amount(balances.escrow)} {balances.token}"
            )
        plan = DepositPlan(
            spender_address=network.storage_service_address,
            include_creation_fee=destination is None,
            creation_fee=self.config.upload.destination_creation_fee,
        )
        await ensure_sufficient(report, plan, ctx.payments, ctx.chain, on_status=session.note)
        session.advance(UploadStage.PREFLIGHT_CHECKED, 20, "Storage allowances checked")

        destination = await self._resolve(session, destination, request.use_cdn)
        session.destination_id = destination.id

        callbacks = await self._transfer(session, data, destination.id)
        verified = await self._confirm(session, callbacks)

        session.result = UploadResult(
            commp=session.commp,
            transaction_hash=session.transaction_hash,
            destination_id=destination.id,
            provider_id=destination.provider_id,
            size_bytes=len(data),
            verified=verified,
            file_name=file_name,
            root_ids=callbacks.root_ids,
        )
        message = "File successfully stored"
        if not verified:
            message = f"{message} (on-chain confirmation unverified)"
        session.advance(UploadStage.DONE, 100, message)
        logger.info("Upload of %s stored in destination %s", session.commp, destination.id)

    async def _resolve(
        self,
        session: UploadSession,
        destination: Optional[StorageDestination],
        use_cdn: bool,
    ) -> StorageDestination:
        session.advance(UploadStage.DESTINATION_RESOLVING, 25, "Resolving storage destination")
        if destination is not None:
            session.advance(
                UploadStage.DESTINATION_READY, 50, f"Existing destination {destination.id} resolved"
            )
            return destination

        ctx = self.context
        started = time.monotonic()
        try:
            transaction = await ctx.registry.create_destination(ctx.client_address, use_cdn)
        except Exception as e:
            raise DestinationCreationFailed(f"Destination creation could not be submitted: {e}") from e
        logger.info("Destination creation submitted in %s", transaction.hash)
        session.update(35, f"Creating new destination on chain ({transaction.hash})")

        try:
            destination_id = await ctx.registry.confirm_destination(transaction)
        except Exception as e:
            raise DestinationCreationFailed(f"Destination creation {transaction.hash} failed: {e}") from e
        elapsed = time.monotonic() - started
        session.update(45, f"Destination {destination_id} creation confirmed ({round(elapsed)}s)")

        provider_id = await lookup_provider_id(ctx.registry, destination_id)
        session.advance(UploadStage.DESTINATION_READY, 50, f"Destination {destination_id} ready")
        return StorageDestination(
            id=destination_id,
            payee_address="",
            with_cdn=use_cdn,
            current_piece_count=0,
            provider_id=provider_id,
        )

    async def _transfer(self, session: UploadSession, data: bytes, destination_id: int) -> _SessionCallbacks:
        session.advance(UploadStage.TRANSFERRING, 55, "Uploading file to storage provider")
        callbacks = _SessionCallbacks(session)
        try:
            commp = await self.context.provider.upload(data, destination_id, callbacks)
        except Exception as e:
            if session.commp is None:
                raise TransferFailed(f"Transfer to storage provider failed: {e}") from e
            raise RootRegistrationFailed(
                f"Root registration for {session.commp} failed: {e}", session.transaction_hash
            ) from e

        session.commp = commp
        if not callbacks.root_submitted:
            callbacks.on_root_submitted(None)
        return callbacks

    async def _confirm(self, session: UploadSession, callbacks: _SessionCallbacks) -> bool:
        """Wait for the registration to be mined and confirmed by the provider.

        Returns:
            True when both were observed, False when only the grace period
            was waited out because no transaction was ever surfaced
        """
        upload_config = self.config.upload
        grace = upload_config.confirmation_grace_seconds
        transaction = callbacks.transaction

        if transaction is None:
            logger.warning("No root registration transaction observed; waiting %ss", grace)
            session.note(f"Waiting {grace:g}s for on-chain confirmation")
            await self._sleep(grace)
            session.advance(
                UploadStage.ROOT_CONFIRMED, 90, "Grace period elapsed; root registration unverified"
            )
            return False

        timeout = upload_config.confirmation_timeout_seconds
        try:
            receipt = await asyncio.wait_for(
                self.context.chain.wait_for_receipt(transaction), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise ConfirmationTimeout(session.commp, transaction.hash, timeout) from e
        except Exception as e:
            raise RootRegistrationFailed(
                f"Waiting for transaction {transaction.hash} failed: {e}", transaction.hash
            ) from e
        if not receipt.succeeded:
            raise RootRegistrationFailed(f"Transaction {transaction.hash} reverted", transaction.hash)

        session.update(88, "Waiting for storage provider confirmation")
        if not callbacks.root_confirmed.is_set():
            try:
                await asyncio.wait_for(callbacks.root_confirmed.wait(), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise ConfirmationTimeout(session.commp, transaction.hash, timeout) from e

        session.advance(UploadStage.ROOT_CONFIRMED, 90, "Data roots added to destination")
        return True
