"""
Tests for upload orchestration.

The chain and provider SDKs are replaced with fakes; every scenario drives
one session to a terminal stage.
"""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from storage_guard.chain.interfaces import ChainContext
from storage_guard.chain.models import AllowanceSnapshot, TransactionReceipt, TransactionRef
from storage_guard.config.loader import GuardConfig, NetworkConfig, UploadConfig
from storage_guard.core.metrics import compute_metrics
from storage_guard.core.orchestrator import (
    UploadOrchestrator,
    UploadSession,
    UploadStage,
)

DATA = b"x" * 4096
COMMP = "baga6ea4seaqao7s73y24kcutaosvacpdjgfe5pw76ooefnyqw4ynr3d2y6x2mpq"

SUFFICIENT = {
    "currentRateAllowance": 10 ** 15,
    "currentRateUsed": 0,
    "currentLockupAllowance": 10 ** 20,
    "currentLockupUsed": 0,
    "rateAllowanceNeeded": 0,
}
EMPTY = {
    "currentRateAllowance": 0,
    "currentRateUsed": 0,
    "currentLockupAllowance": 0,
    "currentLockupUsed": 0,
    "rateAllowanceNeeded": 0,
}
EXISTING = {"id": 3, "payee": "0xprovider", "withCDN": False, "currentPieceCount": 12}


class FakeProvider:
    """Storage provider that fires the callbacks it is told to."""

    def __init__(self, surface_transaction=True, confirm=True, fail_before_commp=None, fail_after_commp=None):
        self.surface_transaction = surface_transaction
        self.confirm = confirm
        self.fail_before_commp = fail_before_commp
        self.fail_after_commp = fail_after_commp
        self.calls = []

    async def upload(self, data, destination_id, callbacks):
        self.calls.append((len(data), destination_id))
        if self.fail_before_commp:
            raise self.fail_before_commp
        callbacks.on_transfer_complete(COMMP)
        if self.fail_after_commp:
            raise self.fail_after_commp
        if self.surface_transaction:
            callbacks.on_root_submitted(TransactionRef("0xroot"))
            if self.confirm:
                callbacks.on_root_confirmed([1])
        return COMMP


def make_context(provider=None, allowance=None, destinations=None, network="calibration"):
    payments = Mock()
    payments.check_allowance_for_storage = AsyncMock(return_value=allowance or SUFFICIENT)
    payments.deposit = AsyncMock(return_value=TransactionRef("0xdeposit"))
    payments.approve_spender = AsyncMock(return_value=TransactionRef("0xapprove"))
    payments.wallet_balance = AsyncMock(return_value=5 * 10 ** 18)
    payments.escrow_balance = AsyncMock(return_value=0)

    registry = Mock()
    registry.list_client_destinations = AsyncMock(
        return_value=[EXISTING] if destinations is None else destinations
    )
    registry.resolve_provider_id = AsyncMock(return_value=7)
    registry.create_destination = AsyncMock(return_value=TransactionRef("0xcreate"))
    registry.confirm_destination = AsyncMock(return_value=42)

    chain = Mock()
    chain.wait_for_receipt = AsyncMock(
        side_effect=lambda tx: TransactionReceipt(hash=tx.hash, status=1)
    )

    return ChainContext(
        client_address="0xclient",
        network=network,
        payments=payments,
        registry=registry,
        provider=provider or FakeProvider(),
        chain=chain,
    )


def make_config(**upload):
    return GuardConfig(
        upload=UploadConfig(**upload),
        networks={"calibration": NetworkConfig("0xpayments", "0xservice")},
    )


def stage_values(session):
    return [event.stage.value for event in session.events]


class TestUploadHappyPath:

    @pytest.mark.asyncio
    async def test_existing_destination(self):
        """Verify an upload to a reused destination is stored and verified."""
        context = make_context()
        orchestrator = UploadOrchestrator(context, make_config())

        session = await orchestrator.upload(DATA, file_name="notes.txt")

        assert session.stage == UploadStage.DONE
        assert session.progress_percent == 100
        assert session.error is None
        result = session.result
        assert result.commp == COMMP
        assert result.transaction_hash == "0xroot"
        assert result.destination_id == 3
        assert result.provider_id == 7
        assert result.size_bytes == len(DATA)
        assert result.verified is True
        assert result.file_name == "notes.txt"
        assert result.root_ids == [1]
        context.payments.deposit.assert_not_awaited()
        context.registry.create_destination.assert_not_awaited()
        assert context.provider.calls == [(len(DATA), 3)]

    @pytest.mark.asyncio
    async def test_stages_are_forward_only(self):
        """Verify every stage is entered in order and progress never drops."""
        received = []
        session = UploadSession(listener=received.append)
        orchestrator = UploadOrchestrator(make_context(), make_config())

        await orchestrator.upload(DATA, session=session)

        assert received == session.events
        values = stage_values(session)
        assert values == sorted(values)
        assert set(values) == {stage.value for stage in UploadStage if stage != UploadStage.FAILED}
        progress = [event.progress_percent for event in session.events]
        assert progress == sorted(progress)
        assert session.status_message == "File successfully stored"

    @pytest.mark.asyncio
    async def test_grace_period_without_transaction(self):
        """Verify a missing transaction falls back to the grace wait and is unverified."""
        sleep = AsyncMock()
        context = make_context(provider=FakeProvider(surface_transaction=False))
        orchestrator = UploadOrchestrator(context, make_config(), sleep=sleep)

        session = await orchestrator.upload(DATA)

        assert session.stage == UploadStage.DONE
        sleep.assert_awaited_once_with(50.0)
        context.chain.wait_for_receipt.assert_not_awaited()
        assert session.result.transaction_hash is None
        assert session.result.verified is False
        assert UploadStage.ROOT_SUBMITTED.value in stage_values(session)
        assert UploadStage.ROOT_CONFIRMED.value in stage_values(session)
        assert "unverified" in session.status_message

    @pytest.mark.asyncio
    async def test_creates_destination_with_fee(self):
        """Verify a fresh client deposits the lockup plus creation fee, then creates."""
        context = make_context(allowance=EMPTY, destinations=[])
        config = make_config()
        orchestrator = UploadOrchestrator(context, config)

        session = await orchestrator.upload(DATA)

        report = compute_metrics(
            config.storage_request(len(DATA)), AllowanceSnapshot.from_raw(EMPTY)
        )
        expected = report.lockup_needed + 10 ** 17
        context.payments.deposit.assert_awaited_once_with(expected)
        context.payments.approve_spender.assert_awaited_once_with("0xservice", report.rate_needed, expected)
        context.registry.create_destination.assert_awaited_once_with("0xclient", False)
        assert any("Wallet holds 5 USDFC" in event.status_message for event in session.events)
        assert session.stage == UploadStage.DONE
        assert session.result.destination_id == 42
        assert session.result.provider_id == 7

    @pytest.mark.asyncio
    async def test_topup_without_fee_when_reusing(self):
        context = make_context(allowance=EMPTY)
        config = make_config()
        orchestrator = UploadOrchestrator(context, config)

        await orchestrator.upload(DATA)

        report = compute_metrics(
            config.storage_request(len(DATA)), AllowanceSnapshot.from_raw(EMPTY)
        )
        context.payments.deposit.assert_awaited_once_with(report.lockup_needed)


class TestUploadFailures:

    @pytest.mark.asyncio
    async def test_invalid_network(self):
        """Verify an unconfigured network fails before any chain call."""
        context = make_context(network="mainnet")
        orchestrator = UploadOrchestrator(context, make_config())

        session = await orchestrator.upload(DATA)

        assert session.stage == UploadStage.FAILED
        assert session.error.code == "InvalidNetwork"
        context.payments.check_allowance_for_storage.assert_not_awaited()
        assert context.provider.calls == []

    @pytest.mark.asyncio
    async def test_preflight_failure_blocks_transfer(self):
        """Verify no bytes move when the deposit fails."""
        context = make_context(allowance=EMPTY)
        context.payments.deposit.side_effect = RuntimeError("insufficient funds")
        orchestrator = UploadOrchestrator(context, make_config())

        session = await orchestrator.upload(DATA)

        assert session.stage == UploadStage.FAILED
        assert session.error.code == "InsufficientAllowance"
        assert session.error.step == "deposit"
        assert context.provider.calls == []
        assert session.status_message.startswith("Upload failed")

    @pytest.mark.asyncio
    async def test_upstream_unavailable(self):
        context = make_context()
        context.payments.check_allowance_for_storage.side_effect = ConnectionError("rpc down")
        orchestrator = UploadOrchestrator(context, make_config())

        session = await orchestrator.upload(DATA)

        assert session.error.code == "UpstreamUnavailable"

    @pytest.mark.asyncio
    async def test_destination_creation_failure(self):
        context = make_context(destinations=[])
        context.registry.confirm_destination.side_effect = RuntimeError("reverted")
        orchestrator = UploadOrchestrator(context, make_config())

        session = await orchestrator.upload(DATA)

        assert session.stage == UploadStage.FAILED
        assert session.error.code == "DestinationCreationFailed"
        assert "0xcreate" in session.error.message
        assert context.provider.calls == []

    @pytest.mark.asyncio
    async def test_transfer_failure(self):
        provider = FakeProvider(fail_before_commp=ConnectionError("provider offline"))
        orchestrator = UploadOrchestrator(make_context(provider=provider), make_config())

        session = await orchestrator.upload(DATA)

        assert session.stage == UploadStage.FAILED
        assert session.error.code == "TransferFailed"
        assert session.commp is None

    @pytest.mark.asyncio
    async def test_registration_failure_after_transfer(self):
        """Verify a failure after the piece was received is a registration failure."""
        provider = FakeProvider(fail_after_commp=RuntimeError("add roots rejected"))
        orchestrator = UploadOrchestrator(make_context(provider=provider), make_config())

        session = await orchestrator.upload(DATA)

        assert session.error.code == "RootRegistrationFailed"
        assert session.commp == COMMP

    @pytest.mark.asyncio
    async def test_reverted_root_registration(self):
        context = make_context()
        context.chain.wait_for_receipt.side_effect = lambda tx: TransactionReceipt(hash=tx.hash, status=0)
        orchestrator = UploadOrchestrator(context, make_config())

        session = await orchestrator.upload(DATA)

        assert session.stage == UploadStage.FAILED
        assert session.error.code == "RootRegistrationFailed"
        assert session.error.transaction_hash == "0xroot"
        assert session.result is None

    @pytest.mark.asyncio
    async def test_receipt_timeout_is_soft(self):
        """Verify a receipt that never arrives ends as an unconfirmed upload."""
        async def never_mined(tx):
            await asyncio.sleep(10)

        context = make_context()
        context.chain.wait_for_receipt.side_effect = never_mined
        orchestrator = UploadOrchestrator(context, make_config(confirmation_timeout_seconds=0.01))

        session = await orchestrator.upload(DATA)

        assert session.stage == UploadStage.FAILED
        assert session.error.code == "ConfirmationTimeout"
        assert session.error.soft is True
        assert session.error.transaction_hash == "0xroot"
        assert session.status_message.startswith("Upload unconfirmed")

    @pytest.mark.asyncio
    async def test_provider_confirmation_timeout(self):
        provider = FakeProvider(confirm=False)
        orchestrator = UploadOrchestrator(
            make_context(provider=provider), make_config(confirmation_timeout_seconds=0.01)
        )

        session = await orchestrator.upload(DATA)

        assert session.error.code == "ConfirmationTimeout"
        assert session.error.commp == COMMP


class TestUnexpectedErrors:
    """Test that errors outside the taxonomy still end the session."""

    @pytest.mark.asyncio
    async def test_provider_lookup_revert_still_uploads(self):
        """Verify a reverted provider lookup leaves the upload running."""
        context = make_context()
        context.registry.resolve_provider_id.side_effect = RuntimeError("execution reverted")
        orchestrator = UploadOrchestrator(context, make_config())

        session = await orchestrator.upload(DATA)

        assert session.stage == UploadStage.DONE
        assert session.result.destination_id == 3
        assert session.result.provider_id is None

    @pytest.mark.asyncio
    async def test_registry_error_fails_session(self):
        """Verify an arbitrary registry error ends in FAILED with its kind attached."""
        context = make_context()
        context.registry.list_client_destinations.side_effect = RuntimeError("rpc error")
        orchestrator = UploadOrchestrator(context, make_config())

        session = await orchestrator.upload(DATA)

        assert session.stage.is_terminal
        assert session.stage == UploadStage.FAILED
        assert session.error.code == "RuntimeError"
        assert isinstance(session.error.original, RuntimeError)
        assert "rpc error" in session.status_message
        assert context.provider.calls == []

    @pytest.mark.asyncio
    async def test_allowance_error_fails_session(self):
        context = make_context()
        context.payments.check_allowance_for_storage.side_effect = KeyError("currentRateUsed")
        orchestrator = UploadOrchestrator(context, make_config())

        session = await orchestrator.upload(DATA)

        assert session.stage == UploadStage.FAILED
        assert session.error.code == "KeyError"

    @pytest.mark.asyncio
    async def test_malformed_allowance_payload(self):
        """Verify a malformed payload keeps a dedicated error code."""
        context = make_context(allowance={"currentRateAllowance": 1})
        orchestrator = UploadOrchestrator(context, make_config())

        session = await orchestrator.upload(DATA)

        assert session.stage == UploadStage.FAILED
        assert session.error.code == "MalformedResponse"
        assert session.error.operation == "allowance check"

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_upload(self):
        def broken_listener(event):
            raise RuntimeError("display closed")

        orchestrator = UploadOrchestrator(make_context(), make_config())

        session = await orchestrator.upload(DATA, session=UploadSession(listener=broken_listener))

        assert session.stage == UploadStage.DONE


class TestUploadSession:

    @pytest.mark.asyncio
    async def test_empty_data_rejected(self):
        orchestrator = UploadOrchestrator(make_context(), make_config())
        with pytest.raises(ValueError, match="data is required"):
            await orchestrator.upload(b"")

    @pytest.mark.asyncio
    async def test_session_cannot_be_reused(self):
        orchestrator = UploadOrchestrator(make_context(), make_config())
        session = await orchestrator.upload(DATA)

        with pytest.raises(ValueError, match="cannot be reused"):
            await orchestrator.upload(DATA, session=session)

    def test_backward_transition_rejected(self):
        session = UploadSession()
        session.advance(UploadStage.TRANSFERRING, 55, "Uploading")

        with pytest.raises(ValueError, match="back to"):
            session.advance(UploadStage.DESTINATION_READY, 50, "Ready")

    def test_terminal_stage_is_final(self):
        session = UploadSession()
        session.advance(UploadStage.DONE, 100, "Done")

        with pytest.raises(ValueError, match="already terminated"):
            session.update(100, "again")

    def test_progress_never_decreases(self):
        session = UploadSession()
        session.update(40, "a")
        session.update(20, "b")
        assert session.progress_percent == 40
