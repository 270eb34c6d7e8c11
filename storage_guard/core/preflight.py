"""
Preflight allowance gate.

Turns an insufficient report into corrective on-chain actions before any
bytes are transferred.

Action Order:
1. Total allowance - lockup needed, plus the destination creation fee when
   a new destination is about to be created
2. Deposit - move the total into the payment escrow
3. Approve - let the storage service spend at the new rate, bounded by the
   total deposited or the existing lockup approval, whichever is larger

Deposit always precedes the rate approval: a spending rate the escrow
cannot cover must never be approved.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import InsufficientAllowance
from .metrics import SufficiencyReport
from .units import format_token_amount
from storage_guard.chain.interfaces import ChainClient, PaymentsService
from storage_guard.chain.models import TransactionRef

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]


@dataclass(frozen=True)
class DepositPlan:
    """How to top up when the report is insufficient."""
    spender_address: str
    include_creation_fee: bool = False
    creation_fee: int = 0

    def __post_init__(self):
        if not self.spender_address:
            raise ValueError("spender_address cannot be empty")
        if self.creation_fee < 0:
            raise ValueError("creation_fee cannot be negative")

    def total_allowance(self, report: SufficiencyReport) -> int:
        """Lockup needed plus the creation fee when it applies."""
        fee = self.creation_fee if self.include_creation_fee else 0
        return report.lockup_needed + fee

    def rate_allowance(self, report: SufficiencyReport) -> int:
        """Rate to approve. Never lowers an existing allowance."""
        return max(report.rate_needed, report.rate_allowance_current)

    def lockup_allowance(self, report: SufficiencyReport) -> int:
        """Lockup limit to approve. Never lowers an existing allowance."""
        return max(self.total_allowance(report), report.lockup_allowance_current)


@dataclass(frozen=True)
class PreflightOutcome:
    """Amounts and transactions of a completed top-up."""
    deposit_amount: int
    rate_allowance: int
    lockup_allowance: int
    deposit_transaction: Optional[TransactionRef]
    approval_transaction: TransactionRef


async def ensure_sufficient(
    report: SufficiencyReport,
    plan: DepositPlan,
    payments: PaymentsService,
    chain: ChainClient,
    on_status: Optional[StatusCallback] = None,
) -> Optional[PreflightOutcome]:
    """
    Make allowances sufficient before an upload.

    Rate and lockup are checked independently: either one being short
    triggers the full deposit and approval sequence.

    Args:
        report: Sufficiency report for the upload
        plan: Spender and creation fee to apply
        payments: Payments service
        chain: Chain client used to wait for each transaction
        on_status: Optional status message callback

    Returns:
        PreflightOutcome, or None when the report was already sufficient

    Raises:
        InsufficientAllowance: If the deposit or the approval failed
    """
    if report.is_sufficient:
        return None

    def _status(message: str) -> None:
        logger.info(message)
        if on_status is not None:
            on_status(message)

    total = plan.total_allowance(report)
    rate = plan.rate_allowance(report)
    lockup = plan.lockup_allowance(report)
    _status(
        f"Insufficient allowance (rate sufficient: {report.is_rate_sufficient}, "
        f"lockup sufficient: {report.is_lockup_sufficient})"
    )

    # 1. Deposit into escrow; a rate-only shortfall has nothing to deposit
    deposit_tx = None
    if total > 0:
        _status(f"Depositing {format_token_amount(total)} to cover storage costs")
        deposit_tx = await _submit_and_wait(
            "deposit", lambda: payments.deposit(total), chain, total, rate, lockup
        )
        _status("Deposit confirmed")

    # 2. Approve the storage service at the new rate
    _status("Approving storage service spending rate")
    approval_tx = await _submit_and_wait(
        "approval",
        lambda: payments.approve_spender(plan.spender_address, rate, lockup),
        chain,
        total,
        rate,
        lockup,
    )
    _status("Storage service approved")

    return PreflightOutcome(
        deposit_amount=total,
        rate_allowance=rate,
        lockup_allowance=lockup,
        deposit_transaction=deposit_tx,
        approval_transaction=approval_tx,
    )


async def _submit_and_wait(
    step, submit, chain: ChainClient, total: int, rate: int, lockup: int
) -> TransactionRef:
    """Submit one transaction and block until it is mined successfully."""
    try:
        transaction = await submit()
        logger.info("Submitted %s transaction %s", step, transaction.hash)
        receipt = await chain.wait_for_receipt(transaction)
    except Exception as e:
        raise InsufficientAllowance(step, total, rate, lockup, str(e)) from e

    if not receipt.succeeded:
        raise InsufficientAllowance(step, total, rate, lockup, f"transaction {transaction.hash} reverted")
    return transaction
