"""
Error taxonomy for allowance checks and upload orchestration.

Every error carries a stable ``code`` so callers can branch on the kind
without matching on messages.
"""

from typing import Optional


class StorageGuardError(Exception):
    """Base class for all storage guard errors."""

    def __init__(self, message: str, code: str = "StorageGuardError"):
        super().__init__(message)
        self.message = message
        self.code = code


class InvalidNetwork(StorageGuardError):
    """No contract configuration exists for the network."""

    def __init__(self, network: str):
        super().__init__(
            f"No contract addresses configured for network: {network}",
            "InvalidNetwork",
        )
        self.network = network


class UpstreamUnavailable(StorageGuardError):
    """A read from the chain or provider could not complete. Safe to retry."""

    def __init__(self, operation: str, reason: str = ""):
        message = f"Upstream call failed during {operation}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, "UpstreamUnavailable")
        self.operation = operation


class InsufficientAllowance(StorageGuardError):
    """Preflight could not bring allowances to sufficiency."""

    def __init__(
        self,
        step: str,
        deposit_amount: int,
        rate_allowance: int,
        lockup_allowance: int,
        reason: str = "",
    ):
        message = (
            f"Allowance top-up failed at {step} step "
            f"(deposit={deposit_amount}, rate={rate_allowance}, lockup={lockup_allowance})"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, "InsufficientAllowance")
        self.step = step
        self.deposit_amount = deposit_amount
        self.rate_allowance = rate_allowance
        self.lockup_allowance = lockup_allowance


class DestinationCreationFailed(StorageGuardError):
    """Creating a new storage destination failed or was reverted."""

    def __init__(self, message: str):
        super().__init__(message, "DestinationCreationFailed")


class TransferFailed(StorageGuardError):
    """Handing bytes to the storage provider failed."""

    def __init__(self, message: str):
        super().__init__(message, "TransferFailed")


class RootRegistrationFailed(StorageGuardError):
    """Registering the uploaded piece on-chain failed or was reverted."""

    def __init__(self, message: str, transaction_hash: Optional[str] = None):
        super().__init__(message, "RootRegistrationFailed")
        self.transaction_hash = transaction_hash


class ConfirmationTimeout(StorageGuardError):
    """Confirmation did not arrive in time.

    Soft failure: the transfer most likely succeeded, but neither the chain
    nor the provider confirmed the root within the bounded wait.
    """

    soft = True

    def __init__(self, commp: str, transaction_hash: Optional[str], waited_seconds: float):
        super().__init__(
            f"Root for {commp} unconfirmed after {waited_seconds:g}s "
            f"(transaction: {transaction_hash or 'not observed'})",
            "ConfirmationTimeout",
        )
        self.commp = commp
        self.transaction_hash = transaction_hash
        self.waited_seconds = waited_seconds


class MalformedResponse(StorageGuardError, ValueError):
    """A chain or registry payload failed validation."""

    def __init__(self, operation: str, reason: str):
        super().__init__(f"Malformed response during {operation}: {reason}", "MalformedResponse")
        self.operation = operation


class UnexpectedError(StorageGuardError):
    """A collaborator raised an error outside the taxonomy.

    ``code`` is the original exception's class name.
    """

    def __init__(self, original: Exception):
        super().__init__(f"{type(original).__name__}: {original}", type(original).__name__)
        self.original = original
