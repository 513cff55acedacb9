"""
Simulation exception hierarchy for reentrancy_sim.

Every failure the engine can report is a typed exception carrying a stable
``code`` so callers (tests, the CLI, scenario reports) can tell the failures
apart without parsing messages. None of them are transient: a failure means a
precondition was violated and retrying the same call cannot succeed.
"""

from __future__ import annotations

from typing import Any


class SimulationError(Exception):
    """Base exception for all simulation errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
    """

    code = "SimulationError"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, Any]:
        """Serialize for reports and JSON output."""
        return {
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
        }


class ConfigurationError(SimulationError):
    """Raised when required configuration is missing or invalid."""

    code = "ConfigurationError"


# ==================== Ledger Errors ====================


class LedgerError(SimulationError):
    """Raised when a ledger operation violates a precondition."""

    code = "LedgerError"


class InsufficientBalanceError(LedgerError):
    """Raised when an account (or the ledger itself) lacks funds for an operation."""

    code = "InsufficientBalance"


class InvalidAmountError(LedgerError):
    """Raised when an amount is zero or negative."""

    code = "InvalidAmount"


class InvalidRecipientError(LedgerError):
    """Raised when a transfer names no recipient or the zero address."""

    code = "InvalidRecipient"


class ReentrantCallRejectedError(LedgerError):
    """Raised by ReentrancyGuard and Mutex when a guarded operation is re-entered."""

    code = "ReentrantCallRejected"


class UnsupportedOperationError(LedgerError):
    """Raised when an operation is not offered by the ledger's guard policy."""

    code = "UnsupportedOperation"


class PayoutFailedError(LedgerError):
    """Raised when the payout hook declines the payment or fails internally."""

    code = "PayoutFailed"


# ==================== Execution Errors ====================


class ExecutionError(SimulationError):
    """Raised when the simulated machine cannot continue executing a call chain."""

    code = "ExecutionError"


class OutOfGasError(ExecutionError):
    """Raised when work inside a budgeted payout exceeds the remaining budget."""

    code = "OutOfGas"

    def __init__(
        self,
        message: str,
        required: int | None = None,
        remaining: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.required = required
        self.remaining = remaining


class CallDepthExceededError(ExecutionError):
    """Raised when the call stack would grow beyond its configured ceiling."""

    code = "CallDepthExceeded"


# ==================== Attack Errors ====================


class AttackError(SimulationError):
    """Raised when an attacker state machine rejects a command."""

    code = "AttackError"


class AttackInProgressError(AttackError):
    """Raised when attack() is called while an attack is still running."""

    code = "AttackInProgress"


class InsufficientDepositError(AttackError):
    """Raised when an attack deposit cannot cover every targeted ledger."""

    code = "InsufficientDeposit"


class UnauthorizedError(AttackError):
    """Raised when someone other than the owner tries to collect funds."""

    code = "Unauthorized"


__all__ = [
    "SimulationError",
    "ConfigurationError",
    "LedgerError",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "InvalidRecipientError",
    "ReentrantCallRejectedError",
    "UnsupportedOperationError",
    "PayoutFailedError",
    "ExecutionError",
    "OutOfGasError",
    "CallDepthExceededError",
    "AttackError",
    "AttackInProgressError",
    "InsufficientDepositError",
    "UnauthorizedError",
]
