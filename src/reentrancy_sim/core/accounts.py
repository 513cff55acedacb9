"""
Accounts that can receive payouts from a ledger.

The ledger never knows what kind of party it pays. It only relies on the
``PayoutNotifiable`` capability: an address plus a ``notify`` callback that
runs synchronously while the ledger's operation is still on the stack, and
may call straight back into any ledger.
"""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .exceptions import InvalidAmountError
from .gas import ExecutionBudget

if TYPE_CHECKING:
    from .ledger import Ledger

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


def derive_address(label: str) -> str:
    """Deterministic 20-byte hex address for a human-readable label."""
    digest = hashlib.sha3_256(f"account:{label}".encode()).digest()
    return f"0x{digest[-20:].hex()}"


def is_valid_address(address: str | None) -> bool:
    return bool(address) and address != ZERO_ADDRESS


@runtime_checkable
class PayoutNotifiable(Protocol):
    """Capability a ledger needs to pay a party."""

    address: str

    def notify(self, ledger: "Ledger", amount: int, budget: ExecutionBudget | None) -> bool:
        """Receive ``amount`` from ``ledger``. Return False to decline the payment."""
        ...


class Account:
    """
    Benign payout receiver with its own wallet outside every ledger.

    ``notify`` charges the receive cost to the payout budget, credits the
    wallet and then runs ``on_payout``. If anything escapes, the wallet is
    put back to what it held on entry before the failure propagates, so the
    account and the paying ledger roll back together.
    """

    def __init__(
        self,
        label: str,
        address: str | None = None,
        wallet_balance: int = 0,
        receive_cost: int = 0,
    ):
        if wallet_balance < 0:
            raise InvalidAmountError("Wallet balance cannot be negative")
        self.label = label
        self.address = address or derive_address(label)
        self.wallet_balance = wallet_balance
        self.receive_cost = receive_cost
        self.payouts_received = 0

    def notify(self, ledger: "Ledger", amount: int, budget: ExecutionBudget | None) -> bool:
        if budget is not None:
            budget.charge(self.receive_cost, reason=f"{self.label}.receive")

        saved = self.snapshot()
        try:
            self.wallet_balance += amount
            self.payouts_received += 1
            self.on_payout(ledger, amount, budget)
        except Exception:
            self.restore(saved)
            raise
        return True

    def on_payout(self, ledger: "Ledger", amount: int, budget: ExecutionBudget | None) -> None:
        """Hook for subclasses; runs after the wallet has been credited."""

    def snapshot(self) -> dict[str, Any]:
        return {"wallet_balance": self.wallet_balance, "payouts_received": self.payouts_received}

    def restore(self, snapshot: dict[str, Any]) -> None:
        self.wallet_balance = snapshot["wallet_balance"]
        self.payouts_received = snapshot["payouts_received"]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.label!r}, wallet={self.wallet_balance})"


__all__ = [
    "Account",
    "PayoutNotifiable",
    "ZERO_ADDRESS",
    "derive_address",
    "is_valid_address",
]
