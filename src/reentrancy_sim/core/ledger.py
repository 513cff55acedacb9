"""
Custodial ledger with a pluggable reentrancy defense.

The ledger holds funds on behalf of accounts and pays them out through the
receiver's ``notify`` hook. That hook runs while the withdraw/transfer that
triggered it is still executing, so it can call back into the ledger before
the outer call has committed its bookkeeping. What the nested call sees is
decided by the ledger's GuardPolicy:

- NONE / GAS_LIMITED: payout first, then a stale write computed from the
  balance read at entry. Nested calls see the old balance and can spend it
  again. GAS_LIMITED only caps the work the hook may do.
- REENTRANCY_GUARD / MUTEX: same ordering, but a nested withdraw or transfer
  fails with ReentrantCallRejected while either operation is on the stack.
- CEI: balance is debited before the hook runs; nested calls see the debit.
- PULL_PAYMENT: withdraw/transfer only move funds to pending withdrawals.
  complete_withdrawal pays them out after clearing the pending entry.

A failing operation restores every ledger and receiver touched beneath it,
through the journal kept on the call stack. Guard flags are released on
every exit path.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from typing import ContextManager, Iterator

from .accounts import PayoutNotifiable, derive_address, is_valid_address
from .atomic import Snapshotable
from .call_stack import CallFrame, CallStack, OperationKind, record_state
from .config import SimulationConfig
from .exceptions import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidRecipientError,
    PayoutFailedError,
    SimulationError,
    UnsupportedOperationError,
)
from .gas import ExecutionBudget
from .guards import GuardPolicy, flag_guard_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Copy of a ledger's mutable store."""
    balances: dict[str, int] = field(default_factory=dict)
    pending: dict[str, int] = field(default_factory=dict)
    held_funds: int = 0


def _address_of(account: PayoutNotifiable | str) -> str:
    return account if isinstance(account, str) else account.address


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(
            f"Amount must be a positive integer, got {amount!r}",
            details={"amount": amount},
        )


class Ledger:
    """Value-custody ledger exposing deposit, withdraw and transfer."""

    def __init__(
        self,
        name: str,
        guard: GuardPolicy | str = GuardPolicy.NONE,
        *,
        call_stack: CallStack | None = None,
        config: SimulationConfig | None = None,
    ):
        self.name = name
        self.guard = GuardPolicy.parse(guard)
        self.config = config or SimulationConfig()
        self.call_stack = call_stack or CallStack(max_depth=self.config.stack.max_call_depth)
        self.address = derive_address(f"ledger:{name}")

        self._balances: dict[str, int] = {}
        self._pending: dict[str, int] = {}
        self._held_funds = 0
        self._flag = flag_guard_for(self.guard)

    # ==================== Queries ====================

    def get_balance(self) -> int:
        """Funds the ledger actually holds."""
        return self._held_funds

    def get_user_balance(self, account: PayoutNotifiable | str) -> int:
        return self._balances.get(_address_of(account), 0)

    def get_pending_withdrawal(self, account: PayoutNotifiable | str) -> int:
        return self._pending.get(_address_of(account), 0)

    def total_user_balances(self) -> int:
        return sum(self._balances.values())

    def total_pending(self) -> int:
        return sum(self._pending.values())

    def conservation_holds(self) -> bool:
        """True when held funds exactly back every recorded claim."""
        return self._held_funds == self.total_user_balances() + self.total_pending()

    @property
    def balances(self) -> dict[str, int]:
        return {address: amount for address, amount in self._balances.items() if amount}

    @property
    def reentrancy_flag(self) -> bool:
        return self._flag is not None and self._flag.entered

    # ==================== Commands ====================

    def deposit(self, account: PayoutNotifiable, amount: int) -> int:
        """
        Credit ``amount`` to ``account``.

        Returns:
            The account's new balance

        Raises:
            InvalidAmountError: If amount is not a positive integer
        """
        _require_positive(amount)
        self._charge_entry("deposit")
        record_state(self)

        address = account.address
        self._balances[address] = self._balances.get(address, 0) + amount
        self._held_funds += amount

        logger.debug(
            "Deposit recorded",
            extra={
                "event": "ledger.deposit",
                "ledger": self.name,
                "account": address[:10],
                "amount": amount,
                "held_funds": self._held_funds,
            },
        )
        return self._balances[address]

    def withdraw(self, account: PayoutNotifiable) -> int:
        """
        Pay out the account's full balance.

        Under PULL_PAYMENT this only initiates the withdrawal.

        Returns:
            Amount paid out (or moved to pending)

        Raises:
            InsufficientBalanceError: If the balance is zero at entry
            ReentrantCallRejectedError: If a flag guard is already held
        """
        if self.guard.defers_payout:
            return self.initiate_withdrawal(account)

        with self._operation(account.address, OperationKind.WITHDRAW) as frame:
            balance = self._balances.get(account.address, 0)
            if balance <= 0:
                raise InsufficientBalanceError(
                    "Insufficient balance",
                    details={"ledger": self.name, "account": account.address},
                )

            if self.guard.commits_before_payout:
                self._balances[account.address] = 0
                self._payout(account, balance, frame)
            else:
                self._payout(account, balance, frame)
                self._balances[account.address] = 0

            logger.info(
                "Withdrawal paid",
                extra={
                    "event": "ledger.withdraw",
                    "ledger": self.name,
                    "guard": self.guard.value,
                    "account": account.address[:10],
                    "amount": balance,
                    "depth": frame.depth,
                },
            )
            return balance

    def transfer(
        self,
        sender: PayoutNotifiable,
        to: PayoutNotifiable | None,
        amount: int,
    ) -> int:
        """
        Move ``amount`` of the sender's balance out to ``to``.

        The recipient is paid through its payout hook; under PULL_PAYMENT the
        amount is credited to the recipient's pending withdrawal instead.

        Returns:
            The sender's remaining balance as committed by this call

        Raises:
            InvalidRecipientError: If ``to`` is missing, is not an account that
                can receive payouts (a bare address string, say), or has the
                zero address
            InvalidAmountError: If amount is not a positive integer
            InsufficientBalanceError: If amount exceeds the sender's balance
        """
        with self._operation(sender.address, OperationKind.TRANSFER) as frame:
            if to is not None and not isinstance(to, PayoutNotifiable):
                raise InvalidRecipientError(
                    f"Recipient {to!r} cannot receive payouts; pass the account, not its address",
                    details={"ledger": self.name, "recipient": str(to)},
                )
            if to is None or not is_valid_address(to.address):
                raise InvalidRecipientError(
                    "Invalid recipient", details={"ledger": self.name}
                )
            _require_positive(amount)

            balance = self._balances.get(sender.address, 0)
            if amount > balance:
                raise InsufficientBalanceError(
                    "Insufficient balance",
                    details={
                        "ledger": self.name,
                        "account": sender.address,
                        "balance": balance,
                        "amount": amount,
                    },
                )

            remaining = balance - amount
            if self.guard.defers_payout:
                self._balances[sender.address] = remaining
                self._pending[to.address] = self._pending.get(to.address, 0) + amount
            elif self.guard.commits_before_payout:
                self._balances[sender.address] = remaining
                self._payout(to, amount, frame)
            else:
                self._payout(to, amount, frame)
                self._balances[sender.address] = remaining

            logger.info(
                "Transfer executed",
                extra={
                    "event": "ledger.transfer",
                    "ledger": self.name,
                    "guard": self.guard.value,
                    "from": sender.address[:10],
                    "to": to.address[:10],
                    "amount": amount,
                    "depth": frame.depth,
                },
            )
            return remaining

    def initiate_withdrawal(self, account: PayoutNotifiable) -> int:
        """
        Move the account's full balance into its pending withdrawal.

        No external call happens here.

        Raises:
            UnsupportedOperationError: If the ledger is not a PULL_PAYMENT ledger
            InsufficientBalanceError: If the balance is zero
        """
        self._require_pull_payment("initiate_withdrawal")
        with self._operation(account.address, OperationKind.INITIATE_WITHDRAWAL):
            balance = self._balances.get(account.address, 0)
            if balance <= 0:
                raise InsufficientBalanceError(
                    "Insufficient balance",
                    details={"ledger": self.name, "account": account.address},
                )
            self._balances[account.address] = 0
            self._pending[account.address] = self._pending.get(account.address, 0) + balance

            logger.info(
                "Withdrawal initiated",
                extra={
                    "event": "ledger.initiate_withdrawal",
                    "ledger": self.name,
                    "account": account.address[:10],
                    "amount": balance,
                },
            )
            return balance

    def complete_withdrawal(self, account: PayoutNotifiable) -> int:
        """
        Pay out the account's pending withdrawal.

        The pending entry is cleared before the payout hook runs.

        Raises:
            UnsupportedOperationError: If the ledger is not a PULL_PAYMENT ledger
            InsufficientBalanceError: If nothing is pending
        """
        self._require_pull_payment("complete_withdrawal")
        with self._operation(account.address, OperationKind.COMPLETE_WITHDRAWAL) as frame:
            amount = self._pending.get(account.address, 0)
            if amount <= 0:
                raise InsufficientBalanceError(
                    "No pending withdrawal",
                    details={"ledger": self.name, "account": account.address},
                )
            del self._pending[account.address]
            self._payout(account, amount, frame)

            logger.info(
                "Withdrawal completed",
                extra={
                    "event": "ledger.complete_withdrawal",
                    "ledger": self.name,
                    "account": account.address[:10],
                    "amount": amount,
                },
            )
            return amount

    # ==================== Snapshots ====================

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            balances=dict(self._balances),
            pending=dict(self._pending),
            held_funds=self._held_funds,
        )

    def restore(self, snapshot: LedgerSnapshot) -> None:
        self._balances = dict(snapshot.balances)
        self._pending = dict(snapshot.pending)
        self._held_funds = snapshot.held_funds

    # ==================== Internals ====================

    def _require_pull_payment(self, operation: str) -> None:
        if not self.guard.defers_payout:
            raise UnsupportedOperationError(
                f"{operation} is only available on pull-payment ledgers",
                details={"ledger": self.name, "guard": self.guard.value},
            )

    def _charge_entry(self, operation: str) -> None:
        """Charge the cost of calling into this ledger to the active payout budget."""
        budget = self.call_stack.active_budget()
        if budget is not None:
            budget.charge(self.config.gas.reentry_call_cost, reason=f"{self.name}.{operation}")

    def _hold_flag(self) -> ContextManager[None]:
        if self._flag is None:
            return nullcontext()
        return self._flag.hold(self.name)

    @contextmanager
    def _operation(self, address: str, kind: OperationKind) -> Iterator[CallFrame]:
        self._charge_entry(kind.value)
        with self.call_stack.enter(self.name, address, kind) as frame, self._hold_flag():
            record_state(self)
            yield frame

    def _payout(self, recipient: PayoutNotifiable, amount: int, frame: CallFrame) -> None:
        """Send ``amount`` out of the ledger and run the recipient's hook."""
        if amount > self._held_funds:
            raise InsufficientBalanceError(
                "Ledger cannot cover payout",
                details={"ledger": self.name, "held_funds": self._held_funds, "amount": amount},
            )
        self._held_funds -= amount
        if isinstance(recipient, Snapshotable):
            record_state(recipient)

        stipend = self.config.gas.stipend if self.guard.limits_gas else None
        budget = ExecutionBudget.nested(stipend, self.call_stack.active_budget())
        frame.budget = budget
        try:
            accepted = recipient.notify(self, amount, budget)
        except SimulationError:
            raise
        except Exception as exc:
            raise PayoutFailedError(
                f"Payout to {recipient.address} failed: {exc}",
                details={"ledger": self.name, "amount": amount},
            ) from exc
        finally:
            frame.budget = None
            if budget is not None:
                budget.settle()

        if accepted is False:
            raise PayoutFailedError(
                "Payout declined by recipient",
                details={"ledger": self.name, "recipient": recipient.address, "amount": amount},
            )

    def __repr__(self) -> str:
        return (
            f"Ledger({self.name!r}, guard={self.guard.value}, "
            f"held_funds={self._held_funds})"
        )


__all__ = ["Ledger", "LedgerSnapshot"]
