"""
Single-ledger reentrancy attacker.

``attack`` deposits, then withdraws. Every payout the ledger sends back
triggers another withdrawal before the ledger has committed the previous
one, until the ledger is empty, the step budget runs out, or a re-entry is
refused.

The cross-function mode alternates ``withdraw`` and ``transfer`` against the
same balance record, showing that the hole belongs to the shared balance
store rather than to any single entry point.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from ..core.accounts import Account
from ..core.atomic import atomic
from ..core.config import SimulationConfig
from ..core.exceptions import SimulationError
from ..core.gas import ExecutionBudget
from .base import AttackStatusReport, BaseAttacker, Phase

if TYPE_CHECKING:
    from ..core.ledger import Ledger

logger = logging.getLogger(__name__)


class AttackMode(Enum):
    WITHDRAW = "withdraw"
    CROSS_FUNCTION = "cross_function"


class Attacker(BaseAttacker):
    """Re-enters one ledger from its payout hook."""

    def __init__(
        self,
        owner: Account,
        ledger: "Ledger",
        *,
        label: str = "attacker",
        config: SimulationConfig | None = None,
        step_budget: int | None = None,
        callback_cost: int | None = None,
    ):
        super().__init__(
            owner,
            label=label,
            config=config or ledger.config,
            step_budget=step_budget,
            callback_cost=callback_cost,
        )
        self.ledger = ledger
        self.mode = AttackMode.WITHDRAW

    def attack(self, deposit_amount: int, mode: AttackMode = AttackMode.WITHDRAW) -> AttackStatusReport:
        """
        Deposit ``deposit_amount`` and start draining the ledger.

        Returns:
            Status after the attack has finished

        Raises:
            AttackInProgressError: If called while an attack is running
            InvalidAmountError: If the deposit is not a positive integer
            SimulationError: Anything that aborts the opening move; the deposit
                and the attacker's state are rolled back first
        """
        self._require_not_attacking()
        self._require_positive(deposit_amount)

        try:
            with atomic(self, self.ledger):
                self.mode = mode
                self._begin(deposit_amount)
                self.ledger.deposit(self, deposit_amount)
                self._drain(self.ledger)
                self._finish()
        except SimulationError as exc:
            self._log_revert(exc)
            raise

        return self.get_attack_status()

    def attack_with_withdraw(self, deposit_amount: int) -> AttackStatusReport:
        return self.attack(deposit_amount, AttackMode.WITHDRAW)

    def attack_with_cross_function(self, deposit_amount: int) -> AttackStatusReport:
        return self.attack(deposit_amount, AttackMode.CROSS_FUNCTION)

    def on_payout(self, ledger: "Ledger", amount: int, budget: ExecutionBudget | None) -> None:
        if self.phase is not Phase.ATTACKING or ledger is not self.ledger:
            return

        self.step_count += 1
        if self.step_count >= self.step_budget or self.ledger.get_balance() <= 0:
            self._finish()
            return

        if not self._attempt(self._next_move):
            self._finish()

    def _next_move(self) -> None:
        # Odd steps go through transfer in cross-function mode
        if self.mode is AttackMode.CROSS_FUNCTION and self.step_count % 2 == 1:
            self.ledger.transfer(self, self, self.deposit_amount)
        else:
            self._drain(self.ledger)

    def get_attack_status(self) -> AttackStatusReport:
        if self.phase is Phase.DONE:
            next_target = "Done"
        else:
            next_target = self.ledger.name
        return AttackStatusReport(
            in_progress=self.in_progress,
            phase=self.phase.value,
            steps=self.step_count,
            next_target_name=next_target,
            vault_a_balance=self.ledger.get_balance(),
            vault_b_balance=None,
            attacker_balance=self.wallet_balance,
            last_rejection=self.last_rejection.code if self.last_rejection else None,
        )

    def snapshot(self) -> dict:
        state = super().snapshot()
        state["mode"] = self.mode
        return state

    def restore(self, snapshot: dict) -> None:
        super().restore(snapshot)
        self.mode = snapshot["mode"]


__all__ = ["AttackMode", "Attacker"]
