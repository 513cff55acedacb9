"""
Cross-ledger reentrancy attacker.

Splits its deposit between two ledgers and ping-pongs between them inside a
single outer call: a payout from A triggers a withdrawal from B, whose payout
triggers another withdrawal from A, and so on. Neither ledger's guard knows
the other one is mid-operation. A ledger that refuses a re-entry is dropped
and the attack keeps working the other one, so one guarded ledger does not
protect an unguarded neighbour.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..core.accounts import Account
from ..core.atomic import atomic
from ..core.config import SimulationConfig
from ..core.exceptions import InsufficientDepositError, SimulationError
from ..core.gas import ExecutionBudget
from .base import AttackStatusReport, BaseAttacker, Phase

if TYPE_CHECKING:
    from ..core.ledger import Ledger

logger = logging.getLogger(__name__)


class CrossLedgerAttacker(BaseAttacker):
    """Alternates withdrawals between two independently guarded ledgers."""

    def __init__(
        self,
        owner: Account,
        ledger_a: "Ledger",
        ledger_b: "Ledger",
        *,
        label: str = "cross-ledger-attacker",
        config: SimulationConfig | None = None,
        step_budget: int | None = None,
        callback_cost: int | None = None,
        min_deposit_per_ledger: int | None = None,
    ):
        if ledger_a is ledger_b:
            raise ValueError("Cross-ledger attack needs two distinct ledgers")
        config = config or ledger_a.config
        super().__init__(
            owner,
            label=label,
            config=config,
            step_budget=step_budget,
            callback_cost=callback_cost,
        )
        self.ledger_a = ledger_a
        self.ledger_b = ledger_b
        self.min_deposit_per_ledger = (
            config.attack.min_deposit_per_ledger
            if min_deposit_per_ledger is None
            else min_deposit_per_ledger
        )
        self.next_target: "Ledger | None" = ledger_a
        self._blocked: list["Ledger"] = []

    @property
    def minimum_deposit(self) -> int:
        return self.min_deposit_per_ledger * 2

    def attack(self, deposit_amount: int) -> AttackStatusReport:
        """
        Split ``deposit_amount`` across both ledgers and drain them in turn.

        Raises:
            AttackInProgressError: If called while an attack is running
            InsufficientDepositError: If the deposit cannot fund both ledgers
        """
        self._require_not_attacking()
        self._require_positive(deposit_amount)
        if deposit_amount < self.minimum_deposit:
            raise InsufficientDepositError(
                f"Need at least {self.minimum_deposit} "
                f"({self.min_deposit_per_ledger} per ledger)",
                details={"deposit": deposit_amount, "minimum": self.minimum_deposit},
            )

        share_b = deposit_amount // 2
        share_a = deposit_amount - share_b

        try:
            with atomic(self, self.ledger_a, self.ledger_b):
                self._begin(deposit_amount)
                self._blocked = []
                self.next_target = self.ledger_a
                self.ledger_a.deposit(self, share_a)
                self.ledger_b.deposit(self, share_b)
                self._drain(self.ledger_a)
                self._finish()
        except SimulationError as exc:
            self._log_revert(exc)
            raise

        return self.get_attack_status()

    def on_payout(self, ledger: "Ledger", amount: int, budget: ExecutionBudget | None) -> None:
        if self.phase is not Phase.ATTACKING or ledger not in (self.ledger_a, self.ledger_b):
            return

        self.step_count += 1
        target = self._choose_next(ledger)
        while target is not None:
            self.next_target = target
            if self._attempt(lambda: self._drain(target)):
                return
            self._blocked.append(target)
            logger.debug(
                "Dropping %s from the attack",
                target.name,
                extra={"event": "attack.target_dropped", "ledger": target.name},
            )
            target = self._choose_next(ledger)

        self._finish()

    def _choose_next(self, current: "Ledger") -> "Ledger | None":
        """Prefer the other ledger, fall back to the current one, stop when both are spent."""
        if self.step_count >= self.step_budget:
            return None
        other = self.ledger_b if current is self.ledger_a else self.ledger_a
        for candidate in (other, current):
            if candidate in self._blocked:
                continue
            if candidate.get_balance() > 0:
                return candidate
        return None

    def _finish(self) -> None:
        super()._finish()
        self.next_target = None

    def get_attack_status(self) -> AttackStatusReport:
        if self.phase is Phase.DONE or self.next_target is None:
            next_target = "Done"
        else:
            next_target = self.next_target.name
        return AttackStatusReport(
            in_progress=self.in_progress,
            phase=self.phase.value,
            steps=self.step_count,
            next_target_name=next_target,
            vault_a_balance=self.ledger_a.get_balance(),
            vault_b_balance=self.ledger_b.get_balance(),
            attacker_balance=self.wallet_balance,
            last_rejection=self.last_rejection.code if self.last_rejection else None,
        )

    def snapshot(self) -> dict:
        state = super().snapshot()
        state["next_target"] = self.next_target
        state["blocked"] = list(self._blocked)
        return state

    def restore(self, snapshot: dict) -> None:
        super().restore(snapshot)
        self.next_target = snapshot["next_target"]
        self._blocked = list(snapshot["blocked"])


__all__ = ["CrossLedgerAttacker"]
