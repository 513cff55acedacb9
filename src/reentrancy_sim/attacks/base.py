"""
Shared attacker state machine pieces.

An attacker is an account whose payout hook keeps calling back into the
ledger that is paying it. Phases::

    Idle -> Attacking -> Done   (Done -> Attacking again on a new attack())

A re-entry attempt that fails (guard rejection, insufficient balance, out of
gas) is the attacker's signal to stop: it is recorded in ``last_rejection``
and the attack winds down normally. Failures of the attacker's own logic are
not caught and revert the whole attack.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from ..core.accounts import Account
from ..core.config import SimulationConfig
from ..core.exceptions import (
    AttackInProgressError,
    InvalidAmountError,
    SimulationError,
    UnauthorizedError,
)

if TYPE_CHECKING:
    from ..core.ledger import Ledger

logger = logging.getLogger(__name__)


class Phase(Enum):
    IDLE = "Idle"
    ATTACKING = "Attacking"
    DONE = "Done"


@dataclass(frozen=True)
class AttackStatusReport:
    """Read-only view of an attacker, live or after the attack."""
    in_progress: bool
    phase: str
    steps: int
    next_target_name: str
    vault_a_balance: int
    vault_b_balance: int | None
    attacker_balance: int
    last_rejection: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class BaseAttacker(Account):
    """Owner-controlled account that turns payouts into re-entrant calls."""

    def __init__(
        self,
        owner: Account,
        *,
        label: str,
        config: SimulationConfig | None = None,
        step_budget: int | None = None,
        callback_cost: int | None = None,
    ):
        config = config or SimulationConfig()
        super().__init__(
            label,
            receive_cost=(
                config.gas.attack_callback_cost if callback_cost is None else callback_cost
            ),
        )
        self.owner = owner
        self.config = config
        self.step_budget = config.attack.step_budget if step_budget is None else step_budget
        if self.step_budget < 1:
            raise ValueError("step_budget must be at least 1")

        self.phase = Phase.IDLE
        self.step_count = 0
        self.deposit_amount = 0
        self.last_rejection: SimulationError | None = None

    # ==================== Queries ====================

    @property
    def in_progress(self) -> bool:
        return self.phase is Phase.ATTACKING

    def get_balance(self) -> int:
        return self.wallet_balance

    def get_attack_steps(self) -> int:
        return self.step_count

    # ==================== Commands ====================

    def collect_stolen_funds(self, caller: Account) -> int:
        """
        Send everything the attacker holds to its owner.

        Raises:
            UnauthorizedError: If ``caller`` is not the owner
        """
        if caller.address != self.owner.address:
            raise UnauthorizedError(
                "Only owner can collect",
                details={"caller": caller.address, "attacker": self.address},
            )
        amount = self.wallet_balance
        self.wallet_balance = 0
        self.owner.wallet_balance += amount

        logger.info(
            "Stolen funds collected",
            extra={"event": "attack.collect", "attacker": self.label, "amount": amount},
        )
        return amount

    # ==================== State machine helpers ====================

    def _require_not_attacking(self) -> None:
        if self.phase is Phase.ATTACKING:
            raise AttackInProgressError(
                "Attack already in progress",
                details={"attacker": self.label, "steps": self.step_count},
            )

    @staticmethod
    def _require_positive(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmountError(
                f"Deposit must be a positive integer, got {amount!r}",
                details={"amount": amount},
            )

    def _begin(self, deposit_amount: int) -> None:
        self.phase = Phase.ATTACKING
        self.step_count = 0
        self.deposit_amount = deposit_amount
        self.last_rejection = None
        logger.info(
            "Attack started",
            extra={"event": "attack.started", "attacker": self.label, "deposit": deposit_amount},
        )

    def _finish(self) -> None:
        if self.phase is not Phase.ATTACKING:
            return
        self.phase = Phase.DONE
        logger.info(
            "Attack finished",
            extra={
                "event": "attack.finished",
                "attacker": self.label,
                "steps": self.step_count,
                "balance": self.wallet_balance,
                "stopped_by": self.last_rejection.code if self.last_rejection else None,
            },
        )

    def _attempt(self, move: Callable[[], Any]) -> bool:
        """Run a re-entry move; a simulation failure ends the attack instead of propagating."""
        try:
            move()
        except SimulationError as exc:
            self.last_rejection = exc
            logger.info(
                "Re-entry attempt failed: %s",
                exc.code,
                extra={
                    "event": "attack.reentry_failed",
                    "attacker": self.label,
                    "steps": self.step_count,
                    "error": exc.code,
                },
            )
            return False
        return True

    def _drain(self, ledger: "Ledger") -> None:
        """Withdraw everything from ``ledger``, completing pull payments too."""
        ledger.withdraw(self)
        if ledger.guard.defers_payout and ledger.get_pending_withdrawal(self) > 0:
            ledger.complete_withdrawal(self)

    def _log_revert(self, exc: SimulationError) -> None:
        logger.warning(
            "Attack reverted: %s",
            exc.code,
            extra={"event": "attack.reverted", "attacker": self.label, "error": exc.code},
        )

    # ==================== Snapshots ====================

    def snapshot(self) -> dict[str, Any]:
        state = super().snapshot()
        state.update(
            phase=self.phase,
            step_count=self.step_count,
            deposit_amount=self.deposit_amount,
            last_rejection=self.last_rejection,
        )
        return state

    def restore(self, snapshot: dict[str, Any]) -> None:
        super().restore(snapshot)
        self.phase = snapshot["phase"]
        self.step_count = snapshot["step_count"]
        self.deposit_amount = snapshot["deposit_amount"]
        self.last_rejection = snapshot["last_rejection"]


__all__ = ["AttackStatusReport", "BaseAttacker", "Phase"]
