"""
One simulated machine: a single call stack shared by every ledger on it.

Ledgers created through the same Machine see each other's frames, which is
what lets a cross-ledger attack be traced as one invocation chain and lets a
payout budget follow calls from one ledger into another.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .accounts import Account
from .call_stack import CallStack
from .config import SimulationConfig
from .guards import GuardPolicy
from .ledger import Ledger

if TYPE_CHECKING:
    from ..attacks.attacker import Attacker
    from ..attacks.cross_ledger import CrossLedgerAttacker

logger = logging.getLogger(__name__)


class Machine:
    """Factory and registry for ledgers and accounts sharing one call stack."""

    def __init__(self, config: SimulationConfig | None = None):
        self.config = config or SimulationConfig()
        self.call_stack = CallStack(max_depth=self.config.stack.max_call_depth)
        self.ledgers: dict[str, Ledger] = {}
        self.accounts: dict[str, Account] = {}

    def create_ledger(self, name: str, guard: GuardPolicy | str = GuardPolicy.NONE) -> Ledger:
        if name in self.ledgers:
            raise ValueError(f"Ledger {name!r} already exists")
        ledger = Ledger(name, guard, call_stack=self.call_stack, config=self.config)
        self.ledgers[name] = ledger
        logger.debug(
            "Ledger created",
            extra={"event": "machine.ledger_created", "ledger": name, "guard": ledger.guard.value},
        )
        return ledger

    def create_account(self, label: str, wallet_balance: int = 0) -> Account:
        if label in self.accounts:
            raise ValueError(f"Account {label!r} already exists")
        account = Account(
            label,
            wallet_balance=wallet_balance,
            receive_cost=self.config.gas.minimal_callback_cost,
        )
        self.accounts[label] = account
        return account

    def create_attacker(
        self,
        owner: Account,
        ledger: Ledger,
        *,
        label: str = "attacker",
        minimal: bool = False,
        step_budget: int | None = None,
    ) -> "Attacker":
        """
        Build a single-ledger attacker.

        ``minimal=True`` gives it the cheapest possible callback logic, the
        variant that still fits inside a GasLimited payout budget.
        """
        from ..attacks.attacker import Attacker

        return Attacker(
            owner,
            ledger,
            label=label,
            config=self.config,
            step_budget=step_budget,
            callback_cost=self.config.gas.minimal_callback_cost if minimal else None,
        )

    def create_cross_ledger_attacker(
        self,
        owner: Account,
        ledger_a: Ledger,
        ledger_b: Ledger,
        *,
        label: str = "cross-ledger-attacker",
        step_budget: int | None = None,
    ) -> "CrossLedgerAttacker":
        from ..attacks.cross_ledger import CrossLedgerAttacker

        return CrossLedgerAttacker(
            owner,
            ledger_a,
            ledger_b,
            label=label,
            config=self.config,
            step_budget=step_budget,
        )

    def __repr__(self) -> str:
        return f"Machine(ledgers={list(self.ledgers)}, stack={self.call_stack!r})"


__all__ = ["Machine"]
