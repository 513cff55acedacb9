"""
Canned reentrancy experiments.

Each scenario builds a fresh Machine, funds its ledgers from two honest
users, runs one attacker and reports what happened. A failure that aborts
the attack is captured in the outcome rather than raised, so scenarios can be
compared side by side.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Sequence

from .attacks.attacker import AttackMode
from .attacks.base import AttackStatusReport
from .core.config import SimulationConfig
from .core.exceptions import SimulationError
from .core.guards import GuardPolicy
from .core.ledger import Ledger
from .core.machine import Machine

logger = logging.getLogger(__name__)

DEFAULT_DEPOSITS = (5, 5)


@dataclass(frozen=True)
class AttackOutcome:
    """Result of one attack scenario."""
    guards: dict[str, str]
    mode: str
    deposit: int
    initial_balances: dict[str, int]
    final_balances: dict[str, int]
    conservation: dict[str, bool]
    attacker_balance: int
    steps: int
    status: AttackStatusReport
    error: str | None = None

    @property
    def protected(self) -> bool:
        """No ledger lost any of its honest users' funds."""
        return all(
            self.final_balances[name] >= self.initial_balances[name]
            for name in self.initial_balances
        )

    @property
    def stolen(self) -> int:
        return max(0, self.attacker_balance - self.deposit)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["protected"] = self.protected
        data["stolen"] = self.stolen
        return data


@dataclass(frozen=True)
class DefenseOutcome:
    """One row of a defense comparison."""
    policy: str
    label: str
    protected: bool
    complete_defense: bool
    conservation_holds: bool
    ledger_balance: int
    attacker_balance: int
    steps: int
    stopped_by: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PullPaymentWalkthrough:
    """Balances observed at each step of a two-step withdrawal."""
    deposited: int
    balance_after_initiate: int
    pending_after_initiate: int
    pending_after_complete: int
    wallet_after_complete: int
    external_calls_during_initiate: int
    trace: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def fund_ledger(
    machine: Machine,
    name: str,
    guard: GuardPolicy | str,
    deposits: Sequence[int] = DEFAULT_DEPOSITS,
) -> Ledger:
    """Create a ledger and have one honest user per entry of ``deposits`` fund it."""
    ledger = machine.create_ledger(name, guard)
    for index, amount in enumerate(deposits, start=1):
        user = machine.create_account(f"{name}-user{index}")
        ledger.deposit(user, amount)
    return ledger


def run_single_attack(
    guard: GuardPolicy | str,
    mode: AttackMode | str = AttackMode.WITHDRAW,
    deposit: int = 1,
    *,
    minimal: bool = False,
    step_budget: int | None = None,
    deposits: Sequence[int] = DEFAULT_DEPOSITS,
    config: SimulationConfig | None = None,
) -> AttackOutcome:
    """Attack one funded ledger with the single-ledger attacker."""
    mode = AttackMode(mode)
    machine = Machine(config)
    ledger = fund_ledger(machine, "Bank", guard, deposits)
    owner = machine.create_account("attacker-owner")
    attacker = machine.create_attacker(owner, ledger, minimal=minimal, step_budget=step_budget)

    initial = {ledger.name: ledger.get_balance()}
    error = None
    try:
        attacker.attack(deposit, mode)
    except SimulationError as exc:
        error = exc.code

    outcome = AttackOutcome(
        guards={ledger.name: ledger.guard.value},
        mode=mode.value,
        deposit=deposit,
        initial_balances=initial,
        final_balances={ledger.name: ledger.get_balance()},
        conservation={ledger.name: ledger.conservation_holds()},
        attacker_balance=attacker.get_balance(),
        steps=attacker.get_attack_steps(),
        status=attacker.get_attack_status(),
        error=error,
    )
    logger.info(
        "Single-ledger scenario complete",
        extra={
            "event": "scenario.single",
            "guard": ledger.guard.value,
            "mode": mode.value,
            "protected": outcome.protected,
            "stolen": outcome.stolen,
            "error": error,
        },
    )
    return outcome


def run_cross_ledger_attack(
    guard_a: GuardPolicy | str = GuardPolicy.NONE,
    guard_b: GuardPolicy | str = GuardPolicy.NONE,
    deposit: int = 2,
    *,
    step_budget: int | None = None,
    deposits: Sequence[int] = DEFAULT_DEPOSITS,
    config: SimulationConfig | None = None,
) -> AttackOutcome:
    """Ping-pong between two funded ledgers with the cross-ledger attacker."""
    machine = Machine(config)
    vault_a = fund_ledger(machine, "VaultA", guard_a, deposits)
    vault_b = fund_ledger(machine, "VaultB", guard_b, deposits)
    owner = machine.create_account("attacker-owner")
    attacker = machine.create_cross_ledger_attacker(
        owner, vault_a, vault_b, step_budget=step_budget
    )

    ledgers = (vault_a, vault_b)
    initial = {ledger.name: ledger.get_balance() for ledger in ledgers}
    error = None
    try:
        attacker.attack(deposit)
    except SimulationError as exc:
        error = exc.code

    outcome = AttackOutcome(
        guards={ledger.name: ledger.guard.value for ledger in ledgers},
        mode="cross_ledger",
        deposit=deposit,
        initial_balances=initial,
        final_balances={ledger.name: ledger.get_balance() for ledger in ledgers},
        conservation={ledger.name: ledger.conservation_holds() for ledger in ledgers},
        attacker_balance=attacker.get_balance(),
        steps=attacker.get_attack_steps(),
        status=attacker.get_attack_status(),
        error=error,
    )
    logger.info(
        "Cross-ledger scenario complete",
        extra={
            "event": "scenario.cross_ledger",
            "guards": outcome.guards,
            "protected": outcome.protected,
            "stolen": outcome.stolen,
            "steps": outcome.steps,
        },
    )
    return outcome


def run_gas_limited_attack(
    minimal: bool,
    mode: AttackMode | str = AttackMode.WITHDRAW,
    config: SimulationConfig | None = None,
) -> AttackOutcome:
    """Attack a GasLimited ledger with either cheap or expensive callback logic."""
    return run_single_attack(GuardPolicy.GAS_LIMITED, mode, minimal=minimal, config=config)


def compare_defenses(
    mode: AttackMode | str = AttackMode.WITHDRAW,
    policies: Iterable[GuardPolicy | str] | None = None,
    *,
    minimal: bool = False,
    config: SimulationConfig | None = None,
) -> list[DefenseOutcome]:
    """Run the same attack against every policy."""
    rows = []
    for policy in (policies or list(GuardPolicy)):
        policy = GuardPolicy.parse(policy)
        outcome = run_single_attack(policy, mode, minimal=minimal, config=config)
        ledger_name = next(iter(outcome.final_balances))
        rows.append(
            DefenseOutcome(
                policy=policy.value,
                label=policy.label,
                protected=outcome.protected,
                complete_defense=policy.is_complete_defense,
                conservation_holds=outcome.conservation[ledger_name],
                ledger_balance=outcome.final_balances[ledger_name],
                attacker_balance=outcome.attacker_balance,
                steps=outcome.steps,
                stopped_by=outcome.status.last_rejection,
                error=outcome.error,
            )
        )
    return rows


def demonstrate_pull_payment(
    amount: int = 3, config: SimulationConfig | None = None
) -> PullPaymentWalkthrough:
    """Deposit, initiate and complete a pull-payment withdrawal for one user."""
    machine = Machine(config)
    ledger = machine.create_ledger("PullBank", GuardPolicy.PULL_PAYMENT)
    user = machine.create_account("user")
    ledger.deposit(user, amount)

    payouts_before = user.payouts_received
    ledger.initiate_withdrawal(user)
    balance_after_initiate = ledger.get_user_balance(user)
    pending_after_initiate = ledger.get_pending_withdrawal(user)
    external_calls = user.payouts_received - payouts_before

    ledger.complete_withdrawal(user)
    return PullPaymentWalkthrough(
        deposited=amount,
        balance_after_initiate=balance_after_initiate,
        pending_after_initiate=pending_after_initiate,
        pending_after_complete=ledger.get_pending_withdrawal(user),
        wallet_after_complete=user.wallet_balance,
        external_calls_during_initiate=external_calls,
        trace=[frame.to_dict() for frame in machine.call_stack.last_trace],
    )


__all__ = [
    "AttackOutcome",
    "DefenseOutcome",
    "PullPaymentWalkthrough",
    "compare_defenses",
    "demonstrate_pull_payment",
    "fund_ledger",
    "run_cross_ledger_attack",
    "run_gas_limited_attack",
    "run_single_attack",
]
