"""
Guard policies controlling how a ledger orders state mutation and payout.

A policy is chosen once, when the ledger is constructed. Every variant
answers the same three questions for the ledger:

- pre-check: is a nested entry rejected outright? (ReentrancyGuard, Mutex)
- mutation ordering: is the balance committed before the payout hook runs?
  (CEI) or are payouts deferred to a separate call? (PullPayment)
- post-release: which flag must be cleared on every exit path?

ReentrancyGuard and Mutex enforce the same contract through two separate
implementations so each can be tested on its own.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Iterator

from .exceptions import ConfigurationError, ReentrantCallRejectedError

logger = logging.getLogger(__name__)


class GuardPolicy(Enum):
    """Available defenses, from no defense to pull payments."""
    NONE = "none"
    REENTRANCY_GUARD = "reentrancy_guard"
    MUTEX = "mutex"
    CEI = "cei"
    PULL_PAYMENT = "pull_payment"
    GAS_LIMITED = "gas_limited"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def rejects_reentry(self) -> bool:
        """Nested guarded calls fail with ReentrantCallRejected."""
        return self in (GuardPolicy.REENTRANCY_GUARD, GuardPolicy.MUTEX)

    @property
    def commits_before_payout(self) -> bool:
        """Balance is debited before the payout hook is invoked."""
        return self is GuardPolicy.CEI

    @property
    def defers_payout(self) -> bool:
        """withdraw/transfer only record pending withdrawals."""
        return self is GuardPolicy.PULL_PAYMENT

    @property
    def limits_gas(self) -> bool:
        """Payout hooks run under a finite execution budget."""
        return self is GuardPolicy.GAS_LIMITED

    @property
    def is_complete_defense(self) -> bool:
        """False for the baseline and for the partial gas-stipend defense."""
        return self not in (GuardPolicy.NONE, GuardPolicy.GAS_LIMITED)

    @classmethod
    def parse(cls, value: "str | GuardPolicy") -> "GuardPolicy":
        """
        Resolve user input such as ``"ReentrancyGuard"``, ``"pull-payment"`` or ``"cei"``.

        Raises:
            ConfigurationError: If the name matches no policy
        """
        if isinstance(value, GuardPolicy):
            return value
        key = str(value).strip().lower().replace("-", "").replace("_", "").replace(" ", "")
        for policy in cls:
            if key == policy.value.replace("_", ""):
                return policy
        if key in _ALIASES:
            return cls(_ALIASES[key])
        raise ConfigurationError(
            f"Unknown guard policy: {value!r}",
            details={"choices": [policy.value for policy in cls]},
        )


_LABELS = {
    GuardPolicy.NONE: "None (vulnerable)",
    GuardPolicy.REENTRANCY_GUARD: "ReentrancyGuard",
    GuardPolicy.MUTEX: "Custom Mutex",
    GuardPolicy.CEI: "CEI Pattern",
    GuardPolicy.PULL_PAYMENT: "Pull Payment",
    GuardPolicy.GAS_LIMITED: "Gas Limit",
}

_ALIASES = {
    "vulnerable": "none",
    "unguarded": "none",
    "nonreentrant": "reentrancy_guard",
    "checkseffectsinteractions": "cei",
    "pull": "pull_payment",
    "gaslimit": "gas_limited",
}


class ReentrancyGuard:
    """Status-word guard in the style of OpenZeppelin's nonReentrant modifier."""

    _NOT_ENTERED = 1
    _ENTERED = 2

    def __init__(self) -> None:
        self._status = self._NOT_ENTERED

    @property
    def entered(self) -> bool:
        return self._status == self._ENTERED

    def _non_reentrant_before(self, ledger_id: str) -> None:
        if self._status == self._ENTERED:
            logger.warning(
                "Re-entrant call rejected",
                extra={"event": "guard.reentry_rejected", "ledger": ledger_id, "guard": "reentrancy_guard"},
            )
            raise ReentrantCallRejectedError(
                "ReentrancyGuard: reentrant call",
                details={"ledger": ledger_id, "guard": GuardPolicy.REENTRANCY_GUARD.value},
            )
        self._status = self._ENTERED

    def _non_reentrant_after(self) -> None:
        self._status = self._NOT_ENTERED

    @contextmanager
    def hold(self, ledger_id: str) -> Iterator[None]:
        self._non_reentrant_before(ledger_id)
        try:
            yield
        finally:
            self._non_reentrant_after()


class Mutex:
    """Boolean lock acquired for the whole duration of a guarded operation."""

    def __init__(self) -> None:
        self.locked = False

    @property
    def entered(self) -> bool:
        return self.locked

    def _require_not_locked(self, ledger_id: str) -> None:
        if self.locked:
            logger.warning(
                "Re-entrant call rejected",
                extra={"event": "guard.reentry_rejected", "ledger": ledger_id, "guard": "mutex"},
            )
            raise ReentrantCallRejectedError(
                "Mutex: no re-entrancy",
                details={"ledger": ledger_id, "guard": GuardPolicy.MUTEX.value},
            )

    @contextmanager
    def hold(self, ledger_id: str) -> Iterator[None]:
        self._require_not_locked(ledger_id)
        try:
            self.locked = True
            yield
        finally:
            self.locked = False


def flag_guard_for(policy: GuardPolicy) -> ReentrancyGuard | Mutex | None:
    """Reentrancy flag object a ledger must hold for ``policy``, if any."""
    if policy is GuardPolicy.REENTRANCY_GUARD:
        return ReentrancyGuard()
    if policy is GuardPolicy.MUTEX:
        return Mutex()
    return None


__all__ = ["GuardPolicy", "Mutex", "ReentrancyGuard", "flag_guard_for"]
