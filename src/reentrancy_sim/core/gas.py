"""
Execution budgets for payout hooks.

A budget is the amount of work a payout hook may perform before it runs out.
Only the GasLimited guard policy hands out finite budgets; every other policy
passes ``None`` (unlimited) to the hook. Nested payouts never receive more
than what is left of the enclosing budget.
"""

from __future__ import annotations

import logging

from .exceptions import OutOfGasError

logger = logging.getLogger(__name__)


class ExecutionBudget:
    """Finite work allowance consumed by code running inside a payout hook."""

    def __init__(self, limit: int, parent: "ExecutionBudget | None" = None):
        if limit < 0:
            raise ValueError("Budget limit must be non-negative")
        self.limit = limit
        self.parent = parent
        self.used = 0

    @classmethod
    def nested(cls, stipend: int | None, parent: "ExecutionBudget | None") -> "ExecutionBudget | None":
        """
        Budget for a payout issued while ``parent`` is active.

        Args:
            stipend: Cap imposed by the paying ledger (None for no cap)
            parent: Budget of the enclosing hook, if any

        Returns:
            A new budget, or None when neither a cap nor a parent applies
        """
        caps = []
        if stipend is not None:
            caps.append(stipend)
        if parent is not None:
            caps.append(parent.remaining)
        if not caps:
            return None
        return cls(min(caps), parent=parent)

    @property
    def remaining(self) -> int:
        return self.limit - self.used

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    def can_afford(self, cost: int) -> bool:
        return cost <= self.remaining

    def charge(self, cost: int, reason: str = "execution") -> None:
        """
        Consume ``cost`` units.

        Raises:
            OutOfGasError: If the budget cannot cover the cost. The whole
                remainder is consumed, as a failed frame burns its allowance.
        """
        if cost < 0:
            raise ValueError("Cost must be non-negative")
        if cost > self.remaining:
            required, remaining = cost, self.remaining
            self.used = self.limit
            logger.debug(
                "Budget exhausted by %s: needs %d, has %d",
                reason,
                required,
                remaining,
                extra={"event": "gas.out_of_gas", "reason": reason},
            )
            raise OutOfGasError(
                f"Out of gas during {reason}: requires {required}, remaining {remaining}",
                required=required,
                remaining=remaining,
                details={"reason": reason, "limit": self.limit},
            )
        self.used += cost

    def settle(self) -> None:
        """Fold this budget's usage back into the parent once the hook returns."""
        if self.parent is not None:
            self.parent.used = min(self.parent.limit, self.parent.used + self.used)

    def __repr__(self) -> str:
        return f"ExecutionBudget(limit={self.limit}, used={self.used})"
