"""
Reentrancy Simulator Core

Ledger, call stack, guard policies, execution budgets, configuration and
logging. Nothing in here knows about attackers.
"""

__all__ = []
