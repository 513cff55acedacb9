"""Attacker state machines that re-enter ledgers from their payout hooks."""

__all__ = []
