"""
All-or-nothing scopes spanning several participants.

A participant is anything exposing ``snapshot()`` and ``restore(snapshot)``:
ledgers, accounts and attackers. Ledger operations already roll back what
they touched through the call stack journal. ``atomic`` is for callers that
chain several commands (deposit, then withdraw) and need the whole chain
undone when any step fails.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Snapshotable(Protocol):
    def snapshot(self) -> Any: ...

    def restore(self, snapshot: Any) -> None: ...


@contextmanager
def atomic(*participants: Snapshotable) -> Iterator[None]:
    """
    Restore every participant if the body raises, then re-raise.

    Example:
        with atomic(attacker, ledger):
            ledger.deposit(attacker, 1)
            ledger.withdraw(attacker)
    """
    saved = [(participant, participant.snapshot()) for participant in participants]
    try:
        yield
    except Exception as exc:
        # Restore in reverse so later participants never observe half-restored state
        for participant, snapshot in reversed(saved):
            participant.restore(snapshot)
        logger.debug(
            "Rolled back %d participants after %s",
            len(saved),
            type(exc).__name__,
            extra={"event": "atomic.rollback", "error": type(exc).__name__},
        )
        raise


__all__ = ["Snapshotable", "atomic"]
