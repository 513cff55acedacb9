"""
Call stack bookkeeping for one simulated machine.

The stack records which ledger operations are currently executing and in
which order. It knows nothing about guard policies: whether a nested entry
into the same ledger is allowed is decided by the ledger's GuardPolicy. The
stack only reports depth so that decision (and the tests) can observe it.

State machine per outer invocation::

    Idle -> Entered(depth=1) -> Entered(depth=2) -> ... -> Idle

Every open frame also keeps a rollback journal. A ledger or receiver about to
change is snapshotted into the innermost open frame the first time that frame
touches it (``record_state``). When a frame fails, everything in its journal
is restored; when it returns, its entries move up into the enclosing frame.
The journal follows the real call chain, so a hook that hops from one ledger
into another is undone as a whole even if the ledgers keep separate stacks.

The simulated call chain runs as real Python recursion, so the deepest
supported stack is derived from the interpreter's recursion limit
(``max_supported_depth``). Attacks end on CallDepthExceeded or their step
budget, never on a host RecursionError.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from .atomic import Snapshotable
from .exceptions import CallDepthExceededError
from .gas import ExecutionBudget

logger = logging.getLogger(__name__)

# Python frames one simulated call holds open: hook, attempt, move, drain,
# ledger operation, payout and notify, with headroom for logging underneath
FRAMES_PER_CALL = 10
# Frames left for the caller (test runner, CLI) and for unwinding
RESERVED_FRAMES = 200

_innermost_frame: ContextVar["CallFrame | None"] = ContextVar("innermost_frame", default=None)


def max_supported_depth() -> int:
    """Deepest simulated call chain the current recursion limit can hold."""
    return max(1, (sys.getrecursionlimit() - RESERVED_FRAMES) // FRAMES_PER_CALL)


def record_state(participant: Snapshotable) -> None:
    """
    Snapshot ``participant`` into the innermost open frame, once per frame.

    Outside any ledger operation there is nothing to roll back to and the
    call is a no-op.
    """
    frame = _innermost_frame.get()
    if frame is None:
        return
    key = id(participant)
    if key not in frame.journal:
        frame.journal[key] = (participant, participant.snapshot())


class OperationKind(Enum):
    """Ledger operations that open a call frame."""
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"
    INITIATE_WITHDRAWAL = "initiate_withdrawal"
    COMPLETE_WITHDRAWAL = "complete_withdrawal"


class StackState(Enum):
    IDLE = "idle"
    ENTERED = "entered"


@dataclass
class CallFrame:
    """One executing ledger operation."""
    ledger_id: str
    account: str
    operation: OperationKind
    depth: int
    ledger_depth: int
    # Set while the frame's payout hook runs under a finite budget
    budget: ExecutionBudget | None = None
    # id(participant) -> (participant, snapshot taken on first touch)
    journal: dict[int, tuple[Any, Any]] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_reentry(self) -> bool:
        return self.ledger_depth > 1

    def to_dict(self) -> dict:
        return {
            "ledger": self.ledger_id,
            "account": self.account,
            "operation": self.operation.value,
            "depth": self.depth,
            "ledger_depth": self.ledger_depth,
        }


class CallStack:
    """Invocation chain of the simulated machine."""

    def __init__(self, max_depth: int = 64):
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        if max_depth > max_supported_depth():
            raise ValueError(
                f"max_depth {max_depth} exceeds the supported maximum {max_supported_depth()}"
            )
        self.max_depth = max_depth
        self._frames: list[CallFrame] = []
        self._trace: list[CallFrame] = []
        self.last_trace: tuple[CallFrame, ...] = ()
        self.reentry_count = 0

    @property
    def depth(self) -> int:
        return len(self._frames)

    @property
    def state(self) -> StackState:
        return StackState.ENTERED if self._frames else StackState.IDLE

    @property
    def is_idle(self) -> bool:
        return not self._frames

    @property
    def frames(self) -> tuple[CallFrame, ...]:
        return tuple(self._frames)

    @property
    def current(self) -> CallFrame | None:
        return self._frames[-1] if self._frames else None

    def depth_for(self, ledger_id: str) -> int:
        """Number of open frames belonging to ``ledger_id``."""
        return sum(1 for frame in self._frames if frame.ledger_id == ledger_id)

    def active_budget(self) -> ExecutionBudget | None:
        """Innermost finite budget, i.e. the one currently executing code spends."""
        for frame in reversed(self._frames):
            if frame.budget is not None:
                return frame.budget
        return None

    @contextmanager
    def enter(self, ledger_id: str, account: str, operation: OperationKind) -> Iterator[CallFrame]:
        """
        Push a frame for the duration of a ledger operation.

        The frame is popped on every exit path. If the body fails, every
        participant recorded in the frame's journal is restored before the
        failure propagates. When the stack returns to depth 0 the frames
        pushed during the invocation are kept in ``last_trace``.

        Raises:
            CallDepthExceededError: If the stack is already at ``max_depth``
        """
        if len(self._frames) >= self.max_depth:
            raise CallDepthExceededError(
                f"Call depth {self.max_depth} exceeded entering {operation.value} on {ledger_id}",
                details={"ledger": ledger_id, "max_depth": self.max_depth},
            )

        if not self._frames:
            self._trace = []

        frame = CallFrame(
            ledger_id=ledger_id,
            account=account,
            operation=operation,
            depth=len(self._frames) + 1,
            ledger_depth=self.depth_for(ledger_id) + 1,
        )
        if frame.is_reentry:
            self.reentry_count += 1
            logger.debug(
                "Re-entry into %s at depth %d",
                ledger_id,
                frame.depth,
                extra={"event": "stack.reentry", **frame.to_dict()},
            )

        parent = _innermost_frame.get()
        self._frames.append(frame)
        self._trace.append(frame)
        token = _innermost_frame.set(frame)
        try:
            yield frame
        except Exception as exc:
            self._rollback(frame, exc)
            raise
        else:
            if parent is not None:
                # The enclosing frame keeps its own, earlier snapshot
                for key, entry in frame.journal.items():
                    parent.journal.setdefault(key, entry)
        finally:
            _innermost_frame.reset(token)
            popped = self._frames.pop()
            popped.budget = None
            popped.journal = {}
            if not self._frames:
                self.last_trace = tuple(self._trace)
                self._trace = []

    def _rollback(self, frame: CallFrame, exc: Exception) -> None:
        entries = list(frame.journal.values())
        for participant, snapshot in reversed(entries):
            participant.restore(snapshot)
        if entries:
            logger.debug(
                "Rolled back %d participants of %s on %s after %s",
                len(entries),
                frame.operation.value,
                frame.ledger_id,
                type(exc).__name__,
                extra={
                    "event": "stack.rollback",
                    "ledger": frame.ledger_id,
                    "operation": frame.operation.value,
                    "depth": frame.depth,
                    "error": type(exc).__name__,
                },
            )

    def __repr__(self) -> str:
        return f"CallStack(depth={self.depth}, state={self.state.value})"
