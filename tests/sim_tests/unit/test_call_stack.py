"""
Unit tests for CallStack frame bookkeeping.
"""

import pytest

from reentrancy_sim.core.accounts import Account
from reentrancy_sim.core.call_stack import (
    CallStack,
    OperationKind,
    StackState,
    max_supported_depth,
    record_state,
)
from reentrancy_sim.core.exceptions import CallDepthExceededError
from reentrancy_sim.core.gas import ExecutionBudget


def test_stack_starts_idle():
    stack = CallStack()

    assert stack.is_idle
    assert stack.state is StackState.IDLE
    assert stack.depth == 0
    assert stack.current is None
    assert stack.last_trace == ()


def test_enter_pushes_and_pops_frames():
    stack = CallStack()

    with stack.enter("Bank", "0xabc", OperationKind.WITHDRAW) as frame:
        assert stack.state is StackState.ENTERED
        assert stack.depth == 1
        assert stack.current is frame
        assert frame.depth == 1
        assert frame.ledger_depth == 1
        assert not frame.is_reentry

    assert stack.is_idle


def test_nested_entries_track_per_ledger_depth():
    stack = CallStack()

    with stack.enter("A", "0x1", OperationKind.WITHDRAW):
        with stack.enter("B", "0x1", OperationKind.WITHDRAW) as into_b:
            with stack.enter("A", "0x1", OperationKind.TRANSFER) as back_into_a:
                assert stack.depth == 3
                assert stack.depth_for("A") == 2
                assert stack.depth_for("B") == 1
                assert not into_b.is_reentry
                assert back_into_a.is_reentry
                assert back_into_a.ledger_depth == 2

    assert stack.reentry_count == 1


def test_last_trace_records_whole_invocation():
    stack = CallStack()

    with stack.enter("A", "0x1", OperationKind.WITHDRAW):
        with stack.enter("A", "0x1", OperationKind.WITHDRAW):
            pass
        # Trace is only published once the stack returns to idle
        assert stack.last_trace == ()

    trace = [frame.to_dict() for frame in stack.last_trace]
    assert [entry["depth"] for entry in trace] == [1, 2]
    assert trace[1] == {
        "ledger": "A",
        "account": "0x1",
        "operation": "withdraw",
        "depth": 2,
        "ledger_depth": 2,
    }


def test_new_invocation_replaces_trace():
    stack = CallStack()

    with stack.enter("A", "0x1", OperationKind.WITHDRAW):
        pass
    with stack.enter("B", "0x2", OperationKind.TRANSFER):
        pass

    assert [frame.ledger_id for frame in stack.last_trace] == ["B"]


def test_frame_popped_when_body_raises():
    stack = CallStack()

    with pytest.raises(RuntimeError):
        with stack.enter("A", "0x1", OperationKind.WITHDRAW):
            raise RuntimeError("failure")

    assert stack.is_idle
    assert len(stack.last_trace) == 1


def test_max_depth_enforced():
    stack = CallStack(max_depth=2)

    with stack.enter("A", "0x1", OperationKind.WITHDRAW):
        with stack.enter("A", "0x1", OperationKind.WITHDRAW):
            with pytest.raises(CallDepthExceededError):
                with stack.enter("A", "0x1", OperationKind.WITHDRAW):
                    pass
            assert stack.depth == 2

    assert stack.is_idle


def test_invalid_max_depth():
    with pytest.raises(ValueError):
        CallStack(max_depth=0)


def test_active_budget_is_innermost_finite_budget():
    stack = CallStack()
    outer_budget = ExecutionBudget(2300)
    inner_budget = ExecutionBudget(700, parent=outer_budget)

    assert stack.active_budget() is None
    with stack.enter("A", "0x1", OperationKind.WITHDRAW) as outer:
        outer.budget = outer_budget
        with stack.enter("B", "0x1", OperationKind.WITHDRAW) as inner:
            assert stack.active_budget() is outer_budget
            inner.budget = inner_budget
            assert stack.active_budget() is inner_budget
        assert stack.active_budget() is outer_budget

    assert stack.active_budget() is None


def test_depth_beyond_recursion_limit_rejected():
    assert CallStack(max_depth=max_supported_depth()).max_depth == max_supported_depth()

    with pytest.raises(ValueError, match="supported maximum"):
        CallStack(max_depth=max_supported_depth() + 1)


def test_record_outside_any_frame_is_noop():
    alice = Account("alice", wallet_balance=2)

    record_state(alice)
    alice.wallet_balance = 9

    assert alice.wallet_balance == 9


def test_failed_frame_restores_recorded_state():
    stack = CallStack()
    alice = Account("alice", wallet_balance=2)

    with pytest.raises(RuntimeError):
        with stack.enter("A", alice.address, OperationKind.WITHDRAW):
            record_state(alice)
            alice.wallet_balance = 9
            raise RuntimeError("abort")

    assert alice.wallet_balance == 2
    assert stack.is_idle


def test_committed_inner_frame_is_undone_by_failing_outer_frame():
    outer_stack = CallStack()
    inner_stack = CallStack()
    alice = Account("alice", wallet_balance=2)

    with pytest.raises(RuntimeError):
        with outer_stack.enter("A", alice.address, OperationKind.WITHDRAW):
            with inner_stack.enter("B", alice.address, OperationKind.WITHDRAW):
                record_state(alice)
                alice.wallet_balance = 5
            assert alice.wallet_balance == 5
            raise RuntimeError("abort")

    assert alice.wallet_balance == 2


def test_failed_inner_frame_keeps_outer_changes():
    stack = CallStack()
    alice = Account("alice", wallet_balance=2)

    with stack.enter("A", alice.address, OperationKind.WITHDRAW):
        record_state(alice)
        alice.wallet_balance = 3
        with pytest.raises(RuntimeError):
            with stack.enter("A", alice.address, OperationKind.TRANSFER):
                record_state(alice)
                alice.wallet_balance = 7
                raise RuntimeError("abort")
        assert alice.wallet_balance == 3

    assert alice.wallet_balance == 3
