"""
Unit tests for guard policies and the two flag guards.
"""

import logging

import pytest

from reentrancy_sim.core.exceptions import ConfigurationError, ReentrantCallRejectedError
from reentrancy_sim.core.guards import GuardPolicy, Mutex, ReentrancyGuard, flag_guard_for


class TestGuardPolicyParsing:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("none", GuardPolicy.NONE),
            ("vulnerable", GuardPolicy.NONE),
            ("ReentrancyGuard", GuardPolicy.REENTRANCY_GUARD),
            ("reentrancy-guard", GuardPolicy.REENTRANCY_GUARD),
            ("nonReentrant", GuardPolicy.REENTRANCY_GUARD),
            ("Mutex", GuardPolicy.MUTEX),
            ("CEI", GuardPolicy.CEI),
            ("checks-effects-interactions", GuardPolicy.CEI),
            ("PullPayment", GuardPolicy.PULL_PAYMENT),
            ("pull", GuardPolicy.PULL_PAYMENT),
            ("gas_limited", GuardPolicy.GAS_LIMITED),
            ("Gas Limit", GuardPolicy.GAS_LIMITED),
        ],
    )
    def test_parse_accepts_common_spellings(self, raw, expected):
        assert GuardPolicy.parse(raw) is expected

    def test_parse_passes_policies_through(self):
        assert GuardPolicy.parse(GuardPolicy.CEI) is GuardPolicy.CEI

    def test_parse_rejects_unknown_names(self):
        with pytest.raises(ConfigurationError) as exc_info:
            GuardPolicy.parse("firewall")

        assert "none" in exc_info.value.details["choices"]


class TestGuardPolicyTraits:
    def test_only_flag_guards_reject_reentry(self):
        rejecting = {policy for policy in GuardPolicy if policy.rejects_reentry}
        assert rejecting == {GuardPolicy.REENTRANCY_GUARD, GuardPolicy.MUTEX}

    def test_ordering_traits(self):
        assert GuardPolicy.CEI.commits_before_payout
        assert not GuardPolicy.NONE.commits_before_payout
        assert GuardPolicy.PULL_PAYMENT.defers_payout
        assert GuardPolicy.GAS_LIMITED.limits_gas
        assert not GuardPolicy.REENTRANCY_GUARD.limits_gas

    def test_gas_limit_is_not_a_complete_defense(self):
        incomplete = {policy for policy in GuardPolicy if not policy.is_complete_defense}
        assert incomplete == {GuardPolicy.NONE, GuardPolicy.GAS_LIMITED}

    def test_every_policy_has_a_label(self):
        for policy in GuardPolicy:
            assert policy.label


class TestReentrancyGuard:
    def test_nested_hold_is_rejected(self):
        guard = ReentrancyGuard()

        with guard.hold("Bank"):
            assert guard.entered
            with pytest.raises(ReentrantCallRejectedError, match="ReentrancyGuard"):
                with guard.hold("Bank"):
                    pass
            # The rejected attempt must not release the outer hold
            assert guard.entered

        assert not guard.entered

    def test_released_when_body_raises(self):
        guard = ReentrancyGuard()

        with pytest.raises(ValueError):
            with guard.hold("Bank"):
                raise ValueError("body failed")

        assert not guard.entered

    def test_rejection_is_logged(self, caplog):
        guard = ReentrancyGuard()

        with caplog.at_level(logging.WARNING, logger="reentrancy_sim"):
            with guard.hold("Bank"):
                with pytest.raises(ReentrantCallRejectedError):
                    with guard.hold("Bank"):
                        pass

        events = [getattr(record, "event", None) for record in caplog.records]
        assert "guard.reentry_rejected" in events


class TestMutex:
    def test_nested_hold_is_rejected(self):
        mutex = Mutex()

        with mutex.hold("Bank"):
            assert mutex.locked
            with pytest.raises(ReentrantCallRejectedError, match="Mutex"):
                with mutex.hold("Bank"):
                    pass
            assert mutex.locked

        assert not mutex.locked

    def test_released_when_body_raises(self):
        mutex = Mutex()

        with pytest.raises(RuntimeError):
            with mutex.hold("Bank"):
                raise RuntimeError("body failed")

        assert not mutex.entered

    def test_rejection_carries_policy(self):
        mutex = Mutex()

        with mutex.hold("Vault"):
            with pytest.raises(ReentrantCallRejectedError) as exc_info:
                with mutex.hold("Vault"):
                    pass

        assert exc_info.value.code == "ReentrantCallRejected"
        assert exc_info.value.details == {"ledger": "Vault", "guard": "mutex"}


def test_flag_guard_for_policy():
    assert isinstance(flag_guard_for(GuardPolicy.REENTRANCY_GUARD), ReentrancyGuard)
    assert isinstance(flag_guard_for(GuardPolicy.MUTEX), Mutex)
    for policy in (GuardPolicy.NONE, GuardPolicy.CEI, GuardPolicy.PULL_PAYMENT, GuardPolicy.GAS_LIMITED):
        assert flag_guard_for(policy) is None
