"""
Property-based tests for value conservation under attack.

Whatever the guard policy, value is never created: every unit the attacker
walks away with came out of a ledger. Complete defenses additionally keep
every ledger's books exact.

Uses Hypothesis for property-based testing with random inputs.
"""

from hypothesis import given, settings, strategies as st

from reentrancy_sim.core.accounts import Account
from reentrancy_sim.core.guards import GuardPolicy
from reentrancy_sim.core.ledger import Ledger
from reentrancy_sim.scenarios import run_cross_ledger_attack, run_single_attack

deposits_strategy = st.lists(st.integers(min_value=1, max_value=20), min_size=1, max_size=4)
policies = st.sampled_from(list(GuardPolicy))
complete_defenses = st.sampled_from([policy for policy in GuardPolicy if policy.is_complete_defense])
modes = st.sampled_from(["withdraw", "cross_function"])


class TestSingleLedgerConservation:
    @given(deposits=deposits_strategy, deposit=st.integers(1, 10), guard=policies, mode=modes)
    @settings(max_examples=75, deadline=None)
    def test_value_is_never_created(self, deposits, deposit, guard, mode):
        outcome = run_single_attack(guard, mode, deposit, deposits=deposits)

        total_in = sum(deposits) + (deposit if outcome.error is None else 0)
        assert outcome.final_balances["Bank"] + outcome.attacker_balance == total_in

    @given(deposits=deposits_strategy, deposit=st.integers(1, 10), guard=complete_defenses, mode=modes)
    @settings(max_examples=75, deadline=None)
    def test_complete_defenses_keep_books_exact(self, deposits, deposit, guard, mode):
        outcome = run_single_attack(guard, mode, deposit, deposits=deposits)

        assert outcome.error is None
        assert outcome.protected
        assert outcome.attacker_balance == deposit
        assert outcome.conservation["Bank"]

    @given(deposits=deposits_strategy, deposit=st.integers(1, 10), step_budget=st.integers(1, 20))
    @settings(max_examples=50, deadline=None)
    def test_step_budget_bounds_payouts(self, deposits, deposit, step_budget):
        outcome = run_single_attack(
            GuardPolicy.NONE, deposit=deposit, deposits=deposits, step_budget=step_budget
        )

        assert outcome.steps <= step_budget
        assert outcome.attacker_balance <= deposit * step_budget


class TestCrossLedgerConservation:
    @given(
        deposits=deposits_strategy,
        deposit=st.integers(2, 10),
        guard_a=policies,
        guard_b=policies,
    )
    @settings(max_examples=75, deadline=None)
    def test_value_is_never_created(self, deposits, deposit, guard_a, guard_b):
        outcome = run_cross_ledger_attack(guard_a, guard_b, deposit, deposits=deposits)

        held = sum(outcome.final_balances.values())
        total_in = 2 * sum(deposits) + (deposit if outcome.error is None else 0)
        assert held + outcome.attacker_balance == total_in

    @given(deposits=deposits_strategy, deposit=st.integers(2, 10), guard=complete_defenses)
    @settings(max_examples=50, deadline=None)
    def test_guarding_both_vaults_protects_both(self, deposits, deposit, guard):
        outcome = run_cross_ledger_attack(guard, guard, deposit, deposits=deposits)

        assert outcome.protected
        assert outcome.attacker_balance == deposit
        assert all(outcome.conservation.values())


class TestBenignTraffic:
    @given(
        guard=policies,
        operations=st.lists(
            st.tuples(
                st.sampled_from(["deposit", "withdraw", "transfer"]),
                st.integers(0, 2),
                st.integers(0, 2),
                st.integers(1, 10),
            ),
            max_size=30,
        ),
    )
    @settings(max_examples=100, deadline=None)
    def test_conservation_holds_without_reentry(self, guard, operations):
        ledger = Ledger("Bank", guard)
        users = [Account(f"user{index}") for index in range(3)]
        external_in = 0

        for action, actor, other, amount in operations:
            user = users[actor]
            if action == "deposit":
                ledger.deposit(user, amount)
                external_in += amount
            elif action == "withdraw" and ledger.get_user_balance(user) > 0:
                ledger.withdraw(user)
            elif action == "transfer" and 0 < amount <= ledger.get_user_balance(user):
                ledger.transfer(user, users[other], amount)

            if guard is GuardPolicy.PULL_PAYMENT and ledger.get_pending_withdrawal(user) > 0:
                ledger.complete_withdrawal(user)

            assert ledger.conservation_holds()
            assert ledger.call_stack.is_idle

        paid_out = sum(user.wallet_balance for user in users)
        assert ledger.get_balance() + paid_out == external_in
