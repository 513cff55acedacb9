"""
Cross-ledger reentrancy tests.

Two vaults, each funded with 10 by two honest users. The attacker splits its
deposit across both and bounces between them inside one call chain.
"""

import pytest

from reentrancy_sim.attacks.base import Phase
from reentrancy_sim.attacks.cross_ledger import CrossLedgerAttacker
from reentrancy_sim.core.exceptions import (
    AttackInProgressError,
    InsufficientDepositError,
    InvalidAmountError,
)
from reentrancy_sim.core.guards import GuardPolicy


@pytest.fixture
def vaults(machine, funded_ledger, attacker_owner):
    def _make(guard_a=GuardPolicy.NONE, guard_b=GuardPolicy.NONE, **kwargs):
        vault_a = funded_ledger(guard_a, name="VaultA")
        vault_b = funded_ledger(guard_b, name="VaultB")
        attacker = machine.create_cross_ledger_attacker(attacker_owner, vault_a, vault_b, **kwargs)
        return attacker, vault_a, vault_b

    return _make


class TestUnguardedVaults:
    def test_drains_both_vaults(self, vaults):
        attacker, vault_a, vault_b = vaults()

        status = attacker.attack(2)

        assert vault_a.get_balance() == 0
        assert vault_b.get_balance() == 0
        assert attacker.get_balance() == 22
        assert status.vault_a_balance == 0
        assert status.vault_b_balance == 0
        assert status.next_target_name == "Done"
        assert status.phase == "Done"

    def test_takes_more_than_ten_steps(self, vaults):
        attacker, _, _ = vaults()

        attacker.attack(2)

        assert attacker.get_attack_steps() > 10
        assert attacker.get_attack_steps() == 22

    def test_alternates_between_vaults(self, vaults, machine):
        attacker, _, _ = vaults()

        attacker.attack(2)

        ledgers = [frame.ledger_id for frame in machine.call_stack.last_trace]
        assert ledgers[:4] == ["VaultA", "VaultB", "VaultA", "VaultB"]

    def test_step_budget_caps_the_attack(self, vaults):
        attacker, vault_a, vault_b = vaults(step_budget=4)

        status = attacker.attack(2)

        assert status.steps == 4
        assert attacker.get_balance() == 4
        assert vault_a.get_balance() == 9
        assert vault_b.get_balance() == 9
        assert status.next_target_name == "Done"

    def test_attack_can_run_again_after_done(self, vaults):
        attacker, vault_a, vault_b = vaults()
        attacker.attack(2)

        status = attacker.attack(2)

        assert status.phase == "Done"
        assert attacker.get_balance() == 24
        assert vault_a.get_balance() == 0
        assert vault_b.get_balance() == 0


class TestGuardedVaults:
    @pytest.mark.parametrize(
        "guard",
        [GuardPolicy.REENTRANCY_GUARD, GuardPolicy.MUTEX, GuardPolicy.CEI, GuardPolicy.PULL_PAYMENT],
    )
    def test_both_vaults_guarded(self, vaults, guard):
        attacker, vault_a, vault_b = vaults(guard, guard)

        attacker.attack(2)

        assert vault_a.get_balance() == 10
        assert vault_b.get_balance() == 10
        assert attacker.get_balance() == 2
        assert vault_a.conservation_holds()
        assert vault_b.conservation_holds()

    def test_guard_on_one_vault_does_not_protect_the_other(self, vaults):
        attacker, vault_a, vault_b = vaults(GuardPolicy.NONE, GuardPolicy.REENTRANCY_GUARD)

        attacker.attack(2)

        assert vault_a.get_balance() == 0
        assert vault_b.get_balance() == 10
        assert attacker.get_balance() == 12

    def test_guarded_first_vault_still_loses_the_unguarded_one(self, vaults):
        attacker, vault_a, vault_b = vaults(GuardPolicy.REENTRANCY_GUARD, GuardPolicy.NONE)

        attacker.attack(2)

        assert vault_a.get_balance() == 10
        assert vault_b.get_balance() == 0
        assert attacker.get_balance() == 12

    def test_flag_guards_are_per_ledger(self, vaults):
        attacker, vault_a, vault_b = vaults(GuardPolicy.REENTRANCY_GUARD, GuardPolicy.REENTRANCY_GUARD)

        attacker.attack(2)

        # B was entered while A's guard was held: one payout from each vault
        assert attacker.get_attack_steps() == 2
        assert attacker.get_attack_status().last_rejection == "ReentrantCallRejected"


class TestCrossLedgerStateMachine:
    def test_initial_status_targets_first_vault(self, vaults):
        attacker, _, _ = vaults()

        status = attacker.get_attack_status()

        assert status.phase == "Idle"
        assert status.next_target_name == "VaultA"
        assert status.vault_a_balance == 10
        assert status.vault_b_balance == 10

    def test_deposit_must_cover_both_vaults(self, vaults):
        attacker, vault_a, vault_b = vaults()

        with pytest.raises(InsufficientDepositError, match="Need at least 2"):
            attacker.attack(1)

        assert attacker.phase is Phase.IDLE
        assert vault_a.get_balance() == 10
        assert vault_b.get_balance() == 10

    def test_non_positive_deposit_rejected(self, vaults):
        attacker, _, _ = vaults()

        with pytest.raises(InvalidAmountError):
            attacker.attack(0)

    def test_deposit_split_across_vaults(self, vaults):
        attacker, vault_a, vault_b = vaults(GuardPolicy.CEI, GuardPolicy.CEI)

        attacker.attack(5)

        # CEI blocks the theft, so each vault paid back exactly its share
        assert attacker.get_balance() == 5
        assert vault_a.get_balance() == 10
        assert vault_b.get_balance() == 10

    def test_same_ledger_twice_rejected(self, machine, funded_ledger, attacker_owner):
        vault = funded_ledger(name="Solo")

        with pytest.raises(ValueError):
            CrossLedgerAttacker(attacker_owner, vault, vault)

    def test_attack_while_attacking_rejected(self, machine, funded_ledger, attacker_owner):
        vault_a = funded_ledger(name="VaultA")
        vault_b = funded_ledger(name="VaultB")

        class ImpatientAttacker(CrossLedgerAttacker):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                self.errors = []

            def on_payout(self, ledger, amount, budget):
                if self.in_progress and not self.errors:
                    try:
                        self.attack(2)
                    except AttackInProgressError as exc:
                        self.errors.append(exc)
                super().on_payout(ledger, amount, budget)

        attacker = ImpatientAttacker(attacker_owner, vault_a, vault_b)
        attacker.attack(2)

        assert [error.code for error in attacker.errors] == ["AttackInProgress"]
        assert attacker.get_balance() == 22
