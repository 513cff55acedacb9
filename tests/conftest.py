"""
Test configuration and fixtures
"""
import logging
import sys
from pathlib import Path

# Add src to Python path
project_root = Path(__file__).parent.parent
src_path = project_root / "src"

sys.path.insert(0, str(src_path))

import pytest

from reentrancy_sim.core.config import SimulationConfig
from reentrancy_sim.core.guards import GuardPolicy
from reentrancy_sim.core.machine import Machine


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo handler/level changes made by setup_logging (the CLI calls it)."""
    yield
    package_logger = logging.getLogger("reentrancy_sim")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True


@pytest.fixture
def config():
    return SimulationConfig()


@pytest.fixture
def machine(config):
    """Fresh simulated machine with default configuration"""
    return Machine(config)


@pytest.fixture
def funded_ledger(machine):
    """Factory: ledger funded with 5 + 5 by two honest users"""

    def _make(guard=GuardPolicy.NONE, name="Bank", deposits=(5, 5)):
        ledger = machine.create_ledger(name, guard)
        for index, amount in enumerate(deposits, start=1):
            user = machine.create_account(f"{name}-user{index}")
            ledger.deposit(user, amount)
        return ledger

    return _make


@pytest.fixture
def attacker_owner(machine):
    return machine.create_account("attacker-owner")
