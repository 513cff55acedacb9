"""
Reentrancy Simulator

A deterministic, single-threaded model of custodial ledgers that pay out
through a callback, the attackers that re-enter them, and the defenses that
stop (or only slow down) those attackers.

Main Components:
- Ledger: custody of funds with a pluggable GuardPolicy
- CallStack: the invocation chain shared by every ledger on a Machine
- Attacker / CrossLedgerAttacker: re-entrant payout receivers
- Scenarios: canned experiments comparing the defenses

For the design notes, see: DESIGN.md
"""

from .attacks.attacker import AttackMode, Attacker
from .attacks.base import AttackStatusReport, Phase
from .attacks.cross_ledger import CrossLedgerAttacker
from .core.accounts import Account, PayoutNotifiable
from .core.call_stack import CallStack
from .core.config import SimulationConfig, load_config
from .core.exceptions import SimulationError
from .core.guards import GuardPolicy
from .core.ledger import Ledger
from .core.machine import Machine

__version__ = "0.1.0"

__all__ = [
    "Account",
    "AttackMode",
    "AttackStatusReport",
    "Attacker",
    "CallStack",
    "CrossLedgerAttacker",
    "GuardPolicy",
    "Ledger",
    "Machine",
    "PayoutNotifiable",
    "Phase",
    "SimulationConfig",
    "SimulationError",
    "load_config",
]
