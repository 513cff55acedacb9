"""
Reentrancy simulation configuration.

Configuration is assembled from several sources with this precedence:
1. Explicit overrides passed by the caller (highest priority)
2. Environment variables (REENTRANCY_SIM_<SECTION>_<KEY>)
3. A YAML config file
4. Built-in defaults (lowest priority)

The gas figures are a model of "how much work fits inside a payout hook",
not real EVM gas prices. Tune them to move the GasLimited threshold.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from .call_stack import max_supported_depth
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "REENTRANCY_SIM_"
CONFIG_FILE_ENV = "REENTRANCY_SIM_CONFIG"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class GasConfig:
    """Execution budget settings used by the GasLimited guard policy."""
    stipend: int = 2300
    reentry_call_cost: int = 1500
    minimal_callback_cost: int = 100
    attack_callback_cost: int = 5000

    def validate(self) -> None:
        if self.stipend < 0:
            raise ConfigurationError(f"Invalid gas.stipend: {self.stipend}. Must be >= 0")
        if self.reentry_call_cost < 0:
            raise ConfigurationError(
                f"Invalid gas.reentry_call_cost: {self.reentry_call_cost}. Must be >= 0"
            )
        if self.minimal_callback_cost < 0:
            raise ConfigurationError(
                f"Invalid gas.minimal_callback_cost: {self.minimal_callback_cost}. Must be >= 0"
            )
        if self.attack_callback_cost < self.minimal_callback_cost:
            raise ConfigurationError(
                "gas.attack_callback_cost must not be below gas.minimal_callback_cost"
            )


@dataclass
class AttackConfig:
    """Attacker state machine limits."""
    step_budget: int = 50
    min_deposit_per_ledger: int = 1

    def validate(self) -> None:
        if self.step_budget < 1:
            raise ConfigurationError(f"Invalid attack.step_budget: {self.step_budget}. Must be >= 1")
        if self.step_budget > max_supported_depth():
            raise ConfigurationError(
                f"Invalid attack.step_budget: {self.step_budget}. "
                f"Must be <= {max_supported_depth()} at the current recursion limit"
            )
        if self.min_deposit_per_ledger < 1:
            raise ConfigurationError(
                f"Invalid attack.min_deposit_per_ledger: {self.min_deposit_per_ledger}. Must be >= 1"
            )


@dataclass
class StackConfig:
    """Call stack limits."""
    max_call_depth: int = 64

    def validate(self) -> None:
        if self.max_call_depth < 1:
            raise ConfigurationError(
                f"Invalid stack.max_call_depth: {self.max_call_depth}. Must be >= 1"
            )
        if self.max_call_depth > max_supported_depth():
            raise ConfigurationError(
                f"Invalid stack.max_call_depth: {self.max_call_depth}. "
                f"Must be <= {max_supported_depth()} at the current recursion limit"
            )


@dataclass
class LoggingConfig:
    """Logging configuration settings"""
    level: str = "INFO"
    json: bool = True
    log_file: str | None = None

    def validate(self) -> None:
        if str(self.level).upper() not in VALID_LOG_LEVELS:
            raise ConfigurationError(
                f"Invalid log level: {self.level}. Must be one of {list(VALID_LOG_LEVELS)}"
            )


@dataclass
class SimulationConfig:
    """Complete, validated configuration for one simulated machine."""
    gas: GasConfig = field(default_factory=GasConfig)
    attack: AttackConfig = field(default_factory=AttackConfig)
    stack: StackConfig = field(default_factory=StackConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        self.gas.validate()
        self.attack.validate()
        self.stack.validate()
        self.logging.validate()
        # Each attack step holds one ledger frame open, so a budget beyond the
        # stack ceiling ends attacks with CallDepthExceeded instead.
        if self.attack.step_budget > self.stack.max_call_depth:
            logger.warning(
                "attack.step_budget %d may exceed stack.max_call_depth %d",
                self.attack.step_budget,
                self.stack.max_call_depth,
                extra={"event": "config.step_budget_exceeds_depth"},
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SimulationConfig":
        sections = {
            "gas": GasConfig,
            "attack": AttackConfig,
            "stack": StackConfig,
            "logging": LoggingConfig,
        }
        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigurationError(f"Unknown config sections: {sorted(unknown)}")

        kwargs: dict[str, Any] = {}
        for name, section_cls in sections.items():
            values = data.get(name) or {}
            if not isinstance(values, Mapping):
                raise ConfigurationError(f"Config section '{name}' must be a mapping")
            try:
                kwargs[name] = section_cls(**values)
            except TypeError as exc:
                raise ConfigurationError(f"Invalid keys in config section '{name}': {exc}") from exc
        return cls(**kwargs)


def _load_config_file(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Load configuration from a YAML file."""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Could not parse config file {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return data


def _merge_configs(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep merge two configuration dictionaries."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, Mapping):
            result[key] = _merge_configs(result[key], value)
        else:
            result[key] = value
    return result


def _parse_env_value(value: str) -> str | int | bool:
    """Parse environment variable value to appropriate type."""
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    try:
        return int(value)
    except ValueError:
        return value.strip()


def _apply_env_variables(
    config: dict[str, Any], environ: Mapping[str, str]
) -> dict[str, Any]:
    """
    Apply environment variable overrides.

    Format: REENTRANCY_SIM_<SECTION>_<KEY>=value, e.g.
    REENTRANCY_SIM_GAS_STIPEND=2300 or REENTRANCY_SIM_ATTACK_STEP_BUDGET=20.
    """
    result = {
        section: dict(values) if isinstance(values, Mapping) else values
        for section, values in config.items()
    }
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX) or key == CONFIG_FILE_ENV:
            continue
        parts = key[len(ENV_PREFIX):].lower().split("_")
        if len(parts) < 2:
            continue
        section, config_key = parts[0], "_".join(parts[1:])
        if section not in result:
            logger.debug("Ignoring unknown config env var %s", key)
            continue
        if not isinstance(result[section], dict):
            result[section] = {}
        result[section][config_key] = _parse_env_value(value)
    return result


def load_config(
    path: str | os.PathLike[str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> SimulationConfig:
    """
    Build a validated SimulationConfig from all sources.

    Args:
        path: Optional YAML file. Falls back to $REENTRANCY_SIM_CONFIG.
        overrides: Nested mapping applied last, e.g. {"gas": {"stipend": 0}}
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If any source is malformed or a value is out of range
    """
    environ = os.environ if environ is None else environ
    merged = SimulationConfig().to_dict()

    path = path or environ.get(CONFIG_FILE_ENV) or None
    if path:
        merged = _merge_configs(merged, _load_config_file(path))

    merged = _apply_env_variables(merged, environ)

    if overrides:
        merged = _merge_configs(merged, overrides)

    config = SimulationConfig.from_dict(merged)
    config.validate()
    return config


__all__ = [
    "AttackConfig",
    "ConfigurationError",
    "GasConfig",
    "LoggingConfig",
    "SimulationConfig",
    "StackConfig",
    "load_config",
]
