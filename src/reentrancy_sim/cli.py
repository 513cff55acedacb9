#!/usr/bin/env python3
"""
Reentrancy Simulator CLI
Runs the canned attack scenarios and renders the outcome with rich tables
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import yaml
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .attacks.attacker import AttackMode
from .core.config import VALID_LOG_LEVELS, SimulationConfig, load_config
from .core.exceptions import ConfigurationError, SimulationError
from .core.guards import GuardPolicy
from .core.logging_config import setup_logging
from .scenarios import (
    AttackOutcome,
    DefenseOutcome,
    compare_defenses,
    demonstrate_pull_payment,
    run_cross_ledger_attack,
    run_single_attack,
)

# Configure module logger
logger = logging.getLogger(__name__)

console = Console()

MODE_CHOICES = ["withdraw", "cross-function"]


def _cli_fail(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging."""
    logger.error("CLI error: %s", exc, exc_info=True)
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


def _parse_guard(ctx: click.Context, param: click.Parameter, value: Optional[str]) -> Optional[GuardPolicy]:
    if value is None:
        return None
    try:
        return GuardPolicy.parse(value)
    except ConfigurationError as exc:
        raise click.BadParameter(exc.message) from exc


def _parse_mode(value: str) -> AttackMode:
    return AttackMode(value.replace("-", "_"))


def _emit_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2))


def _yes_no(value: bool) -> str:
    return "[green]yes[/]" if value else "[red]no[/]"


def _render_outcome(outcome: AttackOutcome, title: str) -> None:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Ledger", style="cyan")
    table.add_column("Guard", style="magenta")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    table.add_column("Conserved", justify="center")
    for name, before in outcome.initial_balances.items():
        table.add_row(
            name,
            GuardPolicy(outcome.guards[name]).label,
            str(before),
            str(outcome.final_balances[name]),
            _yes_no(outcome.conservation[name]),
        )
    console.print(table)

    summary = Table(show_header=False, box=box.SIMPLE)
    summary.add_row("[bold]Attacker balance", str(outcome.attacker_balance))
    summary.add_row("[bold]Stolen", str(outcome.stolen))
    summary.add_row("[bold]Steps", str(outcome.steps))
    summary.add_row("[bold]Phase", outcome.status.phase)
    summary.add_row("[bold]Stopped by", outcome.status.last_rejection or "-")
    if outcome.error:
        summary.add_row("[bold red]Reverted with", outcome.error)
    border = "green" if outcome.protected else "red"
    verdict = "PROTECTED" if outcome.protected else "DRAINED"
    console.print(Panel(summary, title=f"[bold]{verdict}", border_style=border))


def _render_comparison(rows: List[DefenseOutcome], mode: AttackMode) -> None:
    table = Table(title=f"Defense comparison ({mode.value})", box=box.ROUNDED, show_lines=True)
    table.add_column("Policy", style="cyan")
    table.add_column("Protected", justify="center")
    table.add_column("Complete", justify="center")
    table.add_column("Conserved", justify="center")
    table.add_column("Ledger", justify="right")
    table.add_column("Attacker", justify="right")
    table.add_column("Stopped by", style="yellow")
    for row in rows:
        table.add_row(
            row.label,
            _yes_no(row.protected),
            _yes_no(row.complete_defense),
            _yes_no(row.conservation_holds),
            str(row.ledger_balance),
            str(row.attacker_balance),
            row.error or row.stopped_by or "-",
        )
    console.print(table)


# ============================================================================
# CLI Group
# ============================================================================

@click.group()
@click.option('--json-output', is_flag=True, help='Output raw JSON')
@click.option(
    '--log-level',
    type=click.Choice(list(VALID_LOG_LEVELS), case_sensitive=False),
    default=None,
    help='Override logging.level from the configuration',
)
@click.option(
    '--config',
    'config_path',
    type=click.Path(dir_okay=False, path_type=Path),
    envvar='REENTRANCY_SIM_CONFIG',
    help='YAML configuration file',
)
@click.version_option(__version__, prog_name='reentrancy-sim')
@click.pass_context
def cli(ctx: click.Context, json_output: bool, log_level: Optional[str], config_path: Optional[Path]):
    """
    Reentrancy Simulator - attack custodial ledgers and compare defenses.

    Every command builds a fresh simulated machine, funds the target
    ledgers from two honest users and reports what the attacker got away with.
    """
    ctx.ensure_object(dict)
    overrides: Dict[str, Any] = {}
    if log_level:
        overrides["logging"] = {"level": log_level.upper()}
    try:
        config = load_config(config_path, overrides=overrides)
    except ConfigurationError as exc:
        raise click.ClickException(exc.message) from exc

    setup_logging(
        level=config.logging.level,
        log_file=config.logging.log_file,
        json_format=config.logging.json,
    )
    ctx.obj['config'] = config
    ctx.obj['json_output'] = json_output


@cli.command('attack')
@click.option('--guard', required=True, callback=_parse_guard, help='Guard policy of the target ledger')
@click.option('--mode', type=click.Choice(MODE_CHOICES), default='withdraw', show_default=True)
@click.option('--deposit', type=click.IntRange(min=1), default=1, show_default=True)
@click.option('--minimal', is_flag=True, help='Use the cheapest possible callback logic')
@click.option('--steps', 'step_budget', type=click.IntRange(min=1), default=None, help='Attack step budget')
@click.pass_context
def attack(ctx: click.Context, guard: GuardPolicy, mode: str, deposit: int, minimal: bool, step_budget: Optional[int]):
    """Attack a single ledger funded with 5 + 5 by two users"""
    config: SimulationConfig = ctx.obj['config']
    attack_mode = _parse_mode(mode)
    try:
        outcome = run_single_attack(
            guard,
            attack_mode,
            deposit,
            minimal=minimal,
            step_budget=step_budget,
            config=config,
        )
    except SimulationError as exc:
        _cli_fail(exc)
        return

    if ctx.obj['json_output']:
        _emit_json(outcome.to_dict())
        return
    _render_outcome(outcome, f"{guard.label} vs {attack_mode.value} attack")


@cli.command('cross-ledger')
@click.option('--guard-a', required=True, callback=_parse_guard, help='Guard policy of VaultA')
@click.option('--guard-b', required=True, callback=_parse_guard, help='Guard policy of VaultB')
@click.option('--deposit', type=click.IntRange(min=1), default=2, show_default=True)
@click.option('--steps', 'step_budget', type=click.IntRange(min=1), default=None, help='Attack step budget')
@click.pass_context
def cross_ledger(ctx: click.Context, guard_a: GuardPolicy, guard_b: GuardPolicy, deposit: int, step_budget: Optional[int]):
    """Ping-pong between two ledgers inside one call chain"""
    config: SimulationConfig = ctx.obj['config']
    try:
        outcome = run_cross_ledger_attack(
            guard_a, guard_b, deposit, step_budget=step_budget, config=config
        )
    except SimulationError as exc:
        _cli_fail(exc)
        return

    if ctx.obj['json_output']:
        _emit_json(outcome.to_dict())
        return
    _render_outcome(outcome, f"Cross-ledger: {guard_a.label} / {guard_b.label}")


@cli.command('compare')
@click.option('--mode', type=click.Choice(MODE_CHOICES), default='withdraw', show_default=True)
@click.option('--minimal', is_flag=True, help='Use the cheapest possible callback logic')
@click.pass_context
def compare(ctx: click.Context, mode: str, minimal: bool):
    """Run the same attack against every guard policy"""
    attack_mode = _parse_mode(mode)
    try:
        rows = compare_defenses(attack_mode, minimal=minimal, config=ctx.obj['config'])
    except SimulationError as exc:
        _cli_fail(exc)
        return

    if ctx.obj['json_output']:
        _emit_json([row.to_dict() for row in rows])
        return
    _render_comparison(rows, attack_mode)


@cli.command('pull-payment')
@click.option('--amount', type=click.IntRange(min=1), default=3, show_default=True)
@click.pass_context
def pull_payment(ctx: click.Context, amount: int):
    """Walk through a two-step pull-payment withdrawal"""
    try:
        walkthrough = demonstrate_pull_payment(amount, config=ctx.obj['config'])
    except SimulationError as exc:
        _cli_fail(exc)
        return

    if ctx.obj['json_output']:
        _emit_json(walkthrough.to_dict())
        return

    table = Table(title="Pull payment", box=box.ROUNDED)
    table.add_column("Step", style="cyan")
    table.add_column("Balance", justify="right")
    table.add_column("Pending", justify="right")
    table.add_column("Wallet", justify="right")
    table.add_row("deposit", str(walkthrough.deposited), "0", "0")
    table.add_row(
        "initiate",
        str(walkthrough.balance_after_initiate),
        str(walkthrough.pending_after_initiate),
        "0",
    )
    table.add_row(
        "complete",
        "0",
        str(walkthrough.pending_after_complete),
        str(walkthrough.wallet_after_complete),
    )
    console.print(table)
    console.print(
        f"[dim]External calls during initiate: {walkthrough.external_calls_during_initiate}[/]"
    )


@cli.command('config')
@click.option('--section', type=click.Choice(['gas', 'attack', 'stack', 'logging']), help='Show only one section')
@click.pass_context
def show_config(ctx: click.Context, section: Optional[str]):
    """Show the effective configuration"""
    payload = ctx.obj['config'].to_dict()
    if section:
        payload = {section: payload[section]}

    if ctx.obj['json_output']:
        _emit_json(payload)
        return
    click.echo(yaml.safe_dump(payload, sort_keys=False))


def main():
    """Main CLI entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)


if __name__ == '__main__':
    main()
