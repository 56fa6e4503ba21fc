#!/usr/bin/env python3
"""
Reward Escrow CLI - inspection and migration tooling

Operates on a JSON state snapshot of an escrow:
- Deploying a fresh escrow backed by the reference token
- Bulk-importing historical grants during the setup period
- Vesting an account's entries
- Inspecting schedules, claimable amounts and global totals
"""

from __future__ import annotations

import json
import logging
import sys
import time
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from pydantic import ValidationError as PydanticValidationError
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from reward_escrow.contracts.erc20 import ERC20Token
from reward_escrow.core.config_manager import ConfigManager
from reward_escrow.core.constants import DEFAULT_PAGE_SIZE, UNIT
from reward_escrow.core.exceptions import EscrowError, get_error_context
from reward_escrow.core.logging_config import setup_logging_from_config
from reward_escrow.escrow import rates
from reward_escrow.escrow.custody import TokenCustody
from reward_escrow.escrow.persistence import load_state, save_state
from reward_escrow.escrow.reward_escrow import RewardEscrow
from reward_escrow.escrow.schemas import ImportRecord

logger = logging.getLogger(__name__)
console = Console()

DEFAULT_ESCROW_ADDRESS = "0x" + "e5" * 20


def _handle_cli_error(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging/exit codes."""
    logger.error("CLI error: %s", exc, extra={"event": "cli.error", **get_error_context(exc)})
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


def _format_amount(value: int) -> str:
    """Render base units as whole tokens."""
    return f"{Decimal(value) / Decimal(UNIT):f}"


def _time_provider(at: Optional[int]):
    if at is None:
        return lambda: int(time.time())
    return lambda: at


def _load_escrow(ctx: click.Context) -> RewardEscrow:
    state_path = ctx.obj["state_path"]
    if not Path(state_path).exists():
        raise click.ClickException(f"State file not found: {state_path} (run 'init' first)")
    return load_state(state_path, time_provider=ctx.obj["time_provider"])


def _entry_row(entry, now: int) -> Dict[str, Any]:
    return {
        "entry_id": entry.entry_id,
        "end_time": entry.end_time,
        "duration": entry.duration,
        "escrow_amount": entry.escrow_amount,
        "remaining_amount": entry.remaining_amount,
        "last_vested": entry.last_vested,
        "claimable": rates.claimable(entry, now),
    }


@click.group()
@click.option(
    '--config-dir',
    type=click.Path(file_okay=False, path_type=Path),
    help='Directory holding default.yaml and <environment>.yaml',
)
@click.option('--environment', help='Configuration environment (development/staging/production)')
@click.option(
    '--state',
    'state_path',
    envvar='ESCROW_STATE_FILE',
    default='escrow_state.json',
    show_default=True,
    help='Path to the escrow state snapshot',
)
@click.option('--at', type=int, help='Evaluate at this Unix timestamp instead of now')
@click.option('--json-output', is_flag=True, help='Output raw JSON')
@click.option('--log-level', help='Override the configured log level')
@click.option('--quiet', is_flag=True, help='Disable console logging')
@click.pass_context
def cli(
    ctx: click.Context,
    config_dir: Optional[Path],
    environment: Optional[str],
    state_path: str,
    at: Optional[int],
    json_output: bool,
    log_level: Optional[str],
    quiet: bool,
):
    """
    Reward Escrow CLI

    Inspect and administer a time-based token escrow stored as a JSON
    state snapshot.
    """
    ctx.ensure_object(dict)

    overrides: Dict[str, Any] = {}
    if log_level:
        overrides["logging.level"] = log_level.upper()
    if quiet:
        overrides["logging.enable_console"] = False

    try:
        config = ConfigManager(
            environment=environment,
            config_dir=str(config_dir) if config_dir else None,
            cli_overrides=overrides,
        )
        setup_logging_from_config(config.logging)
    except EscrowError as exc:
        _handle_cli_error(exc)

    ctx.obj['config'] = config
    ctx.obj['state_path'] = state_path
    ctx.obj['time_provider'] = _time_provider(at)
    ctx.obj['json_output'] = json_output


@cli.command("init")
@click.option('--escrow-address', default=DEFAULT_ESCROW_ADDRESS, show_default=True,
              help='Address the escrow holds tokens under')
@click.option('--token-name', default='Reward Token', show_default=True)
@click.option('--token-symbol', default='RWD', show_default=True)
@click.option('--fund', type=int, default=0, show_default=True,
              help='Base units minted into escrow custody')
@click.option('--force', is_flag=True, help='Overwrite an existing state file')
@click.pass_context
def init_state(
    ctx: click.Context,
    escrow_address: str,
    token_name: str,
    token_symbol: str,
    fund: int,
    force: bool,
):
    """
    Deploy a new escrow backed by the reference token.

    Roles and limits come from the loaded configuration. The setup period
    for bulk imports starts now (or at --at).

    Example:
        reward-escrow --state escrow.json init --fund 1000000000000000000000
    """
    state_path = ctx.obj["state_path"]
    config: ConfigManager = ctx.obj["config"]

    try:
        if Path(state_path).exists() and not force:
            raise click.ClickException(f"State file already exists: {state_path}")

        token = ERC20Token(name=token_name, symbol=token_symbol, owner=config.access.owner_address)
        if fund > 0:
            token.mint(config.access.owner_address, escrow_address, fund)

        escrow = RewardEscrow.from_config(
            config,
            TokenCustody(token, escrow_address),
            time_provider=ctx.obj["time_provider"],
        )
        save_state(escrow, state_path)

        payload = {
            "state": state_path,
            "owner": escrow.access_control.owner_address,
            "escrow_address": escrow.custody.escrow_address,
            "token": token.symbol,
            "custody_balance": escrow.custody.balance(),
            "setup_expiry_time": escrow.setup_expiry_time,
        }
        if ctx.obj["json_output"]:
            click.echo(json.dumps(payload, indent=2))
            return

        table = Table(show_header=False, box=box.ROUNDED)
        table.add_row("[bold cyan]State File", state_path)
        table.add_row("[bold cyan]Owner", payload["owner"])
        table.add_row("[bold cyan]Escrow Address", payload["escrow_address"])
        table.add_row("[bold green]Custody Balance", f"{_format_amount(payload['custody_balance'])} {token.symbol}")
        table.add_row("[bold yellow]Setup Ends", str(payload["setup_expiry_time"]))
        console.print(Panel(table, title="[bold green]Escrow Deployed", border_style="green"))

    except (click.ClickException, EscrowError, OSError) as exc:
        _handle_cli_error(exc)


@cli.command("import-entries")
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--operator', help='Owner address performing the import (defaults to configured owner)')
@click.pass_context
def import_entries(ctx: click.Context, file: Path, operator: Optional[str]):
    """
    Import historical grants from a JSON file.

    FILE holds a list of records (or {"entries": [...]}) with account,
    escrow_amount and either duration or end_time. The batch is
    all-or-nothing and only allowed during the setup period.

    Example:
        reward-escrow import-entries grants.json
    """
    try:
        with open(file, "r", encoding="utf-8") as handle:
            raw = json.load(handle)
        if isinstance(raw, dict):
            raw = raw.get("entries", [])
        if not isinstance(raw, list):
            raise click.ClickException("Import file must contain a list of entries")

        records = [ImportRecord.model_validate(item) for item in raw]

        escrow = _load_escrow(ctx)
        caller = escrow.access_control.caller(operator or escrow.access_control.owner_address)
        entry_ids = escrow.import_vesting_entries(caller, records)
        save_state(escrow, ctx.obj["state_path"])

        total = sum(record.escrow_amount for record in records)
        if ctx.obj["json_output"]:
            click.echo(json.dumps({"imported": len(entry_ids), "entry_ids": entry_ids, "total_amount": total}))
            return

        console.print(
            f"[bold green]✓[/] Imported {len(entry_ids)} entries "
            f"({_format_amount(total)} tokens), ids {entry_ids[0] if entry_ids else '-'}"
            f"..{entry_ids[-1] if entry_ids else '-'}"
        )

    except (click.ClickException, EscrowError, PydanticValidationError, OSError, ValueError) as exc:
        _handle_cli_error(exc)


@cli.command("vest")
@click.argument('account')
@click.option('--entry-id', 'entry_ids', type=int, multiple=True,
              help='Entry id to vest (repeatable); defaults to all of the account\'s entries')
@click.option('--operator', help='Address submitting the vest (defaults to the account)')
@click.pass_context
def vest_account(ctx: click.Context, account: str, entry_ids: tuple, operator: Optional[str]):
    """Vest claimable tokens for ACCOUNT and save the new state."""
    try:
        escrow = _load_escrow(ctx)
        ids: List[int] = list(entry_ids) or escrow.get_account_vesting_entry_ids(
            account, 0, escrow.num_vesting_entries(account)
        )
        caller = escrow.access_control.caller(operator or account)
        amount = escrow.vest(caller, account, ids)
        save_state(escrow, ctx.obj["state_path"])

        if ctx.obj["json_output"]:
            click.echo(json.dumps({"account": account.lower(), "vested": amount, "entry_ids": ids}))
            return

        if amount == 0:
            console.print("[yellow]Nothing to vest[/]")
        else:
            console.print(f"[bold green]✓[/] Vested {_format_amount(amount)} tokens to {account}")

    except (click.ClickException, EscrowError) as exc:
        _handle_cli_error(exc)


@cli.command("schedule")
@click.argument('account')
@click.option('--index', default=0, type=click.IntRange(min=0), help='Start offset')
@click.option('--page-size', default=DEFAULT_PAGE_SIZE, type=click.IntRange(min=1),
              show_default=True, help='Number of entries to show')
@click.pass_context
def schedule(ctx: click.Context, account: str, index: int, page_size: int):
    """Show ACCOUNT's vesting entries in creation order."""
    try:
        escrow = _load_escrow(ctx)
        now = escrow.now()
        entries = escrow.get_vesting_schedules(account, index, page_size)
        rows = [_entry_row(entry, now) for entry in entries]

        if ctx.obj["json_output"]:
            click.echo(json.dumps({"account": account.lower(), "at": now, "entries": rows}, indent=2))
            return

        if not rows:
            console.print("[yellow]No vesting entries found[/]")
            return

        table = Table(title=f"Vesting Schedule - {account[:20]}", box=box.ROUNDED)
        table.add_column("ID", style="cyan", justify="right")
        table.add_column("End Time", style="white")
        table.add_column("Escrowed", style="green", justify="right")
        table.add_column("Remaining", style="yellow", justify="right")
        table.add_column("Claimable", style="magenta", justify="right")
        for row in rows:
            table.add_row(
                str(row["entry_id"]),
                str(row["end_time"]),
                _format_amount(row["escrow_amount"]),
                _format_amount(row["remaining_amount"]),
                _format_amount(row["claimable"]),
            )
        console.print(table)

    except (click.ClickException, EscrowError) as exc:
        _handle_cli_error(exc)


@cli.command("claimable")
@click.argument('account')
@click.pass_context
def claimable(ctx: click.Context, account: str):
    """Show what ACCOUNT could vest right now."""
    try:
        escrow = _load_escrow(ctx)
        ids = escrow.get_account_vesting_entry_ids(account, 0, escrow.num_vesting_entries(account))
        payload = {
            "account": account.lower(),
            "at": escrow.now(),
            "claimable": escrow.get_vesting_quantity(account, ids),
            "escrowed": escrow.total_escrowed_account_balance(account),
            "vested": escrow.total_vested_account_balance(account),
            "entries": len(ids),
        }

        if ctx.obj["json_output"]:
            click.echo(json.dumps(payload, indent=2))
            return

        table = Table(show_header=False, box=box.ROUNDED)
        table.add_row("[bold cyan]Account", payload["account"])
        table.add_row("[bold magenta]Claimable", _format_amount(payload["claimable"]))
        table.add_row("[bold yellow]Escrowed", _format_amount(payload["escrowed"]))
        table.add_row("[bold green]Vested", _format_amount(payload["vested"]))
        table.add_row("[bold cyan]Entries", str(payload["entries"]))
        console.print(Panel(table, title="[bold green]Claimable Balance", border_style="green"))

    except (click.ClickException, EscrowError) as exc:
        _handle_cli_error(exc)


@cli.command("summary")
@click.pass_context
def summary(ctx: click.Context):
    """Show escrow-wide totals and merge window status."""
    try:
        escrow = _load_escrow(ctx)
        escrow.verify_conservation()
        payload = {
            "at": escrow.now(),
            "total_escrowed_balance": escrow.total_escrowed_balance,
            "custody_balance": escrow.custody.balance(),
            "next_entry_id": escrow.next_entry_id,
            "accounts": len(escrow.store.accounts()),
            "entries": len(escrow.store),
            "max_escrow_duration": escrow.max_escrow_duration,
            "setup_expiry_time": escrow.setup_expiry_time,
            "account_merging_is_open": escrow.account_merging_is_open(),
            "merging_end_time": escrow.merging_end_time,
        }

        if ctx.obj["json_output"]:
            click.echo(json.dumps(payload, indent=2))
            return

        table = Table(show_header=False, box=box.ROUNDED)
        table.add_row("[bold green]Total Escrowed", _format_amount(payload["total_escrowed_balance"]))
        table.add_row("[bold green]Custody Balance", _format_amount(payload["custody_balance"]))
        table.add_row("[bold cyan]Accounts", str(payload["accounts"]))
        table.add_row("[bold cyan]Entries", str(payload["entries"]))
        table.add_row("[bold cyan]Next Entry ID", str(payload["next_entry_id"]))
        table.add_row("[bold yellow]Setup Ends", str(payload["setup_expiry_time"]))
        merging = "[green]open[/]" if payload["account_merging_is_open"] else "[dim]closed[/]"
        table.add_row("[bold magenta]Account Merging", merging)
        console.print(Panel(table, title="[bold green]Escrow Summary", border_style="green"))

    except (click.ClickException, EscrowError) as exc:
        _handle_cli_error(exc)


def main():
    """Main CLI entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)


if __name__ == '__main__':
    main()
