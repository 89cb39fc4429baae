"""``deployforge enacted NETWORK DEPLOYMENT NAME`` — ask the chain whether a migration landed.

Governance proposals execute after this process exits. This re-queries the
migration's ``enacted`` predicate and records ``already_enacted`` when it
has.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from deployforge.cli.context import build_manager
from deployforge.config import DeployConfig
from deployforge.core.migration_engine import MigrationEngine
from deployforge.core.migration_registry import resolve_registry
from deployforge.core.run_ledger import RunLedger
from deployforge.errors import DeployforgeError

console = Console()


def enacted_cmd(
    network: str = typer.Argument(..., help="Network name."),
    deployment: str = typer.Argument(..., help="Deployment name."),
    name: str = typer.Argument(..., help="Migration name."),
    registry_ref: str = typer.Option(
        ..., "--registry", "-r", help="Migration registry as module:attribute."
    ),
    ledger_db: Path = typer.Option(
        None, "--ledger", "-l", help="Path to the ledger SQLite database."
    ),
) -> None:
    """Check whether NAME has been enacted on NETWORK/DEPLOYMENT."""
    config = DeployConfig()
    try:
        registry = resolve_registry(registry_ref)
        dm = build_manager(network, deployment, config)
        engine = MigrationEngine(registry, dm, RunLedger(ledger_db or config.ledger_path))
        landed = engine.check_enacted(name)
    except DeployforgeError as exc:
        console.print(f"[bold red]Check failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    state = engine.get_state(name).value
    if landed:
        console.print(f"[bold green]{name} is enacted[/bold green] (state: {state}).")
    else:
        console.print(f"[bold yellow]{name} is not enacted yet[/bold yellow] (state: {state}).")
        raise typer.Exit(code=2)
