"""``deployforge status NETWORK DEPLOYMENT`` — migration states from the Run Ledger.

Read-only projection over the ledger; no network access.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from deployforge.config import DeployConfig
from deployforge.core.migration_engine import states_from_entries
from deployforge.core.migration_registry import resolve_registry
from deployforge.core.run_ledger import RunLedger
from deployforge.errors import ConfigurationError
from deployforge.models.migrations import MigrationState

console = Console()

_STATE_STYLES = {
    MigrationState.REGISTERED: "dim",
    MigrationState.PREPARED: "cyan",
    MigrationState.ENACTING: "bold yellow",
    MigrationState.ENACTED: "green",
    MigrationState.ALREADY_ENACTED: "green",
    MigrationState.VERIFIED: "bold green",
}


def status_cmd(
    network: str = typer.Argument(..., help="Network name."),
    deployment: str = typer.Argument(..., help="Deployment name."),
    registry_ref: str = typer.Option(
        None,
        "--registry",
        "-r",
        help="Also list registered migrations that never ran (module:attribute).",
    ),
    ledger_db: Path = typer.Option(
        None, "--ledger", "-l", help="Path to the ledger SQLite database."
    ),
) -> None:
    """Show the lifecycle state of every migration in NETWORK/DEPLOYMENT."""
    db_path = ledger_db or DeployConfig().ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)

    scope = f"{network}/{deployment}"
    ledger = RunLedger(db_path)
    entries = ledger.get_scope_entries(scope)
    states = states_from_entries(entries)

    names = list(states)
    if registry_ref:
        try:
            registry = resolve_registry(registry_ref)
        except ConfigurationError as exc:
            console.print(f"[bold red]Configuration error:[/bold red] {exc}")
            raise typer.Exit(code=1)
        names = registry.names() + [n for n in names if n not in registry]

    if not names:
        console.print(f"[dim]No migrations recorded for {scope}.[/dim]")
        return

    last_error = {e.migration: e.error for e in entries if e.error}
    table = Table(title=f"Migrations — {scope}")
    table.add_column("Migration", style="cyan")
    table.add_column("State")
    table.add_column("Last error", style="red")
    for name in names:
        state = states.get(name, MigrationState.REGISTERED)
        style = _STATE_STYLES[state]
        table.add_row(name, f"[{style}]{state.value}[/{style}]", last_error.get(name, ""))
    console.print(table)

    if any(s is MigrationState.ENACTING for s in states.values()):
        console.print(
            "[yellow]Migrations in 'enacting' may have a live proposal. "
            "Check with: deployforge enacted[/yellow]"
        )
