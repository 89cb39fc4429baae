"""``deployforge verify-ledger`` — check Run Ledger hash-chain integrity."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from deployforge.config import DeployConfig
from deployforge.core.run_ledger import LedgerIntegrityError, RunLedger

console = Console()


def verify_ledger_cmd(
    scope: str = typer.Argument(
        None, help="network/deployment to verify. Defaults to every scope."
    ),
    ledger_db: Path = typer.Option(
        None, "--ledger", "-l", help="Path to the ledger SQLite database."
    ),
) -> None:
    """Recompute every entry hash and check the chain links."""
    db_path = ledger_db or DeployConfig().ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)

    ledger = RunLedger(db_path)
    scopes = [scope] if scope else ledger.get_all_scopes()
    if not scopes:
        console.print("[dim]Ledger is empty.[/dim]")
        return

    broken = False
    for item in scopes:
        try:
            ledger.verify_chain(item)
        except LedgerIntegrityError as exc:
            broken = True
            console.print(f"[bold red]BROKEN[/bold red] {item}: {exc}")
            continue
        count = len(ledger.get_scope_entries(item))
        console.print(f"[bold green]OK[/bold green] {item} ({count} entries)")

    if broken:
        raise typer.Exit(code=1)
