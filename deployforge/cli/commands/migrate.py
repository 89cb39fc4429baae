"""``deployforge migrate NETWORK DEPLOYMENT`` — run migrations through their lifecycle.

Migrations come from an explicit registry (``--registry module:attribute``)
and run in the order given (registration order by default), stopping at
the first failure.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from deployforge.cli.context import build_manager, open_cache, resolve_rules
from deployforge.config import DeployConfig
from deployforge.core.migration_engine import MigrationEngine
from deployforge.core.migration_registry import resolve_registry
from deployforge.core.retry import Deadline
from deployforge.core.run_ledger import RunLedger
from deployforge.errors import DeployforgeError
from deployforge.models.migrations import MigrationOutcome

console = Console()


def _mark(ran: bool) -> str:
    return "[green]Yes[/green]" if ran else "[dim]-[/dim]"


def _print_outcomes(outcomes: list[MigrationOutcome]) -> None:
    table = Table(title="Migration Outcomes")
    table.add_column("Migration", style="cyan")
    table.add_column("State", style="green")
    table.add_column("Prepared", justify="center")
    table.add_column("Enacted", justify="center")
    table.add_column("Verified", justify="center")
    for o in outcomes:
        table.add_row(
            o.name, o.state.value, _mark(o.prepared), _mark(o.enacted), _mark(o.verified)
        )
    console.print(table)


def migrate_cmd(
    network: str = typer.Argument(..., help="Network to migrate, e.g. mainnet."),
    deployment: str = typer.Argument(..., help="Deployment within the network, e.g. usdc."),
    registry_ref: str = typer.Option(
        ...,
        "--registry",
        "-r",
        help="Migration registry as module:attribute.",
    ),
    names: list[str] = typer.Option(
        None,
        "--name",
        "-n",
        help="Migration to run (repeatable). Defaults to all, in registration order.",
    ),
    rules_ref: str = typer.Option(
        None, "--rules", help="Crawl rules as module:attribute."
    ),
    gov_network: str = typer.Option(
        None, "--gov-network", help="Network governance lives on, if different."
    ),
    gov_deployment: str = typer.Option(
        None, "--gov-deployment", help="Governance deployment (defaults to DEPLOYMENT)."
    ),
    resubmit: bool = typer.Option(
        False,
        "--resubmit",
        help="Re-run enact for a migration whose previous enact outcome is unknown.",
    ),
    verify: bool = typer.Option(
        True, "--verify/--no-verify", help="Run verify after enact."
    ),
    simulate: bool = typer.Option(
        False,
        "--simulate",
        help="Run against a local fork node; cache writes stay in memory.",
    ),
    ledger_db: Path = typer.Option(
        None, "--ledger", "-l", help="Path to the ledger SQLite database."
    ),
) -> None:
    """Run migrations for NETWORK/DEPLOYMENT."""
    config = DeployConfig()
    simulate = simulate or config.simulate
    config = config.model_copy(update={"simulate": simulate})

    try:
        registry = resolve_registry(registry_ref)
        rules = resolve_rules(rules_ref)
        deadline = Deadline(config.run_timeout_s)
        cache = open_cache(config)
        dm = build_manager(
            network, deployment, config, rules=rules, cache=cache, deadline=deadline
        )
        gov_dm = None
        if gov_network:
            gov_dm = build_manager(
                gov_network,
                gov_deployment or deployment,
                config,
                cache=cache,
                deadline=deadline,
            )
        if ledger_db is None:
            ledger_db = (
                Path(tempfile.mkdtemp(prefix="deployforge-sim-")) / "ledger.db"
                if simulate
                else config.ledger_path
            )
        ledger = RunLedger(ledger_db)
        engine = MigrationEngine(registry, dm, ledger, gov_dm=gov_dm)
    except DeployforgeError as exc:
        console.print(f"[bold red]Configuration error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    selected = names or registry.names()
    if simulate:
        console.print(
            f"[yellow]Simulation: cache writes stay in memory, ledger at {ledger_db}.[/yellow]"
        )

    try:
        outcomes = engine.run_all(selected, resubmit=resubmit, verify=verify)
    except DeployforgeError as exc:
        console.print(f"[bold red]Migration failed:[/bold red] {exc}")
        console.print(
            f"[dim]See progress with: deployforge status {network} {deployment}[/dim]"
        )
        raise typer.Exit(code=1)

    _print_outcomes(outcomes)
    console.print(f"[dim]Deployed {dm.deploy_count} new contract(s).[/dim]")
