"""``deployforge spider NETWORK DEPLOYMENT`` — re-crawl contract relations.

Walks live on-chain relations from the deployment's roots, stores the new
relation manifest and prints the rebuilt alias table.
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from deployforge.cli.context import build_manager, resolve_rules
from deployforge.config import DeployConfig
from deployforge.errors import ConfigurationError, DeployforgeError

console = Console()


def _parse_roots(pairs: list[str]) -> dict[str, str]:
    roots: dict[str, str] = {}
    for pair in pairs:
        alias, sep, address = pair.partition("=")
        if not sep or not alias or not address:
            raise ConfigurationError(f"Root must look like alias=0xADDRESS, got {pair!r}")
        roots[alias.strip()] = address.strip()
    return roots


def spider_cmd(
    network: str = typer.Argument(..., help="Network name."),
    deployment: str = typer.Argument(..., help="Deployment name."),
    rules_ref: str = typer.Option(
        ..., "--rules", help="Crawl rules as module:attribute."
    ),
    roots: list[str] = typer.Option(
        None,
        "--root",
        help="Crawl root as alias=address (repeatable). Replaces the stored roots.",
    ),
) -> None:
    """Crawl NETWORK/DEPLOYMENT from its roots and rebuild the alias table."""
    config = DeployConfig()
    try:
        dm = build_manager(network, deployment, config, rules=resolve_rules(rules_ref))
        if roots:
            dm.set_roots(_parse_roots(roots))
        table = dm.spider()
    except DeployforgeError as exc:
        console.print(f"[bold red]Crawl failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    manifest = dm.cache.read_manifest(network, deployment)
    if manifest is not None:
        console.print(
            f"[bold green]Crawled[/bold green] {len(manifest.nodes)} contract(s), "
            f"{len(manifest.edges)} relation(s)."
        )

    out = Table(title=f"Aliases — {dm.scope}")
    out.add_column("Alias", style="cyan")
    out.add_column("Address", style="green")
    for alias in table.aliases():
        out.add_row(alias, table.address(alias))
    console.print(out)
