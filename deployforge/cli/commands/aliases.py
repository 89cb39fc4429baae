"""``deployforge aliases NETWORK DEPLOYMENT`` — print the resolved alias table.

Built offline from the artifact cache and the stored relation manifest.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from deployforge.config import DeployConfig
from deployforge.core.artifact_cache import ArtifactCache
from deployforge.models.aliases import AliasTable

console = Console()


def aliases_cmd(
    network: str = typer.Argument(..., help="Network name."),
    deployment: str = typer.Argument(..., help="Deployment name."),
    cache_dir: Path = typer.Option(
        None, "--cache-dir", "-c", help="Artifact cache directory."
    ),
) -> None:
    """List every alias known for NETWORK/DEPLOYMENT."""
    cache = ArtifactCache(cache_dir or DeployConfig().cache_dir)
    cached = cache.records(network, deployment)
    manifest = cache.read_manifest(network, deployment)
    table = AliasTable.build(network, deployment, cached, manifest)

    if not len(table):
        console.print(f"[dim]No aliases known for {network}/{deployment}.[/dim]")
        return

    out = Table(title=f"Aliases — {network}/{deployment}")
    out.add_column("Alias", style="cyan")
    out.add_column("Address", style="green")
    out.add_column("Source")
    out.add_column("Build")
    for alias in table.aliases():
        record = table[alias]
        source = "cache" if alias in cached else "crawl"
        build = record.build_id + (" [dim](impl)[/dim]" if record.is_proxy_target else "")
        out.add_row(alias, record.address, source, build)
    console.print(out)
    if manifest is None:
        console.print("[dim]No relation manifest stored; run `deployforge spider`.[/dim]")
