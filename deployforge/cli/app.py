"""Main Typer application — imports and registers all CLI commands.

Entry point: ``deployforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from deployforge.cli.commands.aliases import aliases_cmd
from deployforge.cli.commands.enacted import enacted_cmd
from deployforge.cli.commands.migrate import migrate_cmd
from deployforge.cli.commands.spider_cmd import spider_cmd
from deployforge.cli.commands.status import status_cmd
from deployforge.cli.commands.verify_ledger import verify_ledger_cmd
from deployforge.cli.context import configure_logging
from deployforge.config import DeployConfig

app = typer.Typer(
    name="deployforge",
    help="deployforge: multi-network contract deployment and migration orchestration.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None, "--log-level", help="Override DEPLOYFORGE_LOG_LEVEL (DEBUG, INFO, ...)."
    ),
) -> None:
    """Configure logging before any command runs."""
    configure_logging(log_level or DeployConfig().log_level)


# Register subcommands
app.command(name="migrate", help="Run migrations through their lifecycle.")(migrate_cmd)
app.command(name="status", help="Show migration states from the Run Ledger.")(status_cmd)
app.command(name="enacted", help="Check on-chain whether a migration has landed.")(enacted_cmd)
app.command(name="spider", help="Re-crawl contract relations and rebuild aliases.")(spider_cmd)
app.command(name="aliases", help="Print the resolved alias table.")(aliases_cmd)
app.command(name="verify-ledger", help="Verify Run Ledger hash-chain integrity.")(
    verify_ledger_cmd
)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
