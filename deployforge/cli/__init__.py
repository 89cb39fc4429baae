"""deployforge CLI — Typer-based command-line interface.

Provides the ``deployforge`` command with subcommands for running
migrations, inspecting their ledger state, crawling contract relations
and checking ledger integrity.

All output uses Rich for formatted terminal display.
"""
