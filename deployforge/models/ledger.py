"""Run Ledger entry model (append-only, hash-chained).

The ledger is the durable record of migration lifecycle progress. It is:
- Append-only (no UPDATE, no DELETE)
- Hash-chained (each entry links to the previous via SHA-256)
- Event-driven (one entry per transition or failed stage)
- Scoped (entries belong to a ``network/deployment`` scope + migration)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from deployforge import __version__


class LedgerEntry(BaseModel):
    """A single entry in the append-only Run Ledger.

    ``state_transition`` is ``"from->to"`` for transitions. Failure events
    leave it empty and carry ``error`` instead, so they never move state.
    """

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    scope: str  # "network/deployment"
    migration: str
    state_transition: str = ""  # "registered->prepared"
    event: str = "transition"  # transition | prepare_failed | enact_failed | ...
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""
    output_hash: str = ""
    error: str = ""
    tool_version: str = __version__
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed after construction, seals this entry
