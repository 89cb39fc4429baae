"""deployforge data models — all Pydantic v2, all frozen (immutable)."""

from deployforge.models.aliases import AliasTable
from deployforge.models.artifacts import ZERO_ADDRESS, ArtifactKey, ArtifactRecord
from deployforge.models.config import ManagerConfig, RetrySettings
from deployforge.models.ledger import LedgerEntry
from deployforge.models.migrations import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    MigrationOutcome,
    MigrationState,
)
from deployforge.models.relations import (
    IMPLEMENTATION_OF,
    ManifestEdge,
    ManifestNode,
    RelationManifest,
)

__all__ = [
    "IMPLEMENTATION_OF",
    "TERMINAL_STATES",
    "VALID_TRANSITIONS",
    "ZERO_ADDRESS",
    "AliasTable",
    "ArtifactKey",
    "ArtifactRecord",
    "LedgerEntry",
    "ManagerConfig",
    "ManifestEdge",
    "ManifestNode",
    "MigrationOutcome",
    "MigrationState",
    "RelationManifest",
    "RetrySettings",
]
