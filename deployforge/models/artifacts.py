"""Artifact identity and record models (immutable)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_address(address: str) -> str:
    """Lower-case an address so visited-sets and lookups ignore checksums."""
    return address.strip().lower()


class ArtifactKey(BaseModel):
    """One logical contract instance within a (network, deployment) pair."""

    model_config = ConfigDict(frozen=True)

    network: str
    deployment: str
    name: str

    @field_validator("network", "deployment", "name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("artifact key parts must be non-empty")
        return value

    def __str__(self) -> str:
        return f"{self.network}/{self.deployment}/{self.name}"


class ArtifactRecord(BaseModel):
    """A deployed (or registered) contract plus what is needed to re-identify it.

    Records are never mutated in place. A redeploy produces a new record
    that replaces the old one in the cache.
    """

    model_config = ConfigDict(frozen=True)

    address: str
    constructor_args: list[Any] = Field(default_factory=list)
    build_id: str = ""  # content hash of the compiled interface
    is_proxy_target: bool = False
    tx_hash: str = ""
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def same_artifact(self, other: ArtifactRecord) -> bool:
        """Whether two records point at the same on-chain instance."""
        return normalize_address(self.address) == normalize_address(other.address)
