"""Alias table model — the resolved view migrations read from."""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

from deployforge.errors import ConfigurationError
from deployforge.models.artifacts import ArtifactRecord
from deployforge.models.relations import RelationManifest


class AliasTable(BaseModel):
    """alias -> ArtifactRecord for one (network, deployment).

    Built whole from the artifact cache and the latest relation manifest;
    never patched incrementally.
    """

    model_config = ConfigDict(frozen=True)

    network: str
    deployment: str
    records: dict[str, ArtifactRecord] = Field(default_factory=dict)

    @classmethod
    def build(
        cls,
        network: str,
        deployment: str,
        cached: Mapping[str, ArtifactRecord],
        manifest: RelationManifest | None,
    ) -> AliasTable:
        """Merge manifest-discovered aliases with cached artifacts.

        The cache reflects this run's intent and wins over discovered
        chain state when both name the same alias.
        """
        records: dict[str, ArtifactRecord] = {}
        if manifest is not None:
            proxy_targets = manifest.implementation_targets()
            for node in manifest.nodes:
                if not node.alias:
                    continue
                records[node.alias] = ArtifactRecord(
                    address=node.address,
                    build_id=node.kind,
                    is_proxy_target=node.address.lower() in proxy_targets,
                )
        records.update(cached)
        return cls(network=network, deployment=deployment, records=records)

    def with_alias(self, alias: str, record: ArtifactRecord) -> AliasTable:
        """Return a copy with *alias* bound to *record*."""
        return self.model_copy(update={"records": {**self.records, alias: record}})

    def get(self, alias: str) -> ArtifactRecord | None:
        return self.records.get(alias)

    def require(self, alias: str) -> ArtifactRecord:
        """Return the record for *alias* or raise ``ConfigurationError``."""
        record = self.records.get(alias)
        if record is None:
            raise ConfigurationError(
                f"Missing required alias '{alias}' in "
                f"{self.network}/{self.deployment}. "
                f"Known: {sorted(self.records)}"
            )
        return record

    def address(self, alias: str) -> str:
        return self.require(alias).address

    def __getitem__(self, alias: str) -> ArtifactRecord:
        return self.require(alias)

    def __contains__(self, alias: object) -> bool:
        return alias in self.records

    def aliases(self) -> list[str]:
        """All aliases, sorted."""
        return sorted(self.records)

    def __len__(self) -> int:
        return len(self.records)
