"""Relation manifest models — the graph discovered by the Spider."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from deployforge.models.artifacts import normalize_address

IMPLEMENTATION_OF = "implementation-of"


class ManifestNode(BaseModel):
    """A discovered contract: its address, resolved kind, and alias."""

    model_config = ConfigDict(frozen=True)

    address: str
    kind: str = ""  # "" when no rule applied
    alias: str = ""


class ManifestEdge(BaseModel):
    """A directed, typed edge from a referencing contract to a referenced one.

    ``relation`` is ``implementation-of`` for proxy targets, otherwise the
    relation name declared by the rule (e.g. ``underlying-of``).
    """

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    relation: str


class RelationManifest(BaseModel):
    """Node/edge graph produced by one crawl.

    Nodes and edges are kept sorted so equal graphs serialize identically.
    """

    model_config = ConfigDict(frozen=True)

    nodes: list[ManifestNode] = Field(default_factory=list)
    edges: list[ManifestEdge] = Field(default_factory=list)
    crawled_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def node(self, address: str) -> ManifestNode | None:
        """Return the node for *address*, or ``None``."""
        wanted = normalize_address(address)
        for node in self.nodes:
            if normalize_address(node.address) == wanted:
                return node
        return None

    def edges_from(self, address: str) -> list[ManifestEdge]:
        wanted = normalize_address(address)
        return [e for e in self.edges if normalize_address(e.source) == wanted]

    def implementation_targets(self) -> set[str]:
        """Normalized addresses that are the target of an implementation edge."""
        return {
            normalize_address(e.target)
            for e in self.edges
            if e.relation == IMPLEMENTATION_OF
        }

    def merged(self, other: RelationManifest) -> RelationManifest:
        """Union of two manifests; the first alias seen for an address wins."""
        nodes: dict[str, ManifestNode] = {}
        for node in [*self.nodes, *other.nodes]:
            nodes.setdefault(normalize_address(node.address), node)
        edges = {
            (normalize_address(e.source), normalize_address(e.target), e.relation): e
            for e in [*self.edges, *other.edges]
        }
        return RelationManifest(
            nodes=sorted(nodes.values(), key=lambda n: normalize_address(n.address)),
            edges=[edges[k] for k in sorted(edges)],
        )
