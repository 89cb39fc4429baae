"""Relation crawler: discovers contract topology by querying live chain state.

Starting from one or more root addresses, the Spider resolves each
contract's kind against a rule set, follows proxy implementations and
declared relations, and records the result as a ``RelationManifest``.

Walk order is depth-first. Every address is expanded at most once; an
edge into an already-visited address is recorded without re-expansion,
which is what keeps cyclic graphs finite. An address without code (a plain
account) becomes a leaf with no kind and is never queried.

A query that reverts, or answers ``NOT_APPLICABLE``, means "this rule does
not apply here" and yields no edge. Anything else that goes wrong while
querying is a network fault: transient faults are retried by the
``RetryPolicy``, terminal ones propagate.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from deployforge.core.retry import Deadline, RetryPolicy
from deployforge.errors import ConfigurationError, ContractReverted
from deployforge.models.artifacts import ZERO_ADDRESS, normalize_address
from deployforge.models.relations import (
    IMPLEMENTATION_OF,
    ManifestEdge,
    ManifestNode,
    RelationManifest,
)
from deployforge.network.base import ContractHandle, NetworkClient

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Query results
# ---------------------------------------------------------------------------


class Applicable(BaseModel):
    """A query that applied, carrying its value (an address, a list, a flag)."""

    model_config = ConfigDict(frozen=True)

    value: Any = None


class _NotApplicable(Enum):
    NOT_APPLICABLE = "not-applicable"

    def __repr__(self) -> str:
        return "NOT_APPLICABLE"


NOT_APPLICABLE = _NotApplicable.NOT_APPLICABLE

QueryResult = Applicable | _NotApplicable
Query = Callable[[ContractHandle], Any]


def as_query_result(value: Any) -> QueryResult:
    """Wrap a raw query return value.

    ``None`` reads as "absent" and is not applicable; any other plain
    value is wrapped as ``Applicable``.
    """
    if isinstance(value, Applicable) or value is NOT_APPLICABLE:
        return value
    if value is None:
        return NOT_APPLICABLE
    return Applicable(value=value)


class Rule(BaseModel):
    """How to walk out of one contract kind.

    Parameters
    ----------
    relations:
        relation name -> query returning an address or a list of addresses.
    implementation:
        Query returning the proxy implementation address.
    identify:
        Query deciding whether a contract is of this kind. Without one,
        the kind applies when any of its other queries apply.
    alias:
        Query returning a preferred alias for the contract.
    """

    model_config = ConfigDict(frozen=True)

    relations: dict[str, Query] = Field(default_factory=dict)
    implementation: Query | None = None
    identify: Query | None = None
    alias: Query | None = None


# ---------------------------------------------------------------------------
# Expansion (the network-touching part of a visit)
# ---------------------------------------------------------------------------


class _Expansion(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str = ""
    alias: str = ""
    implementation: str = ""
    relations: list[tuple[str, list[str]]] = Field(default_factory=list)


def _addresses(value: Any) -> list[str]:
    if isinstance(value, str):
        candidates = [value]
    elif isinstance(value, Iterable):
        candidates = [str(v) for v in value]
    else:
        candidates = [str(value)]
    return [
        a for a in candidates
        if a and normalize_address(a) != ZERO_ADDRESS
    ]


class Spider:
    """Deduplicating graph walk over on-chain relations.

    Parameters
    ----------
    client:
        Network the contracts live on.
    policy:
        Retry policy for query calls.
    deadline:
        Run deadline; checked before every retried query.
    max_workers:
        With more than one worker, expansions of discovered addresses are
        queried ahead on a thread pool. The visited set and the manifest are
        only touched by the walking thread, so the result does not depend
        on scheduling.
    """

    def __init__(
        self,
        client: NetworkClient,
        *,
        policy: RetryPolicy | None = None,
        deadline: Deadline | None = None,
        max_workers: int = 1,
    ) -> None:
        self._client = client
        self._policy = policy or RetryPolicy()
        self._deadline = deadline
        self._max_workers = max(1, max_workers)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def crawl(
        self,
        root_address: str,
        rules: Mapping[str, Rule],
        root_kind: str | None = None,
        root_alias: str | None = None,
    ) -> RelationManifest:
        """Walk everything reachable from *root_address*."""
        return self._walk([(root_address, root_kind, root_alias or "")], rules)

    def crawl_roots(
        self, roots: Mapping[str, str], rules: Mapping[str, Rule]
    ) -> RelationManifest:
        """Walk from every ``alias -> address`` root, sharing one visited set."""
        seeds = [(address, None, alias) for alias, address in sorted(roots.items())]
        return self._walk(seeds, rules)

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def _walk(
        self,
        seeds: list[tuple[str, str | None, str]],
        rules: Mapping[str, Rule],
    ) -> RelationManifest:
        for _, kind, _ in seeds:
            if kind is not None and kind not in rules:
                raise ConfigurationError(
                    f"No crawl rule for contract kind '{kind}'. Known: {sorted(rules)}"
                )

        nodes: dict[str, ManifestNode] = {}
        edges: dict[tuple[str, str, str], ManifestEdge] = {}
        taken_aliases: set[str] = set()
        visited: set[str] = set()
        pending: dict[str, Future[_Expansion]] = {}

        executor = (
            ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="spider")
            if self._max_workers > 1
            else None
        )

        def claim(address: str, kind: str | None) -> bool:
            key = normalize_address(address)
            if not key or key == ZERO_ADDRESS or key in visited:
                return False
            visited.add(key)
            if executor is not None:
                pending[key] = executor.submit(self._expand, address, kind, rules)
            return True

        def expansion_for(address: str, kind: str | None) -> _Expansion:
            future = pending.pop(normalize_address(address), None)
            if future is not None:
                return future.result()
            return self._expand(address, kind, rules)

        # (address, kind hint, alias candidate, parent alias)
        stack: list[tuple[str, str | None, str, str]] = []
        for address, kind, alias in reversed(seeds):
            if claim(address, kind):
                stack.append((address, kind, alias, ""))

        try:
            while stack:
                address, kind, candidate, parent_alias = stack.pop()
                expansion = expansion_for(address, kind)
                alias = self._choose_alias(
                    expansion.alias or candidate, parent_alias, address, taken_aliases
                )
                nodes[normalize_address(address)] = ManifestNode(
                    address=address, kind=expansion.kind, alias=alias
                )
                logger.debug("Visited %s kind=%r alias=%r", address, expansion.kind, alias)

                children: list[tuple[str, str, str]] = []
                if expansion.implementation:
                    impl_alias = f"{alias}:implementation" if alias else ""
                    children.append(
                        (expansion.implementation, IMPLEMENTATION_OF, impl_alias)
                    )
                for name, targets in expansion.relations:
                    for i, target in enumerate(targets):
                        child_alias = name if len(targets) == 1 else f"{name}:{i}"
                        children.append((target, name, child_alias))

                to_visit: list[tuple[str, str | None, str, str]] = []
                for target, relation, child_alias in children:
                    edge_key = (
                        normalize_address(address),
                        normalize_address(target),
                        relation,
                    )
                    edges.setdefault(
                        edge_key,
                        ManifestEdge(source=address, target=target, relation=relation),
                    )
                    if claim(target, None):
                        to_visit.append((target, None, child_alias, alias))
                stack.extend(reversed(to_visit))
        finally:
            if executor is not None:
                for future in pending.values():
                    future.cancel()
                executor.shutdown(wait=True)

        manifest = RelationManifest(
            nodes=[nodes[k] for k in sorted(nodes)],
            edges=[edges[k] for k in sorted(edges)],
        )
        logger.info(
            "Crawl finished: %d contract(s), %d relation(s)",
            len(manifest.nodes),
            len(manifest.edges),
        )
        return manifest

    @staticmethod
    def _choose_alias(
        candidate: str, parent_alias: str, address: str, taken: set[str]
    ) -> str:
        if not candidate:
            return ""
        options = [candidate]
        if parent_alias:
            options.append(f"{parent_alias}:{candidate}")
        options.append(f"{candidate}:{normalize_address(address)[:10]}")
        for option in options:
            if option not in taken:
                taken.add(option)
                return option
        return ""

    # ------------------------------------------------------------------
    # Querying
    # ------------------------------------------------------------------

    def _expand(
        self, address: str, kind: str | None, rules: Mapping[str, Rule]
    ) -> _Expansion:
        code = self._policy.run(
            lambda: self._client.get_code(address),
            deadline=self._deadline,
            description=f"get code of {address}",
        )
        if not code:
            # Plain accounts (guardians, admins) answer every call with empty
            # bytes; they are leaves.
            logger.debug("No code at %s; recording it as an account", address)
            return _Expansion()

        if kind is not None:
            _, expansion = self._apply_rule(address, kind, rules[kind], known_kind=True)
            return expansion

        for candidate, rule in rules.items():
            handle = ContractHandle(address, self._client, kind=candidate)
            if rule.identify is not None:
                identified = self._query(rule.identify, handle, f"{candidate}.identify")
                if identified is NOT_APPLICABLE or not identified.value:
                    continue
                _, expansion = self._apply_rule(address, candidate, rule, known_kind=True)
                return expansion
            applied, expansion = self._apply_rule(address, candidate, rule, known_kind=False)
            if applied:
                return expansion

        logger.debug("No rule applies to %s", address)
        return _Expansion()

    def _apply_rule(
        self,
        address: str,
        kind: str,
        rule: Rule,
        *,
        known_kind: bool,
    ) -> tuple[bool, _Expansion]:
        """Run each query of *rule* once. Returns whether any relation query applied."""
        handle = ContractHandle(address, self._client, kind=kind)

        def run(label: str, query: Query) -> QueryResult:
            return self._query(query, handle, f"{kind}.{label}")

        applied = False
        implementation = ""
        if rule.implementation is not None:
            result = run("implementation", rule.implementation)
            if result is not NOT_APPLICABLE:
                applied = True
                targets = _addresses(result.value)
                implementation = targets[0] if targets else ""

        relations: list[tuple[str, list[str]]] = []
        for name in sorted(rule.relations):
            result = run(f"relation:{name}", rule.relations[name])
            if result is NOT_APPLICABLE:
                continue
            applied = True
            targets = _addresses(result.value)
            if targets:
                relations.append((name, targets))

        if not (applied or known_kind):
            return False, _Expansion()

        alias = ""
        if rule.alias is not None:
            result = run("alias", rule.alias)
            if result is not NOT_APPLICABLE and result.value:
                alias = str(result.value)

        return applied, _Expansion(
            kind=kind,
            alias=alias,
            implementation=implementation,
            relations=relations,
        )

    def _query(self, query: Query, handle: ContractHandle, label: str) -> QueryResult:
        try:
            raw = self._policy.run(
                lambda: query(handle),
                deadline=self._deadline,
                description=f"query {label} on {handle.address}",
            )
        except ContractReverted as exc:
            logger.debug("Query %s reverted on %s: %s", label, handle.address, exc.reason)
            return NOT_APPLICABLE
        return as_query_result(raw)
