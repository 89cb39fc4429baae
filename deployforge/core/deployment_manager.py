"""Deployment Manager — the façade migrations use for one (network, deployment).

It resolves aliases to live contracts, deploys-or-reuses artifacts through
the ``ArtifactCache`` (the idempotence boundary), keeps the alias table in
sync with the latest crawl, and routes every network call through the
``RetryPolicy``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from deployforge.core.artifact_cache import ArtifactCache
from deployforge.core.hasher import build_id_for_interface
from deployforge.core.retry import Deadline, RetryPolicy
from deployforge.core.spider import Rule, Spider
from deployforge.errors import (
    ConfigurationError,
    ExplorerError,
    TerminalChainError,
    TransientNetworkError,
)
from deployforge.models.aliases import AliasTable
from deployforge.models.artifacts import ArtifactKey, ArtifactRecord, normalize_address
from deployforge.models.config import ManagerConfig
from deployforge.models.relations import RelationManifest
from deployforge.network.base import (
    BuildSource,
    ContractHandle,
    Explorer,
    NetworkClient,
    TransactionReceipt,
    TransactionRequest,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _canonical(record: ArtifactRecord) -> ArtifactRecord:
    """The record exactly as a later cache read will return it."""
    return ArtifactRecord.model_validate_json(record.model_dump_json())


class DeploymentManager:
    """Deploy, register and look up contracts for one deployment on one network.

    Parameters
    ----------
    network:
        Network name, e.g. ``"mainnet"`` or ``"arbitrum"``.
    deployment:
        Deployment name within the network, e.g. ``"usdc"``.
    client:
        The network client all reads and writes go through.
    cache:
        Artifact cache. Built from ``config`` when omitted.
    builds:
        Resolves build ids into creation transactions; required by ``deploy``.
    explorer:
        Block explorer for source verification and interface import.
    config:
        Per-manager settings.
    rules:
        Crawl rules by contract kind, used when topology must be discovered.
    policy:
        Retry policy. Built from ``config.retry`` when omitted.
    deadline:
        Run-level deadline shared with the engine. Unbounded when omitted.
    """

    def __init__(
        self,
        network: str,
        deployment: str,
        client: NetworkClient,
        *,
        cache: ArtifactCache | None = None,
        builds: BuildSource | None = None,
        explorer: Explorer | None = None,
        config: ManagerConfig | None = None,
        rules: Mapping[str, Rule] | None = None,
        policy: RetryPolicy | None = None,
        deadline: Deadline | None = None,
    ) -> None:
        if client.network.lower() != network.lower():
            raise ConfigurationError(
                f"Client is connected to '{client.network}', "
                f"not '{network}'."
            )
        self.network = network
        self.deployment = deployment
        self.config = config or ManagerConfig()
        self.client = client
        self.cache = cache or ArtifactCache(
            self.config.cache_dir, write_to_disk=self.config.write_cache_to_disk
        )
        self.deadline = deadline or Deadline()
        self._builds = builds
        self._explorer = explorer
        self._rules: dict[str, Rule] = dict(rules or {})
        self._policy = policy or RetryPolicy(self.config.retry)

        self._table: AliasTable | None = None
        self._overrides: dict[str, ArtifactRecord] = {}
        self.deploy_count = 0

    @property
    def scope(self) -> str:
        return f"{self.network}/{self.deployment}"

    def _key(self, name: str) -> ArtifactKey:
        return ArtifactKey(network=self.network, deployment=self.deployment, name=name)

    def __repr__(self) -> str:
        return f"<DeploymentManager {self.scope}>"

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    def retry(
        self,
        fn: Callable[[], T],
        attempt: int = 0,
        budget_ms: int | None = None,
        *,
        description: str = "network call",
    ) -> T:
        """Run *fn* under this manager's retry policy and run deadline."""
        return self._policy.run(
            fn,
            attempt=attempt,
            budget_ms=budget_ms,
            deadline=self.deadline,
            description=description,
        )

    # ------------------------------------------------------------------
    # Deploy-or-reuse
    # ------------------------------------------------------------------

    def deploy(
        self,
        name: str,
        build_id: str,
        constructor_args: list[Any] | None = None,
        force_new: bool = False,
        verify: bool | None = None,
    ) -> ArtifactRecord:
        """Return the cached artifact for *name*, deploying it first if needed.

        A cache hit makes no network call. With ``force_new`` the previous
        record is replaced, and kept in the cache history.

        A new deployment is submitted to the block explorer for source
        verification when *verify* is true, or ``config.verify_deploys``
        when *verify* is ``None``. Verification runs after the record is
        cached, so a failed verification never causes a redeploy.
        """
        key = self._key(name)
        args = list(constructor_args or [])

        if not force_new:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Reusing %s at %s", key, cached.address)
                return cached

        if self._builds is None:
            raise ConfigurationError(
                f"Cannot deploy '{name}' in {self.scope}: no build source configured."
            )
        should_verify = self.config.verify_deploys if verify is None else verify
        if should_verify and self._explorer is None:
            raise ConfigurationError(
                f"Cannot verify '{name}' in {self.scope}: no block explorer configured."
            )
        request = self._builds.creation_request(build_id, args)
        receipt = self.send(request, description=f"deploy {name}")
        if not receipt.contract_address:
            raise TerminalChainError(
                f"Creation transaction {receipt.tx_hash} for '{name}' "
                f"produced no contract address."
            )

        record = _canonical(
            ArtifactRecord(
                address=receipt.contract_address,
                constructor_args=args,
                build_id=build_id,
                tx_hash=receipt.tx_hash,
            )
        )
        self.cache.put(key, record)
        self.deploy_count += 1
        self._table = None
        logger.info("Deployed %s at %s (tx %s)", key, record.address, receipt.tx_hash)
        if should_verify and self._explorer is not None:
            self._verify(name, record, self._builds, self._explorer)
        return record

    def verify_contract(self, name: str) -> bool:
        """Submit the source of the cached artifact *name* for verification.

        Returns whether the explorer accepted it. A failure is logged and
        reported as ``False`` unless ``config.raise_on_verification_failure``.
        """
        if self._explorer is None or self._builds is None:
            raise ConfigurationError(
                f"Verifying '{name}' in {self.scope} needs a build source "
                f"and a block explorer."
            )
        record = self.cache.get(self._key(name))
        if record is None:
            raise ConfigurationError(f"No cached artifact '{name}' in {self.scope}.")
        return self._verify(name, record, self._builds, self._explorer)

    def _verify(
        self, name: str, record: ArtifactRecord, builds: BuildSource, explorer: Explorer
    ) -> bool:
        try:
            source = builds.verification_input(record.build_id, list(record.constructor_args))
            status = self.retry(
                lambda: explorer.verify_source(record.address, source),
                description=f"verify {name}",
            )
        except (ConfigurationError, ExplorerError, TransientNetworkError) as exc:
            if self.config.raise_on_verification_failure:
                raise
            logger.warning("Could not verify %s at %s: %s", name, record.address, exc)
            return False
        logger.info("Verified %s at %s: %s", name, record.address, status)
        return True

    def send(
        self, request: TransactionRequest, *, description: str = "transaction"
    ) -> TransactionReceipt:
        """Sign *request* once, broadcast it, and wait for it to be mined.

        Only the broadcast of the signed bytes is retried, and every retry
        first asks the node whether it already holds that hash. Confirmation
        waits are retried separately and never resubmit.
        """
        signed = self.retry(
            lambda: self.client.sign_transaction(request),
            description=f"sign {description}",
        )
        broadcast = False

        def submit() -> str:
            nonlocal broadcast
            if broadcast and self.client.has_transaction(signed.tx_hash):
                logger.info("%s already accepted as %s", description, signed.tx_hash)
                return signed.tx_hash
            broadcast = True
            return self.client.send_raw_transaction(signed)

        tx_hash = self.retry(submit, description=f"submit {description}")
        logger.debug("Submitted %s as %s", description, tx_hash)

        receipt = self.retry(
            lambda: self.client.wait_for_confirmation(
                tx_hash, self.deadline.bound(self.config.confirmation_timeout_s)
            ),
            description=f"confirm {description} ({tx_hash})",
        )
        if not receipt.succeeded:
            raise TerminalChainError(
                f"Transaction {tx_hash} for {description} failed on-chain "
                f"(status {receipt.status})."
            )
        return receipt

    def existing(
        self,
        alias: str,
        address: str,
        network: str | None = None,
        interface_ref: str | list[dict[str, Any]] | None = None,
        *,
        fetch_interface: bool = False,
    ) -> ArtifactRecord:
        """Register a contract that is already on-chain under *alias*.

        Local bookkeeping only: nothing is sent to the chain. The record
        is persisted so later runs reuse it.

        Parameters
        ----------
        network:
            Must match this manager's network when given.
        interface_ref:
            A build id, or an ABI whose content hash becomes the build id.
            An ABI is stored and served back by ``interface``.
        fetch_interface:
            Without *interface_ref*, import the verified ABI from the block
            explorer. Skipped when the cached record already has one.
        """
        if network is not None and network.lower() != self.network.lower():
            raise ConfigurationError(
                f"Cannot register '{alias}' from network '{network}' "
                f"in {self.scope}. Use a DeploymentManager for '{network}'."
            )

        key = self._key(alias)
        cached = self.cache.get(key)
        same_address = cached is not None and (
            normalize_address(cached.address) == normalize_address(address)
        )

        if fetch_interface and interface_ref is None:
            if same_address and cached.build_id and self._stored_interface(cached.build_id):
                return cached
            interface_ref = self.fetch_interface(address)

        if isinstance(interface_ref, list):
            build_id = build_id_for_interface(interface_ref)
            self.cache.store_interface(self.network, self.deployment, build_id, interface_ref)
        else:
            build_id = interface_ref or ""

        if same_address and (not build_id or cached.build_id == build_id):
            return cached

        record = _canonical(ArtifactRecord(address=address, build_id=build_id))
        self.cache.put(key, record)
        self._table = None
        logger.info("Registered existing %s at %s", key, address)
        return record

    def fetch_interface(self, address: str) -> list[dict[str, Any]]:
        """The verified ABI of *address*, from the block explorer."""
        explorer = self._explorer
        if explorer is None:
            raise ConfigurationError(
                f"Cannot fetch the interface of {address}: no block explorer "
                f"configured for {self.scope}."
            )
        return self.retry(
            lambda: explorer.fetch_interface(address),
            description=f"fetch interface of {address}",
        )

    def interface(self, alias: str) -> list[dict[str, Any]] | None:
        """The stored ABI of *alias*, or ``None`` when none was recorded."""
        record = self.get_contracts().require(alias)
        return self._stored_interface(record.build_id) if record.build_id else None

    def _stored_interface(self, build_id: str) -> list[dict[str, Any]] | None:
        return self.cache.read_interface(self.network, self.deployment, build_id)

    # ------------------------------------------------------------------
    # Alias table
    # ------------------------------------------------------------------

    def get_contracts(self) -> AliasTable:
        """The alias table: cached artifacts over the latest relation manifest.

        Crawls first when no manifest is stored and crawl roots are known.
        Aliases set with ``put_alias`` are applied on top.
        """
        if self._table is None:
            manifest = self.cache.read_manifest(self.network, self.deployment)
            if manifest is None and self.roots():
                manifest = self._crawl()
            self._table = AliasTable.build(
                self.network,
                self.deployment,
                self.cache.records(self.network, self.deployment),
                manifest,
            )

        table = self._table
        for alias, record in self._overrides.items():
            table = table.with_alias(alias, record)
        return table

    def put_alias(self, name: str, record: ArtifactRecord) -> None:
        """Bind *name* in the in-memory table only; nothing is persisted."""
        self._overrides[name] = record

    def contract(self, alias: str) -> ContractHandle:
        """Live handle for *alias*; raises ``ConfigurationError`` if unknown."""
        record = self.get_contracts().require(alias)
        return ContractHandle(record.address, self.client, kind=alias)

    # ------------------------------------------------------------------
    # Crawling
    # ------------------------------------------------------------------

    def roots(self) -> dict[str, str]:
        return self.cache.read_roots(self.network, self.deployment)

    def set_roots(self, roots: Mapping[str, str]) -> None:
        """Replace the crawl roots and invalidate the stored manifest."""
        self.cache.store_roots(self.network, self.deployment, dict(roots))
        self.invalidate_manifest()

    def invalidate_manifest(self) -> None:
        """Forget the stored manifest; the next ``get_contracts`` re-crawls."""
        self.cache.delete_manifest(self.network, self.deployment)
        self._table = None

    def spider(self) -> AliasTable:
        """Re-crawl from the roots and rebuild the alias table whole.

        In-memory ``put_alias`` bindings are dropped.
        """
        if not self.roots():
            raise ConfigurationError(f"No crawl roots configured for {self.scope}.")
        self._crawl()
        self._table = None
        self._overrides.clear()
        return self.get_contracts()

    def _crawl(self) -> RelationManifest:
        if not self._rules:
            raise ConfigurationError(f"No crawl rules configured for {self.scope}.")
        spider = Spider(
            self.client,
            policy=self._policy,
            deadline=self.deadline,
            max_workers=self.config.crawl_workers,
        )
        manifest = spider.crawl_roots(self.roots(), self._rules)
        self.cache.store_manifest(self.network, self.deployment, manifest)
        return manifest

    # ------------------------------------------------------------------
    # Migration vars
    # ------------------------------------------------------------------

    def read_vars(self, migration: str) -> Any | None:
        return self.cache.read_vars(self.network, self.deployment, migration)

    def store_vars(self, migration: str, value: Any) -> None:
        self.cache.store_vars(self.network, self.deployment, migration, value)

    # ------------------------------------------------------------------
    # Tracing
    # ------------------------------------------------------------------

    def tracer(self) -> Callable[..., None]:
        """A ``trace(message, *args)`` function that logs under this scope."""
        trace_logger = logging.getLogger(f"{__name__}.trace")
        scope = self.scope

        def trace(message: str, *args: Any) -> None:
            trace_logger.info("[%s] " + message, scope, *args)

        return trace
