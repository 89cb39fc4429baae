"""Shared wiring for CLI commands: settings, logging, managers, dotted references."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from urllib.parse import urlparse

from eth_account import Account
from rich.logging import RichHandler

from deployforge.config import DeployConfig
from deployforge.core.artifact_cache import ArtifactCache
from deployforge.core.deployment_manager import DeploymentManager
from deployforge.core.migration_registry import resolve_ref
from deployforge.core.retry import Deadline
from deployforge.core.spider import Rule
from deployforge.errors import ConfigurationError
from deployforge.network.explorer import EtherscanExplorer
from deployforge.network.web3_client import ArtifactDirectoryBuildSource, Web3NetworkClient

_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "0.0.0.0"})


def configure_logging(level: str) -> None:
    """Route all deployforge logging through Rich at *level*."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def resolve_rules(ref: str | None) -> dict[str, Rule]:
    if ref is None:
        return {}
    rules = resolve_ref(ref)
    if callable(rules):
        rules = rules()
    if not isinstance(rules, Mapping) or not all(isinstance(r, Rule) for r in rules.values()):
        raise ConfigurationError(f"'{ref}' is not a mapping of contract kind -> Rule")
    return dict(rules)


def open_cache(config: DeployConfig) -> ArtifactCache:
    return ArtifactCache(config.cache_dir, write_to_disk=not config.simulate)


def check_simulation_target(network: str, rpc_url: str, config: DeployConfig) -> None:
    """Refuse a simulated run that could reach a live network.

    A simulation forgets what it deployed, so every transaction it sends
    must land on a throwaway local fork, signed by the fork's own accounts.
    """
    if config.private_key is not None:
        raise ConfigurationError(
            "Refusing to simulate with DEPLOYFORGE_PRIVATE_KEY set: transactions "
            "would be signed for a live network. Unset it and use a local fork."
        )
    host = urlparse(rpc_url).hostname or ""
    if host not in _LOCAL_HOSTS:
        raise ConfigurationError(
            f"Refusing to simulate '{network}' against {rpc_url}: simulation needs "
            f"a local fork node, e.g. anvil --fork-url <rpc> on http://127.0.0.1:8545."
        )


def build_explorer(network: str, config: DeployConfig) -> EtherscanExplorer | None:
    """The block explorer for *network*, or ``None`` when none is configured."""
    url = config.explorer_url(network)
    if not url or config.simulate:
        return None
    api_key = config.explorer_api_key.get_secret_value() if config.explorer_api_key else ""
    return EtherscanExplorer(url, api_key, timeout_s=config.request_timeout_s)


def build_manager(
    network: str,
    deployment: str,
    config: DeployConfig,
    *,
    rules: Mapping[str, Rule] | None = None,
    cache: ArtifactCache | None = None,
    deadline: Deadline | None = None,
) -> DeploymentManager:
    """A DeploymentManager talking JSON-RPC to *network*."""
    rpc_url = config.rpc_url(network)
    if not rpc_url:
        raise ConfigurationError(
            f"No RPC URL for network '{network}'. Set DEPLOYFORGE_RPC_URLS."
        )
    if config.simulate:
        check_simulation_target(network, rpc_url, config)
    account = (
        Account.from_key(config.private_key.get_secret_value())
        if config.private_key is not None
        else None
    )
    client = Web3NetworkClient.from_url(
        network,
        rpc_url,
        account=account,
        request_timeout_s=config.request_timeout_s,
    )
    return DeploymentManager(
        network,
        deployment,
        client,
        cache=cache or open_cache(config),
        builds=ArtifactDirectoryBuildSource(config.artifacts_dir),
        explorer=build_explorer(network, config),
        config=config.manager_config(),
        rules=rules,
        deadline=deadline,
    )
