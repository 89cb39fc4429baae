"""Environment-driven configuration.

Reads from a .env file and DEPLOYFORGE_* environment variables. Per-run
settings handed to a ``DeploymentManager`` are derived with
``DeployConfig.manager_config()``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from deployforge.models.config import ManagerConfig, RetrySettings


class DeployConfig(BaseSettings):
    """Process-wide settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export DEPLOYFORGE_LOG_LEVEL=DEBUG
        export DEPLOYFORGE_CACHE_DIR=/data/deployments
        export DEPLOYFORGE_RPC_URLS='{"mainnet": "https://eth.example", "base": "https://base.example"}'
        export DEPLOYFORGE_EXPLORER_URLS='{"mainnet": "https://api.etherscan.io/api"}'

    Or via .env file::

        DEPLOYFORGE_RETRY_BUDGET_MS=120000
        DEPLOYFORGE_SIMULATE=true
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DEPLOYFORGE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Storage paths
    cache_dir: Path = Path("deployments")
    ledger_path: Path = Path(".deployforge/ledger.db")
    artifacts_dir: Path = Path("out")

    # Simulation: cache writes stay in memory, and only an unsigned local
    # fork node (anvil, hardhat) is accepted as the RPC endpoint
    simulate: bool = False

    # Retry / timeouts
    retry_budget_ms: int = 60_000
    retry_base_delay_ms: int = 500
    retry_max_delay_ms: int = 10_000
    confirmation_timeout_s: float = 300.0
    run_timeout_s: float | None = None
    request_timeout_s: float = 30.0

    # Crawling
    crawl_workers: int = 1

    # Networks: name -> JSON-RPC URL
    rpc_urls: dict[str, str] = {}
    private_key: SecretStr | None = None

    # Block explorers: name -> Etherscan-compatible API URL
    explorer_urls: dict[str, str] = {}
    explorer_api_key: SecretStr | None = None
    verify_deploys: bool = False
    raise_on_verification_failure: bool = False

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def rpc_url(self, network: str) -> str | None:
        return self.rpc_urls.get(network)

    def explorer_url(self, network: str) -> str | None:
        return self.explorer_urls.get(network)

    def manager_config(self) -> ManagerConfig:
        return ManagerConfig(
            cache_dir=self.cache_dir,
            write_cache_to_disk=not self.simulate,
            retry=RetrySettings(
                budget_ms=self.retry_budget_ms,
                base_delay_ms=self.retry_base_delay_ms,
                max_delay_ms=self.retry_max_delay_ms,
            ),
            confirmation_timeout_s=self.confirmation_timeout_s,
            crawl_workers=self.crawl_workers,
            verify_deploys=self.verify_deploys and not self.simulate,
            raise_on_verification_failure=self.raise_on_verification_failure,
        )
