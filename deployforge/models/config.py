"""Per-run manager configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict


class RetrySettings(BaseModel):
    """Backoff schedule for one wrapped network call."""

    model_config = ConfigDict(frozen=True)

    budget_ms: int = 60_000
    base_delay_ms: int = 500
    max_delay_ms: int = 10_000


class ManagerConfig(BaseModel):
    """Settings for one DeploymentManager (one network/deployment pair).

    Built from ``DeployConfig`` by the CLI, or directly in tests.
    """

    model_config = ConfigDict(frozen=True)

    cache_dir: Path = Path("deployments")
    write_cache_to_disk: bool = True
    retry: RetrySettings = RetrySettings()
    confirmation_timeout_s: float = 300.0
    crawl_workers: int = 1
    verify_deploys: bool = False
    raise_on_verification_failure: bool = False
