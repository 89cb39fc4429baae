"""deployforge: multi-network contract deployment and migration orchestration.

- Artifact cache: the idempotence boundary for deploy-or-reuse
- Spider: discovers contract topology by probing live relations
- Deployment manager: the façade migrations use for one network/deployment
- Migration engine: ledger-backed prepare -> enact -> enacted? -> verify
"""

__version__ = "0.1.0"

from deployforge.core.artifact_cache import ArtifactCache
from deployforge.core.deployment_manager import DeploymentManager
from deployforge.core.migration_engine import MigrationEngine
from deployforge.core.migration_registry import Migration, MigrationRegistry, migration
from deployforge.core.retry import Deadline, RetryPolicy, retry
from deployforge.core.run_ledger import RunLedger
from deployforge.core.spider import NOT_APPLICABLE, Applicable, Rule, Spider

__all__ = [
    "NOT_APPLICABLE",
    "Applicable",
    "ArtifactCache",
    "Deadline",
    "DeploymentManager",
    "Migration",
    "MigrationEngine",
    "MigrationRegistry",
    "RetryPolicy",
    "Rule",
    "RunLedger",
    "Spider",
    "migration",
    "retry",
    "__version__",
]
