"""Error taxonomy shared by the cache, crawler, deployment manager and engine.

Classification drives control flow:

- ``ConfigurationError`` is fatal and raised before any network interaction.
- ``TransientNetworkError`` is retried by ``deployforge.core.retry``.
- ``TerminalChainError`` (and ``ContractReverted``) propagate immediately.
- Lifecycle errors report which stage of a migration failed.
"""

from __future__ import annotations


class DeployforgeError(RuntimeError):
    """Base class for every error raised by deployforge."""


class ConfigurationError(DeployforgeError):
    """Invalid setup: duplicate migration, missing alias, network mismatch."""


# ---------------------------------------------------------------------------
# Network faults
# ---------------------------------------------------------------------------


class NetworkError(DeployforgeError):
    """A failure while talking to a network."""


class TransientNetworkError(NetworkError):
    """Timeout, rate limit, stale nonce, node temporarily unavailable.

    Safe to retry: the call did not change chain state, or the change
    can be observed without resubmitting.
    """


class TerminalChainError(NetworkError):
    """A fault that retrying cannot fix (insufficient funds, bad input)."""


class ContractReverted(TerminalChainError):
    """The call reached the contract and reverted.

    For the crawler this means "the contract does not expose this
    relation"; for deploys and proposals it is a business-logic failure.
    """

    def __init__(self, reason: str = "", *, address: str = "") -> None:
        self.reason = reason
        self.address = address
        where = f" at {address}" if address else ""
        super().__init__(f"Execution reverted{where}: {reason or 'no reason given'}")


class ExplorerError(TerminalChainError):
    """The block explorer rejected a request or has nothing for the address."""


class SourceVerificationError(ExplorerError):
    """The explorer could not verify a deployed contract's source."""


class RunTimeoutError(DeployforgeError):
    """The run-level deadline expired while waiting on the network."""


# ---------------------------------------------------------------------------
# Migration lifecycle
# ---------------------------------------------------------------------------


class MigrationError(DeployforgeError):
    """Base class for failures of a single migration stage."""

    def __init__(self, migration: str, message: str) -> None:
        self.migration = migration
        super().__init__(f"[{migration}] {message}")


class PrepareFailedError(MigrationError):
    """``prepare`` raised; no vars were checkpointed."""


class EnactFailedError(MigrationError):
    """``enact`` raised; the proposal may or may not have been submitted."""


class EnactOutcomeUnknownError(MigrationError):
    """A previous ``enact`` attempt did not record completion.

    The proposal may be live on-chain. Re-running would resubmit it, so the
    engine refuses unless the caller opts in explicitly.
    """


class VerificationFailedError(MigrationError):
    """``verify`` raised after a successful enact.

    On-chain state may already be wrong and needs manual inspection.
    """
