"""Migration lifecycle engine — drives migrations through a ledger-backed state machine.

    registered -> prepared -> enacting -> enacted -> verified
         \\            \\           \\          \\
          +------------+-----------+----------+--> already_enacted

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- ``enacted()`` is consulted before ``prepare`` and before ``enact``
- The ``enacting`` transition is durable before ``enact`` is called, so an
  interrupted enact is visible on the next run and never silently resubmitted
- Every transition and every stage failure recorded in the Run Ledger
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from deployforge.core.deployment_manager import DeploymentManager
from deployforge.core.hasher import compute_payload_hash
from deployforge.core.migration_registry import Migration, MigrationRegistry
from deployforge.core.run_ledger import RunLedger
from deployforge.errors import (
    EnactFailedError,
    EnactOutcomeUnknownError,
    PrepareFailedError,
    VerificationFailedError,
)
from deployforge.models.ledger import LedgerEntry
from deployforge.models.migrations import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    MigrationOutcome,
    MigrationState,
)

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


def states_from_entries(entries: Iterable[LedgerEntry]) -> dict[str, MigrationState]:
    """Replay ledger transitions into the latest state per migration.

    Failure events carry no transition and leave state untouched.
    """
    states: dict[str, MigrationState] = {}
    for entry in entries:
        if "->" not in entry.state_transition:
            continue
        _, to_state = entry.state_transition.split("->", 1)
        try:
            states[entry.migration] = MigrationState(to_state)
        except ValueError:
            logger.warning(
                "Ignoring unknown state %r for %s in ledger entry %s",
                to_state,
                entry.migration,
                entry.entry_id,
            )
    return states


class MigrationEngine:
    """Runs registered migrations against one deployment.

    Parameters
    ----------
    registry:
        Where migrations are looked up by name.
    dm:
        Deployment manager of the deployment being migrated.
    ledger:
        The Run Ledger transitions are recorded into.
    gov_dm:
        Deployment manager of the governing network, when governance lives
        elsewhere (e.g. mainnet governing an L2). Defaults to ``dm``.
    """

    def __init__(
        self,
        registry: MigrationRegistry,
        dm: DeploymentManager,
        ledger: RunLedger,
        *,
        gov_dm: DeploymentManager | None = None,
    ) -> None:
        self.registry = registry
        self.dm = dm
        self.gov_dm = gov_dm or dm
        self._ledger = ledger
        self._states: dict[str, MigrationState] | None = None

    @property
    def scope(self) -> str:
        return self.dm.scope

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def get_state(self, name: str) -> MigrationState:
        """Current state of *name*; ``registered`` if it never ran."""
        if self._states is None:
            self._rebuild_state()
        return self._states.get(name, MigrationState.REGISTERED)

    def get_all_states(self) -> dict[str, MigrationState]:
        """State of every registered migration, in registration order."""
        return {name: self.get_state(name) for name in self.registry.names()}

    def _rebuild_state(self) -> None:
        """Rebuild in-memory state from the ledger (for resume)."""
        self._states = states_from_entries(self._ledger.get_scope_entries(self.scope))

    def _transition(
        self,
        name: str,
        target: MigrationState,
        *,
        input_hash: str = "",
        output_hash: str = "",
    ) -> LedgerEntry:
        current = self.get_state(name)
        allowed = VALID_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {name} from {current.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        sealed = self._ledger.append(
            LedgerEntry(
                scope=self.scope,
                migration=name,
                state_transition=f"{current.value}->{target.value}",
                input_hash=input_hash,
                output_hash=output_hash,
            )
        )
        self._states[name] = target
        logger.info("%s [%s]: %s -> %s", name, self.scope, current.value, target.value)
        return sealed

    def _record_failure(self, name: str, event: str, exc: BaseException) -> None:
        self._ledger.append(
            LedgerEntry(
                scope=self.scope,
                migration=name,
                event=event,
                error=f"{type(exc).__name__}: {exc}",
            )
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def check_enacted(self, name: str) -> bool:
        """Ask the chain whether *name* has landed; records ``already_enacted`` if so.

        Governance proposals execute asynchronously, so this is how an
        operator confirms a proposal submitted by an earlier run. A migration
        in ``enacted`` keeps its state: the next ``run`` still verifies it.
        """
        migration = self.registry.get(name)
        landed = self._query_enacted(migration)
        state = self.get_state(name)
        if landed and MigrationState.ALREADY_ENACTED in VALID_TRANSITIONS[state]:
            self._transition(name, MigrationState.ALREADY_ENACTED)
        return landed

    def run(
        self, name: str, *, resubmit: bool = False, verify: bool = True
    ) -> MigrationOutcome:
        """Drive *name* as far through its lifecycle as it will go.

        Parameters
        ----------
        resubmit:
            Allow ``enact`` to run again for a migration left in
            ``enacting`` whose proposal has not been observed on-chain.
        verify:
            Run ``verify`` after a successful enact.
        """
        migration = self.registry.get(name)
        prepared = enacted = verified = False

        state = self.get_state(name)
        if state in TERMINAL_STATES:
            logger.info("%s is already %s; nothing to do.", name, state.value)
            return MigrationOutcome(name=name, state=state)

        if state in (MigrationState.REGISTERED, MigrationState.PREPARED):
            if self._query_enacted(migration):
                self._transition(name, MigrationState.ALREADY_ENACTED)
                return MigrationOutcome(name=name, state=MigrationState.ALREADY_ENACTED)

        if state is MigrationState.REGISTERED:
            self._prepare(migration)
            prepared = True
            state = MigrationState.PREPARED

        if state is MigrationState.ENACTING:
            if self._query_enacted(migration):
                self._transition(name, MigrationState.ALREADY_ENACTED)
                return MigrationOutcome(
                    name=name, state=MigrationState.ALREADY_ENACTED, prepared=prepared
                )
            if not resubmit:
                raise EnactOutcomeUnknownError(
                    name,
                    "a previous enact did not complete and the proposal is not "
                    "observed on-chain. Check governance, then re-run with "
                    "resubmit=True to submit again.",
                )
            logger.warning("%s: resubmitting enact after an unknown outcome.", name)

        if state in (MigrationState.PREPARED, MigrationState.ENACTING):
            self._enact(migration, already_enacting=state is MigrationState.ENACTING)
            enacted = True
            state = MigrationState.ENACTED

        if state is MigrationState.ENACTED and verify:
            self._verify(migration)
            verified = True
            state = MigrationState.VERIFIED

        return MigrationOutcome(
            name=name, state=state, prepared=prepared, enacted=enacted, verified=verified
        )

    def run_all(
        self,
        names: Iterable[str] | None = None,
        *,
        resubmit: bool = False,
        verify: bool = True,
    ) -> list[MigrationOutcome]:
        """Run migrations in the given order (registration order by default).

        Stops at the first failure by letting its exception propagate;
        migrations that completed are already recorded in the ledger.
        """
        outcomes: list[MigrationOutcome] = []
        for name in list(names) if names is not None else self.registry.names():
            self.dm.deadline.check(f"migration {name}")
            outcomes.append(self.run(name, resubmit=resubmit, verify=verify))
        return outcomes

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _query_enacted(self, migration: Migration) -> bool:
        return bool(migration.enacted(self.dm))

    def _prepare(self, migration: Migration) -> None:
        name = migration.name
        try:
            raw = migration.prepare(self.dm)
            checkpoint = migration.dump_vars(raw)
        except Exception as exc:
            self._record_failure(name, "prepare_failed", exc)
            raise PrepareFailedError(name, str(exc)) from exc

        self.dm.store_vars(name, checkpoint)
        self._transition(
            name,
            MigrationState.PREPARED,
            output_hash=compute_payload_hash("prepare", checkpoint),
        )

    def _enact(self, migration: Migration, *, already_enacting: bool) -> None:
        name = migration.name
        checkpoint = self.dm.read_vars(name)
        try:
            loaded_vars = migration.load_vars(checkpoint)
        except ValueError as exc:
            self._record_failure(name, "enact_failed", exc)
            raise EnactFailedError(name, f"checkpointed vars are invalid: {exc}") from exc

        input_hash = compute_payload_hash("prepare", checkpoint)
        if not already_enacting:
            self._transition(name, MigrationState.ENACTING, input_hash=input_hash)

        try:
            migration.enact(self.dm, self.gov_dm, loaded_vars)
        except Exception as exc:
            self._record_failure(name, "enact_failed", exc)
            raise EnactFailedError(name, str(exc)) from exc

        self._transition(name, MigrationState.ENACTED, input_hash=input_hash)

    def _verify(self, migration: Migration) -> None:
        name = migration.name
        try:
            migration.verify(self.dm)
        except Exception as exc:
            self._record_failure(name, "verify_failed", exc)
            raise VerificationFailedError(
                name, f"post-conditions failed after enact: {exc}"
            ) from exc
        self._transition(name, MigrationState.VERIFIED)
