"""Migration lifecycle state models — deterministic transitions."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class MigrationState(str, Enum):
    """Strict state model for one migration within a deployment."""

    REGISTERED = "registered"
    PREPARED = "prepared"
    ENACTING = "enacting"  # enact attempted, outcome unknown
    ENACTED = "enacted"
    ALREADY_ENACTED = "already_enacted"
    VERIFIED = "verified"


# Valid state transitions, enforced by MigrationEngine.
# Terminal states (VERIFIED, ALREADY_ENACTED) have no outgoing transitions.
# ENACTED cannot short-circuit: a change this engine enacted still gets verified.
VALID_TRANSITIONS: dict[MigrationState, set[MigrationState]] = {
    MigrationState.REGISTERED: {MigrationState.PREPARED, MigrationState.ALREADY_ENACTED},
    MigrationState.PREPARED: {MigrationState.ENACTING, MigrationState.ALREADY_ENACTED},
    MigrationState.ENACTING: {MigrationState.ENACTED, MigrationState.ALREADY_ENACTED},
    MigrationState.ENACTED: {MigrationState.VERIFIED},
    MigrationState.VERIFIED: set(),  # terminal
    MigrationState.ALREADY_ENACTED: set(),  # terminal
}

TERMINAL_STATES: frozenset[MigrationState] = frozenset(
    state for state, targets in VALID_TRANSITIONS.items() if not targets
)


class MigrationOutcome(BaseModel):
    """What one engine run did to one migration."""

    model_config = ConfigDict(frozen=True)

    name: str
    state: MigrationState
    prepared: bool = False  # prepare ran during this call
    enacted: bool = False  # enact ran during this call
    verified: bool = False  # verify ran during this call
