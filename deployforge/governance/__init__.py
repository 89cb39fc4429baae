"""Governance proposal helpers."""

from deployforge.governance.proposals import (
    CalldataAction,
    EncodedProposal,
    SignatureAction,
    calldata,
    proposal,
)

__all__ = ["CalldataAction", "EncodedProposal", "SignatureAction", "calldata", "proposal"]
