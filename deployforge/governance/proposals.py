"""Governance proposal encoding.

A proposal bundles ordered actions into the four parallel arrays a
Governor-style ``propose`` takes::

    proposal(actions, description) -> (targets, values, signatures, calldatas, description)

Signature actions carry the function signature separately and encode only
the arguments; calldata actions carry pre-encoded calldata (selector
included) with an empty signature.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from eth_abi.exceptions import EncodingError
from pydantic import BaseModel, ConfigDict, Field

from deployforge.network.abi import encode_args, split_signature
from deployforge.network.base import TransactionRequest


class SignatureAction(BaseModel):
    """Call ``target.signature(*args)``."""

    model_config = ConfigDict(frozen=True)

    target: str
    signature: str
    args: list[Any] = Field(default_factory=list)
    value: int = 0


class CalldataAction(BaseModel):
    """Call ``target`` with raw calldata."""

    model_config = ConfigDict(frozen=True)

    target: str
    calldata: bytes
    value: int = 0


ProposalAction = SignatureAction | CalldataAction


class EncodedProposal(BaseModel):
    """Arguments for a Governor ``propose`` call."""

    model_config = ConfigDict(frozen=True)

    targets: list[str]
    values: list[int]
    signatures: list[str]
    calldatas: list[bytes]
    description: str

    def as_args(self) -> tuple[list[str], list[int], list[str], list[bytes], str]:
        return (
            self.targets,
            self.values,
            self.signatures,
            self.calldatas,
            self.description,
        )

    def __len__(self) -> int:
        return len(self.targets)


def _encode_action(action: ProposalAction) -> tuple[str, bytes]:
    if isinstance(action, CalldataAction):
        return "", action.calldata
    split_signature(action.signature)
    try:
        return action.signature, encode_args(action.signature, action.args)
    except (EncodingError, TypeError) as exc:
        raise ValueError(
            f"Cannot encode {action.signature} for {action.target}: {exc}"
        ) from exc


def proposal(actions: Sequence[ProposalAction], description: str) -> EncodedProposal:
    """Encode *actions*, in order, into a single proposal."""
    if not actions:
        raise ValueError("A proposal needs at least one action")
    if not description.strip():
        raise ValueError("A proposal needs a description")

    targets: list[str] = []
    values: list[int] = []
    signatures: list[str] = []
    calldatas: list[bytes] = []
    for action in actions:
        signature, data = _encode_action(action)
        targets.append(action.target)
        values.append(action.value)
        signatures.append(signature)
        calldatas.append(data)

    return EncodedProposal(
        targets=targets,
        values=values,
        signatures=signatures,
        calldatas=calldatas,
        description=description,
    )


def calldata(request: TransactionRequest) -> bytes:
    """Arguments of a populated call, without its 4-byte selector."""
    return bytes(request.data[4:])
