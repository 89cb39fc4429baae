"""Network collaborator protocols.

The orchestration core never encodes chain data itself; it talks to a
``NetworkClient`` (read state, sign and broadcast transactions, wait for
receipts) and a ``BuildSource`` (turn a build id and constructor args into
a creation transaction). Implementations translate their own failures into
the ``deployforge.errors`` taxonomy so the retry policy can classify them.

Signing and broadcasting are separate steps. A transaction is signed once;
only the broadcast of those exact bytes is ever repeated, so a lost
response can never turn into a second transaction.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class TransactionRequest(BaseModel):
    """An unsigned transaction. ``to=None`` means contract creation."""

    model_config = ConfigDict(frozen=True)

    to: str | None = None
    data: bytes = b""
    value: int = 0
    gas: int | None = None


class SignedTransaction(BaseModel):
    """A signed transaction: the exact bytes to broadcast and their hash."""

    model_config = ConfigDict(frozen=True)

    tx_hash: str
    raw: bytes
    nonce: int = 0


class VerificationInput(BaseModel):
    """What a block explorer needs to match deployed bytecode to its source.

    ``standard_json`` is the solc standard-JSON input (language, settings,
    sources). ``constructor_args`` is ABI-encoded hex without a ``0x``.
    """

    model_config = ConfigDict(frozen=True)

    contract_name: str
    compiler_version: str
    standard_json: dict[str, Any]
    constructor_args: str = ""


class TransactionReceipt(BaseModel):
    """The parts of a mined receipt the core cares about."""

    model_config = ConfigDict(frozen=True)

    tx_hash: str
    status: int = 1
    block_number: int = 0
    contract_address: str | None = None
    gas_used: int = 0
    logs: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@runtime_checkable
class NetworkClient(Protocol):
    """Capabilities the core needs from one network."""

    network: str

    def call(self, address: str, data: bytes) -> bytes:
        """Read-only call. Raises ``ContractReverted`` on revert."""
        ...

    def get_code(self, address: str) -> bytes:
        ...

    def sign_transaction(self, request: TransactionRequest) -> SignedTransaction:
        """Fill in nonce, gas and chain id, then sign. Nothing is broadcast."""
        ...

    def send_raw_transaction(self, signed: SignedTransaction) -> str:
        """Broadcast exactly ``signed.raw`` and return its hash.

        A node that already holds this transaction counts as accepted.
        """
        ...

    def has_transaction(self, tx_hash: str) -> bool:
        """Whether the node knows *tx_hash*, pending or mined."""
        ...

    def wait_for_confirmation(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        ...

    def get_logs(self, **filters: Any) -> list[dict[str, Any]]:
        ...


@runtime_checkable
class BuildSource(Protocol):
    """Resolves compiled builds for contract creation."""

    def creation_request(
        self, build_id: str, constructor_args: list[Any]
    ) -> TransactionRequest:
        ...

    def verification_input(
        self, build_id: str, constructor_args: list[Any]
    ) -> VerificationInput:
        ...


@runtime_checkable
class Explorer(Protocol):
    """A block explorer that verifies sources and serves verified interfaces."""

    def verify_source(self, address: str, source: VerificationInput) -> str:
        """Submit *source* for the contract at *address*; return the final status."""
        ...

    def fetch_interface(self, address: str) -> list[dict[str, Any]]:
        """The verified ABI of the contract at *address*."""
        ...


class ContractHandle:
    """A live contract: an address bound to the client of its network.

    Rules and migrations do their own encoding and pass raw calldata.
    """

    def __init__(self, address: str, client: NetworkClient, *, kind: str = "") -> None:
        self.address = address
        self.client = client
        self.kind = kind

    def call(self, data: bytes) -> bytes:
        return self.client.call(self.address, data)

    def code(self) -> bytes:
        return self.client.get_code(self.address)

    def __repr__(self) -> str:
        kind = f" {self.kind}" if self.kind else ""
        return f"<ContractHandle{kind} {self.address} on {self.client.network}>"
