"""web3.py-backed network client and a compiled-artifacts build source.

Every web3 failure is translated into the ``deployforge.errors`` taxonomy
at this boundary so the retry policy sees ``ContractReverted``,
``TransientNetworkError`` or ``TerminalChainError`` and nothing else.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from eth_abi import encode
from eth_account.signers.local import LocalAccount
from eth_utils import keccak
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from deployforge.core.hasher import build_id_for_interface
from deployforge.core.retry import ErrorClass, classify_error
from deployforge.errors import (
    ConfigurationError,
    ContractReverted,
    DeployforgeError,
    TerminalChainError,
    TransientNetworkError,
)
from deployforge.network.base import (
    SignedTransaction,
    TransactionReceipt,
    TransactionRequest,
    VerificationInput,
)

logger = logging.getLogger(__name__)

_GAS_MARGIN = 1.2
_UNLINKED_LIBRARY = re.compile(r"__\$\w{34}\$__")
_COMMIT_SUFFIX = re.compile(r"\+commit\.([0-9a-fA-F]+)\..*")
# Explorers reject optimizer settings above this.
_MAX_OPTIMIZER_RUNS = 1_000_000

# Broadcast errors meaning "this exact transaction is already in the pool".
_ALREADY_KNOWN = ("already known", "known transaction", "already imported")


def _translate(exc: Exception, address: str = "") -> DeployforgeError:
    if isinstance(exc, DeployforgeError):
        return exc
    if isinstance(exc, ContractLogicError):
        return ContractReverted(str(exc.message or exc), address=address)
    if isinstance(exc, (TimeExhausted, TransactionNotFound, OSError)):
        return TransientNetworkError(str(exc))
    if classify_error(exc) is ErrorClass.TRANSIENT:
        return TransientNetworkError(str(exc))
    return TerminalChainError(f"{type(exc).__name__}: {exc}")


@contextmanager
def _translated(address: str = "") -> Iterator[None]:
    try:
        yield
    except Exception as exc:
        raise _translate(exc, address) from exc


class Web3NetworkClient:
    """``NetworkClient`` over a web3 JSON-RPC connection.

    Parameters
    ----------
    network:
        Network name this client serves.
    w3:
        Connected ``Web3`` instance.
    account:
        Local signer for transactions. Without one, the node signs with its
        first unlocked account through ``eth_signTransaction`` (dev nodes
        and local forks only).
    """

    def __init__(
        self, network: str, w3: Web3, *, account: LocalAccount | None = None
    ) -> None:
        self.network = network
        self.w3 = w3
        self.account = account

    @classmethod
    def from_url(
        cls,
        network: str,
        rpc_url: str,
        *,
        account: LocalAccount | None = None,
        request_timeout_s: float = 30.0,
    ) -> Web3NetworkClient:
        w3 = Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout_s})
        )
        return cls(network, w3, account=account)

    def __repr__(self) -> str:
        return f"<Web3NetworkClient {self.network}>"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def call(self, address: str, data: bytes) -> bytes:
        with _translated(address):
            result = self.w3.eth.call(
                {"to": Web3.to_checksum_address(address), "data": Web3.to_hex(data)}
            )
        return bytes(result)

    def get_code(self, address: str) -> bytes:
        with _translated(address):
            return bytes(self.w3.eth.get_code(Web3.to_checksum_address(address)))

    def get_logs(self, **filters: Any) -> list[dict[str, Any]]:
        with _translated():
            return [dict(log) for log in self.w3.eth.get_logs(filters)]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def sign_transaction(self, request: TransactionRequest) -> SignedTransaction:
        tx: dict[str, Any] = {"data": Web3.to_hex(request.data), "value": request.value}
        if request.to is not None:
            tx["to"] = Web3.to_checksum_address(request.to)

        with _translated(request.to or ""):
            sender = self.account.address if self.account else self.w3.eth.accounts[0]
            tx["from"] = sender
            tx["chainId"] = self.w3.eth.chain_id
            tx["nonce"] = self.w3.eth.get_transaction_count(sender, "pending")
            tx["gasPrice"] = self.w3.eth.gas_price
            tx["gas"] = request.gas or int(self.w3.eth.estimate_gas(tx) * _GAS_MARGIN)
            if self.account is not None:
                raw = bytes(self.account.sign_transaction(tx).raw_transaction)
            else:
                # Node-managed account: the node signs, we broadcast.
                raw = bytes(self.w3.eth.sign_transaction(tx)["raw"])
        return SignedTransaction(tx_hash=Web3.to_hex(keccak(raw)), raw=raw, nonce=tx["nonce"])

    def send_raw_transaction(self, signed: SignedTransaction) -> str:
        try:
            with _translated():
                self.w3.eth.send_raw_transaction(signed.raw)
        except TransientNetworkError as exc:
            message = str(exc).lower()
            if any(marker in message for marker in _ALREADY_KNOWN):
                logger.debug("Node already holds %s", signed.tx_hash)
                return signed.tx_hash
            if "nonce too low" in message:
                if self.has_transaction(signed.tx_hash):
                    return signed.tx_hash
                raise TerminalChainError(
                    f"Nonce {signed.nonce} of {signed.tx_hash} was used by another "
                    f"transaction; sign again."
                ) from exc
            raise
        return signed.tx_hash

    def has_transaction(self, tx_hash: str) -> bool:
        with _translated():
            try:
                self.w3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                return False
        return True

    def wait_for_confirmation(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        with _translated():
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        contract_address = receipt.get("contractAddress")
        return TransactionReceipt(
            tx_hash=tx_hash,
            status=int(receipt.get("status", 1)),
            block_number=int(receipt.get("blockNumber") or 0),
            contract_address=str(contract_address) if contract_address else None,
            gas_used=int(receipt.get("gasUsed") or 0),
            logs=[dict(log) for log in receipt.get("logs", [])],
        )


# ---------------------------------------------------------------------------
# Build source
# ---------------------------------------------------------------------------


def _abi_type(param: dict[str, Any]) -> str:
    """Canonical ABI type string for one input, expanding tuples."""
    kind = param["type"]
    if kind.startswith("tuple"):
        inner = ",".join(_abi_type(c) for c in param.get("components", []))
        return f"({inner}){kind[len('tuple'):]}"
    return kind


def _bytecode_of(data: dict[str, Any]) -> str:
    bytecode = data.get("bytecode", "")
    if isinstance(bytecode, dict):  # foundry: {"object": "0x..."}
        bytecode = bytecode.get("object", "")
    return bytecode or ""


def _encode_constructor(
    build_id: str, data: dict[str, Any], constructor_args: list[Any]
) -> bytes:
    ctor = next((i for i in data["abi"] if i.get("type") == "constructor"), None)
    inputs = ctor.get("inputs", []) if ctor else []
    if len(inputs) != len(constructor_args):
        raise ConfigurationError(
            f"Build '{build_id}' constructor takes {len(inputs)} argument(s), "
            f"got {len(constructor_args)}"
        )
    if not inputs:
        return b""
    return encode([_abi_type(p) for p in inputs], list(constructor_args))


class ArtifactDirectoryBuildSource:
    """``BuildSource`` reading compiled contract JSON files from a directory.

    Accepts Hardhat-style (``{"abi", "bytecode"}``) and Foundry-style
    (``{"abi", "bytecode": {"object"}}``) artifacts. A build id is either
    the contract name (file stem) or the interface content hash produced by
    ``build_id_for_interface``.

    Source verification needs the solc metadata (``metadata`` or
    ``rawMetadata``) in the artifact. Sources the metadata does not embed
    are read relative to *source_root*, the artifact directory's parent by
    default.
    """

    def __init__(self, directory: Path, *, source_root: Path | None = None) -> None:
        self._directory = Path(directory)
        self._source_root = Path(source_root) if source_root else self._directory.parent
        self._index: dict[str, dict[str, Any]] | None = None

    def _load(self) -> dict[str, dict[str, Any]]:
        if self._index is None:
            index: dict[str, dict[str, Any]] = {}
            for path in sorted(self._directory.rglob("*.json")):
                try:
                    data = json.loads(path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError):
                    logger.warning("Skipping unreadable artifact %s", path)
                    continue
                if not isinstance(data, dict) or "abi" not in data:
                    continue
                index.setdefault(path.stem, data)
                index.setdefault(build_id_for_interface(data["abi"]), data)
            self._index = index
        return self._index

    def artifact(self, build_id: str) -> dict[str, Any]:
        try:
            return self._load()[build_id]
        except KeyError:
            raise ConfigurationError(
                f"No compiled artifact for build '{build_id}' in {self._directory}"
            ) from None

    def creation_request(
        self, build_id: str, constructor_args: list[Any]
    ) -> TransactionRequest:
        data = self.artifact(build_id)
        bytecode = _bytecode_of(data)
        if not bytecode or bytecode == "0x":
            raise ConfigurationError(f"Build '{build_id}' has no creation bytecode")
        if _UNLINKED_LIBRARY.search(bytecode):
            raise ConfigurationError(f"Build '{build_id}' has unlinked libraries")
        encoded = _encode_constructor(build_id, data, constructor_args)
        return TransactionRequest(data=Web3.to_bytes(hexstr=bytecode) + encoded)

    def verification_input(
        self, build_id: str, constructor_args: list[Any]
    ) -> VerificationInput:
        data = self.artifact(build_id)
        metadata = data.get("metadata") or data.get("rawMetadata")
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except json.JSONDecodeError:
                metadata = None
        if not isinstance(metadata, dict) or "compiler" not in metadata:
            raise ConfigurationError(
                f"Build '{build_id}' carries no compiler metadata to verify with"
            )

        settings = copy.deepcopy(metadata.get("settings") or {})
        target = settings.pop("compilationTarget", None) or {}
        optimizer = settings.get("optimizer")
        if isinstance(optimizer, dict) and optimizer.get("runs", 0) > _MAX_OPTIMIZER_RUNS:
            optimizer["runs"] = _MAX_OPTIMIZER_RUNS
        source_name, contract = next(iter(target.items()), ("", build_id))

        sources = {
            name: {"content": self._source_text(name, entry)}
            for name, entry in (metadata.get("sources") or {}).items()
        }
        version = _COMMIT_SUFFIX.sub(r"+commit.\1", str(metadata["compiler"]["version"]))
        return VerificationInput(
            contract_name=f"{source_name}:{contract}" if source_name else contract,
            compiler_version=version if version.startswith("v") else f"v{version}",
            standard_json={
                "language": metadata.get("language", "Solidity"),
                "settings": settings,
                "sources": sources,
            },
            constructor_args=_encode_constructor(build_id, data, constructor_args).hex(),
        )

    def _source_text(self, name: str, entry: dict[str, Any]) -> str:
        if entry.get("content"):
            return entry["content"]
        path = self._source_root / name
        try:
            return path.read_text(encoding="utf-8")
        except OSError:
            raise ConfigurationError(
                f"Source '{name}' needed for verification not found under {self._source_root}"
            ) from None
